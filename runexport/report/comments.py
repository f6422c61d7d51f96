from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator

from runexport.report.assets import AssetRequest, AssetResolver
from runexport.types import Segment, TextSegment


# ![](index.php?/attachments/get/<id>) as written by the TestRail editor
MARKER_PATTERN = re.compile(r'!\[\]\((index\.php\?/attachments/get/([^)\s]+))\)')

COMMENT_TEXT_SIZE = 11


@dataclass(frozen=True)
class CommentToken:
    kind: str  # 'text' | 'marker'
    start: int
    end: int
    reference: str | None = None
    attachment_id: str | None = None


class CommentTokens:
    """Lazy token stream over one comment; each iteration starts from the top."""

    def __init__(self, comment: str | None):
        self.comment = comment or ''

    def __iter__(self) -> Iterator[CommentToken]:
        cursor = 0
        for match in MARKER_PATTERN.finditer(self.comment):
            if match.start() > cursor:
                yield CommentToken(kind='text', start=cursor, end=match.start())
            yield CommentToken(
                kind='marker',
                start=match.start(),
                end=match.end(),
                reference=match.group(1),
                attachment_id=match.group(2),
            )
            cursor = match.end()
        if cursor < len(self.comment):
            yield CommentToken(kind='text', start=cursor, end=len(self.comment))

    def text(self, token: CommentToken) -> str:
        return self.comment[token.start:token.end]


def tokenize_comment(comment: str | None) -> CommentTokens:
    return CommentTokens(comment)


async def interleave_comment(
    comment: str | None,
    resolver: AssetResolver,
    *,
    test_id: int | None = None,
) -> list[Segment]:
    """Split a result comment into text and image segments in source order.

    Text between markers is trimmed and dropped when empty. A marker whose
    image cannot be fetched or decoded contributes nothing; the text on both
    sides of it is still emitted as separate runs.
    """
    if not comment:
        return []

    stream = tokenize_comment(comment)
    tokens = list(stream)
    requests = [
        AssetRequest(reference=token.reference or '', source_id=token.attachment_id or '')
        for token in tokens
        if token.kind == 'marker'
    ]
    images = iter(await resolver.resolve_many(requests, test_id=test_id))

    segments: list[Segment] = []
    for token in tokens:
        if token.kind == 'marker':
            image = next(images)
            if image is not None:
                segments.append(image)
            continue
        text = stream.text(token).strip()
        if text:
            segments.append(TextSegment(text=text, size=COMMENT_TEXT_SIZE))
    return segments
