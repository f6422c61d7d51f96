from __future__ import annotations

from runexport.adapters.testrail import attachment_reference
from runexport.report.assets import AssetRequest, AssetResolver
from runexport.types import AttachmentRef, ImageSegment


async def render_attachments(
    attachments: list[AttachmentRef],
    resolver: AssetResolver,
    *,
    test_id: int | None = None,
) -> list[ImageSegment]:
    requests = [
        AssetRequest(reference=attachment_reference(item.key), source_id=item.key)
        for item in attachments
        if item.key
    ]
    resolved = await resolver.resolve_many(requests, test_id=test_id)
    return [segment for segment in resolved if segment is not None]
