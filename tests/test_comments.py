"""Tests for the comment tokenizer and the comment interleaver."""

import re

import pytest

from runexport.adapters.testrail import FetchedAsset
from runexport.report.assets import AssetResolver
from runexport.report.comments import interleave_comment, tokenize_comment
from runexport.types import ImageSegment, TextSegment

from support import FakeFetcher, inline_reference, marker


def _shape(segments):
    shaped = []
    for segment in segments:
        if isinstance(segment, TextSegment):
            shaped.append(('text', segment.text))
        else:
            shaped.append(('image', segment.width, segment.height))
    return shaped


class TestTokenizeComment:
    """Tests for tokenize_comment."""

    def test_splits_text_and_markers(self):
        comment = f'See {marker(55)} and {marker(56)} done'
        stream = tokenize_comment(comment)
        tokens = list(stream)

        assert [token.kind for token in tokens] == ['text', 'marker', 'text', 'marker', 'text']
        assert [token.attachment_id for token in tokens if token.kind == 'marker'] == ['55', '56']
        assert tokens[1].reference == inline_reference(55)
        assert ''.join(stream.text(token) for token in tokens) == comment

    def test_stream_is_restartable(self):
        stream = tokenize_comment(f'a {marker(1)} b')
        assert list(stream) == list(stream)

    def test_marker_at_edges_has_no_empty_text(self):
        tokens = list(tokenize_comment(f'{marker(7)}{marker(8)}'))
        assert [token.kind for token in tokens] == ['marker', 'marker']

    def test_other_markdown_images_are_text(self):
        """Only TestRail attachment markers are image markers."""
        tokens = list(tokenize_comment('![logo](https://example.com/a.png) plain'))
        assert [token.kind for token in tokens] == ['text']

    def test_empty_comment(self):
        assert list(tokenize_comment('')) == []
        assert list(tokenize_comment(None)) == []


class TestInterleaveComment:
    """Tests for interleave_comment."""

    @pytest.mark.asyncio
    async def test_two_images_between_text(self, fetcher, resolver):
        """Text and images come out in the order they were written."""
        fetcher.add_image(inline_reference(55), 56, 28)
        fetcher.add_image(inline_reference(56), 56, 28)

        comment = f'See {marker(55)} and {marker(56)} done'
        segments = await interleave_comment(comment, resolver, test_id=1)

        assert _shape(segments) == [
            ('text', 'See'),
            ('image', 56, 28),
            ('text', 'and'),
            ('image', 56, 28),
            ('text', 'done'),
        ]
        assert [segment.source_id for segment in segments if isinstance(segment, ImageSegment)] == ['55', '56']

    @pytest.mark.asyncio
    async def test_failed_image_keeps_surrounding_text(self, fetcher, resolver):
        """A marker that cannot be fetched leaves no gap and no placeholder."""
        segments = await interleave_comment(f'A {marker(1)} B', resolver, test_id=3)

        assert _shape(segments) == [('text', 'A'), ('text', 'B')]
        assert len(resolver.skipped) == 1
        assert resolver.skipped[0].test_id == 3
        assert resolver.skipped[0].reference == inline_reference(1)

    @pytest.mark.asyncio
    async def test_non_image_payload_is_skipped(self, fetcher, resolver):
        fetcher.assets[inline_reference(9)] = FetchedAsset(data=b'<html></html>', content_type='text/html')
        fetcher.add_image(inline_reference(10), 40, 20)

        segments = await interleave_comment(f'x {marker(9)} y {marker(10)} z', resolver)

        assert _shape(segments) == [('text', 'x'), ('text', 'y'), ('image', 40, 20), ('text', 'z')]

    @pytest.mark.asyncio
    async def test_undecodable_image_is_skipped(self, fetcher, resolver):
        fetcher.assets[inline_reference(4)] = FetchedAsset(data=b'not really a png', content_type='image/png')

        segments = await interleave_comment(f'before {marker(4)} after', resolver)

        assert _shape(segments) == [('text', 'before'), ('text', 'after')]
        assert 'DecodeError' in resolver.skipped[0].reason

    @pytest.mark.asyncio
    async def test_wide_image_is_scaled(self, fetcher, resolver):
        fetcher.add_image(inline_reference(5), 1200, 800)

        segments = await interleave_comment(marker(5), resolver)

        assert _shape(segments) == [('image', 600, 400)]

    @pytest.mark.asyncio
    @pytest.mark.parametrize('comment', ['', None])
    async def test_empty_comment_contributes_nothing(self, resolver, comment):
        assert await interleave_comment(comment, resolver) == []

    @pytest.mark.asyncio
    async def test_plain_text_is_trimmed(self, resolver):
        segments = await interleave_comment('  Looks good\n', resolver)
        assert _shape(segments) == [('text', 'Looks good')]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        'comment',
        [
            f'Step 1 ok {marker(1)} Step 2 {marker(2)}{marker(3)} tail text',
            f'{marker(2)}\n\nonly after',
            f'line one\nline two {marker(1)}   ',
            'no markers at all',
        ],
    )
    async def test_text_order_matches_source(self, fetcher, resolver, comment):
        """Dropping images and joining text equals the comment without markers."""
        fetcher.add_image(inline_reference(1), 10, 10)

        segments = await interleave_comment(comment, resolver)
        text = ' '.join(segment.text for segment in segments if isinstance(segment, TextSegment))

        expected = re.sub(r'!\[\]\(index\.php\?/attachments/get/[^)]+\)', ' ', comment)
        assert ' '.join(text.split()) == ' '.join(expected.split())

    @pytest.mark.asyncio
    async def test_concurrent_fetches_keep_marker_order(self):
        """The slow first image still lands before the fast second one."""
        fetcher = FakeFetcher(delays={inline_reference(1): 0.05})
        fetcher.add_image(inline_reference(1), 10, 5)
        fetcher.add_image(inline_reference(2), 20, 10)
        resolver = AssetResolver(fetcher, max_width=600, concurrency=4)

        segments = await interleave_comment(f'a {marker(1)} b {marker(2)} c', resolver)

        assert _shape(segments) == [
            ('text', 'a'),
            ('image', 10, 5),
            ('text', 'b'),
            ('image', 20, 10),
            ('text', 'c'),
        ]
