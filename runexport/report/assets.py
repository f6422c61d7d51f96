from __future__ import annotations

import asyncio
import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from runexport.adapters.testrail import FetchedAsset
from runexport.errors import DecodeError, FetchError, GeometryError
from runexport.imaging import is_image_content_type, resolve_geometry, scale_to_width
from runexport.storage import asset_cache_path, find_cached_asset, write_bytes_atomic
from runexport.types import ImageSegment


logger = logging.getLogger(__name__)


class AssetFetcher(Protocol):
    async def fetch_asset(self, reference: str) -> FetchedAsset: ...


@dataclass(frozen=True)
class AssetRequest:
    reference: str
    source_id: str


@dataclass(frozen=True)
class SkippedAsset:
    reference: str
    source_id: str
    reason: str
    test_id: int | None = None


class AssetResolver:
    """Turns image references into scaled ``ImageSegment`` values.

    Failures never raise: the reference is logged, recorded in ``skipped`` and
    resolves to ``None`` so the caller can drop it without disturbing order.
    With ``concurrency`` above one, ``resolve_many`` fetches in parallel and
    joins the results back by request position.
    """

    def __init__(
        self,
        fetcher: AssetFetcher,
        *,
        max_width: int,
        cache_dir: Path | None = None,
        concurrency: int = 1,
    ):
        self.fetcher = fetcher
        self.max_width = int(max_width)
        self.cache_dir = cache_dir
        self.concurrency = max(1, int(concurrency))
        self._semaphore = asyncio.Semaphore(self.concurrency)
        self.skipped: list[SkippedAsset] = []
        self.resolved_count = 0

    async def fetch(self, request: AssetRequest) -> tuple[FetchedAsset, bool]:
        """Return the asset and whether it came from the disk cache."""
        if self.cache_dir is not None:
            cached = find_cached_asset(self.cache_dir, request.source_id)
            if cached is not None:
                content_type = mimetypes.guess_type(cached.name)[0] or 'application/octet-stream'
                return FetchedAsset(data=cached.read_bytes(), content_type=content_type), True

        async with self._semaphore:
            asset = await self.fetcher.fetch_asset(request.reference)
        return asset, False

    async def resolve(self, request: AssetRequest, *, test_id: int | None = None) -> ImageSegment | None:
        try:
            asset, from_cache = await self.fetch(request)
            if not is_image_content_type(asset.content_type):
                self._skip(request, test_id, f'non-image content type {asset.content_type or "(none)"}')
                return None
            geometry = resolve_geometry(asset.data)
            width, height = scale_to_width(geometry, self.max_width)
        except (FetchError, DecodeError, GeometryError) as exc:
            self._skip(request, test_id, f'{type(exc).__name__}: {exc}')
            return None

        # only payloads that decoded are cached
        if self.cache_dir is not None and not from_cache:
            write_bytes_atomic(asset_cache_path(self.cache_dir, request.source_id, asset.content_type), asset.data)
        self.resolved_count += 1
        return ImageSegment(
            source_id=request.source_id,
            width=width,
            height=height,
            data=asset.data,
            content_type=asset.content_type.split(';', 1)[0].strip().lower(),
        )

    async def resolve_many(
        self,
        requests: list[AssetRequest],
        *,
        test_id: int | None = None,
    ) -> list[ImageSegment | None]:
        if self.concurrency <= 1 or len(requests) <= 1:
            return [await self.resolve(request, test_id=test_id) for request in requests]

        async def _tagged(index: int, request: AssetRequest) -> tuple[int, ImageSegment | None]:
            return index, await self.resolve(request, test_id=test_id)

        tagged = await asyncio.gather(*(_tagged(idx, request) for idx, request in enumerate(requests)))
        ordered: list[ImageSegment | None] = [None] * len(requests)
        for index, segment in tagged:
            ordered[index] = segment
        return ordered

    def _skip(self, request: AssetRequest, test_id: int | None, reason: str) -> None:
        logger.warning(
            'Skipping image %s (id=%s) for test %s: %s',
            request.reference,
            request.source_id,
            test_id if test_id is not None else '-',
            reason,
        )
        self.skipped.append(
            SkippedAsset(reference=request.reference, source_id=request.source_id, reason=reason, test_id=test_id)
        )
