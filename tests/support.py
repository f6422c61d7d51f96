"""Helpers shared by the test modules (images, fake fetchers, mock TestRail)."""

from __future__ import annotations

import asyncio
import json
from io import BytesIO
from typing import Any, Callable

import httpx
from PIL import Image

from runexport.adapters.testrail import FetchedAsset, TestRailAdapter, TestRailConfig
from runexport.errors import FetchError


BASE_URL = 'http://testrail.local'


def make_png(width: int, height: int, color: tuple[int, int, int] = (200, 30, 30)) -> bytes:
    buffer = BytesIO()
    Image.new('RGB', (width, height), color).save(buffer, format='PNG')
    return buffer.getvalue()


def marker(attachment_id: int | str) -> str:
    return f'![](index.php?/attachments/get/{attachment_id})'


def inline_reference(attachment_id: int | str) -> str:
    return f'index.php?/attachments/get/{attachment_id}'


class FakeFetcher:
    """In-memory asset fetcher; unknown references fail like a 404."""

    def __init__(self, assets: dict[str, FetchedAsset | Exception] | None = None, delays: dict[str, float] | None = None):
        self.assets = dict(assets or {})
        self.delays = dict(delays or {})
        self.calls: list[str] = []

    def add_image(self, reference: str, width: int, height: int) -> None:
        self.assets[reference] = FetchedAsset(data=make_png(width, height), content_type='image/png')

    async def fetch_asset(self, reference: str) -> FetchedAsset:
        self.calls.append(reference)
        delay = self.delays.get(reference)
        if delay:
            await asyncio.sleep(delay)
        asset = self.assets.get(reference)
        if asset is None:
            raise FetchError(reference, 'HTTP 404: not found', status_code=404)
        if isinstance(asset, Exception):
            raise asset
        return asset


class RecordingSink:
    """Document sink that keeps every call so tests can assert the layout."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.closed = False

    def add_section(self, title: str | None, *, new_page: bool = False) -> None:
        self.calls.append(('section', (title, new_page)))

    def add_paragraph(self, text: str, *, size: float, bold: bool = False, alignment: str = 'left') -> None:
        self.calls.append(('paragraph', text))

    def add_status_header(self, *, title: str, test_id: int, status: str, color: str) -> None:
        self.calls.append(('status_header', (test_id, status, color)))

    def add_image(self, segment) -> None:
        self.calls.append(('image', (segment.source_id, segment.width, segment.height)))

    def add_spacer(self, height: float) -> None:
        self.calls.append(('spacer', height))

    def add_rule(self) -> None:
        self.calls.append(('rule', None))

    def close(self) -> None:
        self.closed = True

    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.calls]

    def paragraphs(self) -> list[str]:
        return [value for kind, value in self.calls if kind == 'paragraph']


Route = Callable[[httpx.Request], httpx.Response]


def json_response(payload: Any, status_code: int = 200) -> httpx.Response:
    return httpx.Response(
        status_code,
        content=json.dumps(payload).encode('utf-8'),
        headers={'content-type': 'application/json'},
    )


def png_response(width: int, height: int) -> httpx.Response:
    return httpx.Response(200, content=make_png(width, height), headers={'content-type': 'image/png'})


class MockTestRail:
    """Routes requests by the ``index.php?`` query path to canned responses."""

    __test__ = False

    def __init__(self, routes: dict[str, httpx.Response | Route]):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.query.decode('utf-8')
        route = self.routes.get(path)
        if route is None:
            return json_response({'error': f'no route for {path}'}, status_code=404)
        if callable(route):
            return route(request)
        # fresh copy so one canned response can serve repeated requests
        return httpx.Response(route.status_code, headers=route.headers, content=route.content)

    def paths(self) -> list[str]:
        return [request.url.query.decode('utf-8') for request in self.requests]

    def adapter(self, **overrides: Any) -> TestRailAdapter:
        cfg = TestRailConfig(
            base_url=overrides.get('base_url', BASE_URL),
            session_token=overrides.get('session_token', 'secret-session'),
            user=overrides.get('user'),
            api_key=overrides.get('api_key'),
            timeout_seconds=overrides.get('timeout_seconds', 5.0),
        )
        return TestRailAdapter(cfg, transport=httpx.MockTransport(self.handler))
