from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from runexport.errors import FetchError


logger = logging.getLogger(__name__)

API_PREFIX = 'index.php?/api/v2'
# TestRail caps a page of get_tests at 250 rows; guards against a server that loops
MAX_TEST_PAGES = 1000


@dataclass
class TestRailConfig:
    __test__ = False

    base_url: str
    session_token: str | None
    user: str | None
    api_key: str | None
    timeout_seconds: float


@dataclass
class FetchedAsset:
    data: bytes
    content_type: str


def attachment_reference(attachment_id: int | str) -> str:
    return f'{API_PREFIX}/get_attachment/{attachment_id}'


class TestRailAdapter:
    """Async client for the subset of the TestRail REST surface an export reads.

    One ``httpx.AsyncClient`` is opened lazily and shared by every request of
    an export; use the adapter as an async context manager to close it.
    """

    __test__ = False

    def __init__(self, cfg: TestRailConfig, *, transport: httpx.AsyncBaseTransport | None = None):
        self.cfg = cfg
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def configured(self) -> bool:
        return bool(self.cfg.base_url)

    @property
    def authenticated(self) -> bool:
        return bool(self.cfg.session_token or (self.cfg.user and self.cfg.api_key))

    async def __aenter__(self) -> TestRailAdapter:
        self.client()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def client(self) -> httpx.AsyncClient:
        if not self.configured:
            raise RuntimeError('TestRail base URL is not configured')
        if self._client is None:
            cookies: dict[str, str] = {}
            auth: tuple[str, str] | None = None
            if self.cfg.session_token:
                cookies['tr_session'] = self.cfg.session_token
            elif self.cfg.user and self.cfg.api_key:
                auth = (self.cfg.user, self.cfg.api_key)
            self._client = httpx.AsyncClient(
                timeout=max(1.0, float(self.cfg.timeout_seconds)),
                cookies=cookies,
                auth=auth,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get_run(self, run_id: int) -> dict[str, Any]:
        payload = await self.get_json(f'{API_PREFIX}/get_run/{run_id}')
        if not isinstance(payload, dict):
            raise FetchError(f'get_run/{run_id}', 'run payload is not an object')
        return payload

    async def get_tests(self, run_id: int) -> list[dict[str, Any]]:
        """Return every test of a run, following ``_links.next`` pages."""
        reference: str | None = f'{API_PREFIX}/get_tests/{run_id}'
        rows: list[dict[str, Any]] = []
        pages = 0
        while reference and pages < MAX_TEST_PAGES:
            payload = await self.get_json(reference)
            pages += 1
            if isinstance(payload, list):
                rows.extend(item for item in payload if isinstance(item, dict))
                break
            if not isinstance(payload, dict) or not isinstance(payload.get('tests'), list):
                raise FetchError(reference, 'tests payload has no tests list')
            rows.extend(item for item in payload['tests'] if isinstance(item, dict))
            reference = self._next_page(payload)
        return rows

    async def get_results(self, test_id: int) -> Any:
        return await self.get_json(f'{API_PREFIX}/get_results/{test_id}')

    async def get_json(self, reference: str) -> Any:
        response = await self._get(reference, headers={'Content-Type': 'application/json'})
        try:
            return response.json()
        except ValueError as exc:
            raise FetchError(reference, f'invalid JSON body: {exc}') from exc

    async def fetch_asset(self, reference: str) -> FetchedAsset:
        response = await self._get(reference)
        content_type = str(response.headers.get('content-type') or '').strip()
        return FetchedAsset(data=response.content, content_type=content_type)

    async def _get(self, reference: str, *, headers: dict[str, str] | None = None) -> httpx.Response:
        url = self._resolve_possible_url(reference)
        try:
            response = await self.client().get(url, headers=headers)
        except httpx.TimeoutException as exc:
            raise FetchError(reference, f'timeout: {exc}') from exc
        except httpx.HTTPError as exc:
            raise FetchError(reference, f'{type(exc).__name__}: {exc}') from exc
        if not response.is_success:
            raise FetchError(
                reference,
                f'HTTP {response.status_code}: {self._error_detail(response)}',
                status_code=response.status_code,
            )
        return response

    def _next_page(self, payload: dict[str, Any]) -> str | None:
        links = payload.get('_links')
        if not isinstance(links, dict):
            return None
        raw = str(links.get('next') or '').strip()
        if not raw:
            return None
        if raw.startswith('http://') or raw.startswith('https://') or raw.startswith('index.php'):
            return raw
        return f"index.php?/{raw.lstrip('/')}"

    def _build_url(self, endpoint: str) -> str:
        return f"{self.cfg.base_url.rstrip('/')}/{endpoint.lstrip('/')}"

    def _resolve_possible_url(self, value: str) -> str:
        token = str(value or '').strip()
        if not token:
            raise FetchError(str(value), 'empty resource reference')
        if token.startswith('http://') or token.startswith('https://'):
            return token
        return self._build_url(token)

    def _error_detail(self, response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.reason_phrase or 'request failed'
        if isinstance(payload, dict) and payload.get('error'):
            return str(payload['error'])
        return response.reason_phrase or 'request failed'
