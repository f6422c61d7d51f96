"""
Shared pytest fixtures.

Every test gets its own export directory and a fresh settings cache so
nothing leaks between tests through ``get_settings``.
"""

import pytest

from runexport.config import get_settings
from runexport.report.assets import AssetResolver

from support import BASE_URL, FakeFetcher


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path_factory, monkeypatch):
    monkeypatch.setenv('TESTRAIL_URL', BASE_URL)
    monkeypatch.setenv('DATA_DIR', str(tmp_path_factory.mktemp('exports')))
    monkeypatch.setenv('FETCH_CONCURRENCY', '1')
    monkeypatch.setenv('MAX_IMAGE_WIDTH', '600')
    for name in ('TESTRAIL_SESSION_TOKEN', 'TESTRAIL_SESSION', 'TR_SESSION', 'TESTRAIL_USER', 'TESTRAIL_API_KEY'):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def resolver(fetcher):
    return AssetResolver(fetcher, max_width=600)
