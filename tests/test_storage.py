"""Tests for export paths, the asset cache layout and settings."""

import json

import pytest

from runexport.config import get_settings
from runexport.storage import (
    append_event,
    asset_cache_path,
    export_paths,
    extension_for,
    find_cached_asset,
    safe_asset_key,
    write_bytes_atomic,
)


class TestExportPaths:
    """Tests for export_paths."""

    def test_default_names(self, isolated_settings):
        paths = export_paths('4408')

        assert paths['document'] == isolated_settings.data_dir / 'TestRun_4408_Export.pdf'
        assert paths['manifest'].name == 'TestRun_4408_Export.json'
        assert paths['events'].name == 'TestRun_4408_Export.events.jsonl'

    def test_explicit_document_path(self, tmp_path):
        paths = export_paths(1, document_path=tmp_path / 'report.pdf')
        assert paths['manifest'] == tmp_path / 'report.json'
        assert paths['events'].parent == tmp_path

    @pytest.mark.parametrize('run_id', ['', 'abc', '../1', None])
    def test_invalid_run_id(self, run_id):
        with pytest.raises(ValueError):
            export_paths(run_id)


class TestAssetCacheLayout:
    """Tests for asset cache naming."""

    @pytest.mark.parametrize(
        'content_type,suffix',
        [('image/png', '.png'), ('image/jpeg; q=1', '.jpg'), ('IMAGE/GIF', '.gif'), ('application/x-unknown', '.bin')],
    )
    def test_extension_for(self, content_type, suffix):
        assert extension_for(content_type) == suffix

    def test_plain_ids_are_kept(self):
        assert safe_asset_key(55) == '55'
        assert safe_asset_key('2b7e-x_1') == '2b7e-x_1'

    @pytest.mark.parametrize('asset_id', ['.', '_', '..', '../55', 'a/b', '  '])
    def test_other_ids_map_to_a_digest(self, asset_id):
        key = safe_asset_key(asset_id)
        assert key.startswith('h') and len(key) == 25
        assert '/' not in key and key.strip('._')

    def test_distinct_ids_never_share_a_key(self):
        assert safe_asset_key('a/b') != safe_asset_key('a_b')
        assert safe_asset_key('.') != safe_asset_key('_')

    def test_lookup_by_id_ignores_temp_files(self, tmp_path):
        write_bytes_atomic(asset_cache_path(tmp_path, 55, 'image/png'), b'png')
        (tmp_path / 'attachment_5.jpg.tmp').write_bytes(b'partial')
        (tmp_path / 'attachment_555.png').write_bytes(b'other')

        assert find_cached_asset(tmp_path, 55) == tmp_path / 'attachment_55.png'
        assert find_cached_asset(tmp_path, 5) is None
        assert find_cached_asset(tmp_path / 'missing', 55) is None


class TestEvents:
    """Tests for append_event."""

    def test_appends_json_lines(self, tmp_path):
        events = tmp_path / 'run.events.jsonl'
        append_event(events, 'export_started', run_id=1)
        append_event(events, 'partial_failure', test_id=3, reason='HTTP 404')

        rows = [json.loads(line) for line in events.read_text(encoding='utf-8').splitlines()]
        assert [row['event'] for row in rows] == ['export_started', 'partial_failure']
        assert rows[1]['test_id'] == 3
        assert 'ts' in rows[0]


class TestSettings:
    """Tests for environment-driven settings."""

    def test_session_alias(self, monkeypatch):
        monkeypatch.setenv('TR_SESSION', 'abc')
        get_settings.cache_clear()

        assert get_settings().testrail_session_token == 'abc'

    def test_directories_are_created(self, isolated_settings):
        assert isolated_settings.data_dir.is_dir()
        assert (isolated_settings.data_dir / 'attachments').is_dir()
        assert isolated_settings.max_image_width == 600
