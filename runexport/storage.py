from __future__ import annotations

import hashlib
import json
import mimetypes
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import get_settings


_UNSAFE_KEY_CHARS = re.compile(r'[^A-Za-z0-9_.-]')

# mimetypes guesses odd extensions for a few common image types
_PREFERRED_EXTENSIONS = {
    'image/jpeg': '.jpg',
    'image/png': '.png',
    'image/gif': '.gif',
    'image/webp': '.webp',
    'image/bmp': '.bmp',
    'image/tiff': '.tiff',
}


def output_root() -> Path:
    root = get_settings().data_dir
    root.mkdir(parents=True, exist_ok=True)
    return root


def attachments_dir() -> Path:
    settings = get_settings()
    path = settings.data_dir / settings.attachments_dirname
    path.mkdir(parents=True, exist_ok=True)
    return path


def _safe_run_id(run_id: int | str) -> str:
    token = str(run_id or '').strip()
    if not token.isdigit():
        raise ValueError(f'invalid run_id: {run_id}')
    return str(int(token))


def export_paths(run_id: int | str, *, document_path: Path | None = None) -> dict[str, Path]:
    stem = get_settings().output_name_template.format(run_id=_safe_run_id(run_id))
    document = document_path or output_root() / f'{stem}.pdf'
    return {
        'document': document,
        'manifest': document.with_suffix('.json'),
        'events': document.parent / f'{stem}.events.jsonl',
    }


def safe_asset_key(asset_id: int | str) -> str:
    """File-name key for an attachment id.

    Ids that are already plain names are used as-is; anything else (path
    separators, dots only, whitespace) maps to a digest of the raw id so two
    distinct ids never share a cache file.
    """
    token = str(asset_id if asset_id is not None else '').strip()
    if token.strip('._') and not _UNSAFE_KEY_CHARS.search(token):
        return token
    return 'h' + hashlib.sha256(str(asset_id).encode('utf-8')).hexdigest()[:24]


def extension_for(content_type: str | None) -> str:
    media_type = str(content_type or '').split(';', 1)[0].strip().lower()
    if media_type in _PREFERRED_EXTENSIONS:
        return _PREFERRED_EXTENSIONS[media_type]
    return mimetypes.guess_extension(media_type) or '.bin'


def asset_cache_path(cache_dir: Path, asset_id: int | str, content_type: str | None) -> Path:
    return cache_dir / f'attachment_{safe_asset_key(asset_id)}{extension_for(content_type)}'


def find_cached_asset(cache_dir: Path, asset_id: int | str) -> Path | None:
    prefix = f'attachment_{safe_asset_key(asset_id)}.'
    if not cache_dir.exists():
        return None
    for candidate in sorted(cache_dir.iterdir()):
        if candidate.name.startswith(prefix) and not candidate.name.endswith('.tmp') and candidate.is_file():
            return candidate
    return None


def write_bytes_atomic(path: Path, payload: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + '.tmp')
    tmp.write_bytes(payload)
    tmp.replace(path)


def write_json_atomic(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + '.tmp')
    tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding='utf-8')
    tmp.replace(path)


def read_json(path: Path) -> dict[str, Any]:
    return json.loads(path.read_text(encoding='utf-8'))


def append_event(events_file: Path, event: str, **extra: Any) -> None:
    now = datetime.now(timezone.utc).isoformat()
    row = {
        'ts': now,
        'event': event,
        **extra,
    }
    events_file.parent.mkdir(parents=True, exist_ok=True)
    with events_file.open('a', encoding='utf-8') as f:
        f.write(json.dumps(row, ensure_ascii=False, default=str) + '\n')
