from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore',
    )

    app_name: str = 'TestRail Run Exporter'

    data_dir: Path = Field(default=Path('./exports'))
    attachments_dirname: str = 'attachments'
    output_name_template: str = 'TestRun_{run_id}_Export'

    # TestRail REST surface
    testrail_url: str = Field(
        default='http://localhost',
        validation_alias=AliasChoices('TESTRAIL_URL', 'TESTRAIL_BASE_URL'),
    )
    testrail_session_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices('TESTRAIL_SESSION_TOKEN', 'TESTRAIL_SESSION', 'TR_SESSION'),
    )
    testrail_user: str | None = None
    testrail_api_key: str | None = None
    request_timeout_seconds: float = 30.0

    # Assembly
    max_image_width: int = 600
    # 1 keeps every fetch strictly sequential
    fetch_concurrency: int = 1

    log_level: str = 'INFO'

    # PDF export
    pdf_font_name: str = 'Helvetica'
    pdf_title_font_size: int = 24
    pdf_body_font_size: int = 11
    pdf_page_margin: int = 48
    pdf_author: str = 'TestRail Exporter'


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    (settings.data_dir / settings.attachments_dirname).mkdir(parents=True, exist_ok=True)
    return settings
