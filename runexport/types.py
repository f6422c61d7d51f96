from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StatusLabel(str, Enum):
    passed = 'Passed'
    blocked = 'Blocked'
    untested = 'Untested'
    retest = 'Retest'
    failed = 'Failed'
    unknown = 'Unknown'


# Fixed section order of the exported document.
STATUS_ORDER: tuple[StatusLabel, ...] = (
    StatusLabel.passed,
    StatusLabel.blocked,
    StatusLabel.untested,
    StatusLabel.retest,
    StatusLabel.failed,
    StatusLabel.unknown,
)

STATUS_CODES: dict[int, StatusLabel] = {
    1: StatusLabel.passed,
    2: StatusLabel.blocked,
    3: StatusLabel.untested,
    4: StatusLabel.retest,
    5: StatusLabel.failed,
}

STATUS_COLORS: dict[StatusLabel, str] = {
    StatusLabel.passed: '00FF00',
    StatusLabel.blocked: 'FFA500',
    StatusLabel.untested: 'D3D3D3',
    StatusLabel.retest: 'FFFF00',
    StatusLabel.failed: 'FF0000',
    StatusLabel.unknown: 'FFFFFF',
}


class TestRun(BaseModel):
    __test__ = False

    id: int
    name: str = ''
    refs: str | None = None
    description: str | None = None
    created_on: int | None = None
    created_by: int | None = None

    @field_validator('name', mode='before')
    @classmethod
    def _name_or_empty(cls, value: Any) -> Any:
        return '' if value is None else value


class TestCase(BaseModel):
    __test__ = False

    id: int
    title: str = ''
    status_id: int | None = None
    case_id: int | None = None

    @field_validator('title', mode='before')
    @classmethod
    def _title_or_empty(cls, value: Any) -> Any:
        return '' if value is None else value

    @property
    def status(self) -> StatusLabel:
        if self.status_id is None:
            return StatusLabel.unknown
        return STATUS_CODES.get(self.status_id, StatusLabel.unknown)


class AttachmentRef(BaseModel):
    id: int | str
    name: str | None = None

    @property
    def key(self) -> str:
        return str(self.id).strip()


class TestResult(BaseModel):
    __test__ = False

    id: int | None = None
    test_id: int | None = None
    status_id: int | None = None
    comment: str | None = None
    attachments: list[AttachmentRef] = Field(default_factory=list)

    @field_validator('attachments', mode='before')
    @classmethod
    def _usable_attachments(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict) and item.get('id') not in (None, '')]


class PartialFailure(BaseModel):
    kind: str  # 'results' | 'image'
    reason: str
    test_id: int | None = None
    reference: str | None = None


class ExportOutcome(BaseModel):
    run_id: int
    run_name: str
    document_path: str
    manifest_path: str
    generated_at: datetime = Field(default_factory=utcnow)

    total_tests: int = 0
    passed: int = 0
    passed_percent: float = 0.0
    sections: dict[str, int] = Field(default_factory=dict)
    results_exported: int = 0
    images_embedded: int = 0
    partial_failures: list[PartialFailure] = Field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.partial_failures)


@dataclass(frozen=True)
class StatusGroup:
    label: StatusLabel
    tests: list[TestCase]


@dataclass(frozen=True)
class RunSummary:
    total: int
    passed: int
    passed_percent: float


@dataclass(frozen=True)
class TextSegment:
    text: str
    size: float = 11
    bold: bool = False
    alignment: str = 'left'


@dataclass(frozen=True)
class ImageSegment:
    source_id: str
    width: int
    height: int
    data: bytes = field(repr=False)
    content_type: str = 'image/png'


Segment = TextSegment | ImageSegment


@dataclass(frozen=True)
class ResolvedResult:
    """Segments of one relevant result: comment layout first, then attachments."""

    comment_segments: list[Segment] = field(default_factory=list)
    attachment_segments: list[ImageSegment] = field(default_factory=list)

    @property
    def segments(self) -> list[Segment]:
        return [*self.comment_segments, *self.attachment_segments]


@dataclass(frozen=True)
class ResultBlock:
    number: int
    segments: list[Segment]


@dataclass(frozen=True)
class TestBlock:
    __test__ = False

    test: TestCase
    results: list[ResultBlock]

    @property
    def status(self) -> StatusLabel:
        return self.test.status


@dataclass(frozen=True)
class StatusSection:
    label: StatusLabel
    tests: list[TestBlock]


@dataclass(frozen=True)
class CoverBlock:
    run_id: int
    run_name: str
    refs: str
    generated_at: datetime
    summary: RunSummary


@dataclass(frozen=True)
class ReportDocument:
    cover: CoverBlock
    sections: list[StatusSection]
