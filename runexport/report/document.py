from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Iterator, Protocol

from runexport.aggregate import group_by_status, summarize
from runexport.types import (
    STATUS_COLORS,
    CoverBlock,
    ImageSegment,
    ReportDocument,
    ResolvedResult,
    ResultBlock,
    StatusGroup,
    StatusLabel,
    StatusSection,
    TestBlock,
    TestCase,
    TestRun,
    TextSegment,
    utcnow,
)


COVER_TITLE_SIZE = 24
COVER_META_SIZE = 12
TEST_TITLE_SIZE = 15
RESULT_TITLE_SIZE = 12


@dataclass(frozen=True)
class SectionBreak:
    title: str | None
    new_page: bool = False


@dataclass(frozen=True)
class StatusHeader:
    title: str
    test_id: int
    status: StatusLabel
    color: str


@dataclass(frozen=True)
class Spacer:
    height: float


@dataclass(frozen=True)
class Rule:
    pass


DocumentNode = SectionBreak | TextSegment | StatusHeader | ImageSegment | Spacer | Rule


class DocumentSink(Protocol):
    def add_section(self, title: str | None, *, new_page: bool = False) -> None: ...

    def add_paragraph(self, text: str, *, size: float, bold: bool = False, alignment: str = 'left') -> None: ...

    def add_status_header(self, *, title: str, test_id: int, status: str, color: str) -> None: ...

    def add_image(self, segment: ImageSegment) -> None: ...

    def add_spacer(self, height: float) -> None: ...

    def add_rule(self) -> None: ...

    def close(self) -> None: ...


def _format_datetime(dt: datetime) -> str:
    return dt.strftime('%Y-%m-%d %H:%M:%S %Z').strip()


def cover_nodes(cover: CoverBlock) -> Iterator[DocumentNode]:
    summary = cover.summary
    yield SectionBreak(title=None)
    yield TextSegment(text=cover.run_name or f'Run {cover.run_id}', size=COVER_TITLE_SIZE, bold=True, alignment='center')
    yield Spacer(height=15)
    yield TextSegment(text=f'Run ID: {cover.run_id}', size=COVER_META_SIZE)
    yield TextSegment(text=f'Test Run Name: {cover.run_name}', size=COVER_META_SIZE)
    yield TextSegment(text=f'Associated JIRA: {cover.refs}', size=COVER_META_SIZE)
    yield TextSegment(text=f'Generated On: {_format_datetime(cover.generated_at)}', size=COVER_META_SIZE)
    yield TextSegment(text=f'Total Tests: {summary.total}', size=COVER_META_SIZE)
    yield TextSegment(text=f'Passed: {summary.passed} ({summary.passed_percent:.1f}%)', size=COVER_META_SIZE)


def section_nodes(label: StatusLabel, *, first: bool) -> Iterator[DocumentNode]:
    yield SectionBreak(title=f'Status: {label.value}', new_page=first)


def case_nodes(block: TestBlock) -> Iterator[DocumentNode]:
    test = block.test
    yield TextSegment(text=test.title, size=TEST_TITLE_SIZE, bold=True, alignment='center')
    yield Rule()
    yield StatusHeader(
        title=test.title,
        test_id=test.id,
        status=block.status,
        color=STATUS_COLORS[block.status],
    )
    for result in block.results:
        yield TextSegment(text=f'Result {result.number}', size=RESULT_TITLE_SIZE, bold=True)
        yield from result.segments
        yield Spacer(height=15)
    yield Spacer(height=10)


def make_test_block(test: TestCase, results: Iterable[ResolvedResult]) -> TestBlock:
    blocks = [
        ResultBlock(number=number, segments=result.segments)
        for number, result in enumerate(results, start=1)
    ]
    return TestBlock(test=test, results=blocks)


class DocumentBuilder:
    """Composes resolved segments into the section/test/result hierarchy.

    Grouping and the cover summary are fixed from the test list given at
    construction; results are attached per test and never reordered.
    """

    def __init__(self, run: TestRun, tests: list[TestCase], *, generated_at: datetime | None = None):
        self.run = run
        self.tests = list(tests)
        self.generated_at = generated_at or utcnow()
        self.groups: list[StatusGroup] = group_by_status(self.tests)
        self._results: dict[int, list[ResolvedResult]] = {}

    def cover_block(self) -> CoverBlock:
        return CoverBlock(
            run_id=self.run.id,
            run_name=self.run.name,
            refs=(self.run.refs or '').strip() or 'N/A',
            generated_at=self.generated_at,
            summary=summarize(self.tests),
        )

    def add_results(self, test_id: int, results: list[ResolvedResult]) -> None:
        self._results[test_id] = list(results)

    def test_block(self, test: TestCase) -> TestBlock:
        return make_test_block(test, self._results.get(test.id, []))

    def build(self) -> ReportDocument:
        sections = [
            StatusSection(label=group.label, tests=[self.test_block(test) for test in group.tests])
            for group in self.groups
        ]
        return ReportDocument(cover=self.cover_block(), sections=sections)

    def iter_nodes(self) -> Iterator[DocumentNode]:
        """Flattened node stream equal to ``document_nodes(self.build())``."""
        yield from cover_nodes(self.cover_block())
        for index, group in enumerate(self.groups):
            yield from section_nodes(group.label, first=index == 0)
            for test in group.tests:
                yield from case_nodes(self.test_block(test))


def document_nodes(document: ReportDocument) -> Iterator[DocumentNode]:
    yield from cover_nodes(document.cover)
    for index, section in enumerate(document.sections):
        yield from section_nodes(section.label, first=index == 0)
        for block in section.tests:
            yield from case_nodes(block)


def write_nodes(nodes: Iterable[DocumentNode], sink: DocumentSink) -> int:
    count = 0
    for node in nodes:
        if isinstance(node, SectionBreak):
            sink.add_section(node.title, new_page=node.new_page)
        elif isinstance(node, TextSegment):
            sink.add_paragraph(node.text, size=node.size, bold=node.bold, alignment=node.alignment)
        elif isinstance(node, StatusHeader):
            sink.add_status_header(title=node.title, test_id=node.test_id, status=node.status.value, color=node.color)
        elif isinstance(node, ImageSegment):
            sink.add_image(node)
        elif isinstance(node, Spacer):
            sink.add_spacer(node.height)
        elif isinstance(node, Rule):
            sink.add_rule()
        else:
            raise TypeError(f'unsupported document node: {type(node).__name__}')
        count += 1
    return count


def render_document(document: ReportDocument, sink: DocumentSink) -> int:
    return write_nodes(document_nodes(document), sink)
