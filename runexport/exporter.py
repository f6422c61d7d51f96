from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import httpx
from pydantic import ValidationError

from runexport.adapters.testrail import TestRailAdapter, TestRailConfig
from runexport.aggregate import (
    normalize_results,
    parse_run,
    parse_tests,
    select_relevant_results,
    select_tests,
)
from runexport.config import get_settings
from runexport.errors import ExportAbortedError, FetchError
from runexport.ranges import TestSelection
from runexport.report.assets import AssetResolver
from runexport.report.attachments import render_attachments
from runexport.report.comments import interleave_comment
from runexport.report.document import (
    DocumentBuilder,
    DocumentSink,
    case_nodes,
    cover_nodes,
    make_test_block,
    render_document,
    section_nodes,
    write_nodes,
)
from runexport.report.pdf_export import PdfSink
from runexport.storage import append_event, attachments_dir, export_paths, write_json_atomic
from runexport.types import (
    ExportOutcome,
    PartialFailure,
    ResolvedResult,
    TestCase,
    TestRun,
    utcnow,
)


logger = logging.getLogger(__name__)

SinkFactory = Callable[[Path, TestRun], DocumentSink]


@dataclass
class ExportOptions:
    run_id: int
    selection: TestSelection | None = None
    output_path: Path | None = None
    max_image_width: int | None = None
    fetch_concurrency: int | None = None
    # write each test to the sink as soon as it is resolved instead of building
    # the full tree first. PdfSink still keeps every flowable (image bytes
    # included) until close, so with the default sink this saves the
    # resolved-result tree but not peak memory.
    stream: bool = False
    cache_images: bool = True


@dataclass
class ExportContext:
    adapter: TestRailAdapter
    resolver: AssetResolver
    events_path: Path
    concurrency: int
    failures: list[PartialFailure] = field(default_factory=list)

    def record_failure(self, failure: PartialFailure) -> None:
        self.failures.append(failure)
        append_event(self.events_path, 'partial_failure', **failure.model_dump(mode='json'))


def _build_testrail_adapter(transport: httpx.AsyncBaseTransport | None = None) -> TestRailAdapter:
    settings = get_settings()
    return TestRailAdapter(
        TestRailConfig(
            base_url=settings.testrail_url,
            session_token=settings.testrail_session_token,
            user=settings.testrail_user,
            api_key=settings.testrail_api_key,
            timeout_seconds=settings.request_timeout_seconds,
        ),
        transport=transport,
    )


def _default_sink(output_path: Path, run: TestRun) -> DocumentSink:
    settings = get_settings()
    return PdfSink(
        output_path,
        title=f'Test Run {run.id} Export',
        author=settings.pdf_author,
        creator=settings.app_name,
        font_name=settings.pdf_font_name,
        title_font_size=settings.pdf_title_font_size,
        body_font_size=settings.pdf_body_font_size,
        margin=settings.pdf_page_margin,
    )


async def _load_run(
    adapter: TestRailAdapter,
    options: ExportOptions,
    events_path: Path,
) -> tuple[TestRun, list[TestCase]]:
    try:
        run = parse_run(await adapter.get_run(options.run_id))
        rows = await adapter.get_tests(options.run_id)
    except (FetchError, ValidationError) as exc:
        logger.error('Error fetching run %s: %s', options.run_id, exc)
        append_event(events_path, 'export_aborted', run_id=options.run_id, error=str(exc))
        raise ExportAbortedError(f'cannot load run {options.run_id}: {exc}') from exc

    tests = parse_tests(rows)
    if options.selection is not None and options.selection.restricts:
        wanted = options.selection.resolve(test.id for test in tests)
        tests = select_tests(tests, wanted)
        missing = sorted(set(wanted) - {test.id for test in tests})
        if missing:
            logger.warning('Run %s has no tests with ids %s', options.run_id, missing)
    return run, tests


async def resolve_case_results(ctx: ExportContext, test: TestCase) -> list[ResolvedResult]:
    try:
        payload = await ctx.adapter.get_results(test.id)
    except FetchError as exc:
        logger.warning('Failed to get results for test %s: %s', test.id, exc)
        ctx.record_failure(PartialFailure(kind='results', test_id=test.id, reference=exc.reference, reason=str(exc)))
        return []

    resolved: list[ResolvedResult] = []
    for result in select_relevant_results(normalize_results(payload)):
        comment_segments = await interleave_comment(result.comment, ctx.resolver, test_id=test.id)
        attachment_segments = await render_attachments(result.attachments, ctx.resolver, test_id=test.id)
        resolved.append(ResolvedResult(comment_segments=comment_segments, attachment_segments=attachment_segments))
    return resolved


async def _resolve_all(ctx: ExportContext, tests: list[TestCase]) -> list[list[ResolvedResult]]:
    if ctx.concurrency <= 1:
        return [await resolve_case_results(ctx, test) for test in tests]

    semaphore = asyncio.Semaphore(ctx.concurrency)

    async def _tagged(index: int, test: TestCase) -> tuple[int, list[ResolvedResult]]:
        async with semaphore:
            return index, await resolve_case_results(ctx, test)

    tagged = await asyncio.gather(*(_tagged(idx, test) for idx, test in enumerate(tests)))
    ordered: list[list[ResolvedResult]] = [[] for _ in tests]
    for index, results in tagged:
        ordered[index] = results
    return ordered


async def export_run_async(
    options: ExportOptions,
    *,
    adapter: TestRailAdapter | None = None,
    sink_factory: SinkFactory | None = None,
) -> ExportOutcome:
    settings = get_settings()
    paths = export_paths(options.run_id, document_path=options.output_path)
    events_path = paths['events']
    concurrency = max(1, int(options.fetch_concurrency or settings.fetch_concurrency))
    max_width = int(options.max_image_width or settings.max_image_width)

    append_event(events_path, 'export_started', run_id=options.run_id, concurrency=concurrency, max_width=max_width)

    adapter = adapter or _build_testrail_adapter()
    if not adapter.authenticated:
        logger.warning('No TestRail session token or API key configured; requests are sent without credentials')
    async with adapter as client:
        run, tests = await _load_run(client, options, events_path)
        logger.info('Exporting run %s (%s): %d tests', run.id, run.name, len(tests))

        ctx = ExportContext(
            adapter=client,
            resolver=AssetResolver(
                client,
                max_width=max_width,
                cache_dir=attachments_dir() if options.cache_images else None,
                concurrency=concurrency,
            ),
            events_path=events_path,
            concurrency=concurrency,
        )
        builder = DocumentBuilder(run, tests, generated_at=utcnow())
        sink = (sink_factory or _default_sink)(paths['document'], run)
        ordered_tests = [test for group in builder.groups for test in group.tests]
        results_exported = 0

        if options.stream:
            write_nodes(cover_nodes(builder.cover_block()), sink)
            for index, group in enumerate(builder.groups):
                write_nodes(section_nodes(group.label, first=index == 0), sink)
                for test in group.tests:
                    results = await resolve_case_results(ctx, test)
                    results_exported += len(results)
                    write_nodes(case_nodes(make_test_block(test, results)), sink)
        else:
            for test, results in zip(ordered_tests, await _resolve_all(ctx, ordered_tests)):
                builder.add_results(test.id, results)
                results_exported += len(results)
            render_document(builder.build(), sink)

    sink.close()
    images_embedded = ctx.resolver.resolved_count

    for skipped in ctx.resolver.skipped:
        ctx.record_failure(
            PartialFailure(kind='image', test_id=skipped.test_id, reference=skipped.reference, reason=skipped.reason)
        )

    cover = builder.cover_block()
    outcome = ExportOutcome(
        run_id=run.id,
        run_name=run.name,
        document_path=str(paths['document']),
        manifest_path=str(paths['manifest']),
        generated_at=builder.generated_at,
        total_tests=cover.summary.total,
        passed=cover.summary.passed,
        passed_percent=cover.summary.passed_percent,
        sections={group.label.value: len(group.tests) for group in builder.groups},
        results_exported=results_exported,
        images_embedded=images_embedded,
        partial_failures=ctx.failures,
    )
    write_json_atomic(paths['manifest'], outcome.model_dump(mode='json'))
    append_event(
        events_path,
        'export_completed',
        document_path=outcome.document_path,
        results_exported=results_exported,
        images_embedded=images_embedded,
        partial_failures=len(outcome.partial_failures),
    )
    return outcome


def export_run(options: ExportOptions) -> ExportOutcome:
    return asyncio.run(export_run_async(options))
