from __future__ import annotations

import logging
from typing import Any, Iterable

from pydantic import ValidationError

from .types import (
    STATUS_CODES,
    STATUS_ORDER,
    RunSummary,
    StatusGroup,
    StatusLabel,
    TestCase,
    TestResult,
    TestRun,
)


logger = logging.getLogger(__name__)


def status_label(status_id: Any) -> StatusLabel:
    try:
        code = int(status_id)
    except (TypeError, ValueError):
        return StatusLabel.unknown
    return STATUS_CODES.get(code, StatusLabel.unknown)


def parse_run(payload: dict[str, Any]) -> TestRun:
    return TestRun.model_validate(payload)


def parse_tests(rows: Iterable[Any]) -> list[TestCase]:
    tests: list[TestCase] = []
    for row in rows:
        if not isinstance(row, dict):
            continue
        try:
            tests.append(TestCase.model_validate(row))
        except ValidationError as exc:
            logger.warning('Skipping malformed test record %s: %s', row.get('id', '?'), exc.errors()[0]['msg'])
    return tests


def normalize_results(payload: Any) -> list[TestResult]:
    """Accept ``{"results": [...]}`` or a bare list of result records."""
    if isinstance(payload, dict):
        payload = payload.get('results')
    if not isinstance(payload, list):
        return []

    results: list[TestResult] = []
    for row in payload:
        if not isinstance(row, dict):
            continue
        try:
            results.append(TestResult.model_validate(row))
        except ValidationError as exc:
            logger.warning('Skipping malformed result record %s: %s', row.get('id', '?'), exc.errors()[0]['msg'])
    return results


def select_relevant_results(results: Iterable[TestResult]) -> list[TestResult]:
    return [
        result
        for result in results
        if result.comment or result.attachments
    ]


def select_tests(tests: list[TestCase], test_ids: Iterable[int] | None) -> list[TestCase]:
    if test_ids is None:
        return list(tests)
    wanted = set(test_ids)
    return [test for test in tests if test.id in wanted]


def group_by_status(tests: Iterable[TestCase]) -> list[StatusGroup]:
    grouped: dict[StatusLabel, list[TestCase]] = {label: [] for label in STATUS_ORDER}
    for test in tests:
        grouped[status_label(test.status_id)].append(test)
    return [StatusGroup(label=label, tests=grouped[label]) for label in STATUS_ORDER if grouped[label]]


def summarize(tests: Iterable[TestCase]) -> RunSummary:
    rows = list(tests)
    total = len(rows)
    passed = sum(1 for test in rows if status_label(test.status_id) is StatusLabel.passed)
    percent = round(passed / total * 100, 1) if total else 0.0
    return RunSummary(total=total, passed=passed, passed_percent=percent)
