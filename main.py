from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from runexport.config import get_settings
from runexport.errors import ExportAbortedError, RangeExpressionError
from runexport.exporter import ExportOptions, export_run
from runexport.ranges import TestSelection
from runexport.types import ExportOutcome


EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_FATAL = 2


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level or 'INFO').upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )


def _outcome_response(outcome: ExportOutcome) -> dict:
    return {
        'status': 'partial' if outcome.partial else 'ok',
        'run_id': outcome.run_id,
        'run_name': outcome.run_name,
        'document_path': outcome.document_path,
        'manifest_path': outcome.manifest_path,
        'total_tests': outcome.total_tests,
        'passed': outcome.passed,
        'passed_percent': outcome.passed_percent,
        'sections': outcome.sections,
        'results_exported': outcome.results_exported,
        'images_embedded': outcome.images_embedded,
        'partial_failures': len(outcome.partial_failures),
    }


def _selection_from_args(args: argparse.Namespace) -> TestSelection:
    return TestSelection.from_expressions(args.tests, args.exclude)


def cmd_export(args: argparse.Namespace) -> int:
    try:
        selection = _selection_from_args(args)
    except RangeExpressionError as exc:
        _print_json({'status': 'error', 'message': str(exc)})
        return EXIT_FATAL

    if args.max_width is not None and args.max_width <= 0:
        _print_json({'status': 'error', 'message': f'--max-width must be positive, got {args.max_width}'})
        return EXIT_FATAL

    options = ExportOptions(
        run_id=args.run,
        selection=selection,
        output_path=Path(args.output).expanduser().resolve() if args.output else None,
        max_image_width=args.max_width,
        fetch_concurrency=args.concurrency,
        stream=args.stream,
        cache_images=not args.no_cache,
    )
    try:
        outcome = export_run(options)
    except ExportAbortedError as exc:
        _print_json({'status': 'error', 'run_id': args.run, 'message': str(exc)})
        return EXIT_FATAL

    _print_json(_outcome_response(outcome))
    if outcome.partial and args.fail_on_partial:
        return EXIT_PARTIAL
    return EXIT_OK


def cmd_resolve(args: argparse.Namespace) -> int:
    try:
        selection = _selection_from_args(args)
    except RangeExpressionError as exc:
        _print_json({'status': 'error', 'message': str(exc)})
        return EXIT_FATAL

    _print_json(
        {
            'run_id': args.run,
            'tests': selection.resolve() if selection.include is not None else 'all',
            'exclude': sorted(selection.exclude),
        }
    )
    return EXIT_OK


def _add_selection_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('--run', '-r', type=int, required=True, help='TestRail run ID')
    parser.add_argument('--tests', '-t', required=False, help='Tests to include (e.g. 1-10,13,15)')
    parser.add_argument('--exclude', '-x', required=False, help='Tests to exclude (e.g. 2,7)')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Export a TestRail run into a PDF report')
    sub = parser.add_subparsers(dest='command', required=True)

    export = sub.add_parser('export', help='Export a run to PDF')
    _add_selection_arguments(export)
    export.add_argument('--output', '-o', required=False, help='Output PDF path')
    export.add_argument('--max-width', type=int, required=False, help='Maximum image width in pixels')
    export.add_argument('--concurrency', type=int, required=False, help='Parallel fetches (1 = sequential)')
    export.add_argument('--stream', action='store_true', help='Write each test as soon as it is resolved')
    export.add_argument('--no-cache', action='store_true', help='Do not cache downloaded images on disk')
    export.add_argument(
        '--fail-on-partial',
        action='store_true',
        help='Exit with status 1 when any result list or image was skipped',
    )
    export.set_defaults(func=cmd_export)

    resolve = sub.add_parser('resolve', help='Print the test selection without exporting')
    _add_selection_arguments(resolve)
    resolve.set_defaults(func=cmd_resolve)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(get_settings().log_level)
    return int(args.func(args))


if __name__ == '__main__':
    raise SystemExit(main())
