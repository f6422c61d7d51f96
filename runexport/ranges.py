from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from .errors import RangeExpressionError


RANGE_EXPRESSION = re.compile(r'^\s*\d+\s*(?:-\s*\d+\s*)?(?:,\s*\d+\s*(?:-\s*\d+\s*)?)*$')
MAX_RANGE_SPAN = 100_000


def parse_range_expression(expression: str | None) -> set[int]:
    """Expand ``"1-5,7,9"`` into ``{1, 2, 3, 4, 5, 7, 9}``.

    An empty or missing expression selects nothing. Reversed ranges and
    anything outside ``item(-item)?(,item(-item)?)*`` are rejected.
    """
    text = str(expression or '').strip()
    if not text:
        return set()
    if not RANGE_EXPRESSION.match(text):
        raise RangeExpressionError(f'malformed range expression: {expression!r}')

    selected: set[int] = set()
    for part in text.split(','):
        bounds = [int(item) for item in part.split('-')]
        start, end = bounds[0], bounds[-1]
        if start > end:
            raise RangeExpressionError(f'reversed range {part.strip()!r} in {expression!r}')
        if end - start >= MAX_RANGE_SPAN:
            raise RangeExpressionError(f'range {part.strip()!r} spans more than {MAX_RANGE_SPAN} items')
        selected.update(range(start, end + 1))
    return selected


@dataclass(frozen=True)
class TestSelection:
    """Include/exclude sets resolved from the command line.

    ``include`` of ``None`` means every test of the run.
    """

    __test__ = False

    include: frozenset[int] | None
    exclude: frozenset[int]

    @classmethod
    def from_expressions(cls, include: str | None, exclude: str | None) -> TestSelection:
        included = frozenset(parse_range_expression(include)) if str(include or '').strip() else None
        return cls(include=included, exclude=frozenset(parse_range_expression(exclude)))

    @property
    def restricts(self) -> bool:
        return self.include is not None or bool(self.exclude)

    def resolve(self, available: Iterable[int] | None = None) -> list[int]:
        """Sorted ascending identifiers, exclusions removed."""
        if self.include is not None:
            base = set(self.include)
        else:
            base = set(available or [])
        return sorted(base - self.exclude)
