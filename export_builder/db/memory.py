"""
In-memory record source.

Evaluates the same predicates as `SqlAlchemySource`, but over records the host
already holds (dicts or plain objects).  Select / eager-load directives are
meaningless here and ignored; additional directives receive the record list.
"""
from __future__ import annotations

import datetime
import operator
import re
from typing import Any, Callable, Iterable, Iterator

from export_builder.builder.converters import is_empty, parse_datetime
from export_builder.builder.directives import (
    Compare,
    DateRange,
    FetchDirectives,
    HasRelated,
    InValues,
    Predicate,
    Search,
)
from export_builder.builder.flattener import related_items
from export_builder.builder.paths import get_attribute, resolve_path
from export_builder.core.logging import get_logger

logger = get_logger(__name__)

_ORDERING: dict[str, Callable[[Any, Any], bool]] = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
}


def _like(pattern: str) -> re.Pattern[str]:
    parts = (".*" if ch == "%" else "." if ch == "_" else re.escape(ch) for ch in pattern)
    return re.compile("^" + "".join(parts) + "$", re.DOTALL)


def _sort_key(value: Any) -> tuple[int, Any]:
    return (1, 0) if value is None else (0, value)


def _as_list(value: Any) -> list[Any]:
    return list(value) if isinstance(value, (list, tuple, set)) else [value]


def _compare(value: Any, predicate: Compare) -> bool:
    op, expected = predicate.operator, predicate.value
    if op == "null":
        return value is None
    if op == "not_null":
        return value is not None
    if op == "=":
        return value == expected
    if op == "!=":
        return value != expected
    if op == "in":
        return value in _as_list(expected)
    if op == "not_in":
        return value not in _as_list(expected)
    if op == "like":
        return value is not None and bool(_like(str(expected)).match(str(value)))
    if value is None:
        return False
    try:
        return _ORDERING[op](value, expected)
    except TypeError:
        return False


class MemorySource:
    def __init__(self, records: Iterable[Any]):
        self.records = list(records)

    def matches(self, record: Any, predicate: Predicate) -> bool:
        if isinstance(predicate, DateRange):
            raw = resolve_path(record, predicate.column, None)
            if is_empty(raw):
                return False
            parsed = parse_datetime(raw)
            day = parsed.date() if isinstance(parsed, datetime.datetime) else parsed
            if predicate.start and day < predicate.start:
                return False
            if predicate.end and day > predicate.end:
                return False
            return True
        if isinstance(predicate, Search):
            term = predicate.term.lower()
            return any(
                term in str(v).lower()
                for v in (resolve_path(record, c, None) for c in predicate.columns)
                if v is not None
            )
        if isinstance(predicate, Compare):
            return _compare(resolve_path(record, predicate.key, None), predicate)
        if isinstance(predicate, InValues):
            return resolve_path(record, predicate.key, None) in predicate.values
        if isinstance(predicate, HasRelated):
            related = related_items(get_attribute(record, predicate.relation))
            return any(resolve_path(r, predicate.key, None) in predicate.values for r in related)
        raise TypeError(f"Unsupported predicate {predicate!r}")

    def fetch(self, directives: FetchDirectives) -> Iterator[list[Any]]:
        records = [
            r for r in self.records
            if all(self.matches(r, p) for p in directives.predicates)
        ]

        if directives.order_by:
            records.sort(
                key=lambda r: _sort_key(resolve_path(r, directives.order_by, None)),
                reverse=directives.order_direction == "desc",
            )
        if directives.limit:
            records = records[:directives.limit]

        for directive in directives.additional.values():
            records = list(directive.apply(records))

        logger.debug("MemorySource matched %d of %d records", len(records), len(self.records))
        size = max(directives.batch_size, 1)
        for i in range(0, len(records), size):
            yield records[i:i + size]
