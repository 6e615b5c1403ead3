"""
Fetch directives -- what the export needs from its record source.

The engine never talks SQL; it hands a `FetchDirectives` to a source
(`export_builder.db.source.SqlAlchemySource`, `export_builder.db.memory.MemorySource`)
which decides how to honour each part.
"""
from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Protocol

from export_builder.core.errors import ConfigurationError
from export_builder.schema.filters import RuntimeFilter
from export_builder.schema.loader import QueryDirective, SchemaConfig


# ── Predicates ───────────────────────────────────────────

@dataclass(frozen=True)
class DateRange:
    column: str
    start: datetime.date | None = None
    end: datetime.date | None = None


@dataclass(frozen=True)
class Search:
    term: str
    columns: tuple[str, ...]


@dataclass(frozen=True)
class Compare:
    key: str
    operator: str
    value: Any = None


@dataclass(frozen=True)
class InValues:
    key: str
    values: tuple[Any, ...]


@dataclass(frozen=True)
class HasRelated:
    relation: str
    values: tuple[Any, ...]
    key: str = "id"


Predicate = DateRange | Search | Compare | InValues | HasRelated


# Sources that count ``FetchDirectives.counts`` relations store the results on
# each record under this attribute as ``{relation: count}``.
COUNTS_ATTRIBUTE = "_export_counts"


@dataclass(frozen=True)
class FetchDirectives:
    select: tuple[str, ...] = ()
    eager_load: tuple[str, ...] = ()
    counts: tuple[str, ...] = ()
    predicates: tuple[Predicate, ...] = ()
    order_by: str | None = None
    order_direction: str = "asc"
    limit: int | None = None
    additional: dict[str, QueryDirective] = field(default_factory=dict)
    batch_size: int = 100


class RecordSource(Protocol):
    """Fetch collaborator: yields records in batches of at most ``directives.batch_size``."""

    def fetch(self, directives: FetchDirectives) -> Iterator[list[Any]]: ...


# ── Building ─────────────────────────────────────────────

def _unique(items: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(i for i in items if i))


def select_columns(schema: SchemaConfig) -> tuple[str, ...]:
    """Declared scalar columns, one-relation foreign keys, custom select."""
    return _unique([
        *(c.name for c in schema.scalar_columns),
        *(r.key for r in schema.one.values() if r.key),
        *schema.custom_select,
    ])


def eager_load_paths(schema: SchemaConfig) -> tuple[str, ...]:
    """Relation paths (one, list / concat, nested), dotted-column parents, custom eager loads.

    Count relations are not loaded; see `count_relations`.
    """
    paths: list[str] = []
    for relation in schema.one.values():
        paths.extend(relation.eager_paths())
    for relation in schema.aggregates:
        paths.extend(relation.eager_paths())
    for column in schema.columns.values():
        if column.is_path:
            paths.append(column.name.rsplit(".", 1)[0])
    paths.extend(schema.custom_eager_load)
    return _unique(paths)


def count_relations(schema: SchemaConfig) -> tuple[str, ...]:
    """Top-level count relations; a source may count these instead of loading them."""
    return tuple(r.name for r in schema.counts)


def build_predicates(schema: SchemaConfig, runtime_filter: RuntimeFilter) -> tuple[Predicate, ...]:
    predicates: list[Predicate] = []

    if runtime_filter.start or runtime_filter.end:
        predicates.append(DateRange(schema.date_column, runtime_filter.start, runtime_filter.end))

    if runtime_filter.search:
        searchable = tuple(c.name for c in schema.scalar_columns)
        if searchable:
            predicates.append(Search(runtime_filter.search, searchable))

    for condition in runtime_filter.conditions:
        predicates.append(Compare(condition.key, condition.operator, condition.value))

    for item in runtime_filter.advanced:
        if schema.relation(item.key) is not None:
            predicates.append(HasRelated(item.key, tuple(item.values)))
        else:
            predicates.append(InValues(item.key, tuple(item.values)))

    return tuple(predicates)


def build_directives(schema: SchemaConfig, runtime_filter: RuntimeFilter | None = None,
                     batch_size: int = 100, output: SchemaConfig | None = None) -> FetchDirectives:
    """Fetch directives for *schema*.

    *output* is the column-filtered schema whose columns and relations end up in
    the export (defaults to *schema*).  It decides what is selected and loaded;
    row predicates and the ``order_by`` check always use the full *schema*.
    """
    runtime_filter = runtime_filter or RuntimeFilter()
    if output is None:
        output = schema

    order_by = runtime_filter.order_by
    orderable = select_columns(schema)
    if order_by and order_by not in orderable:
        raise ConfigurationError(
            f"Cannot order by '{order_by}'. Allowed: {', '.join(orderable)}",
            {"order_by": order_by},
        )

    return FetchDirectives(
        select=select_columns(output),
        eager_load=eager_load_paths(output),
        counts=count_relations(output),
        predicates=build_predicates(schema, runtime_filter),
        order_by=order_by,
        order_direction=runtime_filter.order_direction,
        limit=runtime_filter.limit,
        additional=dict(output.additional),
        batch_size=batch_size,
    )
