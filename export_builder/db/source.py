"""
SQLAlchemy record source.

Turns `FetchDirectives` into one ORM ``SELECT``:
  1. ``load_only`` for the select list (primary key is always loaded)
  2. chained ``selectinload`` for every relationship path; count relations
     become correlated ``COUNT(*)`` columns instead
  3. WHERE clauses for date range / search / conditions / has-related
  4. ORDER BY, LIMIT, then additional directives applied to the statement
Rows are streamed with ``yield_per`` and handed out ``batch_size`` at a time.
"""
from __future__ import annotations

import importlib
from typing import Any, Callable, Iterator

from sqlalchemy import Date, String, cast, func, inspect, or_, select
from sqlalchemy.orm import Session, load_only, selectinload
from sqlalchemy.sql import Select

from export_builder.builder.directives import (
    COUNTS_ATTRIBUTE,
    Compare,
    DateRange,
    FetchDirectives,
    HasRelated,
    InValues,
    Predicate,
    Search,
)
from export_builder.core.errors import ConfigurationError
from export_builder.core.logging import get_logger
from export_builder.db.connection import readonly_session

logger = get_logger(__name__)

_COMPARATORS: dict[str, Callable[[Any, Any], Any]] = {
    "=": lambda col, v: col == v,
    "!=": lambda col, v: col != v,
    ">": lambda col, v: col > v,
    ">=": lambda col, v: col >= v,
    "<": lambda col, v: col < v,
    "<=": lambda col, v: col <= v,
    "like": lambda col, v: col.like(v),
    "in": lambda col, v: col.in_(v if isinstance(v, (list, tuple, set)) else [v]),
    "not_in": lambda col, v: col.not_in(v if isinstance(v, (list, tuple, set)) else [v]),
    "null": lambda col, v: col.is_(None),
    "not_null": lambda col, v: col.is_not(None),
}


def resolve_model(model: Any) -> type:
    """Mapped class from a class or an import path (``pkg.module:Class`` / ``pkg.module.Class``)."""
    if not isinstance(model, str):
        return model
    module_name, _, attr = model.partition(":") if ":" in model else model.rpartition(".")
    try:
        return getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError, ValueError) as exc:
        raise ConfigurationError(f"Cannot import model '{model}'", {"model": model}) from exc


def _with_counts(row: Any, names: list[str]) -> Any:
    """Entity of *row*, with the trailing count columns stored under `COUNTS_ATTRIBUTE`."""
    record = row[0]
    if names:
        setattr(record, COUNTS_ATTRIBUTE, dict(zip(names, row[len(row) - len(names):])))
    return record


class SqlAlchemySource:
    def __init__(self, model: Any, session_factory: Callable[[], Session] | None = None):
        self.model = resolve_model(model)
        self.session_factory = session_factory
        self._mapper = inspect(self.model)

    # ── Statement building ──────────────────────────────

    def _attribute(self, key: str) -> Any:
        attr = getattr(self.model, key, None)
        if attr is None:
            raise ConfigurationError(
                f"Model '{self.model.__name__}' has no attribute '{key}'", {"key": key}
            )
        return attr

    def _eager_option(self, path: str) -> Any | None:
        """``selectinload`` chain for the relationship prefix of *path*."""
        entity, option = self.model, None
        for segment in path.split("."):
            relationships = inspect(entity).relationships
            if segment not in relationships:
                break
            attr = getattr(entity, segment)
            option = selectinload(attr) if option is None else option.selectinload(attr)
            entity = relationships[segment].mapper.class_
        return option

    def _count_column(self, name: str) -> Any | None:
        """Correlated ``COUNT(*)`` over relationship *name*; None when it cannot be correlated."""
        relationships = self._mapper.relationships
        if name not in relationships:
            return None
        prop = relationships[name]
        target = prop.secondary if prop.secondary is not None else prop.mapper.local_table
        if target is self._mapper.local_table:
            return None  # self-referential
        return (
            select(func.count())
            .select_from(target)
            .where(prop.primaryjoin)
            .correlate(self._mapper.local_table)
            .scalar_subquery()
            .label(f"{name}_count")
        )

    def _clause(self, predicate: Predicate) -> Any:
        if isinstance(predicate, DateRange):
            day = func.date(self._attribute(predicate.column), type_=Date)
            clauses = []
            if predicate.start:
                clauses.append(day >= predicate.start)
            if predicate.end:
                clauses.append(day <= predicate.end)
            return clauses
        if isinstance(predicate, Search):
            return [or_(*(
                cast(self._attribute(c), String).icontains(predicate.term, autoescape=True)
                for c in predicate.columns
            ))]
        if isinstance(predicate, Compare):
            return [_COMPARATORS[predicate.operator](self._attribute(predicate.key), predicate.value)]
        if isinstance(predicate, InValues):
            return [self._attribute(predicate.key).in_(predicate.values)]
        if isinstance(predicate, HasRelated):
            relationship = self._attribute(predicate.relation)
            target = relationship.property.mapper.class_
            criterion = getattr(target, predicate.key).in_(predicate.values)
            if relationship.property.uselist:
                return [relationship.any(criterion)]
            return [relationship.has(criterion)]
        raise TypeError(f"Unsupported predicate {predicate!r}")

    def build_statement(self, directives: FetchDirectives) -> Select:
        stmt = select(self.model)

        column_attrs = self._mapper.column_attrs
        load = list(directives.select)
        options = []
        for path in directives.eager_load:
            head = path.split(".", 1)[0]
            if head in column_attrs:
                load.append(head)  # dotted path into a JSON / composite column
                continue
            option = self._eager_option(path)
            if option is not None:
                options.append(option)

        counts = []
        for name in directives.counts:
            column = self._count_column(name)
            if column is not None:
                counts.append(column)
                continue
            option = self._eager_option(name)
            if option is not None:
                options.append(option)

        unknown = [n for n in load if n not in column_attrs]
        if unknown:
            raise ConfigurationError(
                f"Model '{self.model.__name__}' has no column(s) {unknown}", {"columns": unknown}
            )
        if load:
            stmt = stmt.options(load_only(*(getattr(self.model, n) for n in dict.fromkeys(load))))
        if options:
            stmt = stmt.options(*options)

        for predicate in directives.predicates:
            stmt = stmt.where(*self._clause(predicate))

        if directives.order_by:
            col = self._attribute(directives.order_by)
            stmt = stmt.order_by(col.desc() if directives.order_direction == "desc" else col.asc())
        if directives.limit:
            stmt = stmt.limit(directives.limit)

        for directive in directives.additional.values():
            stmt = directive.apply(stmt)
        if counts:
            stmt = stmt.add_columns(*counts)
        return stmt

    # ── Fetching ────────────────────────────────────────

    def fetch(self, directives: FetchDirectives) -> Iterator[list[Any]]:
        stmt = self.build_statement(directives)
        logger.debug("Export statement:\n%s", stmt)
        counted = [n for n in directives.counts if self._count_column(n) is not None]
        with readonly_session(self.session_factory) as session:
            result = session.execute(stmt.execution_options(yield_per=directives.batch_size))
            for partition in result.partitions(directives.batch_size):
                yield [_with_counts(row, counted) for row in partition]
