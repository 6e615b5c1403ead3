"""
Parses an export schema (mapping or YAML file) into strongly-typed objects.

The schema is the single source of truth for one export:
  - scalar columns and their type tags
  - one-relations (at most one related record per parent)
  - many-relations aggregated as list / concat / count
  - nested relation-of-relation bodies, each with a declared cardinality
  - extra eager-load paths, extra select columns, additional query directives
  - the column used for date-range filtering

Relation bodies come in two shapes.  Structured::

    manager: {key: manager_id, columns: {name: text}, relations: {one: {...}, many: {...}}}

and shorthand, where string values are columns and mapping values are nested
one-relations::

    manager: {name: text, team: {title: text}}

``mode``, ``value`` and ``key`` are reserved in both shapes.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Protocol

import yaml

from export_builder.core.errors import ConfigurationError

_MANY_GROUPS = ("list", "concat", "count")
_STRUCTURED_KEYS = ("columns", "relations")
_RESERVED_KEYS = ("mode", "value", "key")


# ── Typed domain objects ─────────────────────────────────

class Cardinality(str, enum.Enum):
    ONE = "one"
    MANY = "many"


class AggregateMode(str, enum.Enum):
    LIST = "list"
    CONCAT = "concat"
    COUNT = "count"


class QueryDirective(Protocol):
    """Opaque source-specific query mutator (SQLAlchemy ``Select``, record list, ...)."""

    def apply(self, query: Any) -> Any: ...


class CallableDirective:
    def __init__(self, func: Callable[[Any], Any]):
        self._func = func

    def apply(self, query: Any) -> Any:
        result = self._func(query)
        return query if result is None else result


@dataclass(frozen=True)
class ColumnSpec:
    name: str
    type: str = "text"

    @property
    def is_path(self) -> bool:
        return "." in self.name


@dataclass(frozen=True)
class RelationSpec:
    name: str
    cardinality: Cardinality
    mode: AggregateMode | None = None
    columns: dict[str, ColumnSpec] = field(default_factory=dict)
    relations: dict[str, "RelationSpec"] = field(default_factory=dict)
    value: str | None = None
    key: str | None = None

    @property
    def value_column(self) -> ColumnSpec | None:
        if self.value is None:
            return None
        return self.columns.get(self.value, ColumnSpec(self.value))

    @property
    def is_count(self) -> bool:
        return self.mode is AggregateMode.COUNT

    def eager_paths(self, prefix: str = "") -> list[str]:
        """Relationship paths to eager-load, deepest paths included."""
        path = f"{prefix}.{self.name}" if prefix else self.name
        nested = [p for r in self.relations.values() for p in r.eager_paths(path)]
        return nested or [path]


@dataclass(frozen=True)
class SchemaConfig:
    """Fully parsed export schema."""

    model: Any
    columns: dict[str, ColumnSpec]
    one: dict[str, RelationSpec] = field(default_factory=dict)
    many: dict[str, RelationSpec] = field(default_factory=dict)
    custom_eager_load: tuple[str, ...] = ()
    custom_select: tuple[str, ...] = ()
    additional: dict[str, QueryDirective] = field(default_factory=dict)
    date_column: str = "created_at"

    # ── Convenience look-ups ─────────────────────────

    @property
    def aggregates(self) -> list[RelationSpec]:
        """Concat many-relations, then list many-relations; declaration order within each."""
        return [
            r for mode in (AggregateMode.CONCAT, AggregateMode.LIST)
            for r in self.many.values() if r.mode is mode
        ]

    @property
    def counts(self) -> list[RelationSpec]:
        return [r for r in self.many.values() if r.is_count]

    @property
    def scalar_columns(self) -> list[ColumnSpec]:
        """Columns stored on the base record itself (no dotted path)."""
        return [c for c in self.columns.values() if not c.is_path]

    def relation(self, name: str) -> RelationSpec | None:
        return self.one.get(name) or self.many.get(name)


# ── Parsing ──────────────────────────────────────────────

def _parse_columns(raw: Any, where: str) -> dict[str, ColumnSpec]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"Columns of '{where}' must be a mapping of name -> type.")
    columns: dict[str, ColumnSpec] = {}
    for name, type_tag in raw.items():
        if not isinstance(type_tag, str) or not type_tag:
            raise ConfigurationError(
                f"Column '{name}' of '{where}' must declare a type tag, got {type_tag!r}."
            )
        columns[str(name)] = ColumnSpec(name=str(name), type=type_tag)
    return columns


def _parse_mode(raw: Any, relation: str) -> AggregateMode:
    try:
        return AggregateMode(raw)
    except ValueError:
        raise ConfigurationError(
            f"Unknown aggregation mode '{raw}' for relation '{relation}'. "
            f"Allowed: {', '.join(m.value for m in AggregateMode)}"
        ) from None


def _resolve_value(name: str, mode: AggregateMode, value: str | None,
                   columns: dict[str, ColumnSpec], has_nested: bool) -> str | None:
    if mode is AggregateMode.COUNT or value is not None:
        return value
    if len(columns) == 1:
        return next(iter(columns))
    if not columns and has_nested:
        return None
    raise ConfigurationError(
        f"Many-relation '{name}' ({mode.value}) needs a 'value' column; "
        f"declared columns: {', '.join(columns) or 'none'}"
    )


def _parse_relation(name: str, raw: Any, cardinality: Cardinality,
                    mode: AggregateMode | None = None) -> RelationSpec:
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"Relation '{name}' must be a mapping, got {type(raw).__name__}.")

    value = raw.get("value")
    key = raw.get("key")
    if cardinality is Cardinality.MANY and mode is None and "mode" in raw:
        mode = _parse_mode(raw["mode"], name)

    body = {k: v for k, v in raw.items() if k not in _RESERVED_KEYS}
    if any(k in body for k in _STRUCTURED_KEYS):
        columns = _parse_columns(body.get("columns"), name)
        nested = _parse_relation_groups(body.get("relations") or {}, name)
    else:
        columns = _parse_columns({k: v for k, v in body.items() if not isinstance(v, Mapping)}, name)
        nested = {
            str(k): _parse_relation(str(k), v, Cardinality.ONE)
            for k, v in body.items() if isinstance(v, Mapping)
        }

    if cardinality is Cardinality.ONE:
        if not columns and not nested:
            raise ConfigurationError(f"One-relation '{name}' declares no columns.")
        mode = None
    else:
        mode = mode or AggregateMode.LIST
        value = _resolve_value(name, mode, value, columns, bool(nested))

    return RelationSpec(
        name=name, cardinality=cardinality, mode=mode,
        columns=columns, relations=nested, value=value, key=key,
    )


def _parse_many(raw: Any, where: str) -> dict[str, RelationSpec]:
    if not raw:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"'many' relations of '{where}' must be a mapping.")

    many: dict[str, RelationSpec] = {}
    if set(raw) <= set(_MANY_GROUPS):
        # grouped form: {list: {...}, concat: {...}, count: [...]}
        for group, entries in raw.items():
            mode = _parse_mode(group, where)
            if isinstance(entries, (list, tuple)):
                entries = {name: None for name in entries}
            for name, body in (entries or {}).items():
                many[str(name)] = _parse_relation(str(name), body, Cardinality.MANY, mode)
    else:
        # flat form: {tags: {mode: list, value: label, columns: {...}}}
        for name, body in raw.items():
            many[str(name)] = _parse_relation(str(name), body, Cardinality.MANY)
    return many


def _parse_relation_groups(raw: Any, where: str) -> dict[str, RelationSpec]:
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"Relations of '{where}' must be a mapping with 'one' / 'many' keys.")
    unknown = set(raw) - {"one", "many"}
    if unknown:
        raise ConfigurationError(
            f"Unknown relation group(s) {sorted(unknown)} in '{where}'. Allowed: one, many"
        )
    relations = {
        str(name): _parse_relation(str(name), body, Cardinality.ONE)
        for name, body in (raw.get("one") or {}).items()
    }
    many = _parse_many(raw.get("many"), where)
    overlap = set(relations) & set(many)
    if overlap:
        raise ConfigurationError(f"Relations declared as both one and many in '{where}': {sorted(overlap)}")
    relations.update(many)
    return relations


def _parse_additional(raw: Any) -> dict[str, QueryDirective]:
    additional: dict[str, QueryDirective] = {}
    for name, directive in (raw or {}).items():
        if hasattr(directive, "apply"):
            additional[str(name)] = directive
        elif callable(directive):
            additional[str(name)] = CallableDirective(directive)
        else:
            raise ConfigurationError(
                f"Additional directive '{name}' must expose apply(query) or be callable."
            )
    return additional


def parse_schema(raw: Mapping[str, Any]) -> SchemaConfig:
    """Build a `SchemaConfig` from a plain mapping.

    Presence of ``model`` / ``columns`` is checked by `validate_schema`, not here.
    """
    if not isinstance(raw, Mapping):
        raise ConfigurationError("Export schema must be a mapping.")

    relations = raw.get("relations") or {}
    relations = _parse_relation_groups(relations, "relations")
    one = {k: r for k, r in relations.items() if r.cardinality is Cardinality.ONE}
    many = {k: r for k, r in relations.items() if r.cardinality is Cardinality.MANY}

    return SchemaConfig(
        model=raw.get("model"),
        columns=_parse_columns(raw.get("columns"), "columns"),
        one=one,
        many=many,
        custom_eager_load=tuple(raw.get("custom_eager_load") or raw.get("customWith") or ()),
        custom_select=tuple(raw.get("custom_select") or raw.get("customSelect") or ()),
        additional=_parse_additional(raw.get("additional") or raw.get("additionalQuery")),
        date_column=raw.get("date_column") or "created_at",
    )


def validate_schema(schema: SchemaConfig) -> None:
    """Raise `ConfigurationError` unless the schema can drive an export."""
    if schema.model is None or schema.model == "":
        raise ConfigurationError("Export schema has no model / source identifier.")
    if not schema.columns:
        raise ConfigurationError("Export schema declares no columns.")
    from export_builder.builder.flattener import relation_leaves

    keys = [*schema.columns, *(leaf.key for leaf in relation_leaves(schema)), *schema.additional]
    clash = sorted({k for k in keys if keys.count(k) > 1})
    if clash:
        raise ConfigurationError(f"Output keys declared more than once: {clash}", {"keys": clash})


def load_schema(path: str | Path) -> SchemaConfig:
    """Load an export schema from a YAML file."""
    with open(path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return parse_schema(raw)
