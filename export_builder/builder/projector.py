"""
Schema projection and column filtering.

`project` walks a schema once and returns a `Projection`: an ordered tuple of
`Column`s.  Each column is both the heading (key + translated label) and the
row selector, so the two can never drift apart.  Order is fixed:

  1. scalar / dotted columns
  2. one-relation leaves (depth first, declaration order)
  3. concat many-relation leaves, then list many-relation leaves
  4. count relations
  5. additional-directive columns

`ColumnFilter` narrows either a projection or the schema itself with the same
keep/drop rule, so ``project(apply_filter(s, f)) == narrow(project(s), f)``.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Mapping

from export_builder.builder.flattener import Leaf, derived_key, relation_leaves
from export_builder.builder.labels import LabelResolver, get_default_labels
from export_builder.schema.filters import RuntimeFilter
from export_builder.schema.loader import Cardinality, RelationSpec, SchemaConfig

GROUP_COLUMN = "column"
GROUP_ONE = "one"
GROUP_MANY = "many"
GROUP_COUNT = "count"
GROUP_ADDITIONAL = "additional"

_AGGREGATE_GROUPS = frozenset({GROUP_MANY, GROUP_COUNT, GROUP_ADDITIONAL})


@dataclass(frozen=True)
class Column:
    key: str
    label: str
    group: str
    relation: str | None = None

    def select(self, record: Mapping[str, Any]) -> Any:
        """Cell value of this column in a merged record ("" when absent)."""
        return record.get(self.key, "")

    @property
    def is_path(self) -> bool:
        return "." in self.key


@dataclass(frozen=True)
class Projection:
    columns: tuple[Column, ...]

    @property
    def keys(self) -> list[str]:
        return [c.key for c in self.columns]

    @property
    def headings(self) -> list[str]:
        return [c.label for c in self.columns]

    @property
    def selectors(self) -> list[Callable[[Mapping[str, Any]], Any]]:
        return [c.select for c in self.columns]

    def row(self, record: Mapping[str, Any]) -> list[Any]:
        return [c.select(record) for c in self.columns]

    def __len__(self) -> int:
        return len(self.columns)

    def __iter__(self) -> Iterator[Column]:
        return iter(self.columns)


def _leaf_group(leaf: Leaf) -> str:
    if leaf.chain[0].cardinality is Cardinality.ONE:
        return GROUP_ONE
    return GROUP_COUNT if leaf.chain[0].is_count else GROUP_MANY


def project(schema: SchemaConfig, labels: LabelResolver | None = None) -> Projection:
    if labels is None:
        labels = get_default_labels()
    columns: list[Column] = []

    for name in schema.columns:
        columns.append(Column(name, labels.resolve(name), GROUP_COLUMN))
    for leaf in relation_leaves(schema):
        columns.append(Column(leaf.key, labels.resolve(leaf.key), _leaf_group(leaf), leaf.relation))
    for name in schema.additional:
        columns.append(Column(name, labels.resolve(name), GROUP_ADDITIONAL, name))

    return Projection(tuple(columns))


# ── Filtering ────────────────────────────────────────────

class ColumnFilter:
    """Applies the column criteria of a `RuntimeFilter`, one output key at a time.

    * ``columns`` allow-list: scalar and one-relation keys are kept when the
      key (or the top-level one-relation name) is listed; aggregate keys are
      checked against ``related`` when given, otherwise against ``columns``.
    * ``type`` tag (no allow-list for the key's group): keep keys containing
      the tag; dotted keys are always kept.
    * neither: identity.
    """

    def __init__(self, runtime_filter: RuntimeFilter | None):
        self.filter = runtime_filter or RuntimeFilter()

    @property
    def active(self) -> bool:
        return self.filter.has_column_criteria

    def keeps(self, key: str, group: str, relation: str | None = None) -> bool:
        f = self.filter
        allowed = (f.related or f.columns) if group in _AGGREGATE_GROUPS else f.columns
        if allowed:
            return key in allowed or (relation is not None and relation in allowed)
        if f.type:
            return "." in key or f.type in key
        return True

    def narrow(self, projection: Projection) -> Projection:
        if not self.active:
            return projection
        return Projection(tuple(
            c for c in projection.columns if self.keeps(c.key, c.group, c.relation)
        ))

    # ── Schema narrowing ────────────────────────────

    def _prune(self, relation: RelationSpec, chain: tuple[RelationSpec, ...], group: str) -> RelationSpec | None:
        chain = chain + (relation,)
        names = [r.name for r in chain]
        top = chain[0].name

        if relation.is_count:
            return relation if self.keeps(derived_key(*names), group, top) else None

        nested = {}
        for name, child in relation.relations.items():
            pruned = self._prune(child, chain, group)
            if pruned is not None:
                nested[name] = pruned

        if relation.cardinality is Cardinality.ONE:
            columns = {
                k: c for k, c in relation.columns.items()
                if self.keeps(derived_key(*names, c.name), group, top)
            }
            if not columns and not nested:
                return None
            return dataclasses.replace(relation, columns=columns, relations=nested)

        value = relation.value
        if value is not None and not self.keeps(derived_key(*names), group, top):
            value = None
        if value is None and not nested:
            return None
        return dataclasses.replace(relation, value=value, relations=nested)

    def apply_filter(self, schema: SchemaConfig) -> SchemaConfig:
        """Derived copy of *schema* holding only the entries this filter keeps."""
        if not self.active:
            return schema

        one = {}
        for name, relation in schema.one.items():
            pruned = self._prune(relation, (), GROUP_ONE)
            if pruned is not None:
                one[name] = pruned

        many = {}
        for name, relation in schema.many.items():
            pruned = self._prune(relation, (), GROUP_COUNT if relation.is_count else GROUP_MANY)
            if pruned is not None:
                many[name] = pruned

        return dataclasses.replace(
            schema,
            columns={k: c for k, c in schema.columns.items() if self.keeps(k, GROUP_COLUMN)},
            one=one,
            many=many,
            additional={k: d for k, d in schema.additional.items() if self.keeps(k, GROUP_ADDITIONAL, k)},
        )


def apply_filter(schema: SchemaConfig, runtime_filter: RuntimeFilter | None) -> SchemaConfig:
    return ColumnFilter(runtime_filter).apply_filter(schema)


def narrow(projection: Projection, runtime_filter: RuntimeFilter | None) -> Projection:
    return ColumnFilter(runtime_filter).narrow(projection)
