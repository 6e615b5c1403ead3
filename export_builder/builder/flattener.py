"""
Relation flattening -- a record plus its related records -> one flat mapping.

Every relation in the schema is reduced to *leaves*: one output key each.

  one-relation  ``manager``            -> manager_name, manager_email, ...
  nested one    ``manager.team``       -> manager_team_title
  many (list)   ``tags`` value=label   -> tags = ["x", "y"]
  many (concat) ``skills`` value=name  -> skills = "python, sql"
  many (count)  ``projects``           -> projects = 2
  nested under many ``tags.category``  -> tags_category_name, aggregated like ``tags``

`relation_leaves` is the only place keys are named and ordered; the projector
walks the same leaves, which keeps headings and row values aligned.
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Iterator

from export_builder.builder.converters import ValueConverter
from export_builder.builder.directives import COUNTS_ATTRIBUTE
from export_builder.builder.paths import get_attribute, resolve_path
from export_builder.schema.loader import (
    AggregateMode,
    Cardinality,
    ColumnSpec,
    RelationSpec,
    SchemaConfig,
)
from export_builder.core.logging import get_logger

logger = get_logger(__name__)


def derived_key(*parts: str) -> str:
    """Underscore-join relation names and the leaf column name."""
    return "_".join(p for p in parts if p)


@dataclass(frozen=True)
class Leaf:
    key: str
    chain: tuple[RelationSpec, ...]   # top-level relation first
    column: ColumnSpec | None         # None for count leaves

    @property
    def relation(self) -> str:
        return self.chain[0].name

    @property
    def aggregate(self) -> bool:
        return any(r.cardinality is Cardinality.MANY for r in self.chain)

    @property
    def mode(self) -> AggregateMode | None:
        """Mode of the outermost many-relation on the chain."""
        for r in self.chain:
            if r.cardinality is Cardinality.MANY:
                return r.mode
        return None


# ── Leaf walk ────────────────────────────────────────────

def _walk(relation: RelationSpec, chain: tuple[RelationSpec, ...]) -> Iterator[Leaf]:
    chain = chain + (relation,)
    names = [r.name for r in chain]

    if relation.cardinality is Cardinality.ONE:
        for column in relation.columns.values():
            yield Leaf(derived_key(*names, column.name), chain, column)
    elif relation.is_count:
        yield Leaf(derived_key(*names), chain, None)
        return
    elif relation.value is not None:
        yield Leaf(derived_key(*names), chain, relation.value_column)

    for nested in relation.relations.values():
        yield from _walk(nested, chain)


def relation_leaves(schema: SchemaConfig) -> list[Leaf]:
    """All relation leaves: one-relations, then concat, then list, then count."""
    leaves: list[Leaf] = []
    for relation in schema.one.values():
        leaves.extend(_walk(relation, ()))
    for relation in schema.aggregates:
        leaves.extend(_walk(relation, ()))
    for relation in schema.counts:
        leaves.extend(_walk(relation, ()))
    return leaves


# ── Flattener ────────────────────────────────────────────

def related_items(related: Any) -> list[Any]:
    """None -> [], a single record -> [record], a collection -> list."""
    if related is None:
        return []
    if isinstance(related, Mapping) or not isinstance(related, Iterable) or isinstance(related, (str, bytes)):
        return [related]
    return list(related)


class RelationFlattener:
    def __init__(self, converter: ValueConverter | None = None):
        self.converter = converter or ValueConverter()

    def _reach(self, record: Any, chain: tuple[RelationSpec, ...]) -> list[Any] | None:
        """Related records at the end of *chain*; None when a one-hop breaks before any many-hop."""
        nodes = [record]
        fanned_out = False
        for relation in chain:
            next_nodes: list[Any] = []
            for node in nodes:
                related = get_attribute(node, relation.name)
                if relation.cardinality is Cardinality.ONE:
                    if related is not None:
                        next_nodes.append(related)
                else:
                    next_nodes.extend(related_items(related))
            if relation.cardinality is Cardinality.MANY:
                fanned_out = True
            elif not next_nodes and not fanned_out:
                return None
            nodes = next_nodes
        return nodes

    def _convert(self, node: Any, column: ColumnSpec) -> Any:
        return self.converter.convert(resolve_path(node, column.name), column.type)

    def leaf_value(self, record: Any, leaf: Leaf) -> tuple[bool, Any]:
        """(present, value) of *leaf* for *record*."""
        if leaf.column is None and len(leaf.chain) == 1:
            counted = getattr(record, COUNTS_ATTRIBUTE, None)
            if isinstance(counted, Mapping) and leaf.relation in counted:
                return True, counted[leaf.relation] or 0

        nodes = self._reach(record, leaf.chain)
        if nodes is None:
            return False, None
        if leaf.column is None:
            return True, len(nodes)
        if not leaf.aggregate:
            return True, self._convert(nodes[0], leaf.column)

        values = [self._convert(n, leaf.column) for n in nodes]
        if leaf.mode is AggregateMode.CONCAT:
            return True, ", ".join(str(v) for v in values)
        return True, values

    def flatten_record(self, record: Any, leaves: Sequence[Leaf]) -> dict[str, Any]:
        derived: dict[str, Any] = {}
        for leaf in leaves:
            present, value = self.leaf_value(record, leaf)
            if present:
                derived[leaf.key] = value
        return derived

    def flatten_relation(self, records: Sequence[Any], relation: RelationSpec) -> dict[int, dict[str, Any]]:
        """Derived columns of a single top-level relation, keyed by record position."""
        leaves = list(_walk(relation, ()))
        return {i: self.flatten_record(r, leaves) for i, r in enumerate(records)}

    def flatten(self, records: Sequence[Any], schema: SchemaConfig) -> dict[int, dict[str, Any]]:
        """Derived columns of every relation in *schema*, keyed by record position."""
        leaves = relation_leaves(schema)
        logger.debug("Flattening %d records over %d relation leaves", len(records), len(leaves))
        return {i: self.flatten_record(r, leaves) for i, r in enumerate(records)}

    def base_values(self, record: Any, schema: SchemaConfig) -> dict[str, Any]:
        """Converted scalar / dotted-path columns plus additional-directive values."""
        values = {name: self._convert(record, column) for name, column in schema.columns.items()}
        for name in schema.additional:
            values[name] = resolve_path(record, name)
        return values

    def merge(self, record: Any, derived: Mapping[str, Any], schema: SchemaConfig) -> dict[str, Any]:
        merged = self.base_values(record, schema)
        merged.update(derived)
        return merged
