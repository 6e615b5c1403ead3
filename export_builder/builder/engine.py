"""
Export engine -- orchestrates configure -> fetch -> flatten -> project -> filter.

    CONFIGURED -> FETCHING -> FLATTENING -> PROJECTING -> FILTERING -> DONE
                                  (any state) -> FAILED

Output exists only at DONE: every batch from the source is drained before
flattening, because headings must be final before the first row.  Nothing
is retried here.

The column filter is applied to the schema before fetching, so excluded
columns and relations are neither loaded nor converted.  FILTERING narrows
the full projection and checks it against the filtered schema.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Mapping

from export_builder.builder.converters import ValueConverter
from export_builder.builder.directives import FetchDirectives, RecordSource, build_directives
from export_builder.builder.flattener import RelationFlattener
from export_builder.builder.labels import LabelResolver
from export_builder.builder.projector import ColumnFilter, Projection, apply_filter, project
from export_builder.core.config import get_settings
from export_builder.core.errors import ExportError, SourceError
from export_builder.core.logging import fields, get_logger
from export_builder.core.utils import timer
from export_builder.schema.filters import RuntimeFilter
from export_builder.schema.loader import SchemaConfig, parse_schema, validate_schema

logger = get_logger(__name__)


class ExportState(str, enum.Enum):
    CONFIGURED = "configured"
    FETCHING = "fetching"
    FLATTENING = "flattening"
    PROJECTING = "projecting"
    FILTERING = "filtering"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ExportResult:
    headings: list[str]
    rows: list[list[Any]]
    keys: list[str] = field(default_factory=list)

    def as_dicts(self) -> list[dict[str, Any]]:
        """Rows keyed by column key (not by translated heading)."""
        return [dict(zip(self.keys, row)) for row in self.rows]


class ExportEngine:
    """Runs one export.  Instances are single-use and own their schema / filter."""

    def __init__(
        self,
        schema: SchemaConfig | Mapping[str, Any],
        source: RecordSource,
        runtime_filter: RuntimeFilter | Mapping[str, Any] | None = None,
        converter: ValueConverter | None = None,
        labels: LabelResolver | None = None,
        batch_size: int | None = None,
    ):
        self.schema = schema if isinstance(schema, SchemaConfig) else parse_schema(schema)
        if runtime_filter is None or isinstance(runtime_filter, RuntimeFilter):
            self.filter = runtime_filter or RuntimeFilter()
        else:
            self.filter = RuntimeFilter.model_validate(runtime_filter)
        self.source = source
        self.converter = converter or ValueConverter(labels=labels)
        self.labels = labels if labels is not None else self.converter.labels
        self.batch_size = batch_size or get_settings().export_batch_size
        self.flattener = RelationFlattener(self.converter)
        self.state = ExportState.CONFIGURED
        self.history: list[ExportState] = [ExportState.CONFIGURED]
        self.error: BaseException | None = None

    def _enter(self, state: ExportState) -> None:
        logger.debug("Export %s: %s -> %s", self.schema.model, self.state.value, state.value)
        self.state = state
        self.history.append(state)

    # ── Stages ──────────────────────────────────────────

    def _fetch(self, directives: FetchDirectives) -> list[Any]:
        records: list[Any] = []
        batches = 0
        try:
            for batch in self.source.fetch(directives):
                records.extend(batch)
                batches += 1
        except ExportError:
            raise
        except Exception as exc:
            raise SourceError(
                f"Fetching '{self.schema.model}' failed: {exc}",
                {"model": str(self.schema.model)},
            ) from exc
        logger.info("Fetched | %s", fields(model=self.schema.model, records=len(records), batches=batches))
        return records

    def _flatten(self, records: list[Any], schema: SchemaConfig) -> list[dict[str, Any]]:
        derived = self.flattener.flatten(records, schema)
        return [self.flattener.merge(r, derived[i], schema) for i, r in enumerate(records)]

    def _narrow(self, projection: Projection, output: SchemaConfig) -> Projection:
        """Column-filtered *projection*; must match the projection of the filtered schema."""
        projection = ColumnFilter(self.filter).narrow(projection)
        expected = project(output, self.labels)
        if projection.keys != expected.keys:
            raise ExportError(
                "Column filter produced diverging schema and projection",
                {"projection": projection.keys, "schema": expected.keys},
            )
        return projection

    # ── Public API ──────────────────────────────────────

    def run(self) -> ExportResult:
        if self.state is not ExportState.CONFIGURED:
            raise RuntimeError(f"ExportEngine already ran (state={self.state.value})")

        try:
            with timer() as t:
                validate_schema(self.schema)

                output = apply_filter(self.schema, self.filter)

                self._enter(ExportState.FETCHING)
                directives = build_directives(self.schema, self.filter, self.batch_size, output=output)
                records = self._fetch(directives)

                self._enter(ExportState.FLATTENING)
                merged = self._flatten(records, output)

                self._enter(ExportState.PROJECTING)
                projection: Projection = project(self.schema, self.labels)

                self._enter(ExportState.FILTERING)
                projection = self._narrow(projection, output)
                rows = [projection.row(m) for m in merged]

                self._enter(ExportState.DONE)
        except Exception as exc:
            self.error = exc
            self._enter(ExportState.FAILED)
            raise

        logger.info("Export done | %s", fields(
            model=self.schema.model, rows=len(rows), columns=len(projection), ms=t["elapsed_ms"],
        ))
        return ExportResult(headings=projection.headings, rows=rows, keys=projection.keys)


def run_export(
    schema: SchemaConfig | Mapping[str, Any],
    source: RecordSource,
    runtime_filter: RuntimeFilter | Mapping[str, Any] | None = None,
    **kwargs: Any,
) -> ExportResult:
    """Convenience wrapper: build an `ExportEngine` and run it."""
    return ExportEngine(schema, source, runtime_filter, **kwargs).run()
