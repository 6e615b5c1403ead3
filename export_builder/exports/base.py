"""
BaseExport -- a named export definition.

Subclasses declare the schema as a class attribute and may override the
enablement gate or the record source::

    class EmployeesExport(BaseExport):
        config = {
            "model": "app.models:Employee",
            "columns": {"name": "text", "hired_on": "date"},
        }

        def is_enabled(self) -> bool:
            return get_settings().hr_exports_enabled
"""
from __future__ import annotations

from typing import Any, ClassVar, Mapping

from export_builder.builder.directives import RecordSource
from export_builder.builder.engine import ExportEngine, ExportResult
from export_builder.core.errors import ConfigurationError
from export_builder.schema.filters import RuntimeFilter
from export_builder.schema.loader import SchemaConfig, parse_schema


class BaseExport:
    config: ClassVar[Mapping[str, Any] | SchemaConfig | None] = None

    def __init__(self, runtime_filter: RuntimeFilter | Mapping[str, Any] | None = None):
        if runtime_filter is None or isinstance(runtime_filter, RuntimeFilter):
            self.filter = runtime_filter or RuntimeFilter()
        else:
            self.filter = RuntimeFilter.model_validate(runtime_filter)

    @property
    def schema(self) -> SchemaConfig:
        if self.config is None:
            raise ConfigurationError(f"{type(self).__name__} declares no config.")
        if isinstance(self.config, SchemaConfig):
            return self.config
        return parse_schema(self.config)

    def is_enabled(self) -> bool:
        return True

    def source(self) -> RecordSource:
        """Record source for this export; SQLAlchemy over ``schema.model`` by default."""
        from export_builder.db.source import SqlAlchemySource

        return SqlAlchemySource(self.schema.model)

    def produce(self, **engine_kwargs: Any) -> ExportResult:
        engine = ExportEngine(self.schema, self.source(), self.filter, **engine_kwargs)
        return engine.run()
