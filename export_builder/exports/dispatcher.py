"""
Export dispatcher -- page name + runtime filter -> downloadable file.

  1. ``page`` missing          -> ConfigurationError
  2. no such definition        -> NotFoundError
  3. ``is_enabled()`` is False -> ExportPermissionError
  4. any other failure (importing or constructing the definition, produce,
     encode) is logged with the page name and re-raised as ExportFailedError
     (cause chained)
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from export_builder.core.config import get_settings
from export_builder.core.errors import (
    ConfigurationError,
    ExportFailedError,
    ExportPermissionError,
    NotFoundError,
)
from export_builder.core.logging import fields, get_logger
from export_builder.exports.encoder import MEDIA_TYPES, build_filename, encode, normalize_format
from export_builder.exports.registry import ExportRegistry, registry as default_registry
from export_builder.schema.filters import RuntimeFilter

logger = get_logger(__name__)


@dataclass(frozen=True)
class ExportFile:
    filename: str
    content: bytes
    media_type: str
    format: str

    @property
    def content_disposition(self) -> str:
        return f'attachment; filename="{self.filename}"'


class ExportDispatcher:
    def __init__(self, registry: ExportRegistry | None = None):
        self.registry = registry or default_registry

    def download(self, runtime_filter: RuntimeFilter | Mapping[str, Any]) -> ExportFile:
        if not isinstance(runtime_filter, RuntimeFilter):
            runtime_filter = RuntimeFilter.model_validate(runtime_filter)

        page = (runtime_filter.page or "").strip()
        if not page:
            raise ConfigurationError("Missing export page.")

        fmt = normalize_format(runtime_filter.format or get_settings().export_default_format)
        try:
            export = self.registry.resolve(page)(runtime_filter)
            if not export.is_enabled():
                raise ExportPermissionError(f"Export '{page}' is disabled", {"page": page})
            result = export.produce()
            content = encode(result.headings, result.rows, fmt)
        except (NotFoundError, ExportPermissionError):
            raise
        except Exception as exc:
            logger.error("Export failed | %s", fields(page=page, message=exc), exc_info=True)
            raise ExportFailedError(str(exc), {"page": page}) from exc

        filename = build_filename(page, runtime_filter.filename, runtime_filter.timestamp, fmt)
        logger.info("Export ready | %s", fields(page=page, file=filename, rows=len(result.rows)))
        return ExportFile(filename=filename, content=content, media_type=MEDIA_TYPES[fmt], format=fmt)
