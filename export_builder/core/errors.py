"""
Export error taxonomy.

Every failure aborts the whole export; nothing is collected and skipped.

  ConfigurationError     missing / malformed schema, raised before any fetch
  NotFoundError          no export definition under the requested name
  ExportPermissionError  definition exists but ``is_enabled()`` is False
  ConversionError        a value failed type coercion (e.g. unparsable date)
  SourceError            the fetch source failed; original cause is chained
  ExportFailedError      generic failure surfaced by the dispatcher
"""
from __future__ import annotations

from typing import Any


class ExportError(Exception):
    """Base class for all export builder errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class ConfigurationError(ExportError):
    pass


class NotFoundError(ExportError):
    pass


class ExportPermissionError(ExportError, PermissionError):
    pass


class ConversionError(ExportError, ValueError):
    pass


class SourceError(ExportError):
    pass


class ExportFailedError(ExportError):
    pass
