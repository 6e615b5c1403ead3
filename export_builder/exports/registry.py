"""
Export definition lookup by page name.

Explicitly registered definitions win; otherwise ``"employee report"`` is
looked up as ``EmployeeReportExport`` in module
``{settings.export_namespace}.employee_report``.
"""
from __future__ import annotations

import importlib
from typing import Callable

from export_builder.core.config import get_settings
from export_builder.core.errors import NotFoundError
from export_builder.core.logging import get_logger
from export_builder.core.utils import snake_case, studly_case
from export_builder.exports.base import BaseExport

logger = get_logger(__name__)


def _is_module_or_parent(name: str | None, module_name: str) -> bool:
    return name is not None and (name == module_name or module_name.startswith(f"{name}."))


class ExportRegistry:
    def __init__(self, namespace: str | None = None):
        self.namespace = namespace
        self._exports: dict[str, type[BaseExport]] = {}

    def register(self, name: str) -> Callable[[type[BaseExport]], type[BaseExport]]:
        """Class decorator: make *cls* resolvable as *name*."""

        def decorator(cls: type[BaseExport]) -> type[BaseExport]:
            self._exports[snake_case(name)] = cls
            return cls

        return decorator

    def names(self) -> list[str]:
        return sorted(self._exports)

    def resolve(self, name: str) -> type[BaseExport]:
        key = snake_case(name)
        if key in self._exports:
            return self._exports[key]

        namespace = self.namespace or get_settings().export_namespace
        module_name = f"{namespace}.{key.replace('.', '_')}"
        class_name = f"{studly_case(name)}Export"
        missing = NotFoundError(f"No export named '{name}' ({module_name}.{class_name})", {"page": name})
        try:
            module = importlib.import_module(module_name)
        except ModuleNotFoundError as exc:
            # only the definition module (or its package) being absent means "no such export"
            if not _is_module_or_parent(exc.name, module_name):
                raise
            raise missing from exc

        cls = getattr(module, class_name, None)
        if cls is None:
            raise missing
        if not (isinstance(cls, type) and issubclass(cls, BaseExport)):
            raise NotFoundError(f"'{module_name}.{class_name}' is not an export definition", {"page": name})
        logger.debug("Resolved export '%s' -> %s.%s", name, module_name, class_name)
        return cls


registry = ExportRegistry()
