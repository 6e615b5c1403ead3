"""
Label resolution -- heading keys and yes/no/enum values to human labels.

The host application owns translation; the builder only needs something with
a ``resolve(key) -> str`` method.  `TranslationCatalog` is the default
implementation, backed by a flat YAML mapping such as::

    name: Name
    hired_on: Hired On
    "yes": "Yes"
    "no": "No"
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping, Protocol

import yaml

from export_builder.core.config import get_settings
from export_builder.core.logging import get_logger
from export_builder.core.utils import snake_case

logger = get_logger(__name__)


class LabelResolver(Protocol):
    def resolve(self, key: str) -> str: ...


def fallback_label(key: Any) -> str:
    """Visible label used when no translation exists."""
    return str(key).replace(".", "_")


class TranslationCatalog:
    """Dictionary-backed `LabelResolver`.

    Lookups are normalised to snake case, so ``"Hired On"`` and ``"hired_on"``
    hit the same entry.
    """

    def __init__(self, translations: Mapping[str, str] | None = None):
        self._translations: dict[str, str] = {
            snake_case(str(k)): str(v) for k, v in (translations or {}).items()
        }

    def resolve(self, key: str) -> str:
        label = self._translations.get(snake_case(str(key)))
        if label is None:
            return fallback_label(key)
        return label

    def __contains__(self, key: str) -> bool:
        return snake_case(str(key)) in self._translations

    def __len__(self) -> int:
        return len(self._translations)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "TranslationCatalog":
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        # YAML 1.1 reads bare yes/no keys as booleans
        raw = {("yes" if k is True else "no" if k is False else k): v for k, v in raw.items()}
        logger.info("Loaded %d translations from %s", len(raw), path)
        return cls(raw)


@lru_cache
def get_default_labels() -> TranslationCatalog:
    """Catalog from ``settings.translations_path``, or an empty one (identity labels)."""
    settings = get_settings()
    if settings.translations_path:
        return TranslationCatalog.from_yaml(settings.translations_path)
    return TranslationCatalog()
