"""
Small shared utilities.
"""
from __future__ import annotations

import re
import time
from contextlib import contextmanager
from typing import Generator

_WORD_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_NON_WORD_RE = re.compile(r"[^a-zA-Z0-9]+")


@contextmanager
def timer() -> Generator[dict, None, None]:
    """Context manager that records elapsed wall-clock milliseconds."""
    result: dict = {}
    start = time.perf_counter()
    try:
        yield result
    finally:
        result["elapsed_ms"] = int((time.perf_counter() - start) * 1000)


def snake_case(value: str) -> str:
    """``"HiredOn"`` / ``"hired on"`` / ``"hired-on"`` -> ``"hired_on"``.

    Dots are kept so that dotted paths stay recognisable.
    """
    parts = []
    for segment in value.split("."):
        segment = _WORD_BOUNDARY_RE.sub("_", segment.strip())
        parts.append(_NON_WORD_RE.sub("_", segment).strip("_").lower())
    return ".".join(parts)


def studly_case(value: str) -> str:
    """``"employee_report"`` -> ``"EmployeeReport"``."""
    return "".join(w[:1].upper() + w[1:] for w in _NON_WORD_RE.split(snake_case(value).replace(".", "_")) if w)


def slugify(value: str, separator: str = "-") -> str:
    """Lower-case ASCII slug, every run of non-alphanumerics collapsed to *separator*."""
    return _NON_WORD_RE.sub(separator, value.lower()).strip(separator)
