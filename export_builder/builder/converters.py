"""
Value conversion -- raw record values to display values by declared type tag.

Closed tags: text, date, datetime, array, int, float, money, bool/boolean,
classPath.  Any other tag is looked up in a `TypeResolverRegistry`; tags with
no registered resolver pass the value through unchanged.
"""
from __future__ import annotations

import datetime
import decimal
import enum
import re
from typing import Any, Callable, Protocol

import pandas as pd

from export_builder.builder.labels import LabelResolver, get_default_labels
from export_builder.core.config import get_settings
from export_builder.core.errors import ConversionError

SCALAR_TYPES = frozenset(
    {"text", "date", "datetime", "array", "int", "float", "money", "bool", "boolean", "classPath"}
)

_NUMERIC_RE = re.compile(r"^\s*[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?\s*$")
_CLASS_PATH_RE = re.compile(r"[\\./]")
_CENT = decimal.Decimal("0.01")


class TypeResolver(Protocol):
    def resolve(self, value: Any) -> Any: ...


class CallableResolver:
    def __init__(self, func: Callable[[Any], Any]):
        self._func = func

    def resolve(self, value: Any) -> Any:
        return self._func(value)


class EnumResolver:
    """Maps a stored enum value to the translated member name."""

    def __init__(self, enum_cls: type[enum.Enum], labels: LabelResolver | None = None):
        self._enum = enum_cls
        self._labels = labels

    def resolve(self, value: Any) -> Any:
        try:
            member = value if isinstance(value, self._enum) else self._enum(value)
        except ValueError:
            return value
        labels = self._labels if self._labels is not None else get_default_labels()
        return labels.resolve(member.name.lower())


class TypeResolverRegistry:
    """Type tag -> resolver.  Populated once at startup by the host."""

    def __init__(self) -> None:
        self._resolvers: dict[str, TypeResolver] = {}

    def register(self, tag: str, resolver: Any) -> None:
        if tag in SCALAR_TYPES:
            raise ValueError(f"'{tag}' is a built-in type tag and cannot be overridden")
        if isinstance(resolver, type) and issubclass(resolver, enum.Enum):
            resolver = EnumResolver(resolver)
        elif not hasattr(resolver, "resolve"):
            if not callable(resolver):
                raise TypeError(f"Resolver for '{tag}' must expose resolve(value) or be callable")
            resolver = CallableResolver(resolver)
        self._resolvers[tag] = resolver

    def get(self, tag: str) -> TypeResolver | None:
        return self._resolvers.get(tag)

    def __contains__(self, tag: str) -> bool:
        return tag in self._resolvers


# ── Helpers ──────────────────────────────────────────────

def is_numeric(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float, decimal.Decimal)):
        return True
    return isinstance(value, str) and bool(_NUMERIC_RE.match(value))


def is_empty(value: Any) -> bool:
    """Loose emptiness: None, "", "0", 0, False and empty containers."""
    if value is None:
        return True
    if isinstance(value, (datetime.date, datetime.datetime)):
        return False
    if isinstance(value, str):
        return value in ("", "0")
    try:
        return not value
    except ValueError:  # ambiguous truth value (arrays)
        return False


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value not in ("", "0")
    return bool(value)


def parse_datetime(value: Any) -> datetime.datetime | datetime.date:
    if isinstance(value, (datetime.datetime, datetime.date)):
        return value
    try:
        parsed = pd.Timestamp(str(value))
    except (ValueError, TypeError, OverflowError) as exc:
        raise ConversionError(f"Cannot parse date value {value!r}", {"value": value}) from exc
    if pd.isna(parsed):
        raise ConversionError(f"Cannot parse date value {value!r}", {"value": value})
    return parsed.to_pydatetime()


# ── Converter ────────────────────────────────────────────

class ValueConverter:
    def __init__(
        self,
        labels: LabelResolver | None = None,
        resolvers: TypeResolverRegistry | None = None,
        date_format: str | None = None,
        datetime_format: str | None = None,
    ):
        settings = get_settings()
        self.labels = labels if labels is not None else get_default_labels()
        self.resolvers = resolvers or TypeResolverRegistry()
        self.date_format = date_format or settings.date_format
        self.datetime_format = datetime_format or settings.datetime_format

    def convert(self, value: Any, type_tag: str) -> Any:
        if type_tag == "text":
            return value
        if type_tag == "date":
            return "" if is_empty(value) else parse_datetime(value).strftime(self.date_format)
        if type_tag == "datetime":
            if is_empty(value):
                return ""
            parsed = parse_datetime(value)
            if not isinstance(parsed, datetime.datetime):
                parsed = datetime.datetime.combine(parsed, datetime.time())
            return parsed.strftime(self.datetime_format)
        if type_tag == "array":
            if isinstance(value, (list, tuple, set)):
                return ", ".join(str(v) for v in value if v is not None and v != "")
            return value
        if type_tag == "int":
            return self._to_int(value)
        if type_tag == "float":
            return float(value) if is_numeric(value) else value
        if type_tag == "money":
            if not is_numeric(value):
                return value
            return self._to_money(value)
        if type_tag in ("bool", "boolean"):
            return self.labels.resolve("yes" if _truthy(value) else "no")
        if type_tag == "classPath":
            if is_empty(value):
                return ""
            return self.labels.resolve(_CLASS_PATH_RE.split(str(value))[-1])

        resolver = self.resolvers.get(type_tag)
        if resolver is not None:
            return resolver.resolve(value)
        return value

    @staticmethod
    def _to_money(value: Any) -> Any:
        amount = decimal.Decimal(str(value).strip())
        if not amount.is_finite():
            return value
        with decimal.localcontext() as ctx:
            # whole digits plus two decimals must fit the context precision
            ctx.prec = max(28, amount.adjusted() + 3)
            return f"{amount.quantize(_CENT, rounding=decimal.ROUND_HALF_UP):f}"

    @staticmethod
    def _to_int(value: Any) -> int:
        if isinstance(value, bool):
            return int(value)
        if is_numeric(value):
            return int(float(value)) if isinstance(value, str) else int(value)
        return 0
