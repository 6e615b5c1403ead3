"""
RuntimeFilter -- the per-call parameters narrowing rows, columns, ordering
and output format of one export.
"""
from __future__ import annotations

import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Operator = Literal["=", "!=", ">", ">=", "<", "<=", "like", "in", "not_in", "null", "not_null"]


class Condition(BaseModel):
    """Explicit predicate on a base column: ``key <operator> value``."""

    key: str
    operator: Operator = "="
    value: Any = None


class AdvancedCondition(BaseModel):
    """``key IN value``; when *key* names a many-relation: "has a related record whose id is in value"."""

    key: str
    value: Any

    @property
    def values(self) -> list[Any]:
        if isinstance(self.value, (list, tuple, set)):
            return list(self.value)
        return [self.value]


class RuntimeFilter(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    start: datetime.date | None = Field(None, alias="dateRangeStart", description="Inclusive lower bound on the date column")
    end: datetime.date | None = Field(None, alias="dateRangeEnd", description="Inclusive upper bound on the date column")
    search: str | None = Field(None, alias="searchTerm")
    conditions: list[Condition] = Field(default_factory=list, alias="explicitConditions")
    advanced: list[AdvancedCondition] = Field(default_factory=list, alias="advancedConditions")
    columns: list[str] | None = Field(None, alias="columnAllowList")
    related: list[str] | None = Field(None, alias="relatedAllowList")
    type: str | None = Field(None, alias="columnTypeTag", description="Keep columns whose key contains this tag")
    order_by: str | None = Field(None, alias="orderBy")
    order_direction: Literal["asc", "desc"] = Field("asc", alias="orderDirection")
    limit: int | None = Field(None, ge=1)
    page: str | None = Field(None, description="Name of the export definition to run")
    format: str | None = Field(None, description="csv | xls | xlsx")
    filename: str | None = None
    timestamp: str | None = None

    @field_validator("order_direction", mode="before")
    @classmethod
    def _lower_direction(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v

    @field_validator("format", mode="before")
    @classmethod
    def _lower_format(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v

    @property
    def has_column_criteria(self) -> bool:
        return bool(self.columns) or bool(self.related) or bool(self.type)
