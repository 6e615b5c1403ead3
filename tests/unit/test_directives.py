"""
Unit tests -- fetch directives derived from schema + runtime filter.
"""
import datetime

import pytest

from export_builder.builder.directives import (
    Compare,
    DateRange,
    HasRelated,
    InValues,
    Search,
    build_directives,
    build_predicates,
    count_relations,
    eager_load_paths,
    select_columns,
)
from export_builder.builder.projector import apply_filter
from export_builder.core.errors import ConfigurationError
from export_builder.schema.filters import RuntimeFilter
from export_builder.schema.loader import parse_schema

SCHEMA = parse_schema({
    "model": "Employee",
    "date_column": "created_at",
    "columns": {"name": "text", "email": "text", "department.name": "text"},
    "relations": {
        "one": {
            "manager": {"key": "manager_id", "columns": {"name": "text"}},
            "office": {"city": "text", "region": {"title": "text"}},
        },
        "many": {
            "list": {"tags": {"value": "label", "columns": {"label": "text"}}},
            "count": ["projects"],
        },
    },
    "custom_eager_load": ["department", "badge"],
    "custom_select": ["id", "name"],
})


def test_select_columns():
    assert select_columns(SCHEMA) == ("name", "email", "manager_id", "id")


def test_eager_load_paths():
    assert eager_load_paths(SCHEMA) == ("manager", "office.region", "tags", "department", "badge")


def test_count_relations_are_counted_not_loaded():
    assert count_relations(SCHEMA) == ("projects",)
    assert build_directives(SCHEMA).counts == ("projects",)


def test_no_filter_no_predicates():
    assert build_predicates(SCHEMA, RuntimeFilter()) == ()


def test_date_range_predicate():
    f = RuntimeFilter(start="2024-01-01", end="2024-01-31")
    (predicate,) = build_predicates(SCHEMA, f)
    assert predicate == DateRange("created_at", datetime.date(2024, 1, 1), datetime.date(2024, 1, 31))


def test_open_ended_date_range():
    (predicate,) = build_predicates(SCHEMA, RuntimeFilter(start="2024-01-01"))
    assert predicate.end is None


def test_search_spans_scalar_columns():
    (predicate,) = build_predicates(SCHEMA, RuntimeFilter(search="ana"))
    assert predicate == Search("ana", ("name", "email"))


def test_conditions():
    f = RuntimeFilter(conditions=[{"key": "age", "operator": ">=", "value": 30}, {"key": "email", "operator": "null"}])
    assert build_predicates(SCHEMA, f) == (Compare("age", ">=", 30), Compare("email", "null", None))


def test_advanced_on_column_is_in_values():
    f = RuntimeFilter(advanced=[{"key": "status", "value": [1, 2]}])
    assert build_predicates(SCHEMA, f) == (InValues("status", (1, 2)),)


def test_advanced_on_relation_is_has_related():
    f = RuntimeFilter(advanced=[{"key": "tags", "value": 5}])
    assert build_predicates(SCHEMA, f) == (HasRelated("tags", (5,)),)


def test_predicate_order():
    f = RuntimeFilter(
        start="2024-01-01",
        search="ana",
        conditions=[{"key": "age", "value": 30}],
        advanced=[{"key": "tags", "value": [1]}],
    )
    kinds = [type(p) for p in build_predicates(SCHEMA, f)]
    assert kinds == [DateRange, Search, Compare, HasRelated]


def test_build_directives():
    f = RuntimeFilter(order_by="name", order_direction="DESC", limit=10)
    directives = build_directives(SCHEMA, f, batch_size=25)
    assert directives.select == select_columns(SCHEMA)
    assert directives.eager_load == eager_load_paths(SCHEMA)
    assert directives.order_by == "name"
    assert directives.order_direction == "desc"
    assert directives.limit == 10
    assert directives.batch_size == 25


def test_order_by_outside_select_rejected():
    with pytest.raises(ConfigurationError, match="Cannot order by"):
        build_directives(SCHEMA, RuntimeFilter(order_by="salary"))


def test_camel_case_filter_names():
    f = RuntimeFilter.model_validate({
        "dateRangeStart": "2024-02-01",
        "searchTerm": "bo",
        "columnAllowList": ["name"],
        "orderBy": "email",
    })
    assert f.start == datetime.date(2024, 2, 1)
    assert f.search == "bo"
    assert f.columns == ["name"]
    assert build_directives(SCHEMA, f).order_by == "email"


def test_output_schema_decides_what_is_loaded():
    output = apply_filter(SCHEMA, RuntimeFilter(columns=["email", "office"]))
    f = RuntimeFilter(search="ana", order_by="name")
    directives = build_directives(SCHEMA, f, output=output)
    assert directives.select == ("email", "id", "name")
    assert directives.eager_load == ("office.region", "department", "badge")
    assert directives.counts == ()
    assert directives.predicates == (Search("ana", ("name", "email")),)
    assert directives.order_by == "name"
