"""
Unit tests -- schema projection and column filtering.
"""
import pytest

from export_builder.builder.labels import TranslationCatalog
from export_builder.builder.projector import (
    GROUP_ADDITIONAL,
    GROUP_COLUMN,
    GROUP_COUNT,
    GROUP_MANY,
    GROUP_ONE,
    ColumnFilter,
    Projection,
    apply_filter,
    narrow,
    project,
)
from export_builder.schema.filters import RuntimeFilter
from export_builder.schema.loader import parse_schema

LABELS = TranslationCatalog({"name": "Name", "hired_on": "Hired On", "manager_name": "Manager"})

SCHEMA = parse_schema({
    "model": "Employee",
    "columns": {"name": "text", "hired_on": "date", "department.name": "text"},
    "relations": {
        "one": {"manager": {"name": "text", "team": {"title": "text"}}},
        "many": {
            "list": {"tags": {"value": "label", "columns": {"label": "text"}}},
            "concat": {"skills": {"name": "text"}},
            "count": ["projects"],
        },
    },
    "additional": {"open_tickets": lambda q: q},
})


@pytest.fixture(scope="module")
def projection():
    return project(SCHEMA, LABELS)


def test_projection_order(projection):
    assert projection.keys == [
        "name",
        "hired_on",
        "department.name",
        "manager_name",
        "manager_team_title",
        "skills",
        "tags",
        "projects",
        "open_tickets",
    ]


def test_projection_groups(projection):
    groups = {c.key: c.group for c in projection}
    assert groups["name"] == GROUP_COLUMN
    assert groups["manager_team_title"] == GROUP_ONE
    assert groups["tags"] == GROUP_MANY
    assert groups["projects"] == GROUP_COUNT
    assert groups["open_tickets"] == GROUP_ADDITIONAL


def test_headings_are_translated(projection):
    assert projection.headings[:4] == ["Name", "Hired On", "department_name", "Manager"]


def test_headings_and_selectors_align(projection):
    assert len(projection.headings) == len(projection.selectors) == len(projection)


def test_row_uses_blank_for_absent_keys(projection):
    row = projection.row({"name": "Ana", "tags": ["x"], "projects": 0})
    assert row[0] == "Ana"
    assert row[1] == ""
    assert row[projection.keys.index("tags")] == ["x"]
    assert row[projection.keys.index("projects")] == 0
    assert row[projection.keys.index("manager_name")] == ""


def test_dotted_column_flag(projection):
    assert [c.key for c in projection if c.is_path] == ["department.name"]


# ── Filtering ────────────────────────────────────────────

def test_no_criteria_is_identity(projection):
    assert narrow(projection, RuntimeFilter()) is projection
    assert apply_filter(SCHEMA, None) is SCHEMA


def test_allow_list_keeps_listed_columns(projection):
    narrowed = narrow(projection, RuntimeFilter(columns=["name"]))
    assert narrowed.keys == ["name"]
    assert narrowed.headings == ["Name"]


def test_allow_list_by_one_relation_name(projection):
    narrowed = narrow(projection, RuntimeFilter(columns=["name", "manager"]))
    assert narrowed.keys == ["name", "manager_name", "manager_team_title"]


def test_allow_list_covers_aggregates_without_related(projection):
    narrowed = narrow(projection, RuntimeFilter(columns=["name", "tags", "open_tickets"]))
    assert narrowed.keys == ["name", "tags", "open_tickets"]


def test_related_allow_list_narrows_aggregates_only(projection):
    narrowed = narrow(projection, RuntimeFilter(related=["skills"]))
    assert narrowed.keys == [
        "name", "hired_on", "department.name", "manager_name", "manager_team_title", "skills",
    ]


def test_both_allow_lists(projection):
    narrowed = narrow(projection, RuntimeFilter(columns=["hired_on"], related=["projects"]))
    assert narrowed.keys == ["hired_on", "projects"]


def test_type_tag_keeps_substring_and_dotted_keys(projection):
    narrowed = narrow(projection, RuntimeFilter(type="name"))
    assert narrowed.keys == ["name", "department.name", "manager_name"]


def test_empty_allow_list_is_ignored(projection):
    assert narrow(projection, RuntimeFilter(columns=[])) is projection


def test_full_allow_list_is_identity(projection):
    narrowed = narrow(projection, RuntimeFilter(columns=projection.keys))
    assert narrowed == projection
    record = {"name": "Ana", "tags": ["x"], "projects": 2}
    assert narrowed.row(record) == projection.row(record)


@pytest.mark.parametrize("criteria", [
    {"columns": ["name"]},
    {"columns": ["name", "manager"]},
    {"columns": ["manager_team_title", "tags"]},
    {"related": ["skills"]},
    {"related": ["projects", "open_tickets"]},
    {"columns": ["hired_on"], "related": ["tags"]},
    {"type": "name"},
    {"type": "title"},
    {"type": "nothing"},
])
def test_filtering_schema_matches_filtering_projection(criteria):
    runtime_filter = RuntimeFilter(**criteria)
    expected = narrow(project(SCHEMA, LABELS), runtime_filter)
    assert project(apply_filter(SCHEMA, runtime_filter), LABELS) == expected


def test_apply_filter_returns_copy():
    filtered = apply_filter(SCHEMA, RuntimeFilter(columns=["name"]))
    assert list(filtered.columns) == ["name"]
    assert filtered.one == {} and filtered.many == {}
    assert list(SCHEMA.columns) == ["name", "hired_on", "department.name"]


def test_column_filter_active():
    assert not ColumnFilter(None).active
    assert ColumnFilter(RuntimeFilter(type="date")).active


def test_empty_projection():
    assert len(Projection(())) == 0
    assert Projection(()).headings == []
