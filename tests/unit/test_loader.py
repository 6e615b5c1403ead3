"""
Unit tests -- schema parsing, validation and YAML loading.
"""
import pytest

from export_builder.core.errors import ConfigurationError
from export_builder.schema.loader import (
    AggregateMode,
    CallableDirective,
    Cardinality,
    SchemaConfig,
    load_schema,
    parse_schema,
    validate_schema,
)

RAW = {
    "model": "app.models:Employee",
    "date_column": "hired_on",
    "columns": {"name": "text", "hired_on": "date", "department.name": "text"},
    "relations": {
        "one": {
            "manager": {"key": "manager_id", "columns": {"name": "text"}},
            "office": {"city": "text", "region": {"title": "text"}},
        },
        "many": {
            "list": {"tags": {"value": "label", "columns": {"label": "text", "id": "int"}}},
            "concat": {"skills": {"name": "text"}},
            "count": ["projects"],
        },
    },
    "custom_eager_load": ["department"],
    "custom_select": ["id"],
}


@pytest.fixture(scope="module")
def schema():
    return parse_schema(RAW)


def test_returns_schema_config(schema):
    assert isinstance(schema, SchemaConfig)
    assert schema.model == "app.models:Employee"
    assert schema.date_column == "hired_on"


def test_columns_keep_declaration_order(schema):
    assert list(schema.columns) == ["name", "hired_on", "department.name"]
    assert schema.columns["hired_on"].type == "date"


def test_scalar_columns_exclude_paths(schema):
    assert [c.name for c in schema.scalar_columns] == ["name", "hired_on"]
    assert schema.columns["department.name"].is_path


def test_structured_one_relation(schema):
    manager = schema.one["manager"]
    assert manager.cardinality is Cardinality.ONE
    assert manager.mode is None
    assert manager.key == "manager_id"
    assert list(manager.columns) == ["name"]


def test_shorthand_one_relation_with_nested(schema):
    office = schema.one["office"]
    assert list(office.columns) == ["city"]
    region = office.relations["region"]
    assert region.cardinality is Cardinality.ONE
    assert list(region.columns) == ["title"]


def test_grouped_many_modes(schema):
    assert schema.many["tags"].mode is AggregateMode.LIST
    assert schema.many["skills"].mode is AggregateMode.CONCAT
    assert schema.many["projects"].mode is AggregateMode.COUNT
    assert all(r.cardinality is Cardinality.MANY for r in schema.many.values())


def test_value_column(schema):
    assert schema.many["tags"].value == "label"
    assert schema.many["skills"].value == "name"
    assert schema.many["projects"].value is None


def test_aggregates_and_counts(schema):
    assert [r.name for r in schema.aggregates] == ["skills", "tags"]
    assert [r.name for r in schema.counts] == ["projects"]


def test_aggregates_put_concat_before_list():
    schema = parse_schema({
        "model": "Employee",
        "columns": {"name": "text"},
        "relations": {"many": {
            "tags": {"mode": "list", "value": "label"},
            "skills": {"mode": "concat", "value": "name"},
            "badges": {"mode": "list", "value": "title"},
        }},
    })
    assert [r.name for r in schema.aggregates] == ["skills", "tags", "badges"]


def test_relation_lookup(schema):
    assert schema.relation("manager") is schema.one["manager"]
    assert schema.relation("tags") is schema.many["tags"]
    assert schema.relation("nothing") is None


def test_eager_paths_use_deepest_path(schema):
    assert schema.one["office"].eager_paths() == ["office.region"]
    assert schema.one["manager"].eager_paths() == ["manager"]


def test_custom_lists(schema):
    assert schema.custom_eager_load == ("department",)
    assert schema.custom_select == ("id",)


def test_flat_many_form():
    schema = parse_schema({
        "model": "m",
        "columns": {"name": "text"},
        "relations": {"many": {
            "tags": {"mode": "concat", "value": "label"},
            "notes": {"body": "text"},
        }},
    })
    assert schema.many["tags"].mode is AggregateMode.CONCAT
    assert schema.many["tags"].value_column.name == "label"
    assert schema.many["notes"].mode is AggregateMode.LIST
    assert schema.many["notes"].value == "body"


def test_nested_relations_under_many():
    schema = parse_schema({
        "model": "m",
        "columns": {"name": "text"},
        "relations": {"many": {"list": {"tags": {
            "value": "label",
            "columns": {"label": "text"},
            "relations": {"one": {"category": {"name": "text"}}},
        }}}},
    })
    tags = schema.many["tags"]
    assert tags.relations["category"].cardinality is Cardinality.ONE


def test_camel_case_aliases():
    schema = parse_schema({
        "model": "m",
        "columns": {"name": "text"},
        "customWith": ["team"],
        "customSelect": ["id"],
        "additionalQuery": {"open_tickets": lambda q: q},
    })
    assert schema.custom_eager_load == ("team",)
    assert schema.custom_select == ("id",)
    assert isinstance(schema.additional["open_tickets"], CallableDirective)


def test_callable_directive_keeps_query_when_none_returned():
    directive = CallableDirective(lambda q: None)
    assert directive.apply("query") == "query"


# ── Invalid configurations ───────────────────────────────

def test_unknown_mode_rejected():
    with pytest.raises(ConfigurationError, match="Unknown aggregation mode"):
        parse_schema({"model": "m", "columns": {"a": "text"},
                      "relations": {"many": {"tags": {"mode": "sum", "label": "text"}}}})


def test_list_without_value_column_rejected():
    with pytest.raises(ConfigurationError, match="needs a 'value' column"):
        parse_schema({"model": "m", "columns": {"a": "text"},
                      "relations": {"many": {"list": {"tags": {"label": "text", "id": "int"}}}}})


def test_one_relation_without_columns_rejected():
    with pytest.raises(ConfigurationError, match="declares no columns"):
        parse_schema({"model": "m", "columns": {"a": "text"}, "relations": {"one": {"manager": {}}}})


def test_relation_in_both_groups_rejected():
    with pytest.raises(ConfigurationError, match="both one and many"):
        parse_schema({"model": "m", "columns": {"a": "text"}, "relations": {
            "one": {"team": {"name": "text"}},
            "many": {"count": ["team"]},
        }})


def test_unknown_relation_group_rejected():
    with pytest.raises(ConfigurationError, match="Unknown relation group"):
        parse_schema({"model": "m", "columns": {"a": "text"}, "relations": {"several": {}}})


def test_column_without_type_rejected():
    with pytest.raises(ConfigurationError):
        parse_schema({"model": "m", "columns": {"a": None}})


def test_bad_additional_directive_rejected():
    with pytest.raises(ConfigurationError):
        parse_schema({"model": "m", "columns": {"a": "text"}, "additional": {"x": 42}})


def test_non_mapping_rejected():
    with pytest.raises(ConfigurationError):
        parse_schema(["model"])


# ── Validation ───────────────────────────────────────────

def test_validate_ok(schema):
    validate_schema(schema)


def test_validate_missing_model():
    with pytest.raises(ConfigurationError, match="no model"):
        validate_schema(parse_schema({"columns": {"a": "text"}}))


def test_validate_empty_columns():
    with pytest.raises(ConfigurationError, match="no columns"):
        validate_schema(parse_schema({"model": "m", "columns": {}}))


def test_validate_column_relation_clash():
    schema = parse_schema({"model": "m", "columns": {"tags": "text"},
                           "relations": {"many": {"count": ["tags"]}}})
    with pytest.raises(ConfigurationError, match="declared more than once"):
        validate_schema(schema)


def test_validate_column_one_relation_key_clash():
    schema = parse_schema({"model": "m", "columns": {"name": "text", "manager_name": "text"},
                           "relations": {"one": {"manager": {"name": "text"}}}})
    with pytest.raises(ConfigurationError) as exc_info:
        validate_schema(schema)
    assert exc_info.value.context == {"keys": ["manager_name"]}


def test_validate_nested_one_relation_key_clash():
    schema = parse_schema({"model": "m", "columns": {"name": "text"},
                           "relations": {"one": {"manager": {"team_title": "text", "team": {"title": "text"}}}}})
    with pytest.raises(ConfigurationError, match="manager_team_title"):
        validate_schema(schema)


# ── YAML ─────────────────────────────────────────────────

def test_load_schema_from_yaml(tmp_path):
    path = tmp_path / "employees.yaml"
    path.write_text(
        "model: app.models:Employee\n"
        "columns:\n"
        "  name: text\n"
        "  hired_on: date\n"
        "relations:\n"
        "  many:\n"
        "    count: [projects]\n",
        encoding="utf-8",
    )
    schema = load_schema(path)
    assert list(schema.columns) == ["name", "hired_on"]
    assert schema.many["projects"].is_count
