"""Tests for per-tenant custom field schemas."""

import pytest

from campus.core.exceptions import CustomFieldValidationError, TenantValidationError
from campus.services.custom_fields import parse_schema, validate_custom_fields

CONFIG = {
    "custom_fields": {
        "student": {
            "house": {"type": "choice", "choices": ["red", "blue"], "required": True},
            "bus_route": {"type": "integer"},
            "nickname": {"type": "string", "max_length": 5},
            "enrolled_on": {"type": "date"},
        }
    }
}


def test_valid_values_are_normalised():
    values = validate_custom_fields(
        "student",
        {"house": "red", "bus_route": "12", "enrolled_on": "2024-09-01"},
        CONFIG,
    )
    assert values == {"house": "red", "bus_route": 12, "enrolled_on": "2024-09-01"}


def test_missing_required_field():
    with pytest.raises(CustomFieldValidationError) as exc_info:
        validate_custom_fields("student", {"bus_route": 3}, CONFIG)

    assert exc_info.value.entity_type == "student"
    assert [error["field"] for error in exc_info.value.errors] == ["house"]


@pytest.mark.parametrize("values", [
    {"house": "green"},
    {"house": "red", "nickname": "far too long"},
    {"house": "red", "bus_route": "express"},
    {"house": "red", "shoe_size": 9},
])
def test_invalid_values_rejected(values):
    with pytest.raises(CustomFieldValidationError):
        validate_custom_fields("student", values, CONFIG)


def test_entity_without_schema_accepts_no_values():
    assert validate_custom_fields("course", None, CONFIG) == {}
    with pytest.raises(CustomFieldValidationError):
        validate_custom_fields("course", {"anything": 1}, CONFIG)


def test_tenants_do_not_share_schemas():
    other_tenant = {"custom_fields": {"student": {"locker": {"type": "integer", "required": True}}}}

    with pytest.raises(CustomFieldValidationError):
        validate_custom_fields("student", {"house": "red"}, other_tenant)
    assert validate_custom_fields("student", {"locker": 14}, other_tenant) == {"locker": 14}


@pytest.mark.parametrize("schema", [
    {"student": {"house": {"type": "choice"}}},
    {"student": {"house": {"type": "colour"}}},
    {"student": {"Bad Name": {"type": "string"}}},
    {"student": {"model_config": {"type": "string"}}},
    {"student": {"age": {"type": "integer", "max_length": 3}}},
    {"student": ["house"]},
    ["student"],
])
def test_invalid_schema_rejected(schema):
    with pytest.raises(TenantValidationError):
        parse_schema(schema)


def test_parse_schema():
    parsed = parse_schema(CONFIG["custom_fields"])
    assert parsed["student"]["house"].choices == ["red", "blue"]
    assert parsed["student"]["bus_route"].required is False
