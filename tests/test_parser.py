import json

import pytest

from app.core.schemas import ParseFailureKind
from app.ai_feature.fields import FIELD_ALLOWLIST, JOIN_ALLOWLIST, TABLE_ALLOWLIST
from app.ai_feature.parser import default_descriptor, parse_query_params
from app.ai_feature.validation import validate_query_descriptor


DEFAULT_PAYLOAD = {
    "table": "air_quality",
    "filters": [],
    "limit": 100,
    "orderBy": "datetime",
    "orderDirection": "desc",
    "joins": [],
}


def assert_safe(descriptor):
    """Passes the schema and every allow-list"""
    validate_query_descriptor(descriptor.to_payload())
    assert descriptor.table in TABLE_ALLOWLIST
    assert all(f.field in FIELD_ALLOWLIST for f in descriptor.filters)
    assert descriptor.order_by is None or descriptor.order_by in FIELD_ALLOWLIST
    assert all(j in JOIN_ALLOWLIST for j in descriptor.joins)
    assert 1 <= descriptor.limit <= 500


def test_valid_params_accepted():
    """Well-formed, allowed params come back as data"""
    result = parse_query_params(
        '{"table":"air_quality","filters":[{"field":"temperature","operator":"gt","value":20}],'
        '"limit":50,"orderBy":"datetime","orderDirection":"desc"}'
    )
    assert result.success is True
    assert result.data.table == "air_quality"
    assert result.data.limit == 50
    assert result.data.filters[0].field == "temperature"
    assert result.data.filters[0].value == 20


def test_injected_table_falls_back_to_allowed_table():
    result = parse_query_params('{"table":"users; DROP TABLE users;--","limit":100}')

    assert result.success is False
    assert result.kind == ParseFailureKind.POLICY_VIOLATION
    assert result.fallback.table in TABLE_ALLOWLIST
    assert "DROP" not in result.fallback.table
    assert result.fallback.limit == 100


def test_prose_returns_documented_default():
    result = parse_query_params("not json at all")

    assert result.success is False
    assert result.kind == ParseFailureKind.MALFORMED
    assert result.fallback.to_payload() == DEFAULT_PAYLOAD
    assert result.fallback == default_descriptor()


def test_markdown_fenced_json_rejected_without_parsing():
    result = parse_query_params('```json\n{"table": "air_quality"}\n```')
    assert result.success is False
    assert result.error == "Input does not appear to be a JSON object"


@pytest.mark.parametrize("raw", [None, "", "   ", 42, {"table": "air_quality"}])
def test_non_string_or_empty_input(raw):
    result = parse_query_params(raw)
    assert result.success is False
    assert result.kind == ParseFailureKind.MALFORMED
    assert result.error == "Input is not a valid string"


def test_broken_json_is_a_failure_not_an_exception():
    result = parse_query_params('{"table": "air_quality", "limit": }')
    assert result.success is False
    assert result.error.startswith("JSON parsing failed")


def test_schema_failure_carries_field_errors():
    result = parse_query_params(
        '{"table":"air_quality","filters":[{"field":"pm25","operator":"drop","value":1}]}'
    )
    assert result.success is False
    assert result.kind == ParseFailureKind.MALFORMED
    assert result.validation_errors


def test_disallowed_field_keeps_table_and_limit():
    """Partially good params degrade instead of being thrown away"""
    result = parse_query_params(
        json.dumps(
            {
                "table": "fire_data",
                "filters": [
                    {"field": "burn_unit", "operator": "eq", "value": "A1"},
                    {"field": "password", "operator": "eq", "value": "x"},
                ],
                "limit": 25,
                "orderBy": "risk_level",
                "orderDirection": "asc",
            }
        )
    )
    assert result.success is False
    assert result.kind == ParseFailureKind.POLICY_VIOLATION
    assert result.error == "Field 'password' is not allowed"
    assert result.fallback.table == "fire_data"
    assert result.fallback.filters == []
    assert result.fallback.limit == 25
    assert result.fallback.order_by == "risk_level"
    assert result.fallback.order_direction.value == "asc"


def test_disallowed_order_by_resets_only_order():
    result = parse_query_params(
        '{"table":"weather_data","filters":[{"field":"humidity","operator":"lt","value":30}],'
        '"orderBy":"1; DELETE FROM weather_data"}'
    )
    assert result.success is False
    assert result.fallback.table == "weather_data"
    assert [f.field for f in result.fallback.filters] == ["humidity"]
    assert result.fallback.order_by == "datetime"


def test_disallowed_join_dropped():
    result = parse_query_params('{"table":"sensor_readings","joins":["pg_shadow"]}')
    assert result.success is False
    assert result.fallback.table == "sensor_readings"
    assert result.fallback.joins == []


def test_field_aliases_are_normalized_before_allow_list():
    result = parse_query_params(
        '{"table":"air_quality","filters":[{"field":"PM2.5","operator":"gt","value":35},'
        '{"field":"relativeHumidity","operator":"lt","value":20}],"orderBy":"pm25Standard"}'
    )
    assert result.success is True
    assert [f.field for f in result.data.filters] == ["pm25", "humidity"]
    assert result.data.order_by == "pm25"


def test_oversized_limit_is_clamped():
    result = parse_query_params('{"table":"sensor_readings","limit":100000}')
    assert result.success is True
    assert result.data.limit == 500


HOSTILE_INPUTS = [
    "",
    "{}",
    "{",
    "}{",
    "[]",
    '{"table": null}',
    '{"table": "air_quality", "filters": null}',
    '{"table": "air_quality", "limit": NaN}',
    '{"table": "air_quality", "limit": 1e309}',
    '{"table": "pg_catalog.pg_user"}',
    '{"table": "AIR_QUALITY"}',
    '{"table": "air_quality", "filters": [{"field": "id; --", "operator": "eq", "value": 1}]}',
    '{"table": "air_quality", "filters": [{"field": "latitude", "operator": "eq"}]}',
    '{"table": "air_quality", "filters": [{"field": "latitude", "operator": "eq", "value": {"$gt": 1}}]}',
    '{"table": "air_quality", "orderBy": "", "joins": ["devices", "users"]}',
    '{"table": "sensor_readings", "joins": ["DEVICES"], "orderDirection": "ASC"}',
    '{"table": "fire_data", "limit": -1, "orderBy": "status"}',
    "{" + '"a":[' * 5000 + "]" * 5000 + "}",
]


@pytest.mark.parametrize("raw", HOSTILE_INPUTS)
def test_every_outcome_is_safe(raw):
    """Success data and failure fallbacks both pass schema + allow-lists"""
    result = parse_query_params(raw)
    if result.success:
        assert_safe(result.data)
    else:
        assert_safe(result.fallback)
        assert result.error
