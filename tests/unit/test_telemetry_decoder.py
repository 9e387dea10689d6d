"""Unit tests for OTLP/JSON decoding."""

import json

import pytest

from agent_radar.exceptions import DecodeError
from agent_radar.models.telemetry import AttributeMap, AttributeType, AttributeValue
from agent_radar.telemetry.decoder import decode_any_value, decode_logs, decode_metrics


def logs_payload(*records, resource=None):
    return json.dumps({
        "resourceLogs": [{
            "resource": {"attributes": resource or []},
            "scopeLogs": [{"logRecords": list(records)}],
        }]
    }).encode()


def test_decode_log_record_with_typed_attributes():
    """Test that body, attributes, resource and timestamp are decoded."""
    payload = logs_payload(
        {
            "timeUnixNano": "1700000000000000000",
            "body": {"stringValue": "claude_code.api_request"},
            "attributes": [
                {"key": "model", "value": {"stringValue": "claude-sonnet-4"}},
                {"key": "input_tokens", "value": {"intValue": "1200"}},
                {"key": "cost_usd", "value": {"doubleValue": 0.25}},
                {"key": "success", "value": {"boolValue": True}},
            ],
        },
        resource=[{"key": "service.name", "value": {"stringValue": "claude-code"}}],
    )

    records = decode_logs(payload)

    assert len(records) == 1
    record = records[0]
    assert record.body == "claude_code.api_request"
    assert record.attributes.int_value(["input_tokens"]) == 1200
    assert record.attributes.double_value(["cost_usd"]) == 0.25
    assert record.attributes.bool_value(["success"]) is True
    assert record.resource.string_value(["service.name"]) == "claude-code"
    assert record.timestamp is not None
    assert record.timestamp.year == 2023


def test_decode_logs_empty_request():
    """Test that an export with no resources decodes to nothing."""
    assert decode_logs(b"{}") == []


@pytest.mark.parametrize("payload", [b"not json", b"[1, 2]", b'{"resourceLogs": {}}'])
def test_decode_logs_rejects_malformed_payloads(payload):
    """Test that malformed payloads raise DecodeError."""
    with pytest.raises(DecodeError):
        decode_logs(payload)


def test_decode_metrics_flattens_sum_and_gauge_points():
    """Test that sum and gauge data points become flat metric points."""
    payload = json.dumps({
        "resourceMetrics": [{
            "scopeMetrics": [{
                "metrics": [
                    {
                        "name": "claude_code.token.usage",
                        "sum": {"dataPoints": [
                            {"asDouble": 100, "attributes": [
                                {"key": "type", "value": {"stringValue": "input"}},
                            ]},
                            {"asDouble": 40, "attributes": [
                                {"key": "type", "value": {"stringValue": "output"}},
                            ]},
                        ]},
                    },
                    {
                        "name": "claude_code.active_time.total",
                        "gauge": {"dataPoints": [{"asInt": "7"}]},
                    },
                    {"name": "", "sum": {"dataPoints": [{"asDouble": 1}]}},
                ]
            }]
        }]
    }).encode()

    points = decode_metrics(payload)

    assert [p.name for p in points] == [
        "claude_code.token.usage",
        "claude_code.token.usage",
        "claude_code.active_time.total",
    ]
    assert points[0].value == 100
    assert points[0].attributes.string_value(["type"]) == "input"
    assert points[2].value == 7


def test_decode_any_value_unsupported_shape():
    """Test that unknown AnyValue shapes are dropped."""
    assert decode_any_value({"bytesValue": "AAA="}) is None
    assert decode_any_value("plain") is None


def test_attribute_lookup_tries_aliases_in_order():
    """Test that the first present and convertible alias wins."""
    attributes = AttributeMap(values={
        "tokens": AttributeValue(type=AttributeType.STRING, value="not a number"),
        "token_count": AttributeValue(type=AttributeType.STRING, value="42"),
    })

    assert attributes.int_value(["missing", "tokens", "token_count"]) == 42
    assert attributes.string_value(["missing"]) is None


@pytest.mark.parametrize("raw", ["Infinity", "-Infinity", "NaN"])
def test_decode_any_value_rejects_non_finite_doubles(raw):
    """Test that non-finite doubles are dropped rather than decoded."""
    assert decode_any_value({"doubleValue": raw}) is None


def test_decode_metrics_skips_non_finite_points():
    """Test that a non-finite data point is dropped and its neighbours kept."""
    payload = json.dumps({"resourceMetrics": [{"scopeMetrics": [{"metrics": [
        {"name": "m", "gauge": {"dataPoints": [{"asDouble": "Infinity"}, {"asDouble": 1.5}]}},
    ]}]}]}).encode()

    assert [p.value for p in decode_metrics(payload)] == [1.5]


def test_attribute_value_non_finite_reads_as_missing():
    """Test numeric conversions of values that have no finite reading."""
    infinite = AttributeValue(type=AttributeType.DOUBLE, value=float("inf"))
    text = AttributeValue(type=AttributeType.STRING, value="nan")

    assert infinite.as_int() is None
    assert infinite.as_double() is None
    assert text.as_int() is None
    assert AttributeValue(type=AttributeType.STRING, value="42.9").as_int() == 42
