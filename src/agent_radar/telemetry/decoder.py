"""Decode OTLP/JSON export payloads into log records and metric points.

Payload shapes (OTLP/HTTP JSON encoding):

    logs:    resourceLogs[].scopeLogs[].logRecords[]
    metrics: resourceMetrics[].scopeMetrics[].metrics[].{sum|gauge|histogram}.dataPoints[]

Attributes are lists of ``{"key": ..., "value": {"stringValue" | "intValue" |
"doubleValue" | "boolValue": ...}}``. ``intValue`` arrives as a string because
JSON numbers cannot carry 64-bit integers safely.
"""

import json
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..exceptions import DecodeError
from ..models.telemetry import (
    AttributeMap,
    AttributeType,
    AttributeValue,
    LogRecord,
    MetricPoint,
)

logger = logging.getLogger(__name__)

_METRIC_KINDS = ("sum", "gauge", "histogram", "exponentialHistogram", "summary")


def _load(payload: bytes) -> Dict[str, Any]:
    try:
        data = json.loads(payload.decode("utf-8"))
    except UnicodeDecodeError:
        raise DecodeError("Telemetry payload is not UTF-8 JSON", detail=repr(payload[:80]))
    except json.JSONDecodeError as e:
        raise DecodeError(f"Telemetry payload is not valid JSON: {e.msg}", detail=repr(payload[:80]))
    if not isinstance(data, dict):
        raise DecodeError("Telemetry payload is not a JSON object", detail=repr(payload[:80]))
    return data


def _as_list(value: Any, field: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise DecodeError(f"'{field}' must be an array", detail=repr(value)[:80])
    return value


def _as_dict(value: Any, field: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise DecodeError(f"'{field}' entries must be objects", detail=repr(value)[:80])
    return value


def _timestamp(nanos: Any) -> Optional[datetime]:
    if nanos in (None, "", 0, "0"):
        return None
    try:
        return datetime.fromtimestamp(int(nanos) / 1_000_000_000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def _finite(raw: Any) -> Optional[float]:
    """``float(raw)``, or None for garbage, NaN and the infinities."""
    try:
        number = float(raw)
    except (TypeError, ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def decode_any_value(value: Any) -> Optional[AttributeValue]:
    """Convert one OTLP AnyValue object; unsupported shapes return None."""
    if not isinstance(value, dict):
        return None
    if "stringValue" in value:
        return AttributeValue(type=AttributeType.STRING, value=str(value["stringValue"]))
    if "boolValue" in value:
        return AttributeValue(type=AttributeType.BOOL, value=bool(value["boolValue"]))
    if "intValue" in value:
        try:
            return AttributeValue(type=AttributeType.INT, value=int(value["intValue"]))
        except (TypeError, ValueError):
            return None
    if "doubleValue" in value:
        number = _finite(value["doubleValue"])
        if number is None:
            return None
        return AttributeValue(type=AttributeType.DOUBLE, value=number)
    if "arrayValue" in value or "kvlistValue" in value:
        # Nested values are kept as their JSON text
        return AttributeValue(type=AttributeType.STRING, value=json.dumps(value))
    return None


def decode_attributes(raw: Any) -> AttributeMap:
    values: Dict[str, AttributeValue] = {}
    for entry in _as_list(raw, "attributes"):
        if not isinstance(entry, dict) or not isinstance(entry.get("key"), str):
            continue
        decoded = decode_any_value(entry.get("value"))
        if decoded is not None:
            values[entry["key"]] = decoded
    return AttributeMap(values=values)


def _body_text(body: Any) -> Optional[str]:
    decoded = decode_any_value(body)
    if decoded is None:
        return None
    return decoded.as_string()


def decode_logs(payload: bytes) -> List[LogRecord]:
    """
    Decode an OTLP logs export request.

    Raises:
        DecodeError: On malformed input
    """
    data = _load(payload)
    records: List[LogRecord] = []
    for resource_logs in _as_list(data.get("resourceLogs"), "resourceLogs"):
        resource_logs = _as_dict(resource_logs, "resourceLogs")
        resource = decode_attributes(
            _as_dict(resource_logs.get("resource") or {}, "resource").get("attributes")
        )
        for scope_logs in _as_list(resource_logs.get("scopeLogs"), "scopeLogs"):
            scope_logs = _as_dict(scope_logs, "scopeLogs")
            for record in _as_list(scope_logs.get("logRecords"), "logRecords"):
                record = _as_dict(record, "logRecords")
                records.append(
                    LogRecord(
                        body=_body_text(record.get("body")),
                        attributes=decode_attributes(record.get("attributes")),
                        resource=resource,
                        timestamp=_timestamp(record.get("timeUnixNano"))
                        or _timestamp(record.get("observedTimeUnixNano")),
                        severity=record.get("severityText") or None,
                    )
                )
    logger.debug(f"Decoded {len(records)} log records")
    return records


def _point_value(point: Dict[str, Any]) -> Optional[float]:
    for key in ("asDouble", "asInt", "sum"):
        if key in point:
            return _finite(point[key])
    return None


def decode_metrics(payload: bytes) -> List[MetricPoint]:
    """
    Decode an OTLP metrics export request into flat data points.

    Raises:
        DecodeError: On malformed input
    """
    data = _load(payload)
    points: List[MetricPoint] = []
    for resource_metrics in _as_list(data.get("resourceMetrics"), "resourceMetrics"):
        resource_metrics = _as_dict(resource_metrics, "resourceMetrics")
        for scope_metrics in _as_list(resource_metrics.get("scopeMetrics"), "scopeMetrics"):
            scope_metrics = _as_dict(scope_metrics, "scopeMetrics")
            for metric in _as_list(scope_metrics.get("metrics"), "metrics"):
                metric = _as_dict(metric, "metrics")
                name = metric.get("name")
                if not isinstance(name, str) or not name:
                    continue
                for kind in _METRIC_KINDS:
                    body = metric.get(kind)
                    if not isinstance(body, dict):
                        continue
                    for point in _as_list(body.get("dataPoints"), "dataPoints"):
                        point = _as_dict(point, "dataPoints")
                        value = _point_value(point)
                        if value is None:
                            continue
                        points.append(
                            MetricPoint(
                                name=name,
                                value=value,
                                timestamp=_timestamp(point.get("timeUnixNano")),
                                attributes=decode_attributes(point.get("attributes")),
                            )
                        )
    logger.debug(f"Decoded {len(points)} metric points")
    return points
