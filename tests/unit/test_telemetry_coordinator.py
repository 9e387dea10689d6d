"""Unit tests for the telemetry coordinator."""

import asyncio
import json
from datetime import timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from agent_radar.exceptions import BindError
from agent_radar.models.session import SessionSource
from agent_radar.models.telemetry import (
    AttributeMap,
    AttributeType,
    AttributeValue,
    CoordinatorState,
    GatewayRequest,
    GatewayRoute,
    LogRecord,
    MetricPoint,
)
from agent_radar.telemetry.coordinator import (
    TelemetryCoordinator,
    should_record_sse_kind,
    tool_name_from_kind,
)


def attrs(**values):
    mapped = {}
    for key, value in values.items():
        key = key.replace("__", ".")
        if isinstance(value, bool):
            mapped[key] = AttributeValue(type=AttributeType.BOOL, value=value)
        elif isinstance(value, int):
            mapped[key] = AttributeValue(type=AttributeType.INT, value=value)
        elif isinstance(value, float):
            mapped[key] = AttributeValue(type=AttributeType.DOUBLE, value=value)
        else:
            mapped[key] = AttributeValue(type=AttributeType.STRING, value=value)
    return AttributeMap(values=mapped)


def log(name, **values):
    return LogRecord(body=name, attributes=attrs(**values))


def metric(name, value, **values):
    return MetricPoint(name=name, value=value, attributes=attrs(**values))


def test_sse_kind_helpers():
    """Test SSE kind classification."""
    assert tool_name_from_kind("response.custom_tool_call_input.delta") == "Tool"
    assert tool_name_from_kind("response.shell_call.done") == "Shell"
    assert should_record_sse_kind("response.output_item.done")
    assert should_record_sse_kind("response.created")
    assert not should_record_sse_kind("response.output_text.delta")


@pytest.mark.asyncio
async def test_start_without_gateway_runs():
    """Test that a coordinator with no gateway starts straight to running."""
    coordinator = TelemetryCoordinator()
    await coordinator.start(0)
    assert coordinator.state == CoordinatorState.RUNNING
    await coordinator.stop()
    assert coordinator.state == CoordinatorState.STOPPED


@pytest.mark.asyncio
async def test_start_bind_failure_sets_error():
    """Test that a gateway bind failure leaves the coordinator in error."""
    coordinator = TelemetryCoordinator()
    gateway = MagicMock()

    async def failing_start(port):
        coordinator.record_error(BindError(f"127.0.0.1:{port}", "address in use"))
        return False

    gateway.start = AsyncMock(side_effect=failing_start)
    coordinator.gateway = gateway

    await coordinator.start(4318)

    assert coordinator.state == CoordinatorState.ERROR
    assert "address in use" in coordinator.error
    assert coordinator.snapshot().error == coordinator.error


@pytest.mark.asyncio
async def test_claude_tool_decision_and_result():
    """Test an approved decision starting a call that the result ends."""
    coordinator = TelemetryCoordinator(idle_delay=30)

    coordinator.handle_log_record(log("claude_code.tool_decision", tool_name="Bash", decision="accept", call_id="t1"))
    assert coordinator.has_active_work
    assert coordinator.source == SessionSource.CLAUDE_CODE
    assert coordinator.is_agent_active

    coordinator.handle_log_record(log("claude_code.tool_result", call_id="t1", success=True, duration_ms=1500))

    call = coordinator.tracker.get("t1")
    assert call.success is True
    assert call.duration_ms == 1500
    assert not coordinator.has_active_work
    coordinator.idle_timer.cancel()


@pytest.mark.asyncio
async def test_denied_decision_records_failed_entry():
    """Test that a rejected tool is recorded as a failed, finished entry."""
    coordinator = TelemetryCoordinator()

    coordinator.handle_log_record(log("claude_code.tool_decision", tool_name="Write", decision="reject"))

    assert coordinator.tracker.recent_calls[0].tool_name == "Write (denied)"
    assert coordinator.tracker.recent_calls[0].success is False
    assert not coordinator.has_active_work
    coordinator.idle_timer.cancel()


@pytest.mark.asyncio
async def test_api_request_records_thinking_entry():
    """Test that an API request becomes a completed Thinking entry."""
    coordinator = TelemetryCoordinator()

    coordinator.handle_log_record(log(
        "claude_code.api_request",
        model="claude-opus-4",
        input_tokens=100,
        output_tokens=40,
        cost_usd=0.01,
        duration_ms=2000,
    ))

    entry = coordinator.tracker.recent_calls[0]
    assert entry.tool_name == "Thinking"
    assert entry.tokens == 140
    assert entry.duration_ms == 2000
    assert coordinator.model == "claude-opus-4"
    assert coordinator.session_token_total == 140
    coordinator.idle_timer.cancel()


@pytest.mark.asyncio
async def test_codex_events_ignored_when_not_accepted():
    """Test that Codex events are dropped when Codex telemetry is off."""
    coordinator = TelemetryCoordinator(accept_codex=False)

    coordinator.handle_log_record(log("codex.api_request", duration_ms=10))

    assert coordinator.tracker.recent_calls == []
    assert coordinator.source == SessionSource.UNKNOWN


@pytest.mark.asyncio
async def test_codex_sse_tool_call_lifecycle():
    """Test that SSE tool call deltas start a call and the done kind ends it."""
    coordinator = TelemetryCoordinator()

    coordinator.handle_log_record(log("codex.sse_event", event__kind="response.created"))
    coordinator.handle_log_record(log(
        "codex.sse_event", event__kind="response.function_call_arguments.delta", call_id="f1", tool_name="shell",
    ))
    assert coordinator.has_active_work

    coordinator.handle_log_record(log(
        "codex.sse_event", event__kind="response.function_call_arguments.done", call_id="f1",
    ))
    coordinator.handle_log_record(log(
        "codex.sse_event", event__kind="response.completed", input_tokens=300, output_tokens=20,
    ))

    names = [c.tool_name for c in coordinator.tracker.recent_calls]
    assert names[0] == "Complete"
    assert "shell" in names
    assert "Starting" in names
    assert not coordinator.has_active_work
    assert coordinator.session_token_total == 320
    coordinator.idle_timer.cancel()


def test_token_metrics_overwrite_per_key():
    """Test that token metrics are keyed by name, model and type and overwrite."""
    coordinator = TelemetryCoordinator()

    coordinator.handle_metric_point(metric("claude_code.token.usage", 100, type="input", model="m"))
    coordinator.handle_metric_point(metric("claude_code.token.usage", 40, type="output", model="m"))
    coordinator.handle_metric_point(metric("claude_code.token.usage", 150, type="input", model="m"))
    coordinator.handle_metric_point(metric("claude_code.token.usage", 900, type="cacheRead", model="m"))

    assert coordinator.session_token_total == 190
    assert coordinator.session_cache_tokens == 900


def test_other_metrics():
    """Test cost, lines of code, commits and pull requests."""
    coordinator = TelemetryCoordinator()

    coordinator.handle_metric_point(metric("claude_code.cost.usage", 0.5, model="a"))
    coordinator.handle_metric_point(metric("claude_code.cost.usage", 0.25, model="b"))
    coordinator.handle_metric_point(metric("claude_code.lines_of_code.count", 12, type="added"))
    coordinator.handle_metric_point(metric("claude_code.lines_of_code.count", 3, type="removed"))
    coordinator.handle_metric_point(metric("claude_code.commit.count", 2))
    coordinator.handle_metric_point(metric("claude_code.pull_request.count", 1))

    snapshot = coordinator.snapshot()
    assert snapshot.cost_usd == pytest.approx(0.75)
    assert (snapshot.lines_added, snapshot.lines_removed) == (12, 3)
    assert (snapshot.commits, snapshot.pull_requests) == (2, 1)


@pytest.mark.asyncio
async def test_idle_check_marks_agent_complete():
    """Test that the idle heuristic completes the agent once nothing is outstanding."""
    on_change = MagicMock()
    coordinator = TelemetryCoordinator(idle_delay=0.05, on_change=on_change)
    coordinator.handle_log_record(log("claude_code.tool_decision", tool_name="Bash", decision="accept", call_id="t1"))

    await asyncio.sleep(0.12)
    assert coordinator.is_agent_active

    coordinator.handle_log_record(log("claude_code.tool_result", call_id="t1", success=True))
    await asyncio.sleep(0.12)

    assert not coordinator.is_agent_active
    assert coordinator.completed_at is not None
    assert coordinator.tracker.recent_calls[0].tool_name == "Complete"
    assert not coordinator.idle_timer.armed
    on_change.assert_called()


@pytest.mark.asyncio
async def test_active_time_metric_completes_after_quiet_period():
    """Test the short completion check armed by the active_time metric."""
    coordinator = TelemetryCoordinator(idle_delay=30, active_time_delay=0.05)
    coordinator.handle_log_record(log("claude_code.user_prompt", prompt_length=12))
    coordinator.handle_metric_point(metric("claude_code.active_time.total", 4.0, type="cli"))

    await asyncio.sleep(0.12)

    assert not coordinator.is_agent_active
    assert coordinator.tracker.recent_calls[0].tool_name == "Complete"


@pytest.mark.asyncio
async def test_mark_agent_complete_force_completes_open_calls():
    """Test that forced completion ends every open call."""
    coordinator = TelemetryCoordinator()
    coordinator.handle_log_record(log("claude_code.tool_decision", tool_name="Bash", decision="approved", call_id="t1"))

    complete = coordinator.mark_agent_complete("test")

    assert complete is not None
    forced = coordinator.tracker.get("t1")
    assert forced.forced
    assert forced.end_time.tzinfo == timezone.utc
    assert not coordinator.has_active_work
    assert coordinator.mark_agent_complete("again") is None


def test_handle_request_records_decode_errors():
    """Test that an undecodable request is recorded, not raised."""
    on_change = MagicMock()
    coordinator = TelemetryCoordinator(on_change=on_change)

    coordinator.handle_request(GatewayRequest(route=GatewayRoute.LOGS, path="/v1/logs", body=b"nope"))
    coordinator.handle_request(GatewayRequest(route=GatewayRoute.OTHER, path="/v1/traces", body=b"{}"))

    assert len(coordinator.error_output) == 1
    assert "decode" in coordinator.error_output[0]
    on_change.assert_not_called()


def test_handle_request_commits_once_per_request():
    """Test that one metrics request is applied as one transaction."""
    on_change = MagicMock()
    coordinator = TelemetryCoordinator(on_change=on_change)
    body = json.dumps({"resourceMetrics": [{"scopeMetrics": [{"metrics": [
        {"name": "claude_code.commit.count", "sum": {"dataPoints": [{"asInt": "3"}]}},
        {"name": "claude_code.pull_request.count", "sum": {"dataPoints": [{"asInt": "1"}]}},
    ]}]}]}).encode()

    coordinator.handle_request(GatewayRequest(route=GatewayRoute.METRICS, path="/v1/metrics", body=body))

    assert coordinator.commits == 3
    assert coordinator.pull_requests == 1
    on_change.assert_called_once()


def logs_body(*records):
    return json.dumps({"resourceLogs": [{"scopeLogs": [{"logRecords": list(records)}]}]}).encode()


@pytest.mark.asyncio
async def test_non_finite_attribute_skips_only_that_value():
    """Test that an infinite duration is dropped and the next record still applies."""
    on_change = MagicMock()
    coordinator = TelemetryCoordinator(on_change=on_change)
    body = logs_body(
        {"body": {"stringValue": "claude_code.api_request"}, "attributes": [
            {"key": "duration_ms", "value": {"doubleValue": "Infinity"}},
            {"key": "input_tokens", "value": {"intValue": "10"}},
        ]},
        {"body": {"stringValue": "claude_code.user_prompt"}, "attributes": [
            {"key": "prompt_length", "value": {"doubleValue": "NaN"}},
        ]},
    )

    coordinator.handle_request(GatewayRequest(route=GatewayRoute.LOGS, path="/v1/logs", body=body))

    entry = coordinator.tracker.recent_calls[0]
    assert entry.tool_name == "Thinking"
    assert entry.tokens == 10
    assert coordinator.error_output == []
    on_change.assert_called_once()
    coordinator.idle_timer.cancel()


@pytest.mark.asyncio
async def test_overflowing_record_is_reported_and_skipped():
    """Test that a record whose values overflow is skipped without losing the rest."""
    on_change = MagicMock()
    coordinator = TelemetryCoordinator(on_change=on_change)
    body = logs_body(
        {"body": {"stringValue": "claude_code.api_request"}, "attributes": [
            {"key": "duration_ms", "value": {"doubleValue": 1e300}},
        ]},
        {"body": {"stringValue": "claude_code.tool_decision"}, "attributes": [
            {"key": "tool_name", "value": {"stringValue": "Bash"}},
            {"key": "decision", "value": {"stringValue": "accept"}},
            {"key": "call_id", "value": {"stringValue": "t1"}},
        ]},
    )

    coordinator.handle_request(GatewayRequest(route=GatewayRoute.LOGS, path="/v1/logs", body=body))

    assert len(coordinator.error_output) == 1
    assert coordinator.tracker.get("t1") is not None
    on_change.assert_called_once()
    coordinator.idle_timer.cancel()


def test_non_finite_metric_point_is_ignored():
    """Test that an infinite metric value leaves the counters untouched."""
    coordinator = TelemetryCoordinator()

    coordinator.handle_metric_point(metric("claude_code.commit.count", float("inf")))
    coordinator.handle_metric_point(metric("claude_code.commit.count", 2))

    assert coordinator.commits == 2
