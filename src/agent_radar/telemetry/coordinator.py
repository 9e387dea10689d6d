"""Telemetry channel: applies decoded OTLP records and infers completion."""

import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from ..exceptions import AgentRadarError, DecodeError
from ..models.session import SessionSource
from ..models.telemetry import (
    AttributeMap,
    CoordinatorState,
    GatewayRequest,
    GatewayRoute,
    LogRecord,
    MetricPoint,
    TelemetrySnapshot,
    ToolCall,
    utcnow,
)
from ..timers import CancellableTimer
from ..types import Clock
from .decoder import decode_logs, decode_metrics
from .gateway import IngestGateway
from .tracker import ToolCallTracker

logger = logging.getLogger(__name__)

# Loop timers may fire marginally before the wall clock agrees the delay elapsed
TIMER_SLACK = 0.05
MAX_ERROR_LINES = 50

APPROVED_DECISIONS = {"approve", "approved", "accept"}

CLAUDE_API_REQUEST = "claude_code.api_request"
CLAUDE_API_ERROR = "claude_code.api_error"
CLAUDE_TOOL_DECISION = "claude_code.tool_decision"
CLAUDE_TOOL_RESULT = "claude_code.tool_result"
CLAUDE_USER_PROMPT = "claude_code.user_prompt"

CODEX_API_REQUEST = "codex.api_request"
CODEX_SSE_EVENT = "codex.sse_event"
CODEX_TOOL_DECISION = "codex.tool_decision"
CODEX_TOOL_RESULT = "codex.tool_result"
CODEX_USER_PROMPT = "codex.user_prompt"

# Substrings of an SSE event kind part, mapped to a display tool name
KIND_TOOL_NAMES: List[Tuple[Tuple[str, ...], str]] = [
    (("shell", "bash"), "Shell"),
    (("read", "file"), "Read"),
    (("write", "edit"), "Edit"),
    (("search", "grep"), "Search"),
    (("custom_tool",), "Tool"),
    (("function",), "Function"),
]


def start_from_duration(end_time: datetime, duration_ms: Optional[int]) -> datetime:
    if duration_ms is None:
        return end_time
    return end_time - timedelta(milliseconds=duration_ms)


def tool_name_from_kind(event_kind: str) -> str:
    """Display name for a tool call SSE kind like ``response.custom_tool_call_input.delta``."""
    for part in event_kind.lower().split("."):
        for needles, name in KIND_TOOL_NAMES:
            if any(needle in part for needle in needles):
                return name
    return "Tool"


def should_record_sse_kind(event_kind: str) -> bool:
    """Only terminal and major lifecycle kinds get a visible entry."""
    kind = event_kind.lower()
    if ".delta" in kind:
        return False
    if ".done" in kind or "_done" in kind or ".completed" in kind:
        return True
    return "response.created" in kind or "response.done" in kind


class TelemetryCoordinator:
    """
    Owns the push-telemetry channel.

    Requests handed over by the ingest gateway are decoded here and mapped
    onto the tool call tracker and a handful of session counters. Two
    timers infer that the agent finished: a repeating idle check and a
    short single-shot armed by the ``active_time`` metric. Either one, when
    no work is outstanding, force-completes every open call and records a
    synthetic "Complete" entry.
    """

    def __init__(
        self,
        gateway: Optional[IngestGateway] = None,
        recent_calls: int = 10,
        idle_delay: float = 30.0,
        active_time_delay: float = 15.0,
        accept_codex: bool = True,
        clock: Clock = utcnow,
        on_change: Optional[Callable[[], None]] = None,
    ):
        self.gateway = gateway
        self.idle_delay = idle_delay
        self.active_time_delay = active_time_delay
        self.accept_codex = accept_codex
        self._clock = clock
        self._on_change = on_change

        self.tracker = ToolCallTracker(capacity=recent_calls, clock=clock)
        self.state = CoordinatorState.STOPPED
        self.error: Optional[str] = None
        self.error_output: List[str] = []

        self.source = SessionSource.UNKNOWN
        self.is_agent_active = False
        self.last_activity: Optional[datetime] = None
        self.completed_at: Optional[datetime] = None
        self.last_active_time_metric: Optional[datetime] = None

        self.model: Optional[str] = None
        self.conversation_id: Optional[str] = None
        self.session_id: Optional[str] = None
        self.account_uuid: Optional[str] = None
        self.user_email: Optional[str] = None

        self.token_cache: Dict[str, float] = {}
        self.cache_token_cache: Dict[str, float] = {}
        self.cost_cache: Dict[str, float] = {}
        self.lines_added = 0
        self.lines_removed = 0
        self.commits = 0
        self.pull_requests = 0

        self.pending_decisions: Dict[str, ToolCall] = {}
        self.pending_claude_calls: Dict[str, ToolCall] = {}
        self.active_codex_calls: Dict[str, Tuple[str, datetime]] = {}
        self.codex_response_start: Optional[datetime] = None

        self.idle_timer = CancellableTimer(
            "telemetry.idle", self.check_idle, idle_delay, repeat=True
        )
        self.active_time_timer = CancellableTimer(
            "telemetry.active_time", self.check_active_time, active_time_delay
        )

    # Lifecycle

    async def start(self, port: int) -> None:
        """stopped -> starting -> running | error. Starting twice is a no-op."""
        if self.state != CoordinatorState.STOPPED:
            logger.debug(f"Telemetry already {self.state.value}")
            return
        self.state = CoordinatorState.STARTING
        self.error = None
        self.error_output.clear()
        self.commit()

        if self.gateway is None:
            self.state = CoordinatorState.RUNNING
        elif await self.gateway.start(port):
            self.state = CoordinatorState.RUNNING
        else:
            self.state = CoordinatorState.ERROR
            self.error = self.error_output[-1] if self.error_output else f"Could not bind port {port}"
            logger.error(f"Telemetry ingest failed to start: {self.error}")
        self.commit()

    async def stop(self) -> None:
        if self.state not in (CoordinatorState.RUNNING, CoordinatorState.STARTING):
            return
        if self.gateway is not None:
            await self.gateway.stop()
        self.idle_timer.cancel()
        self.active_time_timer.cancel()
        self.is_agent_active = False
        self.state = CoordinatorState.STOPPED
        self.commit()

    def record_error(self, error: AgentRadarError) -> None:
        """Error sink for the gateway and decoding; keeps the most recent lines."""
        line = f"{error.message} {error.detail}".rstrip()
        logger.warning(f"Telemetry: {line}")
        self.error_output.append(line)
        del self.error_output[:-MAX_ERROR_LINES]

    def commit(self) -> None:
        if self._on_change is not None:
            self._on_change()

    @property
    def session_token_total(self) -> int:
        return int(sum(self.token_cache.values()))

    @property
    def session_cache_tokens(self) -> int:
        return int(sum(self.cache_token_cache.values()))

    @property
    def cost_usd(self) -> float:
        return sum(self.cost_cache.values())

    @property
    def has_active_work(self) -> bool:
        return (
            self.tracker.has_active
            or bool(self.active_codex_calls)
            or bool(self.pending_claude_calls)
            or bool(self.pending_decisions)
            or self.codex_response_start is not None
        )

    def snapshot(self) -> TelemetrySnapshot:
        return TelemetrySnapshot(
            state=self.state,
            error=self.error,
            source=self.source,
            is_agent_active=self.is_agent_active,
            recent_calls=self.tracker.recent_calls,
            session_token_total=self.session_token_total,
            session_cache_tokens=self.session_cache_tokens,
            cost_usd=self.cost_usd,
            lines_added=self.lines_added,
            lines_removed=self.lines_removed,
            commits=self.commits,
            pull_requests=self.pull_requests,
            model=self.model,
            conversation_id=self.conversation_id,
            session_id=self.session_id,
            account_uuid=self.account_uuid,
            user_email=self.user_email,
            last_activity=self.last_activity,
            completed_at=self.completed_at,
        )

    # Requests

    def handle_request(self, request: GatewayRequest) -> None:
        """Apply one ingest request as a single transaction."""
        if request.route == GatewayRoute.LOGS:
            try:
                records = decode_logs(request.body)
            except DecodeError as e:
                self.record_error(DecodeError(f"OTLP log decode error: {e.message}", e.detail))
                return
            logger.debug(f"[TELEMETRY] {len(records)} log records")
            for record in records:
                try:
                    self.handle_log_record(record)
                except (ValueError, OverflowError) as e:
                    self.record_error(DecodeError(f"Skipping log record {record.body}: {e}"))
        elif request.route == GatewayRoute.METRICS:
            try:
                points = decode_metrics(request.body)
            except DecodeError as e:
                self.record_error(DecodeError(f"OTLP metric decode error: {e.message}", e.detail))
                return
            logger.debug(f"[TELEMETRY] {len(points)} metric points")
            for point in points:
                try:
                    self.handle_metric_point(point)
                except (ValueError, OverflowError) as e:
                    self.record_error(DecodeError(f"Skipping metric {point.name}: {e}"))
        else:
            logger.debug(f"[TELEMETRY] Ignoring request to {request.path}")
            return
        self.commit()

    # Completion heuristic

    def record_activity(self) -> None:
        self.last_activity = self._clock()
        if not self.is_agent_active:
            self.is_agent_active = True
            logger.debug("Telemetry agent became active")
        self.active_time_timer.cancel()
        self.idle_timer.arm()

    def check_idle(self) -> None:
        """Repeating idle check; stops repeating once the agent is no longer active."""
        if not self.is_agent_active or self.last_activity is None:
            self.idle_timer.cancel()
            return
        elapsed = (self._clock() - self.last_activity).total_seconds()
        if elapsed < self.idle_delay - TIMER_SLACK or self.has_active_work:
            return
        self.mark_agent_complete(f"idle for {self.idle_delay:g}s")
        self.commit()

    def handle_active_time(self) -> None:
        self.last_active_time_metric = self._clock()
        self.active_time_timer.arm()

    def check_active_time(self) -> None:
        if self.has_active_work:
            return
        if (
            self.last_activity is not None
            and self.last_active_time_metric is not None
            and self.last_activity <= self.last_active_time_metric
        ):
            self.mark_agent_complete("no activity after active_time metric")
            self.commit()

    def mark_agent_complete(self, reason: str) -> Optional[ToolCall]:
        if not self.is_agent_active:
            return None
        now = self._clock()
        self.tracker.force_complete_all_active(now)
        self.pending_claude_calls.clear()
        self.pending_decisions.clear()
        self.active_codex_calls.clear()
        self.codex_response_start = None
        self.is_agent_active = False
        self.completed_at = now
        self.idle_timer.cancel()
        self.active_time_timer.cancel()
        logger.info(f"Agent finished ({reason})")
        return self.tracker.record_completed_tool_call(
            tool_name="Complete",
            start_time=self.last_activity or now,
            end_time=now,
            success=True,
            tokens=self.session_token_total,
            source=self.source,
        )

    # Log records

    def _set_source(self, source: SessionSource) -> None:
        if source != SessionSource.UNKNOWN and self.source != source:
            logger.info(f"Telemetry source: {source.value}")
            self.source = source

    def handle_log_record(self, record: LogRecord) -> None:
        attributes = record.attributes
        body = record.body
        if body and ("claude_code." in body or "codex." in body):
            event_name: Optional[str] = body
        else:
            event_name = attributes.string_value(["event.name", "event", "name"]) or body
        if not event_name:
            return

        self.conversation_id = (
            attributes.string_value(["conversation.id", "conversation_id"]) or self.conversation_id
        )
        self.model = attributes.string_value(["model"]) or self.model
        self.session_id = attributes.string_value(["session.id", "session_id"]) or self.session_id
        self.account_uuid = (
            attributes.string_value(["user.account_uuid", "account_uuid"]) or self.account_uuid
        )
        self.user_email = attributes.string_value(["user.email", "email"]) or self.user_email

        end_time = record.timestamp or self._clock()
        name = event_name.lower()

        claude_handlers = {
            CLAUDE_API_REQUEST: self._claude_api_request,
            CLAUDE_API_ERROR: self._claude_api_error,
            CLAUDE_TOOL_DECISION: self._claude_tool_decision,
            CLAUDE_TOOL_RESULT: self._claude_tool_result,
            CLAUDE_USER_PROMPT: self._user_prompt,
        }
        codex_handlers = {
            CODEX_API_REQUEST: self._codex_api_request,
            CODEX_SSE_EVENT: self._codex_sse_event,
            CODEX_TOOL_DECISION: self._codex_tool_decision,
            CODEX_TOOL_RESULT: self._codex_tool_result,
            CODEX_USER_PROMPT: self._user_prompt,
        }

        if name in claude_handlers:
            self._set_source(SessionSource.CLAUDE_CODE)
            claude_handlers[name](attributes, end_time)
        elif name in codex_handlers:
            if not self.accept_codex:
                return
            self._set_source(SessionSource.CODEX)
            codex_handlers[name](attributes, end_time)
        elif name.startswith("claude_code."):
            self._set_source(SessionSource.CLAUDE_CODE)
            self._claude_generic(name, attributes, end_time)
        else:
            if "claude" in name or "anthropic" in name:
                self._set_source(SessionSource.CLAUDE_CODE)
            self._generic(name, attributes, end_time)

    def _user_prompt(self, attributes: AttributeMap, end_time: datetime) -> None:
        # Prompt text is redacted by default; only the length is reported
        length = attributes.int_value(["prompt_length", "length"])
        logger.debug(f"User prompt ({length or 0} chars)")
        self.record_activity()

    def _claude_api_request(self, attributes: AttributeMap, end_time: datetime) -> None:
        self.record_activity()
        duration_ms = attributes.int_value(["duration_ms", "durationMs"])
        input_tokens = attributes.int_value(["input_tokens", "gen_ai.usage.input_tokens"])
        output_tokens = attributes.int_value(["output_tokens", "gen_ai.usage.output_tokens"])
        cache_read = attributes.int_value(["cache_read_input_tokens", "cache_read_tokens"])
        cache_creation = attributes.int_value(
            ["cache_creation_input_tokens", "cache_creation_tokens"]
        )
        status = attributes.int_value(["http.response.status_code", "status_code"])
        cost = attributes.double_value(["cost_usd", "cost", "price"])
        self.model = attributes.string_value(["model", "gen_ai.request.model"]) or self.model

        if input_tokens is not None:
            self.token_cache["claude.input"] = input_tokens
        if output_tokens is not None:
            self.token_cache["claude.output"] = output_tokens
        if cache_read is not None:
            self.cache_token_cache["claude.cache.read"] = cache_read
        if cache_creation is not None:
            self.cache_token_cache["claude.cache.creation"] = cache_creation

        total = (input_tokens or 0) + (output_tokens or 0)
        self.tracker.record_completed_tool_call(
            tool_name="Thinking",
            start_time=start_from_duration(end_time, duration_ms),
            end_time=end_time,
            success=status is None or status < 400,
            tokens=total or None,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=cost,
            source=SessionSource.CLAUDE_CODE,
        )

    def _claude_api_error(self, attributes: AttributeMap, end_time: datetime) -> None:
        status = attributes.int_value(["http.response.status_code", "status_code"])
        message = attributes.string_value(["error.message", "error", "message"])
        duration_ms = attributes.int_value(["duration_ms"])
        logger.warning(f"Claude API error {status or ''}: {message or 'unknown'}")
        self.tracker.record_completed_tool_call(
            tool_name=f"API Error ({status})" if status is not None else "API Error",
            start_time=start_from_duration(end_time, duration_ms),
            end_time=end_time,
            success=False,
            source=SessionSource.CLAUDE_CODE,
        )

    def _tool_decision(
        self,
        attributes: AttributeMap,
        end_time: datetime,
        source: SessionSource,
        pending: Dict[str, ToolCall],
    ) -> None:
        tool_name = attributes.string_value(["tool_name", "tool.name", "name"]) or "unknown"
        call_id = attributes.string_value(["call_id", "tool_call_id", "id"])
        decision = (attributes.string_value(["decision", "status"]) or "unknown").lower()

        if decision in APPROVED_DECISIONS:
            call = ToolCall(tool_name=tool_name, start_time=end_time, source=source)
            call_id = call_id or call.id
            pending[call_id] = call
            self.tracker.record_tool_start(call_id, call)
        else:
            self.tracker.record_completed_tool_call(
                tool_name=f"{tool_name} (denied)",
                start_time=end_time,
                end_time=end_time,
                success=False,
                source=source,
            )

    def _claude_tool_decision(self, attributes: AttributeMap, end_time: datetime) -> None:
        self.record_activity()
        self._tool_decision(attributes, end_time, SessionSource.CLAUDE_CODE, self.pending_claude_calls)

    def _codex_tool_decision(self, attributes: AttributeMap, end_time: datetime) -> None:
        self._tool_decision(attributes, end_time, SessionSource.CODEX, self.pending_decisions)

    def _claude_tool_result(self, attributes: AttributeMap, end_time: datetime) -> None:
        self.record_activity()
        call_id = attributes.string_value(["call_id", "tool_call_id", "id"])
        if call_id is None:
            return
        self.pending_claude_calls.pop(call_id, None)
        self.tracker.record_tool_end(
            call_id,
            success=attributes.bool_value(["success", "is_success"]) is not False,
            duration_ms=attributes.int_value(["duration_ms", "execution_time_ms"]),
            tokens=attributes.int_value(["token_count", "tokens"]),
            end_time=end_time,
        )

    def _codex_tool_result(self, attributes: AttributeMap, end_time: datetime) -> None:
        call_id = attributes.string_value(["call_id"])
        if call_id is None:
            return
        self.pending_decisions.pop(call_id, None)
        self.tracker.record_tool_end(
            call_id,
            success=attributes.bool_value(["success"]) is not False,
            duration_ms=attributes.int_value(["duration_ms"]),
            end_time=end_time,
        )

    def _claude_generic(self, name: str, attributes: AttributeMap, end_time: datetime) -> None:
        if "session" in name or "cost" in name:
            logger.debug(f"Claude event {name}")
            return
        if "lines_of_code" in name or "commit" in name or "pull_request" in name:
            return
        tool_name = attributes.string_value(["tool_name", "tool.name", "name"])
        if tool_name is None:
            return
        self.tracker.record_completed_tool_call(
            tool_name=tool_name,
            start_time=start_from_duration(end_time, attributes.int_value(["duration_ms"])),
            end_time=end_time,
            success=attributes.bool_value(["success"]) is not False,
            tokens=attributes.int_value(["token_count", "tokens"]),
            source=SessionSource.CLAUDE_CODE,
        )

    def _codex_api_request(self, attributes: AttributeMap, end_time: datetime) -> None:
        self.record_activity()
        duration_ms = attributes.int_value(["duration_ms"])
        status = attributes.int_value(["http.response.status_code"])
        error = attributes.string_value(["error.message"])
        attempt = attributes.int_value(["attempt"]) or 1
        if error:
            logger.warning(f"Codex API request failed: {error}")
        self.tracker.record_completed_tool_call(
            tool_name=f"API Request (retry {attempt})" if attempt > 1 else "API Request",
            start_time=start_from_duration(end_time, duration_ms),
            end_time=end_time,
            success=error is None and (status is None or status < 400),
            source=SessionSource.CODEX,
        )

    def _codex_sse_event(self, attributes: AttributeMap, end_time: datetime) -> None:
        self.record_activity()
        kind_raw = attributes.string_value(["event.kind"]) or "streaming"
        kind = kind_raw.lower()
        duration_ms = attributes.int_value(["duration_ms"])
        error = attributes.string_value(["error.message"])

        input_tokens = attributes.int_value(["input_tokens", "input_token_count", "tokens.input"])
        output_tokens = attributes.int_value(
            ["output_tokens", "output_token_count", "tokens.output"]
        )
        counters = {
            "codex.sse.input": input_tokens,
            "codex.sse.output": output_tokens,
            "codex.sse.reasoning": attributes.int_value(["reasoning_token_count"]),
            "codex.sse.tool": attributes.int_value(["tool_token_count"]),
        }
        for key, value in counters.items():
            if value is not None:
                self.token_cache[key] = value
        cache_counters = {
            "codex.cache.read": attributes.int_value(
                ["cache_read_tokens", "cached_token_count", "tokens.cache_read"]
            ),
            "codex.cache.creation": attributes.int_value(
                ["cache_creation_tokens", "tokens.cache_creation"]
            ),
        }
        for key, value in cache_counters.items():
            if value is not None:
                self.cache_token_cache[key] = value

        tool_name = attributes.string_value(["tool_name", "function.name", "name", "tool.name"])
        call_id = attributes.string_value(["call_id", "tool_call_id", "id"])

        if "response.created" in kind:
            self.codex_response_start = end_time

        display_name = self._sse_display_name(kind, tool_name, call_id, end_time)
        if not should_record_sse_kind(kind):
            return

        if duration_ms is not None:
            start_time = start_from_duration(end_time, duration_ms)
        elif ("response.done" in kind or "response.completed" in kind) and self.codex_response_start:
            start_time = self.codex_response_start
            self.codex_response_start = None
        else:
            start_time = end_time

        total = (input_tokens or 0) + (output_tokens or 0)
        self.tracker.record_completed_tool_call(
            tool_name=display_name,
            start_time=start_time,
            end_time=end_time,
            success=error is None,
            tokens=total or None,
            source=SessionSource.CODEX,
        )

    def _sse_display_name(
        self,
        kind: str,
        tool_name: Optional[str],
        call_id: Optional[str],
        end_time: datetime,
    ) -> str:
        """Display name for an SSE kind; tool call kinds also start and end tracked calls."""
        if "tool_call" in kind or "function_call" in kind:
            name = tool_name or tool_name_from_kind(kind)
            if call_id is None:
                return name
            if ".delta" in kind:
                if call_id not in self.active_codex_calls:
                    self.active_codex_calls[call_id] = (name, end_time)
                    self.tracker.record_tool_start(
                        call_id,
                        ToolCall(tool_name=name, start_time=end_time, source=SessionSource.CODEX),
                    )
            elif ".done" in kind or "_done" in kind:
                active = self.active_codex_calls.pop(call_id, None)
                if active is not None:
                    self.tracker.record_tool_end(call_id, success=True, end_time=end_time)
                    return active[0]
            return name

        if "output_item" in kind:
            if ".added" in kind:
                return "Processing"
            if ".done" in kind:
                return "Output Ready"
        if "content" in kind:
            if ".delta" in kind:
                return "Generating"
            if ".done" in kind:
                return "Response Complete"
        if "response.created" in kind:
            return "Starting"
        if "response.done" in kind or "response.completed" in kind:
            return "Complete"
        if "response.in_progress" in kind:
            return "Thinking"
        return tool_name or "Thinking"

    def _generic(self, name: str, attributes: AttributeMap, end_time: datetime) -> None:
        """Best-effort mapping for events outside the known vocabularies."""
        self.record_activity()
        source = self.source
        duration_ms = attributes.int_value(["duration_ms", "durationMs"])

        if "api_request" in name or "api.request" in name:
            total = (attributes.int_value(["input_tokens"]) or 0) + (
                attributes.int_value(["output_tokens"]) or 0
            )
            self.tracker.record_completed_tool_call(
                tool_name="Thinking",
                start_time=start_from_duration(end_time, duration_ms),
                end_time=end_time,
                success=True,
                tokens=total or None,
                source=source,
            )
            return

        if "tool" not in name:
            return

        tool_name = attributes.string_value(["tool.name", "tool", "tool_name", "name"]) or "tool"
        call_id = attributes.string_value(["tool_call_id", "tool.id", "id", "request_id", "span_id"])
        tokens = attributes.int_value(["token_count", "tokens", "llm.tokens", "llm.token_count"])
        success = attributes.bool_value(["success"])
        if success is None:
            status = attributes.string_value(["status", "outcome"])
            error = attributes.string_value(["error", "error.message"])
            if status is not None:
                success = status.lower() in ("ok", "success")
            else:
                success = not error

        if "start" in name or "request" in name:
            call = ToolCall(tool_name=tool_name, start_time=end_time, source=source)
            self.tracker.record_tool_start(call_id or call.id, call)
        elif "end" in name or "result" in name or "response" in name:
            if call_id is not None:
                self.tracker.record_tool_end(
                    call_id,
                    success=success,
                    duration_ms=duration_ms,
                    tokens=tokens,
                    end_time=end_time,
                )
            else:
                self.tracker.record_completed_tool_call(
                    tool_name=tool_name,
                    start_time=start_from_duration(end_time, duration_ms),
                    end_time=end_time,
                    success=success,
                    tokens=tokens,
                    source=source,
                )

    # Metrics

    def _token_key(self, point: MetricPoint, model: Optional[str], token_type: str) -> str:
        if model:
            return f"{point.name}:{model}:{token_type}"
        return f"{point.name}:{token_type}"

    def _record_tokens(self, key: str, token_type: str, value: float) -> None:
        if "cache" in token_type:
            self.cache_token_cache[key] = value
        else:
            self.token_cache[key] = value

    def handle_metric_point(self, point: MetricPoint) -> None:
        if not math.isfinite(point.value):
            logger.debug(f"Skipping non-finite {point.name} value")
            return
        name = point.name.lower()
        token_type = (point.attributes.string_value(["type"]) or "").lower()
        model = point.attributes.string_value(["model"])

        if not name.startswith("claude_code."):
            if "token" in name:
                self._record_tokens(
                    self._token_key(point, None, token_type or "unknown"), token_type, point.value
                )
            return

        self._set_source(SessionSource.CLAUDE_CODE)
        if model:
            self.model = model

        if "token" in name:
            self._record_tokens(self._token_key(point, model, token_type), token_type, point.value)
        elif "cost" in name:
            self.cost_cache[f"{point.name}:{model or ''}"] = point.value
        elif "lines_of_code" in name:
            if token_type == "removed":
                self.lines_removed = int(point.value)
            else:
                self.lines_added = int(point.value)
        elif "commit" in name:
            self.commits = int(point.value)
        elif "pull_request" in name:
            self.pull_requests = int(point.value)
        elif "active_time" in name:
            # Usually exported near the end of a response cycle
            self.handle_active_time()
        elif "session" in name:
            logger.debug(f"Claude sessions: {int(point.value)}")
