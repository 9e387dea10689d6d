"""Telemetry models: gateway requests, decoded OTLP records and tool calls."""

import math
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .session import SessionSource


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GatewayRoute(str, Enum):
    """Classification of an ingest request by path suffix."""
    LOGS = "logs"
    METRICS = "metrics"
    OTHER = "other"

    @classmethod
    def from_path(cls, path: str) -> "GatewayRoute":
        path = path.split("?", 1)[0].rstrip("/")
        if path.endswith("/v1/logs"):
            return cls.LOGS
        if path.endswith("/v1/metrics"):
            return cls.METRICS
        return cls.OTHER


class GatewayRequest(BaseModel):
    """One completed ingest request, body already inflated."""

    route: GatewayRoute
    path: str
    body: bytes = b""
    content_encoding: Optional[str] = None
    received_at: datetime = Field(default_factory=utcnow)


class AttributeType(str, Enum):
    STRING = "string"
    INT = "int"
    DOUBLE = "double"
    BOOL = "bool"


class AttributeValue(BaseModel):
    """A typed OTLP attribute value."""

    model_config = ConfigDict(frozen=True)

    type: AttributeType
    value: Union[bool, int, float, str]

    def as_string(self) -> Optional[str]:
        if self.type == AttributeType.STRING:
            return str(self.value)
        if self.type == AttributeType.BOOL:
            return "true" if self.value else "false"
        return str(self.value)

    def as_int(self) -> Optional[int]:
        if self.type == AttributeType.INT:
            return int(self.value)
        if self.type == AttributeType.STRING:
            try:
                return int(str(self.value).strip())
            except ValueError:
                pass
        number = self.as_double()
        if number is None:
            return None
        return int(number)

    def as_double(self) -> Optional[float]:
        """Numeric value as a float; non-finite values read as missing."""
        number: Optional[float] = None
        try:
            if self.type in (AttributeType.INT, AttributeType.DOUBLE):
                number = float(self.value)
            elif self.type == AttributeType.STRING:
                number = float(str(self.value).strip())
        except (ValueError, OverflowError):
            return None
        if number is None or not math.isfinite(number):
            return None
        return number

    def as_bool(self) -> Optional[bool]:
        if self.type == AttributeType.BOOL:
            return bool(self.value)
        if self.type == AttributeType.STRING:
            lowered = str(self.value).strip().lower()
            if lowered in ("true", "1", "yes"):
                return True
            if lowered in ("false", "0", "no"):
                return False
        return None


class AttributeMap(BaseModel):
    """
    String-keyed attribute map with typed alias lookups.

    Different agent versions spell the same attribute differently, so every
    lookup takes an ordered list of candidate keys; the first key that is
    present and converts to the requested type wins.
    """

    values: Dict[str, AttributeValue] = Field(default_factory=dict)

    def __contains__(self, key: str) -> bool:
        return key in self.values

    def __len__(self) -> int:
        return len(self.values)

    def get(self, key: str) -> Optional[AttributeValue]:
        return self.values.get(key)

    def _probe(self, keys: Iterable[str], convert: str) -> Any:
        for key in keys:
            attribute = self.values.get(key)
            if attribute is None:
                continue
            result = getattr(attribute, convert)()
            if result is not None:
                return result
        return None

    def string_value(self, keys: List[str]) -> Optional[str]:
        return self._probe(keys, "as_string")

    def int_value(self, keys: List[str]) -> Optional[int]:
        return self._probe(keys, "as_int")

    def double_value(self, keys: List[str]) -> Optional[float]:
        return self._probe(keys, "as_double")

    def bool_value(self, keys: List[str]) -> Optional[bool]:
        return self._probe(keys, "as_bool")


class LogRecord(BaseModel):
    """Decoded OTLP log record."""

    body: Optional[str] = None
    attributes: AttributeMap = Field(default_factory=AttributeMap)
    resource: AttributeMap = Field(default_factory=AttributeMap)
    timestamp: Optional[datetime] = None
    severity: Optional[str] = None


class MetricPoint(BaseModel):
    """One data point of a decoded OTLP metric."""

    name: str
    value: float
    timestamp: Optional[datetime] = None
    attributes: AttributeMap = Field(default_factory=AttributeMap)


class ToolCall(BaseModel):
    """A telemetry-sourced tool invocation tracked by ToolCallTracker."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tool_name: str
    arguments: Dict[str, str] = Field(default_factory=dict)
    start_time: datetime
    end_time: Optional[datetime] = None
    success: Optional[bool] = None
    duration_ms: Optional[int] = None
    tokens: Optional[int] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None
    cost_usd: Optional[float] = None
    source: SessionSource = SessionSource.UNKNOWN
    forced: bool = Field(default=False, description="Ended by the completion heuristic")

    @property
    def is_active(self) -> bool:
        return self.end_time is None


class CoordinatorState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    ERROR = "error"


class TelemetrySnapshot(BaseModel):
    """Published view of the push-telemetry channel."""

    model_config = ConfigDict(frozen=True)

    state: CoordinatorState = CoordinatorState.STOPPED
    error: Optional[str] = None
    source: SessionSource = SessionSource.UNKNOWN
    is_agent_active: bool = False
    recent_calls: List[ToolCall] = Field(default_factory=list)
    session_token_total: int = 0
    session_cache_tokens: int = 0
    cost_usd: float = 0.0
    lines_added: int = 0
    lines_removed: int = 0
    commits: int = 0
    pull_requests: int = 0
    model: Optional[str] = None
    conversation_id: Optional[str] = None
    session_id: Optional[str] = None
    account_uuid: Optional[str] = None
    user_email: Optional[str] = None
    last_activity: Optional[datetime] = None
    completed_at: Optional[datetime] = None
