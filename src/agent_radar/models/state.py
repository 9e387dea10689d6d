"""The published, read-only view of everything Agent Radar tracks."""

from typing import Dict

from pydantic import BaseModel, ConfigDict, Field

from .session import SessionSnapshot
from .telemetry import TelemetrySnapshot


class StateSnapshot(BaseModel):
    """One atomic version of the published state."""

    model_config = ConfigDict(frozen=True)

    version: int = 0
    sessions: Dict[str, SessionSnapshot] = Field(default_factory=dict)
    telemetry: TelemetrySnapshot = Field(default_factory=TelemetrySnapshot)
    any_active: bool = False
