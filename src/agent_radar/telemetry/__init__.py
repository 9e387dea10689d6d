"""OTLP ingest, decoding and the telemetry completion heuristic."""

from .coordinator import TelemetryCoordinator
from .decoder import decode_logs, decode_metrics
from .gateway import IngestGateway
from .tracker import ToolCallTracker

__all__ = [
    "IngestGateway",
    "TelemetryCoordinator",
    "ToolCallTracker",
    "decode_logs",
    "decode_metrics",
]
