"""Lifecycle bookkeeping for telemetry-sourced tool calls."""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from ..models.session import SessionSource
from ..models.telemetry import ToolCall, utcnow
from ..types import Clock

logger = logging.getLogger(__name__)


class ToolCallTracker:
    """
    Bounded, most-recent-first list of telemetry tool calls.

    Active and completed calls share one sequence, de-duplicated by id.
    Ending a call updates it in place and moves it to the head; the tail
    past ``capacity`` is evicted.
    """

    def __init__(self, capacity: int = 10, clock: Clock = utcnow):
        self.capacity = capacity
        self._clock = clock
        self._calls: List[ToolCall] = []

    @property
    def recent_calls(self) -> List[ToolCall]:
        return list(self._calls)

    @property
    def active_calls(self) -> List[ToolCall]:
        return [call for call in self._calls if call.is_active]

    @property
    def has_active(self) -> bool:
        return any(call.is_active for call in self._calls)

    def get(self, call_id: str) -> Optional[ToolCall]:
        for call in self._calls:
            if call.id == call_id:
                return call
        return None

    def _push(self, call: ToolCall) -> None:
        self._calls = [c for c in self._calls if c.id != call.id]
        self._calls.insert(0, call)
        del self._calls[self.capacity:]

    def record_tool_start(self, call_id: str, call: ToolCall) -> None:
        """Track ``call`` as active under ``call_id`` (replacing any entry with that id)."""
        self._push(call.model_copy(update={"id": call_id, "end_time": None}))

    def record_tool_end(
        self,
        call_id: str,
        success: bool,
        duration_ms: Optional[int] = None,
        tokens: Optional[int] = None,
        end_time: Optional[datetime] = None,
    ) -> Optional[ToolCall]:
        """End an active call. Unknown or already-ended ids are ignored."""
        call = self.get(call_id)
        if call is None or not call.is_active:
            logger.debug(f"Tool end for untracked call {call_id}, ignoring")
            return None

        end = end_time or self._clock()
        if duration_ms is None:
            duration_ms = int(round((end - call.start_time).total_seconds() * 1000))
        ended = call.model_copy(
            update={
                "end_time": end,
                "success": success,
                "duration_ms": duration_ms,
                "tokens": tokens if tokens is not None else call.tokens,
            }
        )
        self._push(ended)
        return ended

    def record_completed_tool_call(
        self,
        tool_name: str,
        start_time: datetime,
        end_time: datetime,
        success: bool,
        tokens: Optional[int] = None,
        input_tokens: Optional[int] = None,
        output_tokens: Optional[int] = None,
        cost_usd: Optional[float] = None,
        source: SessionSource = SessionSource.UNKNOWN,
    ) -> ToolCall:
        """Record a call whose start was never separately observed."""
        call = ToolCall(
            tool_name=tool_name,
            start_time=start_time,
            end_time=end_time,
            success=success,
            duration_ms=max(0, int(round((end_time - start_time).total_seconds() * 1000))),
            tokens=tokens,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost_usd=cost_usd,
            source=source,
        )
        self._push(call)
        return call

    def force_complete_all_active(self, end_time: Optional[datetime] = None) -> int:
        """End every active call in place so nothing stays "running" forever."""
        end = end_time or self._clock()
        count = 0
        for index, call in enumerate(self._calls):
            if not call.is_active:
                continue
            self._calls[index] = call.model_copy(
                update={
                    "end_time": max(end, call.start_time),
                    "success": True,
                    "duration_ms": max(0, int((end - call.start_time) / timedelta(milliseconds=1))),
                    "forced": True,
                }
            )
            count += 1
        if count:
            logger.debug(f"Force-completed {count} active tool calls")
        return count

    def clear(self) -> None:
        self._calls.clear()
