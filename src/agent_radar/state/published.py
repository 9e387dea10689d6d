"""Versioned, observer-notified published state."""

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from ..models.session import SessionSnapshot
from ..models.state import StateSnapshot
from ..models.telemetry import TelemetrySnapshot, utcnow
from ..types import Clock, StateObserver

logger = logging.getLogger(__name__)

SessionProvider = Callable[[], Dict[str, SessionSnapshot]]
TelemetryProvider = Callable[[], TelemetrySnapshot]


class PublishedState:
    """
    The read-only surface consumers see.

    Owners mutate their own state and call :meth:`commit` once per
    transaction. A commit rebuilds the snapshot from the registered
    providers; if anything changed the version is bumped and observers are
    notified with the new immutable snapshot. Consumers therefore never
    observe a half-applied update.
    """

    def __init__(self, grace_period: float = 1.0, clock: Clock = utcnow):
        self.grace_period = grace_period
        self._clock = clock
        self._snapshot = StateSnapshot()
        self._session_providers: Dict[str, SessionProvider] = {}
        self._telemetry_provider: Optional[TelemetryProvider] = None
        self._observers: List[StateObserver] = []
        self._last_active_at: Optional[datetime] = None

    @property
    def snapshot(self) -> StateSnapshot:
        return self._snapshot

    @property
    def version(self) -> int:
        return self._snapshot.version

    def attach_sessions(self, name: str, provider: SessionProvider) -> None:
        self._session_providers[name] = provider

    def attach_telemetry(self, provider: TelemetryProvider) -> None:
        self._telemetry_provider = provider

    def subscribe(self, observer: StateObserver) -> Callable[[], None]:
        """Register an observer; returns a callable that unsubscribes it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def commit(self) -> bool:
        """Publish a new version if the tracked state changed. Returns True if it did."""
        sessions: Dict[str, SessionSnapshot] = {}
        for provider in self._session_providers.values():
            sessions.update(provider())
        telemetry = (
            self._telemetry_provider() if self._telemetry_provider else TelemetrySnapshot()
        )

        any_active = telemetry.is_agent_active or any(
            snap.is_active or snap.state.needs_permission for snap in sessions.values()
        )
        if any_active or self._snapshot.any_active:
            self._last_active_at = self._clock()

        candidate = StateSnapshot(
            version=self._snapshot.version,
            sessions=sessions,
            telemetry=telemetry,
            any_active=any_active,
        )
        if candidate == self._snapshot:
            return False

        self._snapshot = candidate.model_copy(update={"version": candidate.version + 1})
        logger.debug(f"Published state v{self._snapshot.version} ({len(sessions)} sessions)")
        for observer in list(self._observers):
            try:
                observer(self._snapshot)
            except Exception as e:
                logger.error(f"State observer failed: {e}", exc_info=True)
        return True

    def any_session_active(self, grace_period: Optional[float] = None) -> bool:
        """
        True while anything is active, and for a short grace period after,
        so momentary gaps between events do not flicker to idle.
        """
        if self._snapshot.any_active:
            return True
        if self._last_active_at is None:
            return False
        grace = self.grace_period if grace_period is None else grace_period
        return (self._clock() - self._last_active_at).total_seconds() <= grace

    def get_session(self, session_id: str) -> Optional[SessionSnapshot]:
        return self._snapshot.sessions.get(session_id)
