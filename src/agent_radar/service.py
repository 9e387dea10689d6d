"""Wires listeners, watchers and state owners into one running service."""

import logging
from typing import Dict, List, Optional

from .config import Settings
from .hub import (
    EventHub,
    LinesRead,
    NotificationReceived,
    SessionAttached,
    SessionDetached,
    TelemetryReceived,
)
from .models.notifications import Notification
from .models.session import SessionSource
from .models.telemetry import GatewayRequest, utcnow
from .notifications import NotificationRouter, NotificationSocketServer
from .session_manager import SessionManager
from .sources import (
    ClaudeDiscovery,
    ClaudeNormalizer,
    CodexDiscovery,
    CodexNormalizer,
    LineNormalizer,
)
from .state import PermissionPolicy, PublishedState, SessionStateMachine
from .telemetry import IngestGateway, TelemetryCoordinator
from .types import Clock, HealthDict
from .watchers import DirectoryWatchRegistry

logger = logging.getLogger(__name__)


class AgentRadarService:
    """
    Composition root.

    Every listener and watcher only submits events to the hub; the hub's
    drain task is the single place where session machines, the telemetry
    coordinator and the notification router mutate state. Each of them
    commits into the shared published state.
    """

    def __init__(self, settings: Settings, clock: Clock = utcnow):
        self.settings = settings
        self._clock = clock
        self.started = False

        self.published = PublishedState(grace_period=settings.ACTIVITY_GRACE_PERIOD, clock=clock)
        self.hub = EventHub()
        self.registry = DirectoryWatchRegistry()

        self.machines: Dict[SessionSource, SessionStateMachine] = {}
        self.normalizers: Dict[SessionSource, LineNormalizer] = {}
        self.managers: Dict[SessionSource, SessionManager] = {}

        if settings.CLAUDE_ENABLED:
            machine = self._build_machine(
                SessionSource.CLAUDE_CODE,
                PermissionPolicy(
                    eligible=settings.CLAUDE_PERMISSION_TOOLS,
                    auto_approved=settings.CLAUDE_AUTO_APPROVED_TOOLS,
                    plugin_prefixes=settings.CLAUDE_PLUGIN_PREFIXES,
                ),
                settings.CLAUDE_PERMISSION_DELAY,
            )
            self.normalizers[SessionSource.CLAUDE_CODE] = ClaudeNormalizer(machine)
            self.managers[SessionSource.CLAUDE_CODE] = SessionManager(
                ClaudeDiscovery(
                    settings.claude_home,
                    recency_window=settings.RECENCY_WINDOW,
                    workspace=settings.CLAUDE_PROJECT,
                ),
                self.hub,
                self.registry,
                scan_interval=settings.SCAN_INTERVAL,
                history_bytes=settings.HISTORY_TAIL_BYTES,
                history_lines=settings.CLAUDE_HISTORY_LINES,
            )

        if settings.CODEX_ENABLED:
            machine = self._build_machine(
                SessionSource.CODEX,
                PermissionPolicy(
                    eligible=settings.CODEX_PERMISSION_TOOLS,
                    auto_approved=settings.CODEX_AUTO_APPROVED_TOOLS,
                ),
                settings.CODEX_PERMISSION_DELAY,
            )
            self.normalizers[SessionSource.CODEX] = CodexNormalizer(machine)
            self.managers[SessionSource.CODEX] = SessionManager(
                CodexDiscovery(settings.codex_home, recency_window=settings.RECENCY_WINDOW),
                self.hub,
                self.registry,
                scan_interval=settings.SCAN_INTERVAL,
                history_bytes=settings.HISTORY_TAIL_BYTES,
                history_lines=settings.CODEX_HISTORY_LINES,
            )

        self.gateway: Optional[IngestGateway] = None
        if settings.OTLP_ENABLED:
            self.gateway = IngestGateway(
                on_request=self._on_gateway_request,
                on_error=self._on_gateway_error,
                host=settings.OTLP_HOST,
                read_timeout=settings.OTLP_READ_TIMEOUT,
                max_header_bytes=settings.OTLP_MAX_HEADER_BYTES,
            )
        self.telemetry = TelemetryCoordinator(
            gateway=self.gateway,
            recent_calls=settings.TELEMETRY_RECENT_CALLS,
            idle_delay=settings.TELEMETRY_IDLE_DELAY,
            active_time_delay=settings.ACTIVE_TIME_COMPLETION_DELAY,
            accept_codex=settings.TELEMETRY_ACCEPT_CODEX,
            clock=clock,
            on_change=self.published.commit,
        )
        self.published.attach_telemetry(self.telemetry.snapshot)

        self.router = NotificationRouter(self.machines.values())
        self.socket_server: Optional[NotificationSocketServer] = None
        if settings.NOTIFY_ENABLED:
            self.socket_server = NotificationSocketServer(
                settings.NOTIFY_SOCKET_PATH,
                on_notification=self._on_notification,
                read_attempts=settings.NOTIFY_READ_ATTEMPTS,
                idle_sleep=settings.NOTIFY_IDLE_SLEEP,
                busy_sleep=settings.NOTIFY_BUSY_SLEEP,
            )

        self.hub.register(SessionAttached, self._handle_attached)
        self.hub.register(LinesRead, self._handle_lines)
        self.hub.register(SessionDetached, self._handle_detached)
        self.hub.register(TelemetryReceived, self._handle_telemetry)
        self.hub.register(NotificationReceived, self._handle_notification)

    def _build_machine(
        self, source: SessionSource, policy: PermissionPolicy, permission_delay: float
    ) -> SessionStateMachine:
        machine = SessionStateMachine(
            source,
            policy,
            permission_delay=permission_delay,
            idle_delay=self.settings.IDLE_DELAY,
            tool_idle_delay=self.settings.TOOL_IDLE_DELAY,
            recent_limit=self.settings.RECENT_TOOLS_LIMIT,
            clock=self._clock,
            on_change=self.published.commit,
        )
        self.machines[source] = machine
        self.published.attach_sessions(source.value, machine.snapshots)
        return machine

    # Listener callbacks (run on the loop, hand off to the hub)

    def _on_gateway_request(self, request: GatewayRequest) -> None:
        self.hub.submit(TelemetryReceived(request=request))

    def _on_gateway_error(self, error) -> None:
        self.telemetry.record_error(error)

    def _on_notification(self, notification: Notification) -> None:
        self.hub.submit(NotificationReceived(notification=notification))

    # Hub handlers

    def _handle_attached(self, event: SessionAttached) -> None:
        machine = self.machines.get(event.info.source)
        if machine is None:
            return
        machine.add_session(event.info)
        machine.commit()

    def _handle_lines(self, event: LinesRead) -> None:
        normalizer = self.normalizers.get(event.source)
        if normalizer is None:
            return
        normalizer.apply_lines(event.session_id, event.lines, replay=event.replay)

    def _handle_detached(self, event: SessionDetached) -> None:
        machine = self.machines.get(event.source)
        if machine is None or not machine.has_session(event.session_id):
            return
        machine.remove_session(event.session_id)
        machine.commit()

    def _handle_telemetry(self, event: TelemetryReceived) -> None:
        self.telemetry.handle_request(event.request)

    def _handle_notification(self, event: NotificationReceived) -> None:
        self.router.route(event.notification)

    # Lifecycle

    async def start(self) -> None:
        if self.started:
            logger.warning("Service already started")
            return
        logger.info(f"Starting {self.settings.PROJECT_NAME} service...")
        self.started = True
        await self.hub.start()

        if self.settings.OTLP_ENABLED:
            await self.telemetry.start(self.settings.OTLP_PORT)
        if self.socket_server is not None:
            await self.socket_server.start()

        if self.managers:
            self.registry.start()
        for manager in self.managers.values():
            try:
                found = await manager.scan()
                logger.info(f"[{manager.source.value}] {found} live session(s)")
            except Exception as e:
                logger.error(f"Initial {manager.source.value} scan failed: {e}", exc_info=True)
            manager.start_scan_task()

        self.published.commit()
        logger.info("Service started")

    async def stop(self) -> None:
        if not self.started:
            return
        logger.info("Shutting down service...")
        for manager in self.managers.values():
            await manager.stop()
        if self.socket_server is not None:
            await self.socket_server.stop()
        await self.telemetry.stop()
        self.registry.stop()

        # Drain detach events before dropping what is left
        await self.hub.stop()
        for machine in self.machines.values():
            machine.shutdown()
        self.published.commit()
        self.started = False
        logger.info("Service stopped")

    # Introspection

    def listeners(self) -> Dict[str, bool]:
        return {
            "otlp": self.gateway is not None and self.gateway.is_running,
            "notifications": self.socket_server is not None and self.socket_server.is_running,
            "file_watcher": self.registry.running,
        }

    def sources(self) -> List[str]:
        return [source.value for source in self.machines]

    def health(self, subscribers: int = 0) -> HealthDict:
        snapshot = self.published.snapshot
        return {
            "status": "healthy",
            "service": "agent-radar",
            "version": snapshot.version,
            "sessions": len(snapshot.sessions),
            "telemetry_state": snapshot.telemetry.state.value,
            "listeners": self.listeners(),
            "subscribers": subscribers,
        }
