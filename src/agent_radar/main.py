"""FastAPI application: read API and WebSocket push of the published state."""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect

from . import __version__
from .config import Settings
from .exceptions import ConnectionLimitError, SessionNotFoundError
from .logging_config import setup_logging
from .models.session import SessionSnapshot
from .service import AgentRadarService
from .types import ErrorDict, SessionSummaryDict
from .websocket import ConnectionManager, snapshot_message

logger = logging.getLogger(__name__)


def session_summary(snapshot: SessionSnapshot) -> SessionSummaryDict:
    state = snapshot.state
    return {
        "session_id": snapshot.session.session_id,
        "source": snapshot.session.source.value,
        "cwd": snapshot.session.cwd,
        "model": snapshot.session.model,
        "is_active": snapshot.is_active,
        "is_thinking": state.is_thinking,
        "needs_permission": state.needs_permission,
        "active_tools": [tool.tool_name for tool in state.active_tools],
        "total_tokens": snapshot.total_tokens,
    }


def get_session_or_raise(service: AgentRadarService, session_id: str) -> SessionSnapshot:
    snapshot = service.published.get_session(session_id)
    if snapshot is None:
        raise SessionNotFoundError(session_id)
    return snapshot


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[AgentRadarService] = None,
) -> FastAPI:
    """
    Build the application.

    When ``service`` is passed in, the caller owns its lifecycle and the
    lifespan only wires subscribers; otherwise the app builds, starts and
    stops its own service.
    """
    settings = settings or (service.settings if service else Settings())
    setup_logging(level=settings.LOG_LEVEL, debug=settings.DEBUG)

    owns_service = service is None
    service = service or AgentRadarService(settings)
    connection_manager = ConnectionManager(max_connections=settings.MAX_CONNECTIONS)
    unsubscribe = service.published.subscribe(connection_manager.publish)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan: startup and shutdown."""
        logger.info(f"Starting {settings.PROJECT_NAME}...")
        if owns_service:
            await service.start()
        logger.info(f"{settings.PROJECT_NAME} started successfully")

        yield

        logger.info("Shutting down gracefully...")
        await connection_manager.close_all()
        unsubscribe()
        if owns_service:
            await service.stop()
        logger.info("Shutdown complete")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=__version__,
        lifespan=lifespan,
    )
    app.state.service = service
    app.state.connection_manager = connection_manager

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        manager: ConnectionManager = request.app.state.connection_manager
        return request.app.state.service.health(subscribers=manager.get_connection_count())

    @app.get("/state")
    async def get_state(request: Request):
        """The full current published state."""
        svc: AgentRadarService = request.app.state.service
        snapshot = svc.published.snapshot
        payload: Dict[str, Any] = snapshot.model_dump(mode="json")
        payload["any_session_active"] = svc.published.any_session_active()
        return payload

    @app.get("/sessions")
    async def list_sessions(request: Request, source: Optional[str] = None):
        """List every tracked session, optionally for one source."""
        svc: AgentRadarService = request.app.state.service
        sessions: List[SessionSummaryDict] = [
            session_summary(snapshot)
            for snapshot in svc.published.snapshot.sessions.values()
            if source is None or snapshot.session.source.value == source
        ]
        return {"sessions": sessions}

    @app.get("/sessions/{session_id}")
    async def get_session(request: Request, session_id: str):
        """Full snapshot of one session."""
        try:
            snapshot = get_session_or_raise(request.app.state.service, session_id)
        except SessionNotFoundError as e:
            raise HTTPException(status_code=404, detail=e.message)
        return snapshot.model_dump(mode="json")

    @app.get("/telemetry")
    async def get_telemetry(request: Request):
        """The push-telemetry channel's published view."""
        svc: AgentRadarService = request.app.state.service
        return svc.published.snapshot.telemetry.model_dump(mode="json")

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Push every published state version; answers client pings."""
        manager: ConnectionManager = websocket.app.state.connection_manager
        svc: AgentRadarService = websocket.app.state.service
        try:
            client_id = await manager.connect(websocket)
        except ConnectionLimitError:
            return

        try:
            manager.enqueue(client_id, snapshot_message(svc.published.snapshot))
            while True:
                data = await websocket.receive_json()
                logger.debug(f"[WS IN] {client_id[:8]} | {json.dumps(data)[:200]}")
                if isinstance(data, dict) and data.get("type") == "ping":
                    manager.enqueue(client_id, {"type": "pong"})
                elif isinstance(data, dict) and data.get("type") == "get_state":
                    manager.enqueue(client_id, snapshot_message(svc.published.snapshot))
                else:
                    error: ErrorDict = {
                        "type": "error",
                        "code": "unknown_message",
                        "message": "Expected a ping or get_state message",
                    }
                    if isinstance(data, dict) and data.get("type"):
                        error["detail"] = str(data["type"])[:100]
                    manager.enqueue(client_id, error)
        except WebSocketDisconnect:
            logger.info(f"Client disconnected: {client_id[:8]}")
        except Exception as e:
            logger.error(f"WebSocket error: {e}", exc_info=True)
        finally:
            manager.disconnect(client_id)

    return app
