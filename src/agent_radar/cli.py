"""Typer CLI interface for Agent Radar."""

import asyncio
import os
import signal
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import httpx
import typer
import uvicorn
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import Settings
from .notifications import send_notification

app = typer.Typer(
    name="agent-radar",
    help="Agent Radar - live activity of local AI coding agents",
    add_completion=False,
)
console = Console()
err_console = Console(stderr=True)


async def check_service_running(port: int) -> bool:
    """Check if service is already running on port."""
    try:
        async with httpx.AsyncClient() as client:
            resp = await client.get(f"http://localhost:{port}/health", timeout=2.0)
            return resp.status_code == 200
    except httpx.HTTPError:
        return False


async def fetch_state(port: int) -> Optional[Dict[str, Any]]:
    try:
        async with httpx.AsyncClient() as client:
            resp = await client.get(f"http://localhost:{port}/state", timeout=2.0)
            resp.raise_for_status()
            return resp.json()
    except httpx.HTTPError:
        return None


@app.command()
def serve(
    port: Optional[int] = typer.Option(None, "--port", help="Read API / WebSocket port"),
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    otlp_port: Optional[int] = typer.Option(None, "--otlp-port", help="OTLP/HTTP ingest port"),
    socket_path: Optional[str] = typer.Option(
        None, "--socket", help="Notification socket path"
    ),
    project: Optional[str] = typer.Option(
        None, "--project", "-p", help="Only watch Claude sessions of this workspace"
    ),
    no_claude: bool = typer.Option(False, "--no-claude", help="Do not watch Claude Code sessions"),
    no_codex: bool = typer.Option(False, "--no-codex", help="Do not watch Codex sessions"),
    no_otlp: bool = typer.Option(False, "--no-otlp", help="Do not accept OTLP telemetry"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
):
    """Start Agent Radar service."""
    prefix = Settings.model_config.get("env_prefix", "")

    # Set environment variables BEFORE the app factory reads its settings
    if port is not None:
        os.environ[f"{prefix}PORT"] = str(port)
    if otlp_port is not None:
        os.environ[f"{prefix}OTLP_PORT"] = str(otlp_port)
    if socket_path is not None:
        os.environ[f"{prefix}NOTIFY_SOCKET_PATH"] = socket_path
    if project is not None:
        project_path = Path(project).resolve()
        if not project_path.exists():
            console.print(f"[red]Error:[/red] Project directory not found: {project_path}")
            raise typer.Exit(1)
        os.environ[f"{prefix}CLAUDE_PROJECT"] = str(project_path)
    if no_claude:
        os.environ[f"{prefix}CLAUDE_ENABLED"] = "false"
    if no_codex:
        os.environ[f"{prefix}CODEX_ENABLED"] = "false"
    if no_otlp:
        os.environ[f"{prefix}OTLP_ENABLED"] = "false"
    os.environ[f"{prefix}HOST"] = host
    os.environ[f"{prefix}DEBUG"] = "true" if debug else "false"

    settings = Settings()

    if asyncio.run(check_service_running(settings.PORT)):
        console.print(f"[red]Error:[/red] Service already running on port {settings.PORT}")
        raise typer.Exit(1)

    def signal_handler(sig, frame):
        console.print("\n[yellow]Shutting down gracefully...[/yellow]")
        sys.exit(0)

    signal.signal(signal.SIGTERM, signal_handler)

    sources = [
        name
        for name, enabled in (("Claude Code", settings.CLAUDE_ENABLED), ("Codex", settings.CODEX_ENABLED))
        if enabled
    ]
    console.print(
        Panel.fit(
            f"[bold]Agent Radar[/bold]\n\n"
            f"📁 Sources: {', '.join(sources) or 'none'}"
            f"{' (' + settings.CLAUDE_PROJECT + ')' if settings.CLAUDE_PROJECT else ''}\n"
            f"📥 OTLP: "
            f"{'http://' + settings.OTLP_HOST + ':' + str(settings.OTLP_PORT) if settings.OTLP_ENABLED else 'disabled'}\n"
            f"🔔 Hooks: {settings.NOTIFY_SOCKET_PATH if settings.NOTIFY_ENABLED else 'disabled'}\n"
            f"📡 API: http://{settings.HOST}:{settings.PORT} (ws /ws)\n"
            f"🔍 Debug: {'enabled' if debug else 'disabled'}",
            border_style="green",
        )
    )

    uvicorn.run(
        "agent_radar.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        log_level="debug" if debug else "info",
        access_log=debug,
    )


@app.command()
def status(
    port: int = typer.Option(Settings.model_fields["PORT"].default, "--port", help="Service port"),
):
    """Show what the running service currently sees."""
    state = asyncio.run(fetch_state(port))
    if state is None:
        console.print(f"[red]Error:[/red] No service running on port {port}")
        raise typer.Exit(1)

    telemetry = state.get("telemetry", {})
    console.print(
        f"[bold]v{state.get('version', 0)}[/bold] "
        f"{'[green]active[/green]' if state.get('any_session_active') else '[dim]idle[/dim]'} | "
        f"telemetry {telemetry.get('state', 'stopped')}, "
        f"{telemetry.get('session_token_total', 0)} tokens, "
        f"${telemetry.get('cost_usd', 0.0):.2f}"
    )

    sessions = state.get("sessions", {})
    if not sessions:
        console.print("[dim]No live sessions[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Session")
    table.add_column("Source")
    table.add_column("Folder")
    table.add_column("Status")
    table.add_column("Tools")
    table.add_column("Tokens", justify="right")
    for session_id, snapshot in sessions.items():
        info = snapshot.get("session", {})
        session_state = snapshot.get("state", {})
        if session_state.get("needs_permission"):
            label = f"[yellow]permission ({session_state.get('pending_permission_tool')})[/yellow]"
        elif snapshot.get("is_active"):
            label = "[green]working[/green]"
        elif snapshot.get("is_complete"):
            label = "done"
        else:
            label = "[dim]idle[/dim]"
        tools = ", ".join(tool.get("tool_name", "?") for tool in session_state.get("active_tools", []))
        table.add_row(
            session_id[:8],
            info.get("source", ""),
            Path(info.get("cwd") or "?").name,
            label,
            tools or "-",
            str(snapshot.get("total_tokens", 0)),
        )
    console.print(table)


@app.command()
def notify(
    socket_path: str = typer.Option(
        Settings.model_fields["NOTIFY_SOCKET_PATH"].default, "--socket", help="Notification socket path"
    ),
):
    """
    Forward a hook payload from stdin to the running service.

    Always exits 0 so a failed delivery never blocks the calling hook.
    """
    payload = sys.stdin.read()
    if not send_notification(payload, socket_path):
        err_console.print("[dim]agent-radar not reachable, notification dropped[/dim]")


if __name__ == "__main__":
    app()
