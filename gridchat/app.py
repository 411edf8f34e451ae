"""gridchat CLI: inspect persisted chat sessions from a terminal."""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from gridchat.adapters.dirty_ranges import summarize_ranges
from gridchat.engine.config import EngineConfig
from gridchat.engine.errors import PersistenceError
from gridchat.engine.models import ToolCallStatus, TurnRole
from gridchat.engine.yaml_config import load_provider_config
from gridchat.shared.models.message import TextPart, ThinkingPart, ToolCallPart, Turn
from gridchat.shared.services.persistence import SessionStore

logger = logging.getLogger(__name__)

_STATUS_STYLE = {
    ToolCallStatus.PENDING: ("○", "dim"),
    ToolCallStatus.RUNNING: ("▶", "yellow"),
    ToolCallStatus.COMPLETE: ("✓", "green"),
    ToolCallStatus.ERROR: ("✗", "red"),
}


def _configure_logging(config: EngineConfig, verbose: bool) -> Path:
    log_level = "DEBUG" if verbose else config.log_level
    config.log_dir.mkdir(parents=True, exist_ok=True)
    log_file = config.log_dir / "gridchat.log"

    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level, logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    return log_file


def _format_ms(ms: int) -> str:
    if not ms:
        return "-"
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M")


def _mask(secret: str) -> str:
    if len(secret) <= 8:
        return "*" * len(secret)
    return f"{secret[:4]}…{secret[-4:]}"


def list_sessions(console: Console, store: SessionStore, workspace_id: str | None) -> int:
    sessions = store.list_sessions(workspace_id)
    if not sessions:
        console.print("No saved sessions.")
        return 0
    table = Table(title="Sessions", show_lines=False)
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Name")
    table.add_column("Workspace", style="dim")
    table.add_column("Turns", justify="right")
    table.add_column("Updated")
    for s in sessions:
        table.add_row(s.id, s.name, s.workspace_id[:8], str(s.turn_count), _format_ms(s.updated_at))
    console.print(table)
    return 0


def _render_turn(turn: Turn) -> Panel:
    body = Text()
    for part in turn.parts:
        if isinstance(part, TextPart):
            body.append(part.text + "\n")
        elif isinstance(part, ThinkingPart):
            body.append(part.thinking + "\n", style="italic dim")
        elif isinstance(part, ToolCallPart):
            icon, style = _STATUS_STYLE[part.status]
            body.append(f"{icon} {part.name}", style=style)
            summary = summarize_ranges(part.dirty_ranges or [], lambda gid: f"sheet {gid}")
            if summary:
                body.append(f" {summary}", style="cyan")
            body.append("\n")
    is_user = turn.role is TurnRole.USER
    return Panel(
        body,
        title=f"{'You' if is_user else 'Assistant'} · {_format_ms(turn.timestamp)}",
        title_align="left",
        border_style="blue" if is_user else "magenta",
    )


def show_session(console: Console, store: SessionStore, session_id: str) -> int:
    session = store.get_session(session_id)
    if session is None:
        console.print(f"[red]Session '{session_id}' not found[/red]")
        return 1
    console.print(f"[bold]{session.name}[/bold] [dim]({session.id})[/dim]")
    files = store.load_workspace_files(session.id)
    console.print(
        f"[dim]{session.turn_count} turns · {len(session.context)} context messages · "
        f"{len(files)} workspace files[/dim]"
    )
    for turn in session.conversation:
        console.print(_render_turn(turn))
    return 0


def show_provider(console: Console, config: EngineConfig) -> int:
    provider = load_provider_config(config.provider_config_path)
    if provider is None:
        console.print("No provider configured.")
        return 0
    table = Table(show_header=False)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("provider", provider.provider)
    table.add_row("model", provider.model)
    table.add_row("api_key", _mask(provider.api_key))
    table.add_row("thinking", provider.thinking.value)
    table.add_row("proxy", provider.proxy_url if provider.use_proxy else "off")
    table.add_row("follow_mode", "default" if provider.follow_mode is None else str(provider.follow_mode))
    console.print(table)
    return 0


def main(argv: list[str] | None = None) -> None:
    import argparse

    parser = argparse.ArgumentParser(
        prog="gridchat",
        description="gridchat: inspect spreadsheet chat sessions",
    )
    parser.add_argument(
        "--list", action="store_true",
        help="List saved sessions and exit",
    )
    parser.add_argument(
        "--show", metavar="SESSION_ID",
        help="Print a saved session's conversation",
    )
    parser.add_argument(
        "--provider", action="store_true",
        help="Show the saved provider configuration (API key masked)",
    )
    parser.add_argument(
        "--data-dir", metavar="PATH",
        help="Data directory (default: $GRIDCHAT_DATA_DIR or ~/.gridchat)",
    )
    parser.add_argument(
        "--workspace", metavar="ID",
        help="Only list sessions of this workspace",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Log debug output to stderr",
    )
    args = parser.parse_args(argv)

    config = EngineConfig.from_env()
    if args.data_dir:
        config.data_dir = Path(args.data_dir).expanduser()
    log_file = _configure_logging(config, args.verbose)
    logger.info("gridchat CLI data_dir=%s log=%s", config.data_dir, log_file)

    console = Console()
    try:
        store = SessionStore(config.sessions_dir, config.session_name_max_length)
        if args.show:
            code = show_session(console, store, args.show)
        elif args.provider:
            code = show_provider(console, config)
        else:
            code = list_sessions(console, store, args.workspace)
    except PersistenceError as exc:
        logger.exception("Storage error")
        console.print(f"[red]Error:[/red] {exc}")
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
