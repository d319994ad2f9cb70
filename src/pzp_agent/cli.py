"""Typer entry points for operating a pzp-agent deployment."""

from __future__ import annotations

import asyncio
from importlib import import_module
from pathlib import Path
from typing import Any, Callable, NoReturn, Optional

import structlog
import typer

from . import run_config
from .errors import AgentError, ConfigurationError
from .rooms import RoomStore
from .run_config import ConfigStore
from .runtime import build_runtime
from .settings import AgentSettings, load_settings
from .transport import LoggingTransport, Transport

log = structlog.get_logger(__name__)

app = typer.Typer(
    name="pzp-agent",
    help="Operate the PhiZone Player Agent chat bridge and inspect its state.",
)
rooms_app = typer.Typer(name="rooms", help="Inspect active rooms.")
config_app = typer.Typer(name="config", help="Inspect and change per-user run configuration.")
app.add_typer(rooms_app)
app.add_typer(config_app)

ProfileOption = typer.Option(None, "--profile", "-p", help="Settings profile to load.")
WorkspaceOption = typer.Option(
    None, "--workspace", help="Directory holding a pzp-agent.toml to merge in."
)
StateDirOption = typer.Option(
    None,
    "--state-dir",
    help="Directory containing rooms.json and configs.json. Defaults to the profile value.",
)


def handle_agent_error(exc: AgentError) -> NoReturn:
    typer.secho(f"ERROR: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=int(exc.exit_code))


def _load(profile: Optional[str], workspace: Optional[Path]) -> AgentSettings:
    try:
        return load_settings(profile=profile, workspace=workspace)
    except AgentError as exc:
        handle_agent_error(exc)


def _state_dir(
    state_dir: Optional[Path], profile: Optional[str], workspace: Optional[Path]
) -> Path:
    if state_dir is not None:
        return state_dir.expanduser()
    return _load(profile, workspace).state_dir


def _load_transport_factory(target: str) -> Callable[[AgentSettings], Any]:
    """Import ``module:attribute`` and return the transport factory it names."""

    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise typer.BadParameter(
            f"Transport factory '{target}' must use the 'module:attribute' form."
        )
    try:
        module = import_module(module_name)
    except ImportError as exc:
        raise typer.BadParameter(f"Unable to import '{module_name}': {exc}") from exc
    factory = getattr(module, attribute, None)
    if not callable(factory):
        raise typer.BadParameter(f"'{target}' is not a callable transport factory.")
    return factory


@app.command("serve")
def serve(
    transport: Optional[str] = typer.Option(
        None,
        "--transport",
        "-t",
        help="Import string 'module:factory' of a callable returning the chat transport.",
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Log outgoing messages instead of delivering them."
    ),
    profile: Optional[str] = ProfileOption,
    workspace: Optional[Path] = WorkspaceOption,
) -> None:
    """Connect to the shared event stream and route run updates to chats."""

    settings = _load(profile, workspace)
    if dry_run:
        chat: Transport = LoggingTransport()
    elif transport:
        chat = _load_transport_factory(transport)(settings)
    else:
        raise typer.BadParameter("Pass --transport or use --dry-run.")

    try:
        runtime = build_runtime(settings, chat)
    except (AgentError, OSError) as exc:
        handle_agent_error(
            exc if isinstance(exc, AgentError) else ConfigurationError(str(exc))
        )

    typer.echo(
        f"Serving profile '{settings.profile}' against {settings.api_websocket} "
        f"({len(runtime.rooms.records())} stored room(s))."
    )
    try:
        asyncio.run(runtime.serve())
    except KeyboardInterrupt:
        log.info("cli.serve.interrupted")
    except AgentError as exc:
        handle_agent_error(exc)


@rooms_app.command("list")
def list_rooms(
    state_dir: Optional[Path] = StateDirOption,
    profile: Optional[str] = ProfileOption,
    workspace: Optional[Path] = WorkspaceOption,
) -> None:
    """List every stored room with its last known status."""

    store = RoomStore(_state_dir(state_dir, profile, workspace) / "rooms.json")
    stats = store.document.stats
    if stats.load_error:
        typer.secho(
            f"WARNING: {store.document.path} could not be read: {stats.load_error}",
            fg=typer.colors.YELLOW,
            err=True,
        )
    records = store.records()
    if not records:
        typer.echo("No active rooms.")
        return
    for record in records:
        payload = record.payload
        typer.echo(
            f"{record.user}\t{record.address}\t{payload.status}\t"
            f"{payload.progress:.0%}\t{record.conversation.channel_id}\t"
            f"{record.updated_at.isoformat() if record.updated_at else '-'}"
        )
    written = stats.modified_at.isoformat() if stats.modified_at else "-"
    typer.echo(f"{len(records)} room(s) in {store.document.path}, last written {written}.")


@config_app.command("show")
def show_config(
    user: str = typer.Argument(..., help="User whose configuration to display."),
    state_dir: Optional[Path] = StateDirOption,
    profile: Optional[str] = ProfileOption,
    workspace: Optional[Path] = WorkspaceOption,
) -> None:
    """Print the configuration summary of USER."""

    store = ConfigStore(_state_dir(state_dir, profile, workspace) / "configs.json")
    typer.echo(run_config.describe(store.get(user)))


@config_app.command("set")
def set_config(
    user: str = typer.Argument(..., help="User whose configuration to change."),
    prop: str = typer.Argument(..., metavar="PROPERTY", help="Dotted path or display name."),
    value: Optional[str] = typer.Argument(
        None, help="New value. Omit to toggle a boolean property."
    ),
    state_dir: Optional[Path] = StateDirOption,
    profile: Optional[str] = ProfileOption,
    workspace: Optional[Path] = WorkspaceOption,
) -> None:
    """Set PROPERTY of USER's configuration to VALUE."""

    store = ConfigStore(_state_dir(state_dir, profile, workspace) / "configs.json")
    try:
        key = run_config.resolve_property(prop)
        updated = run_config.set_path(store.get(user), key, value)
    except AgentError as exc:
        handle_agent_error(exc)
    store.save(updated)
    spec = run_config.PROPERTY_SPECS[key]
    shown = run_config.format_value(key, run_config.get_path(updated, key))
    typer.echo(f"{user}: {spec.label} = {shown}")


__all__ = ["app", "handle_agent_error"]
