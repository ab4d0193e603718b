"""CLI interface for discosync."""

from __future__ import annotations

import asyncio
import json
from collections import deque
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import TypeVar

import typer
from pydantic import SecretStr, ValidationError
from rich.console import Console
from rich.table import Table

from discosync.config import AppConfig, ensure_dirs, load_config, save_config
from discosync.logging import setup_logging
from discosync.storage import Database, Snapshot, StoreUnavailable
from discosync.sync.remote import TokenUnavailable

app = typer.Typer(
    name="discosync",
    help="Fill a rotating family of Spotify playlists with every track by your artists.",
    add_completion=False,
)
console = Console()

T = TypeVar("T")

# One-shot commands give up instead of polling for a token forever.
_TOKEN_TIMEOUT = 60.0


def main() -> None:
    """Entry point that wraps ``app()`` with a clean KeyboardInterrupt handler."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("Interrupted.")
        raise SystemExit(130) from None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _with_db(fn: Callable[[Database], Awaitable[T]]) -> T:
    """Open the database, run ``fn`` and close it again."""

    async def runner() -> T:
        db = Database(load_config().db_path)
        await db.connect()
        try:
            return await fn(db)
        finally:
            await db.close()

    ensure_dirs()
    try:
        return asyncio.run(runner())
    except StoreUnavailable as exc:
        console.print(f"[red]Snapshot unavailable:[/red] {exc}")
        raise typer.Exit(1) from exc
    except TokenUnavailable as exc:
        console.print(f"[red]{exc}.[/red]  Check the Spotify credentials with [bold]discosync config show[/bold].")
        raise typer.Exit(1) from exc


def _load_configured() -> AppConfig:
    cfg = load_config()
    if not cfg.is_spotify_configured():
        console.print(
            "[red]Spotify is not configured.[/red]  Set [bold]spotify.client_id[/bold], "
            "[bold]spotify.client_secret[/bold] and [bold]spotify.refresh_token[/bold] "
            "with [bold]discosync config set[/bold]."
        )
        raise typer.Exit(1)
    setup_logging(cfg.general.log_level, cfg.log_dir, console=True)
    return cfg


def _print_stats(stats_json: str) -> None:
    stats = json.loads(stats_json)
    table = Table(show_header=False, box=None, padding=(0, 2))
    for key, value in stats.items():
        if value:
            table.add_row(key.replace("_", " "), str(value))
    console.print(table)


def _format_ms(epoch_ms: int) -> str:
    if not epoch_ms:
        return "never"
    return datetime.fromtimestamp(epoch_ms / 1000, tz=UTC).strftime("%Y-%m-%d %H:%M:%S UTC")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def init(
    artist: list[str] = typer.Option([], "--artist", "-a", help="Artist to track (repeatable)"),
    playlist: list[str] = typer.Option([], "--playlist", "-p", help="Existing playlist id to fill first (repeatable)"),
    force: bool = typer.Option(False, "--force", help="Replace an existing snapshot"),
) -> None:
    """Create the baseline snapshot that every run starts from."""

    async def run(db: Database) -> None:
        if await db.has_snapshot() and not force:
            console.print("[yellow]A snapshot already exists.[/yellow]  Use --force to replace it.")
            raise typer.Exit(1)
        await db.init_snapshot(artist, playlist)

    _with_db(run)
    console.print(f"[green]Snapshot initialised[/green] ({len(artist)} artists, {len(playlist)} playlists).")


@app.command()
def sync() -> None:
    """Add every new track by the tracked artists to the managed playlists."""
    from discosync.sync.engine import SyncEngine

    cfg = _load_configured()

    async def run(db: Database) -> str:
        stats = await SyncEngine(cfg, db, token_timeout=_TOKEN_TIMEOUT).run_sync()
        return stats.to_json()

    stats_json = _with_db(run)
    console.print("[green]Sync finished.[/green]")
    _print_stats(stats_json)


@app.command()
def clean(
    prune_liked: bool = typer.Option(False, "--prune-liked", help="Also remove liked tracks from managed playlists"),
) -> None:
    """Remove duplicate tracks from liked songs and playlists, and duplicate artists."""
    from discosync.sync.engine import SyncEngine

    cfg = _load_configured()

    async def run(db: Database) -> str:
        stats = await SyncEngine(cfg, db, token_timeout=_TOKEN_TIMEOUT).run_cleanup(prune_liked=prune_liked)
        return stats.to_json()

    stats_json = _with_db(run)
    console.print("[green]Cleanup finished.[/green]")
    _print_stats(stats_json)


@app.command()
def watch() -> None:
    """Run syncs on the configured interval until interrupted."""
    from discosync.sync.engine import SyncEngine
    from discosync.sync.scheduler import SyncScheduler

    cfg = _load_configured()

    async def run(db: Database) -> None:
        await db.load_snapshot()
        scheduler = SyncScheduler(
            SyncEngine(cfg, db),
            interval_minutes=cfg.sync.interval_minutes,
            cleanup_every=cfg.sync.cleanup_every,
        )
        await scheduler.start()
        try:
            await scheduler.wait()
        finally:
            await scheduler.stop()

    console.print(f"Running every [bold]{cfg.sync.interval_minutes}[/bold] minutes. Press Ctrl-C to stop.")
    _with_db(run)


@app.command()
def status() -> None:
    """Show the snapshot summary and recent runs."""
    cfg = load_config()

    async def run(db: Database):
        return await db.load_snapshot(), await db.list_sync_runs(limit=5)

    snapshot, runs = _with_db(run)
    capacity = cfg.sync.playlist_capacity

    console.print()
    console.print(f"  [bold]Liked tracks:[/bold]  {len(snapshot.liked_tracks)}  [dim](as of {_format_ms(snapshot.last_updated)})[/dim]")
    processed = len(snapshot.results)
    console.print(f"  [bold]Artists:[/bold]       {len(snapshot.artists)}  [dim]({processed} processed)[/dim]")

    console.print("\n  [bold cyan]Playlists[/bold cyan]")
    if not snapshot.playlist_ids:
        console.print("    [dim](none yet, the first sync creates one)[/dim]")
    for playlist_id in snapshot.playlist_ids:
        count = len(snapshot.playlist_tracks[playlist_id])
        style = "red" if count >= capacity else "green"
        console.print(f"    {playlist_id}  [{style}]{count:>5}[/{style}] / {capacity}")

    if runs:
        console.print("\n  [bold cyan]Recent runs[/bold cyan]")
        for sync_run in runs:
            color = {"completed": "green", "failed": "red"}.get(sync_run.status, "blue")
            line = f"    {sync_run.started_at:%Y-%m-%d %H:%M}  {sync_run.kind:<8} [{color}]{sync_run.status}[/{color}]"
            if sync_run.error_message:
                line += f"  [dim]{sync_run.error_message}[/dim]"
            console.print(line)
    console.print()


# ---------------------------------------------------------------------------
# Artists / playlists
# ---------------------------------------------------------------------------


artists_app = typer.Typer(name="artists", help="Manage the tracked artist list.", add_completion=False)
app.add_typer(artists_app)


@artists_app.command(name="add")
def artists_add(names: list[str] = typer.Argument(help="Artist names to append")) -> None:
    """Append artists to the end of the processing order."""

    async def run(db: Database) -> int:
        snapshot = await db.load_snapshot()
        known = {a.lower() for a in snapshot.artists}
        added = 0
        for name in names:
            if name.lower() in known:
                continue
            snapshot.artists.append(name)
            known.add(name.lower())
            added += 1
        await db.save_snapshot(snapshot)
        return added

    added = _with_db(run)
    console.print(f"[green]Added {added} artist(s).[/green]")


@artists_app.command(name="list")
def artists_list() -> None:
    """List tracked artists with their processing results."""

    async def run(db: Database) -> Snapshot:
        return await db.load_snapshot()

    snapshot = _with_db(run)
    table = Table("#", "Artist", "Added", "Skipped", "State")
    for position, name in enumerate(snapshot.artists, start=1):
        result = snapshot.results.get(name)
        if result is None:
            table.add_row(str(position), name, "", "", "[dim]pending[/dim]")
        else:
            table.add_row(
                str(position),
                name,
                str(result.added_songs),
                str(result.skipped_songs),
                "done" if not result.skipped else "done (skipped since)",
            )
    console.print(table)


playlists_app = typer.Typer(name="playlists", help="Manage the playlist registry.", add_completion=False)
app.add_typer(playlists_app)


@playlists_app.command(name="add")
def playlists_add(playlist_ids: list[str] = typer.Argument(help="Playlist ids to register")) -> None:
    """Register existing playlists at the end of the fill order."""
    from discosync.sync.registry import PlaylistRegistry

    async def run(db: Database) -> int:
        snapshot = await db.load_snapshot()
        registry = PlaylistRegistry(snapshot)
        added = 0
        for playlist_id in playlist_ids:
            if playlist_id in registry:
                continue
            registry.append(playlist_id)
            added += 1
        await db.save_snapshot(snapshot)
        return added

    added = _with_db(run)
    console.print(f"[green]Registered {added} playlist(s).[/green]")


@playlists_app.command(name="list")
def playlists_list() -> None:
    """List managed playlists in fill order."""

    async def run(db: Database) -> Snapshot:
        return await db.load_snapshot()

    snapshot = _with_db(run)
    for position, playlist_id in enumerate(snapshot.playlist_ids, start=1):
        console.print(f"  {position:>3}. {playlist_id}  ({len(snapshot.playlist_tracks[playlist_id])} tracks)")


# ---------------------------------------------------------------------------
# Snapshot import / export
# ---------------------------------------------------------------------------


snapshot_app = typer.Typer(name="snapshot", help="Export or import the snapshot document.", add_completion=False)
app.add_typer(snapshot_app)


@snapshot_app.command(name="export")
def snapshot_export(path: Path = typer.Argument(help="Destination JSON file")) -> None:
    """Write the snapshot as a JSON document."""

    async def run(db: Database) -> Snapshot:
        return await db.load_snapshot()

    snapshot = _with_db(run)
    path.write_text(snapshot.model_dump_json(by_alias=True, indent=2), encoding="utf-8")
    console.print(f"[green]Snapshot written to[/green] {path}")


@snapshot_app.command(name="import")
def snapshot_import(path: Path = typer.Argument(help="Source JSON file")) -> None:
    """Replace the stored snapshot with a JSON document."""
    try:
        snapshot = Snapshot.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as exc:
        console.print(f"[red]Cannot import snapshot:[/red] {exc}")
        raise typer.Exit(1) from exc

    async def run(db: Database) -> None:
        await db.save_snapshot(snapshot)

    _with_db(run)
    console.print(f"[green]Snapshot imported[/green] ({len(snapshot.artists)} artists, {len(snapshot.playlist_ids)} playlists).")


# ---------------------------------------------------------------------------
# Logs
# ---------------------------------------------------------------------------


@app.command()
def logs(
    tail_lines: int = typer.Option(50, "--lines", "-n", help="Number of lines to show"),
    sync_log: bool = typer.Option(False, "--sync", help="Show sync.log (JSON) instead of discosync.log"),
) -> None:
    """Show recent log output."""
    filename = "sync.log" if sync_log else "discosync.log"
    log_file = load_config().log_dir / filename
    if not log_file.exists():
        console.print(f"[yellow]Log file not found:[/yellow] {log_file}")
        raise typer.Exit(1)

    with open(log_file, encoding="utf-8") as fh:
        last_lines = deque(fh, maxlen=tail_lines)

    if not last_lines:
        console.print("[dim]Log file is empty.[/dim]")
        return

    for line in last_lines:
        line = line.rstrip("\n")
        if line:
            console.print(line, style=_log_line_style(line), highlight=False, markup=False)


def _log_line_style(line: str) -> str | None:
    """Rich style for a structlog line (ConsoleRenderer or JSONRenderer format)."""
    lower = line.lower()
    if "[error" in lower or "[critical" in lower or '"level": "error"' in lower or '"level": "critical"' in lower:
        return "red"
    if "[warning" in lower or '"level": "warning"' in lower:
        return "yellow"
    if "[debug" in lower or '"level": "debug"' in lower:
        return "dim"
    return None


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


def _mask(secret: SecretStr) -> str:
    """Return '***' if the secret is non-empty, else '(not set)'."""
    return "[bold]***[/bold]" if secret.get_secret_value() else "[dim](not set)[/dim]"


config_app = typer.Typer(name="config", help="View and modify configuration.", add_completion=False)
app.add_typer(config_app)


@config_app.command(name="show")
def config_show() -> None:
    """Show current configuration (secrets are masked)."""
    cfg = load_config()

    console.print("\n[bold]Current Configuration[/bold]\n")

    console.print("[bold cyan]\\[general][/bold cyan]")
    console.print(f"  log_level = {cfg.general.log_level}")

    console.print("\n[bold cyan]\\[sync][/bold cyan]")
    for key, value in cfg.sync.model_dump().items():
        console.print(f"  {key} = {value}")

    console.print("\n[bold cyan]\\[spotify][/bold cyan]")
    console.print(f"  client_id      = {cfg.spotify.client_id or '[dim](not set)[/dim]'}")
    console.print(f"  client_secret  = {_mask(cfg.spotify.client_secret)}")
    console.print(f"  refresh_token  = {_mask(cfg.spotify.refresh_token)}")
    console.print()


@config_app.command(name="set")
def config_set(
    key: str = typer.Argument(help="Dotted key, e.g. sync.playlist_capacity"),
    value: str = typer.Argument(help="New value"),
) -> None:
    """Set a configuration value (e.g. discosync config set sync.interval_minutes 120)."""
    parts = key.split(".", maxsplit=1)
    if len(parts) != 2:
        console.print("[red]Key must be in section.field format (e.g. sync.playlist_prefix).[/red]")
        raise typer.Exit(1)

    section_name, field_name = parts

    cfg = load_config()
    section_map = {
        "general": cfg.general,
        "sync": cfg.sync,
        "spotify": cfg.spotify,
    }

    if section_name not in section_map:
        console.print(f"[red]Unknown section:[/red] {section_name}")
        console.print(f"[dim]Valid sections: {', '.join(section_map)}[/dim]")
        raise typer.Exit(1)

    section_model = section_map[section_name]
    fields = type(section_model).model_fields
    if field_name not in fields:
        console.print(f"[red]Unknown field:[/red] {section_name}.{field_name}")
        console.print(f"[dim]Valid fields: {', '.join(fields)}[/dim]")
        raise typer.Exit(1)

    try:
        coerced = _coerce_value(value, fields[field_name].annotation)
        section_data = section_model.model_dump(mode="python")
        section_data[field_name] = coerced
        new_section = type(section_model)(**section_data)
    except (ValueError, TypeError) as exc:
        console.print(f"[red]Invalid value:[/red] {exc}")
        raise typer.Exit(1) from exc

    setattr(cfg, section_name, new_section)
    save_config(cfg)

    display_val = "***" if isinstance(coerced, SecretStr) else coerced
    console.print(f"[green]Set[/green] {key} = {display_val}")


def _coerce_value(raw: str, field_type: type | None) -> object:
    """Coerce a string value to the expected field type."""
    if field_type is SecretStr:
        return SecretStr(raw)

    if field_type is bool:
        if raw.lower() in ("true", "1", "yes"):
            return True
        if raw.lower() in ("false", "0", "no"):
            return False
        msg = f"Cannot convert '{raw}' to bool (use true/false)"
        raise ValueError(msg)

    if field_type is int:
        return int(raw)

    return raw
