"""Command-line interface for the tracker."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Optional

import typer

from .cache import LocalCache
from .clock import Clock, format_time
from .config import TrackerSettings
from .errors import TapTrackError
from .identity import IdentityProvider
from .models import Identity, Notice
from .paths import get_cache_path, get_store_path
from .remote import HttpRemoteStore, LocalRemoteStore, RemoteStore
from .reporting import ReportPrinter
from .scheduler import RolloverScheduler
from .server_runner import run_store_server
from .service import TrackerService

app = typer.Typer(help="Personal timer with offline-friendly session sync.")


@dataclass(slots=True)
class CliOptions:
    settings: TrackerSettings
    user_id: Optional[str] = None
    email: Optional[str] = None
    cache_path: Optional[Path] = None
    store_path: Optional[Path] = None


@app.callback(no_args_is_help=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs."),
    user_id: Optional[str] = typer.Option(
        None, "--user", envvar="TAP_TRACK_USER_ID", help="Identity to track time for."
    ),
    email: Optional[str] = typer.Option(
        None, "--email", envvar="TAP_TRACK_EMAIL", help="Display email of the identity."
    ),
    remote_url: Optional[str] = typer.Option(
        None,
        "--remote",
        envvar="TAP_TRACK_REMOTE",
        help="Base URL of a session store started with `serve`. Defaults to a local store.",
    ),
    timezone_name: Optional[str] = typer.Option(
        None, "--timezone", help="IANA timezone for date keys. Defaults to the system zone."
    ),
    timeout_seconds: float = typer.Option(
        10.0, "--timeout", min=0.5, help="Remote request timeout in seconds."
    ),
    tick_seconds: float = typer.Option(
        30.0, "--tick", min=1.0, help="Seconds between scheduled rollover checks."
    ),
    cache_path: Optional[Path] = typer.Option(
        None, "--cache", path_type=Path, help="Location of the local cache database."
    ),
    store_path: Optional[Path] = typer.Option(
        None, "--store", path_type=Path, help="Location of the local session store database."
    ),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    try:
        settings = TrackerSettings.from_options(
            tick_seconds=tick_seconds,
            timeout_seconds=timeout_seconds,
            remote_url=remote_url,
            timezone_name=timezone_name,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    ctx.obj = CliOptions(
        settings=settings,
        user_id=user_id,
        email=email,
        cache_path=cache_path,
        store_path=store_path,
    )


def build_remote(options: CliOptions) -> RemoteStore:
    settings = options.settings
    if settings.remote_url:
        return HttpRemoteStore(
            settings.remote_url, timeout=settings.request_timeout.total_seconds()
        )
    return LocalRemoteStore(options.store_path or get_store_path())


def _echo_notice(notice: Notice) -> None:
    color = typer.colors.YELLOW if notice.level == "warning" else typer.colors.CYAN
    typer.secho(notice.message, err=True, fg=color)


@asynccontextmanager
async def open_service(options: CliOptions) -> AsyncIterator[TrackerService]:
    remote = build_remote(options)
    cache = LocalCache(options.cache_path or get_cache_path())
    identity = Identity(options.user_id, options.email) if options.user_id else None
    service = TrackerService(
        IdentityProvider(identity),
        remote,
        cache,
        clock=Clock(options.settings.timezone),
        notify=_echo_notice,
    )
    try:
        await service.open()
        yield service
    finally:
        await service.close()
        await remote.aclose()
        cache.close()


def _run(ctx: typer.Context, action: Callable[[TrackerService], Awaitable[None]]) -> None:
    async def runner() -> None:
        async with open_service(ctx.obj) as service:
            await action(service)

    try:
        asyncio.run(runner())
    except TapTrackError as exc:
        typer.secho(str(exc), err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1) from exc


@app.command()
def start(
    ctx: typer.Context,
    task: Optional[str] = typer.Option(None, "--task", "-t", help="Optional task label."),
) -> None:
    """Start the timer."""

    async def action(service: TrackerService) -> None:
        session = await service.start(task)
        if session is None:
            typer.echo("A session is already running.")
            return
        label = f" on {session.task_name}" if session.task_name else ""
        typer.echo(f"Started{label} at {session.start_time:%H:%M:%S} ({session.date}).")

    _run(ctx, action)


@app.command()
def stop(ctx: typer.Context) -> None:
    """Stop the running timer."""

    async def action(service: TrackerService) -> None:
        session = await service.stop()
        if session is None:
            typer.echo("No session running.")
            return
        typer.echo(f"Stopped after {format_time(session.duration)}.")

    _run(ctx, action)


@app.command()
def status(ctx: typer.Context) -> None:
    """Show the running session and today's total."""

    async def action(service: TrackerService) -> None:
        ReportPrinter(service.require_engine()).print_status()

    _run(ctx, action)


@app.command()
def report(
    ctx: typer.Context,
    days: int = typer.Option(7, "--days", min=1, max=366, help="Number of days to show."),
) -> None:
    """Print daily totals for the last few days."""

    async def action(service: TrackerService) -> None:
        ReportPrinter(service.require_engine()).print_daily_report(days)

    _run(ctx, action)


@app.command()
def overview(
    ctx: typer.Context,
    days: int = typer.Option(30, "--days", min=1, max=366, help="Number of days to show."),
) -> None:
    """Print session counts and totals per day."""

    async def action(service: TrackerService) -> None:
        ReportPrinter(service.require_engine()).print_monthly_overview(days)

    _run(ctx, action)


@app.command()
def sync(ctx: typer.Context) -> None:
    """Replay changes that could not reach the remote store."""

    async def action(service: TrackerService) -> None:
        engine = service.require_engine()
        if not engine.is_online:
            typer.echo("Remote store unreachable; nothing replayed.")
            return
        replayed = await service.sync()
        remaining = len(engine.pending_operations())
        typer.echo(f"Replayed {replayed} change(s); {remaining} still pending.")

    _run(ctx, action)


@app.command()
def watch(ctx: typer.Context) -> None:
    """Keep the session in sync and roll it over at midnight until interrupted."""

    async def action(service: TrackerService) -> None:
        service.require_engine()
        scheduler = RolloverScheduler(service, ctx.obj.settings)
        await scheduler.run()

    try:
        _run(ctx, action)
    except KeyboardInterrupt:
        typer.echo("Stopped watching.")


@app.command()
def logout(ctx: typer.Context) -> None:
    """Sign out, discarding locally cached sessions for the identity."""

    async def action(service: TrackerService) -> None:
        service.require_engine()
        await service.identities.sign_out()
        typer.echo("Signed out; local data cleared.")

    _run(ctx, action)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the store."),
    port: int = typer.Option(
        8765, "--port", min=1, max=65535, help="TCP port for the store."
    ),
    db_path: Optional[Path] = typer.Option(
        None, "--db", path_type=Path, help="Location of the session store database."
    ),
) -> None:
    """Serve the session store over HTTP."""
    run_store_server(host=host, port=port, db_path=db_path or get_store_path())
