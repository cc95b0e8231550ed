#!/usr/bin/env python3
"""Main CLI entry point for Cookie Sentinel using Typer.

Commands cover the operator workflow: create the schema, register domains,
run and inspect scans, configure automatic scanning and run the scheduler
in the foreground.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, Optional

import typer
from typing_extensions import Annotated

from .. import __version__
from ..audit.models.scan import ScanStatus
from ..config import ConfigLoadError, EngineSettings, load_settings
from ..errors import ScanEngineError
from ..persistence.database import DatabaseConfig
from ..persistence.models import ScanJob
from ..scanning.service import ScanService
from ..scheduling.scheduler import AutomaticScanScheduler

logger = logging.getLogger(__name__)


class ExitCode(IntEnum):
    """CLI exit codes."""
    SUCCESS = 0
    SCAN_FAILED = 1
    CONFIG_ERROR = 3
    RUNTIME_ERROR = 4


@dataclass
class CLIState:
    """Options shared by every command."""
    settings: EngineSettings
    database_url: Optional[str] = None


app = typer.Typer(
    name="cookie-sentinel",
    help="Cookie Sentinel - cookie discovery and inventory reconciliation",
    add_completion=False,
)


def version_callback(value: bool):
    """Show version information."""
    if value:
        typer.echo(f"Cookie Sentinel CLI v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="YAML settings file")
    ] = None,
    env: Annotated[
        Optional[str],
        typer.Option("--env", "-e", help="Environment section of the settings file")
    ] = None,
    database_url: Annotated[
        Optional[str],
        typer.Option("--database-url", help="SQLAlchemy async database URL")
    ] = None,
    log_level: Annotated[
        str,
        typer.Option("--log-level", help="Logging level")
    ] = "INFO",
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=version_callback, is_eager=True, help="Show version and exit")
    ] = None,
):
    """
    Cookie Sentinel - crawl registered domains, classify the cookies, scripts
    and trackers they emit, and keep a durable cookie inventory up to date.
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    try:
        settings = load_settings(str(config) if config else None, environment=env)
    except ConfigLoadError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)

    ctx.obj = CLIState(settings=settings, database_url=database_url or settings.database_url)


@asynccontextmanager
async def open_service(state: CLIState) -> AsyncGenerator[ScanService, None]:
    """Database and scan service for the duration of one command."""
    db = DatabaseConfig(url=state.database_url)
    try:
        yield ScanService(db, state.settings)
    finally:
        await db.close()


def run_command(coro) -> Any:
    """Run a command coroutine, mapping engine errors to exit codes."""
    try:
        return asyncio.run(coro)
    except ScanEngineError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)


def scan_summary(job: ScanJob) -> Dict[str, Any]:
    return {
        'id': job.id,
        'domain_id': job.domain_id,
        'status': job.status,
        'scan_config': job.scan_config,
        'progress': job.progress,
        'stats': job.stats,
        'errors': job.errors,
    }


@app.command(name="version")
def show_version():
    """Show version information."""
    typer.echo(f"Cookie Sentinel CLI v{__version__}")


@app.command(name="init-db")
def init_db(ctx: typer.Context):
    """Create the database tables."""

    async def _init():
        db = DatabaseConfig(url=ctx.obj.database_url)
        try:
            await db.create_all()
        finally:
            await db.close()

    run_command(_init())
    typer.echo("✅ Database initialized")


@app.command(name="add-domain")
def add_domain(
    ctx: typer.Context,
    domain: Annotated[str, typer.Argument(help="Hostname or URL of the domain")],
    auto_scan: Annotated[
        bool,
        typer.Option("--auto-scan/--no-auto-scan", help="Enable automatic scans")
    ] = False,
    interval: Annotated[
        str,
        typer.Option("--interval", help="hourly, every-2-hours, every-6-hours, daily, weekly, monthly or custom")
    ] = "daily",
    cron: Annotated[
        Optional[str],
        typer.Option("--cron", help="Cron expression for a custom interval")
    ] = None,
    timezone: Annotated[
        str,
        typer.Option("--timezone", help="IANA timezone of the schedule")
    ] = "UTC",
    scan_type: Annotated[
        str,
        typer.Option("--scan-type", help="quick, full or smart")
    ] = "full",
):
    """Register a domain."""

    async def _add():
        async with open_service(ctx.obj) as service:
            return await service.register_domain(domain, {
                'auto_scan_enabled': auto_scan,
                'scan_interval': interval,
                'cron_expression': cron,
                'timezone': timezone,
                'scan_type': scan_type,
            })

    row = run_command(_add())
    typer.echo(f"✅ Registered {row.domain} ({row.id})")


@app.command()
def scan(
    ctx: typer.Context,
    domain: Annotated[str, typer.Argument(help="Domain id or hostname")],
    scan_type: Annotated[
        Optional[str],
        typer.Option("--type", "-t", help="quick, full or smart (default: domain setting)")
    ] = None,
    priority: Annotated[str, typer.Option("--priority", help="Priority label")] = "normal",
    json_output: Annotated[bool, typer.Option("--json", help="Output the scan as JSON")] = False,
):
    """Run a scan of a domain in the foreground."""

    async def _scan():
        async with open_service(ctx.obj) as service:
            row = await service.find_domain(domain)
            if row is None:
                raise typer.BadParameter(f"Unknown domain: {domain}")
            outcome = await service.scan(row.id, scan_type=scan_type, priority=priority, triggered_by="cli")
            return outcome, await service.get_scan(outcome.scan_id)

    outcome, job = run_command(_scan())

    if json_output:
        typer.echo(json.dumps(scan_summary(job), indent=2, default=str))
    else:
        typer.echo(f"Scan {outcome.scan_id}: {outcome.status.value}")
        for key, value in outcome.summary().items():
            if key not in ('scan_id', 'status'):
                typer.echo(f"  {key}: {value}")

    if outcome.status != ScanStatus.COMPLETED:
        raise typer.Exit(code=ExitCode.SCAN_FAILED.value)


@app.command()
def cancel(
    ctx: typer.Context,
    scan_id: Annotated[str, typer.Argument(help="Scan id")],
):
    """Request cancellation of an active scan."""

    async def _cancel():
        async with open_service(ctx.obj) as service:
            return await service.cancel_scan(scan_id)

    job = run_command(_cancel())
    typer.echo(f"🛑 Scan {job.id} is {job.status}")


@app.command()
def show(
    ctx: typer.Context,
    scan_id: Annotated[str, typer.Argument(help="Scan id")],
):
    """Show a scan job as JSON."""

    async def _show():
        async with open_service(ctx.obj) as service:
            return await service.get_scan(scan_id)

    job = run_command(_show())
    if job is None:
        typer.echo(f"❌ Scan not found: {scan_id}", err=True)
        raise typer.Exit(code=ExitCode.CONFIG_ERROR.value)

    typer.echo(json.dumps(scan_summary(job), indent=2, default=str))


@app.command()
def schedule(
    ctx: typer.Context,
    domain: Annotated[str, typer.Argument(help="Domain id or hostname")],
    enable: Annotated[
        bool,
        typer.Option("--enable/--disable", help="Enable or disable automatic scans")
    ] = True,
    interval: Annotated[Optional[str], typer.Option("--interval", help="Named recurrence or custom")] = None,
    cron: Annotated[Optional[str], typer.Option("--cron", help="Cron expression for custom")] = None,
    timezone: Annotated[Optional[str], typer.Option("--timezone", help="IANA timezone")] = None,
    scan_type: Annotated[Optional[str], typer.Option("--scan-type", help="quick, full or smart")] = None,
    cleanup: Annotated[
        Optional[str],
        typer.Option("--cleanup", help="mark_inactive, delete or ignore")
    ] = None,
    retries: Annotated[Optional[int], typer.Option("--retries", help="Retry attempts after a failure")] = None,
):
    """Configure automatic scans of a domain."""

    async def _configure():
        async with open_service(ctx.obj) as service:
            row = await service.find_domain(domain)
            if row is None:
                raise typer.BadParameter(f"Unknown domain: {domain}")

            config = dict(row.scan_config or {})
            config['auto_scan_enabled'] = enable
            updates = {
                'scan_interval': interval,
                'cron_expression': cron,
                'timezone': timezone,
                'scan_type': scan_type,
                'cookie_cleanup_action': cleanup,
                'retry_attempts': retries,
            }
            config.update({key: value for key, value in updates.items() if value is not None})
            return row, await service.configure_auto_scan(row.id, config)

    row, stored = run_command(_configure())
    state = "enabled" if stored.auto_scan_enabled else "disabled"
    typer.echo(f"✅ Automatic scans {state} for {row.domain} ({stored.scan_interval.value}, {stored.timezone})")


@app.command()
def scheduler(ctx: typer.Context):
    """Run the automatic scan scheduler until interrupted."""

    async def _serve():
        async with open_service(ctx.obj) as service:
            engine = AutomaticScanScheduler(service)
            armed = await engine.start()
            typer.echo(f"✅ Scheduler started with {armed} domain(s)")
            for entry in engine.status():
                typer.echo(f"  {entry['domain_id']}: next at {entry['next_fire']}")
            try:
                while True:
                    await asyncio.sleep(1)
            finally:
                await engine.stop()

    try:
        run_command(_serve())
    except KeyboardInterrupt:
        typer.echo("\n🛑 Scheduler stopped")


if __name__ == "__main__":
    app()
