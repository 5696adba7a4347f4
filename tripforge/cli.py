"""Command line interface for running tripforge workers and maintenance."""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from pathlib import Path
from typing import List, Optional

import typer

from .config import TripforgeConfig, load_config
from .jobqueue import JobState
from .persistence import ItineraryRequest, ProcessingStatus
from .service import ProcessingService

app = typer.Typer(help="CLI for tripforge itinerary processing")

# Command groups
worker_app = typer.Typer(help="Commands for running queue workers")
itinerary_app = typer.Typer(help="Commands for managing itineraries")
queue_app = typer.Typer(help="Commands for inspecting the job queue")
monitor_app = typer.Typer(help="Commands for the stuck-job monitor")
maintenance_app = typer.Typer(help="Maintenance commands")

app.add_typer(worker_app, name="worker")
app.add_typer(itinerary_app, name="itinerary")
app.add_typer(queue_app, name="queue")
app.add_typer(monitor_app, name="monitor")
app.add_typer(maintenance_app, name="maintenance")


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to a YAML configuration file"
    ),
) -> None:
    """tripforge CLI entry point."""
    loaded = load_config(str(config) if config else None)
    logging.basicConfig(
        level=loaded.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = loaded


def _config(ctx: typer.Context) -> TripforgeConfig:
    return ctx.obj if isinstance(ctx.obj, TripforgeConfig) else load_config()


@worker_app.command("run")
def worker_run(
    ctx: typer.Context,
    concurrency: Optional[int] = typer.Option(None, help="Number of concurrent jobs"),
    lifespan: Optional[float] = typer.Option(
        None, help="Seconds to run before shutting down (default: forever)"
    ),
    monitor: bool = typer.Option(True, help="Also run the stuck-job monitor"),
) -> None:
    """
    Run a worker process consuming itinerary jobs.

    Example:
        tripforge worker run --concurrency 5
        tripforge worker run --lifespan 300 --no-monitor
    """
    config = _config(ctx)
    if concurrency is not None:
        config.queue.concurrency = concurrency

    async def _run() -> None:
        service = ProcessingService(config)
        await service.start(monitor=monitor and config.monitor.enabled)
        try:
            if lifespan is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(lifespan)
        finally:
            await service.stop()

    typer.echo(
        f"Starting {config.queue.concurrency} worker(s) on queue: {config.queue.name}"
    )
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        typer.echo("Worker interrupted")


@itinerary_app.command("create")
def itinerary_create(
    ctx: typer.Context,
    destination: str,
    start_date: str = typer.Option(..., "--start", help="Start date (YYYY-MM-DD)"),
    end_date: str = typer.Option(..., "--end", help="End date (YYYY-MM-DD)"),
    budget: Optional[float] = typer.Option(None, help="Budget in USD"),
    interest: Optional[List[str]] = typer.Option(None, help="Repeat for each interest"),
    client_id: str = typer.Option("cli", help="Client identifier"),
    wait: bool = typer.Option(False, help="Process in this process and wait"),
    timeout: float = typer.Option(300.0, help="Seconds to wait with --wait"),
) -> None:
    """Create an itinerary and dispatch it for processing.

    With the in-memory queue nothing outlives the command, so the itinerary
    is processed here as with ``--wait``.
    """
    try:
        request = ItineraryRequest(
            destination=destination,
            start_date=date.fromisoformat(start_date),
            end_date=date.fromisoformat(end_date),
            budget=budget,
            interests=interest or [],
        )
    except ValueError as e:
        typer.echo(f"Invalid itinerary request: {e}")
        raise typer.Exit(code=1)

    config = _config(ctx)
    if not wait and config.queue.backend == "inmemory":
        typer.echo("The in-memory queue ends with this command; processing here")
        wait = True

    async def _create():
        service = ProcessingService(config)
        if wait:
            await service.start(monitor=False)
        try:
            submission = await service.create_itinerary(client_id, request)
            itinerary = submission.itinerary
            if wait:
                itinerary = await _wait_for_terminal(service, itinerary.id, timeout)
            return submission, itinerary
        finally:
            await service.stop(timeout=timeout)

    submission, itinerary = asyncio.run(_create())
    typer.echo(f"Itinerary {itinerary.id} created for {itinerary.destination}")
    typer.echo(f"  dispatch: {submission.dispatch.method}")
    if submission.dispatch.job_id:
        typer.echo(f"  job: {submission.dispatch.job_id}")
    typer.echo(f"  status: {itinerary.processing_status.value}")
    if not wait:
        typer.echo(f"  estimated completion: {submission.estimated_completion:%H:%M:%S}")
    elif itinerary.pdf_path:
        typer.echo(f"  pdf: {itinerary.pdf_path}")


async def _wait_for_terminal(service: ProcessingService, itinerary_id: int, timeout: float):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        itinerary = await service.get_itinerary(itinerary_id)
        if itinerary.processing_status.is_terminal or loop.time() >= deadline:
            return itinerary
        await asyncio.sleep(0.5)


@itinerary_app.command("show")
def itinerary_show(ctx: typer.Context, itinerary_id: int) -> None:
    """Display details for a single itinerary."""
    service = ProcessingService(_config(ctx))
    itinerary = asyncio.run(service.get_itinerary(itinerary_id))
    if itinerary is None:
        typer.echo(f"Itinerary not found: {itinerary_id}")
        raise typer.Exit(code=1)

    typer.echo(f"Itinerary: {itinerary.id}")
    typer.echo(f"Destination: {itinerary.destination}")
    typer.echo(f"Dates: {itinerary.start_date} to {itinerary.end_date}")
    typer.echo(f"Status: {itinerary.processing_status.value}")
    typer.echo(f"Created: {itinerary.created_at}")
    if itinerary.completed_at:
        typer.echo(f"Completed: {itinerary.completed_at}")
    if itinerary.model_used:
        typer.echo(f"Model: {itinerary.model_used}")
    if itinerary.pdf_path:
        typer.echo(f"PDF: {itinerary.pdf_path}")
    if itinerary.generated_content:
        typer.echo("")
        typer.echo(itinerary.generated_content)


@itinerary_app.command("list")
def itinerary_list(
    ctx: typer.Context,
    limit: int = typer.Option(10, help="Page size"),
    offset: int = typer.Option(0, help="Rows to skip"),
    status: Optional[ProcessingStatus] = typer.Option(None, help="Filter by status"),
) -> None:
    """List recent itineraries, newest first."""
    service = ProcessingService(_config(ctx))
    itineraries, total = asyncio.run(
        service.store.find_recent(limit=limit, offset=offset, status=status)
    )
    if not itineraries:
        typer.echo("No itineraries found.")
        return
    for itinerary in itineraries:
        typer.echo(
            f"{itinerary.id}\t{itinerary.processing_status.value}\t"
            f"{itinerary.destination}\t{itinerary.created_at:%Y-%m-%d %H:%M}"
        )
    typer.echo(f"Showing {len(itineraries)} of {total}")


@queue_app.command("stats")
def queue_stats(ctx: typer.Context) -> None:
    """Show job counts per state."""
    config = _config(ctx)
    service = ProcessingService(config)

    async def _stats():
        try:
            return await service.queue.stats()
        finally:
            await service.queue.disconnect()

    stats = asyncio.run(_stats())
    typer.echo(f"Queue: {config.queue.name}")
    for field, value in stats.model_dump().items():
        typer.echo(f"  {field}: {value}")


@queue_app.command("health")
def queue_health(ctx: typer.Context) -> None:
    """Ping the broker; exits with code 1 when unhealthy."""
    service = ProcessingService(_config(ctx))

    async def _health():
        try:
            return await service.queue.health_check()
        finally:
            await service.queue.disconnect()

    health = asyncio.run(_health())
    typer.echo(f"Queue status: {health.status}")
    if health.error:
        typer.echo(f"Error: {health.error}")
        raise typer.Exit(code=1)


@queue_app.command("clean")
def queue_clean(
    ctx: typer.Context,
    older_than: float = typer.Option(24 * 3600, help="Minimum record age in seconds"),
    state: JobState = typer.Option(JobState.COMPLETED, help="Job state to clean"),
    stalled: bool = typer.Option(
        False, help="Sweep failed, waiting and active records with default ages"
    ),
) -> None:
    """Remove old job records."""
    service = ProcessingService(_config(ctx))

    async def _clean():
        try:
            if stalled:
                return await service.queue.clean_stalled()
            return await service.queue.clean(older_than, state)
        finally:
            await service.queue.disconnect()

    result = asyncio.run(_clean())
    if stalled:
        for field, value in result.model_dump().items():
            typer.echo(f"{field}: {value}")
    else:
        typer.echo(f"Removed {result} {state.value} job(s)")


@monitor_app.command("check")
def monitor_check(ctx: typer.Context) -> None:
    """Run one stuck-itinerary check and process whatever it dispatches."""
    service = ProcessingService(_config(ctx))

    async def _check():
        try:
            return await service.monitor.check()
        finally:
            await service.stop()

    result = asyncio.run(_check())
    typer.echo(f"Waiting jobs: {result.waiting}")
    typer.echo(f"Pending itineraries checked: {result.checked}")
    typer.echo(f"Dispatched: {result.dispatched}")
    for itinerary_id in result.dispatched_ids:
        typer.echo(f"  - {itinerary_id}")


@maintenance_app.command("cleanup")
def maintenance_cleanup(
    ctx: typer.Context,
    days: int = typer.Option(30, help="Delete itineraries older than this many days"),
) -> None:
    """Delete old itineraries and their PDF files."""
    service = ProcessingService(_config(ctx))
    removed = asyncio.run(service.cleanup_old(days))
    typer.echo(f"Deleted {len(removed)} itinerary(ies) older than {days} days")


if __name__ == "__main__":
    app()
