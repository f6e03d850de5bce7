"""
Command-line interface for cosmic-relay.

Provides commands to run the relay server, validate source definitions,
initialize the database, run a retention sweep, and check health.

Usage:
    cosmic-relay serve          # Run API + scheduler
    cosmic-relay check-config   # Validate source definitions
    cosmic-relay init-db        # Initialize database
    cosmic-relay sweep          # One retention pass
    cosmic-relay health         # Check service health
"""

import asyncio
import sys

import click

from cosmic_relay.config.settings import get_settings
from cosmic_relay.errors import ConfigError
from cosmic_relay.observability.logging import setup_logging
from cosmic_relay.observability.metrics import get_metrics


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Cosmic Relay - scheduled source polling with live delivery."""
    if debug:
        import os
        os.environ["LOG_LEVEL"] = "DEBUG"
        get_settings.cache_clear()

    setup_logging()


@main.command()
@click.option("--host", default=None, help="API server host")
@click.option("--port", default=None, type=int, help="API server port")
@click.option("--reload", is_flag=True, help="Enable auto-reload")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
def serve(host: str | None, port: int | None, reload: bool, metrics_port: int | None) -> None:
    """Start the relay API server and scheduler."""
    import uvicorn

    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    metrics_port = metrics_port or settings.metrics_port

    # Metrics on a separate port
    get_metrics().start_server(port=metrics_port)

    click.echo(f"Starting relay server on {host}:{port}")
    click.echo(f"Metrics available on http://localhost:{metrics_port}/metrics")
    click.echo(f"API docs available on http://localhost:{port}/docs")

    uvicorn.run(
        "cosmic_relay.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level="info",
    )


@main.command("check-config")
@click.option("--dir", "directory", default=None, help="Sources directory (default: SOURCES_DIR)")
def check_config(directory: str | None) -> None:
    """Load and validate every source definition."""
    from cosmic_relay.sources.loader import load_source_configs

    settings = get_settings()
    directory = directory or settings.sources_dir

    try:
        sources = load_source_configs(directory, settings.rate_floor_ms)
    except ConfigError as e:
        click.echo(click.style(f"Invalid source configuration: {e}", fg="red"), err=True)
        sys.exit(1)

    click.echo(f"\nLoaded {len(sources)} source(s) from {directory}")
    click.echo("-" * 60)
    for source in sources:
        state = "enabled" if source.enabled else "disabled"
        color = "green" if source.enabled else "yellow"
        configured = source.schedule.interval_ms
        line = f"  {source.id:<24} {state:<9} every {source.effective_interval_ms}ms"
        if configured != source.effective_interval_ms:
            line += f" (configured {configured}ms, raised to floor)"
        click.echo(click.style(line, fg=color))
    click.echo("-" * 60)


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""
    from cosmic_relay.storage.database import Database
    from cosmic_relay.storage.postgres import PostgresStore

    async def run():
        store = PostgresStore(Database())
        await store.connect()
        try:
            await store.create_tables()
            click.echo("Database initialized successfully")
        finally:
            await store.close()

    asyncio.run(run())


@main.command()
@click.option("--dry-run", is_flag=True, help="Show counts without deleting")
def sweep(dry_run: bool) -> None:
    """Delete rows older than the retention window once.

    Example:
        cosmic-relay sweep             # Delete expired rows
        cosmic-relay sweep --dry-run   # Preview without deleting
    """
    from cosmic_relay.clock import to_datetime
    from cosmic_relay.scheduling.sweeper import RetentionSweeper
    from cosmic_relay.services.relay_service import create_store

    settings = get_settings()

    async def run():
        store = create_store(settings)
        await store.connect()
        try:
            sweeper = RetentionSweeper(
                store,
                retention_window_ms=int(settings.retention_window.total_seconds() * 1000),
                include_statuses=settings.sweep_status_records,
            )
            cutoff = to_datetime(sweeper.cutoff())

            if dry_run:
                points, statuses = await store.count_older_than(
                    cutoff, include_statuses=settings.sweep_status_records
                )
                click.echo(
                    f"\nDry run - would delete {points} data points and {statuses} status records"
                )
                click.echo(f"Cutoff: {cutoff.isoformat()}")
                click.echo("\nRun without --dry-run to actually delete.")
            else:
                points, statuses = await sweeper.sweep_once()
                click.echo(f"\nDeleted {points} data points and {statuses} status records")
                click.echo(f"Cutoff: {cutoff.isoformat()}")
        finally:
            await store.close()

    asyncio.run(run())


@main.command()
def health() -> None:
    """Check health of the store and source definitions."""
    import structlog
    logger = structlog.get_logger()

    settings = get_settings()

    async def check():
        results: dict[str, bool] = {}

        # Source definitions
        try:
            from cosmic_relay.sources.loader import load_source_configs

            sources = load_source_configs(settings.sources_dir, settings.rate_floor_ms)
            results["source_definitions"] = True
            results["enabled_sources"] = any(s.enabled for s in sources)
        except ConfigError as e:
            results["source_definitions"] = False
            logger.error("Source definitions invalid", error=str(e))

        # Store
        try:
            from cosmic_relay.services.relay_service import create_store

            store = create_store(settings)
            await store.connect()
            results[settings.storage_backend] = await store.health_check()
            await store.close()
        except Exception as e:
            results[settings.storage_backend] = False
            logger.error("Store health check failed", error=str(e))

        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)

        all_healthy = True
        for name, status in results.items():
            icon = "✓" if status else "✗"
            color = "green" if status else "red"
            click.echo(click.style(f"  {icon} {name}: {status}", fg=color))
            if name in ("source_definitions", settings.storage_backend) and not status:
                all_healthy = False

        click.echo("-" * 40)

        if all_healthy:
            click.echo(click.style("All core services healthy!", fg="green"))
            sys.exit(0)
        else:
            click.echo(click.style("Some services unhealthy!", fg="red"))
            sys.exit(1)

    asyncio.run(check())


if __name__ == "__main__":
    main()
