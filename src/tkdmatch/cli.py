"""Command-line interface for tkdmatch."""

import logging

import click

from tkdmatch.config_loader import ConfigError, load_and_validate_config
from tkdmatch.exceptions import TkdMatchError


def setup_logging(level: str) -> None:
    """Configure the root logger."""
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _database(ctx):
    from tkdmatch.storage import DatabaseManager

    db = DatabaseManager(ctx.obj["config"]["database"])
    db.create_tables()
    return db


@click.group()
@click.version_option(version="0.1.0")
@click.option("--config", "config_path", required=False, help="Path to config YAML file")
@click.pass_context
def cli(ctx, config_path: str):
    """tkdmatch - taekwondo match core: brackets, pools, live scoring, medals."""
    try:
        cfg = load_and_validate_config(config_path)
    except ConfigError as e:
        click.echo(f"[ERROR] Config error: {e}", err=True)
        raise click.Abort()
    setup_logging(cfg["log_level"])
    ctx.ensure_object(dict)
    ctx.obj["config"] = cfg


@cli.command()
@click.pass_context
def init_db(ctx):
    """Create the database tables.

    Example:
        tkdmatch init-db
    """
    db = _database(ctx)
    click.echo(f"[INFO] Database ready at {db.db_path}")


@cli.command()
@click.option("--event", "event_id", type=int, required=True, help="Event ID")
@click.option("--session", "session_id", type=int, required=False, help="Competition session ID")
@click.option("--mat", type=int, default=1, help="Mat number")
@click.option("--base-number", type=int, required=False, help="First match number (default from config)")
@click.pass_context
def generate_bracket(ctx, event_id: int, session_id: int, mat: int, base_number: int):
    """Generate first-round bracket matches for an event.

    Example:
        tkdmatch generate-bracket --event 3 --session 1 --mat 2
    """
    from tkdmatch.match_service import MatchService

    cfg = ctx.obj["config"]
    service = MatchService(_database(ctx), base_match_number=cfg["base_match_number"])
    try:
        matches = service.generate_bracket(event_id, session_id, mat, base_number)
    except TkdMatchError as e:
        click.echo(f"[ERROR] {e}", err=True)
        raise click.Abort()

    click.echo(f"[SUCCESS] Created {len(matches)} matches")
    for match in matches:
        click.echo(
            f"   #{match.number} {match.position_reference}: "
            f"C{match.home_competitor_id} vs C{match.away_competitor_id}"
        )


@cli.command()
@click.option("--pool", "pool_id", type=int, required=True, help="Pool ID")
@click.option("--session", "session_id", type=int, required=False, help="Competition session ID")
@click.option("--mat", type=int, default=1, help="Mat number")
@click.pass_context
def generate_pool_matches(ctx, pool_id: int, session_id: int, mat: int):
    """Generate round-robin matches for a pool.

    Example:
        tkdmatch generate-pool-matches --pool 12
    """
    from tkdmatch.pool_service import PoolService

    service = PoolService(_database(ctx))
    try:
        matches = service.generate_pool_matches(pool_id, session_id, mat)
    except TkdMatchError as e:
        click.echo(f"[ERROR] {e}", err=True)
        raise click.Abort()

    click.echo(f"[SUCCESS] Created {len(matches)} pool matches")
    for match in matches:
        click.echo(f"   {match.number}: C{match.home_competitor_id} vs C{match.away_competitor_id}")


@cli.command()
@click.option("--pool", "pool_id", type=int, required=True, help="Pool ID")
@click.pass_context
def recompute_standings(ctx, pool_id: int):
    """Recompute pool standings from official results.

    Example:
        tkdmatch recompute-standings --pool 12
    """
    from tkdmatch.pool_service import PoolService

    service = PoolService(_database(ctx))
    try:
        standings = service.recompute_standings(pool_id)
    except TkdMatchError as e:
        click.echo(f"[ERROR] {e}", err=True)
        raise click.Abort()

    click.echo(f"\nPool {pool_id} standings:")
    for standing in standings:
        mark = " Q" if standing.qualified else ""
        click.echo(f"   {standing}{mark}")


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def replay(ctx, path: str):
    """Feed a JSON-lines file of PSS events through the scoring ingest.

    Example:
        tkdmatch replay pss-mat2.jsonl
    """
    from tkdmatch.ingest import IngestOutcome, ScoringIngest
    from tkdmatch.match_service import MatchService
    from tkdmatch.telemetry import NullTelemetry

    cfg = ctx.obj["config"]
    service = MatchService(
        _database(ctx),
        telemetry=NullTelemetry(),
        duplicate_window_ms=cfg["duplicate_window_ms"],
    )
    ingest = ScoringIngest(service)

    counts = {outcome: 0 for outcome in IngestOutcome}
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            counts[ingest.ingest(line)] += 1

    click.echo(
        f"[DONE] {counts[IngestOutcome.RECORDED]} recorded, "
        f"{counts[IngestOutcome.DUPLICATE]} duplicates, "
        f"{counts[IngestOutcome.REJECTED]} rejected"
    )


@cli.command()
@click.option("--host", default=None, help="Host to bind to (default from config)")
@click.option("--port", type=int, default=None, help="Port to bind to (default from config)")
@click.pass_context
def serve(ctx, host: str, port: int):
    """Run the HTTP API and the PSS WebSocket.

    Example:
        tkdmatch serve --host 0.0.0.0 --port 8080
    """
    import uvicorn

    from tkdmatch.webapp.app import create_app

    cfg = ctx.obj["config"]
    host = host or cfg["host"]
    port = port or cfg["port"]
    app = create_app(_database(ctx), cfg)

    click.echo(f"[INFO] Serving at http://{host}:{port} (PSS on ws://{host}:{port}/pss)")
    try:
        uvicorn.run(app, host=host, port=port, log_level=cfg["log_level"].lower())
    except KeyboardInterrupt:
        click.echo("\n[INFO] Shutting down...")


if __name__ == "__main__":
    cli()
