from __future__ import annotations

import json
from pathlib import Path

import typer

from .aggregator import DepartureAggregator
from .api import create_app, parse_list, parse_stop_ids
from .cache import DepartureCache
from .config import configure_logging, load_settings
from .errors import QueryValidationError
from .models import DEFAULT_LIMIT, DepartureQuery

app = typer.Typer(help="PMDP departures: merged departure boards for up to three stops.")


@app.command()
def show_config(config_file: Path = typer.Option(None, help="Path to YAML config file")):
    """Print the effective configuration (YAML + env overrides)."""
    settings = load_settings(config_file)
    typer.echo(json.dumps(settings.model_dump(), indent=2))


@app.command()
def departures(
    stops: str = typer.Argument(..., help="Comma-separated stop ids (max 3), e.g. 40,124"),
    exclude_trips: str = typer.Option(None, help="Comma-separated trip ids to leave out"),
    exclude_headsigns: str = typer.Option(None, help="Comma-separated headsign substrings to leave out"),
    limit: int = typer.Option(DEFAULT_LIMIT, help="Max departures (1-50)"),
    min_minutes: int = typer.Option(0, help="Only departures at least this many minutes away"),
    json_out: bool = typer.Option(False, help="Print the result envelope as JSON"),
    config_file: Path = typer.Option(None, help="Path to YAML config file"),
):
    """Fetch the merged departure board and print a summary or JSON."""
    settings = load_settings(config_file)
    configure_logging(settings.log_level)
    aggregator = DepartureAggregator.from_settings(settings)
    query = DepartureQuery(
        stop_ids=parse_stop_ids(stops),
        exclude_trips=parse_list(exclude_trips),
        exclude_headsigns=parse_list(exclude_headsigns),
        limit=limit,
        min_minutes=min_minutes,
    )
    try:
        result = aggregator.aggregate(query)
    except QueryValidationError as e:
        raise typer.BadParameter(str(e), param_hint="STOPS")

    if json_out:
        typer.echo(json.dumps(result.model_dump(mode="json"), ensure_ascii=False, indent=2))
        return
    for d in result.departures:
        delay = d.departure.delay_seconds // 60 if d.departure.delay_seconds is not None else "?"
        typer.echo(
            f"{d.route.short_name or '?'} to {d.trip.headsign or '?'} | in {d.departure.minutes} min"
            f" | {d.stop.name or d.stop.id} | delay={delay}"
        )
    typer.echo(
        f"cache={'HIT' if result.from_cache else 'MISS'} max_age={result.cache_max_age}s"
        f" first={result.first_departure_minutes} min"
    )


@app.command()
def clean_cache(
    all_entries: bool = typer.Option(False, "--all", help="Delete every entry, not only stale ones"),
    config_file: Path = typer.Option(None, help="Path to YAML config file"),
):
    """Delete cache entries older than an hour (or all with --all)."""
    settings = load_settings(config_file)
    configure_logging(settings.log_level)
    cache = DepartureCache.from_config(settings.cache)
    if cache is None:
        typer.echo("Cache is disabled")
        return
    deleted = cache.sweep(all_entries=all_entries)
    typer.echo(f"Deleted {deleted} cache entries from {cache.cache_dir}")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Bind address"),
    port: int = typer.Option(8000, help="Bind port"),
    config_file: Path = typer.Option(None, help="Path to YAML config file"),
):
    """Serve GET /departures over HTTP."""
    import uvicorn

    settings = load_settings(config_file)
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=host, port=port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    app()
