from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from . import __version__
from .aggregator import DepartureAggregator
from .config import Settings, load_settings
from .errors import QueryValidationError
from .models import DEFAULT_LIMIT, DepartureQuery

logger = logging.getLogger(__name__)

CORS_HEADERS = {"Access-Control-Allow-Origin": "*"}


def parse_stop_ids(value: str) -> List[int]:
    """Positive integers from a comma separated list; anything else is dropped."""
    out: List[int] = []
    for part in value.split(","):
        part = part.strip()
        if part.isdecimal() and int(part) > 0:
            out.append(int(part))
    return out


def parse_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [s.strip() for s in value.split(",") if s.strip()]


def parse_int(value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=CORS_HEADERS)


def create_app(
    settings: Optional[Settings] = None,
    aggregator: Optional[DepartureAggregator] = None,
) -> FastAPI:
    """Build the HTTP app; the stop directory and aggregator are created once here."""
    if aggregator is None:
        aggregator = DepartureAggregator.from_settings(settings or load_settings())

    app = FastAPI(title="PMDP departures", version=__version__)
    app.state.aggregator = aggregator

    @app.get("/_health")
    def health():
        return {"ok": True}

    @app.get("/departures")
    def departures(
        stops: str = "",
        exclude_trips: Optional[str] = None,
        exclude_headsigns: Optional[str] = None,
        limit: Optional[str] = None,
        min_minutes: Optional[str] = None,
    ):
        if not stops.strip():
            return _error(400, "Missing required parameter: stops")
        stop_ids = parse_stop_ids(stops)
        if not stop_ids:
            return _error(400, "Invalid parameter: stops")

        query = DepartureQuery(
            stop_ids=stop_ids,
            exclude_trips=parse_list(exclude_trips),
            exclude_headsigns=parse_list(exclude_headsigns),
            limit=parse_int(limit, DEFAULT_LIMIT),
            min_minutes=parse_int(min_minutes, 0),
        )
        try:
            result = app.state.aggregator.aggregate(query)
        except QueryValidationError as e:
            return _error(400, str(e))
        except Exception:
            logger.exception("Departure aggregation failed for stops %s", stop_ids)
            return _error(500, "Internal server error")

        headers = dict(CORS_HEADERS)
        headers["Cache-Control"] = f"public, max-age={result.cache_max_age}"
        headers["X-Cache"] = "HIT" if result.from_cache else "MISS"
        if result.first_departure_minutes is not None:
            headers["X-First-Departure-In"] = f"{result.first_departure_minutes} min"

        # Board format: a one-element array wrapping the departures list
        body = [[d.model_dump(mode="json") for d in result.departures]]
        return JSONResponse(content=body, headers=headers)

    return app
