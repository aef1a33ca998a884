from __future__ import annotations

import math
from datetime import datetime, timedelta, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from .models import (
    Departure,
    DepartureRoute,
    DepartureStop,
    DepartureTiming,
    DepartureTrip,
    DepartureVehicle,
    RawDeparture,
)

UPSTREAM_TZ = ZoneInfo("Europe/Prague")
STOP_ID_PREFIX = "PMDP_"
TRACTION_TYPES = {1: "tram", 2: "trolleybus", 3: "bus"}
DEFAULT_ROUTE_TYPE = "bus"


def scheduled_at(raw: RawDeparture, now: datetime, tz: tzinfo = UPSTREAM_TZ) -> datetime:
    """Scheduled departure as an aware datetime in the upstream timezone.

    The board reports local wall-clock times without an offset. A missing or
    unparsable time is treated as "now".
    """
    if not raw.departure_time:
        return now.astimezone(tz)
    try:
        dt = datetime.fromisoformat(raw.departure_time)
    except ValueError:
        return now.astimezone(tz)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return dt.astimezone(tz)


def predicted_at(raw: RawDeparture, now: datetime, tz: tzinfo = UPSTREAM_TZ) -> datetime:
    return scheduled_at(raw, now, tz) + timedelta(minutes=raw.delay_min or 0)


def minutes_until(when: datetime, now: datetime) -> float:
    return (when - now).total_seconds() / 60


def route_type(traction_type: Optional[int]) -> str:
    return TRACTION_TYPES.get(traction_type, DEFAULT_ROUTE_TYPE)


def transform_departure(
    raw: RawDeparture,
    stop_id: int,
    stop_name: Optional[str],
    now: datetime,
    tz: tzinfo = UPSTREAM_TZ,
) -> Departure:
    scheduled = scheduled_at(raw, now, tz)
    delay_seconds = raw.delay_min * 60 if raw.delay_min is not None else None
    predicted = scheduled + timedelta(seconds=delay_seconds or 0)

    # The board exposes no vehicle id, charger, stop sequence, platform or
    # cancellation, so those stay at their constant defaults.
    return Departure(
        departure=DepartureTiming(
            timestamp_scheduled=scheduled.isoformat(timespec="seconds"),
            timestamp_predicted=predicted.isoformat(timespec="seconds"),
            delay_seconds=delay_seconds,
            minutes=max(0, math.floor(minutes_until(predicted, now))),
        ),
        stop=DepartureStop(id=f"{STOP_ID_PREFIX}{stop_id}", name=stop_name),
        route=DepartureRoute(
            type=route_type(raw.line.traction_type),
            short_name=raw.line.name or "",
        ),
        trip=DepartureTrip(id=raw.trip_id, headsign=raw.headsign),
        vehicle=DepartureVehicle(
            is_wheelchair_accessible=raw.line.is_barrier_free,
            is_air_conditioned=raw.is_air_conditioned,
        ),
    )
