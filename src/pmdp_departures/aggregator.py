from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, tzinfo
from typing import Callable, Collection, List, Optional, Protocol, Sequence, Tuple
from zoneinfo import ZoneInfo

from .cache import DepartureCache, cache_key
from .config import Settings
from .departures import PmdpClient
from .errors import QueryValidationError
from .models import MAX_STOPS, AggregationResult, Departure, DepartureQuery, RawDeparture
from .stops import StopDirectory, load_stop_directory
from .transform import UPSTREAM_TZ, minutes_until, predicted_at, transform_departure

logger = logging.getLogger(__name__)

# Cache TTL policy
CACHE_REALTIME = 30  # seconds, while the first departure is close
CACHE_MAX = 900  # seconds
REFRESH_BEFORE = 15  # minutes before the first departure

NO_DEPARTURE_MINUTES = 999
FETCH_MAX_RESULTS = 30


class DepartureSource(Protocol):
    def fetch_departures(self, stop_id: int, max_results: int = ...) -> Optional[List[RawDeparture]]:
        ...


def compute_cache_ttl(first_departure_minutes: int) -> int:
    """Seconds a result may be served from cache.

    Close to a departure delays change quickly, so results are kept only
    briefly. Otherwise they are cached until REFRESH_BEFORE minutes before
    the first departure, capped at CACHE_MAX.
    """
    if first_departure_minutes <= REFRESH_BEFORE:
        return CACHE_REALTIME
    return min(CACHE_MAX, (first_departure_minutes - REFRESH_BEFORE) * 60)


def validate_query(query: DepartureQuery) -> None:
    if not query.stop_ids:
        raise QueryValidationError("Missing required parameter: stops")
    if len(query.stop_ids) > MAX_STOPS:
        raise QueryValidationError(f"At most {MAX_STOPS} stops are allowed")
    bad = [s for s in query.stop_ids if s <= 0]
    if bad:
        raise QueryValidationError(f"Stop ids must be positive integers, got {bad}")


def keep_departure(
    raw: RawDeparture,
    excluded_trips: Collection[str],
    headsign_needles: Sequence[str],
    min_minutes: int,
    now: datetime,
    tz: tzinfo = UPSTREAM_TZ,
) -> bool:
    """Apply the query filters to an upstream record, before transformation.

    ``headsign_needles`` must already be case-folded.
    """
    trip_id = raw.trip_id
    if trip_id and trip_id in excluded_trips:
        return False
    headsign = raw.headsign.casefold()
    if any(needle in headsign for needle in headsign_needles):
        return False
    if min_minutes > 0 and minutes_until(predicted_at(raw, now, tz), now) < min_minutes:
        return False
    return True


class DepartureAggregator:
    """Merges the departure boards of up to three stops into one list.

    Results are read from and written to ``cache`` when one is configured.
    """

    def __init__(
        self,
        client: DepartureSource,
        stops: Optional[StopDirectory] = None,
        cache: Optional[DepartureCache] = None,
        tz: tzinfo = UPSTREAM_TZ,
        max_results: int = FETCH_MAX_RESULTS,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.stops = stops or StopDirectory()
        self.cache = cache
        self.tz = tz
        self.max_results = max_results
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, stops: Optional[StopDirectory] = None) -> "DepartureAggregator":
        if stops is None:
            stops = load_stop_directory(settings.stops_db_file)
        return cls(
            client=PmdpClient.from_config(settings.upstream),
            stops=stops,
            cache=DepartureCache.from_config(settings.cache),
            tz=ZoneInfo(settings.upstream.timezone),
            max_results=settings.upstream.max_results,
        )

    def aggregate(self, query: DepartureQuery) -> AggregationResult:
        """Departures for ``query``, from cache when still fresh.

        Raises:
            QueryValidationError: no stops, more than three, or a non-positive id.
        """
        validate_query(query)

        key = cache_key(query) if self.cache is not None else None
        if key is not None:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("Cache hit %s (max-age %ss)", key, cached.cache_max_age)
                return cached

        result = self.build_result(query)
        if key is not None:
            self.cache.set(key, result)
        return result

    def build_result(self, query: DepartureQuery) -> AggregationResult:
        """Fetch, filter, merge and limit without touching the cache."""
        now = datetime.fromtimestamp(self._clock(), tz=self.tz)
        excluded_trips = set(query.exclude_trips)
        needles = [h.casefold() for h in query.exclude_headsigns if h]

        collected: List[Tuple[float, Departure]] = []
        for stop_id, raws in self._fetch_all(query.stop_ids):
            stop_name = self.stops.lookup(stop_id)
            for raw in raws:
                try:
                    if not keep_departure(raw, excluded_trips, needles, query.min_minutes, now, self.tz):
                        continue
                    sort_time = predicted_at(raw, now, self.tz).timestamp()
                    departure = transform_departure(raw, stop_id, stop_name, now, self.tz)
                except OverflowError:
                    logger.warning(
                        "Skipping departure at stop %s with out-of-range time %r (delay %r)",
                        stop_id,
                        raw.departure_time,
                        raw.delay_min,
                    )
                    continue
                collected.append((sort_time, departure))

        # stable: equal times keep stop order, then upstream order
        collected.sort(key=lambda item: item[0])
        departures = [dep for _, dep in collected[: query.limit]]

        first = departures[0].departure.minutes if departures else NO_DEPARTURE_MINUTES
        ttl = compute_cache_ttl(first)
        logger.debug(
            "Aggregated %d departures from stops %s, first in %s min, ttl %ss",
            len(departures),
            list(query.stop_ids),
            first,
            ttl,
        )
        return AggregationResult(
            departures=departures,
            cache_max_age=ttl,
            first_departure_minutes=first,
            from_cache=False,
        )

    def _fetch_stop(self, stop_id: int) -> List[RawDeparture]:
        return self.client.fetch_departures(stop_id, self.max_results) or []

    def _fetch_all(self, stop_ids: Sequence[int]) -> List[Tuple[int, List[RawDeparture]]]:
        # map() keeps the request order regardless of completion order
        with ThreadPoolExecutor(max_workers=len(stop_ids)) as executor:
            batches = list(executor.map(self._fetch_stop, stop_ids))
        return list(zip(stop_ids, batches))
