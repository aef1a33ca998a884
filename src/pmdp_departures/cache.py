from __future__ import annotations

import contextlib
import hashlib
import json
import logging
import os
import random
import tempfile
import time
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError

from .config import CacheConfig
from .errors import CacheUnavailable
from .models import AggregationResult, CacheEntry, DepartureQuery

logger = logging.getLogger(__name__)

CACHE_PREFIX = "pmdp_"
DEFAULT_GC_PROBABILITY = 0.01
DEFAULT_GC_MAX_AGE_SECONDS = 3600


def cache_key(query: DepartureQuery) -> str:
    """File name of the cache entry for a query.

    Lists are canonicalized first, so the same stops and exclusions given in a
    different order (or headsigns in a different case) share one entry.
    """
    canonical = [
        sorted(query.stop_ids),
        sorted(set(query.exclude_trips)),
        sorted({h.casefold() for h in query.exclude_headsigns}),
        query.limit,
        query.min_minutes,
    ]
    digest = hashlib.md5(json.dumps(canonical).encode("utf-8")).hexdigest()
    return f"{CACHE_PREFIX}{digest}.json"


class DepartureCache:
    """File-per-key cache of aggregation results with TTL-aware reads.

    Every read runs a garbage-collection sweep with probability
    ``gc_probability``; there is no separate scheduler.
    """

    def __init__(
        self,
        cache_dir: Path,
        gc_probability: float = DEFAULT_GC_PROBABILITY,
        gc_max_age_seconds: int = DEFAULT_GC_MAX_AGE_SECONDS,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ):
        self.cache_dir = Path(cache_dir)
        self.gc_probability = gc_probability
        self.gc_max_age_seconds = gc_max_age_seconds
        self._clock = clock
        self._rng = rng or random.Random()

    @classmethod
    def from_config(cls, config: CacheConfig) -> Optional["DepartureCache"]:
        if not config.dir:
            return None
        return cls(
            Path(config.dir),
            gc_probability=config.gc_probability,
            gc_max_age_seconds=config.gc_max_age_seconds,
        )

    def _path(self, key: str) -> Path:
        return self.cache_dir / key

    def get(self, key: str) -> Optional[AggregationResult]:
        if self._rng.random() < self.gc_probability:
            self.sweep()

        path = self._path(key)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Cache entry %s unreadable: %s", path, e)
            return None
        try:
            entry = CacheEntry.model_validate_json(data)
        except (ValidationError, UnicodeDecodeError):
            logger.warning("Cache entry %s is corrupt, ignoring", path)
            return None

        now = int(self._clock())
        if entry.expires <= now:
            return None
        return AggregationResult(
            departures=entry.departures,
            cache_max_age=entry.expires - now,
            first_departure_minutes=entry.first_min,
            from_cache=True,
        )

    def set(self, key: str, result: AggregationResult) -> bool:
        """Store a result; returns False if the cache could not be written."""
        entry = CacheEntry(
            departures=result.departures,
            expires=int(self._clock()) + result.cache_max_age,
            first_min=result.first_departure_minutes,
        )
        try:
            self._ensure_dir()
            self._write_atomic(self._path(key), entry.model_dump_json())
        except CacheUnavailable as e:
            logger.warning("Cache write skipped: %s", e)
            return False
        return True

    def sweep(self, all_entries: bool = False) -> int:
        """Delete entries older than ``gc_max_age_seconds`` (or all of them).

        Returns:
            Number of deleted files.
        """
        if not self.cache_dir.is_dir():
            return 0
        now = self._clock()
        deleted = 0
        for path in self.cache_dir.glob(f"{CACHE_PREFIX}*.json"):
            try:
                if all_entries or now - path.stat().st_mtime > self.gc_max_age_seconds:
                    path.unlink()
                    deleted += 1
            except FileNotFoundError:
                # removed by a concurrent sweep
                continue
            except OSError as e:
                logger.warning("Cannot remove cache entry %s: %s", path, e)
        if deleted:
            logger.info("Cache sweep removed %d entries from %s", deleted, self.cache_dir)
        return deleted

    def _ensure_dir(self) -> None:
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheUnavailable(f"cannot create {self.cache_dir}: {e}") from e

    def _write_atomic(self, path: Path, text: str) -> None:
        try:
            fd, tmp = tempfile.mkstemp(dir=self.cache_dir, prefix=f".{path.name}.", suffix=".tmp")
        except OSError as e:
            raise CacheUnavailable(f"cannot write to {self.cache_dir}: {e}") from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.chmod(tmp, 0o644)
            os.replace(tmp, path)
        except OSError as e:
            with contextlib.suppress(OSError):
                os.unlink(tmp)
            raise CacheUnavailable(f"cannot write {path}: {e}") from e
