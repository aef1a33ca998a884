from __future__ import annotations

import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, List, Mapping, Optional

from pydantic import ValidationError

from .models import Stop

logger = logging.getLogger(__name__)


class StopDirectory:
    """Read-only stop id -> stop name table."""

    def __init__(self, names: Optional[Mapping[int, str]] = None):
        self._names = MappingProxyType(dict(names or {}))

    @classmethod
    def from_stops(cls, stops: Iterable[Stop]) -> "StopDirectory":
        return cls({s.id: s.name for s in stops})

    def lookup(self, stop_id: int) -> Optional[str]:
        return self._names.get(stop_id)

    def __len__(self) -> int:
        return len(self._names)


def read_stops(path: Path) -> List[Stop]:
    """Parse a JSON array of ``{"id", "name"}`` objects.

    Entries without a usable id or name are skipped. Raises ``ValueError``
    when the document itself is not a JSON array.
    """
    with Path(path).open("r", encoding="utf-8") as f:
        raw = json.load(f)
    if not isinstance(raw, list):
        raise ValueError("Stops file root must be an array")
    stops: List[Stop] = []
    for item in raw:
        if not isinstance(item, dict) or item.get("id") is None or item.get("name") is None:
            continue
        try:
            stops.append(Stop(id=item["id"], name=str(item["name"])))
        except ValidationError:
            continue
    return stops


def load_stop_directory(path: Optional[Path]) -> StopDirectory:
    """Build the stop directory once at startup.

    A missing or malformed file yields an empty directory; lookups then
    return ``None`` instead of failing the request.
    """
    if not path:
        return StopDirectory()
    path = Path(path)
    if not path.exists():
        logger.warning("Stops file %s not found, stop names disabled", path)
        return StopDirectory()
    try:
        stops = read_stops(path)
    except (OSError, ValueError) as e:
        logger.warning("Stops file %s unreadable (%s), stop names disabled", path, e)
        return StopDirectory()
    directory = StopDirectory.from_stops(stops)
    logger.info("Loaded %d stop names from %s", len(directory), path)
    return directory
