from __future__ import annotations

import logging
from typing import List, Optional

import requests
from pydantic import ValidationError

from .config import DEFAULT_API_URL, UpstreamConfig
from .errors import UpstreamUnavailable
from .http import create_session
from .models import RawDeparture

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


def build_payload(stop_id: int, max_results: int) -> dict:
    """Request body for the departure board search endpoint."""
    return {
        "Stop": {
            "StopId": stop_id,
            "CISJRNumber": None,
            "MarkerCode": None,
            "Latitude": None,
            "Longitude": None,
            "MapyCzPoiType": None,
        },
        "DateAndTime": None,
        "MaxResults": max_results,
        "MaxResultsDateAndTime": None,
        "FullResults": False,
    }


def parse_departures(data: object) -> List[RawDeparture]:
    if not isinstance(data, list):
        raise ValueError(f"expected a JSON array, got {type(data).__name__}")
    departures: List[RawDeparture] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        try:
            departures.append(RawDeparture.model_validate(item))
        except ValidationError as e:
            logger.warning("Skipping malformed departure record: %s", e.errors()[:1])
    return departures


class PmdpClient:
    """Departure board client; one POST per stop, no shared state between calls."""

    def __init__(
        self,
        url: str = DEFAULT_API_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
        retries: int = 0,
    ):
        self.url = url
        self.timeout = timeout
        self._session = session or create_session(total_retries=retries)

    @classmethod
    def from_config(cls, config: UpstreamConfig) -> "PmdpClient":
        return cls(url=config.url, timeout=config.timeout_seconds, retries=config.retries)

    def fetch_raw(self, stop_id: int, max_results: int = 20) -> List[RawDeparture]:
        """Fetch departures for one stop.

        Raises:
            UpstreamUnavailable: on transport errors, non-200 responses or an
                unparsable body.
        """
        try:
            resp = self._session.post(
                self.url,
                json=build_payload(stop_id, max_results),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise UpstreamUnavailable(stop_id, f"request failed: {e}") from e
        if resp.status_code != 200:
            raise UpstreamUnavailable(stop_id, f"HTTP {resp.status_code}")
        try:
            return parse_departures(resp.json())
        except ValueError as e:
            raise UpstreamUnavailable(stop_id, f"unparsable body: {e}") from e

    def fetch_departures(self, stop_id: int, max_results: int = 20) -> Optional[List[RawDeparture]]:
        """Like :meth:`fetch_raw`, but ``None`` means "no data for this stop"."""
        try:
            return self.fetch_raw(stop_id, max_results)
        except UpstreamUnavailable as e:
            logger.warning("Upstream unavailable for %s", e)
            return None
