from __future__ import annotations

from typing import Any, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_LIMIT = 15
MAX_LIMIT = 50
MAX_STOPS = 3

RouteType = Literal["tram", "trolleybus", "bus"]


class DepartureQuery(BaseModel):
    """What the caller asked for; also the identity of a cache entry."""

    model_config = ConfigDict(frozen=True)

    stop_ids: Tuple[int, ...]
    exclude_trips: Tuple[str, ...] = ()
    exclude_headsigns: Tuple[str, ...] = ()
    limit: int = DEFAULT_LIMIT
    min_minutes: int = 0

    @field_validator("limit", mode="before")
    @classmethod
    def _clamp_limit(cls, v: Any) -> int:
        if v is None:
            return DEFAULT_LIMIT
        return min(MAX_LIMIT, max(1, int(v)))

    @field_validator("min_minutes", mode="before")
    @classmethod
    def _clamp_min_minutes(cls, v: Any) -> int:
        if v is None:
            return 0
        return max(0, int(v))


class Stop(BaseModel):
    id: int
    name: str


# Upstream records (PMDP "odjezdy" board)


class RawLine(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    traction_type: Optional[int] = Field(default=None, alias="TractionType")
    name: Optional[str] = Field(default=None, alias="Name")
    is_barrier_free: Optional[bool] = Field(default=None, alias="IsBarrierFree")

    @field_validator("traction_type", mode="before")
    @classmethod
    def _traction_code(cls, v: Any) -> Optional[int]:
        # Unknown codes fall through to the default route type
        if isinstance(v, bool):
            return None
        if isinstance(v, int):
            return v
        if isinstance(v, str) and v.strip().isdigit():
            return int(v.strip())
        return None


class RawDeparture(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    departure_time: Optional[str] = Field(default=None, alias="DepartureTime")
    delay_min: Optional[int] = Field(default=None, alias="DelayMin")
    line: RawLine = Field(default_factory=RawLine, alias="Line")
    last_stop_name: Optional[str] = Field(default=None, alias="LastStopName")
    connection_id: Optional[Any] = Field(default=None, alias="ConnectionId")
    is_air_conditioned: Optional[bool] = Field(default=None, alias="IsAirConditioned")

    @field_validator("delay_min", mode="before")
    @classmethod
    def _whole_minutes(cls, v: Any) -> Any:
        if isinstance(v, float):
            return round(v)
        return v

    @field_validator("line", mode="before")
    @classmethod
    def _line_or_empty(cls, v: Any) -> Any:
        return {} if v is None else v

    @property
    def trip_id(self) -> Optional[str]:
        """Connection id, either from the ``{"Id": ...}`` structure or a bare scalar."""
        cid = self.connection_id
        if isinstance(cid, dict):
            value = cid.get("Id")
            return None if value is None else str(value)
        if isinstance(cid, (str, int, float)):
            return str(cid)
        return None

    @property
    def headsign(self) -> str:
        return self.last_stop_name or ""


# Canonical output schema


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class DepartureTiming(_Frozen):
    timestamp_scheduled: str
    timestamp_predicted: str
    delay_seconds: Optional[int] = None
    minutes: int


class DepartureStop(_Frozen):
    id: str
    name: Optional[str] = None
    sequence: Optional[int] = None
    platform_code: Optional[str] = None


class DepartureRoute(_Frozen):
    type: RouteType = "bus"
    short_name: str = ""


class DepartureTrip(_Frozen):
    id: Optional[str] = None
    headsign: str = ""
    is_canceled: bool = False


class DepartureVehicle(_Frozen):
    id: Optional[str] = None
    is_wheelchair_accessible: Optional[bool] = None
    is_air_conditioned: Optional[bool] = None
    has_charger: Optional[bool] = None


class Departure(_Frozen):
    departure: DepartureTiming
    stop: DepartureStop
    route: DepartureRoute
    trip: DepartureTrip
    vehicle: DepartureVehicle


class AggregationResult(BaseModel):
    departures: List[Departure] = Field(default_factory=list)
    cache_max_age: int
    first_departure_minutes: Optional[int] = None
    from_cache: bool = False


class CacheEntry(BaseModel):
    departures: List[Departure] = Field(default_factory=list)
    expires: int
    first_min: Optional[int] = None
