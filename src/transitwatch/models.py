"""Data models for the transit arrival watcher."""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Dict, Hashable, Optional, Tuple


class VehicleClass(Enum):
    """Transit mode of a route, as given by the static feed."""

    BUS = "bus"
    TRAM = "tram"
    TROLLEY = "trolley"

    @classmethod
    def parse(cls, token: str) -> "VehicleClass":
        """Resolve a raw feed token. Unknown tokens raise ValueError."""
        return cls(token)

    @property
    def label(self) -> str:
        return _VEHICLE_LABELS[self]


_VEHICLE_LABELS = {
    VehicleClass.BUS: "Bus 🚌",
    VehicleClass.TRAM: "Tram 🚋",
    VehicleClass.TROLLEY: "Trolleybus 🚎",
}


@dataclass(frozen=True)
class RouteInfo:
    """One numbered route variant."""
    id: str
    name: str  # Raw name, see text.route_display_name


@dataclass(frozen=True)
class RoutesIndex:
    """Routes keyed by public route number, one map per vehicle class."""
    bus: Dict[str, RouteInfo] = field(default_factory=dict)
    tram: Dict[str, RouteInfo] = field(default_factory=dict)
    trolley: Dict[str, RouteInfo] = field(default_factory=dict)
    all: Dict[str, str] = field(default_factory=dict)  # route_id -> raw name

    def by_vehicle(self, vehicle: VehicleClass) -> Dict[str, RouteInfo]:
        if vehicle is VehicleClass.BUS:
            return self.bus
        if vehicle is VehicleClass.TRAM:
            return self.tram
        return self.trolley


@dataclass(frozen=True)
class TripDirectionSet:
    """Trip ids of a route split by direction (0 = forward, anything else = backward)."""
    forward: Tuple[str, ...] = ()
    backward: Tuple[str, ...] = ()

    def for_direction(self, direction: int) -> Tuple[str, ...]:
        return self.forward if direction == 0 else self.backward


@dataclass(frozen=True)
class TripStop:
    """A scheduled visit of a trip to a stop."""
    timestamp: int  # Unix timestamp on the service date
    stop_id: str
    stop_sequence: int  # 0-255


@dataclass(frozen=True)
class StaticFeed:
    """
    Immutable snapshot of the static schedule.

    A snapshot is never edited after it is built; a refresh publishes a new one.
    """
    routes: RoutesIndex
    stops: Dict[str, str]  # stop_id -> raw name
    trips: Dict[str, TripDirectionSet]  # route_id -> trips
    stop_times: Dict[str, Tuple[TripStop, ...]]  # trip_id -> visits in file order
    service_date: Optional[date] = None
    loaded_at: Optional[datetime] = None

    @classmethod
    def empty(cls) -> "StaticFeed":
        return cls(routes=RoutesIndex(), stops={}, trips={}, stop_times={})


@dataclass(frozen=True)
class WatchRequest:
    """What a user asked to be warned about. Also the shape of a saved route."""
    route_id: str
    stop_id: str
    direction: int
    leeway_minutes: int  # Walking time to the stop


@dataclass
class Forecast:
    """A live arrival prediction for a stop."""
    route_id: str
    seconds_away: int


class NotifyPath(Enum):
    """Which data source triggered a notification."""

    LIVE = "live"
    SCHEDULE_FALLBACK = "schedule-fallback"


class WatchState(Enum):
    IDLE = "idle"
    WATCHING = "watching"
    FIRED = "fired"
    CANCELLED = "cancelled"


@dataclass
class Notification:
    """Terminal event of a watch: time to leave."""
    session_id: Hashable
    request: WatchRequest
    path: NotifyPath
    fired_at: datetime
