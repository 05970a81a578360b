"""Schedule queries against the current static feed snapshot."""

import logging
import time
from typing import Dict, List, Optional

from .feed_store import FeedStore
from .models import RouteInfo, VehicleClass
from .text import route_display_name, stop_display_name

logger = logging.getLogger(__name__)

# Order in which vehicle classes are offered for a route number
LOOKUP_ORDER = (VehicleClass.BUS, VehicleClass.TROLLEY, VehicleClass.TRAM)


class NotFoundError(ValueError):
    """Raised when a route, stop or trip has no data in the static feed."""


class TimetableQuery:
    """Answers route, stop and timetable questions from the static feed."""

    def __init__(self, store: FeedStore):
        self.store = store

    def lookup_routes_by_number(self, number: str) -> Dict[VehicleClass, RouteInfo]:
        """
        Find every vehicle class that runs a route with this public number.

        Args:
            number: Route number as typed by a user, e.g. "1кр". Matching is
                case-insensitive.

        Returns:
            Mapping of vehicle class to route, empty when nothing matches.
        """
        routes = self.store.current.routes
        number = number.strip().upper()
        found: Dict[VehicleClass, RouteInfo] = {}
        for vehicle in LOOKUP_ORDER:
            route = routes.by_vehicle(vehicle).get(number)
            if route is not None:
                found[vehicle] = route
        return found

    def route_name(self, route_id: str) -> str:
        name = self.store.current.routes.all.get(route_id)
        if name is None:
            raise NotFoundError(f"Route {route_id} not found")
        return route_display_name(name)

    def stop_name(self, stop_id: str) -> str:
        name = self.store.current.stops.get(stop_id)
        if name is None:
            raise NotFoundError(f"Stop {stop_id} not found")
        return stop_display_name(name)

    def stops_on_route(self, route_id: str, direction: int) -> List[str]:
        """
        Stop ids served by a route in one direction, in travel order.

        All trips of a route share a stop pattern, so the first trip that has
        stop times stands for the whole direction.

        Raises:
            NotFoundError: If the direction has no trips with stop times.
        """
        feed = self.store.current
        trips = feed.trips.get(route_id)
        if trips is None:
            raise NotFoundError(f"No trips for route {route_id}")

        for trip_id in trips.for_direction(direction):
            trip_stops = feed.stop_times.get(trip_id)
            if trip_stops is not None:
                return [stop.stop_id for stop in trip_stops]

        raise NotFoundError(f"Couldn't find stops for route {route_id} in direction {direction}")

    def arrival_timetable(
        self, route_id: str, direction: int, stop_id: str, now: Optional[float] = None
    ) -> List[int]:
        """
        Scheduled arrivals at a stop that are still ahead.

        Args:
            route_id: Route to look at.
            direction: 0 for forward trips, anything else for backward trips.
            stop_id: Stop the arrivals are wanted for.
            now: Reference Unix time. Defaults to the current time.

        Returns:
            Unix timestamps strictly after ``now``, ascending. Several trips may
            share a timestamp.

        Raises:
            NotFoundError: If the route has no trips in this direction.
        """
        if now is None:
            now = time.time()

        feed = self.store.current
        trips = feed.trips.get(route_id)
        if trips is None or not trips.for_direction(direction):
            raise NotFoundError(f"Failed to find trips for route {route_id} in direction {direction}")

        timetable: List[int] = []
        for trip_id in trips.for_direction(direction):
            trip_stops = feed.stop_times.get(trip_id)
            if trip_stops is None:
                logger.debug(f"Trip {trip_id} of route {route_id} has no stop times")
                continue
            timetable.extend(
                stop.timestamp
                for stop in trip_stops
                if stop.stop_id == stop_id and stop.timestamp > now
            )

        timetable.sort()
        return timetable
