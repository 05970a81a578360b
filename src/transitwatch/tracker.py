"""Main entry point for front-ends: route lookup and arrival watches."""

import logging
import time
from typing import Callable, Dict, Hashable, List, Optional, Tuple

from . import config
from .feed_store import FeedRefresher, FeedStore
from .forecast_client import ForecastClient
from .gtfs_loader import GTFSLoader
from .models import Notification, NotifyPath, RouteInfo, VehicleClass, WatchRequest, WatchState
from .scheduler import NotifyCallback, WatchScheduler
from .timetable import NotFoundError, TimetableQuery

logger = logging.getLogger(__name__)


class TransitTracker:
    """
    Tracks vehicle arrivals and warns users when it is time to leave for a stop.

    This class provides methods to:
    - Find routes by their public number and name their stops
    - Start and cancel one arrival watch per session
    - Keep the static schedule current
    """

    def __init__(
        self,
        on_notify: NotifyCallback,
        load_gtfs: bool = True,
        loader: Optional[GTFSLoader] = None,
        forecast_client: Optional[ForecastClient] = None,
        poll_interval: float = config.POLL_INTERVAL_SEC,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the tracker.

        Args:
            on_notify: Receives the Notification of every fired watch.
            load_gtfs: If True, download and index the static feed on init. If
                False, call load_feed() or feed_store.publish() before querying.
            loader: Static feed loader, a default one if omitted.
            forecast_client: Live forecast client, a default one if omitted.
            poll_interval: Seconds between forecast polls of a watch.
            clock: Returns the current Unix time.
        """
        self.feed_store = FeedStore(loader or GTFSLoader())
        self.forecast_client = forecast_client or ForecastClient()
        self.timetable = TimetableQuery(self.feed_store)
        self.scheduler = WatchScheduler(
            self.timetable, self.forecast_client, on_notify, poll_interval=poll_interval, clock=clock
        )
        self._refresher: Optional[FeedRefresher] = None

        if load_gtfs:
            try:
                self.load_feed()
            except Exception as e:
                logger.error(f"Failed to load GTFS from URL: {e}")
                raise

    def load_feed(self) -> None:
        """Download the static feed and make it the live snapshot."""
        self.feed_store.refresh()

    def lookup_routes_by_number(self, number: str) -> Dict[VehicleClass, RouteInfo]:
        return self.timetable.lookup_routes_by_number(number)

    def route_display_name(self, route_id: str) -> str:
        """
        Presentable name of a route.

        Raises:
            NotFoundError: If the route is unknown.
        """
        return self.timetable.route_name(route_id)

    def stop_display_name(self, stop_id: str) -> str:
        """
        Presentable name of a stop.

        Raises:
            NotFoundError: If the stop is unknown.
        """
        return self.timetable.stop_name(stop_id)

    def stops_on_route(self, route_id: str, direction: int) -> List[str]:
        return self.timetable.stops_on_route(route_id, direction)

    def stops_for_direction(self, route_id: str, direction: int) -> Tuple[int, List[str]]:
        """
        Stops of a route for a chosen direction, trying the other one if needed.

        Some circular routes publish trip ids for a return direction that has no
        stop times; their stops live under the opposite direction code.

        Returns:
            (direction actually used, stop ids in travel order). The direction is
            normalized to 0 (forward) or 1 (backward).

        Raises:
            NotFoundError: If neither direction has stops.
        """
        direction = 0 if direction == 0 else 1
        try:
            return direction, self.stops_on_route(route_id, direction)
        except NotFoundError:
            flipped = 1 - direction
            logger.info(f"No stops for route {route_id} direction {direction}, trying {flipped}")
            return flipped, self.stops_on_route(route_id, flipped)

    async def start_watch(self, session_id: Hashable, request: WatchRequest) -> None:
        await self.scheduler.start_watch(session_id, request)

    async def cancel_watch(self, session_id: Hashable) -> bool:
        return await self.scheduler.cancel_watch(session_id)

    def watch_state(self, session_id: Hashable) -> WatchState:
        return self.scheduler.state(session_id)

    async def start_refresh(self, interval_sec: float = config.REFRESH_INTERVAL_SEC) -> None:
        """Start rebuilding the static feed in the background every `interval_sec`."""
        if self._refresher is None:
            self._refresher = FeedRefresher(self.feed_store, interval_sec)
        await self._refresher.start()

    async def close(self) -> None:
        """Stop background work and clear caches."""
        if self._refresher is not None:
            await self._refresher.stop()
        await self.scheduler.shutdown()
        self.forecast_client.clear_cache()
        logger.info("Cleaned up tracker resources")


def describe(notification: Notification) -> str:
    """Default user-facing text for a notification."""
    if notification.path is NotifyPath.LIVE:
        return "⏰ Time to leave! ⏰"
    return "⏰ No live data found, but according to the timetable it is time to leave! ⏰"
