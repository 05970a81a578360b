"""transitwatch - warns public transit riders when it is time to leave for their stop."""

__version__ = "0.1.0"

from .models import (
    VehicleClass,
    RouteInfo,
    StaticFeed,
    WatchRequest,
    Forecast,
    Notification,
    NotifyPath,
    WatchState,
)
from .tracker import TransitTracker, describe
from .gtfs_loader import GTFSLoader, IngestError
from .feed_store import FeedStore, FeedRefresher
from .timetable import TimetableQuery, NotFoundError
from .forecast_client import ForecastClient, ForecastError
from .reconcile import Decision, decide
from .scheduler import WatchScheduler

__all__ = [
    "TransitTracker",
    "describe",
    "GTFSLoader",
    "IngestError",
    "FeedStore",
    "FeedRefresher",
    "TimetableQuery",
    "NotFoundError",
    "ForecastClient",
    "ForecastError",
    "Decision",
    "decide",
    "WatchScheduler",
    "VehicleClass",
    "RouteInfo",
    "StaticFeed",
    "WatchRequest",
    "Forecast",
    "Notification",
    "NotifyPath",
    "WatchState",
]
