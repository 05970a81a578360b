"""GTFS-Realtime stop forecast fetcher and parser."""

import logging
import threading
import time
from typing import Dict, List, Optional, Tuple

import requests
from google.protobuf.message import DecodeError
from google.transit import gtfs_realtime_pb2

from . import config
from .models import Forecast

logger = logging.getLogger(__name__)


class ForecastError(Exception):
    """Raised when a forecast cannot be fetched or decoded."""


class ForecastClient:
    """Fetches live arrival forecasts for a stop."""

    def __init__(
        self,
        url: str = config.FORECAST_URL,
        timeout: float = config.HTTP_TIMEOUT_SEC,
        cache_ttl: float = config.FORECAST_CACHE_TTL_SEC,
        max_cache_size: int = config.FORECAST_CACHE_MAX_SIZE,
    ):
        """
        Initialize the forecast client.

        Args:
            url: Stop forecast endpoint, queried with a ``stopID`` parameter.
            timeout: HTTP timeout in seconds.
            cache_ttl: How long a stop's response is reused, in seconds. 0 disables
                the cache.
            max_cache_size: Maximum number of stops kept in the cache.
        """
        self.url = url
        self.timeout = timeout
        self._cache: Dict[str, Tuple[bytes, float]] = {}  # stop_id -> (data, fetched_at)
        self._cache_ttl = cache_ttl
        self._max_cache_size = max_cache_size
        self._cache_lock = threading.Lock()  # Fetches run in worker threads

    def get_waiting_times(self, route_id: str, stop_id: str, now: Optional[float] = None) -> List[int]:
        """
        Seconds until each predicted arrival of a route at a stop.

        Returns:
            Strictly positive waiting times. An empty list means the provider has
            no live prediction, which is not an error.

        Raises:
            ForecastError: If the request or the protobuf decoding failed.
        """
        return [
            forecast.seconds_away
            for forecast in self.get_forecast(stop_id, now=now)
            if forecast.route_id == route_id
        ]

    def get_forecast(self, stop_id: str, now: Optional[float] = None) -> List[Forecast]:
        """
        Get every live arrival prediction for a stop.

        Args:
            stop_id: Stop to query.
            now: Reference Unix time. Defaults to the current time.

        Returns:
            Forecast objects with a strictly positive waiting time.

        Raises:
            ForecastError: If the request or the protobuf decoding failed.
        """
        data = self._fetch(stop_id)
        if now is None:
            now = time.time()
        return self._parse_forecast(data, int(now))

    def _fetch(self, stop_id: str) -> bytes:
        """Fetch the raw forecast for a stop, served from cache while fresh."""
        now = time.time()
        with self._cache_lock:
            cached = self._cache.get(stop_id)
            if cached is not None and now - cached[1] < self._cache_ttl:
                logger.debug(f"Using cached forecast for stop {stop_id}")
                return cached[0]

        logger.debug(f"Fetching forecast for stop {stop_id}")
        try:
            response = requests.get(self.url, params={"stopID": stop_id}, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Failed to fetch forecast for stop {stop_id}: {e}")
            raise ForecastError(f"Failed to fetch forecast for stop {stop_id}") from e

        data = response.content
        if self._cache_ttl > 0:
            with self._cache_lock:
                self._evict_expired_cache(now)
                if len(self._cache) >= self._max_cache_size:
                    oldest_key = min(self._cache.keys(), key=lambda k: self._cache[k][1])
                    del self._cache[oldest_key]
                self._cache[stop_id] = (data, now)
        return data

    def _evict_expired_cache(self, current_time: float) -> None:
        """Remove expired cache entries. Caller holds the cache lock."""
        expired_keys = [
            stop_id for stop_id, (_, fetched_at) in self._cache.items()
            if current_time - fetched_at >= self._cache_ttl
        ]
        for key in expired_keys:
            del self._cache[key]

    def clear_cache(self) -> None:
        """Manually clear the cache."""
        with self._cache_lock:
            self._cache.clear()

    @staticmethod
    def _parse_forecast(feed_data: bytes, now: int) -> List[Forecast]:
        """
        Parse a stop forecast message.

        The provider sets each entity id to the route id of the vehicle it
        predicts, so the route is read from there rather than from the trip.
        """
        feed = gtfs_realtime_pb2.FeedMessage()
        try:
            feed.ParseFromString(feed_data)
        except DecodeError as e:
            logger.error(f"Failed to decode forecast: {e}")
            raise ForecastError("Failed to decode forecast") from e

        forecasts: List[Forecast] = []
        for entity in feed.entity:
            if not entity.HasField("trip_update"):
                continue
            for stop_time_update in entity.trip_update.stop_time_update:
                if not stop_time_update.HasField("arrival"):
                    continue
                if not stop_time_update.arrival.HasField("time"):
                    continue
                seconds_away = stop_time_update.arrival.time - now
                if seconds_away > 0:
                    forecasts.append(Forecast(route_id=entity.id, seconds_away=seconds_away))

        return forecasts
