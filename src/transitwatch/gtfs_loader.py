"""GTFS static data loader: builds the in-memory indices of a StaticFeed."""

import io
import logging
import zipfile
from datetime import date, datetime, time as dtime
from typing import Dict, List, Optional, Tuple

import requests

from . import config
from .models import (
    RouteInfo,
    RoutesIndex,
    StaticFeed,
    TripDirectionSet,
    TripStop,
    VehicleClass,
)

logger = logging.getLogger(__name__)

ROUTES_FILE = "routes.txt"
STOPS_FILE = "stops.txt"
TRIPS_FILE = "trips.txt"
STOP_TIMES_FILE = "stop_times.txt"
REQUIRED_FILES = (ROUTES_FILE, STOPS_FILE, TRIPS_FILE, STOP_TIMES_FILE)

SECONDS_PER_DAY = 86400


class IngestError(Exception):
    """Raised when the static feed cannot be downloaded or unpacked."""


class GTFSLoader:
    """
    Downloads the static GTFS archive and indexes it.

    The upstream tables are parsed positionally rather than by header name. Route
    and stop rows carry a free-text name that may itself contain commas, so those
    rows are split a fixed number of times from the left and from the right and
    the name is whatever is left in the middle.
    """

    def __init__(
        self,
        url: str = config.STATIC_FEED_URL,
        timeout: float = config.STATIC_FEED_TIMEOUT_SEC,
        service_date: Optional[date] = None,
    ):
        """
        Initialize the loader.

        Args:
            url: Location of the GTFS zip archive.
            timeout: HTTP timeout for the download, in seconds.
            service_date: Date the schedule is expanded onto. Defaults to the local
                calendar date at the time of each load.
        """
        self.url = url
        self.timeout = timeout
        self.service_date = service_date

    def ingest(self) -> StaticFeed:
        """Download the archive and build a new StaticFeed."""
        logger.info(f"Downloading GTFS data from {self.url}")
        try:
            response = requests.get(self.url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Failed to download GTFS data: {e}")
            raise IngestError(f"Failed to download {self.url}") from e
        return self.load_from_bytes(response.content)

    def load_from_bytes(self, data: bytes) -> StaticFeed:
        """Build a StaticFeed from the raw bytes of a GTFS zip archive."""
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as zip_file:
                names = set(zip_file.namelist())
                missing = [name for name in REQUIRED_FILES if name not in names]
                if missing:
                    raise IngestError(f"Missing required GTFS files: {missing}")
                contents = {
                    name: zip_file.read(name).decode("utf-8-sig") for name in REQUIRED_FILES
                }
        except (zipfile.BadZipFile, UnicodeDecodeError) as e:
            logger.error(f"Failed to unpack GTFS archive: {e}")
            raise IngestError("GTFS archive is not readable") from e

        return self._build(
            contents[ROUTES_FILE],
            contents[STOPS_FILE],
            contents[TRIPS_FILE],
            contents[STOP_TIMES_FILE],
        )

    def load_from_files(
        self, routes_path: str, stops_path: str, trips_path: str, stop_times_path: str
    ) -> StaticFeed:
        """Build a StaticFeed from already extracted GTFS text files."""
        logger.info("Loading GTFS data from local files")
        contents = []
        for path in (routes_path, stops_path, trips_path, stop_times_path):
            with open(path, "r", encoding="utf-8-sig") as f:
                contents.append(f.read())
        return self._build(*contents)

    def _build(
        self, routes_csv: str, stops_csv: str, trips_csv: str, stop_times_csv: str
    ) -> StaticFeed:
        service_date = self.service_date or date.today()
        feed = StaticFeed(
            routes=self._load_routes(routes_csv),
            stops=self._load_stops(stops_csv),
            trips=self._load_trips(trips_csv),
            stop_times=self._load_stop_times(stop_times_csv, service_date),
            service_date=service_date,
            loaded_at=datetime.now(),
        )
        logger.info(
            f"Loaded {len(feed.routes.all)} routes, {len(feed.stops)} stops, "
            f"{len(feed.trips)} routes with trips and {len(feed.stop_times)} timed trips "
            f"for {service_date.isoformat()}"
        )
        return feed

    @staticmethod
    def _rows(csv_content: str) -> List[str]:
        """Data rows of a table: header dropped, blank lines ignored."""
        return [line for line in csv_content.splitlines()[1:] if line.strip()]

    @staticmethod
    def _split_around(line: str, left: int, right: int) -> Optional[Tuple[List[str], str, List[str]]]:
        """
        Split a row into `left` leading fields, a free-text middle and `right`
        trailing fields. Returns None when the row is too short.
        """
        head = line.split(",", left)
        if len(head) <= left:
            return None
        tail = head[left].rsplit(",", right)
        if len(tail) <= right:
            return None
        return head[:left], tail[0], tail[1:]

    def _load_routes(self, csv_content: str) -> RoutesIndex:
        """Parse routes.txt."""
        routes = RoutesIndex()
        for line in self._rows(csv_content):
            parts = self._split_around(line, 3, 5)
            if parts is None:
                logger.warning(f"Malformed route row skipped: {line!r}")
                continue
            (route_id, _, number), name, trailing = parts
            routes.all[route_id] = name
            # Lookups upper-case the typed number
            number = number.strip().upper()

            try:
                vehicle = VehicleClass.parse(trailing[1])
            except ValueError:
                logger.error(f"Failed to parse vehicle type {trailing[1]!r}, entry skipped")
                continue

            index = routes.by_vehicle(vehicle)
            if number in index:
                logger.warning(
                    f"{vehicle.value} route {number} already present as {index[number].id}, "
                    f"{route_id} skipped"
                )
                continue
            index[number] = RouteInfo(id=route_id, name=name)
        return routes

    def _load_stops(self, csv_content: str) -> Dict[str, str]:
        """Parse stops.txt."""
        stops: Dict[str, str] = {}
        for line in self._rows(csv_content):
            parts = self._split_around(line, 2, 5)
            if parts is None:
                logger.warning(f"Malformed stop row skipped: {line!r}")
                continue
            (stop_id, _), name, _ = parts
            if stop_id in stops:
                logger.warning(f"Stop {stop_id} already present as {stops[stop_id]!r}")
                continue
            stops[stop_id] = name
        return stops

    def _load_trips(self, csv_content: str) -> Dict[str, TripDirectionSet]:
        """Parse trips.txt into forward/backward trip lists per route."""
        forward: Dict[str, List[str]] = {}
        backward: Dict[str, List[str]] = {}
        for line in self._rows(csv_content):
            fields = line.split(",")
            if len(fields) < 4:
                logger.warning(f"Malformed trip row skipped: {line!r}")
                continue
            route_id, trip_id = fields[0], fields[2]
            try:
                direction = int(fields[3])
            except ValueError:
                logger.warning(f"Bad direction {fields[3]!r} for trip {trip_id}, row skipped")
                continue

            forward.setdefault(route_id, [])
            backward.setdefault(route_id, [])
            if direction == 0:
                forward[route_id].append(trip_id)
            else:
                backward[route_id].append(trip_id)

        return {
            route_id: TripDirectionSet(forward=tuple(forward[route_id]), backward=tuple(backward[route_id]))
            for route_id in forward
        }

    def _load_stop_times(self, csv_content: str, service_date: date) -> Dict[str, Tuple[TripStop, ...]]:
        """Parse stop_times.txt, expanding times of day onto the service date."""
        stop_times: Dict[str, List[TripStop]] = {}
        for line in self._rows(csv_content):
            fields = line.split(",")
            if len(fields) < 5:
                logger.warning(f"Malformed stop time row skipped: {line!r}")
                continue
            trip_id, arrival, stop_id = fields[0], fields[1], fields[3]
            try:
                stop_sequence = int(fields[4])
                if not 0 <= stop_sequence <= 255:
                    raise ValueError(f"stop_sequence {stop_sequence} out of range")
                timestamp = service_timestamp(service_date, arrival)
            except ValueError as e:
                logger.warning(f"Stop time row for trip {trip_id} skipped: {e}")
                continue

            stop_times.setdefault(trip_id, []).append(
                TripStop(timestamp=timestamp, stop_id=stop_id, stop_sequence=stop_sequence)
            )

        return {trip_id: tuple(stops) for trip_id, stops in stop_times.items()}


def service_timestamp(service_date: date, time_of_day: str) -> int:
    """
    Unix timestamp of a GTFS ``HH:MM:SS`` time on a service date, in local time.

    Hours past 23 belong to the same service day but land on the next calendar
    day, so ``25:10:00`` is 01:10:00 on the following date.
    """
    parts = time_of_day.strip().split(":")
    if len(parts) != 3:
        raise ValueError(f"bad time {time_of_day!r}")
    hours, minutes, seconds = (int(part) for part in parts)

    next_day = hours >= 24
    if next_day:
        hours -= 24

    timestamp = int(datetime.combine(service_date, dtime(hours, minutes, seconds)).timestamp())
    if next_day:
        timestamp += SECONDS_PER_DAY
    return timestamp
