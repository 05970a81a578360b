"""Tests for GTFSLoader and FeedStore."""

import asyncio
import unittest
from unittest.mock import patch, MagicMock
from datetime import date
import sys
from pathlib import Path

import requests

# Add src to path so we can import transitwatch
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from transitwatch.models import RouteInfo, StaticFeed, TripStop, VehicleClass
from transitwatch.gtfs_loader import GTFSLoader, IngestError, service_timestamp
from transitwatch.feed_store import FeedStore, FeedRefresher

from gtfs_fixture import (
    SERVICE_DATE,
    ROUTES_CSV,
    STOPS_CSV,
    TRIPS_CSV,
    STOP_TIMES_CSV,
    build_gtfs_zip,
    ts,
)


class TestRoutesParsing(unittest.TestCase):
    """Test parsing of routes.txt."""

    def setUp(self):
        self.routes = GTFSLoader(service_date=SERVICE_DATE)._load_routes(ROUTES_CSV)

    def test_routes_indexed_by_vehicle_class(self):
        """Each route lands in the index of its vehicle class only."""
        self.assertEqual(self.routes.bus["5"], RouteInfo(id="R5", name='"ПЛ. ВОССТАНИЯ - УЛ. ДЫБЕНКО"'))
        self.assertEqual(self.routes.tram["5"].id, "R5T")
        self.assertEqual(self.routes.trolley["7К"].id, "R7")
        self.assertNotIn("7К", self.routes.bus)
        self.assertNotIn("7К", self.routes.tram)

    def test_duplicate_route_number_keeps_first(self):
        """A second bus route numbered 5 is dropped."""
        self.assertEqual(self.routes.bus["5"].id, "R5")
        self.assertEqual(len(self.routes.bus), 1)

    def test_all_routes_named_regardless_of_class(self):
        """The id -> name map covers every parsed row, even dropped or unknown ones."""
        self.assertEqual(set(self.routes.all), {"R5", "R5T", "R5DUP", "R7", "RX"})
        self.assertEqual(self.routes.all["R5DUP"], '"ДУБЛЬ, ДУБЛЬ"')

    def test_unknown_vehicle_token_not_indexed(self):
        """A ferry route has no class index entry."""
        for vehicle in VehicleClass:
            self.assertNotIn("9", self.routes.by_vehicle(vehicle))

    def test_route_number_keys_upper_cased(self):
        """Numbers with lowercase letters are indexed the way lookups spell them."""
        routes = GTFSLoader()._load_routes("header\nR3A,orgp,3а,А - Б,3,bus,0,1,0\n")
        self.assertEqual(routes.bus["3А"].id, "R3A")

    def test_name_with_commas(self):
        """The free-text name may contain commas."""
        routes = GTFSLoader()._load_routes(
            "header\nR1,orgp,1,\"A, B, C - D\",3,bus,0,1,0\n"
        )
        self.assertEqual(routes.bus["1"].name, '"A, B, C - D"')


class TestVehicleClass(unittest.TestCase):
    """Test vehicle token resolution."""

    def test_known_tokens(self):
        self.assertIs(VehicleClass.parse("bus"), VehicleClass.BUS)
        self.assertIs(VehicleClass.parse("tram"), VehicleClass.TRAM)
        self.assertIs(VehicleClass.parse("trolley"), VehicleClass.TROLLEY)

    def test_unknown_token_fails(self):
        with self.assertRaises(ValueError):
            VehicleClass.parse("ferry")
        with self.assertRaises(ValueError):
            VehicleClass.parse("Bus")


class TestStopsParsing(unittest.TestCase):
    """Test parsing of stops.txt."""

    def test_load_stops(self):
        stops = GTFSLoader()._load_stops(STOPS_CSV)
        self.assertEqual(stops["S1"], '"НЕВСКИЙ ПР., 28"')
        self.assertEqual(stops["S2"], "ПЛ. ВОССТАНИЯ")
        self.assertEqual(len(stops), 3)

    def test_duplicate_stop_keeps_first(self):
        stops = GTFSLoader()._load_stops(STOPS_CSV)
        self.assertNotEqual(stops["S1"], "ДУБЛЬ")


class TestTripsParsing(unittest.TestCase):
    """Test parsing of trips.txt."""

    def test_trips_split_by_direction(self):
        trips = GTFSLoader()._load_trips(TRIPS_CSV)
        self.assertEqual(trips["R5"].forward, ("T1", "T2"))
        self.assertEqual(trips["R5"].backward, ("T3",))
        self.assertEqual(trips["R7"].for_direction(0), ("T7F",))
        self.assertEqual(trips["R7"].for_direction(1), ("T7",))

    def test_nonzero_direction_is_backward(self):
        trips = GTFSLoader()._load_trips("header\nR1,s,A,2,x\nR1,s,B,0,x\n")
        self.assertEqual(trips["R1"].backward, ("A",))
        self.assertEqual(trips["R1"].forward, ("B",))

    def test_one_directional_route(self):
        trips = GTFSLoader()._load_trips("header\nR1,s,A,0,x\n")
        self.assertEqual(trips["R1"].backward, ())

    def test_bad_direction_skipped(self):
        trips = GTFSLoader()._load_trips(TRIPS_CSV)
        self.assertNotIn("TBAD", trips["R5"].forward + trips["R5"].backward)


class TestStopTimesParsing(unittest.TestCase):
    """Test parsing of stop_times.txt."""

    def setUp(self):
        self.stop_times = GTFSLoader()._load_stop_times(STOP_TIMES_CSV, SERVICE_DATE)

    def test_stop_times_keep_file_order(self):
        self.assertEqual(
            self.stop_times["T1"],
            (
                TripStop(timestamp=ts(8, 0), stop_id="S1", stop_sequence=1),
                TripStop(timestamp=ts(8, 5), stop_id="S2", stop_sequence=2),
            ),
        )

    def test_after_midnight_rolls_to_next_day(self):
        """25:10:00 on D is 01:10:00 on D+1."""
        self.assertEqual(self.stop_times["T2"][0].timestamp, ts(1, 10, day_offset=1))

    def test_malformed_rows_skipped(self):
        """Bad times and out of range sequence numbers do not abort the load."""
        self.assertNotIn("T9", self.stop_times)
        self.assertIn("T7", self.stop_times)


class TestServiceTimestamp(unittest.TestCase):
    """Test time-of-day expansion."""

    def test_regular_time(self):
        self.assertEqual(service_timestamp(date(2024, 1, 15), "08:00:00"), ts(8, 0))

    def test_rollover(self):
        self.assertEqual(service_timestamp(date(2024, 1, 15), "24:00:00"), ts(0, 0, day_offset=1))
        self.assertEqual(service_timestamp(date(2024, 1, 15), "25:10:00"), ts(1, 10, day_offset=1))

    def test_bad_time(self):
        for value in ("8:00", "aa:00:00", "08:61:00"):
            with self.assertRaises(ValueError):
                service_timestamp(date(2024, 1, 15), value)


class TestArchiveLoading(unittest.TestCase):
    """Test reading the GTFS archive."""

    def test_load_from_bytes(self):
        feed = GTFSLoader(service_date=SERVICE_DATE).load_from_bytes(build_gtfs_zip())
        self.assertIsInstance(feed, StaticFeed)
        self.assertEqual(feed.service_date, SERVICE_DATE)
        self.assertIn("R5", feed.trips)
        self.assertIn("S3", feed.stops)
        self.assertIn("T1", feed.stop_times)
        self.assertIsNotNone(feed.loaded_at)

    def test_missing_file_raises(self):
        with self.assertRaises(IngestError):
            GTFSLoader().load_from_bytes(build_gtfs_zip(exclude_files={"stop_times.txt"}))

    def test_invalid_zip_raises(self):
        with self.assertRaises(IngestError):
            GTFSLoader().load_from_bytes(b"not a zip file")

    def test_load_from_files(self):
        import tempfile

        with tempfile.TemporaryDirectory() as tmp:
            paths = []
            for name, content in (
                ("routes.txt", ROUTES_CSV),
                ("stops.txt", STOPS_CSV),
                ("trips.txt", TRIPS_CSV),
                ("stop_times.txt", STOP_TIMES_CSV),
            ):
                path = Path(tmp) / name
                path.write_text(content, encoding="utf-8")
                paths.append(str(path))
            feed = GTFSLoader(service_date=SERVICE_DATE).load_from_files(*paths)

        self.assertEqual(feed.routes.bus["5"].id, "R5")

    @patch("transitwatch.gtfs_loader.requests.get")
    def test_ingest_downloads_archive(self, mock_get):
        mock_response = MagicMock()
        mock_response.content = build_gtfs_zip()
        mock_get.return_value = mock_response

        loader = GTFSLoader(url="http://test/feed.zip", timeout=5, service_date=SERVICE_DATE)
        feed = loader.ingest()

        mock_get.assert_called_once_with("http://test/feed.zip", timeout=5)
        self.assertEqual(feed.routes.trolley["7К"].id, "R7")

    @patch("transitwatch.gtfs_loader.requests.get")
    def test_ingest_network_error(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("unreachable")
        with self.assertRaises(IngestError):
            GTFSLoader(url="http://test/feed.zip").ingest()


class TestFeedStore(unittest.TestCase):
    """Test publishing and refreshing the shared snapshot."""

    def setUp(self):
        self.feed = GTFSLoader(service_date=SERVICE_DATE).load_from_bytes(build_gtfs_zip())

    def test_starts_empty(self):
        store = FeedStore(loader=MagicMock())
        self.assertEqual(store.current.trips, {})

    def test_publish_swaps_snapshot(self):
        store = FeedStore(loader=MagicMock())
        old = store.current
        store.publish(self.feed)
        self.assertIs(store.current, self.feed)
        self.assertEqual(old.trips, {})

    def test_refresh_publishes_new_feed(self):
        loader = MagicMock()
        loader.ingest.return_value = self.feed
        store = FeedStore(loader=loader)

        self.assertIs(store.refresh(), self.feed)
        self.assertIs(store.current, self.feed)

    def test_failed_refresh_keeps_previous_snapshot(self):
        loader = MagicMock()
        loader.ingest.side_effect = IngestError("boom")
        store = FeedStore(loader=loader, feed=self.feed)

        with self.assertRaises(IngestError):
            store.refresh()
        self.assertIs(store.current, self.feed)


class TestFeedRefresher(unittest.IsolatedAsyncioTestCase):
    """Test the periodic rebuild."""

    async def test_refreshes_on_interval(self):
        new_feed = StaticFeed.empty()
        loader = MagicMock()
        loader.ingest.return_value = new_feed
        store = FeedStore(loader=loader, feed=GTFSLoader().load_from_bytes(build_gtfs_zip()))

        refresher = FeedRefresher(store, interval_sec=0.01)
        await refresher.start()
        self.assertTrue(refresher.is_running)
        await asyncio.sleep(0.1)
        await refresher.stop()

        self.assertFalse(refresher.is_running)
        self.assertIs(store.current, new_feed)
        self.assertGreaterEqual(loader.ingest.call_count, 1)

    async def test_keeps_running_after_failure(self):
        loader = MagicMock()
        loader.ingest.side_effect = IngestError("boom")
        store = FeedStore(loader=loader)

        refresher = FeedRefresher(store, interval_sec=0.01)
        await refresher.start()
        await asyncio.sleep(0.1)
        self.assertTrue(refresher.is_running)
        await refresher.stop()

        self.assertGreaterEqual(loader.ingest.call_count, 2)


if __name__ == "__main__":
    unittest.main()
