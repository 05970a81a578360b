"""Example usage of TransitTracker: watch one stop from the console."""

import asyncio
import logging
import sys
from pathlib import Path

# Add src to path so we can import transitwatch
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from transitwatch import TransitTracker, WatchRequest, describe
from transitwatch.timetable import NotFoundError

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

SESSION_ID = "console"


def ask(prompt: str, choices=None) -> str:
    """Read one non-empty answer, optionally restricted to `choices`."""
    while True:
        answer = input(prompt).strip()
        if not answer:
            continue
        if choices is not None and answer not in choices:
            print(f"Please enter one of: {', '.join(choices)}")
            continue
        return answer


def choose_watch(tracker: TransitTracker) -> WatchRequest:
    """Walk the user through route, direction, stop and leeway selection."""
    while True:
        number = ask("Route number: ")
        routes = tracker.lookup_routes_by_number(number)
        if routes:
            break
        print(f"No route numbered {number}")

    vehicles = list(routes)
    for i, vehicle in enumerate(vehicles):
        print(f"  [{i}] {vehicle.label} {number}: {tracker.route_display_name(routes[vehicle].id)}")
    route = routes[vehicles[int(ask("Vehicle: ", [str(i) for i in range(len(vehicles))]))]]

    direction = int(ask("Direction [0 = forward, 1 = backward]: ", ["0", "1"]))
    direction, stops = tracker.stops_for_direction(route.id, direction)

    print(f"\nStops of {tracker.route_display_name(route.id)}:")
    for i, stop_id in enumerate(stops):
        print(f"  [{i:2d}] {tracker.stop_display_name(stop_id)}")
    stop_id = stops[int(ask("Stop: ", [str(i) for i in range(len(stops))]))]

    leeway = int(ask("Minutes you need to get to the stop: ", [str(i) for i in range(0, 61)]))
    return WatchRequest(route_id=route.id, stop_id=stop_id, direction=direction, leeway_minutes=leeway)


async def watch(tracker: TransitTracker, request: WatchRequest, done: asyncio.Event) -> None:
    print(f"\nWatching {tracker.stop_display_name(request.stop_id)}... (Ctrl+C to cancel)")
    await tracker.start_watch(SESSION_ID, request)
    try:
        await done.wait()
    finally:
        await tracker.close()


def main():
    print("Transit Watch - Console Mode")
    print("Get told when it is time to leave for your stop\n")

    done = asyncio.Event()

    def on_notify(notification):
        print(f"\n{describe(notification)}")
        print(f"Fired at {notification.fired_at.strftime('%H:%M:%S')}\n")
        done.set()

    try:
        print("Loading GTFS data... (this may take a minute)")
        tracker = TransitTracker(on_notify=on_notify, load_gtfs=True)
        print("GTFS data loaded successfully!\n")
    except Exception as e:
        logger.error(f"Failed to load GTFS data: {e}")
        print(f"Error loading GTFS data: {e}")
        sys.exit(1)

    try:
        request = choose_watch(tracker)
        asyncio.run(watch(tracker, request, done))
    except NotFoundError as e:
        print(f"Not found: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\n\nWatch cancelled. Goodbye!")


if __name__ == "__main__":
    main()
