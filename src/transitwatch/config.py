"""Default endpoints and timings, overridable through environment variables."""

import os

# Static GTFS archive (routes, stops, trips, stop_times)
STATIC_FEED_URL = os.environ.get(
    "TRANSITWATCH_STATIC_FEED_URL",
    "https://transport.orgp.spb.ru/Portal/transport/internalapi/gtfs/feed.zip",
)

# GTFS-Realtime stop forecast, queried with ?stopID=<stop_id>
FORECAST_URL = os.environ.get(
    "TRANSITWATCH_FORECAST_URL",
    "https://transport.orgp.spb.ru/Portal/transport/internalapi/gtfs/realtime/stopforecast",
)

HTTP_TIMEOUT_SEC = float(os.environ.get("TRANSITWATCH_HTTP_TIMEOUT_SEC", "10"))
STATIC_FEED_TIMEOUT_SEC = float(os.environ.get("TRANSITWATCH_STATIC_FEED_TIMEOUT_SEC", "120"))

# Seconds between two forecast polls of a running watch
POLL_INTERVAL_SEC = float(os.environ.get("TRANSITWATCH_POLL_INTERVAL_SEC", "5"))

# The static feed only describes today's service, rebuild it daily
REFRESH_INTERVAL_SEC = float(os.environ.get("TRANSITWATCH_REFRESH_INTERVAL_SEC", "86400"))

# Forecast responses are shared between watches on the same stop for this long
FORECAST_CACHE_TTL_SEC = float(os.environ.get("TRANSITWATCH_FORECAST_CACHE_TTL_SEC", "3"))
FORECAST_CACHE_MAX_SIZE = int(os.environ.get("TRANSITWATCH_FORECAST_CACHE_MAX_SIZE", "100"))
