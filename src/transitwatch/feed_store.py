"""Ownership of the shared StaticFeed snapshot and its periodic rebuild."""

import asyncio
import logging
import threading
from contextlib import suppress
from typing import Optional

from . import config
from .gtfs_loader import GTFSLoader, IngestError
from .models import StaticFeed

logger = logging.getLogger(__name__)


class FeedStore:
    """
    Holds the one live StaticFeed.

    Readers take a reference to ``current`` and run their whole query against it;
    a refresh builds a complete new snapshot off to the side and swaps the
    reference, so a reader never sees a half-built feed. Writers are serialized.
    """

    def __init__(self, loader: Optional[GTFSLoader] = None, feed: Optional[StaticFeed] = None):
        self.loader = loader or GTFSLoader()
        self._feed = feed or StaticFeed.empty()
        self._write_lock = threading.Lock()

    @property
    def current(self) -> StaticFeed:
        return self._feed

    def publish(self, feed: StaticFeed) -> None:
        """Replace the live snapshot."""
        with self._write_lock:
            self._feed = feed
        logger.info(f"Published static feed for {feed.service_date}")

    def refresh(self) -> StaticFeed:
        """
        Re-ingest the static feed and publish it.

        Raises:
            IngestError: If the download or unpacking failed. The previous snapshot
                stays live in that case.
        """
        with self._write_lock:
            try:
                feed = self.loader.ingest()
            except IngestError:
                logger.error("Static feed refresh failed, keeping previous snapshot")
                raise
            self._feed = feed
        logger.info(f"Static feed refreshed for {feed.service_date}")
        return feed


class FeedRefresher:
    """
    Rebuilds the static feed on a fixed interval.

    Usage:
        refresher = FeedRefresher(store)
        await refresher.start()
        ...
        await refresher.stop()
    """

    def __init__(self, store: FeedStore, interval_sec: float = config.REFRESH_INTERVAL_SEC):
        self.store = store
        self.interval_sec = interval_sec
        self._task: Optional["asyncio.Task[None]"] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            logger.warning("Feed refresher already running, ignoring start request")
            return
        self._task = asyncio.create_task(self._refresh_loop())
        logger.info(f"Feed refresher started, interval {self.interval_sec}s")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Feed refresher stopped")

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_sec)
            try:
                await asyncio.to_thread(self.store.refresh)
            except IngestError as e:
                logger.warning(f"Scheduled feed refresh failed: {e}")
            except Exception as e:
                logger.error(f"Unexpected error while refreshing feed: {e}", exc_info=True)
