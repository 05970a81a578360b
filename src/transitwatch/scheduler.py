"""Per-session background watches that poll forecasts until it is time to leave."""

import asyncio
import inspect
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Hashable, List, Optional

from . import config
from .forecast_client import ForecastClient, ForecastError
from .models import Notification, NotifyPath, WatchRequest, WatchState
from .reconcile import Decision, decide
from .timetable import NotFoundError, TimetableQuery

logger = logging.getLogger(__name__)

NotifyCallback = Callable[[Notification], Any]

_PATHS = {
    Decision.NOTIFY_LIVE: NotifyPath.LIVE,
    Decision.NOTIFY_SCHEDULE: NotifyPath.SCHEDULE_FALLBACK,
}


class _Watch:
    """Bookkeeping for one running watch."""

    def __init__(self, session_id: Hashable, request: WatchRequest):
        self.session_id = session_id
        self.request = request
        self.state = WatchState.IDLE
        self.task: Optional["asyncio.Task[None]"] = None


class WatchScheduler:
    """
    Runs at most one watch per session.

    Each watch is an asyncio task that computes the remaining timetable for its
    stop once, then polls the live forecast every ``poll_interval`` seconds and
    feeds both into ``reconcile.decide``. When the decision fires, the watch
    calls ``on_notify`` exactly once and ends.

    The session table is the only state shared between handlers and tasks; it is
    guarded by a lock so that replacing a session's watch (cancel the old task,
    wait for it to exit, start the new one) is atomic. A cancelled watch never
    notifies.

    Usage:
        scheduler = WatchScheduler(timetable, forecast_client, on_notify=send)
        await scheduler.start_watch(chat_id, WatchRequest("1234", "5678", 0, 5))
        await scheduler.cancel_watch(chat_id)
    """

    def __init__(
        self,
        timetable: TimetableQuery,
        forecast_client: ForecastClient,
        on_notify: NotifyCallback,
        poll_interval: float = config.POLL_INTERVAL_SEC,
        clock: Callable[[], float] = time.time,
        max_remembered_sessions: int = 1000,
    ):
        """
        Initialize the scheduler.

        Args:
            timetable: Source of scheduled arrivals.
            forecast_client: Source of live waiting times.
            on_notify: Called with the Notification of a fired watch. May be a
                plain function or a coroutine function.
            poll_interval: Seconds between two forecast polls.
            clock: Returns the current Unix time.
            max_remembered_sessions: How many ended watches keep reporting
                their final state. The oldest are forgotten first.
        """
        self._timetable = timetable
        self._forecast_client = forecast_client
        self._on_notify = on_notify
        self.poll_interval = poll_interval
        self._clock = clock

        self._watches: Dict[Hashable, _Watch] = {}
        self._last_states: Dict[Hashable, WatchState] = {}  # Ended watches only, oldest first
        self._max_remembered_sessions = max_remembered_sessions
        self._lock = asyncio.Lock()

    async def start_watch(self, session_id: Hashable, request: WatchRequest) -> None:
        """
        Start watching for a session, replacing any watch it already has.

        The previous watch is cancelled and has fully stopped before the new one
        starts polling.
        """
        if isinstance(request.leeway_minutes, bool) or not isinstance(request.leeway_minutes, int):
            raise ValueError(f"leeway must be whole minutes, got {request.leeway_minutes!r}")
        if request.leeway_minutes < 0:
            raise ValueError(f"leeway must not be negative, got {request.leeway_minutes}")

        async with self._lock:
            previous = self._watches.pop(session_id, None)
            if previous is not None:
                logger.info(f"Session {session_id}: replacing running watch")
                await self._cancel(previous)

            watch = _Watch(session_id, request)
            watch.state = WatchState.WATCHING
            watch.task = asyncio.create_task(self._run(watch), name=f"watch-{session_id}")
            self._watches[session_id] = watch
            self._last_states.pop(session_id, None)

        logger.info(
            f"Session {session_id}: watching route {request.route_id} at stop {request.stop_id}, "
            f"direction {request.direction}, leeway {request.leeway_minutes} min"
        )

    async def cancel_watch(self, session_id: Hashable) -> bool:
        """
        Cancel a session's watch without notifying.

        Returns:
            True if a running watch was cancelled.
        """
        async with self._lock:
            watch = self._watches.pop(session_id, None)
            if watch is None:
                return False
            await self._cancel(watch)
        logger.info(f"Session {session_id}: watch cancelled")
        return True

    def state(self, session_id: Hashable) -> WatchState:
        """State of the session's current or most recent watch."""
        watch = self._watches.get(session_id)
        if watch is not None:
            return watch.state
        return self._last_states.get(session_id, WatchState.IDLE)

    def active_sessions(self) -> List[Hashable]:
        return list(self._watches)

    async def shutdown(self) -> None:
        """Cancel every running watch."""
        async with self._lock:
            watches = list(self._watches.values())
            self._watches.clear()
            for watch in watches:
                await self._cancel(watch)
        if watches:
            logger.info(f"Cancelled {len(watches)} watches on shutdown")

    async def _cancel(self, watch: _Watch) -> None:
        """Cancel a watch task and wait until it is gone. Caller holds the lock."""
        watch.state = WatchState.CANCELLED
        self._remember(watch.session_id, WatchState.CANCELLED)
        if watch.task is not None and not watch.task.done():
            watch.task.cancel()
            await asyncio.wait({watch.task})

    async def _run(self, watch: _Watch) -> None:
        """Body of a watch task: Watching until Fired, or until cancelled."""
        request = watch.request
        try:
            timetable = await self._load_timetable(watch)
            while watch.state is WatchState.WATCHING:
                decision = await self._tick(watch, timetable)
                if decision.fires:
                    await self._fire(watch, decision)
                else:
                    await asyncio.sleep(self.poll_interval)
        except asyncio.CancelledError:
            logger.debug(f"Session {watch.session_id}: watch task for route {request.route_id} stopped")
            raise
        except Exception as e:
            # Never let a watch take the process down
            logger.error(f"Session {watch.session_id}: watch failed: {e}", exc_info=True)
        finally:
            if self._watches.get(watch.session_id) is watch:
                # Ended without firing or being cancelled
                del self._watches[watch.session_id]
                watch.state = WatchState.CANCELLED
                self._remember(watch.session_id, WatchState.CANCELLED)

    def _remember(self, session_id: Hashable, state: WatchState) -> None:
        """Record the final state of an ended watch."""
        self._last_states.pop(session_id, None)
        self._last_states[session_id] = state
        while len(self._last_states) > self._max_remembered_sessions:
            del self._last_states[next(iter(self._last_states))]

    async def _load_timetable(self, watch: _Watch) -> List[int]:
        request = watch.request
        try:
            timetable = await asyncio.to_thread(
                self._timetable.arrival_timetable,
                request.route_id,
                request.direction,
                request.stop_id,
                self._clock(),
            )
        except NotFoundError as e:
            logger.warning(f"Session {watch.session_id}: no timetable, relying on live data only: {e}")
            return []
        except Exception as e:
            logger.error(f"Session {watch.session_id}: timetable lookup failed: {e}", exc_info=True)
            return []
        logger.debug(f"Session {watch.session_id}: {len(timetable)} scheduled arrivals left today")
        return timetable

    async def _tick(self, watch: _Watch, timetable: List[int]) -> Decision:
        """One poll. Failures count as 'no decision this tick'."""
        request = watch.request
        try:
            try:
                waiting_times = await asyncio.to_thread(
                    self._forecast_client.get_waiting_times, request.route_id, request.stop_id
                )
            except ForecastError as e:
                logger.warning(f"Session {watch.session_id}: no live data this tick: {e}")
                waiting_times = []

            logger.debug(
                f"Session {watch.session_id}: waiting times for route {request.route_id} "
                f"at stop {request.stop_id} are {waiting_times}"
            )
            return decide(waiting_times, timetable, request.leeway_minutes, self._clock())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Session {watch.session_id}: poll failed: {e}", exc_info=True)
            return Decision.KEEP_WAITING

    async def _fire(self, watch: _Watch, decision: Decision) -> None:
        async with self._lock:
            if self._watches.get(watch.session_id) is not watch:
                # Superseded between the decision and now
                watch.state = WatchState.CANCELLED
                return
            del self._watches[watch.session_id]
            watch.state = WatchState.FIRED
            self._remember(watch.session_id, WatchState.FIRED)

        path = _PATHS[decision]
        logger.info(f"Session {watch.session_id}: time to leave ({path.value})")
        notification = Notification(
            session_id=watch.session_id,
            request=watch.request,
            path=path,
            fired_at=datetime.fromtimestamp(self._clock()),
        )
        try:
            result = self._on_notify(notification)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Session {watch.session_id}: notification delivery failed: {e}", exc_info=True)
