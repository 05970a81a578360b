"""Decides when to leave, from live predictions with the timetable as fallback."""

from enum import Enum
from typing import Iterable, Sequence

# A vehicle is due once the time left before leaving drops under this many seconds
LEAVE_WINDOW_SEC = 60


class Decision(Enum):
    KEEP_WAITING = "keep-waiting"
    NOTIFY_LIVE = "notify-live"
    NOTIFY_SCHEDULE = "notify-schedule"

    @property
    def fires(self) -> bool:
        return self is not Decision.KEEP_WAITING


def decide(
    waiting_times: Iterable[int],
    timetable: Sequence[int],
    leeway_minutes: int,
    now: float,
) -> Decision:
    """
    Decide, for one polling tick, whether the user should leave now.

    Live predictions that still leave time to walk to the stop take precedence:
    when there is at least one, the timetable is not consulted at all, even if
    none of the predictions is due yet. Only when no usable live prediction
    exists does the schedule decide.

    Args:
        waiting_times: Seconds until each live predicted arrival.
        timetable: Scheduled arrival Unix timestamps.
        leeway_minutes: Walking time to the stop.
        now: Current Unix time.

    Returns:
        The decision for this tick.
    """
    if isinstance(leeway_minutes, bool) or not isinstance(leeway_minutes, int) or leeway_minutes < 0:
        raise ValueError(f"leeway must be a non-negative number of minutes, got {leeway_minutes!r}")
    leeway = leeway_minutes * 60

    time_left = [waiting - leeway for waiting in waiting_times if waiting - leeway > 0]
    if time_left:
        if any(left < LEAVE_WINDOW_SEC for left in time_left):
            return Decision.NOTIFY_LIVE
        return Decision.KEEP_WAITING

    leave_at = now + leeway
    if any(0 < arrival - leave_at < LEAVE_WINDOW_SEC for arrival in timetable):
        return Decision.NOTIFY_SCHEDULE
    return Decision.KEEP_WAITING
