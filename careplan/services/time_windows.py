"""
Day-part classification for the dashboard.

Four fixed windows: morning [5, 12), afternoon [12, 17), evening [17, 21) and
night [21, 24) + [0, 5). Anything that cannot be parsed lands in morning so
every item always has a place on screen.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Literal

import structlog
from pydantic import BaseModel, Field

from careplan.domain.models import (
    DailyCareInstance,
    TimeWindowLabel,
    local_now,
    parse_hhmm,
    to_local_naive,
)

logger = structlog.get_logger(__name__)

# label -> (start hour, end hour, display name); night wraps past midnight
TIME_WINDOW_HOURS: dict[TimeWindowLabel, tuple[int, int, str]] = {
    TimeWindowLabel.MORNING: (5, 12, "Morning"),
    TimeWindowLabel.AFTERNOON: (12, 17, "Afternoon"),
    TimeWindowLabel.EVENING: (17, 21, "Evening"),
    TimeWindowLabel.NIGHT: (21, 5, "Night"),
}

WindowStatus = Literal["upcoming", "available", "completed"]


def window_for_hour(hour: int) -> TimeWindowLabel:
    if 5 <= hour < 12:
        return TimeWindowLabel.MORNING
    if 12 <= hour < 17:
        return TimeWindowLabel.AFTERNOON
    if 17 <= hour < 21:
        return TimeWindowLabel.EVENING
    return TimeWindowLabel.NIGHT


def parse_clock_value(value: datetime | str | None) -> datetime | None:
    """Parse a datetime, ISO-8601 string or ``HH:MM`` string into naive local time."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_local_naive(value)

    clock = parse_hhmm(value)
    if clock is not None:
        return datetime.combine(local_now().date(), clock)
    try:
        return to_local_naive(datetime.fromisoformat(value.strip()))
    except ValueError:
        return None


def get_time_window(value: datetime | str | None) -> TimeWindowLabel:
    parsed = parse_clock_value(value)
    if parsed is None:
        logger.debug("unparsable_time_defaulted", value=str(value))
        return TimeWindowLabel.MORNING
    return window_for_hour(parsed.hour)


def get_current_time_window(now: datetime | None = None) -> TimeWindowLabel:
    return window_for_hour(to_local_naive(now or local_now()).hour)


def _format_hour(hour: int) -> str:
    return f"{hour % 12 or 12}:00 {'PM' if hour >= 12 else 'AM'}"


def get_time_window_display_range(label: TimeWindowLabel) -> str:
    """Human range such as ``"5:00 AM - 12:00 PM"``."""
    start, end, _ = TIME_WINDOW_HOURS[label]
    return f"{_format_hour(start)} - {_format_hour(end)}"


def group_by_time_window(
    instances: Iterable[DailyCareInstance],
) -> dict[TimeWindowLabel, list[DailyCareInstance]]:
    """Bucket instances by window. Every label is present; each group is time-ordered."""
    groups: dict[TimeWindowLabel, list[DailyCareInstance]] = {
        label: [] for label in TimeWindowLabel
    }
    for instance in instances:
        groups[get_time_window(instance.scheduled_time)].append(instance)
    for members in groups.values():
        members.sort(key=lambda i: i.scheduled_time)
    return groups


class WindowGroup(BaseModel):
    """One day-part as shown on the dashboard."""

    label: TimeWindowLabel
    display_name: str
    display_range: str
    instances: list[DailyCareInstance] = Field(default_factory=list)
    completed: int = 0
    total: int = 0
    status: WindowStatus = "available"


def _window_status(
    label: TimeWindowLabel, members: list[DailyCareInstance], now: datetime
) -> WindowStatus:
    if members and all(not m.is_pending for m in members):
        return "completed"
    start, _, _ = TIME_WINDOW_HOURS[label]
    hour = now.hour
    if label is TimeWindowLabel.NIGHT:
        # night opens at 21:00; the early hours already belong to it
        return "upcoming" if 5 <= hour < start else "available"
    return "upcoming" if hour < start else "available"


def build_window_groups(
    instances: Iterable[DailyCareInstance], now: datetime | None = None
) -> list[WindowGroup]:
    """Non-empty window groups in day order with completion counts and status."""
    current = to_local_naive(now or local_now())
    groups: list[WindowGroup] = []
    for label, members in group_by_time_window(instances).items():
        if not members:
            continue
        _, _, display_name = TIME_WINDOW_HOURS[label]
        groups.append(
            WindowGroup(
                label=label,
                display_name=display_name,
                display_range=get_time_window_display_range(label),
                instances=members,
                completed=sum(1 for m in members if not m.is_pending),
                total=len(members),
                status=_window_status(label, members, current),
            )
        )
    return groups
