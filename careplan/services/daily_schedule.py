"""
Daily schedule summary: everything the dashboard needs for one day.
"""

from collections.abc import Iterable
from datetime import date, datetime

from pydantic import BaseModel, Field

from careplan.domain.models import DailyCareInstance, InstanceStatus, local_now, to_local_naive
from careplan.services.time_windows import WindowGroup, build_window_groups


class DailyStats(BaseModel):
    total: int = 0
    pending: int = 0
    completed: int = 0
    skipped: int = 0
    partial: int = 0
    missed: int = 0

    @property
    def resolved(self) -> int:
        return self.total - self.pending


class DailySchedule(BaseModel):
    date: date
    instances: list[DailyCareInstance] = Field(default_factory=list)
    windows: list[WindowGroup] = Field(default_factory=list)
    stats: DailyStats = Field(default_factory=DailyStats)
    next_pending: DailyCareInstance | None = None
    all_complete: bool = False


def compute_stats(instances: Iterable[DailyCareInstance]) -> DailyStats:
    counts = {status: 0 for status in InstanceStatus}
    total = 0
    for instance in instances:
        counts[instance.status] += 1
        total += 1
    return DailyStats(
        total=total,
        pending=counts[InstanceStatus.PENDING],
        completed=counts[InstanceStatus.COMPLETED],
        skipped=counts[InstanceStatus.SKIPPED],
        partial=counts[InstanceStatus.PARTIAL],
        missed=counts[InstanceStatus.MISSED],
    )


def find_next_pending(
    instances: list[DailyCareInstance], now: datetime
) -> DailyCareInstance | None:
    """First pending instance at or after ``now``, else the earliest pending one."""
    pending = [i for i in instances if i.is_pending]
    upcoming = next((i for i in pending if i.scheduled_time >= now), None)
    return upcoming or (pending[0] if pending else None)


def build_daily_schedule(
    day: date, instances: Iterable[DailyCareInstance], now: datetime | None = None
) -> DailySchedule:
    current = to_local_naive(now) if now is not None else local_now()
    ordered = sorted(instances, key=lambda i: i.scheduled_time)
    stats = compute_stats(ordered)
    return DailySchedule(
        date=day,
        instances=ordered,
        windows=build_window_groups(ordered, current),
        stats=stats,
        next_pending=find_next_pending(ordered, current),
        all_complete=stats.total > 0 and stats.pending == 0,
    )
