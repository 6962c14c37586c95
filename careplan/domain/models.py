"""
Domain models for care plan scheduling.

These models represent the core business concepts and are framework-agnostic.
They use Pydantic for validation and serialize straight into the key-value
store as JSON.

Time convention: schedule times (``scheduled_time``, ``TimeSlot.at``) are naive
local wall-clock values, because a dose "at 08:00" means 08:00 wherever the
patient is. Audit timestamps (``created_at``, ``updated_at``) are UTC.
"""

import datetime as dt
import re
import uuid
from datetime import UTC, date, datetime, time
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def new_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(UTC)


def local_now() -> datetime:
    """Current naive local wall-clock time, comparable with ``scheduled_time``."""
    return datetime.now()


def to_local_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive local time; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def parse_hhmm(value: str) -> time | None:
    """Parse an ``HH:MM`` string, returning None when it is not a valid clock time."""
    match = HHMM_PATTERN.match(value.strip()) if value else None
    if not match:
        return None
    return time(int(match.group(1)), int(match.group(2)))


class ItemType(str, Enum):
    """Categories of schedulable care tasks."""

    MEDICATION = "medication"
    NUTRITION = "nutrition"
    VITALS = "vitals"
    MOOD = "mood"
    HYDRATION = "hydration"
    SLEEP = "sleep"
    ACTIVITY = "activity"
    WELLNESS = "wellness"
    APPOINTMENT = "appointment"
    CUSTOM = "custom"


class ItemPriority(str, Enum):
    REQUIRED = "required"
    RECOMMENDED = "recommended"
    OPTIONAL = "optional"


class InstanceStatus(str, Enum):
    """Lifecycle of a dated occurrence. Only PENDING is non-terminal."""

    PENDING = "pending"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    PARTIAL = "partial"
    MISSED = "missed"

    @property
    def is_terminal(self) -> bool:
        return self is not InstanceStatus.PENDING


class LogOutcome(str, Enum):
    TAKEN = "taken"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    PARTIAL = "partial"
    MISSED = "missed"


# Fixed outcome -> status table used by the completion engine.
OUTCOME_STATUS: dict[LogOutcome, InstanceStatus] = {
    LogOutcome.TAKEN: InstanceStatus.COMPLETED,
    LogOutcome.COMPLETED: InstanceStatus.COMPLETED,
    LogOutcome.SKIPPED: InstanceStatus.SKIPPED,
    LogOutcome.PARTIAL: InstanceStatus.PARTIAL,
    LogOutcome.MISSED: InstanceStatus.MISSED,
}


class LogSource(str, Enum):
    """Where a caregiving action was recorded from."""

    RECORD = "record"
    JOURNAL = "journal"
    NOW = "now"
    NOTIFICATION = "notification"
    WIDGET = "widget"
    AUTO = "auto"


class TimeWindowLabel(str, Enum):
    """Day-parts used to group the dashboard."""

    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"


class TimeOfDay(str, Enum):
    """Time-of-day choices offered by the care plan configuration."""

    MORNING = "morning"
    MIDDAY = "midday"
    EVENING = "evening"
    NIGHT = "night"
    CUSTOM = "custom"


TIME_OF_DAY_DEFAULTS: dict[TimeOfDay, str] = {
    TimeOfDay.MORNING: "08:00",
    TimeOfDay.MIDDAY: "12:00",
    TimeOfDay.EVENING: "18:00",
    TimeOfDay.NIGHT: "21:00",
}


class ScheduleFrequency(str, Enum):
    DAILY = "daily"
    EVERY_OTHER_DAY = "every_other_day"
    WEEKLY = "weekly"
    CUSTOM = "custom"


class CarePlanStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class TimeSlot(BaseModel):
    """One time-of-day slot of an item schedule. ``id`` is stable across retimes."""

    model_config = ConfigDict(frozen=True)

    id: str
    label: TimeOfDay
    at: str = Field(description="Local clock time, HH:MM")

    @field_validator("at")
    @classmethod
    def validate_at(cls, v: str) -> str:
        if parse_hhmm(v) is None:
            raise ValueError(f"Slot time {v!r} is not a valid HH:MM clock time")
        return v

    def on(self, day: date) -> datetime:
        """Return the naive local datetime this slot falls on for ``day``."""
        return datetime.combine(day, parse_hhmm(self.at))  # type: ignore[arg-type]


class ItemSchedule(BaseModel):
    """Recurrence of a care plan item: which days, and which slots on those days."""

    frequency: ScheduleFrequency = ScheduleFrequency.DAILY
    slots: list[TimeSlot] = Field(default_factory=list)
    days_of_week: list[int] = Field(
        default_factory=list, description="0=Monday .. 6=Sunday; empty means every day"
    )
    skip_dates: list[date] = Field(default_factory=list)
    anchor_date: date | None = Field(
        default=None, description="First day of an every-other-day rhythm"
    )

    @field_validator("days_of_week")
    @classmethod
    def validate_days(cls, v: list[int]) -> list[int]:
        if any(d < 0 or d > 6 for d in v):
            raise ValueError("days_of_week entries must be between 0 and 6")
        return sorted(set(v))

    def occurs_on(self, day: date) -> bool:
        """Check whether the schedule produces occurrences on ``day``."""
        if day in self.skip_dates:
            return False

        if self.frequency is ScheduleFrequency.DAILY:
            return True

        if self.frequency is ScheduleFrequency.EVERY_OTHER_DAY:
            if self.anchor_date is None:
                return True
            return (day - self.anchor_date).days % 2 == 0

        # weekly / custom: no day restriction means every day
        if not self.days_of_week:
            return True
        return day.weekday() in self.days_of_week


class CarePlan(BaseModel):
    """Plan of record for one patient. Items hang off its id."""

    id: str = Field(default_factory=new_id)
    patient_id: str
    timezone: str = "UTC"
    start_date: date
    end_date: date | None = None
    status: CarePlanStatus = CarePlanStatus.ACTIVE
    version: int = Field(default=1, ge=1)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class CarePlanItem(BaseModel):
    """
    A concrete, named, schedulable task belonging to one care plan.

    ``id`` is permanent. Disabling toggles ``active`` so dated instances and
    logs that point at the item never dangle.
    """

    id: str = Field(default_factory=new_id)
    care_plan_id: str
    type: ItemType
    name: str = Field(min_length=1)
    priority: ItemPriority = ItemPriority.RECOMMENDED
    active: bool = True
    schedule: ItemSchedule = Field(default_factory=ItemSchedule)

    external_id: str | None = Field(
        default=None, description="Stable correlation id, e.g. the medication id"
    )
    bucket: str | None = Field(
        default=None, description="Configuration bucket managing this item; None if manual"
    )

    instructions: str | None = None
    dosage: str | None = None
    emoji: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class DailyCareInstance(BaseModel):
    """One dated occurrence of a care plan item."""

    id: str = Field(default_factory=new_id)
    care_plan_id: str
    care_plan_item_id: str
    patient_id: str
    date: dt.date
    scheduled_time: datetime
    slot_id: str
    window_label: TimeWindowLabel
    status: InstanceStatus = InstanceStatus.PENDING
    log_id: str | None = None
    generated_from_version: int | None = None

    # Denormalized for display
    item_name: str
    item_type: ItemType
    priority: ItemPriority = ItemPriority.RECOMMENDED
    instructions: str | None = None
    dosage: str | None = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_pending(self) -> bool:
        return self.status is InstanceStatus.PENDING


class LogEntry(BaseModel):
    """Immutable, append-only record of a caregiving action."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    patient_id: str
    care_plan_id: str | None = None
    care_plan_item_id: str | None = None
    daily_instance_id: str | None = None

    timestamp: datetime
    date: dt.date
    outcome: LogOutcome
    notes: str | None = None
    data: dict[str, Any] | None = None

    source: LogSource = LogSource.RECORD
    caregiver_name: str | None = None
    created_at: datetime = Field(default_factory=utc_now)


class CompletionOptions(BaseModel):
    """Optional context attached to a completion."""

    notes: str | None = None
    source: LogSource = LogSource.RECORD
    caregiver_name: str | None = None
    timestamp: datetime | None = None


class CompletionResult(BaseModel):
    instance: DailyCareInstance
    log: LogEntry
