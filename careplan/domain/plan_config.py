"""
Care plan configuration: which buckets of care are tracked, and when.

The configuration is what the caregiver edits. The schedule expander reads it
and derives concrete care plan items from it; nothing here is dated.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from careplan.domain.models import (
    ItemPriority,
    ScheduleFrequency,
    TimeOfDay,
    new_id,
    utc_now,
)


class BucketType(str, Enum):
    """Independently enable-able categories of care tracking."""

    MEDS = "meds"
    VITALS = "vitals"
    MEALS = "meals"
    WATER = "water"
    SLEEP = "sleep"
    ACTIVITY = "activity"
    MOOD = "mood"
    WELLNESS = "wellness"
    APPOINTMENTS = "appointments"


class BucketConfig(BaseModel):
    """Base configuration shared by every bucket."""

    enabled: bool = False
    priority: ItemPriority = ItemPriority.RECOMMENDED
    times_of_day: list[TimeOfDay] = Field(default_factory=lambda: [TimeOfDay.MORNING])
    custom_times: list[str] = Field(default_factory=list, description="HH:MM entries")
    frequency: ScheduleFrequency = ScheduleFrequency.DAILY
    days_of_week: list[int] = Field(default_factory=list)
    notifications_enabled: bool = False
    notification_lead_minutes: int = Field(default=0, ge=0, le=120)
    notes: str | None = None


class MedicationPlanItem(BaseModel):
    """A medication entry in the meds bucket. ``id`` survives renames."""

    id: str = Field(default_factory=new_id)
    name: str = Field(min_length=1)
    dosage: str = ""
    instructions: str | None = None
    times_of_day: list[TimeOfDay] = Field(default_factory=lambda: [TimeOfDay.MORNING])
    custom_times: list[str] = Field(default_factory=list)
    active: bool = True
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class MedsBucketConfig(BucketConfig):
    priority: ItemPriority = ItemPriority.REQUIRED
    medications: list[MedicationPlanItem] = Field(default_factory=list)


class VitalsBucketConfig(BucketConfig):
    vital_types: list[str] = Field(default_factory=lambda: ["bp", "hr"])


class CarePlanConfig(BaseModel):
    """Per-patient, versioned bucket configuration."""

    patient_id: str
    version: int = Field(default=0, ge=0)

    meds: MedsBucketConfig = Field(default_factory=MedsBucketConfig)
    vitals: VitalsBucketConfig = Field(default_factory=VitalsBucketConfig)
    meals: BucketConfig = Field(
        default_factory=lambda: BucketConfig(
            times_of_day=[TimeOfDay.MORNING, TimeOfDay.MIDDAY, TimeOfDay.EVENING]
        )
    )
    water: BucketConfig = Field(default_factory=BucketConfig)
    sleep: BucketConfig = Field(
        default_factory=lambda: BucketConfig(
            priority=ItemPriority.OPTIONAL, times_of_day=[TimeOfDay.MORNING]
        )
    )
    activity: BucketConfig = Field(
        default_factory=lambda: BucketConfig(
            priority=ItemPriority.OPTIONAL, times_of_day=[TimeOfDay.MIDDAY]
        )
    )
    mood: BucketConfig = Field(default_factory=BucketConfig)
    wellness: BucketConfig = Field(
        default_factory=lambda: BucketConfig(
            times_of_day=[TimeOfDay.MORNING, TimeOfDay.MIDDAY, TimeOfDay.EVENING]
        )
    )
    appointments: BucketConfig = Field(default_factory=BucketConfig)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def bucket(self, bucket_type: BucketType) -> BucketConfig:
        return getattr(self, bucket_type.value)

    def enabled_buckets(self) -> list[BucketType]:
        return [b for b in BucketType if self.bucket(b).enabled]

    def has_any_enabled_bucket(self) -> bool:
        return bool(self.enabled_buckets())
