"""
Schedule expansion: configuration -> care plan items -> dated instances.

``ensure_daily_instances`` is the entry point the application calls on launch,
on focus and on date change. It is idempotent: once a day is materialized for
a given configuration, further calls read and write nothing new.
"""

from collections.abc import Callable
from datetime import date, datetime, timedelta

import structlog
from pydantic import BaseModel, Field

from careplan.adapters.key_lock import KeyLock
from careplan.config import MoodPolicy
from careplan.domain.models import (
    TIME_OF_DAY_DEFAULTS,
    CarePlan,
    CarePlanItem,
    CarePlanStatus,
    DailyCareInstance,
    InstanceStatus,
    ItemPriority,
    ItemSchedule,
    ItemType,
    ScheduleFrequency,
    TimeOfDay,
    TimeSlot,
    local_now,
    parse_hhmm,
    to_local_naive,
)
from careplan.domain.plan_config import BucketConfig, BucketType, CarePlanConfig
from careplan.services.config_repo import CarePlanConfigRepository
from careplan.services.instance_store import InstanceStore
from careplan.services.plan_repo import CarePlanRepository
from careplan.services.time_windows import get_time_window

logger = structlog.get_logger(__name__)

MEAL_NAMES: dict[TimeOfDay, str] = {
    TimeOfDay.MORNING: "Breakfast",
    TimeOfDay.MIDDAY: "Lunch",
    TimeOfDay.EVENING: "Dinner",
    TimeOfDay.NIGHT: "Snack",
    TimeOfDay.CUSTOM: "Snack",
}

# Single-item buckets: bucket -> (item type, item name, emoji)
SIMPLE_BUCKETS: dict[BucketType, tuple[ItemType, str, str]] = {
    BucketType.VITALS: (ItemType.VITALS, "Check vitals", "🩺"),
    BucketType.WATER: (ItemType.HYDRATION, "Drink water", "💧"),
    BucketType.SLEEP: (ItemType.SLEEP, "Sleep log", "😴"),
    BucketType.ACTIVITY: (ItemType.ACTIVITY, "Activity", "🚶"),
    BucketType.MOOD: (ItemType.MOOD, "Mood check-in", "🙂"),
}


def day_lock_key(patient_id: str, day: date) -> str:
    """Lock key shared by everything that reads-then-writes one patient's day."""
    return f"day:{patient_id}:{day.isoformat()}"


def plan_lock_key(patient_id: str) -> str:
    return f"plan:{patient_id}"


class DesiredItem(BaseModel):
    """What the configuration says a managed care plan item should look like."""

    bucket: BucketType
    type: ItemType
    external_id: str
    name: str
    priority: ItemPriority
    schedule: ItemSchedule = Field(default_factory=ItemSchedule)
    instructions: str | None = None
    dosage: str | None = None
    emoji: str | None = None


def build_slots(times_of_day: list[TimeOfDay], custom_times: list[str]) -> list[TimeSlot]:
    """
    Turn configured times into slots with stable ids.

    Named times use their label as id; custom ``HH:MM`` entries use
    ``custom-HHMM``. Invalid custom entries are skipped.
    """
    slots: dict[str, TimeSlot] = {}
    for tod in times_of_day:
        if tod is TimeOfDay.CUSTOM:
            continue
        slots.setdefault(tod.value, TimeSlot(id=tod.value, label=tod, at=TIME_OF_DAY_DEFAULTS[tod]))

    for raw in custom_times:
        parsed = parse_hhmm(raw)
        if parsed is None:
            logger.warning("invalid_custom_time_skipped", value=raw)
            continue
        at = parsed.strftime("%H:%M")
        slot_id = f"custom-{parsed.strftime('%H%M')}"
        slots.setdefault(slot_id, TimeSlot(id=slot_id, label=TimeOfDay.CUSTOM, at=at))

    return sorted(slots.values(), key=lambda s: s.at)


def _schedule_for(bucket: BucketConfig, slots: list[TimeSlot], anchor: date) -> ItemSchedule:
    return ItemSchedule(
        frequency=bucket.frequency,
        slots=slots,
        days_of_week=bucket.days_of_week,
        anchor_date=anchor if bucket.frequency is ScheduleFrequency.EVERY_OTHER_DAY else None,
    )


def desired_items(
    config: CarePlanConfig, anchor: date, mood_policy: MoodPolicy = "generate"
) -> list[DesiredItem]:
    """Expand every enabled bucket into the items it should own."""
    desired: list[DesiredItem] = []

    meds = config.meds
    if meds.enabled:
        for med in meds.medications:
            if not med.active:
                continue
            slots = build_slots(med.times_of_day, med.custom_times)
            if not slots:
                continue
            desired.append(
                DesiredItem(
                    bucket=BucketType.MEDS,
                    type=ItemType.MEDICATION,
                    external_id=med.id,
                    name=med.name,
                    priority=meds.priority,
                    schedule=_schedule_for(meds, slots, anchor),
                    instructions=med.instructions,
                    dosage=med.dosage or None,
                    emoji="💊",
                )
            )

    meals = config.meals
    if meals.enabled:
        # one named item per meal so each can be completed on its own
        for slot in build_slots(meals.times_of_day, meals.custom_times):
            desired.append(
                DesiredItem(
                    bucket=BucketType.MEALS,
                    type=ItemType.NUTRITION,
                    external_id=f"meals:{slot.id}",
                    name=MEAL_NAMES[slot.label],
                    priority=meals.priority,
                    schedule=_schedule_for(meals, [slot], anchor),
                    instructions=meals.notes,
                    emoji="🍽️",
                )
            )

    for bucket_type, (item_type, name, emoji) in SIMPLE_BUCKETS.items():
        bucket = config.bucket(bucket_type)
        if not bucket.enabled:
            continue
        if bucket_type is BucketType.MOOD and mood_policy == "suppress":
            continue
        slots = build_slots(bucket.times_of_day, bucket.custom_times)
        if not slots:
            logger.warning("bucket_without_slots", bucket=bucket_type.value)
            continue
        desired.append(
            DesiredItem(
                bucket=bucket_type,
                type=item_type,
                external_id=bucket_type.value,
                name=name,
                priority=bucket.priority,
                schedule=_schedule_for(bucket, slots, anchor),
                instructions=bucket.notes,
                emoji=emoji,
            )
        )

    return desired


def _apply_desired(item: CarePlanItem, want: DesiredItem) -> CarePlanItem:
    return item.model_copy(
        update={
            "name": want.name,
            "priority": want.priority,
            "schedule": want.schedule,
            "instructions": want.instructions,
            "dosage": want.dosage,
            "emoji": want.emoji,
            "bucket": want.bucket.value,
            "external_id": want.external_id,
            "active": True,
        }
    )


def _same_content(a: CarePlanItem, b: CarePlanItem) -> bool:
    fields = (
        "name", "priority", "schedule", "instructions", "dosage",
        "emoji", "bucket", "external_id", "active",
    )
    return all(getattr(a, f) == getattr(b, f) for f in fields)


def reconcile_items(
    care_plan_id: str,
    existing: list[CarePlanItem],
    desired: list[DesiredItem],
    mood_policy: MoodPolicy = "generate",
) -> list[CarePlanItem]:
    """
    Compute the item writes that bring ``existing`` in line with ``desired``.

    Items are matched by (type, external_id), then by (type, name) among
    unmanaged items, which are adopted. Matches are updated and reactivated in
    place. Managed items nobody wants any more are deactivated. Under the
    ``suppress`` mood policy every active mood item is deactivated, managed or
    not. Returns only items that actually change.
    """
    claimed: set[str] = set()
    changes: list[CarePlanItem] = []

    for want in desired:
        match = next(
            (
                i for i in existing
                if i.id not in claimed and i.type is want.type and i.external_id == want.external_id
            ),
            None,
        )
        if match is None:
            match = next(
                (
                    i for i in existing
                    if i.id not in claimed
                    and i.bucket is None
                    and i.type is want.type
                    and i.name.casefold() == want.name.casefold()
                ),
                None,
            )

        if match is None:
            changes.append(
                _apply_desired(
                    CarePlanItem(care_plan_id=care_plan_id, type=want.type, name=want.name), want
                )
            )
            continue

        claimed.add(match.id)
        updated = _apply_desired(match, want)
        if not _same_content(updated, match):
            changes.append(updated)

    suppress_mood = mood_policy == "suppress"
    for item in existing:
        if not item.active or item.id in claimed:
            continue
        if item.bucket is not None or (suppress_mood and item.type is ItemType.MOOD):
            changes.append(item.model_copy(update={"active": False}))

    return changes


class ScheduleExpander:
    """Materializes a patient's dated instances from the plan of record."""

    def __init__(
        self,
        config_repo: CarePlanConfigRepository,
        plan_repo: CarePlanRepository,
        instance_store: InstanceStore,
        locks: KeyLock,
        auto_mark_missed: bool = False,
        missed_grace_minutes: int = 120,
        mood_policy: MoodPolicy = "generate",
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self.config_repo = config_repo
        self.plan_repo = plan_repo
        self.instance_store = instance_store
        self.locks = locks
        self.auto_mark_missed = auto_mark_missed
        self.missed_grace = timedelta(minutes=missed_grace_minutes)
        self.mood_policy = mood_policy
        self.clock = clock
        self.logger = logger.bind(component="schedule_expander")

    async def ensure_daily_instances(
        self, patient_id: str, day: date, now: datetime | None = None
    ) -> list[DailyCareInstance]:
        """
        Make sure every due (item, slot) pair has exactly one instance on ``day``.

        Returns the day's complete instance list ordered by scheduled time.
        With neither a configuration nor a plan of record this is a no-op.
        """
        current = to_local_naive(now) if now is not None else self.clock()

        async with self.locks.hold(day_lock_key(patient_id, day)):
            # plan and items are shared by every date of the patient
            async with self.locks.hold(plan_lock_key(patient_id)):
                config = await self.config_repo.get_care_plan_config(patient_id)
                plan = await self._get_or_create_plan(patient_id, day, config)
                if plan is None:
                    return []
                if plan.status is not CarePlanStatus.ACTIVE:
                    return await self.instance_store.list_daily_instances(patient_id, day)

                if config is not None:
                    await self._sync_items(plan, config)
                items = await self.plan_repo.list_care_plan_items(plan.id, active_only=True)

            existing = await self.instance_store.list_daily_instances(patient_id, day)
            created = self._new_instances(plan, items, existing, patient_id, day, config)
            if created:
                existing = await self.instance_store.upsert_daily_instances(
                    patient_id, day, created
                )
                self.logger.info(
                    "instances_generated",
                    patient_id=patient_id,
                    date=day.isoformat(),
                    created=len(created),
                    total=len(existing),
                )

            if self.auto_mark_missed:
                existing = await self._mark_missed(patient_id, day, existing, current)

        return sorted(existing, key=lambda i: i.scheduled_time)

    async def ensure_instances_for_range(
        self, patient_id: str, start: date, end: date
    ) -> dict[date, list[DailyCareInstance]]:
        """Expand every day in ``[start, end]``, e.g. for a calendar view."""
        result: dict[date, list[DailyCareInstance]] = {}
        day = start
        while day <= end:
            result[day] = await self.ensure_daily_instances(patient_id, day)
            day += timedelta(days=1)
        return result

    async def regenerate_today(self, patient_id: str) -> list[DailyCareInstance]:
        now = self.clock()
        return await self.ensure_daily_instances(patient_id, now.date(), now=now)

    async def _get_or_create_plan(
        self, patient_id: str, day: date, config: CarePlanConfig | None
    ) -> CarePlan | None:
        plan = await self.plan_repo.get_care_plan(patient_id)
        if plan is None and config is not None:
            plan = await self.plan_repo.create_care_plan(patient_id, start_date=day)
        return plan

    async def _sync_items(self, plan: CarePlan, config: CarePlanConfig) -> None:
        existing = await self.plan_repo.list_care_plan_items(plan.id)
        wanted = desired_items(config, anchor=plan.start_date, mood_policy=self.mood_policy)
        changes = reconcile_items(plan.id, existing, wanted, self.mood_policy)
        if not changes:
            return
        await self.plan_repo.upsert_care_plan_items(plan.id, changes)
        self.logger.info(
            "care_plan_items_synced",
            care_plan_id=plan.id,
            changed=len(changes),
            deactivated=sum(1 for c in changes if not c.active),
        )

    @staticmethod
    def _new_instances(
        plan: CarePlan,
        items: list[CarePlanItem],
        existing: list[DailyCareInstance],
        patient_id: str,
        day: date,
        config: CarePlanConfig | None,
    ) -> list[DailyCareInstance]:
        present = {(i.care_plan_item_id, i.slot_id) for i in existing}
        created: list[DailyCareInstance] = []
        for item in items:
            if not item.schedule.occurs_on(day):
                continue
            for slot in item.schedule.slots:
                if (item.id, slot.id) in present:
                    continue
                scheduled = slot.on(day)
                created.append(
                    DailyCareInstance(
                        care_plan_id=plan.id,
                        care_plan_item_id=item.id,
                        patient_id=patient_id,
                        date=day,
                        scheduled_time=scheduled,
                        slot_id=slot.id,
                        window_label=get_time_window(scheduled),
                        generated_from_version=config.version if config else plan.version,
                        item_name=item.name,
                        item_type=item.type,
                        priority=item.priority,
                        instructions=item.instructions,
                        dosage=item.dosage,
                    )
                )
                present.add((item.id, slot.id))
        return created

    async def _mark_missed(
        self,
        patient_id: str,
        day: date,
        instances: list[DailyCareInstance],
        now: datetime,
    ) -> list[DailyCareInstance]:
        result: list[DailyCareInstance] = []
        for instance in instances:
            if instance.is_pending and instance.log_id is None and (
                now > instance.scheduled_time + self.missed_grace
            ):
                updated = await self.instance_store.update_daily_instance_status(
                    patient_id, day, instance.id, InstanceStatus.MISSED
                )
                result.append(updated or instance)
            else:
                result.append(instance)
        return result
