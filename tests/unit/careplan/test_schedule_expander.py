"""
Schedule expansion from configuration to dated instances.

Covers:
- Idempotent expansion (same ids, no further writes)
- Reactivation without duplicate items
- Medication identity across renames
- History preserved when buckets are disabled
- Overlapping calls for the same day
- Mood policy, custom times, weekly schedules, auto-missed marking
"""

import asyncio
from datetime import date, datetime, timedelta

import pytest

from careplan.adapters.kv_store import InMemoryKeyValueStore
from careplan.config import AppConfig, SchedulerConfig
from careplan.domain.models import (
    CarePlanItem,
    InstanceStatus,
    ItemType,
    LogOutcome,
    ScheduleFrequency,
    TimeOfDay,
)
from careplan.domain.plan_config import BucketType, CarePlanConfig, MedicationPlanItem
from careplan.services.care_service import CareService
from careplan.services.schedule_expander import (
    build_slots,
    desired_items,
    reconcile_items,
)

DAY = date(2025, 6, 15)  # a Sunday
PATIENT = "default"


class CountingStore(InMemoryKeyValueStore):
    def __init__(self) -> None:
        super().__init__()
        self.writes = 0

    async def set(self, key: str, value: str) -> None:
        self.writes += 1
        await super().set(key, value)


async def enable_vitals_and_meals(service: CareService) -> None:
    await service.config_repo.set_bucket_enabled(PATIENT, BucketType.VITALS, True)
    await service.config_repo.set_bucket_enabled(PATIENT, BucketType.MEALS, True)


async def items_of(service: CareService) -> list[CarePlanItem]:
    plan = await service.plan_repo.get_care_plan(PATIENT)
    assert plan is not None
    return await service.plan_repo.list_care_plan_items(plan.id)


class TestBuildSlots:
    def test_named_times_use_defaults(self) -> None:
        slots = build_slots([TimeOfDay.EVENING, TimeOfDay.MORNING], [])
        assert [(s.id, s.at) for s in slots] == [("morning", "08:00"), ("evening", "18:00")]

    def test_custom_times_get_stable_ids(self) -> None:
        slots = build_slots([TimeOfDay.CUSTOM], ["07:15", "not-a-time", "07:15"])
        assert [(s.id, s.at) for s in slots] == [("custom-0715", "07:15")]


class TestDesiredItems:
    def test_meals_expand_to_named_meals(self) -> None:
        config = CarePlanConfig(patient_id=PATIENT)
        config.meals.enabled = True
        names = [d.name for d in desired_items(config, anchor=DAY)]
        assert names == ["Breakfast", "Lunch", "Dinner"]

    def test_wellness_and_appointments_produce_nothing(self) -> None:
        config = CarePlanConfig(patient_id=PATIENT)
        config.wellness.enabled = True
        config.appointments.enabled = True
        assert desired_items(config, anchor=DAY) == []

    def test_mood_suppressed_by_policy(self) -> None:
        config = CarePlanConfig(patient_id=PATIENT)
        config.mood.enabled = True
        assert [d.type for d in desired_items(config, DAY, "generate")] == [ItemType.MOOD]
        assert desired_items(config, DAY, "suppress") == []


class TestReconcileItems:
    def test_unchanged_items_produce_no_writes(self) -> None:
        config = CarePlanConfig(patient_id=PATIENT)
        config.vitals.enabled = True
        wanted = desired_items(config, DAY)

        created = reconcile_items("plan", [], wanted)
        assert len(created) == 1
        assert reconcile_items("plan", created, wanted) == []

    def test_unwanted_managed_items_deactivated(self) -> None:
        config = CarePlanConfig(patient_id=PATIENT)
        config.vitals.enabled = True
        created = reconcile_items("plan", [], desired_items(config, DAY))

        changes = reconcile_items("plan", created, [])
        assert [(c.id, c.active) for c in changes] == [(created[0].id, False)]

    def test_manual_items_left_alone(self) -> None:
        manual = CarePlanItem(care_plan_id="plan", type=ItemType.CUSTOM, name="Stretch")
        assert reconcile_items("plan", [manual], []) == []

    def test_suppress_deactivates_manual_mood_items(self) -> None:
        mood = CarePlanItem(care_plan_id="plan", type=ItemType.MOOD, name="Mood check-in")
        stretch = CarePlanItem(care_plan_id="plan", type=ItemType.CUSTOM, name="Stretch")

        assert reconcile_items("plan", [mood, stretch], []) == []
        changes = reconcile_items("plan", [mood, stretch], [], mood_policy="suppress")
        assert [(c.id, c.active) for c in changes] == [(mood.id, False)]


class TestEnsureDailyInstances:
    async def test_nothing_configured_returns_empty(self, service: CareService) -> None:
        assert await service.expander.ensure_daily_instances(PATIENT, DAY) == []
        assert await service.plan_repo.get_care_plan(PATIENT) is None

    async def test_vitals_and_meals_make_four_pending_instances(
        self, service: CareService
    ) -> None:
        await enable_vitals_and_meals(service)

        instances = await service.expander.ensure_daily_instances(PATIENT, DAY)

        assert len(instances) == 4
        assert all(i.status is InstanceStatus.PENDING for i in instances)
        assert sorted(i.item_name for i in instances) == [
            "Breakfast", "Check vitals", "Dinner", "Lunch",
        ]
        assert [i.scheduled_time for i in instances] == sorted(i.scheduled_time for i in instances)
        lunch = next(i for i in instances if i.item_name == "Lunch")
        assert lunch.scheduled_time == datetime(2025, 6, 15, 12, 0)

    async def test_expansion_is_idempotent(self, clock) -> None:
        store = CountingStore()
        service = CareService(AppConfig(), store=store, clock=clock)
        await enable_vitals_and_meals(service)

        first = await service.expander.ensure_daily_instances(PATIENT, DAY)
        writes_after_first = store.writes
        second = await service.expander.ensure_daily_instances(PATIENT, DAY)

        assert [i.id for i in second] == [i.id for i in first]
        assert store.writes == writes_after_first

    async def test_overlapping_calls_do_not_duplicate(self, service: CareService) -> None:
        await enable_vitals_and_meals(service)

        results = await asyncio.gather(
            *(service.expander.ensure_daily_instances(PATIENT, DAY) for _ in range(5))
        )

        ids = {tuple(sorted(i.id for i in result)) for result in results}
        assert len(ids) == 1
        assert len(await service.instance_store.list_daily_instances(PATIENT, DAY)) == 4
        assert len(await items_of(service)) == 4

    async def test_overlapping_days_share_one_plan(self, service: CareService) -> None:
        await enable_vitals_and_meals(service)

        await asyncio.gather(
            *(
                service.expander.ensure_daily_instances(PATIENT, DAY + timedelta(days=n))
                for n in range(3)
            )
        )

        assert len(await items_of(service)) == 4

    async def test_reactivation_keeps_one_item(self, service: CareService) -> None:
        repo = service.config_repo
        await repo.set_bucket_enabled(PATIENT, BucketType.VITALS, True)
        await service.expander.ensure_daily_instances(PATIENT, DAY)
        (original,) = await items_of(service)

        await repo.set_bucket_enabled(PATIENT, BucketType.VITALS, False)
        await service.expander.ensure_daily_instances(PATIENT, DAY)
        await repo.set_bucket_enabled(PATIENT, BucketType.VITALS, True)
        await service.expander.ensure_daily_instances(PATIENT, DAY + timedelta(days=1))

        items = await items_of(service)
        assert [(i.id, i.active) for i in items] == [(original.id, True)]

    async def test_disabling_keeps_history(self, service: CareService) -> None:
        await service.config_repo.set_bucket_enabled(PATIENT, BucketType.VITALS, True)
        (instance,) = await service.expander.ensure_daily_instances(PATIENT, DAY)

        await service.config_repo.set_bucket_enabled(PATIENT, BucketType.VITALS, False)
        today = await service.expander.ensure_daily_instances(PATIENT, DAY)
        tomorrow = await service.expander.ensure_daily_instances(PATIENT, DAY + timedelta(days=1))

        assert [i.id for i in today] == [instance.id]
        assert tomorrow == []

    async def test_renamed_medication_keeps_its_item(self, service: CareService) -> None:
        med = await service.config_repo.add_medication(
            PATIENT, MedicationPlanItem(name="Metformin", dosage="500mg")
        )
        (before,) = await service.expander.ensure_daily_instances(PATIENT, DAY)

        await service.config_repo.update_medication(PATIENT, med.id, {"name": "Glucophage"})
        (after,) = await service.expander.ensure_daily_instances(PATIENT, DAY + timedelta(days=1))

        (item,) = await items_of(service)
        assert item.external_id == med.id
        assert item.name == "Glucophage"
        assert before.care_plan_item_id == after.care_plan_item_id == item.id

    async def test_removed_medication_deactivated(self, service: CareService) -> None:
        med = await service.config_repo.add_medication(PATIENT, MedicationPlanItem(name="Aspirin"))
        await service.expander.ensure_daily_instances(PATIENT, DAY)

        await service.config_repo.remove_medication(PATIENT, med.id)
        await service.expander.ensure_daily_instances(PATIENT, DAY)

        (item,) = await items_of(service)
        assert not item.active

    async def test_medication_with_two_times(self, service: CareService) -> None:
        await service.config_repo.add_medication(
            PATIENT,
            MedicationPlanItem(name="Metformin", times_of_day=[TimeOfDay.MORNING, TimeOfDay.NIGHT]),
        )
        instances = await service.expander.ensure_daily_instances(PATIENT, DAY)
        assert [i.slot_id for i in instances] == ["morning", "night"]
        assert len({i.care_plan_item_id for i in instances}) == 1

    async def test_resolved_instances_never_reset(self, service: CareService) -> None:
        await service.config_repo.set_bucket_enabled(PATIENT, BucketType.VITALS, True)
        (instance,) = await service.expander.ensure_daily_instances(PATIENT, DAY)
        await service.completion.log_instance_completion(
            PATIENT, DAY, instance.id, LogOutcome.SKIPPED
        )

        await service.config_repo.update_bucket_config(
            PATIENT, BucketType.VITALS, {"notes": "sitting down"}
        )
        (again,) = await service.expander.ensure_daily_instances(PATIENT, DAY)
        assert again.id == instance.id
        assert again.status is InstanceStatus.SKIPPED

    async def test_adopts_matching_manual_item(self, service: CareService) -> None:
        plan = await service.plan_repo.create_care_plan(PATIENT, DAY)
        manual = await service.plan_repo.upsert_care_plan_item(
            CarePlanItem(care_plan_id=plan.id, type=ItemType.NUTRITION, name="breakfast")
        )
        await service.config_repo.update_bucket_config(
            PATIENT, BucketType.MEALS, {"enabled": True, "times_of_day": [TimeOfDay.MORNING]}
        )

        await service.expander.ensure_daily_instances(PATIENT, DAY)

        (item,) = await items_of(service)
        assert item.id == manual.id
        assert item.bucket == BucketType.MEALS.value
        assert item.external_id == "meals:morning"

    async def test_weekly_schedule_respects_days(self, service: CareService) -> None:
        await service.config_repo.update_bucket_config(
            PATIENT,
            BucketType.VITALS,
            {"enabled": True, "frequency": ScheduleFrequency.WEEKLY, "days_of_week": [0]},
        )
        assert await service.expander.ensure_daily_instances(PATIENT, DAY) == []
        monday = await service.expander.ensure_daily_instances(PATIENT, DAY + timedelta(days=1))
        assert len(monday) == 1

    async def test_range_expansion(self, service: CareService) -> None:
        await service.config_repo.set_bucket_enabled(PATIENT, BucketType.WATER, True)
        result = await service.expander.ensure_instances_for_range(
            PATIENT, DAY, DAY + timedelta(days=2)
        )
        assert list(result) == [DAY, DAY + timedelta(days=1), DAY + timedelta(days=2)]
        assert all(len(instances) == 1 for instances in result.values())

    async def test_regenerate_today_uses_clock(self, service: CareService, clock) -> None:
        await service.config_repo.set_bucket_enabled(PATIENT, BucketType.SLEEP, True)
        instances = await service.expander.regenerate_today(PATIENT)
        assert [i.date for i in instances] == [clock.now.date()]

    async def test_archived_plan_generates_nothing_new(self, service: CareService) -> None:
        await service.config_repo.set_bucket_enabled(PATIENT, BucketType.VITALS, True)
        await service.expander.ensure_daily_instances(PATIENT, DAY)
        await service.plan_repo.archive_care_plan(PATIENT)

        tomorrow = DAY + timedelta(days=1)
        assert await service.expander.ensure_daily_instances(PATIENT, tomorrow) == []
        assert len(await service.expander.ensure_daily_instances(PATIENT, DAY)) == 1


class TestMoodPolicy:
    @pytest.mark.parametrize(("policy", "expected"), [("generate", 1), ("suppress", 0)])
    async def test_mood_instances_follow_policy(self, clock, policy: str, expected: int) -> None:
        config = AppConfig(scheduler=SchedulerConfig(mood_policy=policy))
        service = CareService(config, store=InMemoryKeyValueStore(), clock=clock)
        await service.config_repo.set_bucket_enabled(PATIENT, BucketType.MOOD, True)

        instances = await service.expander.ensure_daily_instances(PATIENT, DAY)
        assert len([i for i in instances if i.item_type is ItemType.MOOD]) == expected

    async def test_suppress_covers_manual_mood_items(self, clock) -> None:
        config = AppConfig(scheduler=SchedulerConfig(mood_policy="suppress"))
        service = CareService(config, store=InMemoryKeyValueStore(), clock=clock)
        await service.config_repo.set_bucket_enabled(PATIENT, BucketType.VITALS, True)
        plan = await service.plan_repo.create_care_plan(PATIENT, start_date=DAY)
        mood = await service.plan_repo.upsert_care_plan_item(
            CarePlanItem(care_plan_id=plan.id, type=ItemType.MOOD, name="Mood check-in")
        )

        instances = await service.expander.ensure_daily_instances(PATIENT, DAY)

        assert [i.item_type for i in instances] == [ItemType.VITALS]
        (stored,) = [i for i in await items_of(service) if i.id == mood.id]
        assert not stored.active


class TestAutoMarkMissed:
    async def test_off_by_default(self, service: CareService) -> None:
        await service.config_repo.set_bucket_enabled(PATIENT, BucketType.VITALS, True)
        late = datetime(2025, 6, 15, 23, 0)
        (instance,) = await service.expander.ensure_daily_instances(PATIENT, DAY, now=late)
        assert instance.status is InstanceStatus.PENDING

    async def test_marks_only_past_grace(self, clock) -> None:
        config = AppConfig(scheduler=SchedulerConfig(auto_mark_missed=True))
        service = CareService(config, store=InMemoryKeyValueStore(), clock=clock)
        await service.config_repo.set_bucket_enabled(PATIENT, BucketType.MEALS, True)

        now = datetime(2025, 6, 15, 10, 1)
        instances = await service.expander.ensure_daily_instances(PATIENT, DAY, now=now)

        statuses = {i.item_name: i.status for i in instances}
        assert statuses == {
            "Breakfast": InstanceStatus.MISSED,
            "Lunch": InstanceStatus.PENDING,
            "Dinner": InstanceStatus.PENDING,
        }
