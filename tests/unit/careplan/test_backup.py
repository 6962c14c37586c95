"""Snapshot export and restore of one patient's data."""

from datetime import date

from careplan.adapters.kv_store import InMemoryKeyValueStore
from careplan.config import AppConfig
from careplan.domain.models import InstanceStatus, LogOutcome
from careplan.domain.plan_config import BucketType
from careplan.services.care_service import CareService

DAY = date(2025, 6, 15)


async def seeded(service: CareService, patient_id: str) -> None:
    await service.config_repo.set_bucket_enabled(patient_id, BucketType.VITALS, True)
    (instance,) = await service.ensure_daily_instances(DAY, patient_id)
    await service.complete_instance(DAY, instance.id, LogOutcome.COMPLETED, patient_id=patient_id)


class TestSnapshot:
    async def test_restore_into_empty_store(self, service: CareService, clock) -> None:
        await seeded(service, "p1")
        snapshot = await service.export_snapshot("p1")

        restored = CareService(AppConfig(), store=InMemoryKeyValueStore(), clock=clock)
        assert await restored.restore_snapshot(snapshot) == len(snapshot)

        (instance,) = await restored.instance_store.list_daily_instances("p1", DAY)
        assert instance.status is InstanceStatus.COMPLETED
        assert len(await restored.log_store.list_logs_by_date("p1", DAY)) == 1
        plan = await restored.plan_repo.get_care_plan("p1")
        assert plan is not None
        assert len(await restored.plan_repo.list_care_plan_items(plan.id)) == 1

    async def test_restored_day_is_not_regenerated(self, service: CareService, clock) -> None:
        await seeded(service, "p1")
        snapshot = await service.export_snapshot("p1")

        restored = CareService(AppConfig(), store=InMemoryKeyValueStore(), clock=clock)
        await restored.restore_snapshot(snapshot)
        (instance,) = await restored.ensure_daily_instances(DAY, "p1")
        assert instance.status is InstanceStatus.COMPLETED

    async def test_export_is_scoped_to_patient(self, service: CareService) -> None:
        await seeded(service, "p1")
        await seeded(service, "p10")

        snapshot = await service.export_snapshot("p1")

        assert snapshot
        assert not any(":p10" in key for key in snapshot)

    async def test_unknown_patient_exports_nothing(self, service: CareService) -> None:
        assert await service.export_snapshot("nobody") == {}
