"""
Plan-of-record repository: one active care plan per patient and its items.

Items are never deleted. They form a stable-id list whose ``active`` flag is
toggled, so dated instances and logs keep a valid owner forever.
"""

from datetime import date

import structlog

from careplan.domain.models import CarePlan, CarePlanItem, CarePlanStatus, utc_now
from careplan.services.storage import SafeStorage, StorageKeys

logger = structlog.get_logger(__name__)


class CarePlanRepository:
    def __init__(self, storage: SafeStorage, keys: StorageKeys) -> None:
        self.storage = storage
        self.keys = keys
        self.logger = logger.bind(component="care_plan_repo")

    # ------------------------------------------------------------------
    # Care plan
    # ------------------------------------------------------------------

    async def get_care_plan(self, patient_id: str) -> CarePlan | None:
        """Return the stored plan regardless of status."""
        return await self.storage.get_model(self.keys.care_plan(patient_id), CarePlan)

    async def get_active_care_plan(self, patient_id: str) -> CarePlan | None:
        plan = await self.get_care_plan(patient_id)
        if plan and plan.status is CarePlanStatus.ACTIVE:
            return plan
        return None

    async def create_care_plan(
        self, patient_id: str, start_date: date, timezone: str = "UTC"
    ) -> CarePlan:
        plan = CarePlan(patient_id=patient_id, start_date=start_date, timezone=timezone)
        await self.storage.set_or_raise(self.keys.care_plan(patient_id), plan)
        self.logger.info("care_plan_created", patient_id=patient_id, care_plan_id=plan.id)
        return plan

    async def upsert_care_plan(self, plan: CarePlan) -> CarePlan:
        """Save ``plan``, bumping its version when it replaces the same plan id."""
        existing = await self.get_care_plan(plan.patient_id)
        same_plan = existing is not None and existing.id == plan.id
        updated = plan.model_copy(
            update={
                "version": existing.version + 1 if same_plan and existing else 1,
                "created_at": existing.created_at if same_plan and existing else plan.created_at,
                "updated_at": utc_now(),
            }
        )
        await self.storage.set_or_raise(self.keys.care_plan(plan.patient_id), updated)
        return updated

    async def archive_care_plan(self, patient_id: str) -> CarePlan | None:
        plan = await self.get_care_plan(patient_id)
        if plan is None:
            return None
        return await self.upsert_care_plan(
            plan.model_copy(update={"status": CarePlanStatus.ARCHIVED})
        )

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    async def list_care_plan_items(
        self, care_plan_id: str, active_only: bool = False
    ) -> list[CarePlanItem]:
        items = await self.storage.get_models(self.keys.care_plan_items(care_plan_id), CarePlanItem)
        if active_only:
            return [item for item in items if item.active]
        return items

    async def get_care_plan_item(self, care_plan_id: str, item_id: str) -> CarePlanItem | None:
        items = await self.list_care_plan_items(care_plan_id)
        return next((item for item in items if item.id == item_id), None)

    async def upsert_care_plan_items(
        self, care_plan_id: str, items: list[CarePlanItem]
    ) -> list[CarePlanItem]:
        """Merge ``items`` into the plan by id in one write, keeping original created_at."""
        if not items:
            return []

        stored = await self.list_care_plan_items(care_plan_id)
        by_id = {item.id: item for item in stored}
        now = utc_now()

        result: list[CarePlanItem] = []
        for item in items:
            previous = by_id.get(item.id)
            merged = item.model_copy(
                update={
                    "care_plan_id": care_plan_id,
                    "created_at": previous.created_at if previous else item.created_at,
                    "updated_at": now,
                }
            )
            by_id[item.id] = merged
            result.append(merged)

        await self.storage.set_or_raise(
            self.keys.care_plan_items(care_plan_id), list(by_id.values())
        )
        return result

    async def upsert_care_plan_item(self, item: CarePlanItem) -> CarePlanItem:
        (saved,) = await self.upsert_care_plan_items(item.care_plan_id, [item])
        return saved

    async def set_item_active(
        self, care_plan_id: str, item_id: str, active: bool
    ) -> CarePlanItem | None:
        item = await self.get_care_plan_item(care_plan_id, item_id)
        if item is None:
            return None
        if item.active == active:
            return item
        return await self.upsert_care_plan_item(item.model_copy(update={"active": active}))
