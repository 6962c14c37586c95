"""
Care plan configuration repository.

Owns bucket enable/disable and the medication list. The schedule expander
only reads from here.
"""

from typing import Any

import structlog

from careplan.domain.models import utc_now
from careplan.domain.plan_config import BucketType, CarePlanConfig, MedicationPlanItem
from careplan.services.storage import SafeStorage, StorageKeys

logger = structlog.get_logger(__name__)


class CarePlanConfigRepository:
    def __init__(self, storage: SafeStorage, keys: StorageKeys) -> None:
        self.storage = storage
        self.keys = keys
        self.logger = logger.bind(component="care_plan_config_repo")

    async def get_care_plan_config(self, patient_id: str) -> CarePlanConfig | None:
        return await self.storage.get_model(self.keys.config(patient_id), CarePlanConfig)

    async def get_or_create_care_plan_config(self, patient_id: str) -> CarePlanConfig:
        config = await self.get_care_plan_config(patient_id)
        if config is None:
            config = await self.save_care_plan_config(CarePlanConfig(patient_id=patient_id))
        return config

    async def save_care_plan_config(self, config: CarePlanConfig) -> CarePlanConfig:
        """Persist ``config`` with a bumped version. Raises ``StorageError`` on failure."""
        updated = config.model_copy(
            update={"version": config.version + 1, "updated_at": utc_now()}
        )
        await self.storage.set_or_raise(self.keys.config(config.patient_id), updated)
        self.logger.info(
            "care_plan_config_saved",
            patient_id=config.patient_id,
            version=updated.version,
            enabled_buckets=[b.value for b in updated.enabled_buckets()],
        )
        return updated

    async def update_bucket_config(
        self, patient_id: str, bucket_type: BucketType, updates: dict[str, Any]
    ) -> CarePlanConfig:
        config = await self.get_or_create_care_plan_config(patient_id)
        bucket = config.bucket(bucket_type)
        merged = bucket.model_validate({**bucket.model_dump(), **updates})
        return await self.save_care_plan_config(
            config.model_copy(update={bucket_type.value: merged})
        )

    async def set_bucket_enabled(
        self, patient_id: str, bucket_type: BucketType, enabled: bool
    ) -> CarePlanConfig:
        return await self.update_bucket_config(patient_id, bucket_type, {"enabled": enabled})

    async def add_medication(
        self, patient_id: str, medication: MedicationPlanItem
    ) -> MedicationPlanItem:
        """Add a medication; the meds bucket is enabled with its first medication."""
        config = await self.get_or_create_care_plan_config(patient_id)
        meds = config.meds.model_copy(
            update={"medications": [*config.meds.medications, medication], "enabled": True}
        )
        await self.save_care_plan_config(config.model_copy(update={"meds": meds}))
        return medication

    async def update_medication(
        self, patient_id: str, medication_id: str, updates: dict[str, Any]
    ) -> MedicationPlanItem | None:
        config = await self.get_or_create_care_plan_config(patient_id)
        medications = list(config.meds.medications)
        for index, med in enumerate(medications):
            if med.id == medication_id:
                updated = MedicationPlanItem.model_validate(
                    {**med.model_dump(), **updates, "id": med.id, "updated_at": utc_now()}
                )
                medications[index] = updated
                meds = config.meds.model_copy(update={"medications": medications})
                await self.save_care_plan_config(config.model_copy(update={"meds": meds}))
                return updated
        return None

    async def remove_medication(self, patient_id: str, medication_id: str) -> bool:
        config = await self.get_or_create_care_plan_config(patient_id)
        remaining = [m for m in config.meds.medications if m.id != medication_id]
        if len(remaining) == len(config.meds.medications):
            return False
        meds = config.meds.model_copy(update={"medications": remaining})
        await self.save_care_plan_config(config.model_copy(update={"meds": meds}))
        return True

    async def get_active_medications(self, patient_id: str) -> list[MedicationPlanItem]:
        config = await self.get_care_plan_config(patient_id)
        if config is None:
            return []
        return [m for m in config.meds.medications if m.active]
