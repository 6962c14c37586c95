"""
Completion engine: record a caregiving action and resolve its instance.

The immutable log entry is written first; only then does the instance move
to its terminal status. A failed log write leaves the instance untouched.
"""

from datetime import date
from typing import Any

import structlog

from careplan.adapters.key_lock import KeyLock
from careplan.domain.models import (
    OUTCOME_STATUS,
    CompletionOptions,
    CompletionResult,
    LogEntry,
    LogOutcome,
    LogSource,
    utc_now,
)
from careplan.services.instance_store import InstanceStore
from careplan.services.log_store import LogStore
from careplan.services.schedule_expander import day_lock_key

logger = structlog.get_logger(__name__)


class CompletionEngine:
    def __init__(self, instance_store: InstanceStore, log_store: LogStore, locks: KeyLock) -> None:
        self.instance_store = instance_store
        self.log_store = log_store
        self.locks = locks
        self.logger = logger.bind(component="completion_engine")

    async def log_instance_completion(
        self,
        patient_id: str,
        day: date,
        instance_id: str,
        outcome: LogOutcome,
        data: dict[str, Any] | None = None,
        options: CompletionOptions | None = None,
    ) -> CompletionResult | None:
        """
        Log ``outcome`` against one instance and transition it.

        Returns None when the instance is unknown or already resolved, which
        happens on a double submit. Storage failures raise ``StorageError``.
        """
        options = options or CompletionOptions()

        async with self.locks.hold(day_lock_key(patient_id, day)):
            instance = await self.instance_store.get_daily_instance(patient_id, day, instance_id)
            if instance is None:
                self.logger.info(
                    "completion_target_missing", patient_id=patient_id, instance_id=instance_id
                )
                return None
            if not instance.is_pending:
                self.logger.info(
                    "completion_already_resolved",
                    instance_id=instance_id,
                    status=instance.status.value,
                )
                return None

            log = await self.log_store.create_log_entry(
                LogEntry(
                    patient_id=patient_id,
                    care_plan_id=instance.care_plan_id,
                    care_plan_item_id=instance.care_plan_item_id,
                    daily_instance_id=instance.id,
                    timestamp=options.timestamp or utc_now(),
                    date=day,
                    outcome=outcome,
                    notes=options.notes,
                    data=data,
                    source=options.source,
                    caregiver_name=options.caregiver_name,
                )
            )

            updated = await self.instance_store.update_daily_instance_status(
                patient_id, day, instance_id, OUTCOME_STATUS[outcome], log_id=log.id
            )
            if updated is None:
                return None

        self.logger.info(
            "instance_completed",
            patient_id=patient_id,
            date=day.isoformat(),
            instance_id=instance_id,
            item_type=updated.item_type.value,
            status=updated.status.value,
        )
        return CompletionResult(instance=updated, log=log)

    async def skip_instance(
        self, patient_id: str, day: date, instance_id: str, reason: str | None = None
    ) -> CompletionResult | None:
        return await self.log_instance_completion(
            patient_id,
            day,
            instance_id,
            LogOutcome.SKIPPED,
            options=CompletionOptions(notes=reason),
        )

    async def mark_missed(
        self, patient_id: str, day: date, instance_id: str
    ) -> CompletionResult | None:
        return await self.log_instance_completion(
            patient_id,
            day,
            instance_id,
            LogOutcome.MISSED,
            options=CompletionOptions(source=LogSource.AUTO),
        )
