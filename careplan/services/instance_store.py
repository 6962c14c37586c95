"""
Persistence of dated task occurrences.

One list per (patient, date) plus a per-patient date index. The index is
pruned on write against a fixed retention window so range queries never need
a full key scan.
"""

from collections.abc import Callable
from datetime import date, timedelta
from typing import Any

import structlog

from careplan.adapters.key_lock import KeyLock
from careplan.domain.models import DailyCareInstance, InstanceStatus, utc_now
from careplan.exceptions import InvalidStatusTransitionError
from careplan.services.storage import SafeStorage, StorageKeys

logger = structlog.get_logger(__name__)


class InstanceStore:
    """Read and merge-write ``DailyCareInstance`` lists."""

    def __init__(
        self,
        storage: SafeStorage,
        keys: StorageKeys,
        locks: KeyLock,
        retention_days: int = 90,
        clock: Callable[[], date] = date.today,
    ) -> None:
        self.storage = storage
        self.keys = keys
        self.locks = locks
        self.retention_days = retention_days
        self.clock = clock
        self.logger = logger.bind(component="instance_store")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_daily_instances(self, patient_id: str, day: date) -> list[DailyCareInstance]:
        """Instances for one day, ordered by scheduled time."""
        key = self.keys.daily_instances(patient_id, day.isoformat())
        instances = await self.storage.get_models(key, DailyCareInstance)
        return sorted(instances, key=lambda i: i.scheduled_time)

    async def get_daily_instance(
        self, patient_id: str, day: date, instance_id: str
    ) -> DailyCareInstance | None:
        instances = await self.list_daily_instances(patient_id, day)
        return next((i for i in instances if i.id == instance_id), None)

    async def list_indexed_dates(self, patient_id: str) -> list[date]:
        raw = await self.storage.get_strings(self.keys.daily_instances_index(patient_id))
        dates: list[date] = []
        for value in raw:
            try:
                dates.append(date.fromisoformat(value))
            except ValueError:
                self.logger.warning(
                    "invalid_index_entry_ignored", patient_id=patient_id, value=value
                )
        return sorted(dates)

    async def list_daily_instances_range(
        self, patient_id: str, start: date, end: date
    ) -> list[DailyCareInstance]:
        """All instances of indexed dates in ``[start, end]``, ordered by scheduled time."""
        result: list[DailyCareInstance] = []
        for day in await self.list_indexed_dates(patient_id):
            if start <= day <= end:
                result.extend(await self.list_daily_instances(patient_id, day))
        return sorted(result, key=lambda i: i.scheduled_time)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert_daily_instances(
        self, patient_id: str, day: date, instances: list[DailyCareInstance]
    ) -> list[DailyCareInstance]:
        """
        Merge ``instances`` into the day's list by id.

        Instances not mentioned are left alone and an existing instance keeps
        its original ``created_at``. An instance that is already resolved keeps
        its status and log id. Raises ``StorageError`` if the write fails,
        in which case nothing was changed.
        """
        if not instances:
            return await self.list_daily_instances(patient_id, day)

        key = self.keys.daily_instances(patient_id, day.isoformat())
        async with self.locks.hold(key):
            stored = await self.storage.get_models(key, DailyCareInstance)
            by_id = {i.id: i for i in stored}
            now = utc_now()
            for instance in instances:
                previous = by_id.get(instance.id)
                update: dict[str, Any] = {
                    "created_at": previous.created_at if previous else instance.created_at,
                    "updated_at": now if previous else instance.updated_at,
                }
                # Resolved occurrences keep their outcome
                if previous is not None and previous.status.is_terminal:
                    update["status"] = previous.status
                    update["log_id"] = previous.log_id
                by_id[instance.id] = instance.model_copy(update=update)
            merged = sorted(by_id.values(), key=lambda i: i.scheduled_time)
            await self.storage.set_or_raise(key, merged)

        await self._add_to_index(patient_id, day)
        return merged

    async def update_daily_instance_status(
        self,
        patient_id: str,
        day: date,
        instance_id: str,
        status: InstanceStatus,
        log_id: str | None = None,
    ) -> DailyCareInstance | None:
        """
        Move a pending instance to a terminal status.

        Returns None when the id is unknown. Raises
        ``InvalidStatusTransitionError`` for any transition that is not
        pending -> terminal.
        """
        key = self.keys.daily_instances(patient_id, day.isoformat())
        async with self.locks.hold(key):
            stored = await self.storage.get_models(key, DailyCareInstance)
            index = next((n for n, i in enumerate(stored) if i.id == instance_id), None)
            if index is None:
                return None

            current = stored[index]
            if current.status.is_terminal or not status.is_terminal:
                raise InvalidStatusTransitionError(
                    instance_id, current.status.value, status.value
                )

            updated = current.model_copy(
                update={
                    "status": status,
                    "log_id": log_id if log_id is not None else current.log_id,
                    "updated_at": utc_now(),
                }
            )
            stored[index] = updated
            await self.storage.set_or_raise(key, stored)

        self.logger.debug(
            "instance_status_updated",
            patient_id=patient_id,
            date=day.isoformat(),
            instance_id=instance_id,
            status=status.value,
        )
        return updated

    async def remove_stale_instances(
        self, patient_id: str, valid_item_ids: set[str], day: date | None = None
    ) -> int:
        """
        Drop instances whose owning item id is not in ``valid_item_ids``.

        Checks one day when ``day`` is given, otherwise every indexed date.
        Returns the number of instances removed.
        """
        days = [day] if day is not None else await self.list_indexed_dates(patient_id)
        removed = 0
        for current_day in days:
            key = self.keys.daily_instances(patient_id, current_day.isoformat())
            async with self.locks.hold(key):
                stored = await self.storage.get_models(key, DailyCareInstance)
                kept = [i for i in stored if i.care_plan_item_id in valid_item_ids]
                if len(kept) == len(stored):
                    continue
                await self.storage.set_or_raise(key, kept)
                removed += len(stored) - len(kept)

        if removed:
            self.logger.info("stale_instances_removed", patient_id=patient_id, count=removed)
        return removed

    async def _add_to_index(self, patient_id: str, day: date) -> None:
        key = self.keys.daily_instances_index(patient_id)
        cutoff = self.clock() - timedelta(days=self.retention_days)
        async with self.locks.hold(key):
            current = set(await self.storage.get_strings(key))
            current.add(day.isoformat())
            kept = sorted(d for d in current if d >= cutoff.isoformat())
            await self.storage.set_or_raise(key, kept)
