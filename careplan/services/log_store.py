"""
Append-only store of caregiving actions.

Entries are written once and never modified. Each entry goes into its day's
list and into a capped patient-wide list used for id lookups.
"""

from collections.abc import Callable
from datetime import date, timedelta

import structlog

from careplan.adapters.key_lock import KeyLock
from careplan.domain.models import LogEntry
from careplan.services.storage import SafeStorage, StorageKeys

logger = structlog.get_logger(__name__)


class LogStore:
    def __init__(
        self,
        storage: SafeStorage,
        keys: StorageKeys,
        locks: KeyLock,
        retention_days: int = 365,
        max_all_logs: int = 5000,
        clock: Callable[[], date] = date.today,
    ) -> None:
        self.storage = storage
        self.keys = keys
        self.locks = locks
        self.retention_days = retention_days
        self.max_all_logs = max_all_logs
        self.clock = clock
        self.logger = logger.bind(component="log_store")

    async def create_log_entry(self, entry: LogEntry) -> LogEntry:
        """Append ``entry``. Raises ``StorageError`` if the day's list cannot be written."""
        day_key = self.keys.logs(entry.patient_id, entry.date.isoformat())
        async with self.locks.hold(day_key):
            day_logs = await self.storage.get_models(day_key, LogEntry)
            await self.storage.set_or_raise(day_key, [*day_logs, entry])

        all_key = self.keys.all_logs(entry.patient_id)
        async with self.locks.hold(all_key):
            all_logs = await self.storage.get_models(all_key, LogEntry)
            capped = [*all_logs, entry][-self.max_all_logs :]
            await self.storage.set_or_raise(all_key, capped)

        await self._add_to_index(entry.patient_id, entry.date)

        self.logger.info(
            "log_entry_created",
            patient_id=entry.patient_id,
            log_id=entry.id,
            outcome=entry.outcome.value,
            source=entry.source.value,
        )
        return entry

    async def list_logs_by_date(
        self, patient_id: str, day: date, care_plan_item_id: str | None = None
    ) -> list[LogEntry]:
        logs = await self.storage.get_models(self.keys.logs(patient_id, day.isoformat()), LogEntry)
        if care_plan_item_id is not None:
            logs = [log for log in logs if log.care_plan_item_id == care_plan_item_id]
        return sorted(logs, key=lambda log: log.timestamp)

    async def list_logs_range(
        self,
        patient_id: str,
        start: date,
        end: date,
        care_plan_item_id: str | None = None,
    ) -> list[LogEntry]:
        result: list[LogEntry] = []
        for day in await self.list_logged_dates(patient_id):
            if start <= day <= end:
                result.extend(await self.list_logs_by_date(patient_id, day, care_plan_item_id))
        return result

    async def get_log_entry(self, patient_id: str, log_id: str) -> LogEntry | None:
        all_logs = await self.storage.get_models(self.keys.all_logs(patient_id), LogEntry)
        return next((log for log in all_logs if log.id == log_id), None)

    async def list_logged_dates(self, patient_id: str) -> list[date]:
        raw = await self.storage.get_strings(self.keys.logs_index(patient_id))
        dates: list[date] = []
        for value in raw:
            try:
                dates.append(date.fromisoformat(value))
            except ValueError:
                continue
        return sorted(dates)

    async def _add_to_index(self, patient_id: str, day: date) -> None:
        key = self.keys.logs_index(patient_id)
        cutoff = (self.clock() - timedelta(days=self.retention_days)).isoformat()
        async with self.locks.hold(key):
            current = set(await self.storage.get_strings(key))
            current.add(day.isoformat())
            await self.storage.set_or_raise(key, sorted(d for d in current if d >= cutoff))
