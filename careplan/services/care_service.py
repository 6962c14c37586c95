"""
Application-facing facade that wires the care plan core together.

One ``CareService`` per process: it owns the key-value store, the lock
registry and every repository and engine built on them.
"""

from collections.abc import Callable
from datetime import date, datetime
from typing import Any

import structlog

from careplan.adapters.key_lock import KeyLock
from careplan.adapters.kv_store import KeyValueStore, create_store
from careplan.config import AppConfig, get_config
from careplan.domain.models import (
    CompletionOptions,
    CompletionResult,
    DailyCareInstance,
    ItemType,
    LogOutcome,
    local_now,
    to_local_naive,
)
from careplan.services.backup import export_snapshot, restore_snapshot
from careplan.services.completion import CompletionEngine
from careplan.services.config_repo import CarePlanConfigRepository
from careplan.services.daily_schedule import DailySchedule, build_daily_schedule
from careplan.services.instance_store import InstanceStore
from careplan.services.log_store import LogStore
from careplan.services.log_sync import LogSyncBridge
from careplan.services.notification_guard import (
    NotificationDecision,
    NotificationRegistry,
    schedule_instances,
)
from careplan.services.plan_repo import CarePlanRepository
from careplan.services.schedule_expander import ScheduleExpander
from careplan.services.storage import SafeStorage, StorageKeys
from careplan.services.urgency import (
    ItemUrgency,
    UrgencyTier,
    apply_above_fold_to_categories,
    category_urgency_for_instances,
    classify_item,
    create_above_fold_state,
)

logger = structlog.get_logger(__name__)


class CareService:
    """
    Entry point for the application shell.

    Everything is built from ``AppConfig``; tests pass an in-memory store and
    a fixed clock.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        store: KeyValueStore | None = None,
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self.config = config or get_config()
        self.clock = clock
        self.logger = logger.bind(component="care_service")

        self._init_storage(store)
        self._init_repositories()
        self._init_engines()

    def _init_storage(self, store: KeyValueStore | None) -> None:
        storage_config = self.config.storage
        self.store = store or create_store(storage_config.backend, storage_config.sqlite_path)
        self.keys = StorageKeys(storage_config.key_prefix)
        self.storage = SafeStorage(self.store)
        self.locks = KeyLock()
        self.logger.info("storage_initialized", backend=storage_config.backend)

    def _init_repositories(self) -> None:
        storage_config = self.config.storage

        self.config_repo = CarePlanConfigRepository(self.storage, self.keys)
        self.plan_repo = CarePlanRepository(self.storage, self.keys)
        self.instance_store = InstanceStore(
            self.storage,
            self.keys,
            self.locks,
            retention_days=storage_config.instance_index_retention_days,
            clock=self._today,
        )
        self.log_store = LogStore(
            self.storage,
            self.keys,
            self.locks,
            retention_days=storage_config.log_index_retention_days,
            max_all_logs=storage_config.max_all_logs,
            clock=self._today,
        )

    def _init_engines(self) -> None:
        scheduler = self.config.scheduler
        self.expander = ScheduleExpander(
            self.config_repo,
            self.plan_repo,
            self.instance_store,
            self.locks,
            auto_mark_missed=scheduler.auto_mark_missed,
            missed_grace_minutes=scheduler.missed_grace_minutes,
            mood_policy=scheduler.mood_policy,
            clock=self.clock,
        )
        self.completion = CompletionEngine(self.instance_store, self.log_store, self.locks)
        self.log_sync = LogSyncBridge(
            self.instance_store,
            self.completion,
            default_patient_id=scheduler.default_patient_id,
            clock=self.clock,
        )

    def _today(self) -> date:
        return self.clock().date()

    def _patient(self, patient_id: str | None) -> str:
        return patient_id or self.config.scheduler.default_patient_id

    # ------------------------------------------------------------------
    # Schedule
    # ------------------------------------------------------------------

    async def ensure_daily_instances(
        self, day: date | None = None, patient_id: str | None = None
    ) -> list[DailyCareInstance]:
        now = self.clock()
        return await self.expander.ensure_daily_instances(
            self._patient(patient_id), day or now.date(), now=now
        )

    async def get_daily_schedule(
        self, day: date | None = None, patient_id: str | None = None
    ) -> DailySchedule:
        now = self.clock()
        target = day or now.date()
        instances = await self.ensure_daily_instances(target, patient_id)
        return build_daily_schedule(target, instances, now)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def complete_instance(
        self,
        day: date,
        instance_id: str,
        outcome: LogOutcome = LogOutcome.COMPLETED,
        data: dict[str, Any] | None = None,
        options: CompletionOptions | None = None,
        patient_id: str | None = None,
    ) -> CompletionResult | None:
        return await self.completion.log_instance_completion(
            self._patient(patient_id), day, instance_id, outcome, data, options
        )

    async def sync_log(
        self,
        item_type: ItemType | str,
        day: date | None = None,
        data: dict[str, Any] | None = None,
        name_hint: str | None = None,
        patient_id: str | None = None,
    ) -> bool:
        now = self.clock()
        return await self.log_sync.sync_log_to_instance(
            item_type,
            day or now.date(),
            data=data,
            name_hint=name_hint,
            patient_id=self._patient(patient_id),
            now=now,
        )

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def category_urgencies(
        self,
        instances: list[DailyCareInstance],
        now: datetime | None = None,
    ) -> dict[ItemType, ItemUrgency]:
        """
        Displayed urgency per category, in first-appearance order.

        The next pending item takes the top slot; when it is critical, no
        category tile may also render as critical.
        """
        current = to_local_naive(now) if now is not None else self.clock()
        thresholds = self.config.urgency

        categories = list(dict.fromkeys(i.item_type for i in instances))
        computed = [
            category_urgency_for_instances(instances, category, current, thresholds)
            for category in categories
        ]

        pending = [i for i in instances if i.is_pending]
        next_up = min(pending, key=lambda i: i.scheduled_time) if pending else None
        next_up_critical = next_up is not None and (
            classify_item(
                next_up.item_type, next_up.scheduled_time, current, thresholds=thresholds
            ).tier
            is UrgencyTier.CRITICAL
        )

        present = [(c, u) for c, u in zip(categories, computed, strict=True) if u is not None]
        displayed, _ = apply_above_fold_to_categories(
            [u for _, u in present], create_above_fold_state(next_up_critical, thresholds)
        )
        return {
            category: urgency
            for (category, _), urgency in zip(present, displayed, strict=True)
        }

    # ------------------------------------------------------------------
    # Integrations
    # ------------------------------------------------------------------

    async def schedule_notifications(
        self,
        registry: NotificationRegistry,
        day: date | None = None,
        lead_minutes: int = 0,
        patient_id: str | None = None,
    ) -> list[NotificationDecision]:
        instances = await self.ensure_daily_instances(day, patient_id)
        return await schedule_instances(instances, registry, self.clock(), lead_minutes)

    async def export_snapshot(self, patient_id: str | None = None) -> dict[str, str]:
        return await export_snapshot(self.store, self.keys, self._patient(patient_id))

    async def restore_snapshot(self, snapshot: dict[str, str]) -> int:
        return await restore_snapshot(self.store, snapshot)
