"""
Bridge from ad hoc category logging to the scheduled occurrence it fulfils.

Logging a meal or a blood pressure from a free-form screen should tick off the
matching item on today's plan. The bridge is best-effort: it never raises and
never blocks the primary save.
"""

from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import Any

import structlog

from careplan.domain.models import (
    CompletionOptions,
    DailyCareInstance,
    ItemType,
    LogOutcome,
    LogSource,
    local_now,
    to_local_naive,
)
from careplan.services.completion import CompletionEngine
from careplan.services.instance_store import InstanceStore
from careplan.services.urgency import resolve_category

logger = structlog.get_logger(__name__)

FUTURE_PENALTY = timedelta(hours=24)


def candidate_score(instance: DailyCareInstance, now: datetime) -> timedelta:
    """
    Distance from ``now``; lower is a better match.

    Already-due instances score their lateness. Future instances score their
    lead time plus a day, so any due instance beats any future one.
    """
    diff = now - instance.scheduled_time
    if diff >= timedelta(0):
        return diff
    return -diff + FUTURE_PENALTY


def select_sync_target(
    pending: list[DailyCareInstance], now: datetime, name_hint: str | None = None
) -> DailyCareInstance | None:
    if not pending:
        return None
    if name_hint:
        wanted = name_hint.strip().casefold()
        named = next((i for i in pending if i.item_name.casefold() == wanted), None)
        if named is not None:
            return named
    return min(pending, key=lambda i: (candidate_score(i, now), i.scheduled_time))


class LogSyncBridge:
    def __init__(
        self,
        instance_store: InstanceStore,
        completion: CompletionEngine,
        default_patient_id: str = "default",
        clock: Callable[[], datetime] = local_now,
    ) -> None:
        self.instance_store = instance_store
        self.completion = completion
        self.default_patient_id = default_patient_id
        self.clock = clock
        self.logger = logger.bind(component="log_sync")

    async def sync_log_to_instance(
        self,
        item_type: ItemType | str,
        day: date,
        data: dict[str, Any] | None = None,
        name_hint: str | None = None,
        patient_id: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """
        Complete the best pending instance of ``item_type`` on ``day``.

        Returns True if an instance was completed, False when there was
        nothing to complete or anything went wrong.
        """
        patient = patient_id or self.default_patient_id
        label = getattr(item_type, "value", item_type)
        try:
            category = resolve_category(item_type)
            label = category.value
            instances = await self.instance_store.list_daily_instances(patient, day)
            pending = [i for i in instances if i.item_type is category and i.is_pending]
            target = select_sync_target(
                pending, to_local_naive(now) if now else self.clock(), name_hint
            )
            if target is None:
                return False

            result = await self.completion.log_instance_completion(
                patient,
                day,
                target.id,
                LogOutcome.COMPLETED,
                data=data,
                options=CompletionOptions(source=LogSource.RECORD),
            )
            if result is None:
                return False

            self.logger.info(
                "log_synced_to_instance",
                patient_id=patient,
                item_type=label,
                instance_id=target.id,
                item_name=target.item_name,
            )
            return True
        except Exception as e:
            self.logger.warning(
                "log_sync_failed", patient_id=patient, item_type=label, error=str(e)
            )
            return False
