"""
Reminder scheduling guard.

Decides whether a reminder for a generated instance may be handed to the
notification registry. A reminder whose fire time has already passed is never
requested. Delivery itself belongs to the registry.
"""

from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Literal, Protocol

import structlog
from pydantic import BaseModel

from careplan.domain.models import DailyCareInstance, local_now, to_local_naive

logger = structlog.get_logger(__name__)


class NotificationDecision(BaseModel):
    action: Literal["schedule", "skip"]
    fire_at: datetime | None = None
    reason: str


class NotificationRequest(BaseModel):
    instance_id: str
    title: str
    body: str
    fire_at: datetime


class NotificationRegistry(Protocol):
    """Sink for reminder requests. Implementations own OS-level delivery."""

    async def schedule(self, request: NotificationRequest) -> None:
        """Register ``request`` for delivery."""
        ...


def evaluate(
    item_name: str,
    scheduled_time: datetime,
    now: datetime | None = None,
    lead_minutes: int = 0,
) -> NotificationDecision:
    """
    Pick the fire time for one reminder, or skip it.

    The reminder fires ``lead_minutes`` before ``scheduled_time``. When that
    moment has passed but the item itself is still ahead, it fires at the
    scheduled time instead.
    """
    current = to_local_naive(now) if now is not None else local_now()
    scheduled = to_local_naive(scheduled_time)

    if scheduled <= current:
        logger.debug(
            "notification_skipped_past", item_name=item_name, scheduled=scheduled.isoformat()
        )
        return NotificationDecision(action="skip", reason="scheduled time has passed")

    fire_at = scheduled - timedelta(minutes=lead_minutes)
    if fire_at <= current:
        return NotificationDecision(
            action="schedule", fire_at=scheduled, reason="lead time passed; firing at due time"
        )
    return NotificationDecision(action="schedule", fire_at=fire_at, reason="upcoming")


async def schedule_instances(
    instances: Iterable[DailyCareInstance],
    registry: NotificationRegistry,
    now: datetime | None = None,
    lead_minutes: int = 0,
) -> list[NotificationDecision]:
    """Request reminders for pending instances whose time is still ahead."""
    decisions: list[NotificationDecision] = []
    for instance in instances:
        if not instance.is_pending:
            decisions.append(NotificationDecision(action="skip", reason="already resolved"))
            continue

        decision = evaluate(instance.item_name, instance.scheduled_time, now, lead_minutes)
        decisions.append(decision)
        if decision.action == "schedule" and decision.fire_at is not None:
            await registry.schedule(
                NotificationRequest(
                    instance_id=instance.id,
                    title=instance.item_name,
                    body=instance.instructions or instance.dosage or "Time for the next care task",
                    fire_at=decision.fire_at,
                )
            )

    scheduled = sum(1 for d in decisions if d.action == "schedule")
    logger.info("notifications_evaluated", scheduled=scheduled, skipped=len(decisions) - scheduled)
    return decisions
