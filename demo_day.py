"""
Walk through one simulated care day end to end.

This script shows:
1. Configuring buckets and a medication
2. Expanding the day's schedule (twice, to show it is idempotent)
3. Calm urgency per category with the above-fold cap
4. Completing items directly and through the log sync bridge
5. Reminder scheduling that never targets the past

Run with: uv run python demo_day.py
"""

import asyncio
from datetime import date, datetime

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from careplan.adapters.kv_store import InMemoryKeyValueStore
from careplan.config import AppConfig, print_config_summary
from careplan.domain.models import ItemType, LogOutcome, TimeOfDay
from careplan.domain.plan_config import BucketType, MedicationPlanItem
from careplan.logging_config import configure_logging
from careplan.services.care_service import CareService
from careplan.services.notification_guard import NotificationRequest

console = Console()

DEMO_DAY = date(2025, 6, 15)


class ConsoleRegistry:
    """Notification sink that just prints what it would deliver."""

    async def schedule(self, request: NotificationRequest) -> None:
        console.print(f"  ⏰ {request.fire_at:%H:%M} {request.title}", style="cyan")


class DemoClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now


def render_schedule(title: str, instances) -> None:
    table = Table(title=title)
    table.add_column("Time", style="cyan")
    table.add_column("Item", style="white")
    table.add_column("Window", style="magenta")
    table.add_column("Status", style="green")
    for instance in instances:
        table.add_row(
            f"{instance.scheduled_time:%H:%M}",
            instance.item_name,
            instance.window_label.value,
            instance.status.value,
        )
    console.print(table)


def render_urgency(service: CareService, instances) -> None:
    table = Table(title="Category urgency")
    table.add_column("Category", style="cyan")
    table.add_column("Tier", style="white")
    table.add_column("Computed", style="white")
    table.add_column("Label", style="yellow")
    for category, urgency in service.category_urgencies(instances).items():
        table.add_row(
            category.value, urgency.tier.value, urgency.computed_tier.value, urgency.label
        )
    console.print(table)


async def run_demo() -> None:
    configure_logging()
    console.print(Panel("🩺 Care plan day walkthrough", style="bold blue"))

    clock = DemoClock(datetime(2025, 6, 15, 7, 30))
    service = CareService(AppConfig(), store=InMemoryKeyValueStore(), clock=clock)
    patient = service.config.scheduler.default_patient_id
    print_config_summary(service.config)

    await service.config_repo.set_bucket_enabled(patient, BucketType.VITALS, True)
    await service.config_repo.set_bucket_enabled(patient, BucketType.MEALS, True)
    await service.config_repo.add_medication(
        patient,
        MedicationPlanItem(
            name="Metformin",
            dosage="500mg",
            times_of_day=[TimeOfDay.MORNING, TimeOfDay.EVENING],
        ),
    )

    first = await service.ensure_daily_instances(DEMO_DAY)
    second = await service.ensure_daily_instances(DEMO_DAY)
    same = [i.id for i in first] == [i.id for i in second]
    console.print(f"Expanded {len(first)} instances; second call identical: {same}", style="green")
    render_schedule("07:30 - fresh day", first)

    console.print(Panel("⏰ Reminders", style="blue"))
    await service.schedule_notifications(ConsoleRegistry(), DEMO_DAY, lead_minutes=15)

    clock.now = datetime(2025, 6, 15, 11, 0)
    console.print(Panel("🕚 11:00 - morning slipped by", style="blue"))
    render_urgency(service, await service.ensure_daily_instances(DEMO_DAY))

    synced_vitals = await service.sync_log(ItemType.VITALS, DEMO_DAY, data={"bp": "120/80"})
    synced_meal = await service.sync_log(ItemType.NUTRITION, DEMO_DAY)
    console.print(f"Vitals synced: {synced_vitals}; meal synced: {synced_meal}", style="green")

    pending_med = next(
        i for i in await service.ensure_daily_instances(DEMO_DAY)
        if i.item_type is ItemType.MEDICATION and i.is_pending
    )
    result = await service.complete_instance(DEMO_DAY, pending_med.id, LogOutcome.TAKEN)
    again = await service.complete_instance(DEMO_DAY, pending_med.id, LogOutcome.TAKEN)
    console.print(
        f"Took {pending_med.item_name}: {result is not None}; "
        f"double submit ignored: {again is None}",
        style="green",
    )

    schedule = await service.get_daily_schedule(DEMO_DAY)
    render_schedule("11:00 - after logging", schedule.instances)
    stats = schedule.stats
    console.print(
        f"🎯 {stats.completed}/{stats.total} done, {stats.pending} pending; "
        f"next up: {schedule.next_pending.item_name if schedule.next_pending else 'nothing'}"
    )


if __name__ == "__main__":
    try:
        asyncio.run(run_demo())
    except KeyboardInterrupt:
        console.print("\n⏹️  Demo interrupted by user", style="yellow")
