"""
Calm urgency classification.

Only clinically time-sensitive categories (medication, nutrition) may ever
reach the ``critical`` tier, and at most a bounded number of critical signals
render above the fold. Everything else tops out at ``attention`` and uses
supportive wording: the word "Late" only ever appears on critical items.

All functions here are pure. The above-fold state is passed in and returned,
never held between calls.
"""

import math
from collections.abc import Iterable, Sequence
from datetime import datetime
from enum import Enum
from functools import cmp_to_key

from pydantic import BaseModel, ConfigDict, Field

from careplan.config import UrgencyConfig
from careplan.domain.models import (
    DailyCareInstance,
    ItemType,
    local_now,
    parse_hhmm,
    to_local_naive,
)


class UrgencyTier(str, Enum):
    CRITICAL = "critical"
    ATTENTION = "attention"
    INFO = "info"


class UrgencyTone(str, Enum):
    DANGER = "danger"
    WARN = "warn"
    NEUTRAL = "neutral"


class EscalationClass(str, Enum):
    """Whether a category is allowed to escalate to the critical tier."""

    CLINICAL_CRITICAL = "clinical_critical"
    NON_CLINICAL = "non_clinical"
    NEUTRAL_LOGGING = "neutral_logging"


ESCALATION_CLASS: dict[ItemType, EscalationClass] = {
    ItemType.MEDICATION: EscalationClass.CLINICAL_CRITICAL,
    ItemType.NUTRITION: EscalationClass.CLINICAL_CRITICAL,
    ItemType.VITALS: EscalationClass.NEUTRAL_LOGGING,
    ItemType.MOOD: EscalationClass.NON_CLINICAL,
    ItemType.HYDRATION: EscalationClass.NON_CLINICAL,
    ItemType.SLEEP: EscalationClass.NON_CLINICAL,
    ItemType.ACTIVITY: EscalationClass.NON_CLINICAL,
    ItemType.WELLNESS: EscalationClass.NON_CLINICAL,
    ItemType.APPOINTMENT: EscalationClass.NON_CLINICAL,
    ItemType.CUSTOM: EscalationClass.NON_CLINICAL,
}

_unclassified = set(ItemType) - ESCALATION_CLASS.keys()
if _unclassified:
    raise RuntimeError(
        f"Item types without an escalation class: {sorted(t.value for t in _unclassified)}"
    )

CATEGORY_ALIASES: dict[str, ItemType] = {
    "meds": ItemType.MEDICATION,
    "meals": ItemType.NUTRITION,
    "water": ItemType.HYDRATION,
}

TIER_RANK: dict[UrgencyTier, int] = {
    UrgencyTier.CRITICAL: 0,
    UrgencyTier.ATTENTION: 1,
    UrgencyTier.INFO: 2,
}

DEFAULT_THRESHOLDS = UrgencyConfig()


class ItemUrgency(BaseModel):
    """
    Urgency of one item or category.

    ``tier`` is what gets displayed. ``computed_tier`` is what the classifier
    decided before any above-fold suppression and never changes.
    """

    model_config = ConfigDict(frozen=True)

    tier: UrgencyTier
    computed_tier: UrgencyTier
    is_overdue: bool = False
    minutes_late: int = Field(default=0, ge=0)
    label: str
    tone: UrgencyTone
    suppressed_from_critical: bool = False


class AboveFoldState(BaseModel):
    model_config = ConfigDict(frozen=True)

    has_critical_next_up: bool
    critical_tile_count: int = 0
    max_critical_tiles: int


class CategoryItem(BaseModel):
    """Minimal view of an item for category rollups."""

    due: datetime | str | None = None
    is_completed: bool = False


def _urgency(
    tier: UrgencyTier,
    label: str,
    tone: UrgencyTone,
    is_overdue: bool = False,
    minutes_late: int = 0,
) -> ItemUrgency:
    return ItemUrgency(
        tier=tier,
        computed_tier=tier,
        is_overdue=is_overdue,
        minutes_late=minutes_late,
        label=label,
        tone=tone,
    )


def resolve_category(category: ItemType | str) -> ItemType:
    """Map a category name or alias to an ``ItemType``; unknown names become custom."""
    if isinstance(category, ItemType):
        return category
    key = category.strip().lower()
    if key in CATEGORY_ALIASES:
        return CATEGORY_ALIASES[key]
    try:
        return ItemType(key)
    except ValueError:
        return ItemType.CUSTOM


def escalation_class(category: ItemType | str) -> EscalationClass:
    return ESCALATION_CLASS[resolve_category(category)]


def is_clinical_critical(category: ItemType | str) -> bool:
    return escalation_class(category) is EscalationClass.CLINICAL_CRITICAL


def _parse_due(due: datetime | str | None, now: datetime) -> datetime | None:
    if due is None:
        return None
    if isinstance(due, datetime):
        return to_local_naive(due)
    clock = parse_hhmm(due)
    if clock is not None:
        return datetime.combine(now.date(), clock)
    try:
        return to_local_naive(datetime.fromisoformat(due.strip()))
    except ValueError:
        return None


def classify_item(
    category: ItemType | str,
    due: datetime | str | None,
    now: datetime | None = None,
    is_completed: bool = False,
    is_optional: bool = False,
    force_non_critical: bool = False,
    thresholds: UrgencyConfig = DEFAULT_THRESHOLDS,
) -> ItemUrgency:
    """Classify one item. The first matching rule wins."""
    current = to_local_naive(now) if now is not None else local_now()

    if is_completed:
        return _urgency(UrgencyTier.INFO, "Done", UrgencyTone.NEUTRAL)

    due_at = _parse_due(due, current)
    if due_at is None:
        if is_optional:
            return _urgency(UrgencyTier.INFO, "Whenever you're ready", UrgencyTone.NEUTRAL)
        return _urgency(UrgencyTier.INFO, "Anytime today", UrgencyTone.NEUTRAL)

    minutes_diff = math.floor((current - due_at).total_seconds() / 60)
    is_overdue = minutes_diff > 0
    minutes_late = minutes_diff if is_overdue else 0
    can_be_critical = is_clinical_critical(category) and not force_non_critical

    if can_be_critical and is_overdue and minutes_late >= thresholds.critical_overdue_minutes:
        return _urgency(
            UrgencyTier.CRITICAL,
            "Late",
            UrgencyTone.DANGER,
            is_overdue=True,
            minutes_late=minutes_late,
        )

    if is_overdue:
        return _urgency(
            UrgencyTier.ATTENTION,
            "Due earlier today",
            UrgencyTone.WARN,
            is_overdue=True,
            minutes_late=minutes_late,
        )

    if -minutes_diff <= thresholds.upcoming_window_minutes:
        return _urgency(UrgencyTier.ATTENTION, "Still to do today", UrgencyTone.WARN)

    return _urgency(UrgencyTier.INFO, "Later today", UrgencyTone.NEUTRAL)


def compare_by_urgency(a: ItemUrgency, b: ItemUrgency) -> int:
    """Negative when ``a`` is more urgent than ``b``."""
    tier_diff = TIER_RANK[a.tier] - TIER_RANK[b.tier]
    if tier_diff:
        return tier_diff
    if a.is_overdue != b.is_overdue:
        return -1 if a.is_overdue else 1
    if a.is_overdue:
        return b.minutes_late - a.minutes_late
    return 0


urgency_sort_key = cmp_to_key(compare_by_urgency)


def calculate_category_urgency(
    category: ItemType | str,
    items: Iterable[CategoryItem],
    now: datetime | None = None,
    thresholds: UrgencyConfig = DEFAULT_THRESHOLDS,
) -> ItemUrgency:
    """Worst urgency among the category's pending items, or "Complete" when none are pending."""
    pending = [item for item in items if not item.is_completed]
    if not pending:
        return _urgency(UrgencyTier.INFO, "Complete", UrgencyTone.NEUTRAL)

    urgencies = [
        classify_item(category, item.due, now=now, thresholds=thresholds) for item in pending
    ]
    return min(urgencies, key=urgency_sort_key)


def category_urgency_for_instances(
    instances: Iterable[DailyCareInstance],
    item_type: ItemType | str,
    now: datetime | None = None,
    thresholds: UrgencyConfig = DEFAULT_THRESHOLDS,
) -> ItemUrgency | None:
    """Category urgency over a day's instances; None when the category has none."""
    category = resolve_category(item_type)
    members = [i for i in instances if i.item_type is category]
    if not members:
        return None
    return calculate_category_urgency(
        category,
        [CategoryItem(due=i.scheduled_time, is_completed=not i.is_pending) for i in members],
        now=now,
        thresholds=thresholds,
    )


# ----------------------------------------------------------------------
# Above-fold cap
# ----------------------------------------------------------------------


def create_above_fold_state(
    has_critical_next_up: bool, thresholds: UrgencyConfig = DEFAULT_THRESHOLDS
) -> AboveFoldState:
    """Fresh state: no critical tiles allowed when the top slot is already critical."""
    return AboveFoldState(
        has_critical_next_up=has_critical_next_up,
        critical_tile_count=0,
        max_critical_tiles=0 if has_critical_next_up else thresholds.max_red_above_fold,
    )


def apply_above_fold_constraint(
    urgency: ItemUrgency, state: AboveFoldState
) -> tuple[ItemUrgency, AboveFoldState]:
    """
    Cap critical signals above the fold.

    Returns the urgency to display and the state for the next call. A
    suppressed result shows as attention/"Pending" while ``computed_tier``
    stays critical.
    """
    if urgency.tier is not UrgencyTier.CRITICAL:
        return urgency, state

    if state.has_critical_next_up or state.critical_tile_count >= state.max_critical_tiles:
        suppressed = urgency.model_copy(
            update={
                "tier": UrgencyTier.ATTENTION,
                "tone": UrgencyTone.WARN,
                "label": "Pending",
                "suppressed_from_critical": True,
            }
        )
        return suppressed, state

    return urgency, state.model_copy(update={"critical_tile_count": state.critical_tile_count + 1})


def apply_above_fold_to_categories(
    urgencies: Sequence[ItemUrgency], state: AboveFoldState
) -> tuple[list[ItemUrgency], AboveFoldState]:
    """Fold ``apply_above_fold_constraint`` over tiles in display order."""
    displayed: list[ItemUrgency] = []
    for urgency in urgencies:
        adjusted, state = apply_above_fold_constraint(urgency, state)
        displayed.append(adjusted)
    return displayed, state


# ----------------------------------------------------------------------
# Display helpers
# ----------------------------------------------------------------------


def should_show_overdue_text(urgency: ItemUrgency) -> bool:
    return urgency.tier is UrgencyTier.CRITICAL and urgency.is_overdue


def time_delta_string(urgency: ItemUrgency) -> str | None:
    """Secondary "1h 5m ago" text for the timeline; None unless overdue."""
    if not urgency.is_overdue or urgency.minutes_late == 0:
        return None
    hours, mins = divmod(urgency.minutes_late, 60)
    return f"{hours}h {mins}m ago" if hours else f"{mins}m ago"
