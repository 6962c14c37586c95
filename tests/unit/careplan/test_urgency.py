"""
Calm urgency rules.

Covers:
- Only medication and nutrition ever reach critical
- The critical threshold and supportive wording
- Category rollups and ordering
- Above-fold suppression of extra critical tiles
"""

from datetime import date, datetime, timedelta

import pytest
from hypothesis import given
from hypothesis import strategies as st

from careplan.config import UrgencyConfig
from careplan.domain.models import (
    DailyCareInstance,
    InstanceStatus,
    ItemType,
    TimeWindowLabel,
)
from careplan.services.urgency import (
    ESCALATION_CLASS,
    CategoryItem,
    EscalationClass,
    UrgencyTier,
    UrgencyTone,
    apply_above_fold_constraint,
    apply_above_fold_to_categories,
    calculate_category_urgency,
    category_urgency_for_instances,
    classify_item,
    create_above_fold_state,
    escalation_class,
    resolve_category,
    should_show_overdue_text,
    time_delta_string,
    urgency_sort_key,
)

DUE = datetime(2025, 6, 15, 8, 0)


def late_by(minutes: int) -> datetime:
    return DUE + timedelta(minutes=minutes)


class TestCategories:
    def test_every_item_type_classified(self) -> None:
        assert set(ESCALATION_CLASS) == set(ItemType)

    @pytest.mark.parametrize(
        ("alias", "expected"),
        [
            ("meds", ItemType.MEDICATION),
            ("Meals", ItemType.NUTRITION),
            ("water", ItemType.HYDRATION),
            ("vitals", ItemType.VITALS),
            ("gardening", ItemType.CUSTOM),
        ],
    )
    def test_aliases(self, alias: str, expected: ItemType) -> None:
        assert resolve_category(alias) is expected

    def test_only_meds_and_meals_are_clinical(self) -> None:
        clinical = {t for t in ItemType if escalation_class(t) is EscalationClass.CLINICAL_CRITICAL}
        assert clinical == {ItemType.MEDICATION, ItemType.NUTRITION}


class TestClassifyItem:
    def test_just_under_threshold_is_attention(self) -> None:
        result = classify_item(ItemType.MEDICATION, DUE, late_by(29))
        assert result.tier is UrgencyTier.ATTENTION
        assert result.label == "Due earlier today"
        assert result.minutes_late == 29

    def test_threshold_reaches_critical(self) -> None:
        result = classify_item(ItemType.MEDICATION, DUE, late_by(30))
        assert result.tier is UrgencyTier.CRITICAL
        assert result.label == "Late"
        assert result.tone is UrgencyTone.DANGER
        assert should_show_overdue_text(result)

    def test_partial_minutes_are_floored(self) -> None:
        now = late_by(29) + timedelta(seconds=59)
        assert classify_item(ItemType.MEDICATION, DUE, now).tier is UrgencyTier.ATTENTION

    def test_under_a_minute_late_is_not_overdue(self) -> None:
        result = classify_item(ItemType.MEDICATION, DUE, DUE + timedelta(seconds=30))
        assert result.tier is UrgencyTier.ATTENTION
        assert not result.is_overdue
        assert result.minutes_late == 0
        assert result.label == "Still to do today"

    def test_non_clinical_stays_calm_when_very_late(self) -> None:
        result = classify_item(ItemType.MOOD, DUE, late_by(500))
        assert result.tier is UrgencyTier.ATTENTION
        assert result.label == "Due earlier today"
        assert not should_show_overdue_text(result)

    def test_force_non_critical(self) -> None:
        result = classify_item(ItemType.MEDICATION, DUE, late_by(90), force_non_critical=True)
        assert result.tier is UrgencyTier.ATTENTION

    def test_completed_is_done(self) -> None:
        result = classify_item(ItemType.MEDICATION, DUE, late_by(90), is_completed=True)
        assert (result.tier, result.label) == (UrgencyTier.INFO, "Done")

    @pytest.mark.parametrize("due", [None, "whenever"])
    def test_no_due_time(self, due) -> None:
        assert classify_item(ItemType.CUSTOM, due, DUE).label == "Anytime today"
        optional = classify_item(ItemType.CUSTOM, due, DUE, is_optional=True)
        assert optional.label == "Whenever you're ready"

    def test_due_soon_needs_attention(self) -> None:
        result = classify_item(ItemType.HYDRATION, DUE, DUE - timedelta(minutes=60))
        assert (result.tier, result.label) == (UrgencyTier.ATTENTION, "Still to do today")

    def test_due_later_is_info(self) -> None:
        result = classify_item(ItemType.HYDRATION, DUE, DUE - timedelta(minutes=61))
        assert (result.tier, result.label) == (UrgencyTier.INFO, "Later today")

    def test_clock_string_due(self) -> None:
        assert classify_item("meds", "08:00", late_by(45)).tier is UrgencyTier.CRITICAL

    def test_thresholds_are_configurable(self) -> None:
        strict = UrgencyConfig(critical_overdue_minutes=10)
        assert classify_item("meds", DUE, late_by(10), thresholds=strict).tier is (
            UrgencyTier.CRITICAL
        )

    @given(
        category=st.sampled_from(list(ItemType)),
        minutes=st.integers(min_value=-600, max_value=1440),
    )
    def test_late_wording_only_when_critical(self, category: ItemType, minutes: int) -> None:
        result = classify_item(category, DUE, late_by(minutes))
        assert (result.label == "Late") == (result.tier is UrgencyTier.CRITICAL)
        if escalation_class(category) is not EscalationClass.CLINICAL_CRITICAL:
            assert result.tier is not UrgencyTier.CRITICAL


class TestTimeDelta:
    def test_formats_hours_and_minutes(self) -> None:
        assert time_delta_string(classify_item("meds", DUE, late_by(65))) == "1h 5m ago"
        assert time_delta_string(classify_item("meds", DUE, late_by(5))) == "5m ago"

    def test_none_when_not_overdue(self) -> None:
        assert time_delta_string(classify_item("meds", DUE, DUE)) is None


class TestOrdering:
    def test_tier_then_lateness(self) -> None:
        info = classify_item("water", DUE, DUE - timedelta(hours=3))
        attention = classify_item("water", DUE, late_by(5))
        slightly = classify_item("meds", DUE, late_by(40))
        very = classify_item("meds", DUE, late_by(120))

        ordered = sorted([info, slightly, attention, very], key=urgency_sort_key)
        assert ordered == [very, slightly, attention, info]


class TestCategoryRollup:
    def test_worst_pending_item_wins(self) -> None:
        now = late_by(60)
        items = [
            CategoryItem(due=now + timedelta(hours=3)),
            CategoryItem(due=now - timedelta(minutes=10)),
            CategoryItem(due=DUE),
        ]
        result = calculate_category_urgency("meds", items, now)
        assert result.tier is UrgencyTier.CRITICAL
        assert result.minutes_late == 60

    def test_all_completed_is_complete(self) -> None:
        items = [CategoryItem(due=DUE, is_completed=True)]
        result = calculate_category_urgency("meds", items, late_by(90))
        assert (result.tier, result.label) == (UrgencyTier.INFO, "Complete")

    def test_rollup_from_instances(self) -> None:
        def med(hour: int, status: InstanceStatus) -> DailyCareInstance:
            return DailyCareInstance(
                care_plan_id="plan",
                care_plan_item_id="med",
                patient_id="p1",
                date=date(2025, 6, 15),
                scheduled_time=datetime(2025, 6, 15, hour, 0),
                slot_id=str(hour),
                window_label=TimeWindowLabel.MORNING,
                item_name="Metformin",
                item_type=ItemType.MEDICATION,
                status=status,
            )

        instances = [med(8, InstanceStatus.COMPLETED), med(18, InstanceStatus.PENDING)]
        now = datetime(2025, 6, 15, 12, 0)

        result = category_urgency_for_instances(instances, "meds", now)
        assert result is not None
        assert result.label == "Later today"
        assert category_urgency_for_instances(instances, ItemType.MOOD, now) is None


class TestAboveFold:
    def test_no_critical_tiles_under_critical_next_up(self) -> None:
        critical = classify_item("meds", DUE, late_by(45))
        state = create_above_fold_state(has_critical_next_up=True)

        shown, after = apply_above_fold_constraint(critical, state)

        assert shown.tier is UrgencyTier.ATTENTION
        assert shown.label == "Pending"
        assert shown.suppressed_from_critical
        assert shown.computed_tier is UrgencyTier.CRITICAL
        assert after == state

    def test_cap_allows_one_then_suppresses(self) -> None:
        critical = classify_item("meds", DUE, late_by(45))
        state = create_above_fold_state(has_critical_next_up=False)
        assert state.max_critical_tiles == 1

        displayed, final = apply_above_fold_to_categories([critical, critical], state)

        assert [u.tier for u in displayed] == [UrgencyTier.CRITICAL, UrgencyTier.ATTENTION]
        assert final.critical_tile_count == 1

    def test_non_critical_passes_through(self) -> None:
        calm = classify_item("water", DUE, late_by(45))
        state = create_above_fold_state(has_critical_next_up=True)
        assert apply_above_fold_constraint(calm, state) == (calm, state)

    def test_cap_from_config(self) -> None:
        state = create_above_fold_state(False, UrgencyConfig(max_red_above_fold=2))
        critical = classify_item("meds", DUE, late_by(45))
        displayed, _ = apply_above_fold_to_categories([critical] * 3, state)
        assert [u.tier for u in displayed].count(UrgencyTier.CRITICAL) == 2
