"""
Unit tests for confidence scoring.
"""
import os
import sys
from decimal import Decimal

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.config import DetectionConfig  # noqa: E402
from app.services.confidence_scorer import (  # noqa: E402
    amounts_consistent,
    combine_confidence,
    normalize_cycle_hint,
    score_group,
)
from tests.detection_builders import event, group_of, monthly_events  # noqa: E402

MONTHLY_DAYS = ("2025-01-01", "2025-02-01", "2025-03-01")


def _bank_group(amounts, days=MONTHLY_DAYS):
    return group_of([
        event("bank", f"t{i}", "Netflix", amount, day)
        for i, (amount, day) in enumerate(zip(amounts, days))
    ])


def test_consistent_monthly_scores_base() -> None:
    scored = score_group(_bank_group([649, 649, 649]))
    assert scored.billing_cycle == "monthly"
    assert scored.confidence == 0.9
    print("✓ consistent monthly group scores 0.9")


def test_amount_inconsistency_penalty() -> None:
    steady = score_group(_bank_group([649, 649, 649]))
    jumpy = score_group(_bank_group([649, 800, 649]))

    assert jumpy.periodicity.base_confidence == 0.7
    assert jumpy.confidence == 0.55
    assert jumpy.confidence < steady.confidence
    print("✓ inconsistent amounts penalized")


def test_sample_boost_from_four_occurrences() -> None:
    days = ("2025-01-01", "2025-01-31", "2025-03-02", "2025-04-01")
    scored = score_group(_bank_group([649] * 4, days))
    assert scored.confidence == 0.95
    print("✓ four occurrences earn the boost")


def test_boost_is_capped() -> None:
    config = DetectionConfig(sample_boost=0.5)
    assert combine_confidence(0.9, 5, [Decimal("10")], ["bank"], config) == 0.99
    print("✓ boost capped")


def test_penalty_floor() -> None:
    config = DetectionConfig()
    amounts = [Decimal("10"), Decimal("20")]
    assert combine_confidence(0.1, 2, amounts, ["bank"], config) == 0.05
    # The floor never lifts a score that started below it
    assert combine_confidence(0.0, 2, amounts, ["bank"], config) == 0.0
    print("✓ penalty floored at 0.05")


def test_email_reliability_multiplier() -> None:
    group = group_of(monthly_events("email", "m", "Netflix", 649, MONTHLY_DAYS))
    assert score_group(group).confidence == 0.855
    print("✓ email-only groups multiplied by 0.95")


def test_mixed_sources_use_best_multiplier() -> None:
    events = (
        monthly_events("email", "m", "Netflix", 649, MONTHLY_DAYS)
        + monthly_events("bank", "t", "Netflix", 649, MONTHLY_DAYS)
    )
    assert score_group(group_of(events)).confidence == 0.9
    print("✓ corroborated groups keep the best multiplier")


def test_single_event_uses_cycle_hint() -> None:
    group = group_of([
        event("email", "m1", "Spotify", 119, "2025-01-07", billing_cycle="Monthly"),
    ], merchant="spotify")
    scored = score_group(group)
    assert scored.billing_cycle == "monthly"
    assert scored.confidence == 0.0
    print("✓ cycle hint labels single-occurrence groups")


def test_hint_never_overrides_classifier() -> None:
    group = group_of([
        event("email", f"m{i}", "Spotify", 119, day, billing_cycle="yearly")
        for i, day in enumerate(MONTHLY_DAYS)
    ], merchant="spotify")
    assert score_group(group).billing_cycle == "monthly"
    print("✓ classifier cadence wins over hints")


def test_amountless_group_is_inconsistent() -> None:
    group = group_of(monthly_events("email", "m", "Netflix", None, MONTHLY_DAYS))
    scored = score_group(group)
    assert scored.billing_cycle == "monthly"
    assert scored.periodicity.base_confidence == 0.7
    assert not amounts_consistent([], 0.10)
    print("✓ amount-less groups use the inconsistent row")


def test_cycle_hint_normalization() -> None:
    assert normalize_cycle_hint("Annual") == "yearly"
    assert normalize_cycle_hint("one time") == "one-time"
    assert normalize_cycle_hint("fortnightly") is None
    assert normalize_cycle_hint(None) is None
    print("✓ cycle hint normalization")


if __name__ == "__main__":
    test_consistent_monthly_scores_base()
    test_amount_inconsistency_penalty()
    test_sample_boost_from_four_occurrences()
    test_boost_is_capped()
    test_penalty_floor()
    test_email_reliability_multiplier()
    test_mixed_sources_use_best_multiplier()
    test_single_event_uses_cycle_hint()
    test_hint_never_overrides_classifier()
    test_amountless_group_is_inconsistent()
    test_cycle_hint_normalization()
    print("All confidence scorer tests passed.")
