"""
Confidence scoring for candidate groups.

final = base (cadence table)
        + sample boost when there are enough distinct occurrences (capped)
        - spread penalty when amounts differ too much (floored)
        * source reliability (best source wins)
clamped to [0, 1] and rounded to 4 decimals so repeated runs compare equal.
"""
import statistics
from collections import Counter
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from app.config import DetectionConfig, load_detection_config
from app.services.detection_types import BILLING_CYCLES, CandidateGroup, ScoredGroup
from app.services.periodicity_classifier import classify_periodicity, occurrence_timestamps

_CYCLE_SYNONYMS = {
    'day': 'daily',
    'week': 'weekly',
    'month': 'monthly',
    'quarter': 'quarterly',
    'annual': 'yearly',
    'annually': 'yearly',
    'year': 'yearly',
    'onetime': 'one-time',
    'one_time': 'one-time',
    'once': 'one-time',
}


def amounts_consistent(amounts: Sequence[Decimal], tolerance: float) -> bool:
    """True when every amount is within tolerance of the median. No amounts -> False."""
    if not amounts:
        return False
    median = statistics.median(amounts)
    limit = abs(median) * Decimal(str(tolerance))
    return all(abs(amount - median) <= limit for amount in amounts)


def amount_spread_exceeds(amounts: Sequence[Decimal], threshold: float) -> bool:
    """True when some pair of amounts differs by more than threshold (relative to the smaller)."""
    if len(amounts) < 2:
        return False
    low, high = min(amounts), max(amounts)
    if low <= 0:
        return high > low
    return (high - low) / low > Decimal(str(threshold))


def source_multiplier(source_types: Iterable[str], config: DetectionConfig) -> float:
    multipliers = [config.reliability_for(t) for t in source_types]
    return max(multipliers) if multipliers else 1.0


def normalize_cycle_hint(value: object) -> Optional[str]:
    if not isinstance(value, str):
        return None
    cleaned = value.strip().lower().replace(' ', '-')
    cleaned = _CYCLE_SYNONYMS.get(cleaned, cleaned)
    return cleaned if cleaned in BILLING_CYCLES else None


def billing_cycle_hint(group: CandidateGroup) -> Optional[str]:
    """Most frequent billing-cycle hint from extraction payloads; latest wins ties."""
    hints = []
    for event in group.events:
        hint = normalize_cycle_hint(
            event.extra.get('billing_cycle', event.extra.get('billingCycle'))
        )
        if hint:
            hints.append(hint)
    if not hints:
        return None
    counts = Counter(hints)
    top = max(counts.values())
    return next(h for h in reversed(hints) if counts[h] == top)


def combine_confidence(
    base_confidence: float,
    sample_count: int,
    amounts: Sequence[Decimal],
    source_types: Iterable[str],
    config: DetectionConfig,
) -> float:
    confidence = base_confidence

    if sample_count >= config.sample_boost_min_events:
        confidence = min(confidence + config.sample_boost, config.confidence_cap)

    if amount_spread_exceeds(amounts, config.amount_spread_threshold):
        # The floor never lifts a score that was already below it
        confidence = max(confidence - config.amount_spread_penalty,
                         min(confidence, config.confidence_floor))

    confidence *= source_multiplier(source_types, config)

    return round(min(1.0, max(0.0, confidence)), 4)


def score_group(
    group: CandidateGroup,
    config: Optional[DetectionConfig] = None,
) -> ScoredGroup:
    """Classify the group's cadence and compute its final confidence."""
    config = config or load_detection_config()

    amounts = group.amounts
    timestamps = occurrence_timestamps(group.events)
    periodicity = classify_periodicity(
        timestamps,
        amount_consistent=amounts_consistent(amounts, config.amount_consistency_tolerance),
    )

    confidence = combine_confidence(
        base_confidence=periodicity.base_confidence,
        sample_count=periodicity.sample_count,
        amounts=amounts,
        source_types=group.source_types,
        config=config,
    )

    billing_cycle = periodicity.cadence
    if periodicity.sample_count < 2:
        billing_cycle = billing_cycle_hint(group) or billing_cycle

    return ScoredGroup(
        group=group,
        periodicity=periodicity,
        billing_cycle=billing_cycle,
        confidence=confidence,
    )
