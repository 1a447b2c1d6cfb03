"""
Cadence classification from irregular event timestamps.

The day windows are the fixed legacy ones (no calendar-month or leap-year
adjustment). The mean of all consecutive intervals is used, so with three or
more occurrences a single late or early charge is averaged out.
"""
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from app.schemas import RawEvent
from app.services.detection_types import PeriodicityResult

# cadence -> (min_days, max_days), inclusive
CADENCE_WINDOWS: Dict[str, Tuple[int, int]] = {
    'weekly': (6, 8),
    'monthly': (28, 32),
    'quarterly': (88, 95),
    'yearly': (358, 370),
}

# cadence -> (confidence when amounts are consistent, confidence otherwise)
CADENCE_CONFIDENCE: Dict[str, Tuple[float, float]] = {
    'weekly': (0.85, 0.65),
    'monthly': (0.9, 0.7),
    'quarterly': (0.85, 0.65),
    'yearly': (0.9, 0.7),
}

# Fixed baseline for an established but unrecognised cadence
IRREGULAR_CONFIDENCE = 0.5


def occurrence_timestamps(events: Iterable[RawEvent]) -> List[datetime]:
    """
    Sorted timestamps of distinct occurrences.

    Events on the same calendar day are one occurrence: the same charge
    re-ingested, or seen by both the bank feed and a receipt email (which
    may not carry an amount).
    """
    seen = set()
    timestamps: List[datetime] = []
    for event in sorted(events, key=lambda e: e.occurred_at):
        day = event.occurred_at.date()
        if day in seen:
            continue
        seen.add(day)
        timestamps.append(event.occurred_at)
    return timestamps


def interval_days(timestamps: Sequence[datetime]) -> List[int]:
    ordered = sorted(timestamps)
    return [
        (ordered[i].date() - ordered[i - 1].date()).days
        for i in range(1, len(ordered))
    ]


def match_cadence(mean_interval: float) -> Optional[str]:
    """Cadence whose window contains the mean interval; nearest window center wins."""
    best: Optional[str] = None
    best_distance = float('inf')
    for cadence, (low, high) in CADENCE_WINDOWS.items():
        if low <= mean_interval <= high:
            distance = abs(mean_interval - (low + high) / 2)
            if distance < best_distance:
                best = cadence
                best_distance = distance
    return best


def classify_periodicity(
    timestamps: Sequence[datetime],
    amount_consistent: bool,
) -> PeriodicityResult:
    """
    Classify the cadence of one candidate group.

    Args:
        timestamps: occurrence timestamps (any order, duplicates allowed)
        amount_consistent: whether every amount is within tolerance of the median

    Returns:
        PeriodicityResult with cadence and base confidence. Fewer than two
        timestamps cannot establish a cycle: irregular with confidence 0.0.
    """
    if len(timestamps) < 2:
        return PeriodicityResult(
            cadence='irregular',
            base_confidence=0.0,
            mean_interval_days=None,
            sample_count=len(timestamps),
        )

    intervals = interval_days(timestamps)
    mean_interval = sum(intervals) / len(intervals)

    cadence = match_cadence(mean_interval)
    if cadence is None:
        return PeriodicityResult(
            cadence='irregular',
            base_confidence=IRREGULAR_CONFIDENCE,
            mean_interval_days=mean_interval,
            sample_count=len(timestamps),
        )

    consistent_conf, inconsistent_conf = CADENCE_CONFIDENCE[cadence]
    return PeriodicityResult(
        cadence=cadence,
        base_confidence=consistent_conf if amount_consistent else inconsistent_conf,
        mean_interval_days=mean_interval,
        sample_count=len(timestamps),
    )
