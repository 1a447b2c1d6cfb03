"""
Partition raw events into candidate groups by merchant identity and amount.

Grouping key: (normalized merchant, currency, amount bucket). Buckets are
built greedily in chronological order: the first amount seen for a merchant
anchors a bucket, later amounts join the first bucket whose anchor is within
tolerance, otherwise they anchor a new one.
"""
import logging
import statistics
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from app.config import DetectionConfig, load_detection_config
from app.schemas import RawEvent
from app.services.detection_types import UNKNOWN_MERCHANT, CandidateGroup
from app.services.merchant_normalizer import normalize_merchant

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def reference_amount_of(amounts: Sequence[Decimal]) -> Optional[Decimal]:
    """Median of the amounts, rounded to cents. None when there are no amounts."""
    if not amounts:
        return None
    return Decimal(statistics.median(amounts)).quantize(CENT, rounding=ROUND_HALF_UP)


def within_tolerance(amount: Decimal, anchor: Decimal, tolerance: float) -> bool:
    if anchor == 0:
        return amount == 0
    return abs(amount - anchor) <= abs(anchor) * Decimal(str(tolerance))


def chronological(events: Sequence[RawEvent]) -> List[RawEvent]:
    return sorted(
        events,
        key=lambda e: (e.occurred_at, e.source_type, e.source_record_id),
    )


def group_events(
    events: Sequence[RawEvent],
    config: Optional[DetectionConfig] = None,
) -> List[CandidateGroup]:
    """
    Group one user's raw events into candidate groups.

    Every event ends up in exactly one group; single-event groups are kept.
    Events without merchant text each get their own "unknown" group.
    """
    config = config or load_detection_config()

    groups: List[CandidateGroup] = []
    # (merchant, currency) -> [(anchor_amount, group)]
    priced_buckets: Dict[Tuple[str, str], List[Tuple[Decimal, CandidateGroup]]] = {}
    unpriced: Dict[Tuple[str, str], CandidateGroup] = {}

    for event in chronological(events):
        merchant = normalize_merchant(event.raw_merchant_text)

        if merchant == UNKNOWN_MERCHANT:
            groups.append(CandidateGroup(
                normalized_merchant=UNKNOWN_MERCHANT,
                currency=event.currency,
                events=[event],
            ))
            continue

        if event.amount is None:
            key = (merchant, event.currency)
            group = unpriced.get(key)
            if group is None:
                group = CandidateGroup(normalized_merchant=merchant, currency=event.currency)
                unpriced[key] = group
                groups.append(group)
            group.events.append(event)
            continue

        buckets = priced_buckets.setdefault((merchant, event.currency), [])
        target: Optional[CandidateGroup] = None
        for anchor, group in buckets:
            if within_tolerance(event.amount, anchor, config.amount_bucket_tolerance):
                target = group
                break

        if target is None:
            target = CandidateGroup(normalized_merchant=merchant, currency=event.currency)
            buckets.append((event.amount, target))
            groups.append(target)
        target.events.append(event)

    for group in groups:
        group.reference_amount = reference_amount_of(group.amounts)

    logger.debug(
        f"[DETECTION_GROUPER] {len(events)} events -> {len(groups)} candidate groups"
    )
    return groups


def merge_groups(groups: Sequence[CandidateGroup]) -> CandidateGroup:
    """
    Combine several candidate groups into one.

    The merchant key of the largest group is kept (earliest first on ties);
    events are de-duplicated by source record and kept in chronological order.
    """
    if len(groups) == 1:
        return groups[0]

    _, primary = max(enumerate(groups), key=lambda item: (len(item[1].events), -item[0]))
    seen = set()
    events: List[RawEvent] = []
    for event in chronological([e for g in groups for e in g.events]):
        key = (event.source_type, event.source_record_id)
        if key in seen:
            continue
        seen.add(key)
        events.append(event)

    merged = CandidateGroup(
        normalized_merchant=primary.normalized_merchant,
        currency=primary.currency,
        events=events,
    )
    merged.reference_amount = reference_amount_of(merged.amounts)
    return merged
