"""
Builders for raw events, groups and detections used across detection tests.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from app.schemas import RawEvent
from app.services.candidate_grouper import reference_amount_of
from app.services.detection_types import CandidateGroup, Detection, DetectionSource

USER_ID = "user-1"


def at(day: str) -> datetime:
    """'2025-01-05' -> midnight UTC."""
    return datetime.fromisoformat(day).replace(tzinfo=timezone.utc)


def event(
    source_type: str,
    record_id: str,
    merchant: Optional[str],
    amount,
    day: str,
    currency: str = "INR",
    **extra,
) -> RawEvent:
    return RawEvent(
        source_type=source_type,
        source_record_id=record_id,
        raw_merchant_text=merchant,
        amount=Decimal(str(amount)) if amount is not None else None,
        currency=currency,
        occurred_at=at(day),
        user_id=USER_ID,
        extra=extra,
    )


def monthly_events(
    source_type: str,
    prefix: str,
    merchant: str,
    amount,
    days=("2025-01-05", "2025-02-05", "2025-03-05"),
    currency: str = "INR",
    **extra,
):
    return [
        event(source_type, f"{prefix}{i + 1}", merchant, amount, day, currency, **extra)
        for i, day in enumerate(days)
    ]


def group_of(events, merchant: str = "netflix", currency: str = "INR") -> CandidateGroup:
    group = CandidateGroup(normalized_merchant=merchant, currency=currency, events=list(events))
    group.reference_amount = reference_amount_of(group.amounts)
    return group


def source(source_type: str, record_id: str) -> DetectionSource:
    return DetectionSource(source_type=source_type, source_record_id=record_id)


def detection(
    detection_id: str,
    name: str = "Netflix",
    amount="649",
    status: str = "pending",
    confidence: float = 0.9,
    billing_cycle: str = "monthly",
    sources=(),
    merchant_key: Optional[str] = "netflix",
    currency: str = "INR",
    updated_at: Optional[str] = None,
    user_id: str = USER_ID,
) -> Detection:
    return Detection(
        id=detection_id,
        user_id=user_id,
        name=name,
        amount=Decimal(amount) if amount is not None else None,
        currency=currency,
        billing_cycle=billing_cycle,
        confidence_score=confidence,
        sources=frozenset(sources),
        status=status,
        merchant_key=merchant_key,
        updated_at=at(updated_at) if updated_at else None,
    )
