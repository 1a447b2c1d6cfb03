"""
Core data types for recurring-payment detection.

These are plain in-memory values: the detector takes them as arguments and
returns new ones, it never mutates what it was given.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import FrozenSet, List, Literal, Optional, Tuple

from app.schemas import RawEvent, SourceType

BillingCycle = Literal[
    "daily", "weekly", "monthly", "quarterly", "yearly", "one-time", "irregular"
]
DetectionStatus = Literal["pending", "confirmed", "rejected", "imported"]
UpsertAction = Literal["create", "update", "skip"]

BILLING_CYCLES: Tuple[str, ...] = (
    "daily", "weekly", "monthly", "quarterly", "yearly", "one-time", "irregular"
)
PROTECTED_STATUSES = frozenset({"confirmed", "rejected", "imported"})
UNKNOWN_MERCHANT = "unknown"


class DetectionError(Exception):
    """Base class for errors that abort a whole detection run."""


class CrossUserContaminationError(DetectionError):
    """Input records belong to more than one user."""


class BatchSizeExceededError(DetectionError):
    """More raw events than a single run is allowed to process."""

    def __init__(self, event_count: int, limit: int):
        self.event_count = event_count
        self.limit = limit
        super().__init__(
            f"Detection batch of {event_count} raw events exceeds the limit of {limit}; "
            f"split the scan into smaller batches"
        )


class DetectionStoreError(DetectionError):
    """A run result could not be applied to storage."""


@dataclass(frozen=True, order=True)
class DetectionSource:
    source_type: str
    source_record_id: str

    @classmethod
    def from_event(cls, event: RawEvent) -> "DetectionSource":
        return cls(source_type=event.source_type, source_record_id=event.source_record_id)

    def to_dict(self) -> dict:
        return {"source_type": self.source_type, "source_record_id": self.source_record_id}


@dataclass
class CandidateGroup:
    """Provisional cluster of raw events believed to be the same recurring charge."""
    normalized_merchant: str
    currency: str
    events: List[RawEvent] = field(default_factory=list)
    reference_amount: Optional[Decimal] = None  # None for amount-less groups

    @property
    def is_priced(self) -> bool:
        return self.reference_amount is not None

    @property
    def is_unknown(self) -> bool:
        return self.normalized_merchant == UNKNOWN_MERCHANT

    @property
    def amounts(self) -> List[Decimal]:
        return [e.amount for e in self.events if e.amount is not None]

    @property
    def source_types(self) -> FrozenSet[str]:
        return frozenset(e.source_type for e in self.events)

    @property
    def sources(self) -> FrozenSet[DetectionSource]:
        return frozenset(DetectionSource.from_event(e) for e in self.events)

    @property
    def latest_event_at(self) -> Optional[datetime]:
        return self.events[-1].occurred_at if self.events else None


@dataclass(frozen=True)
class PeriodicityResult:
    cadence: BillingCycle
    base_confidence: float
    mean_interval_days: Optional[float] = None
    sample_count: int = 0


@dataclass(frozen=True)
class ScoredGroup:
    group: CandidateGroup
    periodicity: PeriodicityResult
    billing_cycle: BillingCycle
    confidence: float


@dataclass(frozen=True)
class Detection:
    """
    A believed recurring subscription, as persisted by the caller.

    `id` is None until the persistence layer inserts it.
    """
    id: Optional[str]
    user_id: str
    name: str
    amount: Optional[Decimal]
    currency: str
    billing_cycle: BillingCycle
    confidence_score: float
    sources: FrozenSet[DetectionSource] = frozenset()
    status: DetectionStatus = "pending"
    merchant_key: Optional[str] = None
    category: Optional[str] = None
    next_billing_date: Optional[date] = None
    description: Optional[str] = None
    last_seen_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_protected(self) -> bool:
        return self.status in PROTECTED_STATUSES


@dataclass(frozen=True)
class DetectionUpsert:
    action: UpsertAction
    detection: Detection
    reason: Optional[str] = None
    ambiguous_merge: bool = False
    candidate_ids: Tuple[str, ...] = ()
    added_sources: FrozenSet[DetectionSource] = frozenset()


@dataclass(frozen=True)
class SkippedEvent:
    index: int
    reason: str
    source_type: Optional[str] = None
    source_record_id: Optional[str] = None


@dataclass
class DetectionRunResult:
    user_id: str
    operations: List[DetectionUpsert] = field(default_factory=list)
    skipped: List[SkippedEvent] = field(default_factory=list)
    deferred_groups: List[CandidateGroup] = field(default_factory=list)

    def _count(self, action: str) -> int:
        return sum(1 for op in self.operations if op.action == action)

    @property
    def created_count(self) -> int:
        return self._count("create")

    @property
    def updated_count(self) -> int:
        return self._count("update")

    @property
    def skipped_count(self) -> int:
        return self._count("skip")

    @property
    def ambiguous_count(self) -> int:
        return sum(1 for op in self.operations if op.ambiguous_merge)

    @property
    def has_changes(self) -> bool:
        return any(op.action != "skip" for op in self.operations)

    def summary(self) -> dict:
        return {
            "user_id": self.user_id,
            "created_count": self.created_count,
            "updated_count": self.updated_count,
            "unchanged_count": self.skipped_count,
            "ambiguous_count": self.ambiguous_count,
            "skipped_events": len(self.skipped),
            "deferred_groups": len(self.deferred_groups),
        }
