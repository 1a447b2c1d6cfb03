"""
Persistence glue between the detection pipeline and the database.

Usage:
    store = DetectionStore(db, user_id)
    existing = store.load_detections()
    result = run_detection(user_id, raw_events, existing)
    counts = store.apply_run_result(result)
    # creates/updates detected_subscriptions rows in one transaction
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from app.models import DetectedSubscription
from app.services.detection_types import (
    Detection,
    DetectionRunResult,
    DetectionSource,
    DetectionStoreError,
)

logger = logging.getLogger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def sources_to_json(sources) -> List[Dict[str, str]]:
    return [source.to_dict() for source in sorted(sources)]


def sources_from_json(raw) -> frozenset:
    return frozenset(
        DetectionSource(
            source_type=str(item["source_type"]),
            source_record_id=str(item["source_record_id"]),
        )
        for item in (raw or [])
    )


def detection_from_row(row: DetectedSubscription) -> Detection:
    return Detection(
        id=str(row.id),
        user_id=row.user_id,
        name=row.name,
        amount=Decimal(row.amount) if row.amount is not None else None,
        currency=row.currency,
        billing_cycle=row.billing_cycle,
        confidence_score=float(row.confidence_score),
        sources=sources_from_json(row.sources),
        status=row.status,
        merchant_key=row.merchant_key,
        category=row.category,
        next_billing_date=row.next_billing_date,
        description=row.description,
        last_seen_at=_as_utc(row.last_seen_at),
        updated_at=_as_utc(row.updated_at),
    )


class DetectionStore:
    """Loads a user's detections and applies detection run results."""

    def __init__(self, db: Session, user_id: str):
        if not user_id:
            raise ValueError("user_id is required")
        self.db = db
        self.user_id = user_id

    def _query(self):
        return self.db.query(DetectedSubscription).filter(
            DetectedSubscription.user_id == self.user_id
        )

    def load_detections(self) -> List[Detection]:
        """All detections for the user, any status."""
        rows = self._query().order_by(DetectedSubscription.created_at).all()
        return [detection_from_row(row) for row in rows]

    def _get_row(self, detection_id: Optional[str]) -> DetectedSubscription:
        try:
            key = uuid.UUID(str(detection_id))
        except (ValueError, TypeError):
            raise DetectionStoreError(f"Invalid detection id {detection_id!r}")

        row = self._query().filter(DetectedSubscription.id == key).first()
        if row is None:
            raise DetectionStoreError(
                f"Detection {detection_id} not found for user {self.user_id}"
            )
        return row

    def _create(self, detection: Detection) -> DetectedSubscription:
        row = DetectedSubscription(
            user_id=self.user_id,
            name=detection.name[:255],
            merchant_key=detection.merchant_key,
            amount=detection.amount,
            currency=detection.currency,
            billing_cycle=detection.billing_cycle,
            confidence_score=Decimal(str(detection.confidence_score)),
            category=detection.category,
            next_billing_date=detection.next_billing_date,
            description=detection.description,
            sources=sources_to_json(detection.sources),
            status="pending",
            last_seen_at=detection.last_seen_at,
        )
        self.db.add(row)
        return row

    def _update(self, row: DetectedSubscription, detection: Detection) -> None:
        # Status and name belong to the review workflow and are never written here
        row.merchant_key = detection.merchant_key
        row.amount = detection.amount
        row.billing_cycle = detection.billing_cycle
        row.confidence_score = Decimal(str(detection.confidence_score))
        row.category = detection.category
        row.next_billing_date = detection.next_billing_date
        row.description = detection.description
        row.sources = sources_to_json(detection.sources)
        row.last_seen_at = detection.last_seen_at

    def apply_run_result(self, result: DetectionRunResult) -> Dict[str, int]:
        """
        Apply a run's create/update operations in a single transaction.

        Any failure rolls back every operation of the run and re-raises.
        """
        if result.user_id != self.user_id:
            raise DetectionStoreError(
                f"Run result for user {result.user_id} cannot be applied for user {self.user_id}"
            )

        created = 0
        updated = 0
        try:
            for operation in result.operations:
                if operation.action == "create":
                    self._create(operation.detection)
                    created += 1
                elif operation.action == "update":
                    row = self._get_row(operation.detection.id)
                    self._update(row, operation.detection)
                    updated += 1
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.error(
                f"[DETECTION_STORE] Failed to apply run for user {self.user_id}; rolled back",
                exc_info=True,
            )
            raise

        logger.info(
            f"[DETECTION_STORE] Applied run for user {self.user_id}: "
            f"{created} created, {updated} updated"
        )
        return {"created_count": created, "updated_count": updated}
