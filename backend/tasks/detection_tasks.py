"""
Celery tasks for recurring-payment detection scans.
One task run = one user's scan batch: normalize, detect, apply transactionally.
"""
import logging
from typing import Any, Dict, List, Tuple

from redis.exceptions import LockError

from celery_app import celery_app
from app.config import get_lock_timeout_seconds, load_detection_config
from app.database import SessionLocal
from app.integrations.bank_transactions import BankTransactionAdapter
from app.integrations.base import normalize_events
from app.integrations.email_extraction import EmailExtractionAdapter
from app.schemas import DetectionRunSummary, DetectionScanRequest
from app.services.detection_pipeline import run_detection
from app.services.detection_store import DetectionStore
from app.services.detection_types import BatchSizeExceededError, DetectionError, SkippedEvent
from app.services.event_publisher import EventPublisher

logger = logging.getLogger(__name__)

LOCK_RETRY_COUNTDOWN = 30


def _prepare_events(request: DetectionScanRequest) -> Tuple[List[Any], List[SkippedEvent]]:
    """Run collaborator payloads through their adapter; plain events pass as-is."""
    if request.source == "bank":
        return normalize_events(BankTransactionAdapter(user_id=request.user_id), request.records)
    if request.source == "email":
        return normalize_events(EmailExtractionAdapter(user_id=request.user_id), request.records)
    return list(request.records), []


@celery_app.task(bind=True, max_retries=3)
def run_detection_scan(
    self,
    user_id: str,
    records: List[Dict[str, Any]],
    source: str = "events",
):
    """
    Detect recurring payments in one scan batch and persist the result.

    This task:
    1. Rejects oversized batches, then normalizes them through the source adapter
    2. Holds the per-user detection lock for the whole run
    3. Loads existing detections, runs detection, applies the result in one transaction
    4. Publishes the run summary via Redis Pub/Sub

    Args:
        user_id: User ID
        records: Raw records from the collaborator
        source: "bank", "email", or "events" for RawEvent-shaped dicts
    """
    request = DetectionScanRequest(user_id=user_id, source=source, records=records)
    logger.info(
        f"[DETECTION_TASK] Starting {request.source} scan for user {user_id} "
        f"({len(request.records)} records)"
    )

    publisher = EventPublisher()
    lock = publisher.run_lock(user_id, timeout=get_lock_timeout_seconds())
    if not lock.acquire():
        publisher.close()
        logger.info(f"[DETECTION_TASK] Run already in progress for user {user_id}; retrying later")
        raise self.retry(countdown=LOCK_RETRY_COUNTDOWN)

    db = SessionLocal()
    try:
        # Records the adapters drop still count towards the batch limit
        limit = load_detection_config().max_batch_events
        if len(request.records) > limit:
            raise BatchSizeExceededError(len(request.records), limit)

        events, pre_skipped = _prepare_events(request)

        store = DetectionStore(db, user_id)
        result = run_detection(user_id, events, store.load_detections())
        store.apply_run_result(result)

        summary = result.summary()
        summary["skipped_events"] += len(pre_skipped)
        summary = DetectionRunSummary(**summary).model_dump()

        publisher.publish_detection_completed(user_id, summary)
        return summary

    except DetectionError as e:
        # Caller bugs and oversized batches are not transient
        logger.error(f"[DETECTION_TASK] Scan for user {user_id} rejected: {e}")
        publisher.publish_detection_failed(user_id, str(e))
        raise

    except Exception as e:
        logger.error(f"[DETECTION_TASK] Scan for user {user_id} failed: {e}", exc_info=True)
        publisher.publish_detection_failed(user_id, str(e))
        raise self.retry(exc=e, countdown=60)

    finally:
        db.close()
        try:
            lock.release()
        except LockError:
            logger.warning(f"[DETECTION_TASK] Lock for user {user_id} expired before release")
        publisher.close()
