"""
Recurring-payment detection pipeline.

run_detection() is the single entry point: it validates one user's raw
events, groups them, classifies and scores each group, deduplicates across
sources and against the user's existing detections, and returns the upsert
operations to apply. It performs no I/O; persisting the result is the
caller's job (see detection_store).
"""
import logging
from collections.abc import Mapping
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from app.config import DetectionConfig, load_detection_config
from app.schemas import RawEvent
from app.services.candidate_grouper import group_events
from app.services.confidence_scorer import score_group
from app.services.detection_deduplicator import cluster_scored_groups, resolve_detections
from app.services.detection_types import (
    BatchSizeExceededError,
    CrossUserContaminationError,
    Detection,
    DetectionRunResult,
    SkippedEvent,
)

logger = logging.getLogger(__name__)


def _describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ())) or "record"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


def _peek(item: Any, key: str) -> Optional[str]:
    if isinstance(item, Mapping):
        value = item.get(key)
        return str(value) if value is not None else None
    return None


def validate_events(
    user_id: str,
    raw_events: Sequence[Any],
) -> Tuple[List[RawEvent], List[SkippedEvent]]:
    """
    Validate a batch of raw events for one user.

    Malformed records are skipped with a reason, never raised. A record that
    names a different user aborts the run with CrossUserContaminationError.
    """
    events: List[RawEvent] = []
    skipped: List[SkippedEvent] = []
    seen = set()

    for index, item in enumerate(raw_events):
        if isinstance(item, RawEvent):
            event = item
        elif isinstance(item, Mapping):
            try:
                event = RawEvent.model_validate(dict(item))
            except ValidationError as e:
                skipped.append(SkippedEvent(
                    index=index,
                    reason=f"invalid record: {_describe_validation_error(e)}",
                    source_type=_peek(item, "source_type"),
                    source_record_id=_peek(item, "source_record_id"),
                ))
                continue
        else:
            skipped.append(SkippedEvent(
                index=index,
                reason=f"unsupported record type {type(item).__name__}",
            ))
            continue

        if event.user_id is not None and event.user_id != user_id:
            raise CrossUserContaminationError(
                f"Raw event {index} ({event.source_type}:{event.source_record_id}) belongs to "
                f"user {event.user_id}, not {user_id}"
            )

        key = (event.source_type, event.source_record_id)
        if key in seen:
            skipped.append(SkippedEvent(
                index=index,
                reason="duplicate source record in batch",
                source_type=event.source_type,
                source_record_id=event.source_record_id,
            ))
            continue
        seen.add(key)
        events.append(event)

    return events, skipped


def _check_existing_owner(user_id: str, existing: Iterable[Detection]) -> None:
    foreign = sorted({d.user_id for d in existing if d.user_id != user_id})
    if foreign:
        raise CrossUserContaminationError(
            f"Existing detections for user(s) {foreign} passed to a run for user {user_id}"
        )


def run_detection(
    user_id: str,
    raw_events: Iterable[Any],
    existing_detections: Iterable[Detection] = (),
    config: Optional[DetectionConfig] = None,
) -> DetectionRunResult:
    """
    Detect recurring payments in one user's scan batch.

    Args:
        user_id: owner of every event and existing detection
        raw_events: RawEvent instances or plain dict payloads
        existing_detections: the user's persisted detections, any status
        config: detection thresholds (defaults to the environment config)

    Returns:
        DetectionRunResult with one create/update/skip operation per surfaced
        cluster, the skipped records and the groups kept back for lack of
        evidence.

    Raises:
        ValueError: user_id is empty
        BatchSizeExceededError: more events than config.max_batch_events
        CrossUserContaminationError: any input belongs to another user
    """
    if not user_id:
        raise ValueError("user_id is required")

    config = config or load_detection_config()
    raw_events = list(raw_events)
    existing = list(existing_detections)

    if len(raw_events) > config.max_batch_events:
        raise BatchSizeExceededError(len(raw_events), config.max_batch_events)

    _check_existing_owner(user_id, existing)

    logger.info(
        f"[DETECTION_PIPELINE] Starting run for user {user_id}: "
        f"{len(raw_events)} raw events, {len(existing)} existing detections"
    )

    events, skipped = validate_events(user_id, raw_events)
    for entry in skipped:
        logger.warning(f"[DETECTION_PIPELINE] Skipped event {entry.index}: {entry.reason}")

    groups = group_events(events, config)
    scored = [score_group(group, config) for group in groups]
    for item in scored:
        logger.debug(
            f"[DETECTION_PIPELINE] Group '{item.group.normalized_merchant}' "
            f"{item.group.currency} {item.group.reference_amount}: {len(item.group.events)} events, "
            f"{item.billing_cycle} @ {item.confidence}"
        )

    clusters = cluster_scored_groups(scored, config)
    outcome = resolve_detections(clusters, existing, user_id, config)

    result = DetectionRunResult(
        user_id=user_id,
        operations=outcome.operations,
        skipped=skipped,
        deferred_groups=outcome.deferred,
    )

    logger.info(
        f"[DETECTION_PIPELINE] Finished run for user {user_id}: "
        f"{result.created_count} created, {result.updated_count} updated, "
        f"{result.skipped_count} unchanged, {result.ambiguous_count} ambiguous, "
        f"{len(skipped)} skipped events, {len(outcome.deferred)} deferred groups"
    )
    return result
