"""
Base adapter interface for detection event sources.
"""
import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from app.schemas import RawEvent, SourceType
from app.services.detection_types import SkippedEvent

logger = logging.getLogger(__name__)

DATE_FORMATS = [
    '%Y-%m-%dT%H:%M:%S.%f%z',  # 2025-01-02T20:48:05.000+0000
    '%Y-%m-%dT%H:%M:%S%z',     # 2025-01-02T20:48:05+05:30
    '%Y-%m-%dT%H:%M:%S.%f',    # 2025-01-02T20:48:05.123
    '%Y-%m-%dT%H:%M:%S',       # 2025-01-02T20:48:05
    '%Y-%m-%d %H:%M:%S',       # 2025-01-02 20:48:05
    '%Y-%m-%d',                # 2025-01-02
    '%d/%m/%Y %H:%M:%S',       # 02/01/2025 20:48:05
    '%d/%m/%Y',                # 02/01/2025
    '%d-%m-%Y',                # 02-01-2025
    '%d.%m.%Y',                # 02.01.2025
    '%a, %d %b %Y %H:%M:%S %z',  # Thu, 02 Jan 2025 20:48:05 +0000 (email Date header)
]


def parse_date(value: Any) -> Optional[datetime]:
    """Parse a date/datetime in any of the supported formats; naive results are UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith('Z'):
            text = text[:-1] + '+0000'
        parsed = None
        for fmt in DATE_FORMATS:
            try:
                parsed = datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
        if parsed is None:
            return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_amount(value: Any) -> Optional[Decimal]:
    """Parse an amount, tolerating currency symbols and thousands separators."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    text = str(value).replace(',', '').replace('₹', '').replace('€', '')
    text = text.replace('$', '').replace('£', '').strip()
    if not text:
        return None
    try:
        return Decimal(text)
    except InvalidOperation:
        raise ValueError(f"Unparseable amount {value!r}")


class EventSourceAdapter(ABC):
    """Abstract base class for collaborators feeding raw events into detection."""

    source_type: SourceType

    @abstractmethod
    def normalize_event(self, raw: dict) -> Optional[RawEvent]:
        """
        Convert a provider-specific record to a RawEvent.

        Returns None for records that are valid but can never be a
        subscription charge. Raises ValueError/ValidationError for malformed
        records.
        """
        pass


def normalize_events(
    adapter: EventSourceAdapter,
    rows: Iterable[dict],
) -> Tuple[List[RawEvent], List[SkippedEvent]]:
    """Normalize a batch of records, collecting failures instead of raising."""
    events: List[RawEvent] = []
    skipped: List[SkippedEvent] = []

    for index, row in enumerate(rows):
        try:
            event = adapter.normalize_event(row)
        except (ValidationError, ValueError, TypeError, AttributeError) as e:
            reason = f"malformed {adapter.source_type} record: {e}"
            logger.warning(f"[DETECTION_INGEST] Skipping record {index}: {reason}")
            skipped.append(SkippedEvent(index=index, reason=reason, source_type=adapter.source_type))
            continue

        if event is None:
            skipped.append(SkippedEvent(
                index=index,
                reason="not a subscription charge",
                source_type=adapter.source_type,
            ))
            continue
        events.append(event)

    return events, skipped
