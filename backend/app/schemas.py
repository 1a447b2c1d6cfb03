from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional
import re

SourceType = Literal["email", "bank", "sms"]

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


# Raw Event Schemas
class RawEvent(BaseModel):
    """
    One observed payment-like occurrence handed over by an email/bank/sms collaborator.

    Validated once at the boundary; the detector treats it as immutable.
    """
    source_type: SourceType
    source_record_id: str = Field(min_length=1)
    raw_merchant_text: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: str
    occurred_at: datetime
    user_id: Optional[str] = None
    extra: Dict[str, Any] = {}

    model_config = ConfigDict(frozen=True)

    @field_validator("source_record_id", mode="before")
    @classmethod
    def _strip_record_id(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("currency", mode="before")
    @classmethod
    def _normalize_currency(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().upper()
            if not _CURRENCY_RE.match(value):
                raise ValueError(f"currency must be a 3-letter ISO 4217 code, got {value!r}")
        return value

    @field_validator("amount", mode="after")
    @classmethod
    def _normalize_amount(cls, value: Optional[Decimal]) -> Optional[Decimal]:
        if value is None:
            return None
        if not value.is_finite():
            raise ValueError("amount must be a finite number")
        # Debits arrive negative from banks; zero means "no price found".
        value = abs(value)
        if value == 0:
            return None
        return value

    @field_validator("occurred_at", mode="before")
    @classmethod
    def _coerce_date(cls, value: Any) -> Any:
        if isinstance(value, date) and not isinstance(value, datetime):
            return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
        if isinstance(value, str) and len(value.strip()) == 10:
            parsed = date.fromisoformat(value.strip())
            return datetime(parsed.year, parsed.month, parsed.day, tzinfo=timezone.utc)
        return value

    @field_validator("occurred_at", mode="after")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# Detection Schemas
class DetectionScanRequest(BaseModel):
    """Payload a scan job hands to the detection worker."""
    user_id: str = Field(min_length=1)
    source: Literal["email", "bank", "events"] = "events"
    records: List[Dict[str, Any]] = []


class DetectionRunSummary(BaseModel):
    user_id: str
    created_count: int
    updated_count: int
    unchanged_count: int
    ambiguous_count: int
    skipped_events: int
    deferred_groups: int
