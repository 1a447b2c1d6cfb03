"""
Email extraction adapter.

Maps the structured result of AI-assisted email parsing (one object per
scanned message) to detection events. Extraction hints (billing cycle,
category, confidence) travel in RawEvent.extra; detection treats them as
auxiliary signal only.
"""
from typing import Optional

from app.integrations.base import EventSourceAdapter, parse_amount, parse_date
from app.schemas import RawEvent

# Email types that can never evidence an active subscription charge
NON_CHARGE_EMAIL_TYPES = {"failed_payment"}


class EmailExtractionAdapter(EventSourceAdapter):
    """Adapter for email extraction results."""

    source_type = "email"

    def __init__(self, user_id: Optional[str] = None, default_currency: Optional[str] = None):
        self.user_id = user_id
        self.default_currency = default_currency

    def normalize_event(self, raw: dict) -> Optional[RawEvent]:
        if raw.get('isSubscription') is False:
            return None
        if raw.get('emailType') in NON_CHARGE_EMAIL_TYPES:
            return None

        record_id = raw.get('message_id') or raw.get('messageId') or raw.get('id')
        if not record_id:
            raise ValueError("email extraction has no message id")

        received_at = parse_date(raw.get('date') or raw.get('receivedAt'))
        if received_at is None:
            raise ValueError(f"unparseable email date in {record_id}")

        extra = {}
        if raw.get('billingCycle'):
            extra['billing_cycle'] = raw['billingCycle']
        if raw.get('category'):
            extra['category'] = raw['category']
        if raw.get('confidence') is not None:
            extra['extraction_confidence'] = raw['confidence']
        if raw.get('emailType'):
            extra['email_type'] = raw['emailType']
        if raw.get('nextBillingDate'):
            extra['next_billing_date'] = raw['nextBillingDate']

        return RawEvent(
            source_type=self.source_type,
            source_record_id=str(record_id),
            raw_merchant_text=raw.get('serviceName'),
            amount=parse_amount(raw.get('amount')),
            currency=raw.get('currency') or self.default_currency,
            occurred_at=received_at,
            user_id=raw.get('user_id') or self.user_id,
            extra=extra,
        )
