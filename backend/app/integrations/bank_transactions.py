"""
Bank transaction adapter.
Turns synced bank transaction rows into detection events.
"""
from typing import Optional

from app.integrations.base import EventSourceAdapter, parse_amount, parse_date
from app.schemas import RawEvent


class BankTransactionAdapter(EventSourceAdapter):
    """Adapter for bank transaction rows (aggregator sync or statement import)."""

    source_type = "bank"

    def __init__(self, user_id: Optional[str] = None, default_currency: Optional[str] = None):
        """
        Args:
            user_id: owner stamped on every event (checked by the pipeline)
            default_currency: currency of the connected account, used when a row has none
        """
        self.user_id = user_id
        self.default_currency = default_currency

    def normalize_event(self, raw: dict) -> Optional[RawEvent]:
        """Convert a bank transaction row to a RawEvent; credits yield None."""
        record_id = raw.get('id') or raw.get('transaction_id') or raw.get('external_id')
        if not record_id:
            raise ValueError("bank transaction has no id")

        amount = parse_amount(raw.get('amount'))
        transaction_type = str(raw.get('transaction_type') or '').lower()
        if transaction_type in ('credit', 'income', 'revenue'):
            return None

        booked_at = parse_date(
            raw.get('transaction_date') or raw.get('booked_at') or raw.get('date')
        )
        if booked_at is None:
            raise ValueError(f"unparseable transaction date in {record_id}")

        merchant = raw.get('merchant_name') or raw.get('merchant') or raw.get('description')

        extra = {}
        if raw.get('category'):
            extra['category'] = raw['category']
        if raw.get('description') and raw.get('description') != merchant:
            extra['description'] = raw['description']

        return RawEvent(
            source_type=self.source_type,
            source_record_id=str(record_id),
            raw_merchant_text=merchant,
            amount=amount,
            currency=raw.get('currency') or self.default_currency,
            occurred_at=booked_at,
            user_id=raw.get('user_id') or self.user_id,
            extra=extra,
        )
