"""
Unit tests for bank and email source adapters.
"""
import os
import sys
from datetime import datetime, timezone
from decimal import Decimal

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.integrations.bank_transactions import BankTransactionAdapter  # noqa: E402
from app.integrations.base import normalize_events, parse_amount, parse_date  # noqa: E402
from app.integrations.email_extraction import EmailExtractionAdapter  # noqa: E402


def _bank_row(**overrides):
    row = {
        "id": "b7f1c2d4-0000-4000-8000-000000000001",
        "transaction_id": "HDFC-88123",
        "transaction_date": "2025-01-05",
        "description": "NACH DEBIT NETFLIX.COM",
        "merchant_name": "NETFLIX.COM",
        "amount": "-649.00",
        "currency": "INR",
        "transaction_type": "debit",
        "category": "Entertainment",
    }
    row.update(overrides)
    return row


def _email_result(**overrides):
    result = {
        "message_id": "18c2f3a9e1",
        "isSubscription": True,
        "emailType": "confirmed_subscription",
        "serviceName": "Netflix",
        "amount": 649,
        "currency": "INR",
        "billingCycle": "monthly",
        "category": "Streaming",
        "confidence": 92,
        "date": "Sun, 05 Jan 2025 10:15:00 +0530",
    }
    result.update(overrides)
    return result


def test_bank_row_to_event() -> None:
    event = BankTransactionAdapter(user_id="user-1").normalize_event(_bank_row())

    assert event.source_type == "bank"
    assert event.source_record_id == "b7f1c2d4-0000-4000-8000-000000000001"
    assert event.raw_merchant_text == "NETFLIX.COM"
    assert event.amount == Decimal("649.00")
    assert event.occurred_at == datetime(2025, 1, 5, tzinfo=timezone.utc)
    assert event.user_id == "user-1"
    assert event.extra["category"] == "Entertainment"
    print("✓ bank row normalized")


def test_bank_credit_is_not_a_charge() -> None:
    adapter = BankTransactionAdapter()
    assert adapter.normalize_event(_bank_row(transaction_type="credit", amount="500")) is None
    assert adapter.normalize_event(_bank_row(transaction_type="income")) is None
    print("✓ credits ignored")


def test_bank_falls_back_to_description() -> None:
    event = BankTransactionAdapter().normalize_event(_bank_row(merchant_name=None))
    assert event.raw_merchant_text == "NACH DEBIT NETFLIX.COM"
    assert "description" not in event.extra
    print("✓ description used when merchant name is missing")


def test_email_result_to_event() -> None:
    event = EmailExtractionAdapter(user_id="user-1").normalize_event(_email_result())

    assert event.source_type == "email"
    assert event.source_record_id == "18c2f3a9e1"
    assert event.amount == Decimal("649")
    assert event.occurred_at == datetime(2025, 1, 5, 4, 45, tzinfo=timezone.utc)
    assert event.extra["billing_cycle"] == "monthly"
    assert event.extra["category"] == "Streaming"
    assert event.extra["extraction_confidence"] == 92
    print("✓ email extraction normalized")


def test_email_non_subscriptions_ignored() -> None:
    adapter = EmailExtractionAdapter()
    assert adapter.normalize_event({"isSubscription": False}) is None
    assert adapter.normalize_event(_email_result(emailType="failed_payment")) is None
    print("✓ non-subscription emails ignored")


def test_email_without_amount() -> None:
    event = EmailExtractionAdapter().normalize_event(_email_result(amount=None))
    assert event.amount is None
    print("✓ amount-less receipts kept")


def test_normalize_events_collects_failures() -> None:
    rows = [
        _email_result(),
        _email_result(message_id="m-2", currency=None),
        _email_result(message_id="m-3", date="not a date"),
        {"isSubscription": False},
        _email_result(message_id="m-5", amount="₹1,299.00"),
    ]
    events, skipped = normalize_events(EmailExtractionAdapter(), rows)

    assert [e.source_record_id for e in events] == ["18c2f3a9e1", "m-5"]
    assert events[1].amount == Decimal("1299.00")
    assert [s.index for s in skipped] == [1, 2, 3]
    assert skipped[2].reason == "not a subscription charge"
    print("✓ batch normalization never raises")


def test_parse_helpers() -> None:
    assert parse_date("2025-01-05T10:00:00Z") == datetime(2025, 1, 5, 10, tzinfo=timezone.utc)
    assert parse_date("05/01/2025") == datetime(2025, 1, 5, tzinfo=timezone.utc)
    assert parse_date("") is None
    assert parse_amount("$9.99") == Decimal("9.99")
    assert parse_amount(None) is None
    print("✓ date and amount parsing")


if __name__ == "__main__":
    test_bank_row_to_event()
    test_bank_credit_is_not_a_charge()
    test_bank_falls_back_to_description()
    test_email_result_to_event()
    test_email_non_subscriptions_ignored()
    test_email_without_amount()
    test_normalize_events_collects_failures()
    test_parse_helpers()
    print("All source adapter tests passed.")
