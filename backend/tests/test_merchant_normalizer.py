"""
Unit tests for merchant normalization, fuzzy similarity and categorization.
"""
import os
import sys
from datetime import date

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.services.merchant_categorizer import (  # noqa: E402
    categorize_merchant,
    next_billing_date,
    resolve_category,
)
from app.services.merchant_normalizer import normalize_merchant, pick_display_name  # noqa: E402
from app.services.text_similarity import is_same_merchant, merchant_similarity  # noqa: E402
from tests.detection_builders import event  # noqa: E402


def test_normalize_strips_domains_regions_and_legal_suffixes() -> None:
    assert normalize_merchant("NETFLIX.COM") == "netflix"
    assert normalize_merchant("Netflix India") == "netflix"
    assert normalize_merchant("Amazon Prime Pvt Ltd") == "amazon prime"
    assert normalize_merchant("  Spotify   AB ") == "spotify"
    print("✓ domains, regions and legal suffixes stripped")


def test_normalize_strips_transaction_noise() -> None:
    assert normalize_merchant("POS 4312XXXX SPOTIFY AB 12/03") == "spotify"
    assert normalize_merchant("UPI/NETFLIX/REF 302918273645") == "netflix"
    assert normalize_merchant("NACH DEBIT Groww Invest 2025-01-05") == "groww invest"
    print("✓ reference numbers, dates and rails stripped")


def test_brands_starting_with_digits_survive() -> None:
    assert normalize_merchant("1Password") == "1password"
    assert normalize_merchant("1PASSWORD.COM") == "1password"
    assert normalize_merchant("24HourFitness") == "24hourfitness"
    assert normalize_merchant("7digital") == "7digital"
    assert normalize_merchant("NETFLIX 8F3K2L9Q") == "netflix"
    print("✓ digit-led brand names kept, mixed ids dropped")


def test_normalize_is_deterministic() -> None:
    raw = "YouTube Premium Subscription - Order #A1B2C3D4"
    assert normalize_merchant(raw) == normalize_merchant(raw)
    assert normalize_merchant(raw) == "youtube premium"
    print("✓ normalization is deterministic")


def test_empty_text_is_unknown() -> None:
    assert normalize_merchant(None) == "unknown"
    assert normalize_merchant("   ") == "unknown"
    assert normalize_merchant("PAYMENT 123456") == "unknown"
    print("✓ empty merchant text maps to unknown")


def test_display_name_prefers_most_frequent_then_latest() -> None:
    assert pick_display_name(["NETFLIX.COM", "Netflix", "Netflix"]) == "Netflix"
    assert pick_display_name(["NETFLIX.COM", "Netflix India"]) == "Netflix India"
    assert pick_display_name([None, ""]) == "Unknown Subscription"
    print("✓ display name choice")


def test_similarity_is_symmetric() -> None:
    pairs = [
        ("youtube premium", "youtubepremium"),
        ("spotify", "spotfy"),
        ("netflix", "disney hotstar"),
    ]
    for a, b in pairs:
        assert merchant_similarity(a, b) == merchant_similarity(b, a)
    print("✓ similarity is symmetric")


def test_similarity_threshold() -> None:
    assert is_same_merchant("youtube premium", "youtubepremium", 0.85)
    assert is_same_merchant("spotify", "spotfy", 0.85)
    assert not is_same_merchant("netflix", "netflix premium", 0.85)
    assert not is_same_merchant("hotstar", "disney hotstar", 0.85)
    print("✓ similarity threshold")


def test_unknown_never_matches() -> None:
    assert merchant_similarity("unknown", "unknown") == 0.0
    assert merchant_similarity("unknown", "netflix") == 0.0
    print("✓ unknown never matches")


def test_categorize_merchant() -> None:
    assert categorize_merchant("Netflix India") == "Streaming"
    assert categorize_merchant("Spotify") == "Music"
    assert categorize_merchant("cult.fit") == "Fitness"
    assert categorize_merchant("Groww SIP") == "Investment"
    assert categorize_merchant("Acme Widgets") == "Other"
    assert categorize_merchant(None) == "Other"
    print("✓ keyword categories")


def test_category_hint_wins() -> None:
    events = [
        event("email", "m1", "Notion", 8, "2025-01-01", "USD", category="Software"),
        event("email", "m2", "Notion", 8, "2025-02-01", "USD", category="Software"),
        event("bank", "t1", "Notion", 8, "2025-02-01", "USD"),
    ]
    assert resolve_category(events, "Notion") == "Software"
    assert resolve_category(events[2:], "Notion") == "Productivity"
    print("✓ extraction category hint preferred")


def test_next_billing_date() -> None:
    assert next_billing_date(date(2025, 1, 31), "monthly") == date(2025, 2, 28)
    assert next_billing_date(date(2025, 1, 5), "weekly") == date(2025, 1, 12)
    assert next_billing_date(date(2025, 11, 15), "quarterly") == date(2026, 2, 15)
    assert next_billing_date(date(2024, 2, 29), "yearly") == date(2025, 2, 28)
    assert next_billing_date(date(2025, 1, 5), "irregular") is None
    assert next_billing_date(None, "monthly") is None
    print("✓ next billing date projection")


if __name__ == "__main__":
    test_normalize_strips_domains_regions_and_legal_suffixes()
    test_normalize_strips_transaction_noise()
    test_brands_starting_with_digits_survive()
    test_normalize_is_deterministic()
    test_empty_text_is_unknown()
    test_display_name_prefers_most_frequent_then_latest()
    test_similarity_is_symmetric()
    test_similarity_threshold()
    test_unknown_never_matches()
    test_categorize_merchant()
    test_category_hint_wins()
    test_next_billing_date()
    print("All merchant normalization tests passed.")
