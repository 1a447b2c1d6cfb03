"""
Merchant-name canonicalization for recurring-payment detection.

The normalized form is the grouping and dedup key, so it must be pure and
deterministic: the same raw text always produces the same key.

    "NETFLIX.COM"                     -> "netflix"
    "Netflix India"                   -> "netflix"
    "POS 4312XXXX SPOTIFY AB 12/03"   -> "spotify"
    "Amazon Prime Pvt Ltd"            -> "amazon prime"
"""
import re
from collections import Counter
from typing import Iterable, Optional

from app.services.detection_types import UNKNOWN_MERCHANT

# Removed before punctuation is stripped (they rely on punctuation)
_RAW_NOISE_PATTERNS = [
    r'\S+@\S+',                                     # email addresses / UPI handles
    r'https?://\S+',                                # URLs
    r'\bwww\.',                                     # www prefix
    r'\.(?:com|net|org|io|tv|in|co\.in|co\.uk|co)\b',  # domain suffixes
    r'\d{1,2}[-/.]\d{1,2}[-/.]\d{2,4}',             # dates (DD/MM/YYYY)
    r'\d{4}[-/.]\d{1,2}[-/.]\d{1,2}',               # ISO dates
    r'\b\d{1,2}/\d{2}\b',                           # short dates (12/03)
    r'\b(?:ref|refno|txn|txnid|utr|rrn|order|invoice|inv|id|no|nr)(?:[.:#\s-]+|(?=\d))[a-z0-9-]*\d[a-z0-9-]*',  # reference numbers
    # alphanumeric transaction ids: 6+ chars with 3+ digits, or digits in 2+ runs
    # ("1password", "24hourfitness" and "7digital" are brands, not ids)
    r'\b(?=[a-z0-9]{6,}\b)(?:[a-z]*\d){3}[a-z0-9]*\b',
    r'\b(?=[a-z0-9]{6,}\b)[a-z]*\d+[a-z]+\d[a-z0-9]*\b',
    r'\b\d{4,}\b',                                  # long digit runs
    r'\bx{2,}\d*\b',                               # masked card numbers (XXXX1234)
]

# Whole tokens dropped after punctuation is stripped
_NOISE_TOKENS = {
    # legal suffixes
    'pvt', 'private', 'ltd', 'limited', 'inc', 'llc', 'llp', 'gmbh', 'bv', 'nv',
    'ab', 'as', 'sa', 'sarl', 'plc', 'corp', 'corporation', 'co', 'company',
    # regional brand suffixes
    'india', 'in', 'ind', 'us', 'usa', 'uk', 'eu', 'intl', 'international', 'global',
    # payment rail and billing noise
    'pos', 'upi', 'nach', 'ach', 'ecs', 'imps', 'neft', 'si', 'emandate', 'mandate',
    'autopay', 'auto', 'debit', 'dr', 'card', 'purchase', 'payment', 'payments',
    'subscription', 'subscriptions', 'renewal', 'recurring', 'bill', 'billing',
    'charge', 'receipt', 'your', 'the', 'to', 'for', 'from', 'via', 'at', 'by', 'of',
    'digital', 'services', 'online',
}

_LEGAL_PHRASES = [
    r'\bprivate\s+limited\b',
    r'\bpvt\.?\s*ltd\.?',
    r'\bp\.?\s*ltd\.?',
]


def normalize_merchant(text: Optional[str]) -> str:
    """
    Normalize raw merchant/subject text to a canonical merchant key.

    Returns UNKNOWN_MERCHANT when nothing identifying survives.
    """
    if not text or not text.strip():
        return UNKNOWN_MERCHANT

    normalized = text.lower().strip()

    for pattern in _LEGAL_PHRASES:
        normalized = re.sub(pattern, ' ', normalized)

    for pattern in _RAW_NOISE_PATTERNS:
        normalized = re.sub(pattern, ' ', normalized)

    # Punctuation to spaces, keep letters/digits (incl. non-ASCII letters)
    normalized = re.sub(r"[^\w\s]|_", ' ', normalized)

    tokens = [
        token for token in normalized.split()
        if token not in _NOISE_TOKENS and not token.isdigit()
    ]

    if not tokens:
        return UNKNOWN_MERCHANT

    return ' '.join(tokens)


def pick_display_name(raw_texts: Iterable[Optional[str]]) -> str:
    """
    Choose a display name from the raw merchant texts of a group.

    Most frequent text wins; ties go to the most recent one. Input is
    expected in chronological order.
    """
    cleaned = [re.sub(r'\s+', ' ', t).strip() for t in raw_texts if t and t.strip()]
    if not cleaned:
        return "Unknown Subscription"

    counts = Counter(cleaned)
    best_count = max(counts.values())
    for candidate in reversed(cleaned):
        if counts[candidate] == best_count:
            return candidate[:255]

    return cleaned[-1][:255]
