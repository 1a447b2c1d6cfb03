"""
Fuzzy merchant-name similarity.

similarity(a, b) is the larger of two symmetric measures on normalized
merchant keys:

- character similarity: difflib SequenceMatcher ratio computed on the
  lexicographically ordered pair, so argument order never changes the score
- token similarity: Jaccard overlap of the whitespace tokens

Two keys are considered the same merchant when the score reaches
DetectionConfig.name_similarity_threshold (0.85 by default).
"""
from difflib import SequenceMatcher
from functools import lru_cache

from app.services.detection_types import UNKNOWN_MERCHANT


@lru_cache(maxsize=4096)
def _ordered_ratio(first: str, second: str) -> float:
    return SequenceMatcher(None, first, second, autojunk=False).ratio()


def sequence_similarity(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    first, second = (a, b) if a <= b else (b, a)
    return _ordered_ratio(first, second)


def token_similarity(a: str, b: str) -> float:
    tokens_a = set(a.split())
    tokens_b = set(b.split())
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / len(tokens_a | tokens_b)


def merchant_similarity(a: str, b: str) -> float:
    """
    Similarity between two normalized merchant keys, 0.0 to 1.0.

    The "unknown" key never matches anything, itself included: unrelated
    unnamed charges must not be merged.
    """
    if not a or not b or a == UNKNOWN_MERCHANT or b == UNKNOWN_MERCHANT:
        return 0.0
    if a == b:
        return 1.0
    return max(sequence_similarity(a, b), token_similarity(a, b))


def is_same_merchant(a: str, b: str, threshold: float) -> bool:
    return merchant_similarity(a, b) >= threshold
