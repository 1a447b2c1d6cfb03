"""
Detection configuration loaded from the environment.

All thresholds used by the recurring-payment detector live here so they can
be tuned per deployment without touching code. Values default to the
empirical constants the detector has always used.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class DetectionConfig:
    # Amount tolerances (fractions, 0.10 = 10%)
    amount_consistency_tolerance: float = 0.10
    amount_bucket_tolerance: float = 0.10
    merge_amount_tolerance: float = 0.10
    amount_spread_threshold: float = 0.15

    # Confidence adjustments
    amount_spread_penalty: float = 0.15
    sample_boost: float = 0.05
    sample_boost_min_events: int = 4
    confidence_cap: float = 0.99
    confidence_floor: float = 0.05

    # Source reliability multipliers
    bank_reliability: float = 1.0
    email_reliability: float = 0.95
    sms_reliability: float = 0.95

    # Fuzzy merchant matching
    name_similarity_threshold: float = 0.85

    # Surfacing and resource limits
    min_events: int = 2
    min_create_confidence: float = 0.6
    max_batch_events: int = 5000

    def reliability_for(self, source_type: str) -> float:
        return {
            "bank": self.bank_reliability,
            "email": self.email_reliability,
            "sms": self.sms_reliability,
        }.get(source_type, self.email_reliability)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc
    if parsed <= 0:
        raise ValueError(f"{name} must be positive, got {parsed}")
    return parsed


@lru_cache(maxsize=1)
def load_detection_config() -> DetectionConfig:
    defaults = DetectionConfig()
    return DetectionConfig(
        amount_consistency_tolerance=_env_float(
            "DETECTION_AMOUNT_CONSISTENCY_TOLERANCE", defaults.amount_consistency_tolerance
        ),
        amount_bucket_tolerance=_env_float(
            "DETECTION_AMOUNT_BUCKET_TOLERANCE", defaults.amount_bucket_tolerance
        ),
        merge_amount_tolerance=_env_float(
            "DETECTION_MERGE_AMOUNT_TOLERANCE", defaults.merge_amount_tolerance
        ),
        amount_spread_threshold=_env_float(
            "DETECTION_AMOUNT_SPREAD_THRESHOLD", defaults.amount_spread_threshold
        ),
        amount_spread_penalty=_env_float(
            "DETECTION_AMOUNT_SPREAD_PENALTY", defaults.amount_spread_penalty
        ),
        sample_boost=_env_float("DETECTION_SAMPLE_BOOST", defaults.sample_boost),
        sample_boost_min_events=_env_int(
            "DETECTION_SAMPLE_BOOST_MIN_EVENTS", defaults.sample_boost_min_events
        ),
        confidence_cap=_env_float("DETECTION_CONFIDENCE_CAP", defaults.confidence_cap),
        confidence_floor=_env_float("DETECTION_CONFIDENCE_FLOOR", defaults.confidence_floor),
        bank_reliability=_env_float("DETECTION_BANK_RELIABILITY", defaults.bank_reliability),
        email_reliability=_env_float("DETECTION_EMAIL_RELIABILITY", defaults.email_reliability),
        sms_reliability=_env_float("DETECTION_SMS_RELIABILITY", defaults.sms_reliability),
        name_similarity_threshold=_env_float(
            "DETECTION_NAME_SIMILARITY_THRESHOLD", defaults.name_similarity_threshold
        ),
        min_events=_env_int("DETECTION_MIN_EVENTS", defaults.min_events),
        min_create_confidence=_env_float(
            "DETECTION_MIN_CREATE_CONFIDENCE", defaults.min_create_confidence
        ),
        max_batch_events=_env_int("DETECTION_MAX_BATCH_EVENTS", defaults.max_batch_events),
    )


def reset_detection_config_cache() -> None:
    load_detection_config.cache_clear()


def get_lock_timeout_seconds() -> int:
    return _env_int("DETECTION_LOCK_TIMEOUT_SECONDS", 300)
