"""
Backoff Calculator
Computes when a failed campaign item becomes eligible again.
"""
import random
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from campaign_engine.domain.services.error_classifier import ErrorCategory


# Base delay per category, in seconds
BASE_DELAYS: Dict[ErrorCategory, int] = {
    ErrorCategory.TERMINAL: 24 * 60 * 60,
    ErrorCategory.BUDGET: 30 * 60,
    ErrorCategory.RATE_LIMITED: 5 * 60,
    ErrorCategory.TRANSIENT: 60,
}

MAX_DELAY_SECONDS = 60 * 60
JITTER_LOW = 0.75
JITTER_HIGH = 1.25


def base_delay(category: ErrorCategory, attempt: int) -> float:
    """Exponential delay before jitter, capped at one hour."""
    base = BASE_DELAYS.get(ErrorCategory(category), BASE_DELAYS[ErrorCategory.TRANSIENT])
    # Cap the exponent first so large attempt counts stay cheap
    exponent = min(max(attempt, 0), 32)
    return float(min(base * (2 ** exponent), MAX_DELAY_SECONDS))


def compute_backoff_delay(category: ErrorCategory, attempt: int, rng=None) -> float:
    """
    Jittered retry delay in seconds.

    Args:
        category: Classified error category
        attempt: Attempts already made (attempt_count before increment)
        rng: Object with a random() method returning [0, 1); the random module by default
    """
    rng = rng or random
    multiplier = JITTER_LOW + (JITTER_HIGH - JITTER_LOW) * rng.random()
    return base_delay(category, attempt) * multiplier


def compute_next_try_at(
    category: ErrorCategory,
    attempt: int,
    now: Optional[datetime] = None,
    rng=None
) -> datetime:
    """Absolute time at which the item may be reserved again."""
    now = now or datetime.now(timezone.utc)
    return now + timedelta(seconds=compute_backoff_delay(category, attempt, rng))
