"""
Error Classifier
Maps a failure to a retry category using its message text.

Failures reach the dispatch pipeline from the store, policy checks and the
telephony provider, so the message is the only common ground. Categories
are checked in a fixed order and the first match wins:

- BUDGET: tenant cannot pay for the call right now
- TERMINAL: bad data or policy, never retried
- RATE_LIMITED: provider throttling
- TRANSIENT: everything else
"""
import logging
from enum import Enum
from typing import List, Tuple, Union

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    """Retry category for a failed item"""
    BUDGET = "budget"
    TERMINAL = "terminal"
    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"


# Order matters: a message mentioning both funds and rate limits is BUDGET.
CLASSIFICATION_RULES: List[Tuple[ErrorCategory, Tuple[str, ...]]] = [
    (ErrorCategory.BUDGET, ("insufficient funds", "balance below", "circuit breaker")),
    (ErrorCategory.TERMINAL, ("invalid contact", "not found", "governance", "access denied")),
    (ErrorCategory.RATE_LIMITED, ("429", "rate limit", "too many")),
]


def error_message(error: Union[BaseException, str, None]) -> str:
    """Text used for classification and persistence."""
    if error is None:
        return ""
    if isinstance(error, str):
        return error
    return str(error)


def classify_error(error: Union[BaseException, str, None]) -> ErrorCategory:
    """
    Classify a failure into a retry category.

    Args:
        error: Exception or raw message

    Returns:
        ErrorCategory, TRANSIENT when nothing matches
    """
    message = error_message(error).lower()

    for category, patterns in CLASSIFICATION_RULES:
        if any(pattern in message for pattern in patterns):
            return category

    return ErrorCategory.TRANSIENT
