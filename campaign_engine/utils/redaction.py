"""
Log Redaction Helpers
Keep tenant identifiers and phone numbers out of plain-text logs.
"""
import hashlib
import re
from typing import Optional

_NON_DIGITS = re.compile(r"\D")


def hash_identifier(value: Optional[str]) -> str:
    """Stable short hash for correlating log lines without exposing ids."""
    if not value:
        return "unknown"
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()
    return f"{digest[:8]}..."


def mask_phone_number(number: Optional[str]) -> str:
    """Keep only the last four digits: +1555***4567 -> ***4567"""
    if not number:
        return "unknown"
    digits = _NON_DIGITS.sub("", number)
    if len(digits) <= 4:
        return "***"
    return f"***{digits[-4:]}"
