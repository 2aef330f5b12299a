"""
Webhook Security
HMAC signature and replay-window checks for inbound provider webhooks
"""
import hashlib
import hmac
import logging
import time
from typing import Mapping, Optional

from campaign_engine.core.config import Settings
from campaign_engine.domain.exceptions import WebhookRejected

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-webhook-signature"
TIMESTAMP_HEADER = "x-webhook-timestamp"
SIGNATURE_PREFIX = "sha256="


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    if not signature:
        return False
    signature = signature.strip()
    if signature.lower().startswith(SIGNATURE_PREFIX):
        signature = signature[len(SIGNATURE_PREFIX):]
    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(expected, signature.lower())


def check_freshness(timestamp: Optional[str], tolerance_seconds: int, now_ms: Optional[int] = None) -> int:
    """
    Validate the delivery timestamp (epoch milliseconds).

    Returns:
        The parsed timestamp

    Raises:
        WebhookRejected: 400 if unparseable or outside the tolerance window
    """
    try:
        timestamp_ms = int(timestamp)
    except (TypeError, ValueError):
        raise WebhookRejected(400, "Invalid timestamp")

    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    if abs(now_ms - timestamp_ms) > tolerance_seconds * 1000:
        raise WebhookRejected(400, "Stale webhook")
    return timestamp_ms


def authenticate_webhook(
    raw_body: bytes,
    headers: Mapping[str, str],
    settings: Settings,
    now_ms: Optional[int] = None
) -> Optional[int]:
    """
    Authenticate one delivery.

    Without a configured secret, production refuses every webhook and
    other environments accept unsigned ones.

    Returns:
        The delivery timestamp in epoch ms, if one was sent

    Raises:
        WebhookRejected: 500 (no secret in production), 401 (signature),
            400 (stale)
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    signature = lowered.get(SIGNATURE_HEADER)
    timestamp = lowered.get(TIMESTAMP_HEADER)
    secret = settings.webhook_secret

    if not secret:
        if settings.is_production:
            logger.error("Webhook secret not configured in production, rejecting webhook")
            raise WebhookRejected(500, "Webhook secret not configured")
        logger.warning("Webhook secret not configured, skipping signature verification")
        if timestamp is None:
            return None
        return check_freshness(timestamp, settings.webhook_tolerance_seconds, now_ms)

    if not verify_signature(raw_body, signature, secret):
        logger.warning("Webhook signature verification failed")
        raise WebhookRejected(401, "Invalid signature")

    if timestamp is None:
        raise WebhookRejected(401, "Missing timestamp")

    return check_freshness(timestamp, settings.webhook_tolerance_seconds, now_ms)
