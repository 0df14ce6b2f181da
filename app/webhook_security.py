"""
Webhook signature verification for the payment provider.

Follows the Standard Webhooks scheme: the signed message is
``webhook-id.webhook-timestamp.body`` and the signature header carries one or
more space separated ``v1,<base64 hmac>`` entries.
"""

import base64
import binascii
import hashlib
import hmac
import logging
import time
from typing import Optional

from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)

# Maximum age of webhook in seconds (5 minutes)
MAX_WEBHOOK_AGE_SECONDS = 300


def constant_time_compare(a: str, b: str) -> bool:
    if not a or not b:
        return False
    return hmac.compare_digest(a, b)


def extract_signing_key(secret: str) -> bytes:
    """
    Signing key bytes from a ``whsec_BASE64KEY`` secret.

    Unprefixed secrets are tried as base64 and fall back to their UTF-8 bytes.
    """
    try:
        if secret.startswith("whsec_"):
            return base64.b64decode(secret[6:])
        return base64.b64decode(secret, validate=True)
    except (binascii.Error, ValueError):
        return secret.encode("utf-8")


def compute_signature(secret: str, webhook_id: str, timestamp: str, body: bytes) -> str:
    signed_message = b".".join([webhook_id.encode("utf-8"), timestamp.encode("utf-8"), body])
    digest = hmac.new(extract_signing_key(secret), signed_message, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8")


def verify_timestamp(timestamp: Optional[str], max_age: int = MAX_WEBHOOK_AGE_SECONDS) -> bool:
    """Reject webhooks older (or further in the future) than max_age seconds"""
    try:
        age = abs(int(time.time()) - int(timestamp))
    except (ValueError, TypeError):
        logger.warning(f"Invalid webhook timestamp format: {timestamp}")
        return False

    if age > max_age:
        logger.warning(f"Webhook timestamp too old: {age}s (max: {max_age}s)")
        return False
    return True


def _reject(reason: str, raise_on_failure: bool, raw_body: bytes) -> tuple[bool, bytes]:
    logger.error(f"Payment webhook rejected: {reason}")
    if raise_on_failure:
        raise HTTPException(status_code=401, detail=reason)
    return False, raw_body


async def verify_dodo_webhook(
    request: Request, secret: str, raise_on_failure: bool = True
) -> tuple[bool, bytes]:
    """
    Verify a Dodo Payments webhook.

    Args:
        request: FastAPI request object
        secret: Webhook secret from the provider dashboard
        raise_on_failure: If True, raises HTTPException(401) on failure

    Returns:
        Tuple of (is_valid, raw_body)
    """
    # Raw body before any parsing; the signature covers the exact bytes
    raw_body = await request.body()

    signature_header = request.headers.get("webhook-signature", "")
    timestamp = request.headers.get("webhook-timestamp", "")
    webhook_id = request.headers.get("webhook-id", "")

    logger.info(f"Payment webhook received: id={webhook_id or 'unknown'}")

    if not secret:
        return _reject("Webhook secret not configured", raise_on_failure, raw_body)
    if not signature_header:
        return _reject("Missing webhook signature", raise_on_failure, raw_body)
    if not timestamp or not webhook_id:
        return _reject("Missing webhook id or timestamp", raise_on_failure, raw_body)
    if not verify_timestamp(timestamp):
        return _reject("Webhook timestamp expired", raise_on_failure, raw_body)

    received = [
        part[3:] for part in signature_header.split() if part.startswith("v1,")
    ]
    if not received:
        return _reject("Invalid signature format", raise_on_failure, raw_body)

    expected = compute_signature(secret, webhook_id, timestamp, raw_body)
    if any(constant_time_compare(expected, candidate) for candidate in received):
        logger.info(f"Payment webhook signature verified: {webhook_id}")
        return True, raw_body

    return _reject("Invalid webhook signature", raise_on_failure, raw_body)
