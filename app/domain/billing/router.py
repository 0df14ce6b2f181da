"""Billing router - payment provider webhooks"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ...cache import ProcessedEvents, get_processed_webhooks
from ...config import DODO_PAYMENTS_WEBHOOK_SECRET
from ...database import get_db
from ...models import PayoutAccountStatus, User
from ...rate_limiter import create_rate_limiter
from ...webhook_security import verify_dodo_webhook
from ..bookings.service import BookingService
from ..ledger.service import LedgerService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Webhooks"])

# 100 requests per minute across all senders
rate_limit_payment_webhook = create_rate_limiter(
    limit=100,
    window_seconds=60,
    key_prefix="webhook_payments",
    key_builder=lambda request: "global",
)

PAYMENT_EVENTS = ("payment.succeeded", "checkout.session.completed")
# Sent by the washer payout-provider integration (connected accounts), not by
# Dodo Payments itself; POST /admin/payouts/accounts/{washer_id} sets the same
# status by hand when no such integration is configured.
PAYOUT_ACCOUNT_EVENTS = ("payout_account.updated",)


def get_webhook_secret() -> Optional[str]:
    return DODO_PAYMENTS_WEBHOOK_SECRET


def _booking_id_from(data: dict) -> Optional[int]:
    meta = data.get("metadata") or {}
    raw = meta.get("booking_id")
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        logger.warning(f"Webhook metadata has a non-numeric booking_id: {raw!r}")
        return None


def _handle_payment(db: Session, data: dict) -> str:
    booking_id = _booking_id_from(data)
    if booking_id is None:
        logger.info("Payment event without booking metadata; ignoring")
        return "ignored"
    raw_amount = data.get("total_amount", data.get("amount"))
    try:
        paid_minor_units = int(raw_amount)
    except (TypeError, ValueError):
        logger.warning(f"Payment event for booking {booking_id} has no usable amount: {raw_amount!r}; ignoring")
        return "ignored"

    payment_id = data.get("payment_id") or data.get("id")
    updated = BookingService(db).mark_paid(booking_id, payment_id, paid_minor_units=paid_minor_units)
    return "processed" if updated else "ignored"


def _handle_payout_account(db: Session, data: dict) -> str:
    status = data.get("status")
    if status not in {s.value for s in PayoutAccountStatus}:
        logger.warning(f"Unknown payout account status {status!r}; ignoring")
        return "ignored"

    account_id = data.get("account_id") or data.get("id")
    meta = data.get("metadata") or {}
    washer: Optional[User] = None
    if account_id:
        washer = db.query(User).filter(User.payout_account_id == account_id).first()
    if not washer and meta.get("washer_id"):
        try:
            washer = db.query(User).filter(User.id == int(meta["washer_id"])).first()
        except (TypeError, ValueError):
            washer = None
    if not washer:
        logger.warning("Payout account event for unknown washer; ignoring")
        return "ignored"

    result = LedgerService(db).update_payout_account(
        washer.id, status, account_id if not washer.payout_account_id else None
    )
    return "processed" if result.success else "ignored"


@router.post("/webhooks/payments")
async def handle_payment_webhook(
    request: Request,
    db: Session = Depends(get_db),
    processed: ProcessedEvents = Depends(get_processed_webhooks),
    secret: Optional[str] = Depends(get_webhook_secret),
    _: None = Depends(rate_limit_payment_webhook),
):
    """
    Verify and apply a payment provider event.

    Headers:
      - 'webhook-signature': 'v1,{base64(hmac_sha256(webhook-id.webhook-timestamp.payload))}'
      - 'webhook-id': Unique webhook ID for idempotency
      - 'webhook-timestamp': Unix timestamp (seconds)
    """
    _, raw_body = await verify_dodo_webhook(request, secret or "", raise_on_failure=True)

    webhook_id = request.headers.get("webhook-id", "unknown")
    if processed.seen(webhook_id):
        logger.info(f"Webhook {webhook_id} already processed, skipping")
        return {"status": "already_processed", "webhook_id": webhook_id}

    try:
        event = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error(f"Failed to parse webhook JSON: {e}")
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from e

    event_type = event.get("type")
    data = event.get("data") or {}
    logger.info(f"Webhook {webhook_id} type={event_type}")

    # Python 3.9 compatible if/elif instead of match
    if event_type in PAYMENT_EVENTS:
        outcome = _handle_payment(db, data)
    elif event_type in PAYOUT_ACCOUNT_EVENTS:
        outcome = _handle_payout_account(db, data)
    else:
        logger.info(f"Unhandled webhook event type: {event_type}")
        outcome = "ignored"

    processed.remember(webhook_id)
    return {"status": outcome, "event_type": event_type}
