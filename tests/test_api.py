import json
import time
import uuid
from datetime import timedelta

import pytest
from fastapi import HTTPException

from app.auth import is_allowed, role_of
from app.models import Booking, BookingStatus, PayoutAccountStatus, Role, User, utcnow
from app.rate_limiter import check_rate_limit
from app.webhook_security import compute_signature, verify_timestamp

from conftest import WEBHOOK_SECRET


def send_webhook(client, event, webhook_id=None, secret=WEBHOOK_SECRET, timestamp=None):
    body = json.dumps(event).encode("utf-8")
    webhook_id = webhook_id or f"msg_{uuid.uuid4().hex}"
    timestamp = str(timestamp or int(time.time()))
    signature = compute_signature(secret, webhook_id, timestamp, body)
    return client.post(
        "/webhooks/payments",
        content=body,
        headers={
            "content-type": "application/json",
            "webhook-id": webhook_id,
            "webhook-timestamp": timestamp,
            "webhook-signature": f"v1,{signature}",
        },
    )


def payment_event(booking_id, payment_id="pay_123", total_amount=3549):
    data = {"payment_id": payment_id, "currency": "GBP", "metadata": {"booking_id": str(booking_id)}}
    if total_amount is not None:
        data["total_amount"] = total_amount
    return {"type": "payment.succeeded", "data": data}


def test_booking_to_payout_flow(client, db, customer, washer, admin):
    client.login(customer)
    created = client.post(
        "/bookings",
        json={
            "weightTier": "0-6kg",
            "selectedAddOns": ["ironing"],
            "deliveryMethod": "collection",
            "date": (utcnow() + timedelta(days=3)).date().isoformat(),
            "timeSlot": "9:00 AM - 12:00 PM",
            "accessNotes": "Side gate",
        },
    )
    assert created.status_code == 201, created.text
    booking_id = created.json()["data"]["booking"]["id"]
    assert created.json()["data"]["booking"]["status"] == "awaiting_payment"

    # Not visible to washers until paid
    client.login(washer)
    assert client.get("/washer/bookings/available").json() == []

    assert send_webhook(client, payment_event(booking_id)).json()["status"] == "processed"

    available = client.get("/washer/bookings/available").json()
    assert [b["id"] for b in available] == [booking_id]
    assert available[0]["accessNotes"] is None
    assert available[0]["totalPrice"] == 35.49

    accepted = client.post(f"/washer/bookings/{booking_id}/accept")
    assert accepted.status_code == 200
    assert accepted.json()["data"]["collectionPin"] is None
    assert accepted.json()["data"]["accessNotes"] == "Side gate"

    client.login(customer)
    mine = client.get(f"/bookings/{booking_id}").json()
    assert mine["status"] == "washer_assigned"
    collection_pin, delivery_pin = mine["collectionPin"], mine["deliveryPin"]

    client.login(washer)
    url = f"/washer/bookings/{booking_id}/verify-pin"
    assert client.post(url, json={"kind": "collection", "pin": collection_pin}).status_code == 200
    assert client.post(url, json={"kind": "delivery", "pin": delivery_pin}).status_code == 200

    balance = client.get("/payouts/balance").json()
    assert balance["available_balance"] == 30.17

    payout = client.post("/payouts/requests", json={"amount": "20.00"})
    assert payout.status_code == 201
    assert payout.json()["data"]["net_amount"] == 17.5
    payout_id = payout.json()["data"]["id"]

    client.login(admin)
    assert client.post(f"/admin/payouts/{payout_id}/settle", json={"status": "completed"}).status_code == 200

    client.login(washer)
    balance = client.get("/payouts/balance").json()
    assert balance["total_paid_out"] == 20.0
    assert balance["available_balance"] == 10.17
    assert db.get(Booking, booking_id).status == BookingStatus.COMPLETED.value


def test_checkout_failure_returns_booking_for_retry(client, customer, payments):
    payments.fail = True
    client.login(customer)
    response = client.post(
        "/bookings",
        json={
            "weightTier": "6-10kg",
            "deliveryMethod": "drop-off",
            "date": (utcnow() + timedelta(days=4)).date().isoformat(),
            "timeSlot": "1:00 PM - 4:00 PM",
        },
    )

    assert response.status_code == 502
    detail = response.json()["detail"]
    assert detail["code"] == "payment_provider_unavailable"
    booking_id = detail["data"]["booking_id"]

    payments.fail = False
    retried = client.post(f"/bookings/{booking_id}/checkout")
    assert retried.status_code == 200
    assert retried.json()["data"]["checkout_url"].endswith(f"cks_{booking_id}")


def test_late_cancellation_over_http(client, customer, washer, make_booking):
    booking = make_booking(customer, status=BookingStatus.WASHER_ASSIGNED, washer=washer, hours_ahead=4)
    client.login(customer)
    url = f"/bookings/{booking.id}/cancel"

    refused = client.post(url, json={})
    assert refused.status_code == 400
    assert refused.json()["detail"]["code"] == "confirm_no_refund"

    confirmed = client.post(url, json={"confirmNoRefund": True})
    assert confirmed.status_code == 200
    assert confirmed.json()["data"]["refund_amount"] == 0.0

    again = client.post(url, json={"confirmNoRefund": True})
    assert again.status_code == 409


def test_flagged_washer_cannot_accept(client, db, customer, washer, make_booking):
    booking = make_booking(customer)
    washer.flagged_for_review = True
    db.commit()

    client.login(washer)
    assert client.post(f"/washer/bookings/{booking.id}/accept").status_code == 403


class TestWebhook:
    def test_bad_signature_is_rejected(self, client, db, customer, make_booking):
        booking = make_booking(customer, status=BookingStatus.AWAITING_PAYMENT)
        other_secret = "whsec_" + "c29tZS1vdGhlci1rZXk="

        response = send_webhook(client, payment_event(booking.id), secret=other_secret)

        assert response.status_code == 401
        db.refresh(booking)
        assert booking.status == BookingStatus.AWAITING_PAYMENT.value

    def test_missing_headers_are_rejected(self, client):
        response = client.post("/webhooks/payments", json=payment_event(1))
        assert response.status_code == 401

    def test_stale_timestamp_is_rejected(self, client, customer, make_booking):
        booking = make_booking(customer, status=BookingStatus.AWAITING_PAYMENT)
        response = send_webhook(client, payment_event(booking.id), timestamp=int(time.time()) - 3600)
        assert response.status_code == 401

    def test_duplicate_delivery_is_skipped(self, client, customer, make_booking, processed_webhooks):
        booking = make_booking(customer, status=BookingStatus.AWAITING_PAYMENT)

        first = send_webhook(client, payment_event(booking.id), webhook_id="msg_1")
        second = send_webhook(client, payment_event(booking.id), webhook_id="msg_1")

        assert first.json()["status"] == "processed"
        assert second.json()["status"] == "already_processed"
        assert processed_webhooks.seen("msg_1")

    def test_payment_for_paid_booking_is_ignored(self, client, customer, make_booking):
        booking = make_booking(customer, status=BookingStatus.AWAITING_ASSIGNMENT)
        assert send_webhook(client, payment_event(booking.id)).json()["status"] == "ignored"

    def test_underpayment_does_not_release_booking(self, client, db, customer, make_booking):
        booking = make_booking(customer, status=BookingStatus.AWAITING_PAYMENT)

        response = send_webhook(client, payment_event(booking.id, total_amount=100))

        assert response.status_code == 200
        assert response.json()["status"] == "ignored"
        db.refresh(booking)
        assert booking.status == BookingStatus.AWAITING_PAYMENT.value
        assert booking.paid_at is None

    def test_payment_without_amount_is_ignored(self, client, db, customer, make_booking):
        booking = make_booking(customer, status=BookingStatus.AWAITING_PAYMENT)

        assert send_webhook(client, payment_event(booking.id, total_amount=None)).json()["status"] == "ignored"
        db.refresh(booking)
        assert booking.status == BookingStatus.AWAITING_PAYMENT.value

    def test_payout_account_update(self, client, db, make_user):
        pending = make_user(Role.WASHER, PayoutAccountStatus.PENDING_VERIFICATION)
        event = {
            "type": "payout_account.updated",
            "data": {"account_id": "acct_42", "status": "active", "metadata": {"washer_id": str(pending.id)}},
        }

        assert send_webhook(client, event).json()["status"] == "processed"

        refreshed = db.get(User, pending.id)
        db.refresh(refreshed)
        assert refreshed.payout_account_status == "active"
        assert refreshed.payout_account_id == "acct_42"

    def test_unknown_event_is_acknowledged(self, client):
        response = send_webhook(client, {"type": "subscription.renewed", "data": {}})
        assert response.status_code == 200
        assert response.json()["status"] == "ignored"


class TestRoles:
    def test_role_gates(self, client, customer, washer):
        client.login(washer)
        assert client.get("/bookings").status_code == 403
        client.login(customer)
        assert client.get("/washer/bookings/available").status_code == 403
        assert client.get("/washer/bookings").status_code == 403

    def test_is_allowed(self):
        assert is_allowed(Role.ADMIN, frozenset({Role.ADMIN}))
        assert not is_allowed(Role.WASHER, frozenset({Role.USER, Role.ADMIN}))
        assert is_allowed(Role.USER, frozenset({Role.USER}))

    def test_unknown_role_is_forbidden(self):
        with pytest.raises(HTTPException) as exc:
            role_of(User(id=7, role="superuser"))
        assert exc.value.status_code == 403

    def test_requests_without_token_are_unauthorized(self, client):
        assert client.get("/bookings").status_code in (401, 403)


def test_rate_limit_blocks_after_limit():
    key = f"pin_verify:test-{uuid.uuid4().hex}"

    assert check_rate_limit(key, 2, 60, None)[0]
    assert check_rate_limit(key, 2, 60, None)[0]
    allowed, count, ttl = check_rate_limit(key, 2, 60, None)

    assert not allowed
    assert count == 2
    assert 0 < ttl <= 60


def test_verify_timestamp_window():
    now = int(time.time())
    assert verify_timestamp(str(now))
    assert not verify_timestamp(str(now - 301))
    assert not verify_timestamp("yesterday")


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}
