import base64
import os
from datetime import timedelta
from decimal import Decimal

# Configure before the app modules read their settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"
os.environ["FIREBASE_PROJECT_ID"] = "neighbourhood-wash-test"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.auth import get_current_user  # noqa: E402
from app.cache import get_processed_webhooks  # noqa: E402
from app.database import Base, SessionLocal, engine, get_db  # noqa: E402
from app.domain.billing.dodo_service import get_payment_service  # noqa: E402
from app.domain.billing.router import get_webhook_secret, rate_limit_payment_webhook  # noqa: E402
from app.domain.handover import pin_attempt_limiter  # noqa: E402
from app.errors import ExternalServiceError  # noqa: E402
from app.main import app  # noqa: E402
from app.models import (  # noqa: E402
    Booking,
    BookingStatus,
    Earning,
    EarningStatus,
    PayoutAccountStatus,
    Role,
    User,
    utcnow,
)

WEBHOOK_SECRET = "whsec_" + base64.b64encode(b"neighbourhood-wash-webhook-key").decode()

SERVICES_CONFIG = {
    "weightTier": "0-6kg",
    "baseService": {"name": "Standard Wash (up to 6kg)", "price": 18.0},
    "selectedItems": [],
    "selectedAddOns": [{"key": "ironing", "name": "Ironing Service", "price": 12.5}],
    "collectionFee": 4.99,
}


class FakePayments:
    """Stands in for the payment provider client"""

    def __init__(self):
        self.calls = []
        self.fail = False

    def is_available(self):
        return True

    async def create_booking_checkout(
        self, booking_id, washer_id, total_price, customer_email, customer_name=None
    ):
        self.calls.append(
            {"booking_id": booking_id, "total_price": total_price, "customer_email": customer_email}
        )
        if self.fail:
            raise ExternalServiceError(
                "Payment provider unavailable, please try again",
                code="payment_provider_unavailable",
            )
        return {
            "session_id": f"cks_{booking_id}",
            "checkout_url": f"https://checkout.test/session/cks_{booking_id}",
        }


class FakeProcessedEvents:
    def __init__(self):
        self.ids = set()

    def seen(self, event_id):
        return event_id in self.ids

    def remember(self, event_id, ttl=86400):
        self.ids.add(event_id)
        return True


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def payments():
    return FakePayments()


@pytest.fixture
def processed_webhooks():
    return FakeProcessedEvents()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make_user(role=Role.USER, payout_account_status=PayoutAccountStatus.NOT_CONNECTED):
        counter["n"] += 1
        user = User(
            firebase_uid=f"uid-{role.value}-{counter['n']}",
            email=f"{role.value}{counter['n']}@example.com",
            full_name=f"Test {role.value.title()} {counter['n']}",
            role=role.value,
            payout_account_status=payout_account_status.value,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def customer(make_user):
    return make_user(Role.USER)


@pytest.fixture
def washer(make_user):
    return make_user(Role.WASHER, PayoutAccountStatus.ACTIVE)


@pytest.fixture
def admin(make_user):
    return make_user(Role.ADMIN)


@pytest.fixture
def make_booking(db):
    def _make_booking(
        user,
        status=BookingStatus.AWAITING_ASSIGNMENT,
        washer=None,
        total=Decimal("35.49"),
        hours_ahead=48,
        pins=("1234", "5678"),
    ):
        booking = Booking(
            user_id=user.id,
            washer_id=washer.id if washer else None,
            collection_date=utcnow() + timedelta(hours=hours_ahead),
            collection_time_slot="9:00 AM - 12:00 PM",
            delivery_method="collection",
            services_config=SERVICES_CONFIG,
            total_price=total,
            status=status.value,
            collection_pin=pins[0] if washer else None,
            delivery_pin=pins[1] if washer else None,
        )
        db.add(booking)
        db.commit()
        db.refresh(booking)
        return booking

    return _make_booking


@pytest.fixture
def make_earning(db, make_booking):
    def _make_earning(washer, customer, amount, made_available_at=None, status=EarningStatus.AVAILABLE):
        booking = make_booking(customer, status=BookingStatus.COMPLETED, washer=washer)
        earning = Earning(
            washer_id=washer.id,
            booking_id=booking.id,
            booking_total=Decimal(amount),
            platform_fee=Decimal("0.00"),
            washer_earnings=Decimal(amount),
            status=status.value,
            made_available_at=made_available_at or utcnow(),
        )
        db.add(earning)
        db.commit()
        db.refresh(earning)
        return earning

    return _make_earning


@pytest.fixture
def client(db, payments, processed_webhooks):
    """API client sharing the test session; call client.login(user) to pick the caller"""

    async def no_rate_limit():
        return None

    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_payment_service] = lambda: payments
    app.dependency_overrides[get_processed_webhooks] = lambda: processed_webhooks
    app.dependency_overrides[get_webhook_secret] = lambda: WEBHOOK_SECRET
    app.dependency_overrides[pin_attempt_limiter] = no_rate_limit
    app.dependency_overrides[rate_limit_payment_webhook] = no_rate_limit

    test_client = TestClient(app)

    def login(user):
        app.dependency_overrides[get_current_user] = lambda: user

    test_client.login = login
    try:
        yield test_client
    finally:
        app.dependency_overrides.clear()
