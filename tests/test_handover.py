from decimal import Decimal

import pytest

from app.domain.handover import HandoverService, generate_pin, generate_pin_pair
from app.domain.handover.pins import is_valid_pin_format, pins_match
from app.domain.handover.repository import HandoverRepository
from app.errors import ErrorKind
from app.models import BookingStatus, Earning, EarningStatus, utcnow


@pytest.fixture
def assigned_booking(make_booking, customer, washer):
    return make_booking(customer, status=BookingStatus.WASHER_ASSIGNED, washer=washer, pins=("0042", "9107"))


@pytest.fixture
def service(db):
    return HandoverService(db)


class TestPins:
    def test_pin_is_four_ascii_digits(self):
        for _ in range(200):
            pin = generate_pin()
            assert len(pin) == 4
            assert is_valid_pin_format(pin)

    def test_pair_is_distinct(self):
        for _ in range(200):
            collection_pin, delivery_pin = generate_pin_pair()
            assert collection_pin != delivery_pin

    @pytest.mark.parametrize("pin", ["123", "12345", "12a4", " 123", "١٢٣٤", "1234\n"])
    def test_rejects_malformed(self, pin):
        assert not is_valid_pin_format(pin)

    def test_leading_zeros_are_significant(self):
        assert pins_match("0042", "0042")
        assert not pins_match("42", "0042")


class TestCollection:
    def test_correct_pin_starts_the_job(self, db, service, assigned_booking, washer):
        result = service.verify_pin(assigned_booking.id, washer.id, "collection", "0042")

        assert result.success
        db.refresh(assigned_booking)
        assert assigned_booking.collection_verified_at is not None
        assert assigned_booking.status == BookingStatus.IN_PROGRESS.value
        assert result.data["status"] == "in_progress"

    def test_second_redemption_is_already_processed(self, service, assigned_booking, washer):
        assert service.verify_pin(assigned_booking.id, washer.id, "collection", "0042").success

        again = service.verify_pin(assigned_booking.id, washer.id, "collection", "0042")
        assert not again.success
        assert again.error == ErrorKind.ALREADY_PROCESSED
        assert again.code == "already_verified"

    def test_wrong_pin_changes_nothing(self, db, service, assigned_booking, washer):
        result = service.verify_pin(assigned_booking.id, washer.id, "collection", "0043")

        assert not result.success
        assert result.error == ErrorKind.VALIDATION
        assert result.code == "invalid_pin"
        db.refresh(assigned_booking)
        assert assigned_booking.collection_verified_at is None
        assert assigned_booking.status == BookingStatus.WASHER_ASSIGNED.value

    def test_delivery_pin_does_not_open_collection(self, service, assigned_booking, washer):
        result = service.verify_pin(assigned_booking.id, washer.id, "collection", "9107")
        assert result.code == "invalid_pin"

    def test_other_washer_sees_not_found(self, service, assigned_booking, make_user):
        from app.models import Role

        stranger = make_user(Role.WASHER)
        result = service.verify_pin(assigned_booking.id, stranger.id, "collection", "0042")
        assert result.error == ErrorKind.NOT_FOUND

    def test_missing_booking(self, service, washer):
        assert service.verify_pin(999, washer.id, "collection", "0042").error == ErrorKind.NOT_FOUND

    def test_cancelled_booking_cannot_be_collected(self, service, make_booking, customer, washer):
        booking = make_booking(customer, status=BookingStatus.CANCELLED, washer=washer)
        result = service.verify_pin(booking.id, washer.id, "collection", "1234")
        assert result.error == ErrorKind.INVALID_STATE


class TestDelivery:
    def test_delivery_before_collection_is_refused(self, db, service, assigned_booking, washer):
        result = service.verify_pin(assigned_booking.id, washer.id, "delivery", "9107")

        assert not result.success
        assert result.error == ErrorKind.INVALID_STATE
        assert result.code == "collection_not_verified"
        db.refresh(assigned_booking)
        assert assigned_booking.delivery_verified_at is None

    def test_delivery_completes_booking_and_credits_washer(self, db, service, assigned_booking, washer):
        service.verify_pin(assigned_booking.id, washer.id, "collection", "0042")
        result = service.verify_pin(assigned_booking.id, washer.id, "delivery", "9107")

        assert result.success
        db.refresh(assigned_booking)
        assert assigned_booking.status == BookingStatus.COMPLETED.value
        assert assigned_booking.delivery_verified_at >= assigned_booking.collection_verified_at

        earning = db.query(Earning).filter(Earning.booking_id == assigned_booking.id).one()
        assert earning.washer_id == washer.id
        assert earning.status == EarningStatus.AVAILABLE.value
        # 15% of 35.49 is 5.3235
        assert Decimal(str(earning.platform_fee)) == Decimal("5.32")
        assert Decimal(str(earning.washer_earnings)) == Decimal("30.17")

    def test_delivery_is_single_use(self, db, service, assigned_booking, washer):
        service.verify_pin(assigned_booking.id, washer.id, "collection", "0042")
        service.verify_pin(assigned_booking.id, washer.id, "delivery", "9107")

        again = service.verify_pin(assigned_booking.id, washer.id, "delivery", "9107")
        assert again.code == "already_verified"
        assert db.query(Earning).filter(Earning.booking_id == assigned_booking.id).count() == 1

    def test_wrong_delivery_pin_keeps_job_open(self, db, service, assigned_booking, washer):
        service.verify_pin(assigned_booking.id, washer.id, "collection", "0042")
        result = service.verify_pin(assigned_booking.id, washer.id, "delivery", "0000")

        assert result.code == "invalid_pin"
        db.refresh(assigned_booking)
        assert assigned_booking.status == BookingStatus.IN_PROGRESS.value
        assert db.query(Earning).count() == 0


def test_conditional_update_has_exactly_one_winner(db, assigned_booking, washer):
    now = utcnow()
    first = HandoverRepository.mark_collection_verified(db, assigned_booking.id, washer.id, now)
    second = HandoverRepository.mark_collection_verified(db, assigned_booking.id, washer.id, now)
    db.commit()

    assert (first, second) == (1, 0)


def test_verify_pin_endpoint(client, db, assigned_booking, washer):
    client.login(washer)
    url = f"/washer/bookings/{assigned_booking.id}/verify-pin"

    wrong = client.post(url, json={"kind": "collection", "pin": "1111"})
    assert wrong.status_code == 400
    assert wrong.json()["detail"]["code"] == "invalid_pin"

    ok = client.post(url, json={"kind": "collection", "pin": "0042"})
    assert ok.status_code == 200
    assert ok.json()["success"] is True

    repeat = client.post(url, json={"kind": "collection", "pin": "0042"})
    assert repeat.status_code == 409
    assert repeat.json()["detail"]["error"] == "already_processed"


def test_verify_pin_endpoint_rejects_malformed_pin(client, assigned_booking, washer):
    client.login(washer)
    response = client.post(
        f"/washer/bookings/{assigned_booking.id}/verify-pin", json={"kind": "collection", "pin": "42"}
    )
    assert response.status_code == 422


def test_customers_cannot_verify(client, assigned_booking, customer):
    client.login(customer)
    response = client.post(
        f"/washer/bookings/{assigned_booking.id}/verify-pin", json={"kind": "collection", "pin": "0042"}
    )
    assert response.status_code == 403
