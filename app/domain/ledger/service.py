"""
Ledger service - washer earnings and payout requests.

Balances are a live aggregate over Earning rows, so they cannot drift from the
ledger. A payout request and the reservation of the earnings that fund it are
written in one transaction: either both exist or neither does.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from sqlalchemy.orm import Session

from ...config import PLATFORM_COMMISSION_RATE
from ...errors import (
    AlreadyProcessedError,
    InsufficientFundsError,
    InvalidStateError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from ...models import (
    Booking,
    Earning,
    EarningStatus,
    PayoutAccountStatus,
    PayoutRequest,
    PayoutStatus,
    Role,
    User,
    utcnow,
)
from ...schemas import ActionResult
from .repository import LedgerRepository
from .schemas import PayoutRequestResponse, WasherBalance

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
MINIMUM_PAYOUT = Decimal("10.00")
WITHDRAWAL_FEE = Decimal("2.50")

# Which settlement statuses each payout status may move to
PAYOUT_TRANSITIONS = {
    PayoutStatus.PENDING.value: {
        PayoutStatus.APPROVED.value,
        PayoutStatus.PROCESSING.value,
        PayoutStatus.COMPLETED.value,
        PayoutStatus.REJECTED.value,
        PayoutStatus.FAILED.value,
    },
    PayoutStatus.APPROVED.value: {
        PayoutStatus.PROCESSING.value,
        PayoutStatus.COMPLETED.value,
        PayoutStatus.REJECTED.value,
        PayoutStatus.FAILED.value,
    },
    PayoutStatus.PROCESSING.value: {PayoutStatus.COMPLETED.value, PayoutStatus.FAILED.value},
    PayoutStatus.COMPLETED.value: set(),
    PayoutStatus.REJECTED.value: set(),
    PayoutStatus.FAILED.value: set(),
}


def to_money(value: Union[Decimal, float, int, str, None]) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def validate_payout_amount(
    amount: Decimal,
    available_balance: Decimal,
    minimum_payout: Decimal = MINIMUM_PAYOUT,
    withdrawal_fee: Decimal = WITHDRAWAL_FEE,
) -> Decimal:
    """
    Check a requested amount against the payout rules and return the net amount.

    Checked in order: minimum payout, available balance, fee coverage.
    """
    if amount < minimum_payout:
        raise ValidationError(
            f"Minimum payout amount is £{minimum_payout:.2f}",
            code="below_minimum",
            data={"minimum_payout": float(minimum_payout)},
        )
    if amount > available_balance:
        raise InsufficientFundsError(
            f"Insufficient balance. Available: £{available_balance:.2f}",
            code="insufficient_balance",
            data={"available_balance": float(available_balance)},
        )
    net_amount = amount - withdrawal_fee
    if net_amount <= 0:
        raise ValidationError(
            f"Amount must exceed the £{withdrawal_fee:.2f} withdrawal fee",
            code="fee_exceeds_amount",
            data={"withdrawal_fee": float(withdrawal_fee)},
        )
    return net_amount


def select_fifo_earnings(earnings: list[Earning], amount: Decimal) -> list[Earning]:
    """Oldest earnings first until their running total covers amount"""
    selected = []
    running_total = Decimal("0")
    for earning in earnings:
        if running_total >= amount:
            break
        selected.append(earning)
        running_total += to_money(earning.washer_earnings)
    return selected


class LedgerService:
    """Service layer for the earnings and payout ledger"""

    def __init__(
        self,
        db: Session,
        minimum_payout: Decimal = MINIMUM_PAYOUT,
        withdrawal_fee: Decimal = WITHDRAWAL_FEE,
    ):
        self.db = db
        self.repo = LedgerRepository()
        self.minimum_payout = minimum_payout
        self.withdrawal_fee = withdrawal_fee

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def get_washer_balance(self, washer_id: int) -> WasherBalance:
        totals = self.repo.get_earning_totals(self.db, washer_id)
        available = to_money(totals.get(EarningStatus.AVAILABLE.value))
        processing = to_money(totals.get(EarningStatus.PROCESSING.value))
        paid = to_money(totals.get(EarningStatus.PAID.value))
        return WasherBalance(
            available_balance=float(available),
            processing_balance=float(processing),
            total_paid_out=float(paid),
            total_earnings=float(available + processing + paid),
        )

    def can_receive_payouts(self, washer: User) -> bool:
        """The payout account at the payment provider must be fully verified"""
        return washer.payout_account_status == PayoutAccountStatus.ACTIVE.value

    def update_payout_account(
        self, washer_id: int, status: str, account_id: Optional[str] = None
    ) -> ActionResult:
        """Record the washer's payout account state as reported by onboarding or an admin"""
        washer = self.repo.get_user_by_id(self.db, washer_id)
        if not washer or washer.role != Role.WASHER.value:
            return ActionResult.from_error(NotFoundError("Washer not found", code="washer_not_found"))
        if status not in {s.value for s in PayoutAccountStatus}:
            return ActionResult.from_error(
                ValidationError(f"Unknown payout account status '{status}'", code="invalid_account_status")
            )

        washer.payout_account_status = status
        if account_id:
            washer.payout_account_id = account_id
        self.db.commit()
        self.db.refresh(washer)
        logger.info(f"Washer {washer.id} payout account status is now {status}")
        return ActionResult.ok(
            "Payout account updated",
            data={
                "washer_id": washer.id,
                "payout_account_status": washer.payout_account_status,
                "can_receive_payouts": self.can_receive_payouts(washer),
            },
        )

    # ------------------------------------------------------------------
    # Payout requests
    # ------------------------------------------------------------------

    def create_payout_request(
        self, washer_id: int, amount: Union[Decimal, float, str], notes: Optional[str] = None
    ) -> ActionResult:
        try:
            payout = self._create_payout_request(washer_id, to_money(amount), notes)
        except ServiceError as e:
            self.db.rollback()
            logger.warning(f"Payout request refused for washer {washer_id}: {e.code or e.kind.value}")
            return ActionResult.from_error(e)
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Payout request {payout.id} created for washer {washer_id}: "
            f"£{payout.requested_amount} (net £{payout.net_amount})"
        )
        return ActionResult.ok(
            "Payout request submitted",
            data=PayoutRequestResponse.model_validate(payout).model_dump(mode="json"),
        )

    def _create_payout_request(
        self, washer_id: int, amount: Decimal, notes: Optional[str]
    ) -> PayoutRequest:
        washer = self.repo.get_user_by_id(self.db, washer_id)
        if not washer:
            raise NotFoundError("Washer not found", code="washer_not_found")

        if not self.can_receive_payouts(washer):
            raise ValidationError(
                "Complete payout account verification before requesting a payout",
                code="verification_incomplete",
                data={"payout_account_status": washer.payout_account_status},
            )

        # Locks the available rows so a concurrent request cannot count them too
        available_earnings = self.repo.get_available_earnings_fifo(self.db, washer_id)
        available_balance = sum(
            (to_money(e.washer_earnings) for e in available_earnings), Decimal("0.00")
        )

        net_amount = validate_payout_amount(
            amount, available_balance, self.minimum_payout, self.withdrawal_fee
        )

        payout = PayoutRequest(
            washer_id=washer_id,
            requested_amount=amount,
            withdrawal_fee=self.withdrawal_fee,
            net_amount=net_amount,
            status=PayoutStatus.PENDING.value,
            notes=notes,
            requested_at=utcnow(),
        )
        self.db.add(payout)
        self.db.flush()

        reserved = select_fifo_earnings(available_earnings, amount)
        reserved_ids = [e.id for e in reserved]
        updated = self.repo.reserve_earnings(self.db, reserved_ids, payout.id)
        if updated != len(reserved_ids):
            raise AlreadyProcessedError(
                "Earnings were reserved by another payout request, please retry",
                code="reservation_conflict",
            )

        self.db.commit()
        self.db.refresh(payout)
        logger.info(f"Reserved {len(reserved_ids)} earnings for payout request {payout.id}")
        return payout

    def list_payout_requests(self, washer_id: int, limit: int = 50) -> list[PayoutRequest]:
        """Newest first"""
        return self.repo.get_payout_requests(self.db, washer_id, limit)

    def settle_payout_request(
        self,
        payout_request_id: int,
        status: str,
        reference_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ActionResult:
        """
        Record the outcome of a payout request.

        completed moves its reserved earnings to paid; rejected and failed
        release them back to available.
        """
        try:
            payout = self._settle(payout_request_id, status, reference_id, notes)
        except ServiceError as e:
            self.db.rollback()
            return ActionResult.from_error(e)
        except Exception:
            self.db.rollback()
            raise

        logger.info(f"Payout request {payout.id} settled as {payout.status}")
        return ActionResult.ok(
            f"Payout request {payout.status}",
            data=PayoutRequestResponse.model_validate(payout).model_dump(mode="json"),
        )

    def _settle(
        self,
        payout_request_id: int,
        status: str,
        reference_id: Optional[str],
        notes: Optional[str],
    ) -> PayoutRequest:
        payout = self.repo.get_payout_request(self.db, payout_request_id)
        if not payout:
            raise NotFoundError("Payout request not found", code="payout_not_found")

        if status not in PAYOUT_TRANSITIONS.get(payout.status, set()):
            if not PAYOUT_TRANSITIONS.get(payout.status):
                raise AlreadyProcessedError(
                    f"Payout request is already {payout.status}", code="already_settled"
                )
            raise InvalidStateError(
                f"Cannot move payout request from {payout.status} to {status}",
                code="invalid_transition",
            )

        now = utcnow()
        if payout.processed_at is None:
            payout.processed_at = now

        if status == PayoutStatus.COMPLETED.value:
            self._return_surplus(payout)
            paid = self.repo.mark_reserved_earnings_paid(self.db, payout.id)
            payout.completed_at = now
            logger.info(f"Marked {paid} earnings paid for payout request {payout.id}")
        elif status in (PayoutStatus.REJECTED.value, PayoutStatus.FAILED.value):
            released = self.repo.release_reserved_earnings(self.db, payout.id)
            logger.info(f"Released {released} earnings from payout request {payout.id}")

        payout.status = status
        if reference_id:
            payout.reference_id = reference_id
        if notes:
            payout.notes = notes

        self.db.commit()
        self.db.refresh(payout)
        return payout

    def _return_surplus(self, payout: PayoutRequest) -> Optional[Earning]:
        """
        Split the newest reserved earning so only the requested amount is paid.

        FIFO reservation stops once the running total covers the request, so
        the reserved total can exceed it by less than the last row. That
        remainder goes back to available, keeping the boundary row's
        made_available_at so it stays in the same FIFO position.
        """
        reserved = self.repo.get_reserved_earnings(self.db, payout.id)
        reserved_total = sum((to_money(e.washer_earnings) for e in reserved), Decimal("0.00"))
        surplus = reserved_total - to_money(payout.requested_amount)
        if surplus <= 0 or not reserved:
            return None

        boundary = reserved[-1]
        boundary.washer_earnings = to_money(boundary.washer_earnings) - surplus
        remainder = Earning(
            washer_id=boundary.washer_id,
            booking_id=boundary.booking_id,
            booking_total=Decimal("0.00"),
            platform_fee=Decimal("0.00"),
            washer_earnings=surplus,
            status=EarningStatus.AVAILABLE.value,
            made_available_at=boundary.made_available_at,
            payout_request_id=None,
        )
        self.db.add(remainder)
        self.db.flush()
        logger.info(
            f"Returned £{surplus} of earning {boundary.id} to available after payout request {payout.id}"
        )
        return remainder

    # ------------------------------------------------------------------
    # Crediting
    # ------------------------------------------------------------------

    def credit_earning_for_booking(self, booking: Booking) -> Earning:
        """
        Add the washer's share of a completed booking to the ledger.

        Flushes but does not commit; the caller commits together with the
        booking completion.
        """
        if booking.washer_id is None:
            raise InvalidStateError("Booking has no assigned washer", code="no_washer")
        if self.repo.get_earning_for_booking(self.db, booking.id):
            raise AlreadyProcessedError(
                "Earnings already credited for this booking", code="already_credited"
            )

        total = to_money(booking.total_price)
        platform_fee = to_money(total * Decimal(PLATFORM_COMMISSION_RATE))
        earning = Earning(
            washer_id=booking.washer_id,
            booking_id=booking.id,
            booking_total=total,
            platform_fee=platform_fee,
            washer_earnings=total - platform_fee,
            status=EarningStatus.AVAILABLE.value,
            made_available_at=utcnow(),
        )
        self.db.add(earning)
        self.db.flush()
        logger.info(
            f"Credited £{earning.washer_earnings} to washer {booking.washer_id} for booking {booking.id}"
        )
        return earning
