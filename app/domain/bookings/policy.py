"""
Cancellation policy.

| Who    | Timing             | User refund | Washer penalty     |
|--------|--------------------|-------------|--------------------|
| user   | 12h or more before | full        | -                  |
| user   | under 12h          | none        | -                  |
| washer | 12h or more before | full        | none               |
| washer | under 12h          | full        | booking price + £10 |

Three late washer cancellations within six months put the account under review.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from ...errors import AlreadyProcessedError, InvalidStateError, ValidationError
from ...models import BookingStatus

LATE_CANCELLATION_WINDOW = timedelta(hours=12)
WASHER_LATE_CANCELLATION_FEE = Decimal("10.00")
PENALTY_REVIEW_THRESHOLD = 3
PENALTY_REVIEW_WINDOW = timedelta(days=183)

USER = "user"
WASHER = "washer"

USER_CANCELLABLE = {
    BookingStatus.AWAITING_PAYMENT.value,
    BookingStatus.AWAITING_ASSIGNMENT.value,
    BookingStatus.WASHER_ASSIGNED.value,
}
WASHER_CANCELLABLE = {BookingStatus.WASHER_ASSIGNED.value}


@dataclass(frozen=True)
class CancellationDecision:
    refund_amount: Decimal
    penalty_amount: Decimal
    late: bool


def _check_cancellable(status: str, allowed: set):
    if status == BookingStatus.CANCELLED.value:
        raise AlreadyProcessedError("This booking has already been cancelled", code="already_cancelled")
    if status not in allowed:
        raise InvalidStateError(f"A {status.replace('_', ' ')} booking cannot be cancelled", code="cannot_cancel")


def assess_cancellation(
    actor: str,
    status: str,
    total_price: Decimal,
    collection_start: datetime,
    now: datetime,
    confirm_no_refund: bool = False,
) -> CancellationDecision:
    """Refund and penalty owed if actor cancels now; raises when cancelling is not allowed"""
    late = collection_start - now < LATE_CANCELLATION_WINDOW

    if actor == USER:
        _check_cancellable(status, USER_CANCELLABLE)
        if status == BookingStatus.AWAITING_PAYMENT.value:
            # Nothing was charged
            return CancellationDecision(Decimal("0.00"), Decimal("0.00"), late)
        if late and not confirm_no_refund:
            raise ValidationError(
                "Cancelling within 12 hours of collection is not refundable. Confirm to proceed.",
                code="confirm_no_refund",
            )
        refund = Decimal("0.00") if late else total_price
        return CancellationDecision(refund, Decimal("0.00"), late)

    elif actor == WASHER:
        _check_cancellable(status, WASHER_CANCELLABLE)
        penalty = total_price + WASHER_LATE_CANCELLATION_FEE if late else Decimal("0.00")
        return CancellationDecision(total_price, penalty, late)

    raise ValueError(f"Unknown cancelling party '{actor}'")
