"""Ledger repository - Database operations for earnings and payouts"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models import Earning, EarningStatus, PayoutRequest, User


class LedgerRepository:
    """Repository for earnings and payout database operations"""

    @staticmethod
    def get_user_by_id(db: Session, user_id: int) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_earning_totals(db: Session, washer_id: int) -> dict[str, Decimal]:
        """Sum of washer_earnings per earning status"""
        rows = (
            db.query(Earning.status, func.coalesce(func.sum(Earning.washer_earnings), 0))
            .filter(Earning.washer_id == washer_id)
            .group_by(Earning.status)
            .all()
        )
        return {status: Decimal(str(total)) for status, total in rows}

    @staticmethod
    def get_available_earnings_fifo(db: Session, washer_id: int) -> list[Earning]:
        """Available earnings, oldest first, locked for the rest of the transaction"""
        return (
            db.query(Earning)
            .filter(Earning.washer_id == washer_id, Earning.status == EarningStatus.AVAILABLE.value)
            .order_by(Earning.made_available_at.asc(), Earning.id.asc())
            .with_for_update()
            .all()
        )

    @staticmethod
    def reserve_earnings(db: Session, earning_ids: list[int], payout_request_id: int) -> int:
        """Move earnings to processing only if they are still available; returns rows updated"""
        return (
            db.query(Earning)
            .filter(Earning.id.in_(earning_ids), Earning.status == EarningStatus.AVAILABLE.value)
            .update(
                {
                    Earning.status: EarningStatus.PROCESSING.value,
                    Earning.payout_request_id: payout_request_id,
                },
                synchronize_session=False,
            )
        )

    @staticmethod
    def get_reserved_earnings(db: Session, payout_request_id: int) -> list[Earning]:
        """Earnings held by a payout request, in the order FIFO reserved them"""
        return (
            db.query(Earning)
            .filter(
                Earning.payout_request_id == payout_request_id,
                Earning.status == EarningStatus.PROCESSING.value,
            )
            .order_by(Earning.made_available_at.asc(), Earning.id.asc())
            .with_for_update()
            .all()
        )

    @staticmethod
    def mark_reserved_earnings_paid(db: Session, payout_request_id: int) -> int:
        return (
            db.query(Earning)
            .filter(
                Earning.payout_request_id == payout_request_id,
                Earning.status == EarningStatus.PROCESSING.value,
            )
            .update({Earning.status: EarningStatus.PAID.value}, synchronize_session=False)
        )

    @staticmethod
    def release_reserved_earnings(db: Session, payout_request_id: int) -> int:
        return (
            db.query(Earning)
            .filter(
                Earning.payout_request_id == payout_request_id,
                Earning.status == EarningStatus.PROCESSING.value,
            )
            .update(
                {Earning.status: EarningStatus.AVAILABLE.value, Earning.payout_request_id: None},
                synchronize_session=False,
            )
        )

    @staticmethod
    def get_earning_for_booking(db: Session, booking_id: int) -> Optional[Earning]:
        return db.query(Earning).filter(Earning.booking_id == booking_id).first()

    @staticmethod
    def get_payout_request(db: Session, payout_request_id: int) -> Optional[PayoutRequest]:
        return db.query(PayoutRequest).filter(PayoutRequest.id == payout_request_id).first()

    @staticmethod
    def get_payout_requests(db: Session, washer_id: int, limit: int = 50) -> list[PayoutRequest]:
        return (
            db.query(PayoutRequest)
            .filter(PayoutRequest.washer_id == washer_id)
            .order_by(PayoutRequest.requested_at.desc(), PayoutRequest.id.desc())
            .limit(limit)
            .all()
        )
