"""Ledger router - washer balance and payout endpoints, admin settlement"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import require_role
from ...database import get_db
from ...models import Role, User
from ...schemas import ActionResult
from .schemas import (
    PayoutAccountUpdate,
    PayoutRequestCreate,
    PayoutRequestResponse,
    PayoutSettle,
    WasherBalance,
)
from .service import LedgerService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payouts", tags=["Payouts"])
admin_router = APIRouter(prefix="/admin/payouts", tags=["Admin"])


def get_ledger_service(db: Session = Depends(get_db)) -> LedgerService:
    """Dependency injection for LedgerService"""
    return LedgerService(db)


@router.get("/balance", response_model=WasherBalance)
async def get_balance(
    current_user: User = Depends(require_role(Role.WASHER)),
    service: LedgerService = Depends(get_ledger_service),
):
    return service.get_washer_balance(current_user.id)


@router.get("/requests", response_model=list[PayoutRequestResponse])
async def list_payout_requests(
    limit: int = Query(50, ge=1, le=50),
    current_user: User = Depends(require_role(Role.WASHER)),
    service: LedgerService = Depends(get_ledger_service),
):
    """Payout history, newest first"""
    return service.list_payout_requests(current_user.id, limit)


@router.post("/requests", response_model=ActionResult, status_code=201)
async def create_payout_request(
    data: PayoutRequestCreate,
    current_user: User = Depends(require_role(Role.WASHER)),
    service: LedgerService = Depends(get_ledger_service),
):
    result = service.create_payout_request(current_user.id, data.amount, data.notes)
    return result.raise_for_failure()


@admin_router.post("/{payout_request_id}/settle", response_model=ActionResult)
async def settle_payout_request(
    payout_request_id: int,
    data: PayoutSettle,
    current_user: User = Depends(require_role(Role.ADMIN)),
    service: LedgerService = Depends(get_ledger_service),
):
    logger.info(f"Admin {current_user.id} settling payout request {payout_request_id} as {data.status}")
    result = service.settle_payout_request(
        payout_request_id, data.status, data.reference_id, data.notes
    )
    return result.raise_for_failure()


@admin_router.post("/accounts/{washer_id}", response_model=ActionResult)
async def update_payout_account(
    washer_id: int,
    data: PayoutAccountUpdate,
    current_user: User = Depends(require_role(Role.ADMIN)),
    service: LedgerService = Depends(get_ledger_service),
):
    """Set a washer's payout account state once onboarding has been checked"""
    logger.info(f"Admin {current_user.id} setting washer {washer_id} payout account to {data.status}")
    result = service.update_payout_account(washer_id, data.status, data.account_id)
    return result.raise_for_failure()
