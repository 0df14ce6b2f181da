"""Earnings and payout ledger"""

from .router import admin_router, router
from .service import MINIMUM_PAYOUT, WITHDRAWAL_FEE, LedgerService

__all__ = ["router", "admin_router", "LedgerService", "MINIMUM_PAYOUT", "WITHDRAWAL_FEE"]
