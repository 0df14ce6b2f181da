"""Handover verification: PIN issuance and redemption"""

from .pins import generate_pin, generate_pin_pair
from .router import pin_attempt_limiter, router
from .service import HandoverService

__all__ = ["router", "pin_attempt_limiter", "HandoverService", "generate_pin", "generate_pin_pair"]
