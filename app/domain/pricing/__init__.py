"""Pricing domain - booking price computation"""

from .engine import (
    build_services_config,
    calculate_total,
    calculate_total_weight,
    determine_weight_tier,
    get_itemized_breakdown,
)
from .router import router
from .schemas import BookingSelection, BreakdownLine

__all__ = [
    "router",
    "BookingSelection",
    "BreakdownLine",
    "build_services_config",
    "calculate_total",
    "calculate_total_weight",
    "determine_weight_tier",
    "get_itemized_breakdown",
]
