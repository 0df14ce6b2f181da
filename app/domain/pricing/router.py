"""Pricing router - live quotes for the booking form"""

from fastapi import APIRouter

from .catalog import catalog_as_dict
from .engine import (
    build_services_config,
    calculate_total,
    calculate_total_weight,
    determine_weight_tier,
    get_itemized_breakdown,
)
from .schemas import BookingSelection, QuoteResponse

router = APIRouter(prefix="/pricing", tags=["Pricing"])


@router.get("/catalog")
async def get_catalog():
    """Tiers, items, add-ons and bookable slots"""
    return catalog_as_dict()


@router.post("/quote", response_model=QuoteResponse)
async def quote(selection: BookingSelection):
    """Price a selection exactly as booking creation will"""
    total_weight = calculate_total_weight(selection.selectedItems)
    return QuoteResponse(
        weightTier=selection.weightTier,
        suggestedWeightTier=determine_weight_tier(total_weight),
        totalWeight=total_weight,
        total=calculate_total(selection),
        breakdown=get_itemized_breakdown(selection),
        servicesConfig=build_services_config(selection),
    )
