"""Pricing domain schemas - Pydantic models for validation"""

from datetime import date as date_type
from typing import Optional

from pydantic import BaseModel, field_validator

from .catalog import ADD_ONS, DELIVERY_METHODS, ITEMS, TIME_SLOTS, WEIGHT_TIERS


class BookingSelection(BaseModel):
    """What the customer picked; held client-side until the booking is submitted"""

    weightTier: Optional[str] = None
    selectedItems: dict[str, int] = {}
    selectedAddOns: list[str] = []
    deliveryMethod: str = "collection"
    date: Optional[date_type] = None
    timeSlot: Optional[str] = None

    @field_validator("weightTier")
    @classmethod
    def validate_weight_tier(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in WEIGHT_TIERS:
            raise ValueError(f"weightTier must be one of {', '.join(WEIGHT_TIERS)}")
        return v

    @field_validator("selectedItems")
    @classmethod
    def validate_items(cls, v: dict[str, int]) -> dict[str, int]:
        for key, quantity in v.items():
            if key not in ITEMS:
                raise ValueError(f"Unknown item '{key}'")
            if quantity < 0:
                raise ValueError(f"Quantity for '{key}' cannot be negative")
        return {key: quantity for key, quantity in v.items() if quantity > 0}

    @field_validator("selectedAddOns")
    @classmethod
    def validate_add_ons(cls, v: list[str]) -> list[str]:
        unknown = [key for key in v if key not in ADD_ONS]
        if unknown:
            raise ValueError(f"Unknown add-on(s): {', '.join(unknown)}")
        # Set semantics; keep first occurrence order
        return list(dict.fromkeys(v))

    @field_validator("deliveryMethod")
    @classmethod
    def validate_delivery_method(cls, v: str) -> str:
        if v not in DELIVERY_METHODS:
            raise ValueError("deliveryMethod must be 'collection' or 'drop-off'")
        return v

    @field_validator("timeSlot")
    @classmethod
    def validate_time_slot(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in TIME_SLOTS:
            raise ValueError("timeSlot is not one of the offered slots")
        return v


class BreakdownLine(BaseModel):
    label: str
    price: Optional[float] = None
    isSubItem: bool = False


class QuoteResponse(BaseModel):
    weightTier: Optional[str]
    suggestedWeightTier: Optional[str]
    totalWeight: float
    total: float
    breakdown: list[BreakdownLine]
    servicesConfig: dict
