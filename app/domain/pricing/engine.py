"""
Booking price computation.

Pure and deterministic: the quote endpoint and booking creation both call these
functions, so the price shown to the customer is the price charged. Nothing in
here raises; unknown keys are skipped and the total is clamped at zero.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from .catalog import (
    ADD_ONS,
    COLLECTION_FEE,
    COLLECTION_FEE_LABEL,
    ITEMS,
    WEIGHT_TIERS,
)
from .schemas import BookingSelection, BreakdownLine

CENTS = Decimal("0.01")


def _money(value: Decimal) -> float:
    return float(value.quantize(CENTS, rounding=ROUND_HALF_UP))


def _ordered_add_ons(selection: BookingSelection) -> list:
    chosen = set(selection.selectedAddOns)
    return [add_on for key, add_on in ADD_ONS.items() if key in chosen]


def _ordered_items(selection: BookingSelection) -> list:
    return [
        (item, selection.selectedItems[key])
        for key, item in ITEMS.items()
        if selection.selectedItems.get(key, 0) > 0
    ]


def _collection_fee_applies(selection: BookingSelection) -> bool:
    return selection.weightTier in WEIGHT_TIERS and selection.deliveryMethod == "collection"


def calculate_total_weight(selected_items: dict[str, int]) -> float:
    """Sum quantity x unit weight over known items"""
    total = Decimal("0")
    for key, quantity in selected_items.items():
        item = ITEMS.get(key)
        if item is None or quantity <= 0:
            continue
        total += Decimal(str(item.unit_weight)) * quantity
    return float(total)


def determine_weight_tier(total_weight: float) -> Optional[str]:
    """
    Smallest tier whose max weight covers the load.

    Zero weight has no tier. A load heavier than every tier is charged at the
    largest tier rather than rejected.
    """
    if total_weight <= 0:
        return None
    tiers = sorted(WEIGHT_TIERS.values(), key=lambda t: t.max_weight)
    for tier in tiers:
        if tier.max_weight >= total_weight:
            return tier.key
    return tiers[-1].key


def calculate_total(selection: BookingSelection) -> float:
    total = Decimal("0")
    has_services = False

    tier = WEIGHT_TIERS.get(selection.weightTier) if selection.weightTier else None
    if tier:
        total += tier.price
        has_services = True

    for add_on in _ordered_add_ons(selection):
        total += add_on.price

    if has_services and selection.deliveryMethod == "collection":
        total += COLLECTION_FEE

    return _money(max(Decimal("0"), total))


def get_itemized_breakdown(selection: BookingSelection) -> list[BreakdownLine]:
    """Tier, then informational item lines, then add-ons, then the collection fee"""
    lines = []

    tier = WEIGHT_TIERS.get(selection.weightTier) if selection.weightTier else None
    if tier:
        lines.append(BreakdownLine(label=tier.label, price=_money(tier.price)))

    for item, quantity in _ordered_items(selection):
        lines.append(BreakdownLine(label=f"{quantity} x {item.label}", price=None, isSubItem=True))

    for add_on in _ordered_add_ons(selection):
        lines.append(BreakdownLine(label=add_on.label, price=_money(add_on.price)))

    if _collection_fee_applies(selection):
        lines.append(BreakdownLine(label=COLLECTION_FEE_LABEL, price=_money(COLLECTION_FEE)))

    return lines


def build_services_config(selection: BookingSelection) -> dict:
    """JSON snapshot persisted on the booking"""
    tier = WEIGHT_TIERS.get(selection.weightTier) if selection.weightTier else None
    return {
        "weightTier": tier.key if tier else None,
        "baseService": {"name": tier.label, "price": _money(tier.price)} if tier else None,
        "selectedItems": [
            {"key": item.key, "name": item.label, "price": None, "quantity": quantity}
            for item, quantity in _ordered_items(selection)
        ],
        "selectedAddOns": [
            {"key": add_on.key, "name": add_on.label, "price": _money(add_on.price)}
            for add_on in _ordered_add_ons(selection)
        ],
        "collectionFee": _money(COLLECTION_FEE) if _collection_fee_applies(selection) else 0.0,
    }
