"""Pricing catalog - fixed service prices, item weights and booking slots"""

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class WeightTier:
    key: str
    label: str
    price: Decimal
    max_weight: float  # kg


@dataclass(frozen=True)
class LaundryItem:
    key: str
    label: str
    unit_weight: float  # kg per piece


@dataclass(frozen=True)
class AddOn:
    key: str
    label: str
    price: Decimal  # may be negative (discount)


# Ordered by max_weight ascending
WEIGHT_TIERS = {
    "0-6kg": WeightTier("0-6kg", "Standard Wash (up to 6kg)", Decimal("18.00"), 6.0),
    "6-10kg": WeightTier("6-10kg", "Large Wash (6-10kg)", Decimal("25.00"), 10.0),
}

ITEMS = {
    "t_shirt": LaundryItem("t_shirt", "T-Shirt", 0.2),
    "shirt": LaundryItem("shirt", "Shirt / Blouse", 0.25),
    "trousers": LaundryItem("trousers", "Trousers / Jeans", 0.7),
    "jumper": LaundryItem("jumper", "Jumper / Hoodie", 0.6),
    "underwear": LaundryItem("underwear", "Underwear / Socks (pair)", 0.1),
    "towel": LaundryItem("towel", "Bath Towel", 0.6),
    "bed_sheets": LaundryItem("bed_sheets", "Bed Sheet Set", 1.2),
    "pillows": LaundryItem("pillows", "Pillows (pair)", 1.0),
    "duvet_single": LaundryItem("duvet_single", "Single Duvet", 1.5),
    "duvet_double": LaundryItem("duvet_double", "Double Duvet", 2.5),
    "curtains": LaundryItem("curtains", "Curtains", 1.8),
}

ADD_ONS = {
    "stain_removal": AddOn("stain_removal", "Stain Removal Treatment", Decimal("5.00")),
    "ironing": AddOn("ironing", "Ironing Service", Decimal("12.50")),
    "own_products": AddOn("own_products", "User supplies own products", Decimal("-1.50")),
}

COLLECTION_FEE = Decimal("4.99")
COLLECTION_FEE_LABEL = "Collection & Delivery"

DELIVERY_METHODS = ("collection", "drop-off")

TIME_SLOTS = (
    "9:00 AM - 12:00 PM",
    "1:00 PM - 4:00 PM",
    "5:00 PM - 8:00 PM",
)

# Bookings must be made at least this far ahead of the collection slot
MIN_BOOKING_NOTICE_HOURS = 24


def catalog_as_dict() -> dict:
    return {
        "weightTiers": [
            {"key": t.key, "label": t.label, "price": float(t.price), "maxWeight": t.max_weight}
            for t in WEIGHT_TIERS.values()
        ],
        "items": [
            {"key": i.key, "label": i.label, "unitWeight": i.unit_weight} for i in ITEMS.values()
        ],
        "addOns": [
            {"key": a.key, "label": a.label, "price": float(a.price)} for a in ADD_ONS.values()
        ],
        "collectionFee": float(COLLECTION_FEE),
        "deliveryMethods": list(DELIVERY_METHODS),
        "timeSlots": list(TIME_SLOTS),
        "minBookingNoticeHours": MIN_BOOKING_NOTICE_HOURS,
    }
