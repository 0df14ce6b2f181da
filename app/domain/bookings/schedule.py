"""Collection slot parsing and notice-period checks"""

from datetime import date, datetime, timedelta
from typing import Optional

from ...errors import ValidationError
from ...models import utcnow
from ..pricing.catalog import MIN_BOOKING_NOTICE_HOURS, TIME_SLOTS


def slot_start(collection_date: date, time_slot: str) -> datetime:
    """'1:00 PM - 4:00 PM' on a date -> datetime at 13:00 (naive UTC)"""
    start_text = time_slot.split("-")[0].strip()
    start_time = datetime.strptime(start_text, "%I:%M %p").time()
    return datetime.combine(collection_date, start_time)


def validate_schedule(
    collection_date: Optional[date], time_slot: Optional[str], now: Optional[datetime] = None
) -> datetime:
    """Return the slot start, or raise if the slot is unknown or too soon"""
    if collection_date is None or not time_slot:
        raise ValidationError("Choose a collection date and time slot", code="missing_schedule")
    if time_slot not in TIME_SLOTS:
        raise ValidationError("Unknown time slot", code="invalid_time_slot")

    start = slot_start(collection_date, time_slot)
    now = now or utcnow()
    if start - now < timedelta(hours=MIN_BOOKING_NOTICE_HOURS):
        raise ValidationError(
            f"Bookings must be made at least {MIN_BOOKING_NOTICE_HOURS} hours in advance",
            code="insufficient_notice",
        )
    return start
