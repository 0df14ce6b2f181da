"""Handover PIN generation"""

import re
import secrets

PIN_PATTERN = re.compile(r"[0-9]{4}")


def generate_pin() -> str:
    """Random 4-digit code, zero padded (0000-9999)"""
    return f"{secrets.randbelow(10000):04d}"


def generate_pin_pair() -> tuple[str, str]:
    """Collection and delivery PINs; never equal so one cannot stand in for the other"""
    collection_pin = generate_pin()
    delivery_pin = generate_pin()
    while delivery_pin == collection_pin:
        delivery_pin = generate_pin()
    return collection_pin, delivery_pin


def is_valid_pin_format(pin: str) -> bool:
    return isinstance(pin, str) and PIN_PATTERN.fullmatch(pin) is not None


def pins_match(submitted: str, stored: str) -> bool:
    if not stored:
        return False
    return secrets.compare_digest(submitted.encode("ascii"), stored.encode("ascii"))
