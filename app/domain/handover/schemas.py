"""Handover domain schemas - Pydantic models for validation"""

from typing import Literal

from pydantic import BaseModel, Field

PinKind = Literal["collection", "delivery"]


class PinVerifyRequest(BaseModel):
    kind: PinKind
    pin: str = Field(..., pattern=r"^[0-9]{4}$", description="4-digit handover PIN")
