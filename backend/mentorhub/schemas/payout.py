"""Payout request schemas."""

from typing import Optional

from pydantic import Field

from ._strict_base import StrictRequestModel


class PayoutRequestCreate(StrictRequestModel):
    amount: int = Field(..., gt=0, description="Minor currency units")
    mentor_note: Optional[str] = Field(default=None, max_length=1000)
