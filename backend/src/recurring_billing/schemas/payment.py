"""Pydantic schemas for payments."""
from decimal import Decimal

from pydantic import BaseModel, Field


class PaymentCreate(BaseModel):
    """Schema for recording a payment against a subscription."""

    amount: Decimal = Field(..., gt=0, max_digits=19, decimal_places=2, description="Amount paid")
    payment_method: str = Field(default="cash", min_length=1, max_length=50, description="How the customer paid")
    transaction_id: str | None = Field(
        default=None,
        min_length=1,
        max_length=100,
        description="Caller-supplied transaction ID; repeats return the original payment",
    )
    notes: str | None = Field(default=None, max_length=1000)
