"""Pydantic schemas for Subscription model."""
from datetime import date
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from recurring_billing.models.subscription import SubscriptionStatus
from recurring_billing.schemas.payment import PaymentCreate


class SubscriptionCreate(BaseModel):
    """Schema for subscribing a customer to a plan."""

    customer_id: UUID = Field(..., description="Customer who subscribes")
    plan_id: UUID = Field(..., description="Payment plan to subscribe to")
    start_date: date = Field(..., description="First day of the first billing cycle")
    end_date: date | None = Field(default=None, description="Date the subscription expires (open-ended if omitted)")
    initial_payment: PaymentCreate | None = Field(
        default=None, description="Payment taken at signup; the subscription starts ACTIVE when present"
    )

    @model_validator(mode="after")
    def validate_dates(self) -> "SubscriptionCreate":
        """End date must fall after the start date."""
        if self.end_date is not None and self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class OverdueAmount(BaseModel):
    """Read-only projection of what a subscription owes as of a date."""

    subscription_id: UUID
    status: SubscriptionStatus
    as_of: date
    due_date: date
    days_late: int = Field(..., ge=0)
    elapsed_periods: int = Field(..., ge=0, description="Whole billing cycles elapsed since the due date")
    total_amount: Decimal
    late_fee: Decimal
    amount_due: Decimal
