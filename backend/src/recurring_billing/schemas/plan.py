"""Pydantic schemas for PaymentPlan model."""
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from recurring_billing.models.plan import PeriodType


class PaymentPlanCreate(BaseModel):
    """Schema for creating a payment plan.

    Examples:
        Monthly plan with a 3-day grace period:
            ```json
            {
                "business_id": "6f1c...",
                "plan_name": "Gym Monthly",
                "period_type": "monthly",
                "period_count": 1,
                "base_amount": "500000.00",
                "discount_percentage": "0",
                "late_fee_per_day": "10000.00",
                "grace_period_days": 3
            }
            ```
    """

    business_id: UUID = Field(..., description="Owning business")
    plan_name: str = Field(..., min_length=1, max_length=255, description="Plan name")
    period_type: PeriodType = Field(..., description="Billing cadence unit")
    period_count: int = Field(default=1, ge=1, description="Period units per billing cycle")
    base_amount: Decimal = Field(..., gt=0, max_digits=19, decimal_places=2, description="Price per cycle")
    discount_percentage: Decimal = Field(
        default=Decimal("0"), ge=0, le=100, max_digits=5, decimal_places=2, description="Discount per cycle, in percent"
    )
    late_fee_per_day: Decimal = Field(
        default=Decimal("0"), ge=0, max_digits=19, decimal_places=2, description="Flat late fee per day past grace"
    )
    grace_period_days: int = Field(default=0, ge=0, description="Days after the due date without late fees")
    is_active: bool = Field(default=True, description="Whether the plan accepts new subscriptions")
