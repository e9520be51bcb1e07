"""Pydantic schemas for validating billing requests."""

from recurring_billing.schemas.account import BusinessCreate, CustomerCreate
from recurring_billing.schemas.plan import PaymentPlanCreate
from recurring_billing.schemas.payment import PaymentCreate
from recurring_billing.schemas.subscription import OverdueAmount, SubscriptionCreate

__all__ = [
    "BusinessCreate",
    "CustomerCreate",
    "PaymentPlanCreate",
    "PaymentCreate",
    "SubscriptionCreate",
    "OverdueAmount",
]
