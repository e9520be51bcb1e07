"""SQLAlchemy ORM models for the billing engine."""
# Import all models here to ensure they are registered with Alembic

from recurring_billing.models.base import Base
from recurring_billing.models.business import Business, Customer
from recurring_billing.models.plan import PaymentPlan, PeriodType
from recurring_billing.models.subscription import (
    NON_TERMINAL_STATUSES,
    TERMINAL_STATUSES,
    Subscription,
    SubscriptionHistory,
    SubscriptionStatus,
)
from recurring_billing.models.payment import Payment, PaymentStatus
from recurring_billing.models.notification import Notification, NotificationStatus, NotificationType

__all__ = [
    "Base",
    "Business",
    "Customer",
    "PaymentPlan",
    "PeriodType",
    "Subscription",
    "SubscriptionHistory",
    "SubscriptionStatus",
    "TERMINAL_STATUSES",
    "NON_TERMINAL_STATUSES",
    "Payment",
    "PaymentStatus",
    "Notification",
    "NotificationStatus",
    "NotificationType",
]
