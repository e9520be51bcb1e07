"""Subscription model for customer subscriptions to payment plans."""
from sqlalchemy import Column, Date, DateTime, Integer, Numeric, String, ForeignKey, Uuid, Enum as SQLEnum
import enum

from recurring_billing.models.base import Base, enum_values


class SubscriptionStatus(enum.Enum):
    """Subscription lifecycle status."""

    PENDING = "pending"
    ACTIVE = "active"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED})
NON_TERMINAL_STATUSES = frozenset(set(SubscriptionStatus) - TERMINAL_STATUSES)


class Subscription(Base):
    """
    Customer subscription to a payment plan.

    Never deleted; cancelled and expired subscriptions are retained for
    audit. `version` backs optimistic locking in the repository.
    """

    __tablename__ = "subscriptions"

    customer_id = Column(Uuid(as_uuid=True), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    payment_plan_id = Column(Uuid(as_uuid=True), ForeignKey("payment_plans.id"), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=True)  # Open-ended when NULL
    status = Column(SQLEnum(SubscriptionStatus, name="subscriptionstatus", values_callable=enum_values), nullable=False, default=SubscriptionStatus.PENDING, index=True)
    total_amount = Column(Numeric(19, 2), nullable=False)
    discount_applied = Column(Numeric(19, 2), nullable=False, default=0)
    next_payment_date = Column(Date, nullable=False, index=True)
    last_payment_date = Column(Date, nullable=True)
    last_reminder_sent = Column(DateTime, nullable=True)
    last_expiry_reminder_sent = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False, default=1)

    @property
    def cycle_anchor(self):
        """Date the current billing cycle was anchored on."""
        return self.last_payment_date or self.start_date

    def __repr__(self) -> str:
        """String representation."""
        return f"<Subscription(id={self.id}, customer_id={self.customer_id}, status={self.status.value})>"


class SubscriptionHistory(Base):
    """
    Audit trail for subscription changes.

    Tracks status transitions with the reason that caused them.
    """

    __tablename__ = "subscription_history"

    subscription_id = Column(Uuid(as_uuid=True), ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(String, nullable=False)  # subscription_created, status_changed, subscription_renewed
    old_value = Column(String, nullable=True)
    new_value = Column(String, nullable=False)
    reason = Column(String, nullable=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<SubscriptionHistory(subscription_id={self.subscription_id}, event={self.event_type})>"
