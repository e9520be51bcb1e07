"""Notification outbox model."""
from sqlalchemy import Column, DateTime, Integer, JSON, Text, ForeignKey, Uuid, Enum as SQLEnum
from sqlalchemy.dialects.postgresql import JSONB
import enum

from recurring_billing.models.base import Base, enum_values


class NotificationType(enum.Enum):
    """Notification template kind."""

    PAYMENT_REMINDER = "payment_reminder"
    OVERDUE_NOTICE = "overdue_notice"
    PAYMENT_SUCCESS = "payment_success"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    EXPIRY_REMINDER = "expiry_reminder"


class NotificationStatus(enum.Enum):
    """Delivery status of a queued notification."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class Notification(Base):
    """
    Notification request queued for a customer.

    Rows are written by the dispatcher and drained by the delivery worker;
    billing state never depends on their delivery.
    """

    __tablename__ = "notifications"

    customer_id = Column(Uuid(as_uuid=True), ForeignKey("customers.id", ondelete="CASCADE"), nullable=False, index=True)
    subscription_id = Column(Uuid(as_uuid=True), ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=True, index=True)
    notification_type = Column(SQLEnum(NotificationType, name="notificationtype", values_callable=enum_values), nullable=False)
    params = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)
    status = Column(SQLEnum(NotificationStatus, name="notificationstatus", values_callable=enum_values), nullable=False, default=NotificationStatus.PENDING, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    message = Column(Text, nullable=True)  # Rendered text, stored on delivery
    last_error = Column(Text, nullable=True)
    sent_at = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<Notification(id={self.id}, type={self.notification_type.value}, status={self.status.value})>"
