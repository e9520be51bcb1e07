"""Payment model for payment transactions."""
from sqlalchemy import Column, Date, DateTime, Numeric, String, Text, ForeignKey, Uuid, Enum as SQLEnum
import enum

from recurring_billing.models.base import Base, enum_values


class PaymentStatus(enum.Enum):
    """Payment transaction status."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    REFUNDED = "refunded"


class Payment(Base):
    """
    Payment toward one billing cycle of a subscription.

    `transaction_id` is unique and doubles as the idempotency key for
    repeated recording requests.
    """

    __tablename__ = "payments"

    subscription_id = Column(Uuid(as_uuid=True), ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(19, 2), nullable=False)
    due_date = Column(Date, nullable=False)
    payment_date = Column(DateTime, nullable=True)  # NULL until settled
    status = Column(SQLEnum(PaymentStatus, name="paymentstatus", values_callable=enum_values), nullable=False, default=PaymentStatus.PENDING, index=True)
    transaction_id = Column(String, nullable=False, unique=True, index=True)
    late_fee = Column(Numeric(19, 2), nullable=False, default=0)
    payment_method = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<Payment(id={self.id}, subscription_id={self.subscription_id}, status={self.status.value}, amount={self.amount})>"
