"""Business (tenant) and customer models."""
from sqlalchemy import Column, String, Boolean, ForeignKey, Uuid

from recurring_billing.models.base import Base


class Business(Base):
    """
    Tenant that owns customers and payment plans.

    Currency is per tenant; all amounts under a business use it.
    """

    __tablename__ = "businesses"

    name = Column(String, nullable=False)
    owner_name = Column(String, nullable=True)
    phone_number = Column(String, nullable=True)
    currency = Column(String(3), nullable=False, default="IRR")
    is_active = Column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<Business(id={self.id}, name={self.name})>"


class Customer(Base):
    """Customer of a business; owns subscriptions."""

    __tablename__ = "customers"

    business_id = Column(Uuid(as_uuid=True), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    phone_number = Column(String, nullable=False)  # E.164, used for SMS notifications
    email = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        """String representation."""
        return f"<Customer(id={self.id}, business_id={self.business_id})>"
