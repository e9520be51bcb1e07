"""Payment plan model."""
from sqlalchemy import Column, String, Integer, Boolean, Numeric, ForeignKey, Uuid, Enum as SQLEnum
import enum

from recurring_billing.models.base import Base, enum_values


class PeriodType(enum.Enum):
    """Billing cadence unit."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUAL = "semi_annual"
    YEARLY = "yearly"


class PaymentPlan(Base):
    """
    Recurring payment plan offered by a business.

    One billing cycle is `period_count` units of `period_type`. Amounts are
    in the tenant currency with 2 fractional digits; `late_fee_per_day` is a
    flat amount accrued per day past the grace period.
    """

    __tablename__ = "payment_plans"

    business_id = Column(Uuid(as_uuid=True), ForeignKey("businesses.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_name = Column(String, nullable=False)
    period_type = Column(SQLEnum(PeriodType, name="periodtype", values_callable=enum_values), nullable=False)
    period_count = Column(Integer, nullable=False, default=1)
    base_amount = Column(Numeric(19, 2), nullable=False)
    discount_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    late_fee_per_day = Column(Numeric(19, 2), nullable=False, default=0)
    grace_period_days = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<PaymentPlan(id={self.id}, name={self.plan_name}, "
            f"period={self.period_count}x{self.period_type.value}, amount={self.base_amount})>"
        )
