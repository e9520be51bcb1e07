"""Test data factories using Faker for generating realistic test data."""
from datetime import date, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from faker import Faker

from recurring_billing.models.plan import PeriodType
from recurring_billing.models.subscription import SubscriptionStatus

fake = Faker()


class BusinessFactory:
    """Factory for creating test business data."""

    @staticmethod
    def create(overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Create business test data.

        Args:
            overrides: Optional field overrides

        Returns:
            dict: Business data
        """
        data = {
            "name": fake.company(),
            "owner_name": fake.name(),
            "phone_number": fake.numerify("+98912#######"),
            "currency": "IRR",
        }
        if overrides:
            data.update(overrides)
        return data


class CustomerFactory:
    """Factory for creating test customer data."""

    @staticmethod
    def create(business_id: UUID, overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Create customer test data.

        Args:
            business_id: Owning business
            overrides: Optional field overrides

        Returns:
            dict: Customer data
        """
        data = {
            "business_id": business_id,
            "first_name": fake.first_name(),
            "last_name": fake.last_name(),
            "phone_number": fake.numerify("+98912#######"),
            "email": fake.email(),
        }
        if overrides:
            data.update(overrides)
        return data


class PaymentPlanFactory:
    """Factory for creating test payment plan data."""

    @staticmethod
    def create(business_id: UUID, overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Create payment plan test data.

        Defaults to a monthly plan of 500,000 with a flat late fee of
        10,000 per day after a 3-day grace period.

        Args:
            business_id: Owning business
            overrides: Optional field overrides

        Returns:
            dict: Payment plan data
        """
        data = {
            "business_id": business_id,
            "plan_name": f"{fake.word().title()} Plan",
            "period_type": PeriodType.MONTHLY,
            "period_count": 1,
            "base_amount": Decimal("500000.00"),
            "discount_percentage": Decimal("0"),
            "late_fee_per_day": Decimal("10000.00"),
            "grace_period_days": 3,
            "is_active": True,
        }
        if overrides:
            data.update(overrides)
        return data


class SubscriptionFactory:
    """Factory for creating subscription rows directly, bypassing the service."""

    @staticmethod
    def create(
        customer_id: UUID,
        payment_plan_id: UUID,
        overrides: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Create subscription test data.

        Args:
            customer_id: Owning customer
            payment_plan_id: Plan billed
            overrides: Optional field overrides

        Returns:
            dict: Subscription data
        """
        start_date = fake.date_between(start_date=date(2024, 1, 1), end_date=date(2024, 12, 31))
        data = {
            "id": uuid4(),
            "customer_id": customer_id,
            "payment_plan_id": payment_plan_id,
            "start_date": start_date,
            "end_date": None,
            "status": SubscriptionStatus.ACTIVE,
            "total_amount": Decimal("500000.00"),
            "discount_applied": Decimal("0.00"),
            "next_payment_date": start_date + timedelta(days=30),
            "last_payment_date": None,
            "last_reminder_sent": None,
            "last_expiry_reminder_sent": None,
            "version": 1,
        }
        if overrides:
            data.update(overrides)
        return data
