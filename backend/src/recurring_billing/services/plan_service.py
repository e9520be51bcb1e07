"""Plan service for business-owned payment plans."""
from uuid import UUID

import structlog

from recurring_billing.exceptions import InvalidOperationError
from recurring_billing.models.plan import PaymentPlan
from recurring_billing.repositories.subscription_repository import SubscriptionRepository
from recurring_billing.schemas.plan import PaymentPlanCreate

logger = structlog.get_logger(__name__)


class PlanService:
    """Service layer for payment plan operations."""

    def __init__(self, repository: SubscriptionRepository):
        """Initialize plan service with the storage collaborator."""
        self.repository = repository

    async def create_plan(self, plan_data: PaymentPlanCreate) -> PaymentPlan:
        """
        Create a payment plan for a business.

        Args:
            plan_data: Plan creation data

        Returns:
            Created plan

        Raises:
            BusinessNotFoundError: Business does not exist
            InvalidOperationError: Business is deactivated
        """
        business = await self.repository.load_business(plan_data.business_id)
        if not business.is_active:
            raise InvalidOperationError(
                f"Business {business.id} is not active",
                context={"business_id": str(business.id)},
            )

        plan = PaymentPlan(
            business_id=business.id,
            plan_name=plan_data.plan_name,
            period_type=plan_data.period_type,
            period_count=plan_data.period_count,
            base_amount=plan_data.base_amount,
            discount_percentage=plan_data.discount_percentage,
            late_fee_per_day=plan_data.late_fee_per_day,
            grace_period_days=plan_data.grace_period_days,
            is_active=plan_data.is_active,
        )
        await self.repository.add(plan)

        logger.info(
            "plan_created",
            plan_id=str(plan.id),
            business_id=str(business.id),
            period_type=plan.period_type.value,
            period_count=plan.period_count,
        )
        return plan

    async def deactivate_plan(self, plan_id: UUID) -> PaymentPlan:
        """
        Stop offering a plan to new subscribers.

        Existing subscriptions keep billing on it.

        Raises:
            PlanNotFoundError: Plan does not exist
        """
        plan = await self.repository.load_plan(plan_id)
        if not plan.is_active:
            return plan

        plan.is_active = False
        await self.repository.update_plan(plan)

        logger.info("plan_deactivated", plan_id=str(plan_id))
        return plan
