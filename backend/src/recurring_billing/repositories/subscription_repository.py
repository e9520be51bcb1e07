"""Storage collaborator for the billing engine.

Each call runs in its own session and returns detached entities. Saves
use optimistic locking on `subscriptions.version`: a save whose version no
longer matches the row raises ConcurrentModificationError and writes
nothing.
"""
from datetime import datetime
from typing import AsyncIterator
from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from recurring_billing.exceptions import (
    BusinessNotFoundError,
    ConcurrentModificationError,
    CustomerNotFoundError,
    PaymentNotFoundError,
    PlanNotFoundError,
    SubscriptionNotFoundError,
)
from recurring_billing.models.business import Business, Customer
from recurring_billing.models.payment import Payment
from recurring_billing.models.plan import PaymentPlan
from recurring_billing.models.subscription import (
    NON_TERMINAL_STATUSES,
    Subscription,
    SubscriptionHistory,
)
from recurring_billing.services.subscription_lifecycle import Transition

logger = structlog.get_logger(__name__)

# Columns a save may change; identity and ownership are immutable
MUTABLE_COLUMNS = (
    "status",
    "end_date",
    "total_amount",
    "discount_applied",
    "next_payment_date",
    "last_payment_date",
    "last_reminder_sent",
    "last_expiry_reminder_sent",
)


class SubscriptionRepository:
    """SQLAlchemy-backed storage for subscriptions and their payments."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """Initialize repository with a session factory."""
        self.session_factory = session_factory

    async def load_subscription(self, subscription_id: UUID) -> Subscription:
        """
        Load a subscription by ID.

        Raises:
            SubscriptionNotFoundError: No subscription with this ID
        """
        async with self.session_factory() as session:
            subscription = await session.get(Subscription, subscription_id)
        if subscription is None:
            raise SubscriptionNotFoundError(subscription_id)
        return subscription

    async def load_plan(self, plan_id: UUID) -> PaymentPlan:
        """
        Load a payment plan by ID.

        Raises:
            PlanNotFoundError: No plan with this ID
        """
        async with self.session_factory() as session:
            plan = await session.get(PaymentPlan, plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id)
        return plan

    async def load_customer(self, customer_id: UUID) -> Customer:
        """
        Load a customer by ID.

        Raises:
            CustomerNotFoundError: No customer with this ID
        """
        async with self.session_factory() as session:
            customer = await session.get(Customer, customer_id)
        if customer is None:
            raise CustomerNotFoundError(customer_id)
        return customer

    async def load_business(self, business_id: UUID) -> Business:
        """
        Load a business by ID.

        Raises:
            BusinessNotFoundError: No business with this ID
        """
        async with self.session_factory() as session:
            business = await session.get(Business, business_id)
        if business is None:
            raise BusinessNotFoundError(business_id)
        return business

    async def add(self, entity: Business | Customer | PaymentPlan) -> Business | Customer | PaymentPlan:
        """Insert a new business, customer or plan."""
        async with self.session_factory() as session:
            async with session.begin():
                session.add(entity)
        return entity

    async def update_plan(self, plan: PaymentPlan) -> PaymentPlan:
        """Persist changes to a detached plan."""
        async with self.session_factory() as session:
            async with session.begin():
                await session.merge(plan)
        return plan

    async def add_subscription(
        self,
        subscription: Subscription,
        payment: Payment | None = None,
        transition: Transition | None = None,
    ) -> Subscription:
        """
        Insert a new subscription, with its signup payment if any.

        Writes a `subscription_created` history row, and a `status_changed`
        row when a signup payment moved it past PENDING.
        """
        async with self.session_factory() as session:
            async with session.begin():
                session.add(subscription)
                await session.flush()
                session.add(
                    SubscriptionHistory(
                        subscription_id=subscription.id,
                        event_type="subscription_created",
                        old_value=None,
                        new_value=(transition.old_status if transition else subscription.status).value,
                    )
                )
                if payment is not None:
                    payment.subscription_id = subscription.id
                    session.add(payment)
                if transition is not None and transition.changed:
                    session.add(self._history_for(transition))
        return subscription

    async def save_subscription(
        self,
        subscription: Subscription,
        payment: Payment | None = None,
        transition: Transition | None = None,
        history: SubscriptionHistory | None = None,
    ) -> Subscription:
        """
        Persist a modified subscription under optimistic locking.

        The payment (if any), the audit row for a status change and any
        extra audit row are written in the same transaction as the
        subscription update.

        Raises:
            ConcurrentModificationError: The row changed since it was loaded,
                or the payment's transaction ID was recorded meanwhile
        """
        expected_version = subscription.version
        values = {column: getattr(subscription, column) for column in MUTABLE_COLUMNS}
        values["version"] = expected_version + 1
        values["updated_at"] = datetime.utcnow()

        async with self.session_factory() as session:
            try:
                async with session.begin():
                    result = await session.execute(
                        update(Subscription)
                        .where(
                            Subscription.id == subscription.id,
                            Subscription.version == expected_version,
                        )
                        .values(**values)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount == 0:
                        exists = await session.scalar(
                            select(Subscription.id).where(Subscription.id == subscription.id)
                        )
                        if exists is None:
                            raise SubscriptionNotFoundError(subscription.id)
                        logger.warning(
                            "subscription_version_conflict",
                            subscription_id=str(subscription.id),
                            expected_version=expected_version,
                        )
                        raise ConcurrentModificationError(subscription.id, expected_version)

                    if payment is not None:
                        session.add(payment)
                    if transition is not None and transition.changed:
                        session.add(self._history_for(transition))
                    if history is not None:
                        session.add(history)
            except IntegrityError as e:
                # Only the payment insert carries a unique key besides the primary keys
                if payment is None:
                    raise
                logger.warning(
                    "payment_transaction_conflict",
                    subscription_id=str(subscription.id),
                    transaction_id=payment.transaction_id,
                )
                raise ConcurrentModificationError(subscription.id, expected_version) from e

        subscription.version = expected_version + 1
        subscription.updated_at = values["updated_at"]
        return subscription

    async def list_non_terminal_subscriptions(self, batch_size: int = 500) -> AsyncIterator[Subscription]:
        """
        Stream every PENDING/ACTIVE/OVERDUE subscription.

        Pages by primary key so a tenant of any size is read in bounded
        batches, each in a short-lived session.
        """
        last_id: UUID | None = None
        while True:
            query = (
                select(Subscription)
                .where(Subscription.status.in_(NON_TERMINAL_STATUSES))
                .order_by(Subscription.id)
                .limit(batch_size)
            )
            if last_id is not None:
                query = query.where(Subscription.id > last_id)

            async with self.session_factory() as session:
                result = await session.execute(query)
                page = list(result.scalars().all())

            for subscription in page:
                yield subscription

            if len(page) < batch_size:
                return
            last_id = page[-1].id

    async def find_payment(self, transaction_id: str) -> Payment | None:
        """Find a payment by its transaction ID."""
        async with self.session_factory() as session:
            result = await session.execute(select(Payment).where(Payment.transaction_id == transaction_id))
            return result.scalar_one_or_none()

    async def get_payment(self, transaction_id: str) -> Payment:
        """
        Load a payment by its transaction ID.

        Raises:
            PaymentNotFoundError: No payment with this transaction ID
        """
        payment = await self.find_payment(transaction_id)
        if payment is None:
            raise PaymentNotFoundError(transaction_id, message=f"Payment with transaction {transaction_id} not found")
        return payment

    async def save_payment(self, payment: Payment) -> Payment:
        """Persist changes to a detached payment."""
        async with self.session_factory() as session:
            async with session.begin():
                await session.merge(payment)
        return payment

    async def list_payments(self, subscription_id: UUID) -> list[Payment]:
        """Payments of a subscription, oldest due date first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Payment)
                .where(Payment.subscription_id == subscription_id)
                .order_by(Payment.due_date, Payment.created_at)
            )
            return list(result.scalars().all())

    async def list_history(self, subscription_id: UUID) -> list[SubscriptionHistory]:
        """Audit trail of a subscription, oldest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(SubscriptionHistory)
                .where(SubscriptionHistory.subscription_id == subscription_id)
                .order_by(SubscriptionHistory.created_at)
            )
            return list(result.scalars().all())

    @staticmethod
    def _history_for(transition: Transition) -> SubscriptionHistory:
        return SubscriptionHistory(
            subscription_id=transition.subscription_id,
            event_type="status_changed",
            old_value=transition.old_status.value,
            new_value=transition.new_status.value,
            reason=transition.reason,
        )
