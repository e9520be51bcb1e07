"""Billing service: subscriptions, payments and overdue projections."""
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from recurring_billing.config import settings
from recurring_billing.exceptions import ConcurrentModificationError, InvalidOperationError, ValidationError
from recurring_billing.integrations.notification_service import NotificationDispatcher, notify_quietly
from recurring_billing.metrics import (
    late_fees_collected_total,
    payment_amount_total,
    payments_recorded_total,
    subscription_transitions_total,
    subscriptions_created_total,
    subscriptions_renewed_total,
)
from recurring_billing.models.notification import NotificationType
from recurring_billing.models.payment import Payment, PaymentStatus
from recurring_billing.models.plan import PaymentPlan
from recurring_billing.models.subscription import Subscription, SubscriptionHistory, SubscriptionStatus
from recurring_billing.repositories.subscription_repository import SubscriptionRepository
from recurring_billing.schemas.payment import PaymentCreate
from recurring_billing.schemas.subscription import OverdueAmount, SubscriptionCreate
from recurring_billing.services.billing_calculator import BillingCalculator, billing_calculator
from recurring_billing.services.period_calculator import PeriodCalculator, period_calculator
from recurring_billing.services.subscription_lifecycle import SubscriptionLifecycle, Transition
from recurring_billing.utils.clock import Clock, SystemClock
from recurring_billing.utils.currency import ZERO, to_money

logger = structlog.get_logger(__name__)


def generate_transaction_id() -> str:
    """Generate a unique transaction ID (e.g. TXN-3F2A9C0D1B7E4A55)."""
    return f"TXN-{uuid4().hex[:16].upper()}"


class BillingService:
    """Orchestrates calculators, the lifecycle and the storage collaborator."""

    def __init__(
        self,
        repository: SubscriptionRepository,
        notifier: NotificationDispatcher,
        clock: Clock | None = None,
        periods: PeriodCalculator = period_calculator,
        calculator: BillingCalculator = billing_calculator,
        lifecycle: SubscriptionLifecycle | None = None,
        conflict_max_attempts: int | None = None,
        conflict_backoff_seconds: float | None = None,
    ):
        """
        Initialize billing service.

        Args:
            repository: Storage collaborator
            notifier: Notification collaborator (best-effort)
            clock: Source of "today"; wall clock when omitted
            periods: Period arithmetic
            calculator: Monetary arithmetic
            lifecycle: Status state machine
            conflict_max_attempts: Attempts for a payment that hits a concurrent update
            conflict_backoff_seconds: Base backoff between those attempts
        """
        self.repository = repository
        self.notifier = notifier
        self.clock = clock or SystemClock()
        self.periods = periods
        self.calculator = calculator
        self.lifecycle = lifecycle or SubscriptionLifecycle(periods, calculator)
        self.conflict_max_attempts = conflict_max_attempts or settings.conflict_max_attempts
        self.conflict_backoff_seconds = (
            settings.conflict_retry_backoff_seconds if conflict_backoff_seconds is None else conflict_backoff_seconds
        )

    async def create_subscription(self, subscription_data: SubscriptionCreate) -> Subscription:
        """
        Subscribe a customer to a payment plan.

        The subscription starts PENDING with its first payment due one cycle
        after the start date. With an initial payment it starts ACTIVE.

        Args:
            subscription_data: Subscription creation data

        Returns:
            Created subscription

        Raises:
            CustomerNotFoundError: Customer does not exist
            PlanNotFoundError: Plan does not exist
            InvalidOperationError: Plan is inactive or belongs to another business
            ValidationError: Initial payment is below the cycle total
        """
        customer = await self.repository.load_customer(subscription_data.customer_id)
        plan = await self.repository.load_plan(subscription_data.plan_id)

        if not plan.is_active:
            raise InvalidOperationError(
                f"Plan {plan.id} is inactive",
                context={"plan_id": str(plan.id)},
            )
        if plan.business_id != customer.business_id:
            raise InvalidOperationError(
                "Plan and customer belong to different businesses",
                context={"plan_id": str(plan.id), "customer_id": str(customer.id)},
            )

        subscription = Subscription(
            id=uuid4(),
            customer_id=customer.id,
            payment_plan_id=plan.id,
            start_date=subscription_data.start_date,
            end_date=subscription_data.end_date,
            status=SubscriptionStatus.PENDING,
            total_amount=self.calculator.total_amount(plan),
            discount_applied=self.calculator.discount_amount(plan),
            next_payment_date=self.periods.advance(subscription_data.start_date, plan.period_type, plan.period_count),
            version=1,
        )

        payment = None
        transition = None
        if subscription_data.initial_payment is not None:
            payment = self._build_payment(
                subscription,
                subscription_data.initial_payment,
                expected=subscription.total_amount,
                due_date=subscription.start_date,
                late_fee=ZERO,
            )
            transition = self.lifecycle.apply_payment(subscription, plan, subscription.start_date)

        await self.repository.add_subscription(subscription, payment=payment, transition=transition)

        subscriptions_created_total.labels(period_type=plan.period_type.value).inc()
        logger.info(
            "subscription_created",
            subscription_id=str(subscription.id),
            customer_id=str(customer.id),
            plan_id=str(plan.id),
            status=subscription.status.value,
            next_payment_date=subscription.next_payment_date.isoformat(),
        )

        if payment is not None:
            self._record_metrics(payment, transition)
            await self._notify_payment_success(subscription, plan, payment)

        return subscription

    async def record_payment(self, subscription_id: UUID, payment_data: PaymentCreate) -> Payment:
        """
        Record a successful payment and renew the subscription.

        A payment carrying a transaction ID that was already recorded for
        this subscription is returned unchanged. Concurrent updates to the
        subscription are retried a few times with backoff before the
        conflict is surfaced.

        Args:
            subscription_id: Subscription being paid
            payment_data: Amount, method and optional transaction ID

        Returns:
            The recorded payment

        Raises:
            SubscriptionNotFoundError: Subscription does not exist
            InvalidOperationError: Subscription is cancelled or expired
            ValidationError: Amount is below the cycle total plus accrued late fee
            ConcurrentModificationError: Still conflicting after all attempts
        """
        replayed = None
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.conflict_max_attempts),
            wait=wait_exponential(multiplier=self.conflict_backoff_seconds, max=5),
            retry=retry_if_exception_type(ConcurrentModificationError),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        "payment_retry_after_conflict",
                        subscription_id=str(subscription_id),
                        attempt=attempt.retry_state.attempt_number,
                    )
                # Re-checked on every attempt: the conflicting writer may have recorded this transaction
                replayed = await self._find_replayed_payment(subscription_id, payment_data)
                if replayed is None:
                    subscription, plan, payment, transition = await self._apply_payment(
                        subscription_id, payment_data
                    )

        if replayed is not None:
            return replayed

        self._record_metrics(payment, transition)
        logger.info(
            "payment_recorded",
            subscription_id=str(subscription_id),
            transaction_id=payment.transaction_id,
            amount=str(payment.amount),
            late_fee=str(payment.late_fee),
            old_status=transition.old_status.value,
            new_status=transition.new_status.value,
            next_payment_date=subscription.next_payment_date.isoformat(),
        )

        await self._notify_payment_success(subscription, plan, payment)
        return payment

    async def get_overdue_amount(self, subscription_id: UUID, as_of_date: date | None = None) -> OverdueAmount:
        """
        Project what a subscription owes as of a date, without changing it.

        Amounts are zero for cancelled or expired subscriptions and for
        dates inside the grace window.

        Raises:
            SubscriptionNotFoundError: Subscription does not exist
        """
        as_of = as_of_date or self.clock.today()
        subscription = await self.repository.load_subscription(subscription_id)
        plan = await self.repository.load_plan(subscription.payment_plan_id)

        charge = self.calculator.compute_charge(plan, subscription.next_payment_date, as_of)
        if subscription.status.is_terminal or not charge.grace_expired:
            return OverdueAmount(
                subscription_id=subscription.id,
                status=subscription.status,
                as_of=as_of,
                due_date=subscription.next_payment_date,
                days_late=0,
                elapsed_periods=0,
                total_amount=ZERO,
                late_fee=ZERO,
                amount_due=ZERO,
            )

        return OverdueAmount(
            subscription_id=subscription.id,
            status=subscription.status,
            as_of=as_of,
            due_date=subscription.next_payment_date,
            days_late=charge.days_late,
            elapsed_periods=self.periods.elapsed_periods(
                subscription.next_payment_date, as_of, plan.period_type, plan.period_count
            ),
            total_amount=charge.total_amount,
            late_fee=charge.late_fee,
            amount_due=charge.amount_due,
        )

    async def cancel_subscription(self, subscription_id: UUID, reason: str | None = None) -> Subscription:
        """
        Cancel a subscription; cancelled subscriptions are kept for audit.

        Raises:
            SubscriptionNotFoundError: Subscription does not exist
            InvalidOperationError: Subscription is already cancelled or expired
        """
        subscription = await self.repository.load_subscription(subscription_id)
        transition = self.lifecycle.cancel(subscription, reason)
        await self.repository.save_subscription(subscription, transition=transition)

        subscription_transitions_total.labels(
            from_status=transition.old_status.value,
            to_status=transition.new_status.value,
        ).inc()
        logger.info(
            "subscription_cancelled",
            subscription_id=str(subscription_id),
            previous_status=transition.old_status.value,
            reason=transition.reason,
        )
        return subscription

    async def renew_subscription(self, subscription_id: UUID) -> Subscription:
        """
        Extend an end-dated subscription by one plan cycle.

        The new term starts the day after the current end date. Status, the
        payment schedule and the cycle amounts are unchanged; the renewal is
        kept in the subscription history.

        Raises:
            SubscriptionNotFoundError: Subscription does not exist
            InvalidOperationError: Subscription is cancelled, expired or open-ended
        """
        subscription = await self.repository.load_subscription(subscription_id)
        plan = await self.repository.load_plan(subscription.payment_plan_id)
        previous_end = self.lifecycle.renew(subscription, plan)

        history = SubscriptionHistory(
            subscription_id=subscription.id,
            event_type="subscription_renewed",
            old_value=previous_end.isoformat(),
            new_value=subscription.end_date.isoformat(),
        )
        await self.repository.save_subscription(subscription, history=history)

        subscriptions_renewed_total.inc()
        logger.info(
            "subscription_renewed",
            subscription_id=str(subscription_id),
            previous_end_date=previous_end.isoformat(),
            end_date=subscription.end_date.isoformat(),
        )
        return subscription

    async def get_subscription(self, subscription_id: UUID) -> Subscription:
        """Load a subscription or raise SubscriptionNotFoundError."""
        return await self.repository.load_subscription(subscription_id)

    async def list_payments(self, subscription_id: UUID) -> list[Payment]:
        """Payments of a subscription, oldest first."""
        await self.repository.load_subscription(subscription_id)
        return await self.repository.list_payments(subscription_id)

    async def refund_payment(self, transaction_id: str, reason: str | None = None) -> Payment:
        """
        Mark a successful payment as refunded.

        The subscription's status and dates are left as they are.

        Raises:
            PaymentNotFoundError: No payment with this transaction ID
            InvalidOperationError: Payment is not in SUCCESS status
        """
        payment = await self.repository.get_payment(transaction_id)
        if payment.status != PaymentStatus.SUCCESS:
            raise InvalidOperationError(
                f"Cannot refund a {payment.status.value} payment",
                context={"transaction_id": transaction_id, "status": payment.status.value},
            )

        payment.status = PaymentStatus.REFUNDED
        if reason:
            payment.notes = f"{payment.notes}\nRefund: {reason}" if payment.notes else f"Refund: {reason}"
        await self.repository.save_payment(payment)

        payments_recorded_total.labels(status="refunded").inc()
        logger.info(
            "payment_refunded",
            transaction_id=transaction_id,
            subscription_id=str(payment.subscription_id),
            amount=str(payment.amount),
        )
        return payment

    async def _apply_payment(
        self, subscription_id: UUID, payment_data: PaymentCreate
    ) -> tuple[Subscription, PaymentPlan, Payment, Transition]:
        subscription = await self.repository.load_subscription(subscription_id)
        self.lifecycle.ensure_not_terminal(subscription, "record a payment for")
        plan = await self.repository.load_plan(subscription.payment_plan_id)

        today = self.clock.today()
        charge = self.calculator.compute_charge(plan, subscription.next_payment_date, today)
        payment = self._build_payment(
            subscription,
            payment_data,
            expected=charge.amount_due,
            due_date=subscription.next_payment_date,
            late_fee=charge.late_fee,
        )

        transition = self.lifecycle.apply_payment(subscription, plan, today)
        await self.repository.save_subscription(subscription, payment=payment, transition=transition)
        return subscription, plan, payment, transition

    def _build_payment(
        self,
        subscription: Subscription,
        payment_data: PaymentCreate,
        expected: Decimal,
        due_date: date,
        late_fee: Decimal,
    ) -> Payment:
        amount = to_money(payment_data.amount)
        if amount < expected:
            raise ValidationError(
                f"Payment of {amount} is below the amount due of {expected}",
                context={
                    "subscription_id": str(subscription.id),
                    "amount": str(amount),
                    "amount_due": str(expected),
                    "late_fee": str(late_fee),
                },
                recovery_hint="Pay the cycle total plus any accrued late fee",
            )

        return Payment(
            id=uuid4(),
            subscription_id=subscription.id,
            amount=amount,
            due_date=due_date,
            payment_date=self.clock.now(),
            status=PaymentStatus.SUCCESS,
            transaction_id=payment_data.transaction_id or generate_transaction_id(),
            late_fee=late_fee,
            payment_method=payment_data.payment_method,
            notes=payment_data.notes,
        )

    async def _find_replayed_payment(self, subscription_id: UUID, payment_data: PaymentCreate) -> Payment | None:
        if not payment_data.transaction_id:
            return None
        existing = await self.repository.find_payment(payment_data.transaction_id)
        if existing is None:
            return None

        if existing.subscription_id != subscription_id:
            raise ValidationError(
                f"Transaction {existing.transaction_id} belongs to another subscription",
                context={
                    "transaction_id": existing.transaction_id,
                    "subscription_id": str(subscription_id),
                },
            )
        payments_recorded_total.labels(status="duplicate").inc()
        logger.info(
            "payment_already_recorded",
            subscription_id=str(subscription_id),
            transaction_id=existing.transaction_id,
        )
        return existing

    @staticmethod
    def _record_metrics(payment: Payment, transition: Transition | None) -> None:
        payments_recorded_total.labels(status=payment.status.value).inc()
        payment_amount_total.inc(float(payment.amount))
        if payment.late_fee:
            late_fees_collected_total.inc(float(payment.late_fee))
        if transition is not None and transition.changed:
            subscription_transitions_total.labels(
                from_status=transition.old_status.value,
                to_status=transition.new_status.value,
            ).inc()

    async def _notify_payment_success(self, subscription: Subscription, plan: PaymentPlan, payment: Payment) -> None:
        params: dict[str, Any] = {
            "plan_name": plan.plan_name,
            "amount": payment.amount,
            "transaction_id": payment.transaction_id,
            "next_payment_date": subscription.next_payment_date,
        }
        await notify_quietly(
            self.notifier,
            subscription.customer_id,
            NotificationType.PAYMENT_SUCCESS,
            params,
            subscription_id=subscription.id,
        )
