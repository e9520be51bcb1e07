"""Subscription status state machine.

    PENDING  --payment-->            ACTIVE
    ACTIVE   --tick, past grace-->   OVERDUE
    PENDING  --tick, past grace-->   OVERDUE
    OVERDUE  --payment-->            ACTIVE
    any non-terminal --tick, end date reached--> EXPIRED (terminal)
    any non-terminal --cancel-->     CANCELLED           (terminal)
    any non-terminal --renew-->      same status, end date pushed one cycle

Methods mutate the subscription in place and return the Transition that
happened; persisting it is the caller's job.
"""
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from uuid import UUID

from recurring_billing.exceptions import InvalidOperationError
from recurring_billing.models.notification import NotificationType
from recurring_billing.models.plan import PaymentPlan
from recurring_billing.models.subscription import Subscription, SubscriptionStatus
from recurring_billing.services.billing_calculator import BillingCalculator, billing_calculator
from recurring_billing.services.period_calculator import PeriodCalculator, period_calculator


@dataclass(frozen=True)
class Transition:
    """Outcome of driving a subscription through the state machine."""

    subscription_id: UUID
    old_status: SubscriptionStatus
    new_status: SubscriptionStatus
    reason: str | None = None
    notification: NotificationType | None = None

    @property
    def changed(self) -> bool:
        return self.old_status != self.new_status


class SubscriptionLifecycle:
    """Owns every status transition of a single subscription."""

    def __init__(
        self,
        periods: PeriodCalculator = period_calculator,
        calculator: BillingCalculator = billing_calculator,
        max_overdue_days: int | None = None,
    ):
        self.periods = periods
        self.calculator = calculator
        self.max_overdue_days = max_overdue_days

    def evaluate(self, subscription: Subscription, plan: PaymentPlan, today: date) -> Transition:
        """
        Re-evaluate a subscription against `today` (one scan tick).

        Expiry wins over overdue detection. Entering OVERDUE carries an
        OVERDUE_NOTICE unless one was already sent for this grace crossing.
        """
        status = subscription.status
        if status.is_terminal:
            return self._unchanged(subscription)

        if subscription.end_date is not None and today >= subscription.end_date:
            return self._move(
                subscription,
                SubscriptionStatus.EXPIRED,
                reason="end_date_reached",
                notification=NotificationType.SUBSCRIPTION_EXPIRED,
            )

        if status == SubscriptionStatus.OVERDUE:
            if self.max_overdue_days is not None:
                days_overdue = (today - subscription.next_payment_date).days
                if days_overdue > self.max_overdue_days:
                    return self._move(
                        subscription,
                        SubscriptionStatus.EXPIRED,
                        reason="overdue_limit_exceeded",
                        notification=NotificationType.SUBSCRIPTION_EXPIRED,
                    )
            return self._unchanged(subscription)

        if self.is_past_grace(subscription, plan, today):
            notification = NotificationType.OVERDUE_NOTICE if self.overdue_notice_due(subscription, plan) else None
            return self._move(
                subscription,
                SubscriptionStatus.OVERDUE,
                reason="grace_period_expired",
                notification=notification,
            )

        return self._unchanged(subscription)

    def apply_payment(self, subscription: Subscription, plan: PaymentPlan, payment_date: date) -> Transition:
        """
        Apply a successful payment.

        Moves PENDING/OVERDUE to ACTIVE (ACTIVE stays ACTIVE), re-anchors the
        cycle on the payment date and recomputes the next payment date and
        the cycle amounts.

        Raises:
            InvalidOperationError: The subscription is cancelled or expired
        """
        self.ensure_not_terminal(subscription, "record a payment for")

        subscription.last_payment_date = payment_date
        subscription.next_payment_date = self.periods.advance(payment_date, plan.period_type, plan.period_count)
        subscription.discount_applied = self.calculator.discount_amount(plan)
        subscription.total_amount = self.calculator.total_amount(plan)

        return self._move(
            subscription,
            SubscriptionStatus.ACTIVE,
            reason="payment_received",
            notification=NotificationType.PAYMENT_SUCCESS,
        )

    def cancel(self, subscription: Subscription, reason: str | None = None) -> Transition:
        """
        Cancel explicitly; CANCELLED is terminal.

        Raises:
            InvalidOperationError: The subscription is already cancelled or expired
        """
        self.ensure_not_terminal(subscription, "cancel")
        return self._move(subscription, SubscriptionStatus.CANCELLED, reason=reason or "cancelled")

    def renew(self, subscription: Subscription, plan: PaymentPlan) -> date:
        """
        Extend an end-dated subscription by one plan cycle.

        The new term starts the day after the current end date. Status and
        the payment schedule are left alone. Returns the previous end date.

        Raises:
            InvalidOperationError: The subscription is cancelled, expired or open-ended
        """
        self.ensure_not_terminal(subscription, "renew")
        if subscription.end_date is None:
            raise InvalidOperationError(
                "Cannot renew an open-ended subscription",
                context={"subscription_id": str(subscription.id)},
            )

        previous_end = subscription.end_date
        subscription.end_date = self.periods.advance(
            previous_end + timedelta(days=1), plan.period_type, plan.period_count
        )
        return previous_end

    def is_past_grace(self, subscription: Subscription, plan: PaymentPlan, today: date) -> bool:
        return today > self.calculator.grace_end(plan, subscription.next_payment_date)

    def overdue_notice_due(self, subscription: Subscription, plan: PaymentPlan) -> bool:
        """No notification has been sent since the first overdue day of this cycle."""
        first_overdue_day = self.calculator.grace_end(plan, subscription.next_payment_date) + timedelta(days=1)
        return self._not_reminded_since(subscription.last_reminder_sent, first_overdue_day)

    def reminder_due(self, subscription: Subscription, today: date, window_days: int) -> bool:
        """
        Whether a PAYMENT_REMINDER should go out today.

        True for ACTIVE/PENDING subscriptions whose next payment falls within
        `window_days` and that were not reminded since the later of the cycle
        anchor and the opening of the reminder window.
        """
        if subscription.status not in (SubscriptionStatus.ACTIVE, SubscriptionStatus.PENDING):
            return False

        days_until_due = (subscription.next_payment_date - today).days
        if days_until_due < 0 or days_until_due > window_days:
            return False

        window_opens = subscription.next_payment_date - timedelta(days=window_days)
        return self._not_reminded_since(subscription.last_reminder_sent, max(subscription.cycle_anchor, window_opens))

    def expiry_reminder_due(self, subscription: Subscription, today: date, window_days: int) -> bool:
        """Whether an EXPIRY_REMINDER should go out today (once per end date)."""
        if subscription.status.is_terminal or subscription.end_date is None:
            return False

        days_until_end = (subscription.end_date - today).days
        if days_until_end <= 0 or days_until_end > window_days:
            return False

        window_opens = subscription.end_date - timedelta(days=window_days)
        return self._not_reminded_since(subscription.last_expiry_reminder_sent, window_opens)

    @staticmethod
    def _not_reminded_since(sent_at: datetime | None, cutoff: date) -> bool:
        if sent_at is None:
            return True
        return sent_at < datetime.combine(cutoff, time.min)

    @staticmethod
    def ensure_not_terminal(subscription: Subscription, action: str) -> None:
        if subscription.status.is_terminal:
            raise InvalidOperationError(
                f"Cannot {action} a {subscription.status.value} subscription",
                context={"subscription_id": str(subscription.id), "status": subscription.status.value},
            )

    @staticmethod
    def _move(
        subscription: Subscription,
        new_status: SubscriptionStatus,
        reason: str,
        notification: NotificationType | None = None,
    ) -> Transition:
        old_status = subscription.status
        subscription.status = new_status
        return Transition(
            subscription_id=subscription.id,
            old_status=old_status,
            new_status=new_status,
            reason=reason,
            notification=notification,
        )

    @staticmethod
    def _unchanged(subscription: Subscription) -> Transition:
        return Transition(
            subscription_id=subscription.id,
            old_status=subscription.status,
            new_status=subscription.status,
        )
