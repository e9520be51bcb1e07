"""Charge, discount, late fee and proration arithmetic.

All results are rounded half-up to 2 decimals at the point they are
computed and are never re-rounded later. Late fees use the flat model:
`late_fee_per_day` times the whole days elapsed after the grace window.
"""
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from recurring_billing.exceptions import ValidationError
from recurring_billing.models.plan import PaymentPlan
from recurring_billing.utils.currency import ZERO, to_money

HUNDRED = Decimal(100)


@dataclass(frozen=True)
class ChargeBreakdown:
    """Charge for one billing cycle as of a given day."""

    base_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    late_fee: Decimal
    days_late: int
    grace_expired: bool
    due_date: date
    grace_ends_on: date

    @property
    def amount_due(self) -> Decimal:
        """Cycle total plus accrued late fee."""
        return self.total_amount + self.late_fee


class BillingCalculator:
    """Pure monetary arithmetic over payment plans."""

    def discount_amount(self, plan: PaymentPlan) -> Decimal:
        """Discount granted on one cycle: base * percentage / 100."""
        self._validate_plan(plan)
        return to_money(Decimal(plan.base_amount) * Decimal(plan.discount_percentage or 0) / HUNDRED)

    def total_amount(self, plan: PaymentPlan) -> Decimal:
        """Amount charged per cycle after discount."""
        return to_money(Decimal(plan.base_amount)) - self.discount_amount(plan)

    def grace_end(self, plan: PaymentPlan, due_date: date) -> date:
        """Last day of the grace window; no late fee accrues up to and including it."""
        return due_date + timedelta(days=plan.grace_period_days or 0)

    def days_late(self, plan: PaymentPlan, due_date: date, today: date) -> int:
        """Whole days past the grace window, never negative."""
        return max((today - self.grace_end(plan, due_date)).days, 0)

    def late_fee(self, plan: PaymentPlan, due_date: date, today: date) -> Decimal:
        """Flat per-day late fee accrued as of `today`."""
        days = self.days_late(plan, due_date, today)
        if days == 0:
            return ZERO
        return to_money(Decimal(plan.late_fee_per_day or 0) * days)

    def compute_charge(self, plan: PaymentPlan, cycle_start_date: date, today: date) -> ChargeBreakdown:
        """
        Compute the charge for the cycle falling due on `cycle_start_date`.

        Args:
            plan: Payment plan with amounts, discount, late fee and grace period
            cycle_start_date: Due date of the cycle being charged
            today: Evaluation date

        Returns:
            ChargeBreakdown with discount, total, late fee and grace state

        Raises:
            ValidationError: Plan amounts are out of range
        """
        discount = self.discount_amount(plan)
        base = to_money(Decimal(plan.base_amount))
        days = self.days_late(plan, cycle_start_date, today)
        return ChargeBreakdown(
            base_amount=base,
            discount_amount=discount,
            total_amount=base - discount,
            late_fee=self.late_fee(plan, cycle_start_date, today),
            days_late=days,
            grace_expired=days > 0,
            due_date=cycle_start_date,
            grace_ends_on=self.grace_end(plan, cycle_start_date),
        )

    def prorated_amount(self, monthly_amount: Decimal, days_used: int, days_in_month: int) -> Decimal:
        """
        Charge for a partial cycle, proportional to the days used.

        Raises:
            ValidationError: days_in_month is not positive or days_used is outside [0, days_in_month]
        """
        if days_in_month <= 0:
            raise ValidationError("days_in_month must be positive", context={"days_in_month": days_in_month})
        if days_used < 0 or days_used > days_in_month:
            raise ValidationError(
                "days_used must be between 0 and days_in_month",
                context={"days_used": days_used, "days_in_month": days_in_month},
            )
        return to_money(Decimal(monthly_amount) * days_used / days_in_month)

    @staticmethod
    def _validate_plan(plan: PaymentPlan) -> None:
        if plan.base_amount is None or Decimal(plan.base_amount) <= 0:
            raise ValidationError("Plan base amount must be positive", context={"plan_id": str(plan.id)})
        discount = Decimal(plan.discount_percentage or 0)
        if discount < 0 or discount > HUNDRED:
            raise ValidationError(
                "Plan discount percentage must be between 0 and 100",
                context={"plan_id": str(plan.id), "discount_percentage": str(discount)},
            )
        if Decimal(plan.late_fee_per_day or 0) < 0 or (plan.grace_period_days or 0) < 0:
            raise ValidationError(
                "Plan late fee and grace period must not be negative",
                context={"plan_id": str(plan.id)},
            )


billing_calculator = BillingCalculator()
