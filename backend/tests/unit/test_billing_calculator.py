"""Unit tests for charge, late fee and proration arithmetic."""
from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from recurring_billing.exceptions import ValidationError
from recurring_billing.models.plan import PaymentPlan, PeriodType
from recurring_billing.services.billing_calculator import BillingCalculator

calculator = BillingCalculator()


def make_plan(**overrides) -> PaymentPlan:  # noqa: ANN003
    fields = {
        "id": uuid4(),
        "business_id": uuid4(),
        "plan_name": "Gym Monthly",
        "period_type": PeriodType.MONTHLY,
        "period_count": 1,
        "base_amount": Decimal("500000.00"),
        "discount_percentage": Decimal("0"),
        "late_fee_per_day": Decimal("10000.00"),
        "grace_period_days": 3,
        "is_active": True,
    }
    fields.update(overrides)
    return PaymentPlan(**fields)


class TestDiscount:
    def test_total_is_base_minus_discount(self) -> None:
        plan = make_plan(base_amount=Decimal("600000.00"), discount_percentage=Decimal("10"))
        assert calculator.discount_amount(plan) == Decimal("60000.00")
        assert calculator.total_amount(plan) == Decimal("540000.00")

    def test_discount_rounds_half_up(self) -> None:
        # 99.99 * 12.5% = 12.49875
        plan = make_plan(base_amount=Decimal("99.99"), discount_percentage=Decimal("12.5"))
        assert calculator.discount_amount(plan) == Decimal("12.50")
        assert calculator.total_amount(plan) == Decimal("87.49")

    def test_half_cent_discount_is_rounded_once(self) -> None:
        # 1.00 * 0.5% = 0.005; the total is derived from the rounded discount
        plan = make_plan(base_amount=Decimal("1.00"), discount_percentage=Decimal("0.5"))
        assert calculator.discount_amount(plan) == Decimal("0.01")
        assert calculator.total_amount(plan) == Decimal("0.99")

    def test_full_discount_is_free(self) -> None:
        plan = make_plan(discount_percentage=Decimal("100"))
        assert calculator.total_amount(plan) == Decimal("0.00")

    @pytest.mark.parametrize("discount", [Decimal("-1"), Decimal("100.01")])
    def test_rejects_discount_out_of_range(self, discount: Decimal) -> None:
        with pytest.raises(ValidationError):
            calculator.discount_amount(make_plan(discount_percentage=discount))

    def test_rejects_non_positive_base_amount(self) -> None:
        with pytest.raises(ValidationError):
            calculator.total_amount(make_plan(base_amount=Decimal("0")))


class TestLateFee:
    def test_no_fee_through_last_grace_day(self) -> None:
        plan = make_plan()
        due = date(2025, 3, 1)
        assert calculator.late_fee(plan, due, due + timedelta(days=3)) == Decimal("0.00")

    def test_fee_starts_day_after_grace(self) -> None:
        plan = make_plan()
        due = date(2025, 3, 1)
        assert calculator.late_fee(plan, due, due + timedelta(days=4)) > 0

    def test_no_fee_before_due_date(self) -> None:
        plan = make_plan()
        assert calculator.days_late(plan, date(2025, 3, 1), date(2025, 2, 20)) == 0

    def test_zero_grace_accrues_from_day_after_due(self) -> None:
        plan = make_plan(grace_period_days=0)
        assert calculator.late_fee(plan, date(2025, 3, 1), date(2025, 3, 2)) == Decimal("10000.00")

    def test_fractional_fee_rounds_half_up(self) -> None:
        plan = make_plan(late_fee_per_day=Decimal("0.125"), grace_period_days=0)
        assert calculator.late_fee(plan, date(2025, 3, 1), date(2025, 3, 2)) == Decimal("0.13")


class TestComputeCharge:
    def test_ten_days_past_due_with_three_day_grace(self) -> None:
        plan = make_plan()
        today = date(2025, 3, 20)

        charge = calculator.compute_charge(plan, today - timedelta(days=10), today)

        assert charge.days_late == 7
        assert charge.late_fee == Decimal("70000.00")
        assert charge.total_amount == Decimal("500000.00")
        assert charge.discount_amount == Decimal("0.00")
        assert charge.grace_expired is True
        assert charge.amount_due == Decimal("570000.00")
        assert charge.grace_ends_on == date(2025, 3, 13)

    def test_within_grace(self) -> None:
        plan = make_plan()
        charge = calculator.compute_charge(plan, date(2025, 3, 10), date(2025, 3, 13))
        assert charge.grace_expired is False
        assert charge.late_fee == Decimal("0.00")
        assert charge.amount_due == charge.total_amount

    def test_same_inputs_same_outputs(self) -> None:
        plan = make_plan(discount_percentage=Decimal("7.5"))
        first = calculator.compute_charge(plan, date(2025, 1, 31), date(2025, 2, 14))
        second = calculator.compute_charge(plan, date(2025, 1, 31), date(2025, 2, 14))
        assert first == second


class TestProration:
    def test_half_month(self) -> None:
        assert calculator.prorated_amount(Decimal("600000"), 15, 30) == Decimal("300000.00")

    def test_rounds_half_up(self) -> None:
        # 0.20 / 8 = 0.025 exactly; 100 / 3 = 33.333...
        assert calculator.prorated_amount(Decimal("0.20"), 1, 8) == Decimal("0.03")
        assert calculator.prorated_amount(Decimal("100"), 1, 3) == Decimal("33.33")

    def test_full_and_empty_periods(self) -> None:
        assert calculator.prorated_amount(Decimal("450000"), 31, 31) == Decimal("450000.00")
        assert calculator.prorated_amount(Decimal("450000"), 0, 31) == Decimal("0.00")

    @pytest.mark.parametrize(
        "days_used,days_in_month",
        [(5, 0), (-1, 30), (31, 30)],
    )
    def test_rejects_invalid_days(self, days_used: int, days_in_month: int) -> None:
        with pytest.raises(ValidationError):
            calculator.prorated_amount(Decimal("600000"), days_used, days_in_month)
