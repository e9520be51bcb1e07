"""Billing period arithmetic.

Day-based periods add whole days. Month-based periods add calendar months
through relativedelta, which clamps to the last valid day of the target
month (Jan 31 + 1 month is Feb 28/29, Feb 29 + 1 year is Feb 28 in a
non-leap year).
"""
from datetime import date, timedelta

from dateutil.relativedelta import relativedelta

from recurring_billing.exceptions import InvalidPeriodError
from recurring_billing.models.plan import PeriodType

# Length of one period unit
DAYS_PER_UNIT = {
    PeriodType.DAILY: 1,
    PeriodType.WEEKLY: 7,
}

MONTHS_PER_UNIT = {
    PeriodType.MONTHLY: 1,
    PeriodType.QUARTERLY: 3,
    PeriodType.SEMI_ANNUAL: 6,
    PeriodType.YEARLY: 12,
}


class PeriodCalculator:
    """Pure, stateless date arithmetic over plan periods."""

    def advance(self, anchor_date: date, period_type: PeriodType | str, period_count: int) -> date:
        """
        Advance an anchor date by `period_count` units of `period_type`.

        Args:
            anchor_date: Date the cycle starts from
            period_type: Billing cadence unit
            period_count: Number of units per cycle (>= 1)

        Returns:
            The next anchor date, always later than `anchor_date`

        Raises:
            InvalidPeriodError: Unknown period type or count below one
        """
        period_type = self._validate(period_type, period_count)
        return self._shift(anchor_date, period_type, period_count)

    def elapsed_periods(
        self,
        anchor_date: date,
        as_of: date,
        period_type: PeriodType | str,
        period_count: int,
    ) -> int:
        """
        Count whole billing cycles between `anchor_date` and `as_of`.

        Each boundary is computed from the original anchor rather than by
        chaining steps, so month-end clamping never drifts (Jan 31, Feb 29,
        Mar 31, ...).

        Returns:
            Number of cycles k with advance(anchor, type, count * k) <= as_of
        """
        period_type = self._validate(period_type, period_count)
        if as_of <= anchor_date:
            return 0

        if period_type in DAYS_PER_UNIT:
            cycle_days = DAYS_PER_UNIT[period_type] * period_count
            return (as_of - anchor_date).days // cycle_days

        cycle_months = MONTHS_PER_UNIT[period_type] * period_count
        month_diff = (as_of.year - anchor_date.year) * 12 + (as_of.month - anchor_date.month)
        cycles = month_diff // cycle_months
        # The estimate is at most one cycle ahead when the day-of-month is not reached yet
        while cycles > 0 and anchor_date + relativedelta(months=cycles * cycle_months) > as_of:
            cycles -= 1
        return cycles

    def cycle_length_days(self, anchor_date: date, period_type: PeriodType | str, period_count: int) -> int:
        """Number of days in the cycle starting at `anchor_date`."""
        return (self.advance(anchor_date, period_type, period_count) - anchor_date).days

    def _shift(self, anchor_date: date, period_type: PeriodType, units: int) -> date:
        if period_type in DAYS_PER_UNIT:
            return anchor_date + timedelta(days=DAYS_PER_UNIT[period_type] * units)
        return anchor_date + relativedelta(months=MONTHS_PER_UNIT[period_type] * units)

    @staticmethod
    def _validate(period_type: PeriodType | str, period_count: int) -> PeriodType:
        if not isinstance(period_type, PeriodType):
            try:
                period_type = PeriodType(str(period_type).lower())
            except ValueError:
                raise InvalidPeriodError(
                    f"Unrecognized period type: {period_type!r}",
                    period_type=period_type,
                    period_count=period_count,
                ) from None

        if isinstance(period_count, bool) or not isinstance(period_count, int) or period_count < 1:
            raise InvalidPeriodError(
                f"Period count must be a positive integer, got {period_count!r}",
                period_type=period_type.value,
                period_count=period_count,
            )
        return period_type


period_calculator = PeriodCalculator()
