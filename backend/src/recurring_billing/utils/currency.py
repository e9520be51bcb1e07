"""Monetary rounding and formatting for tenant-currency amounts."""
from decimal import Decimal, ROUND_HALF_UP

# All amounts are held with 2 fractional digits
CENT = Decimal("0.01")
ZERO = Decimal("0.00")

# Currency symbols for common tenant currencies
currency_symbols = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "IRR": "﷼",
    "AED": "د.إ",
    "TRY": "₺",
}


def to_money(value: Decimal | int | str) -> Decimal:
    """
    Round a value half-up to 2 decimal places.

    Floats are rejected: they cannot represent most cent values exactly.

    Examples:
        >>> to_money(Decimal("2.345"))
        Decimal('2.35')
        >>> to_money(500000)
        Decimal('500000.00')
    """
    if isinstance(value, float):
        raise TypeError("Monetary values must be Decimal, int or str, not float")
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def format_amount(amount: Decimal, currency: str) -> str:
    """
    Format an amount with thousand separators and the currency symbol.

    Examples:
        >>> format_amount(Decimal("1500.5"), "USD")
        '$1,500.50 USD'
    """
    currency_upper = currency.upper()
    symbol = currency_symbols.get(currency_upper, "")
    return f"{symbol}{to_money(amount):,.2f} {currency_upper}"
