"""
Currency Utilities

Pure functions: currency code -> symbol, amount formatting, and a static,
USD-pegged conversion table.

DESIGN DECISION: The rate table is fixed and non-authoritative.
It exists so a dashboard can show one total across currencies.
It must never be used for settlement.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

import structlog


logger = structlog.get_logger(__name__)

Number = Union[Decimal, int, float, str]

CURRENCY_SYMBOLS: dict[str, str] = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "CAD": "C$",
    "AUD": "A$",
    "CNY": "¥",
    "INR": "₹",
    "BRL": "R$",
    "MXN": "MX$",
}

# Units of each currency per 1 USD
EXCHANGE_RATES: dict[str, Decimal] = {
    "USD": Decimal("1"),
    "EUR": Decimal("0.93"),
    "GBP": Decimal("0.79"),
    "JPY": Decimal("151.23"),
    "CAD": Decimal("1.38"),
    "AUD": Decimal("1.52"),
    "CNY": Decimal("7.23"),
    "INR": Decimal("83.51"),
    "BRL": Decimal("5.12"),
    "MXN": Decimal("16.74"),
}

TWO_PLACES = Decimal("0.01")


def _as_decimal(amount: Number) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))


def get_currency_symbol(currency_code: str) -> str:
    """Return the symbol for a currency code in any case, or the code itself if unknown."""
    return CURRENCY_SYMBOLS.get(currency_code.strip().upper()) or currency_code


def get_exchange_rate(currency_code: str) -> Decimal:
    """Units of ``currency_code`` per USD. Unknown codes get rate 1."""
    return EXCHANGE_RATES.get(currency_code.strip().upper(), Decimal("1"))


def convert_currency(amount_in_base: Number, target_currency: str) -> Decimal:
    """
    Convert a USD amount to ``target_currency``.

    Unknown targets fall back to rate 1 (no conversion, not an error).
    """
    return _as_decimal(amount_in_base) * get_exchange_rate(target_currency)


def convert_between(amount: Number, source_currency: str, target_currency: str) -> Decimal:
    """Convert between any two currencies by way of USD."""
    amount = _as_decimal(amount)
    if source_currency.upper() == target_currency.upper():
        return amount
    in_usd = amount / get_exchange_rate(source_currency)
    return convert_currency(in_usd, target_currency)


def _group_digits_en_in(digits: str) -> str:
    """
    Group integer digits the en-IN way: 12,34,567.

    The last three digits form one group, everything before is
    grouped in pairs.
    """
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    pairs = []
    while len(head) > 2:
        pairs.insert(0, head[-2:])
        head = head[:-2]
    if head:
        pairs.insert(0, head)
    return ",".join(pairs + [tail])


def _format_money(amount: Number, currency_code: str) -> str:
    code = currency_code.strip().upper()
    if len(code) != 3 or not code.isascii() or not code.isalpha():
        raise ValueError(f"Invalid currency code: {currency_code!r}")

    value = _as_decimal(amount).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    sign = "-" if value < 0 else ""
    whole, fraction = f"{abs(value):.2f}".split(".")

    symbol = CURRENCY_SYMBOLS.get(code)
    prefix = symbol if symbol else f"{code} "
    return f"{sign}{prefix}{_group_digits_en_in(whole)}.{fraction}"


def format_currency(amount: Number, currency_code: str) -> str:
    """
    Format an amount with its currency symbol and exactly two decimals.

    A currency code the formatter rejects is not fatal: the plain
    numeric string is returned instead.
    """
    try:
        return _format_money(amount, currency_code)
    except (ValueError, InvalidOperation) as e:
        logger.warning(
            "currency_format_failed",
            currency=currency_code,
            amount=str(amount),
            error=str(e),
        )
        try:
            return f"{_as_decimal(amount).quantize(TWO_PLACES, rounding=ROUND_HALF_UP):.2f}"
        except InvalidOperation:
            return str(amount)
