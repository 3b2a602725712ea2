"""Credit <-> regional currency conversion.

Every value is a ``Decimal`` quantized to two places with ROUND_HALF_UP
after each conversion, so a credit figure with at most two decimals
survives ``amount_to_credits(credits_to_amount(c, r), r)`` unchanged.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from app.core.config import settings

PH_REGION = "PH"
CENTS = Decimal("0.01")


def quantize(value: Decimal | int | float | str | None) -> Decimal:
    if value is None:
        return Decimal("0.00")
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Not a number: {value!r}") from exc
    return number.quantize(CENTS, rounding=ROUND_HALF_UP)


def normalize_region(region: str | None) -> str:
    return (region or "").strip().upper()


def is_ph_region(region: str | None) -> bool:
    return normalize_region(region) == PH_REGION


def credit_rate_for_region(region: str | None) -> Decimal:
    if is_ph_region(region):
        return Decimal(settings.credit_to_php_rate)
    return Decimal(settings.credit_to_usd_rate)


def currency_for_region(region: str | None) -> str:
    return "PHP" if is_ph_region(region) else "USD"


def currency_symbol(region: str | None) -> str:
    return "₱" if is_ph_region(region) else "$"


def credits_to_amount(credits: Decimal | int | float | str, region: str | None) -> Decimal:
    return quantize(quantize(credits) * credit_rate_for_region(region))


def amount_to_credits(amount: Decimal | int | float | str, region: str | None) -> Decimal:
    return quantize(quantize(amount) / credit_rate_for_region(region))


def amount_to_credits_at_rate(amount: Decimal | int | float | str, rate: Decimal) -> Decimal:
    if Decimal(rate) <= 0:
        raise ValueError("Credit rate must be positive")
    return quantize(quantize(amount) / Decimal(rate))


def format_currency(amount: Decimal | int | float | str, region: str | None) -> str:
    value = quantize(amount)
    sign = "-" if value < 0 else ""
    return f"{sign}{currency_symbol(region)}{abs(value):,.2f}"


def format_credits_as_currency(credits: Decimal | int | float | str, region: str | None) -> str:
    return format_currency(credits_to_amount(credits, region), region)
