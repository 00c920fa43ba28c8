from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Union

# Currencies Stripe charges without a fractional part
ZERO_DECIMAL_CURRENCIES = frozenset({
    "bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
    "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
})

THREE_DECIMAL_CURRENCIES = frozenset({"bhd", "jod", "kwd", "omr", "tnd"})


def currency_exponent(currency: str) -> int:
    """
    Number of decimal places in the minor unit of a currency.

    Args:
        currency: ISO 4217 code, any case

    Returns:
        int: 0, 2 or 3
    """
    code = currency.lower()
    if code in ZERO_DECIMAL_CURRENCIES:
        return 0
    if code in THREE_DECIMAL_CURRENCIES:
        return 3
    return 2


def to_minor_units(amount: Union[Decimal, int, str], currency: str) -> int:
    """
    Convert a major-unit amount (99.00 USD) to provider minor units (9900).

    Args:
        amount: Positive amount in major units
        currency: ISO 4217 code

    Returns:
        int: Amount in minor units

    Raises:
        ValueError: If the amount is not a positive number or carries more
            precision than the currency's minor unit
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {amount!r}")

    if not value.is_finite() or value <= 0:
        raise ValueError("Amount must be a positive number")

    minor = value.scaleb(currency_exponent(currency))
    if minor != minor.to_integral_value():
        raise ValueError(
            f"Amount {value} has more decimal places than {currency.upper()} supports"
        )
    return int(minor)


def from_minor_units(amount: int, currency: str) -> Decimal:
    """Convert provider minor units (9900) back to major units (Decimal('99.00'))."""
    exponent = currency_exponent(currency)
    return Decimal(int(amount)).scaleb(-exponent).quantize(Decimal(1).scaleb(-exponent))


def utc_timestamp() -> str:
    """Current time as an ISO-8601 UTC string, e.g. 2024-01-01T12:00:00.000Z."""
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"
