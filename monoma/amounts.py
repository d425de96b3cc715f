"""USDC amount conversion at the API boundary.

Callers send amounts either as decimal USDC (``"0.001"``) or as raw
6-decimal units (``"1000"``). Everything past the boundary works with
raw integer units only.
"""

from decimal import ROUND_DOWN, Decimal, InvalidOperation

from monoma.constants import USDC_UNIT
from monoma.errors import InvalidAmount


def parse_usdc_amount(value: str | int) -> int:
    """Convert a caller supplied amount to raw USDC units.

    - A string with a decimal point is USDC and is multiplied by 10^6,
      truncating anything below the smallest unit (no rounding).
    - Any other string is already in raw units and is cast to ``int``.

    Example:

    .. code-block:: python

        assert parse_usdc_amount("0.001") == 1000
        assert parse_usdc_amount("1.0000019") == 1_000_001
        assert parse_usdc_amount("1000") == 1000

    :param value:
        Amount as received from the caller.

    :return:
        Positive amount in raw units.

    :raise InvalidAmount:
        The amount is malformed, zero or negative.
    """
    if isinstance(value, bool):
        raise InvalidAmount(f"Invalid amount: {value!r}")

    if isinstance(value, int):
        raw = value
    else:
        text = str(value).strip()
        if not text:
            raise InvalidAmount("Amount is empty")

        if "." in text:
            try:
                decimal_amount = Decimal(text)
            except InvalidOperation as e:
                raise InvalidAmount(f"Invalid amount format: {value!r}. Use decimal (e.g. 0.001) or raw units (e.g. 1000)") from e
            if not decimal_amount.is_finite():
                raise InvalidAmount(f"Invalid amount format: {value!r}")
            raw = int((decimal_amount * USDC_UNIT).to_integral_value(rounding=ROUND_DOWN))
        else:
            try:
                raw = int(text)
            except ValueError as e:
                raise InvalidAmount(f"Invalid amount format: {value!r}. Use decimal (e.g. 0.001) or raw units (e.g. 1000)") from e

    if raw <= 0:
        raise InvalidAmount(f"Amount must be greater than 0, got {value!r}")

    return raw


def usdc_to_raw(amount: Decimal) -> int:
    """Stored USDC amount to raw units, truncating below the smallest unit.

    :raise InvalidAmount:
        Zero or negative after truncation.
    """
    raw = int((Decimal(amount) * USDC_UNIT).to_integral_value(rounding=ROUND_DOWN))
    if raw <= 0:
        raise InvalidAmount(f"Amount must be greater than 0, got {amount}")
    return raw


def format_usdc_amount(raw: int) -> str:
    """Human-readable USDC for log lines, e.g. ``1.000000 USDC``."""
    return f"{Decimal(raw) / USDC_UNIT:.6f} USDC"
