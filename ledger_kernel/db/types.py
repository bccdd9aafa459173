"""
Module: ledger_kernel.db.types
Responsibility: Annotated column aliases and the money helpers every layer uses
    to admit and round amounts.
Architecture position: Kernel > DB.  Imported by models/, domain/, services/ and
    selectors/; imports nothing from them.

Invariants enforced:
    - Amounts are Decimal.  ``parse_amount`` rejects float, NaN, infinities
      and values with more fractional digits than the ledger scale.
    - ``round_money`` is the only rounding function applied to aggregates.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from sqlalchemy import Numeric, String

Money = Annotated[Decimal, Numeric(38, 9)]

TenantId = Annotated[str, String(64)]

ShortCode = Annotated[str, String(50)]

LongText = Annotated[str, String(4000)]

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP
ZERO = Decimal("0")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """Round a monetary value to ``decimal_places``."""
    quantize_str = "0." + "0" * decimal_places if decimal_places > 0 else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def parse_amount(
    value: Decimal | int | str,
    field: str = "amount",
    decimal_places: int = MONEY_DECIMAL_PLACES,
) -> Decimal:
    """
    Admit a caller-supplied amount into the ledger.

    Accepts Decimal, int or numeric strings.  Floats are refused outright so
    binary rounding never leaks into a balance.

    Raises:
        ValidationError: for floats, non-numeric strings, NaN/infinity, or
            more than ``decimal_places`` fractional digits.
    """
    from ledger_kernel.exceptions import ValidationError

    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(f"{field} must be a Decimal, not {type(value).__name__}", field=field)
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, str)):
        try:
            amount = Decimal(value)
        except InvalidOperation:
            raise ValidationError(f"{field} is not a number: {value!r}", field=field) from None
    else:
        raise ValidationError(f"{field} has unsupported type {type(value).__name__}", field=field)

    if not amount.is_finite():
        raise ValidationError(f"{field} must be finite", field=field)
    try:
        rounded = round_money(amount, decimal_places)
    except InvalidOperation:
        raise ValidationError(f"{field} {amount} is out of range", field=field) from None
    if amount != rounded:
        raise ValidationError(
            f"{field} {amount} has more than {decimal_places} decimal places", field=field
        )
    return rounded
