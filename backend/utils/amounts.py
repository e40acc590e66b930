"""
Token amount utilities

Amounts arrive from two upstream sources in different units:
- base units (18-decimal fixed point integers, e.g. "1500000000000000000")
- token units (already scaled, e.g. "1.5")

The unit is carried as an explicit AmountUnit tag from ingestion; these
helpers never guess it from the magnitude of the value.
"""
from decimal import Decimal, InvalidOperation, Context, localcontext
from enum import Enum
from typing import Iterable, Optional, Union
import logging
import re

logger = logging.getLogger(__name__)

TOKEN_DECIMALS = 18
BASE_UNIT_SCALE = Decimal(10) ** TOKEN_DECIMALS

# uint256 needs 78 significant digits
AMOUNT_CONTEXT = Context(prec=80)

# Plain ASCII forms only; Decimal() and int() also take "1_000" and non-ASCII digits
BASE_INTEGER_RE = re.compile(r'^[0-9]+$')
DECIMAL_RE = re.compile(r'^[+-]?([0-9]+(\.[0-9]*)?|\.[0-9]+)([eE][+-]?[0-9]+)?$')


class AmountUnit(str, Enum):
    """Provenance tag for raw amounts"""
    BASE = "base"
    TOKEN = "token"


def _parse_decimal(raw: str) -> Optional[Decimal]:
    if not DECIMAL_RE.match(raw):
        return None
    try:
        value = Decimal(raw)
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite():
        return None
    return value


def normalize_amount(raw: Union[str, int, float, Decimal, None], unit: AmountUnit) -> Optional[Decimal]:
    """
    Convert a raw upstream amount to token units.

    BASE: a plain digit string is integer base units, divided by 10^18.
    Anything else that is a plain decimal (e.g. "1.5") is read as already
    scaled.
    TOKEN: parse as a decimal directly.

    Args:
        raw: Raw amount as reported upstream
        unit: Provenance tag of the source that reported it

    Returns:
        Positive Decimal in token units, or None when unparseable / non-positive
    """
    if raw is None or isinstance(raw, bool):
        return None

    text = str(raw).strip()
    if not text:
        return None

    with localcontext(AMOUNT_CONTEXT):
        value = None
        if unit == AmountUnit.BASE:
            if BASE_INTEGER_RE.match(text):
                value = Decimal(text) / BASE_UNIT_SCALE
            else:
                logger.debug(f"Amount {text!r} is not base units, reading as token units")
                value = _parse_decimal(text)
        else:
            value = _parse_decimal(text)

        if value is None or value <= 0:
            return None
        return +value


def sum_amounts(amounts: Iterable[Decimal]) -> Decimal:
    """Exact sum of token amounts"""
    with localcontext(AMOUNT_CONTEXT):
        total = Decimal(0)
        for amount in amounts:
            total += amount
        return total


def to_decimal(value: Union[str, int, Decimal, None]) -> Decimal:
    """Read a stored amount back (stored values are always valid decimals)"""
    if value is None or value == '':
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    with localcontext(AMOUNT_CONTEXT):
        return Decimal(str(value))


def format_amount(value: Decimal) -> str:
    """
    Canonical string form: plain notation, no trailing zeros.

    Decimal("1.500000000000000000") -> "1.5", Decimal("1E+1") -> "10"
    """
    if value == 0:
        return "0"
    with localcontext(AMOUNT_CONTEXT):
        return format(value.normalize(), 'f')
