from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

EPSILON = Decimal('1e-9')
CENT = Decimal('0.01')


def to_decimal(value, *, default: Decimal = Decimal('0')) -> Decimal:
    if value is None or value == '':
        return default
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return default


def quantize_money(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round_percent(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def ratio_percent(part, whole) -> Decimal:
    whole = to_decimal(whole)
    if whole == 0:
        return Decimal('0')
    return to_decimal(part) / whole * 100


def percent_of(part, whole) -> Decimal:
    return round_percent(ratio_percent(part, whole))


def is_positive(value) -> bool:
    return to_decimal(value) > EPSILON


def format_qty(value) -> str:
    text = format(to_decimal(value).normalize(), 'f')
    return text if text != '-0' else '0'
