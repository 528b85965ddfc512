"""Rounding and formatting helpers for financial figures

Amounts are rounded half up, with negative halves going toward zero. Every
helper returns 0 for values that are missing, not numeric, NaN or infinite.
"""
from decimal import Decimal, InvalidOperation, ROUND_FLOOR, ROUND_HALF_UP

ZERO = Decimal('0')

def _to_decimal(value):
    if value is None or isinstance(value, bool):
        return None
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not number.is_finite():
        return None
    return number

def _round_to(number, step):
    """Round to the nearest multiple of step, halves toward positive infinity"""
    step = Decimal(step)
    return (number / step + Decimal('0.5')).to_integral_value(rounding=ROUND_FLOOR) * step

def round_amount(amount):
    """Round by size: below 100 to a whole number, below 1,000 to 10, else to 100"""
    number = _to_decimal(amount)
    if number is None:
        return ZERO
    if number < 100:
        return _round_to(number, 1)
    if number < 1000:
        return _round_to(number, 10)
    return _round_to(number, 100)

def round_currency(amount):
    number = _to_decimal(amount)
    if number is None:
        return ZERO
    return _round_to(number, 1)

def round_fee(fee):
    return round_currency(fee)

def round_percentage(value):
    number = _to_decimal(value)
    if number is None:
        return ZERO
    return number.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)

def round_interest_rate(rate):
    return round_percentage(rate)

def round_loan_amount(amount):
    number = _to_decimal(amount)
    if number is None or number < 0:
        return ZERO
    return round_amount(number)

def round_repayment_amount(amount):
    return round_amount(amount)

def round_balance(balance):
    """Size-based rounding that never goes below zero"""
    return max(ZERO, round_amount(balance))

def format_currency(amount):
    """1000000 -> '1,000,000'"""
    number = _to_decimal(amount)
    if number is None:
        return '0'
    return '{:,}'.format(int(_round_to(number, 1)))

def format_currency_with_symbol(amount, currency='TZS'):
    """1000000 -> 'TZS 1,000,000'"""
    return f'{currency} {format_currency(amount)}'
