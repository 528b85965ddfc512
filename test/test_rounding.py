from decimal import Decimal

import pytest

from rythm.utils.rounding import (format_currency, format_currency_with_symbol, round_amount, round_balance,
                                  round_currency, round_fee, round_loan_amount, round_percentage)

@pytest.mark.parametrize('amount, expected', [
    (45.4, 45),
    (45.5, 46),
    (154, 150),
    (155, 160),
    (1249, 1200),
    (1250, 1300),
    (1234567, 1234600),
])
def test_round_amount_by_size(amount, expected):
    assert round_amount(amount) == Decimal(expected)

@pytest.mark.parametrize('value', [None, 'abc', float('nan'), float('inf'), True])
def test_invalid_values_round_to_zero(value):
    assert round_amount(value) == 0
    assert round_currency(value) == 0
    assert round_percentage(value) == 0

def test_currency_and_fee_round_half_up_to_whole_units():
    assert round_currency(Decimal('1234.50')) == Decimal('1235')
    assert round_fee(Decimal('29999.49')) == Decimal('29999')

def test_round_percentage_keeps_two_places():
    assert round_percentage('12.345') == Decimal('12.35')

def test_loan_amount_and_balance_never_negative():
    assert round_loan_amount(-500) == 0
    assert round_balance(-500) == 0
    assert round_balance(1550) == Decimal('1600')

def test_format_currency():
    assert format_currency(1000000) == '1,000,000'
    assert format_currency(Decimal('999.5')) == '1,000'
    assert format_currency('not a number') == '0'
    assert format_currency_with_symbol(1000000) == 'TZS 1,000,000'
    assert format_currency_with_symbol(2500, 'KES') == 'KES 2,500'

def test_negative_halves_round_toward_zero():
    assert round_currency(Decimal('-2.5')) == Decimal('-2')
    assert round_currency(Decimal('-2.6')) == Decimal('-3')
    assert round_amount(-45.5) == Decimal('-45')
