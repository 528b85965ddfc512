"""Repayment schedule generation and payment allocation"""
import math
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from dateutil.relativedelta import relativedelta

TWO_PLACES = Decimal('0.01')
ZERO = Decimal('0.00')

FLAT_RATE = 'flat_rate'
REDUCING_BALANCE = 'reducing_balance'
BALLOON_STRUCTURE = 'balloon_structure'

CALCULATION_METHODS = (FLAT_RATE, REDUCING_BALANCE, BALLOON_STRUCTURE)

def _q(value):
    return Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

def monthly_rate(annual_rate):
    """Annual percentage rate as a monthly fraction"""
    return Decimal(str(annual_rate or 0)) / Decimal('1200')

def calculate_annuity_payment(principal, annual_rate, term_months):
    """Level monthly payment that amortizes principal over term_months"""
    principal = Decimal(str(principal or 0))
    if principal <= 0 or not term_months or term_months <= 0:
        return ZERO
    r = monthly_rate(annual_rate)
    if r == 0:
        return _q(principal / term_months)
    factor = (1 + r) ** term_months
    return _q(principal * r * factor / (factor - 1))

def _row(number, due_date, principal, interest, fee, balance):
    return {
        'installment_number': number,
        'due_date': due_date,
        'principal_portion': _q(principal),
        'interest_portion': _q(interest),
        'management_fee_portion': _q(fee),
        'total_payment': _q(principal) + _q(interest) + _q(fee),
        'remaining_balance': max(ZERO, _q(balance)),
    }

def generate_repayment_schedule(principal, annual_rate, term_months, method=REDUCING_BALANCE,
                                start_date=None, management_fee_rate=0):
    """Monthly schedule starting one month after start_date

    Returns an empty list when principal or term is not positive. The final
    installment clears any rounding remainder so the principal portions add
    up to the loan amount exactly.
    """
    principal = _q(Decimal(str(principal or 0)))
    term_months = int(term_months or 0)
    if principal <= 0 or term_months <= 0:
        return []
    if method not in CALCULATION_METHODS:
        raise ValueError(f'Unknown calculation method: {method}')

    start_date = start_date or date.today()
    r = monthly_rate(annual_rate)
    fee_rate = Decimal(str(management_fee_rate or 0)) / 100
    schedule = []
    balance = principal

    if method == FLAT_RATE:
        total_interest = _q(principal * r * term_months)
        monthly_principal = _q(principal / term_months)
        monthly_interest = _q(total_interest / term_months)
        monthly_fee = _q(principal * fee_rate)
        interest_so_far = ZERO
        for number in range(1, term_months + 1):
            last = number == term_months
            principal_part = balance if last else monthly_principal
            interest_part = total_interest - interest_so_far if last else monthly_interest
            interest_so_far += interest_part
            balance -= principal_part
            schedule.append(_row(number, start_date + relativedelta(months=number),
                                 principal_part, interest_part, monthly_fee, balance))
        return schedule

    payment = calculate_annuity_payment(principal, annual_rate, term_months)
    for number in range(1, term_months + 1):
        last = number == term_months
        interest_part = _q(balance * r)
        fee_part = _q(balance * fee_rate)
        if method == BALLOON_STRUCTURE:
            principal_part = balance if last else ZERO
        elif last:
            principal_part = balance
        else:
            principal_part = min(payment - interest_part, balance)
        balance -= principal_part
        schedule.append(_row(number, start_date + relativedelta(months=number),
                             principal_part, interest_part, fee_part, balance))
    return schedule

def generate_default_schedule(principal, interest_amount, term_days=365, start_date=None):
    """Equal monthly splits used when no approved terms exist"""
    principal = _q(Decimal(str(principal or 0)))
    interest_amount = _q(Decimal(str(interest_amount or 0)))
    if principal <= 0:
        return []
    start_date = start_date or date.today()
    months = max(1, math.ceil((term_days or 365) / 30))
    principal_part = _q(principal / months)
    interest_part = _q(interest_amount / months)

    schedule = []
    balance = principal
    interest_left = interest_amount
    for number in range(1, months + 1):
        last = number == months
        p = balance if last else principal_part
        i = interest_left if last else interest_part
        balance -= p
        interest_left -= i
        schedule.append(_row(number, start_date + relativedelta(months=number), p, i, ZERO, balance))
    return schedule

def schedule_totals(schedule):
    """Sum the principal, interest and total payment of schedule rows"""
    return {
        'principal': sum((row['principal_portion'] for row in schedule), ZERO),
        'interest': sum((row['interest_portion'] + row['management_fee_portion'] for row in schedule), ZERO),
        'total': sum((row['total_payment'] for row in schedule), ZERO),
    }

def installment_status(installment):
    paid = _q(installment.paid_amount or 0)
    if paid >= _q(installment.total_payment):
        return 'paid'
    if paid > 0:
        return 'partial'
    return 'pending'

def refresh_installment_statuses(installments, payment_date=None):
    """Recompute pending/partial/paid after amounts change; returns the changed count"""
    changed = 0
    for installment in installments:
        status = installment_status(installment)
        if status != installment.status:
            installment.status = status
            if status == 'paid' and installment.paid_date is None:
                installment.paid_date = payment_date or date.today()
            changed += 1
    return changed

def allocate_payment(installments, amount, payment_date=None):
    """Apply amount to installments in order, interest before principal

    Mutates the installments and returns (principal_paid, interest_paid,
    unallocated).
    """
    remaining = _q(Decimal(str(amount)))
    principal_paid = ZERO
    interest_paid = ZERO

    for installment in installments:
        if remaining <= 0:
            break
        if installment_status(installment) == 'paid':
            continue

        interest_due = (_q(installment.interest_portion or 0) + _q(installment.management_fee_portion or 0)
                        - _q(installment.interest_paid or 0))
        interest_part = min(max(interest_due, ZERO), remaining)
        remaining -= interest_part

        principal_due = _q(installment.principal_portion or 0) - _q(installment.principal_paid or 0)
        principal_part = min(max(principal_due, ZERO), remaining)
        remaining -= principal_part

        installment.interest_paid = _q(installment.interest_paid or 0) + interest_part
        installment.principal_paid = _q(installment.principal_paid or 0) + principal_part
        installment.paid_amount = _q(installment.paid_amount or 0) + interest_part + principal_part
        installment.status = installment_status(installment)
        if installment.status == 'paid':
            installment.paid_date = payment_date or date.today()

        interest_paid += interest_part
        principal_paid += principal_part

    return principal_paid, interest_paid, remaining
