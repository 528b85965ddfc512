"""Loan restructuring: settlement, top-up, term changes and request workflow"""
import logging
import math
from collections import Counter
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from dateutil.relativedelta import relativedelta
from sqlalchemy.exc import SQLAlchemyError
from rythm import db
from rythm.errors import BusinessLogicError, RythmError, ValidationError, classify_database_error
from rythm.models import LoanRepayment, LoanRestructuring, RepaymentSchedule, to_decimal
from rythm.services.ledger import post_template_entry
from rythm.services.monitoring import loan_days_past_due
from rythm.services.schedule import (calculate_annuity_payment, generate_repayment_schedule, monthly_rate,
                                     refresh_installment_statuses, schedule_totals)
from rythm.services.status_mapping import get_restructuring_eligible_statuses
from rythm.utils.helpers import generate_restructuring_number, log_activity
from rythm.utils.rounding import format_currency

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal('0.01')
ZERO = Decimal('0.00')

RESTRUCTURING_TYPES = ('early_settlement', 'loan_topup', 'term_extension', 'term_reduction', 'rate_adjustment')
TERM_CHANGE_TYPES = ('term_extension', 'term_reduction', 'rate_adjustment')
PRIORITIES = ('low', 'medium', 'high', 'urgent')

PENALTY_RATES = {
    'individual': Decimal('0.02'),
    'group': Decimal('0.01'),
    'sme': Decimal('0.03'),
    'agricultural': Decimal('0.015'),
}
DEFAULT_PENALTY_RATE = Decimal('0.02')

MAX_TOPUP_SHARE = Decimal('0.5')
MIN_CREDIT_SCORE = 600
# Clients without a bureau score are assessed at this score
DEFAULT_CREDIT_SCORE = 650

EXTENSION_MONTHS = (12, 24, 36)
PAYMENT_INCREASES = (20, 30, 50)

def _q(value):
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

def assess_loan_status(loan, as_of=None):
    """Restructuring status, risk level and payment performance of a loan"""
    dpd = loan_days_past_due(loan, as_of)
    if loan.status == 'overdue':
        status, risk_level = 'past_due', 'high'
    elif dpd >= 90:
        status, risk_level = 'default', 'critical'
    elif dpd >= 30:
        status, risk_level = 'past_due', 'high'
    elif dpd >= 7:
        status, risk_level = 'at_risk', 'medium'
    else:
        status, risk_level = 'active', 'low'

    performance = max(0, 100 - dpd * 2)
    if performance >= 90:
        rating = 'excellent'
    elif performance >= 75:
        rating = 'good'
    elif performance >= 50:
        rating = 'fair'
    else:
        rating = 'poor'

    return {
        'status': status,
        'risk_level': risk_level,
        'days_past_due': dpd,
        'payment_performance': performance,
        'performance_rating': rating,
    }

def remaining_tenor(loan, as_of=None):
    open_installments = loan.schedule.filter(RepaymentSchedule.status != 'paid').count()
    if open_installments or loan.schedule.count():
        return open_installments
    as_of = as_of or date.today()
    if loan.disbursement_date is None:
        return loan.term_months or 0
    elapsed = relativedelta(as_of, loan.disbursement_date)
    return max(0, (loan.term_months or 0) - (elapsed.years * 12 + elapsed.months))

def accrued_interest(loan, as_of=None):
    """Interest and fees fallen due and not yet paid"""
    as_of = as_of or date.today()
    due = loan.schedule.filter(RepaymentSchedule.status != 'paid', RepaymentSchedule.due_date <= as_of).all()
    total = ZERO
    for installment in due:
        owed = (to_decimal(installment.interest_portion) + to_decimal(installment.management_fee_portion)
                - to_decimal(installment.interest_paid))
        total += max(owed, ZERO)
    return total

def penalty_rate_for(loan):
    client_type = (loan.client.client_type if loan.client else None) or ''
    if client_type.lower() in PENALTY_RATES:
        return PENALTY_RATES[client_type.lower()]
    product_name = (loan.product.name if loan.product else '').lower()
    for key in ('group', 'sme', 'agricultural'):
        if key in product_name:
            return PENALTY_RATES[key]
    return DEFAULT_PENALTY_RATE

def calculate_settlement(loan, as_of=None):
    assessment = assess_loan_status(loan, as_of)
    principal = loan.get_outstanding_principal()
    interest = accrued_interest(loan, as_of)
    rate = penalty_rate_for(loan)
    penalty = _q(principal * rate)
    return {
        'loan_id': loan.id,
        'outstanding_principal': principal,
        'accrued_interest': interest,
        'penalty_rate': rate,
        'prepayment_penalty': penalty,
        'total_settlement_amount': principal + interest + penalty,
        'penalty_structure': dict(PENALTY_RATES),
        'waiver_conditions': {
            'no_missed_payments_24_months': assessment['payment_performance'] >= 95,
            'loyal_client_3_years': (loan.term_months or 0) >= 36,
            'financial_hardship': assessment['risk_level'] in ('high', 'critical'),
        },
    }

def calculate_topup_eligibility(loan, as_of=None):
    assessment = assess_loan_status(loan, as_of)
    client = loan.client
    score = client.credit_score if client and client.credit_score is not None else DEFAULT_CREDIT_SCORE

    debt_to_income = None
    if client and client.monthly_income:
        debt_to_income = _q(loan.get_monthly_payment() / to_decimal(client.monthly_income))

    criteria = {
        'min_12_months_history': (loan.term_months or 0) >= 12,
        'no_overdue_30_days': assessment['days_past_due'] < 30,
        'credit_check_passed': score >= MIN_CREDIT_SCORE,
    }
    return {
        'loan_id': loan.id,
        'payment_history_score': assessment['payment_performance'],
        'loan_performance_rating': assessment['performance_rating'],
        'current_debt_to_income_ratio': debt_to_income,
        'credit_score': score,
        'credit_bureau_check': 'passed' if criteria['credit_check_passed'] else 'failed',
        'maximum_topup_amount': _q(to_decimal(loan.principal_amount) * MAX_TOPUP_SHARE),
        'eligibility_criteria': criteria,
        'is_eligible': all(criteria.values()),
    }

def _reduced_tenure(balance, annual_rate, payment):
    r = float(monthly_rate(annual_rate))
    balance = float(balance)
    payment = float(payment)
    if payment <= 0:
        return 0
    if r == 0:
        return math.ceil(balance / payment)
    ratio = balance * r / payment
    if ratio >= 1:
        # Payment does not cover the interest
        return 0
    return math.ceil(-math.log(1 - ratio) / math.log(1 + r))

def calculate_term_modification(loan, as_of=None):
    """Extension options (+12/+24/+36 months) and payment increase options"""
    balance = loan.get_outstanding_principal()
    rate = to_decimal(loan.interest_rate)
    tenor = remaining_tenor(loan, as_of)
    payment = loan.get_monthly_payment()
    current_interest = _q(payment * tenor - balance)

    extensions = []
    for months in EXTENSION_MONTHS:
        tenure = tenor + months
        emi = calculate_annuity_payment(balance, rate, tenure)
        total_interest = _q(emi * tenure - balance)
        extensions.append({
            'tenure': tenure,
            'monthly_emi': emi,
            'total_interest': total_interest,
            'additional_cost': total_interest - current_interest,
        })

    reductions = []
    for increase in PAYMENT_INCREASES:
        emi = _q(payment * (1 + Decimal(increase) / 100))
        tenure = _reduced_tenure(balance, rate, emi)
        total_interest = sum((row['interest'] for row in _amortize(balance, rate, emi, tenure)), ZERO)
        reductions.append({
            'payment_increase': increase,
            'new_emi': emi,
            'new_tenure': tenure,
            'interest_saved': current_interest - total_interest,
        })

    return {
        'current': {
            'remaining_tenure': tenor,
            'monthly_emi': payment,
            'total_interest': current_interest,
            'outstanding_principal': balance,
        },
        'options': extensions,
        'reduction_options': reductions,
    }

def _amortize(balance, annual_rate, payment, months, grace_period=0):
    r = monthly_rate(annual_rate)
    rows = []
    for number in range(1, months + 1):
        interest = _q(balance * r)
        if number <= grace_period:
            principal = ZERO
            total = interest
        else:
            principal = min(payment - interest, balance) if number < months else balance
            total = principal + interest
        balance -= principal
        rows.append({
            'payment': number,
            'principal': _q(principal),
            'interest': interest,
            'total': _q(total),
            'balance': max(ZERO, _q(balance)),
        })
    return rows

def calculate_restructuring_impact(loan, new_rate, new_tenor, grace_period=0, as_of=None):
    """Compare the current repayment path with one at new_rate over new_tenor months"""
    new_tenor = int(new_tenor)
    grace_period = int(grace_period or 0)
    if new_tenor <= 0:
        raise ValidationError('New tenor must be at least one month')
    if grace_period < 0 or grace_period >= new_tenor:
        raise ValidationError('Grace period must be shorter than the new tenor')

    balance = loan.get_outstanding_principal()
    original_rate = to_decimal(loan.interest_rate)
    original_payment = loan.get_monthly_payment()
    original_months = remaining_tenor(loan, as_of)
    new_payment = calculate_annuity_payment(balance, new_rate, new_tenor - grace_period)

    original_schedule = _amortize(balance, original_rate, original_payment, original_months)
    new_schedule = _amortize(balance, new_rate, new_payment, new_tenor, grace_period)

    original_total = sum((row['total'] for row in original_schedule), ZERO)
    new_total = sum((row['total'] for row in new_schedule), ZERO)
    original_interest = original_total - balance
    new_interest = new_total - balance

    return {
        'original_monthly_payment': original_payment,
        'new_monthly_payment': new_payment,
        'original_schedule': original_schedule,
        'new_schedule': new_schedule,
        'new_total_amount': new_total,
        'impact_analysis': {
            'monthly_payment_change': new_payment - original_payment,
            'total_interest_change': new_interest - original_interest,
            'total_payment_change': new_total - original_total,
            'risk_reduction': 'High' if new_payment < original_payment else 'Low',
        },
    }

def get_request(request_id):
    request = db.session.get(LoanRestructuring, request_id)
    if request is None:
        raise ValidationError(f'Restructuring request {request_id} not found', status_code=404)
    return request

def list_requests(status=None, priority=None, loan_id=None):
    query = LoanRestructuring.query
    if status:
        query = query.filter_by(status=status)
    if priority:
        query = query.filter_by(priority=priority)
    if loan_id:
        query = query.filter_by(loan_id=loan_id)
    return query.order_by(LoanRestructuring.submitted_at.desc())

def submit_request(loan, restructuring_type, reason=None, priority='medium', proposed_rate=None,
                   proposed_tenor=None, proposed_amount=None, grace_period=0, user=None, as_of=None):
    """Raise a pending restructuring request with the terms it would produce"""
    if restructuring_type not in RESTRUCTURING_TYPES:
        raise ValidationError(f'Unknown restructuring type: {restructuring_type}')
    if priority not in PRIORITIES:
        raise ValidationError(f'Unknown priority: {priority}')
    if loan.status not in get_restructuring_eligible_statuses()['loans']:
        raise BusinessLogicError(f'Loan {loan.loan_number} is {loan.status} and cannot be restructured')

    request = LoanRestructuring(
        request_number=generate_restructuring_number(),
        loan_id=loan.id,
        restructuring_type=restructuring_type,
        status='pending',
        priority=priority,
        reason=reason,
        original_balance=loan.get_outstanding_principal(),
        original_interest_rate=to_decimal(loan.interest_rate),
        original_tenor=remaining_tenor(loan, as_of),
        original_monthly_payment=loan.get_monthly_payment(),
        grace_period=grace_period or 0,
        submitted_by=user.id if user is not None else None
    )

    if restructuring_type == 'early_settlement':
        request.proposed_amount = calculate_settlement(loan, as_of)['total_settlement_amount']
    elif restructuring_type == 'loan_topup':
        eligibility = calculate_topup_eligibility(loan, as_of)
        if not eligibility['is_eligible']:
            raise BusinessLogicError(f'Loan {loan.loan_number} is not eligible for a top-up')
        amount = to_decimal(proposed_amount)
        if amount <= 0 or amount > eligibility['maximum_topup_amount']:
            raise ValidationError(
                f'Top-up must be between 1 and {format_currency(eligibility["maximum_topup_amount"])}')
        request.proposed_amount = amount
        request.proposed_interest_rate = to_decimal(proposed_rate if proposed_rate is not None else loan.interest_rate)
        request.proposed_tenor = int(proposed_tenor or request.original_tenor or loan.term_months)
        request.proposed_monthly_payment = calculate_annuity_payment(
            request.original_balance + amount, request.proposed_interest_rate, request.proposed_tenor)
    else:
        rate = to_decimal(proposed_rate if proposed_rate is not None else loan.interest_rate)
        tenor = int(proposed_tenor or request.original_tenor or loan.term_months)
        impact = calculate_restructuring_impact(loan, rate, tenor, grace_period, as_of)
        request.proposed_interest_rate = rate
        request.proposed_tenor = tenor
        request.proposed_monthly_payment = impact['new_monthly_payment']
        request.total_interest_savings = -impact['impact_analysis']['total_interest_change']
        request.total_payment_reduction = -impact['impact_analysis']['monthly_payment_change']

    db.session.add(request)
    db.session.flush()
    log_activity('submit_restructuring', 'restructuring', request.id,
                 f'{request.request_number} {restructuring_type} for loan {loan.loan_number}', user=user)
    db.session.commit()
    logger.info('Restructuring request %s submitted for loan %s', request.request_number, loan.loan_number)
    return request

def review_request(request, decision, notes=None, user=None):
    """Approve, reject or take a request under review"""
    outcomes = {'approve': 'approved', 'reject': 'rejected', 'review': 'under_review'}
    if decision not in outcomes:
        raise ValidationError(f'Unknown review decision: {decision}')
    if request.status not in ('pending', 'under_review'):
        raise BusinessLogicError(f'Request {request.request_number} is {request.status} and cannot be reviewed')

    request.status = outcomes[decision]
    request.review_notes = notes
    request.reviewed_by = user.id if user is not None else None
    request.reviewed_at = datetime.utcnow()
    log_activity('review_restructuring', 'restructuring', request.id,
                 f'{request.request_number} {request.status}', user=user)
    db.session.commit()
    return request

def _reschedule(loan, principal, annual_rate, tenor, as_of):
    """Replace the open installments with a fresh schedule for principal"""
    open_installments = loan.schedule.filter(RepaymentSchedule.status != 'paid').all()
    next_due = min((item.due_date for item in open_installments), default=None)
    if next_due is None or next_due < as_of:
        next_due = as_of + relativedelta(months=1)
    paid_count = loan.schedule.filter(RepaymentSchedule.status == 'paid').count()
    for installment in open_installments:
        db.session.delete(installment)
    db.session.flush()

    rows = generate_repayment_schedule(principal, annual_rate, tenor, loan.repayment_method or 'reducing_balance',
                                       next_due - relativedelta(months=1))
    for row in rows:
        row['installment_number'] += paid_count
        loan.schedule.append(RepaymentSchedule(**row))

    totals = schedule_totals(rows)
    paid_interest = to_decimal(loan.repayments.with_entities(db.func.sum(LoanRepayment.interest_paid)).scalar())
    loan.interest_rate = to_decimal(annual_rate)
    loan.term_months = paid_count + tenor
    loan.interest_amount = paid_interest + totals['interest']
    loan.total_amount = loan.get_total_paid() + totals['total']
    loan.next_repayment_date = rows[0]['due_date'] if rows else None
    loan.maturity_date = rows[-1]['due_date'] if rows else loan.maturity_date
    return rows

def _waive_future_interest(loan, as_of):
    """Drop the unearned interest on installments not yet due"""
    waived = ZERO
    upcoming = loan.schedule.filter(RepaymentSchedule.status != 'paid', RepaymentSchedule.due_date > as_of).all()
    for installment in upcoming:
        earned = to_decimal(installment.interest_paid)
        waived += (to_decimal(installment.interest_portion) + to_decimal(installment.management_fee_portion)
                   - earned)
        installment.interest_portion = earned
        installment.management_fee_portion = ZERO
        installment.total_payment = to_decimal(installment.principal_portion) + earned
    refresh_installment_statuses(upcoming, as_of)
    loan.interest_amount = to_decimal(loan.interest_amount) - waived
    loan.total_amount = to_decimal(loan.total_amount) - waived
    return waived

def implement_request(request, user=None, as_of=None):
    """Apply an approved request to its loan"""
    if request.status != 'approved':
        raise BusinessLogicError(f'Request {request.request_number} must be approved before implementation')
    as_of = as_of or date.today()
    loan = request.loan

    try:
        if request.restructuring_type == 'early_settlement':
            from rythm.services.disbursement import record_repayment
            settlement = calculate_settlement(loan, as_of)
            _waive_future_interest(loan, as_of)
            record_repayment(loan, loan.get_outstanding_balance(), as_of, reference=request.request_number,
                             user=user, commit=False)
            penalty = settlement['prepayment_penalty']
            if penalty > 0:
                post_template_entry('FEE_INCOME', penalty, {'FEE_AMOUNT': penalty, 'LOAN_NUMBER': loan.loan_number},
                                    entry_date=as_of, reference=request.request_number, loan_id=loan.id, user=user)
        elif request.restructuring_type == 'loan_topup':
            topup = to_decimal(request.proposed_amount)
            loan.principal_amount = to_decimal(loan.principal_amount) + topup
            _reschedule(loan, loan.get_outstanding_principal(), request.proposed_interest_rate,
                        request.proposed_tenor, as_of)
            post_template_entry('LOAN_DISBURSEMENT', topup, {'LOAN_AMOUNT': topup, 'LOAN_NUMBER': loan.loan_number},
                                entry_date=as_of, reference=request.request_number, loan_id=loan.id, user=user)
        elif request.restructuring_type in TERM_CHANGE_TYPES:
            _reschedule(loan, loan.get_outstanding_principal(), request.proposed_interest_rate,
                        request.proposed_tenor, as_of)
            if loan.status == 'overdue':
                loan.status = 'active'

        request.status = 'implemented'
        request.implemented_at = datetime.utcnow()
        request.implemented_by = user.id if user is not None else None
        log_activity('implement_restructuring', 'restructuring', request.id,
                     f'{request.request_number} implemented on loan {loan.loan_number}', user=user)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise classify_database_error(e)
    except (RythmError, ValueError):
        db.session.rollback()
        raise

    logger.info('Restructuring request %s implemented', request.request_number)
    return request

def cancel_request(request, user=None):
    if request.status not in ('pending', 'under_review', 'approved'):
        raise BusinessLogicError(f'Request {request.request_number} is {request.status} and cannot be cancelled')
    request.status = 'cancelled'
    log_activity('cancel_restructuring', 'restructuring', request.id,
                 f'{request.request_number} cancelled', user=user)
    db.session.commit()
    return request

def request_to_dict(request):
    return {
        'id': request.id,
        'request_number': request.request_number,
        'loan_id': request.loan_id,
        'restructuring_type': request.restructuring_type,
        'status': request.status,
        'priority': request.priority,
        'submitted_at': request.submitted_at.isoformat() if request.submitted_at else None,
        'total_interest_savings': float(to_decimal(request.total_interest_savings)),
        'total_payment_reduction': float(to_decimal(request.total_payment_reduction)),
    }

def get_restructuring_stats():
    requests = LoanRestructuring.query.order_by(LoanRestructuring.submitted_at.desc()).all()
    return {
        'total_requests': len(requests),
        'status_breakdown': dict(Counter(request.status for request in requests)),
        'priority_breakdown': dict(Counter(request.priority for request in requests)),
        'total_savings': sum((to_decimal(r.total_interest_savings) for r in requests), ZERO),
        'total_reductions': sum((to_decimal(r.total_payment_reduction) for r in requests), ZERO),
        'recent_requests': [request_to_dict(request) for request in requests[:10]],
    }

def get_repayment_stats(loan_id=None):
    query = LoanRepayment.query
    if loan_id:
        query = query.filter_by(loan_id=loan_id)
    repayments = query.order_by(LoanRepayment.payment_date.desc(), LoanRepayment.id.desc()).all()
    total = sum((to_decimal(r.amount) for r in repayments), ZERO)
    return {
        'total_repayments': len(repayments),
        'total_amount': total,
        'average_amount': _q(total / len(repayments)) if repayments else ZERO,
        'payment_methods': dict(Counter(r.payment_method for r in repayments)),
        'recent_repayments': [{
            'id': r.id,
            'loan_id': r.loan_id,
            'amount': float(to_decimal(r.amount)),
            'payment_date': r.payment_date.isoformat() if r.payment_date else None,
            'payment_method': r.payment_method,
        } for r in repayments[:10]],
    }
