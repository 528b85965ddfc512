from datetime import date
from decimal import Decimal

import pytest

from rythm import db
from rythm.errors import BusinessLogicError, ValidationError
from rythm.models import ActivityLog, JournalEntry, LoanRepayment
from rythm.services.disbursement import record_repayment
from rythm.services.ledger import get_account_balances
from rythm.services import restructuring
from rythm.services.restructuring import (assess_loan_status, calculate_restructuring_impact, calculate_settlement,
                                          calculate_term_modification, calculate_topup_eligibility,
                                          cancel_request, get_repayment_stats, get_restructuring_stats,
                                          implement_request, list_requests, review_request, submit_request)
from rythm.services.schedule import calculate_annuity_payment
from rythm.services.sync import refresh_loan_statuses

AS_OF = date(2026, 1, 20)
PAYMENT = Decimal('94559.60')

@pytest.mark.parametrize('as_of, status, risk, rating', [
    (AS_OF, 'active', 'low', 'excellent'),
    (date(2026, 2, 25), 'at_risk', 'medium', 'good'),
    (date(2026, 4, 1), 'past_due', 'high', 'poor'),
    (date(2026, 6, 1), 'default', 'critical', 'poor'),
])
def test_assess_loan_status(loan, as_of, status, risk, rating):
    assessment = assess_loan_status(loan, as_of)
    assert assessment['status'] == status
    assert assessment['risk_level'] == risk
    assert assessment['performance_rating'] == rating
    assert assessment['payment_performance'] == max(0, 100 - assessment['days_past_due'] * 2)

def test_overdue_loan_is_past_due(loan):
    loan.status = 'overdue'
    db.session.commit()
    assert assess_loan_status(loan, AS_OF)['status'] == 'past_due'

def test_settlement(loan):
    settlement = calculate_settlement(loan, AS_OF)
    assert settlement['outstanding_principal'] == Decimal('1000000.00')
    assert settlement['accrued_interest'] == 0
    assert settlement['penalty_rate'] == Decimal('0.02')
    assert settlement['prepayment_penalty'] == Decimal('20000.00')
    assert settlement['total_settlement_amount'] == Decimal('1020000.00')
    assert settlement['waiver_conditions'] == {
        'no_missed_payments_24_months': True,
        'loyal_client_3_years': False,
        'financial_hardship': False,
    }

    # First installment interest has fallen due
    assert calculate_settlement(loan, date(2026, 2, 20))['total_settlement_amount'] == Decimal('1040000.00')

def test_settlement_penalty_follows_client_type(loan, borrower):
    borrower.client_type = 'group'
    db.session.commit()
    assert calculate_settlement(loan, AS_OF)['prepayment_penalty'] == Decimal('10000.00')

def test_topup_eligibility(loan, borrower):
    eligibility = calculate_topup_eligibility(loan, AS_OF)
    assert eligibility['is_eligible']
    assert eligibility['credit_score'] == 650
    assert eligibility['credit_bureau_check'] == 'passed'
    assert eligibility['maximum_topup_amount'] == Decimal('500000.00')
    assert eligibility['current_debt_to_income_ratio'] is None

    borrower.monthly_income = Decimal('500000')
    borrower.credit_score = 550
    db.session.commit()
    eligibility = calculate_topup_eligibility(loan, AS_OF)
    assert eligibility['current_debt_to_income_ratio'] == Decimal('0.19')
    assert eligibility['credit_bureau_check'] == 'failed'
    assert not eligibility['is_eligible']

def test_overdue_loan_is_not_eligible_for_topup(loan):
    eligibility = calculate_topup_eligibility(loan, date(2026, 4, 1))
    assert not eligibility['eligibility_criteria']['no_overdue_30_days']
    assert not eligibility['is_eligible']

def test_term_modification_options(loan):
    terms = calculate_term_modification(loan, AS_OF)

    assert terms['current'] == {
        'remaining_tenure': 12,
        'monthly_emi': PAYMENT,
        'total_interest': Decimal('134715.20'),
        'outstanding_principal': Decimal('1000000.00'),
    }
    assert [option['tenure'] for option in terms['options']] == [24, 36, 48]
    emis = [option['monthly_emi'] for option in terms['options']]
    assert emis == sorted(emis, reverse=True)
    assert all(option['additional_cost'] > 0 for option in terms['options'])

    reductions = terms['reduction_options']
    assert [option['payment_increase'] for option in reductions] == [20, 30, 50]
    assert reductions[0]['new_emi'] == Decimal('113471.52')
    assert reductions[0]['new_tenure'] == 10
    assert reductions[2]['new_tenure'] == 8
    assert all(option['interest_saved'] > 0 for option in reductions)

def test_restructuring_impact(loan):
    impact = calculate_restructuring_impact(loan, 24, 24, 0, AS_OF)

    assert impact['original_monthly_payment'] == PAYMENT
    assert impact['new_monthly_payment'] == calculate_annuity_payment(1000000, 24, 24)
    assert len(impact['original_schedule']) == 12
    assert len(impact['new_schedule']) == 24
    assert impact['new_schedule'][-1]['balance'] == 0
    analysis = impact['impact_analysis']
    assert analysis['monthly_payment_change'] < 0
    assert analysis['total_interest_change'] > 0
    assert analysis['risk_reduction'] == 'High'

def test_impact_with_grace_period(loan):
    impact = calculate_restructuring_impact(loan, 24, 24, 3, AS_OF)

    assert impact['new_monthly_payment'] == calculate_annuity_payment(1000000, 24, 21)
    grace = impact['new_schedule'][:3]
    assert all(row['principal'] == 0 and row['total'] == Decimal('20000.00') for row in grace)
    assert impact['new_schedule'][-1]['balance'] == 0

def test_impact_validation(loan):
    with pytest.raises(ValidationError):
        calculate_restructuring_impact(loan, 24, 0)
    with pytest.raises(ValidationError):
        calculate_restructuring_impact(loan, 24, 12, 12)

def test_submit_term_extension(loan, admin):
    request = submit_request(loan, 'term_extension', reason='Seasonal income', proposed_tenor=24, user=admin,
                             as_of=AS_OF)

    assert request.status == 'pending'
    assert request.priority == 'medium'
    assert request.request_number.startswith('RS/')
    assert request.request_number.endswith('/00001')
    assert request.original_tenor == 12
    assert request.original_monthly_payment == PAYMENT
    assert request.proposed_monthly_payment == calculate_annuity_payment(1000000, 24, 24)
    assert request.total_payment_reduction == PAYMENT - request.proposed_monthly_payment
    assert request.total_interest_savings < 0
    assert request.submitted_by == admin.id
    assert ActivityLog.query.filter_by(action='submit_restructuring').count() == 1

def test_submit_validation(loan):
    with pytest.raises(ValidationError):
        submit_request(loan, 'debt_forgiveness')
    with pytest.raises(ValidationError):
        submit_request(loan, 'term_extension', priority='whenever')
    with pytest.raises(ValidationError):
        submit_request(loan, 'loan_topup', proposed_amount=600000, as_of=AS_OF)

    loan.status = 'repaid'
    db.session.commit()
    with pytest.raises(BusinessLogicError):
        submit_request(loan, 'term_extension')

def test_ineligible_topup_is_refused(loan, borrower):
    borrower.credit_score = 500
    db.session.commit()
    with pytest.raises(BusinessLogicError):
        submit_request(loan, 'loan_topup', proposed_amount=100000, as_of=AS_OF)

def test_review_flow(loan, admin):
    request = submit_request(loan, 'rate_adjustment', proposed_rate=18, priority='high', as_of=AS_OF)

    with pytest.raises(ValidationError):
        review_request(request, 'maybe')
    with pytest.raises(BusinessLogicError):
        implement_request(request, as_of=AS_OF)

    review_request(request, 'review', user=admin)
    assert request.status == 'under_review'
    review_request(request, 'reject', notes='Income not verified', user=admin)
    assert request.status == 'rejected'
    assert request.review_notes == 'Income not verified'
    assert request.reviewed_by == admin.id

    with pytest.raises(BusinessLogicError):
        review_request(request, 'approve')
    with pytest.raises(BusinessLogicError):
        cancel_request(request)

def test_implement_term_extension(loan, admin):
    request = submit_request(loan, 'term_extension', proposed_tenor=24, as_of=AS_OF)
    review_request(request, 'approve', user=admin)
    implement_request(request, user=admin, as_of=AS_OF)

    assert request.status == 'implemented'
    assert request.implemented_by == admin.id
    assert loan.term_months == 24
    assert loan.schedule.count() == 24
    assert loan.next_repayment_date == date(2026, 2, 15)
    assert loan.maturity_date == date(2028, 1, 15)
    assert loan.get_monthly_payment() == calculate_annuity_payment(1000000, 24, 24)
    assert loan.total_amount == loan.principal_amount + loan.interest_amount

def test_implement_restructuring_of_overdue_loan(loan):
    as_of = date(2026, 4, 1)
    refresh_loan_statuses(as_of)
    assert loan.status == 'overdue'

    request = submit_request(loan, 'term_extension', proposed_tenor=18, as_of=as_of)
    review_request(request, 'approve')
    implement_request(request, as_of=as_of)

    assert loan.status == 'active'
    assert loan.next_repayment_date == date(2026, 5, 1)
    assert assess_loan_status(loan, as_of)['days_past_due'] == 0

def test_implement_topup(loan, admin):
    request = submit_request(loan, 'loan_topup', proposed_amount=200000, as_of=AS_OF)
    assert request.proposed_monthly_payment == calculate_annuity_payment(1200000, 24, 12)
    review_request(request, 'approve', user=admin)
    implement_request(request, user=admin, as_of=AS_OF)

    assert loan.principal_amount == Decimal('1200000.00')
    assert loan.schedule.count() == 12
    assert get_account_balances()['1017']['balance'] == Decimal('1200000.00')
    topup_entry = JournalEntry.query.filter_by(reference=request.request_number).one()
    assert topup_entry.template_key == 'LOAN_DISBURSEMENT'
    assert topup_entry.get_total_debit() == Decimal('200000.00')

def test_implement_early_settlement(loan, admin):
    request = submit_request(loan, 'early_settlement', as_of=AS_OF)
    assert request.proposed_amount == Decimal('1020000.00')
    review_request(request, 'approve', user=admin)
    implement_request(request, user=admin, as_of=AS_OF)

    assert request.status == 'implemented'
    assert loan.status == 'repaid'
    assert loan.interest_amount == 0
    repayment = LoanRepayment.query.filter_by(loan_id=loan.id).one()
    assert repayment.amount == Decimal('1000000.00')
    assert repayment.reference == request.request_number

    balances = get_account_balances()
    assert balances['1017']['balance'] == 0
    # Processing fee plus prepayment penalty
    assert balances['4011']['balance'] == Decimal('50000.00')

def test_failed_settlement_leaves_loan_untouched(loan, admin, monkeypatch):
    request = submit_request(loan, 'early_settlement', as_of=AS_OF)
    review_request(request, 'approve', user=admin)
    interest = loan.interest_amount

    def reject_fee_posting(template_key, *args, **kwargs):
        raise BusinessLogicError('Ledger is closed')

    monkeypatch.setattr(restructuring, 'post_template_entry', reject_fee_posting)
    with pytest.raises(BusinessLogicError):
        implement_request(request, user=admin, as_of=AS_OF)

    assert request.status == 'approved'
    assert loan.status == 'active'
    assert loan.interest_amount == interest
    assert LoanRepayment.query.filter_by(loan_id=loan.id).count() == 0

def test_cancel_request(loan):
    request = submit_request(loan, 'term_reduction', proposed_tenor=8, priority='low', as_of=AS_OF)
    cancel_request(request)
    assert request.status == 'cancelled'
    with pytest.raises(BusinessLogicError):
        cancel_request(request)

def test_listing_and_stats(loan):
    submit_request(loan, 'term_extension', proposed_tenor=24, priority='urgent', as_of=AS_OF)
    second = submit_request(loan, 'early_settlement', as_of=AS_OF)
    cancel_request(second)

    assert list_requests(status='cancelled').count() == 1
    assert list_requests(priority='urgent').count() == 1
    assert list_requests(loan_id=loan.id).count() == 2

    stats = get_restructuring_stats()
    assert stats['total_requests'] == 2
    assert stats['status_breakdown'] == {'pending': 1, 'cancelled': 1}
    assert stats['priority_breakdown'] == {'urgent': 1, 'medium': 1}
    assert len(stats['recent_requests']) == 2

def test_repayment_stats(loan):
    record_repayment(loan, PAYMENT, date(2026, 2, 15), payment_method='mobile_money')
    record_repayment(loan, 1000, date(2026, 2, 20))

    stats = get_repayment_stats(loan.id)
    assert stats['total_repayments'] == 2
    assert stats['total_amount'] == PAYMENT + 1000
    assert stats['payment_methods'] == {'mobile_money': 1, 'cash': 1}
    assert stats['recent_repayments'][0]['payment_date'] == '2026-02-20'
    assert get_repayment_stats(9999)['total_repayments'] == 0
