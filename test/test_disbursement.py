from datetime import date
from decimal import Decimal

import pytest

from rythm import db
from rythm.errors import BusinessLogicError, ValidationError
from rythm.models import DisbursementQueue, JournalEntry, LoanRepayment
from rythm.services.disbursement import (calculate_net_disbursement, calculate_processing_fee,
                                         execute_disbursement, get_disbursement_queue, mark_disbursement_failed,
                                         preview_disbursement, queue_for_disbursement, record_repayment)
from rythm.services.ledger import get_account_balances

DISBURSED_ON = date(2026, 1, 15)

def test_processing_fee_and_net_amount(app):
    assert calculate_processing_fee(1000000, 3) == Decimal('30000')
    assert calculate_processing_fee(Decimal('333333'), Decimal('2.5')) == Decimal('8333')
    # Falls back to the system setting
    assert calculate_processing_fee(200000) == Decimal('6000')

    assert calculate_net_disbursement(1000000, 30000, 5000) == Decimal('965000.00')
    assert calculate_net_disbursement(1000000, 30000, 5000, method='upfront') == Decimal('1000000.00')

def test_queue_requires_uploaded_contract(new_application, admin):
    pending_contract = new_application(contract_status='generated')
    with pytest.raises(BusinessLogicError):
        queue_for_disbursement(pending_contract, user=admin)

    not_approved = new_application(number='APP/26/00002', status='under_review')
    with pytest.raises(BusinessLogicError):
        queue_for_disbursement(not_approved, user=admin)

def test_queue_and_fail(application, admin):
    with pytest.raises(BusinessLogicError):
        mark_disbursement_failed(application, 'Bank rejected transfer')

    entry = queue_for_disbursement(application, user=admin)
    assert entry.status == 'ready_for_disbursement'
    assert entry.queued_by == admin.id
    assert get_disbursement_queue() == [entry]

    mark_disbursement_failed(application, 'Bank rejected transfer', user=admin)
    assert entry.status == 'failed'
    assert entry.failure_reason == 'Bank rejected transfer'
    assert get_disbursement_queue() == []
    assert get_disbursement_queue('failed') == [entry]

    # Requeueing clears the failure
    queue_for_disbursement(application, user=admin)
    assert entry.status == 'ready_for_disbursement'
    assert entry.failure_reason is None
    assert DisbursementQueue.query.count() == 1

def test_preview_with_approved_terms(application):
    preview = preview_disbursement(application, DISBURSED_ON)

    assert preview['amount'] == Decimal('1000000.00')
    assert preview['processing_fee'] == Decimal('30000')
    assert preview['net_amount'] == Decimal('970000.00')
    assert preview['interest_rate'] == Decimal('24.00')
    assert preview['term_months'] == 12
    assert preview['calculation_method'] == 'reducing_balance'
    assert len(preview['schedule']) == 12

def test_preview_without_terms_uses_default_schedule(new_application):
    application = new_application(with_terms=False)
    preview = preview_disbursement(application, DISBURSED_ON)

    assert preview['calculation_method'] == 'flat_rate'
    assert preview['interest_rate'] == Decimal('15.00')
    assert preview['term_months'] == 12
    assert sum(row['interest_portion'] for row in preview['schedule']) == Decimal('150000.00')

def test_execute_disbursement(application, admin):
    queue_for_disbursement(application, user=admin)

    loan, disbursement = execute_disbursement(application, method='mobile_money', disbursement_date=DISBURSED_ON,
                                              reference='MPESA-001', user=admin)

    assert application.status == 'disbursed'
    assert application.is_disbursed
    assert application.disbursement_date == DISBURSED_ON
    assert DisbursementQueue.query.count() == 0

    assert loan.application_id == application.id
    assert loan.schedule.count() == 12
    assert loan.next_repayment_date == date(2026, 2, 15)
    assert loan.maturity_date == date(2027, 1, 15)
    assert loan.total_amount == loan.principal_amount + loan.interest_amount

    assert disbursement.net_amount == Decimal('970000.00')
    assert disbursement.processing_fee == Decimal('30000.00')
    assert disbursement.disbursement_method == 'mobile_money'

    templates = sorted(entry.template_key for entry in JournalEntry.query.all())
    assert templates == ['FEE_INCOME', 'LOAN_DISBURSEMENT']
    balances = get_account_balances()
    assert balances['1017']['balance'] == Decimal('1000000.00')
    assert balances['1001']['balance'] == Decimal('-970000.00')
    assert balances['4011']['balance'] == Decimal('30000.00')

def test_disbursement_guards(new_application, admin):
    pending = new_application(status='pending')
    with pytest.raises(BusinessLogicError):
        execute_disbursement(pending, user=admin)

    approved = new_application(number='APP/26/00002')
    with pytest.raises(ValidationError):
        execute_disbursement(approved, method='cheque', user=admin)

    with pytest.raises(ValidationError):
        execute_disbursement(None)

    execute_disbursement(approved, disbursement_date=DISBURSED_ON, user=admin)
    with pytest.raises(BusinessLogicError):
        execute_disbursement(approved, disbursement_date=DISBURSED_ON, user=admin)

def test_repayment_of_one_installment(loan, admin):
    first = loan.schedule.first()
    repayment = record_repayment(loan, first.total_payment, date(2026, 2, 15), reference='RCPT-1', user=admin)

    assert repayment.interest_paid == Decimal('20000.00')
    assert repayment.principal_paid == first.total_payment - Decimal('20000.00')
    assert first.status == 'paid'
    assert loan.next_repayment_date == date(2026, 3, 15)
    assert loan.status == 'active'

    balances = get_account_balances()
    assert balances['1018']['balance'] == 0
    assert balances['4001']['balance'] == Decimal('20000.00')
    assert balances['1017']['balance'] == Decimal('1000000.00') - repayment.principal_paid

def test_partial_repayment_pays_interest_first(loan):
    repayment = record_repayment(loan, 25000, date(2026, 2, 15))

    first = loan.schedule.first()
    assert repayment.interest_paid == Decimal('20000.00')
    assert repayment.principal_paid == Decimal('5000.00')
    assert first.status == 'partial'

def test_repayment_brings_overdue_loan_current(loan):
    loan.status = 'overdue'
    db.session.commit()

    first = loan.schedule.first()
    record_repayment(loan, first.total_payment, date(2026, 2, 20))
    assert loan.status == 'active'

def test_full_repayment_closes_loan(loan):
    record_repayment(loan, loan.get_outstanding_balance(), date(2026, 3, 1))

    assert loan.status == 'repaid'
    assert loan.closing_date == date(2026, 3, 1)
    assert loan.application.status == 'closed'
    assert loan.next_repayment_date is None
    assert loan.get_outstanding_balance() == 0

    balances = get_account_balances()
    assert balances['1017']['balance'] == 0
    assert balances['1018']['balance'] == 0
    assert balances['4001']['balance'] == loan.interest_amount

def test_repayment_validation(loan):
    with pytest.raises(ValidationError):
        record_repayment(loan, 0)
    with pytest.raises(ValidationError):
        record_repayment(loan, loan.get_outstanding_balance() + 1)

    loan.status = 'written_off'
    db.session.commit()
    with pytest.raises(BusinessLogicError):
        record_repayment(loan, 1000)
    assert LoanRepayment.query.count() == 0
