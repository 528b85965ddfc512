from datetime import date
from decimal import Decimal

import pytest

from rythm import db
from rythm.errors import BusinessLogicError, ValidationError
from rythm.models import ActivityLog, Loan, LoanDisbursement
from rythm.services.sync import (loan_terms, reconcile_orphan_disbursements, refresh_loan_statuses,
                                 sync_all_disbursed_loans, sync_loan_disbursement, sync_single_loan,
                                 update_loan_status)

def _mark_disbursed(application, on=date(2026, 1, 10)):
    application.status = 'disbursed'
    application.is_disbursed = True
    application.disbursement_date = on
    db.session.commit()
    return application

def test_loan_terms_prefer_approved_terms(application, new_application):
    assert loan_terms(application) == (Decimal('24.00'), 12, 'reducing_balance')

    # Falls back to the product when nothing was approved
    bare = new_application(number='APP/26/00002', with_terms=False)
    assert loan_terms(bare) == (Decimal('24.00'), 12, 'reducing_balance')

def test_sync_creates_missing_loans_once(application):
    _mark_disbursed(application)

    result = sync_all_disbursed_loans()
    assert result.success
    assert result.synced == 1
    assert result.errors == []

    loan = application.loan
    assert loan.principal_amount == Decimal('1000000.00')
    assert loan.status == 'active'
    assert loan.disbursement_date == date(2026, 1, 10)
    assert loan.first_repayment_date == date(2026, 2, 10)
    assert loan.schedule.count() == 12
    assert loan.loan_number.endswith('/GL/00001')
    assert ActivityLog.query.filter_by(action='sync_loan').count() == 1

    assert sync_all_disbursed_loans().synced == 0

def test_sync_single_loan(application):
    with pytest.raises(ValidationError) as excinfo:
        sync_single_loan(9999)
    assert excinfo.value.status_code == 404

    with pytest.raises(BusinessLogicError):
        sync_single_loan(application.id)

    _mark_disbursed(application)
    loan = sync_single_loan(application.id)
    assert loan.application_id == application.id
    # Existing loans are returned as they are
    assert sync_single_loan(application.id).id == loan.id
    assert Loan.query.count() == 1

def test_sync_loan_disbursement(application, admin):
    loan, disbursement = sync_loan_disbursement(application, disbursement_date=date(2026, 1, 12), user=admin)

    assert disbursement.loan_id == loan.id
    assert disbursement.net_amount == Decimal('1000000.00')
    assert disbursement.disbursed_by == admin.id
    assert loan.disbursement_date == date(2026, 1, 12)

def test_reconcile_orphan_disbursements(application):
    orphan = LoanDisbursement(application_id=application.id, amount=Decimal('500000'),
                              net_amount=Decimal('500000'), status='completed',
                              disbursement_date=date(2026, 1, 10))
    db.session.add(orphan)
    db.session.commit()

    result = reconcile_orphan_disbursements()

    assert result.synced == 1
    loan = db.session.get(Loan, orphan.loan_id)
    assert loan.principal_amount == Decimal('500000.00')
    assert loan.interest_rate == Decimal('15.00')
    assert loan.term_months == 12
    assert loan.maturity_date == date(2027, 1, 10)
    assert reconcile_orphan_disbursements().synced == 0

def test_orphan_without_application_is_reported(app):
    db.session.add(LoanDisbursement(amount=100, net_amount=100, status='completed',
                                    disbursement_date=date(2026, 1, 10)))
    db.session.commit()

    result = reconcile_orphan_disbursements()
    assert not result.success
    assert result.synced == 0
    assert len(result.errors) == 1

def test_update_loan_status(loan):
    update_loan_status(loan, status='written_off', closing_date=date(2026, 6, 30))
    assert db.session.get(Loan, loan.id).status == 'written_off'

    with pytest.raises(ValidationError):
        update_loan_status(loan, principal_amount=1)

def test_refresh_loan_statuses(loan):
    assert refresh_loan_statuses(date(2026, 2, 1)) == {'overdue': 0, 'active': 0, 'repaid': 0}

    assert refresh_loan_statuses(date(2026, 4, 1)) == {'overdue': 1, 'active': 0, 'repaid': 0}
    assert loan.status == 'overdue'

    assert refresh_loan_statuses(date(2026, 2, 1)) == {'overdue': 0, 'active': 1, 'repaid': 0}
    assert loan.status == 'active'
