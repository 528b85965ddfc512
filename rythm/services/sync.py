"""Keep the loans table in step with disbursed applications"""
import logging
from collections import namedtuple
from datetime import date, datetime
from dateutil.relativedelta import relativedelta
from sqlalchemy.exc import SQLAlchemyError
from rythm import db
from rythm.errors import BusinessLogicError, ValidationError, classify_database_error
from rythm.models import (Loan, LoanApplication, LoanDisbursement, RepaymentSchedule, SystemSettings,
                          to_decimal)
from rythm.services.monitoring import fetch_active_loans, loan_days_past_due
from rythm.services.schedule import REDUCING_BALANCE, generate_repayment_schedule, schedule_totals
from rythm.services.status_mapping import get_active_loan_statuses
from rythm.utils.helpers import generate_loan_number, log_activity

logger = logging.getLogger(__name__)

SyncResult = namedtuple('SyncResult', ['success', 'synced', 'errors'])

# Used for disbursement records that arrive without terms
ORPHAN_INTEREST_RATE = 15
ORPHAN_TERM_MONTHS = 12

def loan_terms(application):
    """(annual rate, tenor in months, calculation method) for an application"""
    settings = SystemSettings.get_settings()
    product = application.product

    if application.approved_interest_rate is not None:
        rate = application.approved_interest_rate
    elif product is not None and product.interest_rate is not None:
        rate = product.interest_rate
    else:
        rate = settings.default_interest_rate

    tenor = application.approved_tenor or (product.term_months if product else None) or settings.default_term_months
    method = application.calculation_method or (product.repayment_method if product else None) or REDUCING_BALANCE
    return to_decimal(rate), int(tenor), method

def create_loan(application, principal, interest_rate, term_months, schedule_rows,
                disbursement_date=None, repayment_method=REDUCING_BALANCE):
    """Add a Loan and its schedule rows to the session (not committed)"""
    disbursement_date = disbursement_date or date.today()
    principal = to_decimal(principal)
    totals = schedule_totals(schedule_rows)
    product = application.product if application is not None else None
    loan_type = product.loan_type if product and product.loan_type else 'general'

    first_due = schedule_rows[0]['due_date'] if schedule_rows else disbursement_date + relativedelta(months=1)
    maturity = schedule_rows[-1]['due_date'] if schedule_rows else disbursement_date + relativedelta(months=term_months)

    loan = Loan(
        loan_number=generate_loan_number(loan_type),
        application_id=application.id if application is not None else None,
        client_id=application.client_id,
        product_id=application.product_id,
        principal_amount=principal,
        interest_rate=to_decimal(interest_rate),
        interest_amount=totals['interest'],
        total_amount=principal + totals['interest'],
        term_months=term_months,
        repayment_method=repayment_method,
        loan_type=loan_type,
        status='active',
        disbursement_date=disbursement_date,
        first_repayment_date=first_due,
        next_repayment_date=first_due,
        maturity_date=maturity
    )
    db.session.add(loan)
    for row in schedule_rows:
        loan.schedule.append(RepaymentSchedule(**row))
    return loan

def _loan_from_application(application):
    rate, tenor, method = loan_terms(application)
    start = application.disbursement_date or date.today()
    rows = generate_repayment_schedule(application.amount, rate, tenor, method, start)
    return create_loan(application, application.amount, rate, tenor, rows, start, method)

def _unsynced_applications():
    return LoanApplication.query.outerjoin(
        Loan, Loan.application_id == LoanApplication.id
    ).filter(
        LoanApplication.status.in_(get_active_loan_statuses()['loan_application']),
        LoanApplication.is_disbursed.is_(True),
        Loan.id.is_(None)
    ).order_by(LoanApplication.id).all()

def sync_all_disbursed_loans():
    """Create loans for disbursed applications that do not have one yet"""
    synced = 0
    errors = []
    for application in _unsynced_applications():
        try:
            loan = _loan_from_application(application)
            log_activity('sync_loan', 'loan', None,
                         f'Loan created for disbursed application {application.application_number}')
            db.session.commit()
            synced += 1
            logger.info('Synced application %s to loan %s', application.application_number, loan.loan_number)
        except (SQLAlchemyError, ValueError) as e:
            db.session.rollback()
            logger.error('Failed to sync application %s: %s', application.application_number, e)
            errors.append(f'{application.application_number}: {e}')

    return SyncResult(success=not errors, synced=synced, errors=errors)

def sync_single_loan(application_id):
    """Loan for one disbursed application, creating it if missing"""
    application = db.session.get(LoanApplication, application_id)
    if application is None:
        raise ValidationError(f'Loan application {application_id} not found', status_code=404)
    if application.loan is not None:
        return application.loan
    if application.status != 'disbursed' or not application.is_disbursed:
        raise BusinessLogicError(f'Application {application.application_number} has not been disbursed')

    try:
        loan = _loan_from_application(application)
        log_activity('sync_loan', 'loan', None,
                     f'Loan created for disbursed application {application.application_number}')
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise classify_database_error(e)
    return loan

def get_active_loans_from_monitoring(as_of=None):
    return fetch_active_loans(as_of)

def sync_loan_disbursement(application, amount=None, disbursement_date=None, method='bank_transfer',
                           reference=None, user=None):
    """Create the loan and a completed disbursement record in one transaction"""
    disbursement_date = disbursement_date or date.today()
    amount = to_decimal(amount if amount is not None else application.amount)
    try:
        application.disbursement_date = application.disbursement_date or disbursement_date
        loan = application.loan or _loan_from_application(application)
        db.session.flush()
        disbursement = LoanDisbursement(
            loan_id=loan.id,
            application_id=application.id,
            amount=amount,
            net_amount=amount,
            disbursement_method=method,
            reference=reference,
            status='completed',
            disbursement_date=disbursement_date,
            disbursed_by=user.id if user is not None else None
        )
        db.session.add(disbursement)
        log_activity('sync_disbursement', 'loan', loan.id,
                     f'Disbursement recorded for loan {loan.loan_number}', user=user)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise classify_database_error(e)
    return loan, disbursement

def reconcile_orphan_disbursements():
    """Create loans for completed disbursements that are not linked to one"""
    synced = 0
    errors = []
    orphans = LoanDisbursement.query.filter(LoanDisbursement.loan_id.is_(None),
                                            LoanDisbursement.status == 'completed').all()
    for disbursement in orphans:
        application = disbursement.application
        if application is None:
            errors.append(f'Disbursement {disbursement.id}: no application')
            continue
        try:
            loan = application.loan
            if loan is None:
                start = disbursement.disbursement_date or date.today()
                rows = generate_repayment_schedule(disbursement.amount, ORPHAN_INTEREST_RATE,
                                                   ORPHAN_TERM_MONTHS, REDUCING_BALANCE, start)
                loan = create_loan(application, disbursement.amount, ORPHAN_INTEREST_RATE,
                                   ORPHAN_TERM_MONTHS, rows, start)
                loan.maturity_date = start + relativedelta(years=1)
                db.session.flush()
            disbursement.loan_id = loan.id
            db.session.commit()
            synced += 1
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error('Failed to reconcile disbursement %s: %s', disbursement.id, e)
            errors.append(f'Disbursement {disbursement.id}: {e}')

    if synced:
        logger.info('Reconciled %d orphan disbursements', synced)
    return SyncResult(success=not errors, synced=synced, errors=errors)

UPDATABLE_FIELDS = ('status', 'next_repayment_date', 'maturity_date', 'closing_date', 'interest_rate', 'term_months')

def update_loan_status(loan, **updates):
    unknown = set(updates) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f'Cannot update loan fields: {", ".join(sorted(unknown))}')
    for key, value in updates.items():
        setattr(loan, key, value)
    loan.updated_at = datetime.utcnow()
    log_activity('update_loan', 'loan', loan.id, f'Updated {", ".join(sorted(updates))} on {loan.loan_number}')
    db.session.commit()
    return loan

def refresh_loan_statuses(as_of=None):
    """Move loans between active and overdue and close the fully repaid ones"""
    as_of = as_of or date.today()
    changes = {'overdue': 0, 'active': 0, 'repaid': 0}
    loans = Loan.query.filter(Loan.status.in_(get_active_loan_statuses()['loans'])).all()
    for loan in loans:
        if loan.get_outstanding_balance() <= 0:
            new_status = 'repaid'
        elif loan_days_past_due(loan, as_of) > 0:
            new_status = 'overdue'
        else:
            new_status = 'active'

        if new_status == loan.status:
            continue
        loan.status = new_status
        changes[new_status] += 1
        if new_status == 'repaid':
            loan.closing_date = as_of
            loan.next_repayment_date = None
            if loan.application is not None:
                loan.application.status = 'closed'

    if any(changes.values()):
        db.session.commit()
        logger.info('Loan status refresh: %s', changes)
    return changes
