"""Disbursement queue, fee deductions, loan creation and repayments"""
import logging
import math
from datetime import date
from decimal import Decimal
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from rythm import db
from rythm.errors import BusinessLogicError, RythmError, ValidationError, classify_database_error
from rythm.models import (DisbursementQueue, LoanApplication, LoanDisbursement, LoanRepayment, SystemSettings,
                          to_decimal)
from rythm.services.ledger import accrue_installment_interest, post_template_entry
from rythm.services.monitoring import loan_days_past_due
from rythm.services.schedule import generate_default_schedule, generate_repayment_schedule, allocate_payment
from rythm.services.status_mapping import get_active_loan_statuses
from rythm.services.sync import create_loan, loan_terms
from rythm.utils.helpers import log_activity
from rythm.utils.rounding import round_fee, format_currency

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')

DEDUCT_AT_DISBURSEMENT = 'deduct_at_disbursement'
UPFRONT = 'upfront'

DISBURSEMENT_METHODS = ('bank_transfer', 'cash', 'mobile_money')

def get_disbursement_queue(status='ready_for_disbursement'):
    query = DisbursementQueue.query
    if status:
        query = query.filter_by(status=status)
    return query.order_by(DisbursementQueue.queued_at).all()

def queue_for_disbursement(application, user=None):
    """Put an approved application with an uploaded contract in the queue"""
    if application.status != 'approved':
        raise BusinessLogicError(f'Application {application.application_number} is not approved')
    if application.contract_status != 'uploaded':
        raise BusinessLogicError(f'Contract for {application.application_number} has not been uploaded')

    entry = application.queue_entry
    if entry is None:
        entry = DisbursementQueue(application_id=application.id, queued_by=user.id if user is not None else None)
        db.session.add(entry)
    entry.status = 'ready_for_disbursement'
    entry.failure_reason = None
    log_activity('queue_disbursement', 'application', application.id,
                 f'Queued {application.application_number} for disbursement', user=user)
    db.session.commit()
    return entry

def mark_disbursement_failed(application, reason, user=None):
    entry = application.queue_entry
    if entry is None:
        raise BusinessLogicError(f'Application {application.application_number} is not in the disbursement queue')
    entry.status = 'failed'
    entry.failure_reason = reason
    log_activity('disbursement_failed', 'application', application.id,
                 f'Disbursement of {application.application_number} failed: {reason}', user=user)
    db.session.commit()
    return entry

def calculate_processing_fee(amount, rate=None):
    if rate is None:
        rate = SystemSettings.get_settings().processing_fee_rate
    return round_fee(to_decimal(amount) * to_decimal(rate) / 100)

def calculate_net_disbursement(amount, processing_fee, upfront_fees=0, method=DEDUCT_AT_DISBURSEMENT):
    """Cash released to the client after deductions"""
    amount = to_decimal(amount)
    if method != DEDUCT_AT_DISBURSEMENT:
        return amount
    return amount - to_decimal(processing_fee) - to_decimal(upfront_fees)

def _fee_terms(application):
    settings = SystemSettings.get_settings()
    product = application.product
    rate = product.processing_fee_rate if product and product.processing_fee_rate is not None \
        else settings.processing_fee_rate
    method = (product.processing_fee_method if product else None) or settings.processing_fee_method
    if product is not None:
        upfront = to_decimal(product.application_fee) + to_decimal(product.legal_fee)
    else:
        upfront = to_decimal(settings.application_fee) + to_decimal(settings.legal_fee)
    return rate, method, upfront

def build_schedule(application, start_date=None):
    """(annual rate, term months, method, schedule rows) for disbursing application"""
    start_date = start_date or date.today()
    if application.has_approved_terms:
        rate, tenor, method = loan_terms(application)
        rows = generate_repayment_schedule(application.amount, rate, tenor, method, start_date)
        return rate, tenor, method, rows

    settings = SystemSettings.get_settings()
    product = application.product
    term_days = (product.term_days if product else None) or \
        ((product.term_months if product and product.term_months else settings.default_term_months) * 30)
    rate = to_decimal(settings.default_interest_rate)
    interest = application.amount * rate / 100
    rows = generate_default_schedule(application.amount, interest, term_days, start_date)
    return rate, max(1, math.ceil(term_days / 30)), 'flat_rate', rows

def preview_disbursement(application, disbursement_date=None):
    amount = application.amount
    rate, method, upfront = _fee_terms(application)
    fee = calculate_processing_fee(amount, rate)
    interest_rate, tenor, calculation_method, rows = build_schedule(application, disbursement_date)
    return {
        'application_id': application.id,
        'application_number': application.application_number,
        'client_name': application.client.full_name if application.client else 'Unknown Client',
        'amount': amount,
        'processing_fee_rate': to_decimal(rate),
        'processing_fee': fee,
        'upfront_fees': upfront,
        'fee_method': method,
        'net_amount': calculate_net_disbursement(amount, fee, upfront, method),
        'interest_rate': interest_rate,
        'term_months': tenor,
        'calculation_method': calculation_method,
        'schedule': rows,
    }

def execute_disbursement(application, method='bank_transfer', disbursement_date=None, reference=None, user=None):
    """Disburse an approved application

    Creates the loan with its schedule, marks the application disbursed,
    records the disbursement and posts the journal entries in one
    transaction. Removing the queue row afterwards is best effort.
    """
    if application is None:
        raise ValidationError('Loan application not found', status_code=404)
    if application.status != 'approved':
        raise BusinessLogicError(f'Application {application.application_number} is not approved for disbursement')
    if application.loan is not None:
        raise BusinessLogicError(f'Application {application.application_number} already has a loan')
    if method not in DISBURSEMENT_METHODS:
        raise ValidationError(f'Unknown disbursement method: {method}')

    disbursement_date = disbursement_date or date.today()
    try:
        preview = preview_disbursement(application, disbursement_date)
        loan = create_loan(application, preview['amount'], preview['interest_rate'], preview['term_months'],
                           preview['schedule'], disbursement_date, preview['calculation_method'])

        application.status = 'disbursed'
        application.is_disbursed = True
        application.disbursement_date = disbursement_date
        db.session.flush()

        disbursement = LoanDisbursement(
            loan_id=loan.id,
            application_id=application.id,
            amount=preview['amount'],
            processing_fee=preview['processing_fee'],
            upfront_fees=preview['upfront_fees'],
            net_amount=preview['net_amount'],
            disbursement_method=method,
            reference=reference,
            status='completed',
            disbursement_date=disbursement_date,
            disbursed_by=user.id if user is not None else None
        )
        db.session.add(disbursement)

        post_template_entry('LOAN_DISBURSEMENT', preview['amount'],
                            {'LOAN_AMOUNT': preview['amount'], 'LOAN_NUMBER': loan.loan_number},
                            entry_date=disbursement_date, reference=reference or loan.loan_number,
                            loan_id=loan.id, user=user)
        fees = preview['processing_fee'] + preview['upfront_fees']
        if fees > 0:
            post_template_entry('FEE_INCOME', fees, {'FEE_AMOUNT': fees, 'LOAN_NUMBER': loan.loan_number},
                                entry_date=disbursement_date, reference=reference or loan.loan_number,
                                loan_id=loan.id, user=user)

        log_activity('disburse_loan', 'loan', loan.id,
                     f'Disbursed {format_currency(preview["net_amount"])} for {application.application_number} '
                     f'as loan {loan.loan_number}', user=user)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise classify_database_error(e)
    except (RythmError, ValueError):
        db.session.rollback()
        raise

    logger.info('Disbursed application %s as loan %s', application.application_number, loan.loan_number)

    entry = DisbursementQueue.query.filter_by(application_id=application.id).first()
    if entry is not None:
        try:
            db.session.delete(entry)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.warning('Could not remove %s from the disbursement queue: %s',
                           application.application_number, e)

    return loan, disbursement

def record_repayment(loan, amount, payment_date=None, payment_method='cash', reference=None, user=None,
                     commit=True):
    """Apply a repayment, interest first, and post the ledger entries

    With commit=False the changes are only flushed so the caller can finish
    its own unit of work.
    """
    amount = to_decimal(amount)
    payment_date = payment_date or date.today()
    if amount <= 0:
        raise ValidationError('Repayment amount must be greater than zero')
    if loan.status not in get_active_loan_statuses()['loans']:
        raise BusinessLogicError(f'Loan {loan.loan_number} is {loan.status} and cannot take repayments')
    outstanding = loan.get_outstanding_balance()
    if amount > outstanding:
        raise ValidationError(
            f'Repayment {format_currency(amount)} exceeds the outstanding balance {format_currency(outstanding)}')

    try:
        installments = loan.get_open_installments()
        if installments:
            before = {item.id: to_decimal(item.paid_amount) for item in installments}
            principal_paid, interest_paid, unallocated = allocate_payment(installments, amount, payment_date)
            principal_paid += unallocated
            touched = [item for item in installments if to_decimal(item.paid_amount) > before[item.id]]
            accrue_installment_interest(loan, touched, entry_date=payment_date, user=user)
        else:
            interest_collected = loan.repayments.with_entities(func.sum(LoanRepayment.interest_paid)).scalar()
            interest_due = max(to_decimal(loan.interest_amount) - to_decimal(interest_collected), ZERO)
            interest_paid = min(interest_due, amount)
            principal_paid = amount - interest_paid
            if interest_paid > 0:
                post_template_entry('INTEREST_ACCRUAL', interest_paid,
                                    {'INTEREST_AMOUNT': interest_paid, 'LOAN_NUMBER': loan.loan_number},
                                    entry_date=payment_date, reference=loan.loan_number, loan_id=loan.id, user=user)

        repayment = LoanRepayment(
            loan_id=loan.id,
            amount=amount,
            principal_paid=principal_paid,
            interest_paid=interest_paid,
            payment_date=payment_date,
            payment_method=payment_method,
            reference=reference,
            received_by=user.id if user is not None else None
        )
        db.session.add(repayment)

        if principal_paid > 0:
            post_template_entry('PRINCIPAL_REPAYMENT', principal_paid,
                                {'PRINCIPAL_AMOUNT': principal_paid, 'LOAN_NUMBER': loan.loan_number},
                                entry_date=payment_date, reference=reference or loan.loan_number,
                                loan_id=loan.id, user=user)
        if interest_paid > 0:
            post_template_entry('INTEREST_COLLECTION', interest_paid,
                                {'INTEREST_AMOUNT': interest_paid, 'LOAN_NUMBER': loan.loan_number},
                                entry_date=payment_date, reference=reference or loan.loan_number,
                                loan_id=loan.id, user=user)

        db.session.flush()
        next_open = loan.get_open_installments()
        loan.next_repayment_date = next_open[0].due_date if next_open else None
        if loan.get_outstanding_balance() <= 0:
            loan.status = 'repaid'
            loan.closing_date = payment_date
            if loan.application is not None:
                loan.application.status = 'closed'
        elif loan.status == 'overdue' and loan_days_past_due(loan, payment_date) == 0:
            loan.status = 'active'

        log_activity('record_repayment', 'loan', loan.id,
                     f'Repayment of {format_currency(amount)} on {loan.loan_number}', user=user)
        if commit:
            db.session.commit()
        else:
            db.session.flush()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise classify_database_error(e)
    except RythmError:
        db.session.rollback()
        raise

    logger.info('Recorded repayment of %s on loan %s', amount, loan.loan_number)
    return repayment

def find_application(application_id):
    application = db.session.get(LoanApplication, application_id)
    if application is None:
        raise ValidationError(f'Loan application {application_id} not found', status_code=404)
    return application
