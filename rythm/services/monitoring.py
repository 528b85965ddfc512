"""Loan monitoring: per-loan risk view, portfolio metrics, alerts and live refresh"""
import logging
import math
import threading
from collections import OrderedDict
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from dateutil.relativedelta import relativedelta
from sqlalchemy import func
from rythm import db
from rythm.models import Loan, LoanDisbursement, RepaymentSchedule, to_decimal
from rythm.services.classification import (Exposure, classify_loan, days_past_due, NON_PERFORMING,
                                           SUBSTANDARD, LOSS)
from rythm.services.status_mapping import get_active_loan_statuses

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal('0.01')
ZERO = Decimal('0.00')

# Without a schedule the next installment is assumed to be 10% of principal
FALLBACK_INSTALLMENT_SHARE = Decimal('0.1')

SEVERITY_ORDER = {'critical': 4, 'high': 3, 'medium': 2, 'low': 1}

def _pct(part, whole):
    if not whole:
        return ZERO
    return (Decimal(str(part)) / Decimal(str(whole)) * 100).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

def calculate_risk_rating(dpd, classification):
    """Low, Medium, High or Critical; Substandard loans weigh DPD by 1.2"""
    if dpd == 0:
        return 'Low'
    weighted = Decimal(dpd) * (Decimal('1.2') if classification == SUBSTANDARD else 1)
    if weighted <= 30:
        return 'Medium'
    if weighted <= 90:
        return 'High'
    return 'Critical'

def days_to_maturity(maturity_date, as_of=None):
    if maturity_date is None:
        return 0
    as_of = as_of or date.today()
    return max(0, (maturity_date - as_of).days)

def loan_days_past_due(loan, as_of=None):
    """Days since the earliest unpaid installment fell due

    Loans without a schedule are measured against their maturity date.
    """
    as_of = as_of or date.today()
    if loan.schedule.count() == 0:
        return days_past_due(loan.maturity_date, as_of)
    earliest = loan.schedule.filter(
        RepaymentSchedule.status != 'paid',
        RepaymentSchedule.due_date < as_of
    ).order_by(RepaymentSchedule.due_date).first()
    if earliest is None:
        return 0
    return days_past_due(earliest.due_date, as_of)

def loan_overdue_amount(loan, dpd, as_of=None):
    as_of = as_of or date.today()
    if dpd <= 0:
        return ZERO
    if loan.schedule.count() == 0:
        installment = to_decimal(loan.principal_amount) * FALLBACK_INSTALLMENT_SHARE
        return (installment * math.ceil(dpd / 30)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    overdue = loan.schedule.filter(
        RepaymentSchedule.status != 'paid',
        RepaymentSchedule.due_date < as_of
    ).all()
    return sum((installment.amount_due for installment in overdue), ZERO)

def loan_next_payment(loan, as_of=None):
    """(due date, amount) of the next open installment"""
    as_of = as_of or date.today()
    installment = loan.schedule.filter(RepaymentSchedule.status != 'paid').first()
    if installment is not None:
        return installment.due_date, installment.amount_due
    if loan.schedule.count() == 0:
        amount = (to_decimal(loan.principal_amount) * FALLBACK_INSTALLMENT_SHARE).quantize(TWO_PLACES)
        return as_of + relativedelta(months=1), amount
    return None, ZERO

class LoanMonitoringRecord:
    """Flattened, session-free view of one loan for the monitoring table"""

    def __init__(self, **fields):
        self.__dict__.update(fields)

    def to_exposure(self):
        return Exposure(self.id, self.balance, self.dpd, self.loan_type)

    def to_dict(self):
        data = {}
        for key, value in self.__dict__.items():
            if isinstance(value, Decimal):
                value = float(value)
            elif isinstance(value, (date, datetime)):
                value = value.isoformat()
            data[key] = value
        return data

    def __repr__(self):
        return f'<LoanMonitoringRecord {self.loan_number} dpd={self.dpd}>'

def build_monitoring_record(loan, as_of=None):
    as_of = as_of or date.today()
    client = loan.client
    product = loan.product

    total_paid = loan.get_total_paid()
    balance = loan.get_outstanding_balance()
    dpd = loan_days_past_due(loan, as_of)
    classification = classify_loan(balance, dpd, loan.loan_type, as_of)
    next_date, next_amount = loan_next_payment(loan, as_of)

    return LoanMonitoringRecord(
        id=loan.id,
        loan_number=loan.loan_number,
        client_id=loan.client_id,
        client_name=client.full_name if client else 'Unknown Client',
        client_type=(client.client_type if client and client.client_type else 'individual').title(),
        gender=client.gender if client and client.gender else 'Unknown',
        product=product.name if product else 'Standard Loan',
        loan_category=product.category if product and product.category else 'General',
        loan_type=loan.loan_type or 'general',
        amount=to_decimal(loan.principal_amount),
        total_amount=to_decimal(loan.total_amount),
        balance=balance,
        total_paid=total_paid,
        interest_rate=to_decimal(loan.interest_rate),
        term_months=loan.term_months,
        status=loan.status,
        disbursement_date=loan.disbursement_date,
        maturity_date=loan.maturity_date,
        next_payment_date=next_date,
        next_payment_amount=next_amount,
        dpd=dpd,
        overdue_amount=loan_overdue_amount(loan, dpd, as_of),
        classification=classification.category,
        provision_rate=classification.provision_rate,
        required_provision=classification.provision_amount,
        next_review_date=classification.next_review_date,
        risk_rating=calculate_risk_rating(dpd, classification.category),
        last_contact_date=loan.updated_at,
    )

def fetch_active_loans(as_of=None):
    """Monitoring records for every loan currently out with a client"""
    statuses = get_active_loan_statuses()['loans']
    loans = Loan.query.filter(Loan.status.in_(statuses)).order_by(Loan.id).all()
    if not loans:
        logger.info('No active loans found for monitoring')
        return []
    records = [build_monitoring_record(loan, as_of) for loan in loans]
    logger.debug('Built %d monitoring records', len(records))
    return records

def _summarize(records, key_name, key_func):
    groups = OrderedDict()
    for record in records:
        key = key_func(record)
        summary = groups.setdefault(key, {
            key_name: key,
            'count': 0,
            'total_amount': ZERO,
            'total_balance': ZERO,
            'total_interest_rate': ZERO,
            'overdue_count': 0,
        })
        summary['count'] += 1
        summary['total_amount'] += record.amount
        summary['total_balance'] += record.balance
        summary['total_interest_rate'] += record.interest_rate
        if record.dpd > 0:
            summary['overdue_count'] += 1

    results = []
    for summary in groups.values():
        count = summary['count']
        summary['avg_interest_rate'] = (summary.pop('total_interest_rate') / count).quantize(TWO_PLACES)
        if summary['overdue_count'] == 0:
            summary['performance'] = Decimal('100.00')
        else:
            summary['performance'] = _pct(count - summary['overdue_count'], count)
        results.append(summary)
    return sorted(results, key=lambda item: item['performance'], reverse=True)

def calculate_summary_by_product(records):
    return _summarize(records or [], 'product', lambda record: record.product or 'Unknown')

def calculate_summary_by_client_type(records):
    return _summarize(records or [], 'client_type', lambda record: record.client_type or 'Individual')

def _recovery_rate():
    """Share of closed loans that were repaid rather than written off"""
    repaid = Loan.query.filter_by(status='repaid').count()
    written_off = Loan.query.filter_by(status='written_off').count()
    return _pct(repaid, repaid + written_off)

def _recent_disbursements(as_of, days=30):
    since = as_of - timedelta(days=days)
    total = db.session.query(func.sum(LoanDisbursement.amount)).filter(
        LoanDisbursement.disbursement_date > since,
        LoanDisbursement.disbursement_date <= as_of
    ).scalar()
    return to_decimal(total)

def calculate_portfolio_metrics(records=None, as_of=None):
    as_of = as_of or date.today()
    if records is None:
        records = fetch_active_loans(as_of)

    total_loans = len(records)
    active_loans = len([r for r in records if r.status == 'active'])
    portfolio_value = sum((r.amount for r in records), ZERO)
    outstanding = sum((r.balance for r in records), ZERO)
    collections = sum((r.total_paid for r in records), ZERO)

    return {
        'total_loans': total_loans,
        'active_loans': active_loans,
        'total_portfolio_value': portfolio_value,
        'total_outstanding': outstanding,
        'par30': _pct(len([r for r in records if r.dpd > 30]), total_loans),
        'par90': _pct(len([r for r in records if r.dpd > 90]), total_loans),
        'npl_ratio': _pct(len([r for r in records if r.classification in NON_PERFORMING]), total_loans),
        'total_provisions': sum((r.required_provision for r in records), ZERO),
        'average_loan_size': (portfolio_value / total_loans).quantize(TWO_PLACES) if total_loans else ZERO,
        'portfolio_at_risk': sum((r.balance for r in records if r.dpd > 0), ZERO),
        'recovery_rate': _recovery_rate(),
        'disbursement_rate': _pct(_recent_disbursements(as_of), portfolio_value),
        'collection_efficiency': _pct(collections, portfolio_value),
    }

def generate_risk_alerts(records=None, as_of=None):
    """Overdue, risk migration and maturity alerts, most severe first"""
    as_of = as_of or date.today()
    if records is None:
        records = fetch_active_loans(as_of)

    alerts = []
    for record in records:
        if record.dpd > 0:
            severity = 'critical' if record.dpd > 90 else 'high' if record.dpd > 30 else 'medium'
            alerts.append({
                'id': f'overdue_{record.id}',
                'loan_id': record.id,
                'client_name': record.client_name,
                'alert_type': 'overdue',
                'severity': severity,
                'message': f'Loan {record.loan_number} is {record.dpd} days overdue',
            })

        if record.classification in NON_PERFORMING:
            alerts.append({
                'id': f'risk_{record.id}',
                'loan_id': record.id,
                'client_name': record.client_name,
                'alert_type': 'risk_migration',
                'severity': 'critical' if record.classification == LOSS else 'high',
                'message': f'Loan {record.loan_number} classified as {record.classification}',
            })

        remaining = days_to_maturity(record.maturity_date, as_of)
        if 0 < remaining <= 30:
            alerts.append({
                'id': f'maturity_{record.id}',
                'loan_id': record.id,
                'client_name': record.client_name,
                'alert_type': 'maturity_approaching',
                'severity': 'high' if remaining <= 7 else 'medium',
                'message': f'Loan {record.loan_number} matures in {remaining} days',
            })

    for alert in alerts:
        alert['created_at'] = as_of.isoformat()
        alert['is_resolved'] = False
    return sorted(alerts, key=lambda alert: SEVERITY_ORDER[alert['severity']], reverse=True)

class LoanMonitor:
    """Polls active loans on a fixed interval and pushes them to subscribers

    Change notifications for repayments and applications moving into an
    active status wake the poller early.
    """

    def __init__(self, app=None):
        self.app = None
        self.interval = 30
        self.snapshot = []
        self.last_refreshed = None
        self._subscribers = []
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread = None
        self._unsubscribers = []
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.app = app
        self.interval = app.config.get('MONITORING_REFRESH_SECONDS', 30)
        app.extensions['loan_monitor'] = self

        notifier = app.extensions.get('change_notifier')
        if notifier is not None:
            self._unsubscribers.append(
                notifier.subscribe('loan_repayments', self.request_refresh, events=('INSERT', 'UPDATE')))
            self._unsubscribers.append(
                notifier.subscribe('loan_applications', self._on_application_change, events=('UPDATE',)))

    def _on_application_change(self, payload):
        active = get_active_loan_statuses()['loan_application']
        if payload['new'].get('status') in active and 'status' in payload.get('changed', []):
            self.request_refresh(payload)

    @property
    def is_running(self):
        return self._thread is not None and self._thread.is_alive()

    @property
    def pending_refresh(self):
        return self._wake.is_set()

    def subscriber_count(self):
        with self._lock:
            return len(self._subscribers)

    def start(self, callback=None):
        """Register callback and start the polling thread if needed"""
        if callback is not None:
            with self._lock:
                self._subscribers.append(callback)
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name='loan-monitor', daemon=True)
        self._thread.start()
        logger.info('Loan monitoring started (every %s seconds)', self.interval)

    def stop(self):
        """Stop polling and drop every subscriber"""
        self._stop.set()
        self._wake.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)
        self._thread = None
        self._wake.clear()
        with self._lock:
            self._subscribers = []
        logger.info('Loan monitoring stopped')

    def request_refresh(self, payload=None):
        self._wake.set()

    def _run(self):
        while not self._stop.is_set():
            self._wake.wait(self.interval)
            self._wake.clear()
            if self._stop.is_set():
                break
            try:
                self.refresh()
            except Exception:
                logger.exception('Error in real-time loan monitoring')

    def refresh(self, as_of=None):
        """Fetch active loans, keep the snapshot and notify subscribers"""
        with self.app.app_context():
            records = fetch_active_loans(as_of)
        self.snapshot = records
        self.last_refreshed = datetime.utcnow()

        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(records)
            except Exception:
                logger.exception('Loan monitoring subscriber failed')
        return records

def get_loan_monitor():
    from flask import current_app
    return current_app.extensions['loan_monitor']

def filter_records(records, classification=None, product=None, min_dpd=None):
    """Monitoring table filters; empty values are ignored"""
    results = list(records)
    if classification:
        results = [r for r in results if r.classification == classification]
    if product:
        results = [r for r in results if r.product == product]
    if min_dpd:
        results = [r for r in results if r.dpd >= int(min_dpd)]
    return results
