"""Helper functions"""
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from flask import has_request_context, request
from flask_login import current_user
from rythm import db
from rythm.errors import ValidationError
from rythm.models import ActivityLog, Loan, LoanRestructuring, JournalEntry

def _next_sequence(model, column, pattern, separator='/'):
    """Next sequential number for identifiers matching pattern"""
    last = model.query.filter(column.like(pattern)).order_by(model.id.desc()).first()
    if not last:
        return 1
    try:
        return int(getattr(last, column.key).split(separator)[-1]) + 1
    except (ValueError, IndexError):
        return 1

def generate_loan_number(loan_type='general'):
    """Generate unique loan number in format YY/TYPE/#####

    TYPE is GL for general loans and HM for housing microfinance.
    """
    year = datetime.now().strftime('%y')
    type_code = 'HM' if loan_type == 'housing_microfinance' else 'GL'
    number = _next_sequence(Loan, Loan.loan_number, f'{year}/{type_code}/%')
    return f'{year}/{type_code}/{number:05d}'

def generate_journal_number(entry_date=None):
    """Journal entry number in format JE-YYYYMMDD-####"""
    day = (entry_date or datetime.now()).strftime('%Y%m%d')
    number = _next_sequence(JournalEntry, JournalEntry.entry_number, f'JE-{day}-%', separator='-')
    return f'JE-{day}-{number:04d}'

def generate_restructuring_number():
    year = datetime.now().strftime('%y')
    number = _next_sequence(LoanRestructuring, LoanRestructuring.request_number, f'RS/{year}/%')
    return f'RS/{year}/{number:05d}'

def log_activity(action, entity_type=None, entity_id=None, description=None, user=None):
    """Add an audit row to the current session (committed by the caller)"""
    if user is None and has_request_context() and current_user.is_authenticated:
        user = current_user
    log = ActivityLog(
        user_id=user.id if user is not None else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        description=description,
        ip_address=request.remote_addr if has_request_context() else None,
        user_agent=request.user_agent.string if has_request_context() else None
    )
    db.session.add(log)
    return log

def serialize(value):
    """Convert Decimals and dates inside value into JSON-friendly types"""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: serialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(item) for item in value]
    return value

def parse_amount(value, label='Amount'):
    """Decimal from request input; ValidationError when it is not a finite number"""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{label} must be a number: {value}')
    if not amount.is_finite():
        raise ValidationError(f'{label} must be a number: {value}')
    return amount
