"""Mapping between loan application statuses and loans table statuses"""
import logging
from collections import namedtuple

logger = logging.getLogger(__name__)

StatusMapping = namedtuple('StatusMapping', ['application_status', 'loans_status', 'description', 'stage'])

STATUS_MAPPINGS = (
    StatusMapping('pending', 'none', 'New loan application submitted', 'application'),
    StatusMapping('under_review', 'none', 'Loan under credit assessment', 'processing'),
    StatusMapping('pending_committee_review', 'none', 'Pending committee approval', 'processing'),
    StatusMapping('approved', 'none', 'Loan approved, ready for disbursement', 'processing'),
    StatusMapping('rejected', 'none', 'Loan rejected', 'completed'),
    StatusMapping('cancelled', 'none', 'Loan cancelled', 'completed'),
    StatusMapping('disbursed', 'active', 'Loan disbursed and active', 'active'),
    StatusMapping('closed', 'repaid', 'Loan fully repaid and closed', 'completed'),
    StatusMapping('disbursed', 'overdue', 'Active loan with overdue payments', 'default'),
    StatusMapping('disbursed', 'written_off', 'Loan written off due to default', 'default'),
)

APPLICATION_STATUSES = (
    'pending', 'under_review', 'pending_committee_review', 'approved',
    'rejected', 'cancelled', 'disbursed', 'closed',
)

LOANS_STATUSES = ('active', 'overdue', 'repaid', 'written_off', 'none')

def get_loans_table_status(application_status):
    """Loans table status for an application status (first match)"""
    for mapping in STATUS_MAPPINGS:
        if mapping.application_status == application_status:
            return mapping.loans_status
    logger.warning('Unknown loan application status: %s', application_status)
    return 'none'

def get_loan_application_status(loans_status):
    """Application status for a loans table status"""
    for mapping in STATUS_MAPPINGS:
        if mapping.loans_status == loans_status:
            return mapping.application_status
    logger.warning('Unknown loans table status: %s', loans_status)
    return 'pending'

def _find(application_status, loans_status=None):
    for mapping in STATUS_MAPPINGS:
        if mapping.application_status != application_status:
            continue
        if loans_status is None or mapping.loans_status == loans_status:
            return mapping
    return None

def get_status_description(application_status, loans_status=None):
    mapping = _find(application_status, loans_status)
    return mapping.description if mapping else 'Unknown status'

def get_stage(application_status, loans_status=None):
    mapping = _find(application_status, loans_status)
    return mapping.stage if mapping else 'application'

def is_valid_application_status(status):
    return status in APPLICATION_STATUSES

def is_valid_loans_status(status):
    return status in LOANS_STATUSES

def get_active_loan_statuses():
    """Statuses of loans that are out with the client"""
    return {'loan_application': ['disbursed'], 'loans': ['active', 'overdue']}

def get_restructuring_eligible_statuses():
    return {'loan_application': ['disbursed'], 'loans': ['active', 'overdue']}

def get_closure_eligible_statuses():
    return {'loan_application': ['disbursed', 'closed'], 'loans': ['active', 'overdue', 'repaid']}

def get_all_mappings():
    return [mapping._asdict() for mapping in STATUS_MAPPINGS]
