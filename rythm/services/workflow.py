"""Loan processing workflow counts for the dashboard"""
from collections import OrderedDict
from decimal import Decimal, ROUND_HALF_UP
from sqlalchemy import func
from rythm import db
from rythm.models import DisbursementQueue, LoanApplication

IN_ASSESSMENT = ('under_review', 'pending_committee_review')

def _percentage(count, total):
    if not total:
        return 0
    return int((Decimal(count * 100) / Decimal(total)).quantize(Decimal('1'), rounding=ROUND_HALF_UP))

def get_workflow_stats():
    """Application counts per workflow step with share of all applications"""
    status_counts = dict(db.session.query(LoanApplication.status, func.count(LoanApplication.id))
                         .group_by(LoanApplication.status).all())
    contract_counts = dict(db.session.query(LoanApplication.contract_status, func.count(LoanApplication.id))
                           .group_by(LoanApplication.contract_status).all())
    total = sum(status_counts.values())

    steps = OrderedDict([
        ('in_assessment', sum(status_counts.get(status, 0) for status in IN_ASSESSMENT)),
        ('approved', status_counts.get('approved', 0)),
        ('contract_generated', contract_counts.get('generated', 0)),
        ('contract_uploaded', contract_counts.get('uploaded', 0)),
        ('ready_for_disbursement', DisbursementQueue.query.filter_by(status='ready_for_disbursement').count()),
        ('disbursed', status_counts.get('disbursed', 0)),
        ('rejected', status_counts.get('rejected', 0)),
    ])

    return {
        'total_applications': total,
        'steps': [{'key': key, 'count': count, 'percentage': _percentage(count, total)}
                  for key, count in steps.items()],
        'counts': dict(steps),
    }
