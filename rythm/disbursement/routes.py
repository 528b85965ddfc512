"""Disbursement queue, disbursement and repayment routes"""
import os
from datetime import datetime
from dateutil import parser as date_parser
from flask import render_template, redirect, url_for, flash, request, current_app, jsonify, abort
from flask_login import login_required, current_user
from werkzeug.utils import secure_filename
from rythm import db
from rythm.disbursement import disbursement_bp
from rythm.disbursement.forms import ContractUploadForm, DisbursementForm, DisbursementFailureForm, RepaymentForm
from rythm.errors import RythmError, ValidationError
from rythm.models import Loan, LoanApplication
from rythm.services import disbursement as service
from rythm.services.sync import reconcile_orphan_disbursements, sync_all_disbursed_loans, sync_single_loan
from rythm.utils.decorators import permission_required
from rythm.utils.helpers import log_activity, parse_amount, serialize

def _parse_date(value):
    if not value:
        return None
    try:
        return date_parser.parse(value).date()
    except (ValueError, OverflowError, TypeError):
        raise ValidationError(f'Invalid date: {value}')

@disbursement_bp.route('/')
@login_required
@permission_required('manage_disbursements')
def queue():
    """Disbursement queue and approved applications awaiting a contract"""
    page = request.args.get('page', 1, type=int)
    awaiting = LoanApplication.query.filter(
        LoanApplication.status == 'approved',
        ~LoanApplication.queue_entry.has()
    ).order_by(LoanApplication.approval_date).paginate(
        page=page, per_page=current_app.config['ITEMS_PER_PAGE'], error_out=False
    )
    return render_template('disbursement/queue.html',
                         title='Disbursement Queue',
                         ready=service.get_disbursement_queue('ready_for_disbursement'),
                         failed=service.get_disbursement_queue('failed'),
                         awaiting=awaiting)

@disbursement_bp.route('/application/<int:id>/contract', methods=['GET', 'POST'])
@login_required
@permission_required('manage_disbursements')
def upload_contract(id):
    application = db.session.get(LoanApplication, id) or abort(404)
    form = ContractUploadForm()
    if form.validate_on_submit():
        upload_folder = current_app.config['UPLOAD_FOLDER']
        os.makedirs(upload_folder, exist_ok=True)
        filename = secure_filename(
            f'contract_{application.id}_{datetime.now().strftime("%Y%m%d_%H%M%S")}.pdf')
        form.contract.data.save(os.path.join(upload_folder, filename))

        application.contract_file = filename
        application.contract_status = 'uploaded'
        log_activity('upload_contract', 'application', application.id,
                     f'Contract uploaded for {application.application_number}')
        db.session.commit()
        flash('Contract uploaded successfully!', 'success')
        return redirect(url_for('disbursement.queue'))

    return render_template('disbursement/contract.html', title='Upload Contract',
                         form=form, application=application)

@disbursement_bp.route('/application/<int:id>/queue', methods=['POST'])
@login_required
@permission_required('manage_disbursements')
def add_to_queue(id):
    application = db.session.get(LoanApplication, id) or abort(404)
    try:
        service.queue_for_disbursement(application, user=current_user)
        flash(f'{application.application_number} is ready for disbursement.', 'success')
    except RythmError as e:
        flash(e.user_message, 'warning')
    return redirect(url_for('disbursement.queue'))

@disbursement_bp.route('/application/<int:id>', methods=['GET', 'POST'])
@login_required
@permission_required('manage_disbursements')
def disburse(id):
    """Preview and execute a disbursement"""
    application = db.session.get(LoanApplication, id) or abort(404)
    form = DisbursementForm()
    if form.validate_on_submit():
        try:
            loan, _ = service.execute_disbursement(application,
                                                   method=form.disbursement_method.data,
                                                   disbursement_date=form.disbursement_date.data,
                                                   reference=form.reference.data or None,
                                                   user=current_user)
        except RythmError as e:
            flash(e.user_message, 'danger')
            return redirect(url_for('disbursement.disburse', id=id))
        flash(f'Loan {loan.loan_number} disbursed successfully!', 'success')
        return redirect(url_for('monitoring.view_loan', id=loan.id))

    return render_template('disbursement/disburse.html',
                         title=f'Disburse {application.application_number}',
                         form=form,
                         application=application,
                         preview=service.preview_disbursement(application))

@disbursement_bp.route('/application/<int:id>/fail', methods=['POST'])
@login_required
@permission_required('manage_disbursements')
def mark_failed(id):
    application = db.session.get(LoanApplication, id) or abort(404)
    form = DisbursementFailureForm()
    if form.validate_on_submit():
        try:
            service.mark_disbursement_failed(application, form.reason.data, user=current_user)
            flash('Disbursement marked as failed.', 'info')
        except RythmError as e:
            flash(e.user_message, 'warning')
    return redirect(url_for('disbursement.queue'))

@disbursement_bp.route('/loan/<int:id>/repayment', methods=['GET', 'POST'])
@login_required
@permission_required('manage_disbursements')
def add_repayment(id):
    loan = db.session.get(Loan, id) or abort(404)
    form = RepaymentForm()
    if form.validate_on_submit():
        try:
            service.record_repayment(loan, form.amount.data,
                                     payment_date=form.payment_date.data,
                                     payment_method=form.payment_method.data,
                                     reference=form.reference.data or None,
                                     user=current_user)
        except RythmError as e:
            flash(e.user_message, 'danger')
            return redirect(url_for('disbursement.add_repayment', id=id))
        flash('Repayment recorded successfully!', 'success')
        return redirect(url_for('monitoring.view_loan', id=loan.id))

    return render_template('disbursement/repayment.html', title=f'Repayment: {loan.loan_number}',
                         form=form, loan=loan)

@disbursement_bp.route('/api/queue')
@login_required
@permission_required('manage_disbursements')
def api_queue():
    entries = service.get_disbursement_queue(request.args.get('status', 'ready_for_disbursement'))
    return jsonify({
        'success': True,
        'queue': [{
            'application_id': entry.application_id,
            'application_number': entry.application.application_number,
            'client_name': entry.application.client.full_name if entry.application.client else 'Unknown Client',
            'amount': float(entry.application.amount),
            'status': entry.status,
            'failure_reason': entry.failure_reason,
            'queued_at': entry.queued_at.isoformat() if entry.queued_at else None,
        } for entry in entries]
    })

@disbursement_bp.route('/api/preview/<int:id>')
@login_required
@permission_required('manage_disbursements')
def api_preview(id):
    application = service.find_application(id)
    return jsonify({'success': True, 'preview': serialize(service.preview_disbursement(application))})

@disbursement_bp.route('/api/queue/<int:id>', methods=['POST'])
@login_required
@permission_required('manage_disbursements')
def api_add_to_queue(id):
    entry = service.queue_for_disbursement(service.find_application(id), user=current_user)
    return jsonify({'success': True, 'status': entry.status})

@disbursement_bp.route('/api/disburse/<int:id>', methods=['POST'])
@login_required
@permission_required('manage_disbursements')
def api_disburse(id):
    data = request.get_json(silent=True) or {}
    loan, disbursement = service.execute_disbursement(
        service.find_application(id),
        method=data.get('method', 'bank_transfer'),
        disbursement_date=_parse_date(data.get('disbursement_date')),
        reference=data.get('reference'),
        user=current_user
    )
    return jsonify({
        'success': True,
        'loan_id': loan.id,
        'loan_number': loan.loan_number,
        'net_amount': float(disbursement.net_amount),
        'processing_fee': float(disbursement.processing_fee),
    })

@disbursement_bp.route('/api/repayments/<int:loan_id>', methods=['POST'])
@login_required
@permission_required('manage_disbursements')
def api_repayment(loan_id):
    loan = db.session.get(Loan, loan_id)
    if loan is None:
        return jsonify({'success': False, 'error': 'Loan not found'}), 404
    data = request.get_json(silent=True) or {}
    if data.get('amount') in (None, ''):
        raise ValidationError('Repayment amount is required')
    repayment = service.record_repayment(loan, parse_amount(data['amount'], 'Repayment amount'),
                                         payment_date=_parse_date(data.get('payment_date')),
                                         payment_method=data.get('payment_method', 'cash'),
                                         reference=data.get('reference'),
                                         user=current_user)
    return jsonify({
        'success': True,
        'repayment_id': repayment.id,
        'principal_paid': float(repayment.principal_paid),
        'interest_paid': float(repayment.interest_paid),
        'loan_status': loan.status,
        'outstanding_balance': float(loan.get_outstanding_balance()),
    })

@disbursement_bp.route('/api/sync', methods=['POST'])
@login_required
@permission_required('manage_disbursements')
def api_sync():
    result = sync_all_disbursed_loans()
    orphans = reconcile_orphan_disbursements()
    return jsonify({
        'success': result.success and orphans.success,
        'synced': result.synced,
        'orphans_reconciled': orphans.synced,
        'errors': result.errors + orphans.errors,
    })

@disbursement_bp.route('/api/sync/<int:application_id>', methods=['POST'])
@login_required
@permission_required('manage_disbursements')
def api_sync_single(application_id):
    loan = sync_single_loan(application_id)
    return jsonify({'success': True, 'loan_id': loan.id, 'loan_number': loan.loan_number})
