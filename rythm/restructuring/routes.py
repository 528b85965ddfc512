"""Loan restructuring routes"""
from dateutil import parser as date_parser
from flask import render_template, redirect, url_for, flash, request, current_app, jsonify, abort
from flask_login import login_required, current_user
from rythm import db
from rythm.errors import RythmError, ValidationError
from rythm.models import Loan
from rythm.restructuring import restructuring_bp
from rythm.restructuring.forms import RestructuringRequestForm, ReviewForm
from rythm.services import restructuring as service
from rythm.services.status_mapping import get_restructuring_eligible_statuses
from rythm.utils.decorators import permission_required
from rythm.utils.helpers import serialize

def _get_loan(id):
    loan = db.session.get(Loan, id)
    if loan is None:
        raise ValidationError(f'Loan {id} not found', status_code=404)
    return loan

def _as_of():
    value = request.args.get('as_of')
    if not value:
        return None
    try:
        return date_parser.parse(value).date()
    except (ValueError, OverflowError, TypeError):
        raise ValidationError(f'Invalid date: {value}')

@restructuring_bp.route('/')
@login_required
@permission_required('manage_restructuring')
def index():
    """Restructuring workspace"""
    page = request.args.get('page', 1, type=int)
    status = request.args.get('status', '')
    priority = request.args.get('priority', '')
    requests = service.list_requests(status=status, priority=priority).paginate(
        page=page, per_page=current_app.config['ITEMS_PER_PAGE'], error_out=False
    )
    eligible = Loan.query.filter(
        Loan.status.in_(get_restructuring_eligible_statuses()['loans'])
    ).order_by(Loan.loan_number).all()
    return render_template('restructuring/index.html',
                         title='Loan Restructuring',
                         requests=requests,
                         loans=eligible,
                         stats=service.get_restructuring_stats(),
                         status=status,
                         priority=priority)

@restructuring_bp.route('/loan/<int:id>')
@login_required
@permission_required('manage_restructuring')
def analyze(id):
    """Settlement, top-up and term options for one loan"""
    loan = db.session.get(Loan, id) or abort(404)
    return render_template('restructuring/analysis.html',
                         title=f'Restructure {loan.loan_number}',
                         loan=loan,
                         assessment=service.assess_loan_status(loan),
                         settlement=service.calculate_settlement(loan),
                         topup=service.calculate_topup_eligibility(loan),
                         terms=service.calculate_term_modification(loan))

@restructuring_bp.route('/loan/<int:id>/request', methods=['GET', 'POST'])
@login_required
@permission_required('manage_restructuring')
def new_request(id):
    loan = db.session.get(Loan, id) or abort(404)
    form = RestructuringRequestForm()
    if form.validate_on_submit():
        try:
            restructuring = service.submit_request(
                loan,
                form.restructuring_type.data,
                reason=form.reason.data,
                priority=form.priority.data,
                proposed_rate=form.proposed_interest_rate.data,
                proposed_tenor=form.proposed_tenor.data,
                proposed_amount=form.proposed_amount.data,
                grace_period=form.grace_period.data or 0,
                user=current_user
            )
        except RythmError as e:
            db.session.rollback()
            flash(e.user_message, 'danger')
            return render_template('restructuring/request_form.html', title='New Restructuring Request',
                                 form=form, loan=loan)
        flash(f'Restructuring request {restructuring.request_number} submitted.', 'success')
        return redirect(url_for('restructuring.view_request', id=restructuring.id))

    return render_template('restructuring/request_form.html', title='New Restructuring Request',
                         form=form, loan=loan)

@restructuring_bp.route('/requests/<int:id>')
@login_required
@permission_required('manage_restructuring')
def view_request(id):
    restructuring = service.get_request(id)
    return render_template('restructuring/request.html',
                         title=restructuring.request_number,
                         restructuring=restructuring,
                         form=ReviewForm())

@restructuring_bp.route('/requests/<int:id>/review', methods=['POST'])
@login_required
@permission_required('approve_restructuring')
def review(id):
    restructuring = service.get_request(id)
    form = ReviewForm()
    if form.validate_on_submit():
        try:
            service.review_request(restructuring, form.decision.data, notes=form.notes.data, user=current_user)
            flash(f'{restructuring.request_number} is now {restructuring.status.replace("_", " ")}.', 'success')
        except RythmError as e:
            db.session.rollback()
            flash(e.user_message, 'warning')
    return redirect(url_for('restructuring.view_request', id=id))

@restructuring_bp.route('/requests/<int:id>/implement', methods=['POST'])
@login_required
@permission_required('approve_restructuring')
def implement(id):
    restructuring = service.get_request(id)
    try:
        service.implement_request(restructuring, user=current_user)
        flash(f'{restructuring.request_number} implemented.', 'success')
    except RythmError as e:
        flash(e.user_message, 'danger')
    return redirect(url_for('restructuring.view_request', id=id))

@restructuring_bp.route('/requests/<int:id>/cancel', methods=['POST'])
@login_required
@permission_required('manage_restructuring')
def cancel(id):
    restructuring = service.get_request(id)
    try:
        service.cancel_request(restructuring, user=current_user)
        flash(f'{restructuring.request_number} cancelled.', 'info')
    except RythmError as e:
        flash(e.user_message, 'warning')
    return redirect(url_for('restructuring.view_request', id=id))

# API Routes
@restructuring_bp.route('/api/loans/<int:id>/status')
@login_required
@permission_required('manage_restructuring')
def api_loan_status(id):
    return jsonify({'success': True, 'status': serialize(service.assess_loan_status(_get_loan(id), _as_of()))})

@restructuring_bp.route('/api/loans/<int:id>/settlement')
@login_required
@permission_required('manage_restructuring')
def api_settlement(id):
    return jsonify({'success': True, 'settlement': serialize(service.calculate_settlement(_get_loan(id), _as_of()))})

@restructuring_bp.route('/api/loans/<int:id>/topup')
@login_required
@permission_required('manage_restructuring')
def api_topup(id):
    eligibility = service.calculate_topup_eligibility(_get_loan(id), _as_of())
    return jsonify({'success': True, 'eligibility': serialize(eligibility)})

@restructuring_bp.route('/api/loans/<int:id>/term-options')
@login_required
@permission_required('manage_restructuring')
def api_term_options(id):
    options = service.calculate_term_modification(_get_loan(id), _as_of())
    return jsonify({'success': True, 'options': serialize(options)})

@restructuring_bp.route('/api/loans/<int:id>/impact', methods=['POST'])
@login_required
@permission_required('manage_restructuring')
def api_impact(id):
    loan = _get_loan(id)
    data = request.get_json(silent=True) or {}
    try:
        new_rate = data.get('new_interest_rate', loan.interest_rate)
        new_tenor = int(data.get('new_tenor') or 0)
        grace_period = int(data.get('grace_period') or 0)
    except (TypeError, ValueError):
        raise ValidationError('Tenor and grace period must be whole months')
    impact = service.calculate_restructuring_impact(loan, new_rate, new_tenor, grace_period, _as_of())
    return jsonify({'success': True, 'impact': serialize(impact)})

@restructuring_bp.route('/api/requests', methods=['GET', 'POST'])
@login_required
@permission_required('manage_restructuring')
def api_requests():
    if request.method == 'GET':
        query = service.list_requests(status=request.args.get('status'),
                                      priority=request.args.get('priority'),
                                      loan_id=request.args.get('loan_id', type=int))
        return jsonify({'success': True, 'requests': [service.request_to_dict(r) for r in query.limit(100)]})

    data = request.get_json(silent=True) or {}
    if not data.get('loan_id') or not data.get('restructuring_type'):
        raise ValidationError('loan_id and restructuring_type are required')
    restructuring = service.submit_request(
        _get_loan(data['loan_id']),
        data['restructuring_type'],
        reason=data.get('reason'),
        priority=data.get('priority') or 'medium',
        proposed_rate=data.get('proposed_interest_rate'),
        proposed_tenor=data.get('proposed_tenor'),
        proposed_amount=data.get('proposed_amount'),
        grace_period=int(data.get('grace_period') or 0),
        user=current_user
    )
    return jsonify({
        'success': True,
        'request': service.request_to_dict(restructuring),
        'proposed_amount': serialize(restructuring.proposed_amount),
        'proposed_monthly_payment': serialize(restructuring.proposed_monthly_payment),
    }), 201

@restructuring_bp.route('/api/requests/<int:id>/review', methods=['POST'])
@login_required
@permission_required('approve_restructuring')
def api_review(id):
    data = request.get_json(silent=True) or {}
    restructuring = service.review_request(service.get_request(id), data.get('decision'),
                                           notes=data.get('notes'), user=current_user)
    return jsonify({'success': True, 'request': service.request_to_dict(restructuring)})

@restructuring_bp.route('/api/requests/<int:id>/implement', methods=['POST'])
@login_required
@permission_required('approve_restructuring')
def api_implement(id):
    restructuring = service.implement_request(service.get_request(id), user=current_user)
    loan = restructuring.loan
    return jsonify({
        'success': True,
        'request': service.request_to_dict(restructuring),
        'loan_status': loan.status,
        'outstanding_balance': float(loan.get_outstanding_balance()),
    })

@restructuring_bp.route('/api/requests/<int:id>/cancel', methods=['POST'])
@login_required
@permission_required('manage_restructuring')
def api_cancel(id):
    restructuring = service.cancel_request(service.get_request(id), user=current_user)
    return jsonify({'success': True, 'request': service.request_to_dict(restructuring)})

@restructuring_bp.route('/api/stats')
@login_required
@permission_required('manage_restructuring')
def api_stats():
    return jsonify({'success': True, 'stats': serialize(service.get_restructuring_stats())})

@restructuring_bp.route('/api/repayment-stats')
@login_required
@permission_required('view_monitoring')
def api_repayment_stats():
    stats = service.get_repayment_stats(request.args.get('loan_id', type=int))
    return jsonify({'success': True, 'stats': serialize(stats)})
