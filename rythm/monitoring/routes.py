"""Loan monitoring routes"""
import math
from flask import render_template, request, current_app, jsonify, abort
from flask_login import login_required
from rythm import db
from rythm.monitoring import monitoring_bp
from rythm.models import Loan, LoanRepayment, SystemSettings
from rythm.services.classification import (CATEGORY_KEYS, calculate_portfolio_classification,
                                           generate_bot_report_data, get_classification_criteria)
from rythm.services.monitoring import (build_monitoring_record, calculate_portfolio_metrics,
                                       calculate_summary_by_client_type, calculate_summary_by_product,
                                       fetch_active_loans, filter_records, generate_risk_alerts, get_loan_monitor)
from rythm.services.sync import get_active_loans_from_monitoring, refresh_loan_statuses, sync_all_disbursed_loans
from rythm.utils.decorators import permission_required
from rythm.utils.helpers import serialize

def _filters():
    return {
        'classification': request.args.get('classification', ''),
        'product': request.args.get('product', ''),
        'min_dpd': request.args.get('min_dpd', 0, type=int),
    }

@monitoring_bp.route('/')
@login_required
@permission_required('view_monitoring')
def index():
    """Monitoring table"""
    page = request.args.get('page', 1, type=int)
    per_page = current_app.config['ITEMS_PER_PAGE']
    filters = _filters()

    all_records = fetch_active_loans()
    records = filter_records(all_records, **filters)
    pages = max(1, math.ceil(len(records) / per_page))

    return render_template('monitoring/index.html',
                         title='Loan Monitoring',
                         records=records[(page - 1) * per_page:page * per_page],
                         page=page,
                         pages=pages,
                         total=len(records),
                         filters=filters,
                         classifications=list(CATEGORY_KEYS),
                         products=sorted({r.product for r in all_records}),
                         metrics=calculate_portfolio_metrics(all_records))

@monitoring_bp.route('/loan/<int:id>')
@login_required
@permission_required('view_monitoring')
def view_loan(id):
    loan = db.session.get(Loan, id) or abort(404)
    record = build_monitoring_record(loan)
    return render_template('monitoring/loan.html',
                         title=f'Loan {loan.loan_number}',
                         loan=loan,
                         record=record,
                         schedule=loan.schedule.all(),
                         repayments=loan.repayments.order_by(LoanRepayment.payment_date.desc()).all())

@monitoring_bp.route('/bot-report')
@login_required
@permission_required('view_reports')
def bot_report():
    settings = SystemSettings.get_settings()
    records = fetch_active_loans()
    report = generate_bot_report_data([r.to_exposure() for r in records], settings.institution_name,
                                      settings.msp_code)
    return render_template('monitoring/bot_report.html', title='BOT Loan Classification', report=report)

@monitoring_bp.route('/api/loans')
@login_required
@permission_required('view_monitoring')
def api_loans():
    records = filter_records(fetch_active_loans(), **_filters())
    return jsonify({'success': True, 'count': len(records), 'loans': [r.to_dict() for r in records]})

@monitoring_bp.route('/api/loans/<int:id>')
@login_required
@permission_required('view_monitoring')
def api_loan(id):
    loan = db.session.get(Loan, id)
    if loan is None:
        return jsonify({'success': False, 'error': 'Loan not found'}), 404
    return jsonify({'success': True, 'loan': build_monitoring_record(loan).to_dict()})

@monitoring_bp.route('/api/metrics')
@login_required
@permission_required('view_monitoring')
def api_metrics():
    return jsonify({'success': True, 'metrics': serialize(calculate_portfolio_metrics())})

@monitoring_bp.route('/api/alerts')
@login_required
@permission_required('view_monitoring')
def api_alerts():
    alerts = generate_risk_alerts()
    severity = request.args.get('severity')
    if severity:
        alerts = [alert for alert in alerts if alert['severity'] == severity]
    return jsonify({'success': True, 'alerts': alerts})

@monitoring_bp.route('/api/summary/products')
@login_required
@permission_required('view_monitoring')
def api_product_summary():
    return jsonify({'success': True, 'summary': serialize(calculate_summary_by_product(fetch_active_loans()))})

@monitoring_bp.route('/api/summary/client-types')
@login_required
@permission_required('view_monitoring')
def api_client_type_summary():
    return jsonify({'success': True,
                    'summary': serialize(calculate_summary_by_client_type(fetch_active_loans()))})

@monitoring_bp.route('/api/classification')
@login_required
@permission_required('view_monitoring')
def api_classification():
    records = fetch_active_loans()
    portfolio = calculate_portfolio_classification([r.to_exposure() for r in records])
    return jsonify({'success': True, 'portfolio': serialize(portfolio), 'criteria': get_classification_criteria()})

@monitoring_bp.route('/api/bot-report')
@login_required
@permission_required('view_reports')
def api_bot_report():
    settings = SystemSettings.get_settings()
    records = fetch_active_loans()
    report = generate_bot_report_data([r.to_exposure() for r in records], settings.institution_name,
                                      settings.msp_code)
    return jsonify({'success': True, 'report': serialize(report)})

@monitoring_bp.route('/api/refresh', methods=['POST'])
@login_required
@permission_required('view_monitoring')
def api_refresh():
    """Sync disbursed applications, refresh statuses and return fresh data"""
    result = sync_all_disbursed_loans()
    changes = refresh_loan_statuses()
    records = get_active_loans_from_monitoring()
    return jsonify({
        'success': True,
        'sync': {'success': result.success, 'synced': result.synced, 'errors': result.errors},
        'status_changes': changes,
        'loans': [r.to_dict() for r in records],
        'metrics': serialize(calculate_portfolio_metrics(records)),
    })

@monitoring_bp.route('/api/monitor')
@login_required
@permission_required('view_monitoring')
def api_monitor_status():
    monitor = get_loan_monitor()
    return jsonify({
        'success': True,
        'is_running': monitor.is_running,
        'interval': monitor.interval,
        'subscribers': monitor.subscriber_count(),
        'last_refreshed': monitor.last_refreshed.isoformat() if monitor.last_refreshed else None,
    })
