"""Main routes"""
from datetime import date
from flask import render_template, redirect, url_for, jsonify
from flask_login import login_required, current_user
from rythm.main import main_bp
from rythm.models import ActivityLog, LoanApplication
from rythm.errors import get_error_handler
from rythm.services.monitoring import calculate_portfolio_metrics, fetch_active_loans
from rythm.services.status_mapping import get_all_mappings
from rythm.services.workflow import get_workflow_stats
from rythm.utils.decorators import admin_required

@main_bp.route('/')
@main_bp.route('/dashboard')
@login_required
def dashboard():
    """Main dashboard"""
    records = fetch_active_loans()
    metrics = calculate_portfolio_metrics(records)
    workflow = get_workflow_stats()

    recent_applications = LoanApplication.query.order_by(LoanApplication.created_at.desc()).limit(5).all()
    overdue = sorted([r for r in records if r.dpd > 0], key=lambda r: r.dpd, reverse=True)[:10]
    recent_activity = ActivityLog.query.order_by(ActivityLog.created_at.desc()).limit(10).all()

    return render_template('main/dashboard.html',
                         title='Dashboard',
                         metrics=metrics,
                         workflow=workflow,
                         recent_applications=recent_applications,
                         overdue_loans=overdue,
                         recent_activity=recent_activity)

@main_bp.route('/index')
def index():
    """Redirect to dashboard or login"""
    if current_user.is_authenticated:
        return redirect(url_for('main.dashboard'))
    return redirect(url_for('auth.login'))

@main_bp.route('/api/workflow-stats')
@login_required
def api_workflow_stats():
    return jsonify({'success': True, 'data': get_workflow_stats(), 'as_of': date.today().isoformat()})

@main_bp.route('/api/status-mappings')
@login_required
def api_status_mappings():
    return jsonify({'success': True, 'mappings': get_all_mappings()})

@main_bp.route('/api/errors')
@login_required
@admin_required
def api_error_statistics():
    return jsonify({'success': True, 'data': get_error_handler().get_error_statistics()})

@main_bp.route('/api/errors/<error_id>/resolve', methods=['POST'])
@login_required
@admin_required
def api_resolve_error(error_id):
    if not get_error_handler().resolve_error(error_id):
        return jsonify({'success': False, 'error': 'Error report not found'}), 404
    return jsonify({'success': True})

@main_bp.route('/api/errors/clear-resolved', methods=['POST'])
@login_required
@admin_required
def api_clear_resolved_errors():
    return jsonify({'success': True, 'cleared': get_error_handler().clear_resolved_errors()})
