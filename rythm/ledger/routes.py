"""General ledger routes"""
from datetime import date
from dateutil import parser as date_parser
from flask import render_template, redirect, url_for, flash, request, current_app, jsonify, abort
from flask_login import login_required, current_user
from rythm import db
from rythm.errors import RythmError, ValidationError
from rythm.ledger import ledger_bp
from rythm.ledger.forms import TemplateEntryForm, JournalReviewForm, ReconciliationForm
from rythm.models import ChartOfAccount, JournalEntry
from rythm.services import ledger as service
from rythm.utils.decorators import permission_required
from rythm.utils.helpers import parse_amount, serialize

def _parse_date(value):
    if not value:
        return None
    try:
        return date_parser.parse(value).date()
    except (ValueError, OverflowError, TypeError):
        raise ValidationError(f'Invalid date: {value}')

def _as_of():
    return _parse_date(request.args.get('as_of'))

def _get_entry(id):
    entry = db.session.get(JournalEntry, id)
    if entry is None:
        raise ValidationError(f'Journal entry {id} not found', status_code=404)
    return entry

@ledger_bp.route('/')
@login_required
@permission_required('manage_ledger')
def dashboard():
    """Ledger dashboard"""
    return render_template('ledger/dashboard.html',
                         title='General Ledger',
                         trial_balance=service.trial_balance(),
                         equation=service.validate_accounting_equation(),
                         pending=JournalEntry.query.filter_by(status='pending_approval').count(),
                         recent=JournalEntry.query.order_by(JournalEntry.id.desc()).limit(10).all())

@ledger_bp.route('/accounts')
@login_required
@permission_required('manage_ledger')
def accounts():
    return render_template('ledger/accounts.html', title='Chart of Accounts',
                         accounts=ChartOfAccount.query.order_by(ChartOfAccount.account_code).all(),
                         balances=service.get_account_balances())

@ledger_bp.route('/journals')
@login_required
@permission_required('manage_ledger')
def journals():
    page = request.args.get('page', 1, type=int)
    status = request.args.get('status', '')
    query = JournalEntry.query
    if status:
        query = query.filter_by(status=status)
    entries = query.order_by(JournalEntry.entry_date.desc(), JournalEntry.id.desc()).paginate(
        page=page, per_page=current_app.config['ITEMS_PER_PAGE'], error_out=False
    )
    return render_template('ledger/journals.html', title='Journal Entries', entries=entries, status=status)

@ledger_bp.route('/journals/new', methods=['GET', 'POST'])
@login_required
@permission_required('manage_ledger')
def new_journal():
    form = TemplateEntryForm()
    if form.validate_on_submit():
        key = form.template_key.data
        values = service.template_values(key, form.amount.data, form.reference.data, form.entry_date.data)
        try:
            entry = service.post_template_entry(key, form.amount.data, values,
                                                entry_date=form.entry_date.data,
                                                reference=form.reference.data or None,
                                                user=current_user)
            db.session.commit()
        except RythmError as e:
            db.session.rollback()
            flash(e.user_message, 'danger')
            return redirect(url_for('ledger.new_journal'))
        if entry.status == 'pending_approval':
            flash(f'{entry.entry_number} is awaiting approval.', 'info')
        else:
            flash(f'{entry.entry_number} posted successfully!', 'success')
        return redirect(url_for('ledger.view_journal', id=entry.id))

    return render_template('ledger/new_journal.html', title='New Journal Entry', form=form,
                         templates=service.get_templates())

@ledger_bp.route('/journals/<int:id>')
@login_required
@permission_required('manage_ledger')
def view_journal(id):
    entry = db.session.get(JournalEntry, id) or abort(404)
    return render_template('ledger/journal.html', title=entry.entry_number, entry=entry,
                         form=JournalReviewForm())

@ledger_bp.route('/journals/<int:id>/<action>', methods=['POST'])
@login_required
@permission_required('approve_journals')
def review_journal(id, action):
    entry = db.session.get(JournalEntry, id) or abort(404)
    form = JournalReviewForm()
    if action not in ('approve', 'reject'):
        abort(404)
    try:
        if action == 'approve':
            service.approve_journal_entry(entry, user=current_user)
        else:
            service.reject_journal_entry(entry, user=current_user, reason=form.notes.data)
        db.session.commit()
        flash(f'{entry.entry_number} {entry.status.replace("_", " ")}.', 'success')
    except RythmError as e:
        db.session.rollback()
        flash(e.user_message, 'warning')
    return redirect(url_for('ledger.view_journal', id=id))

@ledger_bp.route('/trial-balance')
@login_required
@permission_required('manage_ledger')
def trial_balance():
    return render_template('ledger/trial_balance.html', title='Trial Balance',
                         trial_balance=service.trial_balance(_as_of()))

@ledger_bp.route('/bot-report')
@login_required
@permission_required('view_reports')
def bot_report():
    as_of = _as_of()
    return render_template('ledger/bot_report.html', title='BOT Financial Returns',
                         report=service.map_to_bot_report(as_of),
                         equation=service.validate_accounting_equation(as_of))

@ledger_bp.route('/reconciliation', methods=['GET', 'POST'])
@login_required
@permission_required('manage_ledger')
def reconciliation():
    form = ReconciliationForm()
    results = None
    if form.validate_on_submit():
        results = service.reconcile_cash_accounts(form.statement_balances())
    return render_template('ledger/reconciliation.html', title='Cash Reconciliation', form=form, results=results)

@ledger_bp.route('/ecl')
@login_required
@permission_required('view_reports')
def ecl():
    return render_template('ledger/ecl.html', title='Expected Credit Loss',
                         ecl=service.calculate_ecl_provisions(_as_of()),
                         held=service.provision_held())

@ledger_bp.route('/provision', methods=['POST'])
@login_required
@permission_required('manage_ledger')
def post_provision():
    entry = service.post_loan_loss_provision(user=current_user)
    db.session.commit()
    if entry is None:
        flash('Loan loss provisions already cover the expected credit loss.', 'info')
    else:
        flash(f'{entry.entry_number} raised for approval.', 'success')
    return redirect(url_for('ledger.ecl'))

@ledger_bp.route('/api/accounts')
@login_required
@permission_required('manage_ledger')
def api_accounts():
    return jsonify({'success': True, 'accounts': serialize(list(service.get_account_balances(_as_of()).values()))})

@ledger_bp.route('/api/templates')
@login_required
@permission_required('manage_ledger')
def api_templates():
    return jsonify({'success': True, 'templates': service.get_templates()})

@ledger_bp.route('/api/journals', methods=['GET', 'POST'])
@login_required
@permission_required('manage_ledger')
def api_journals():
    if request.method == 'GET':
        query = JournalEntry.query
        if request.args.get('status'):
            query = query.filter_by(status=request.args['status'])
        entries = query.order_by(JournalEntry.id.desc()).limit(100).all()
        return jsonify({'success': True, 'journals': [service.journal_to_dict(e) for e in entries]})

    data = request.get_json(silent=True) or {}
    entry_date = _parse_date(data.get('entry_date')) or date.today()
    if data.get('template_key'):
        key = data['template_key']
        if key not in service.JOURNAL_TEMPLATES:
            raise ValidationError(f'Unknown journal template: {key}')
        amount = parse_amount(data.get('amount'), 'Journal amount')
        values = data.get('values') or service.template_values(key, amount, data.get('reference'), entry_date)
        entry = service.post_template_entry(key, amount, values, entry_date=entry_date,
                                            reference=data.get('reference'), user=current_user)
    else:
        lines = [(line.get('account_code'), parse_amount(line.get('debit') or 0, 'Debit'),
                  parse_amount(line.get('credit') or 0, 'Credit'), line.get('description'))
                 for line in data.get('lines', [])]
        entry = service.post_journal_entry(lines, data.get('description') or 'Manual journal entry',
                                           entry_date=entry_date, reference=data.get('reference'),
                                           approval_required=bool(data.get('approval_required')),
                                           user=current_user)
    db.session.commit()
    return jsonify({'success': True, 'journal': service.journal_to_dict(entry)}), 201

@ledger_bp.route('/api/journals/<int:id>/approve', methods=['POST'])
@login_required
@permission_required('approve_journals')
def api_approve_journal(id):
    entry = service.approve_journal_entry(_get_entry(id), user=current_user)
    db.session.commit()
    return jsonify({'success': True, 'journal': service.journal_to_dict(entry)})

@ledger_bp.route('/api/journals/<int:id>/reject', methods=['POST'])
@login_required
@permission_required('approve_journals')
def api_reject_journal(id):
    data = request.get_json(silent=True) or {}
    entry = service.reject_journal_entry(_get_entry(id), user=current_user, reason=data.get('reason'))
    db.session.commit()
    return jsonify({'success': True, 'journal': service.journal_to_dict(entry)})

@ledger_bp.route('/api/trial-balance')
@login_required
@permission_required('manage_ledger')
def api_trial_balance():
    return jsonify({'success': True, 'trial_balance': serialize(service.trial_balance(_as_of()))})

@ledger_bp.route('/api/bot-report')
@login_required
@permission_required('view_reports')
def api_bot_report():
    return jsonify({'success': True, 'report': serialize(service.map_to_bot_report(_as_of()))})

@ledger_bp.route('/api/accounting-equation')
@login_required
@permission_required('manage_ledger')
def api_accounting_equation():
    return jsonify({'success': True, 'equation': serialize(service.validate_accounting_equation(_as_of()))})

@ledger_bp.route('/api/reconciliation', methods=['POST'])
@login_required
@permission_required('manage_ledger')
def api_reconciliation():
    data = request.get_json(silent=True) or {}
    results = service.reconcile_cash_accounts(data.get('statement_balances', {}), tolerance=data.get('tolerance'))
    return jsonify({'success': True, 'results': serialize(results)})

@ledger_bp.route('/api/ecl')
@login_required
@permission_required('view_reports')
def api_ecl():
    return jsonify({'success': True, 'ecl': serialize(service.calculate_ecl_provisions(_as_of()))})

@ledger_bp.route('/api/provision', methods=['POST'])
@login_required
@permission_required('manage_ledger')
def api_provision():
    entry = service.post_loan_loss_provision(user=current_user)
    db.session.commit()
    return jsonify({'success': True, 'journal': service.journal_to_dict(entry) if entry else None})

@ledger_bp.route('/api/accrue-interest', methods=['POST'])
@login_required
@permission_required('manage_ledger')
def api_accrue_interest():
    entries = service.accrue_interest(_as_of() or date.today(), user=current_user)
    return jsonify({'success': True, 'entries': len(entries)})
