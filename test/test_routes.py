import pytest

from rythm import db
from rythm.models import ActivityLog, ChartOfAccount, LoanRestructuring, User
from rythm.services.disbursement import queue_for_disbursement

def test_pages_require_login(app):
    anonymous = app.test_client()

    response = anonymous.get('/monitoring/api/loans')
    assert response.status_code == 302
    assert '/auth/login' in response.headers['Location']

    assert anonymous.get('/auth/login').status_code == 200

def test_login_and_logout(app, admin):
    anonymous = app.test_client()

    response = anonymous.post('/auth/login', data={'username': 'admin', 'password': 'wrong'})
    assert '/auth/login' in response.headers['Location']

    response = anonymous.post('/auth/login', data={'username': 'admin', 'password': 'secret123'})
    assert response.status_code == 302
    assert '/auth/login' not in response.headers['Location']
    assert ActivityLog.query.filter_by(action='login').count() == 1

    anonymous.get('/auth/logout')
    assert anonymous.get('/monitoring/api/loans').status_code == 302

def test_dashboard_renders(client, loan):
    response = client.get('/dashboard')
    assert response.status_code == 200
    assert b'Application Workflow' in response.data

@pytest.mark.parametrize('path', ['/disbursement/api/queue', '/ledger/api/accounts', '/ledger/api/bot-report'])
def test_api_permission_denied(app, new_user, login, path):
    officer = login(app.test_client(), new_user('officer', 'loan_officer'))

    response = officer.get(path)
    assert response.status_code == 403
    assert response.get_json() == {'success': False, 'error': 'Permission denied'}

def test_page_permission_redirects(app, new_user, login):
    officer = login(app.test_client(), new_user('officer', 'loan_officer'))
    assert officer.get('/disbursement/').status_code == 302
    # Admin only
    assert officer.get('/api/errors').status_code == 302

def test_status_mappings(client):
    data = client.get('/api/status-mappings').get_json()
    assert data['success']
    assert len(data['mappings']) == 10

def test_workflow_stats(client, application):
    data = client.get('/api/workflow-stats').get_json()
    assert data['data']['total_applications'] == 1
    assert data['data']['counts']['approved'] == 1

def test_disburse_and_repay_over_api(client, application, admin):
    queue_for_disbursement(application, user=admin)
    queue = client.get('/disbursement/api/queue').get_json()['queue']
    assert [entry['application_number'] for entry in queue] == ['APP/26/00001']
    assert queue[0]['client_name'] == 'Amina Mushi'

    preview = client.get(f'/disbursement/api/preview/{application.id}').get_json()['preview']
    assert preview['net_amount'] == 970000.0

    response = client.post(f'/disbursement/api/disburse/{application.id}',
                           json={'method': 'mobile_money', 'disbursement_date': '2026-01-15', 'reference': 'MP-9'})
    data = response.get_json()
    assert data['success']
    assert data['net_amount'] == 970000.0
    assert data['processing_fee'] == 30000.0

    response = client.post(f'/disbursement/api/repayments/{data["loan_id"]}',
                           json={'amount': '94559.60', 'payment_date': '2026-02-15'})
    repayment = response.get_json()
    assert repayment['interest_paid'] == 20000.0
    assert repayment['loan_status'] == 'active'

    assert client.post(f'/disbursement/api/repayments/{data["loan_id"]}', json={}).status_code == 400
    assert client.post('/disbursement/api/repayments/999', json={'amount': 10}).status_code == 404

def test_disburse_rejects_bad_input(client, application):
    response = client.post(f'/disbursement/api/disburse/{application.id}', json={'disbursement_date': 'not a date'})
    assert response.status_code == 400
    assert response.get_json()['success'] is False

    response = client.post(f'/disbursement/api/disburse/{application.id}', json={'method': 'cheque'})
    assert response.status_code == 400

def test_sync_api(client, application):
    response = client.post(f'/disbursement/api/sync/{application.id}')
    assert response.status_code == 422

    data = client.post('/disbursement/api/sync').get_json()
    assert data == {'success': True, 'synced': 0, 'orphans_reconciled': 0, 'errors': []}

def test_manual_journal_api(client):
    response = client.post('/ledger/api/journals', json={
        'entry_date': '2026-01-31',
        'description': 'Capital injection',
        'lines': [{'account_code': '1001', 'debit': 5000}, {'account_code': '3001', 'credit': 5000}],
    })
    assert response.status_code == 201
    journal = response.get_json()['journal']
    assert journal['status'] == 'posted'
    assert journal['total_debit'] == 5000.0

    response = client.post('/ledger/api/journals', json={
        'lines': [{'account_code': '1001', 'debit': 5000}, {'account_code': '3001', 'credit': 4000}],
    })
    assert response.status_code == 400

    assert client.get('/ledger/api/trial-balance').get_json()['trial_balance']['is_balanced']
    assert client.get('/ledger/api/journals').get_json()['journals'][0]['entry_number'] == 'JE-20260131-0001'

def test_template_journal_approval_api(client):
    response = client.post('/ledger/api/journals', json={
        'template_key': 'LOAN_LOSS_PROVISION', 'amount': 1200, 'entry_date': '2026-01-31',
    })
    journal = response.get_json()['journal']
    assert journal['status'] == 'pending_approval'

    approved = client.post(f'/ledger/api/journals/{journal["id"]}/approve').get_json()['journal']
    assert approved['status'] == 'posted'
    assert client.post(f'/ledger/api/journals/{journal["id"]}/reject').status_code == 422
    assert client.post('/ledger/api/journals/999/approve').status_code == 404

    response = client.post('/ledger/api/journals', json={'template_key': 'PETTY_CASH', 'amount': 10})
    assert response.status_code == 400

def test_reconciliation_api(client):
    results = client.post('/ledger/api/reconciliation',
                          json={'statement_balances': {'1001': 0}}).get_json()['results']
    assert {row['account_code'] for row in results} == {'1001', '1002', '1005'}
    assert all(row['status'] == 'Matched' for row in results)

def test_restructuring_api(client, loan):
    settlement = client.get(f'/restructuring/api/loans/{loan.id}/settlement?as_of=2026-01-20').get_json()
    assert settlement['settlement']['total_settlement_amount'] == 1020000.0

    options = client.get(f'/restructuring/api/loans/{loan.id}/term-options?as_of=2026-01-20').get_json()
    assert [option['tenure'] for option in options['options']['options']] == [24, 36, 48]

    impact = client.post(f'/restructuring/api/loans/{loan.id}/impact', json={'new_tenor': 24}).get_json()
    assert impact['impact']['impact_analysis']['risk_reduction'] == 'High'
    assert client.post(f'/restructuring/api/loans/{loan.id}/impact', json={'new_tenor': 'x'}).status_code == 400

    response = client.post('/restructuring/api/requests', json={
        'loan_id': loan.id, 'restructuring_type': 'term_extension', 'proposed_tenor': 24, 'reason': 'Harvest delay',
    })
    assert response.status_code == 201
    request_id = response.get_json()['request']['id']
    assert response.get_json()['request']['status'] == 'pending'

    assert client.post(f'/restructuring/api/requests/{request_id}/implement').status_code == 422
    reviewed = client.post(f'/restructuring/api/requests/{request_id}/review', json={'decision': 'approve'})
    assert reviewed.get_json()['request']['status'] == 'approved'

    implemented = client.post(f'/restructuring/api/requests/{request_id}/implement').get_json()
    assert implemented['request']['status'] == 'implemented'
    assert db.session.get(LoanRestructuring, request_id).loan.term_months == 24

    stats = client.get('/restructuring/api/stats').get_json()['stats']
    assert stats['status_breakdown'] == {'implemented': 1}

def test_restructuring_request_validation(client, loan):
    assert client.post('/restructuring/api/requests', json={'loan_id': loan.id}).status_code == 400
    assert client.post('/restructuring/api/requests', json={
        'loan_id': 999, 'restructuring_type': 'term_extension'}).status_code == 404
    assert client.get(f'/restructuring/api/loans/{loan.id}/status?as_of=yesterday-ish').status_code == 400

def test_monitoring_api(client, loan):
    data = client.get('/monitoring/api/loans').get_json()
    assert data['count'] == 1
    assert data['loans'][0]['loan_number'] == loan.loan_number

    assert client.get('/monitoring/api/loans/999').status_code == 404
    record = client.get(f'/monitoring/api/loans/{loan.id}').get_json()['loan']
    assert record['amount'] == 1000000.0
    assert record['client_name'] == 'Amina Mushi'

    monitor = client.get('/monitoring/api/monitor').get_json()
    assert monitor['is_running'] is False

    metrics = client.get('/monitoring/api/metrics').get_json()['metrics']
    assert metrics['total_loans'] == 1

@pytest.mark.parametrize('path', [
    '/monitoring/', '/monitoring/loan/{loan}', '/monitoring/bot-report',
    '/disbursement/', '/disbursement/loan/{loan}/repayment',
    '/restructuring/', '/restructuring/loan/{loan}', '/restructuring/loan/{loan}/request',
    '/ledger/', '/ledger/accounts', '/ledger/journals', '/ledger/journals/new', '/ledger/trial-balance',
    '/ledger/bot-report', '/ledger/reconciliation', '/ledger/ecl', '/auth/change-password',
])
def test_pages_render(client, loan, path):
    assert client.get(path.format(loan=loan.id)).status_code == 200

def test_ecl_page_without_provision_account(client, loan):
    ChartOfAccount.query.filter_by(account_code='1022').one().is_active = False
    db.session.commit()
    assert client.get('/ledger/ecl').status_code == 200

def test_repayment_api_rejects_malformed_input(client, loan):
    response = client.post(f'/disbursement/api/repayments/{loan.id}', json={'amount': 'abc'})
    assert response.status_code == 400
    assert response.get_json()['success'] is False

    response = client.post(f'/disbursement/api/repayments/{loan.id}',
                           json={'amount': 1000, 'payment_date': 'not-a-date'})
    assert response.status_code == 400

def test_journal_api_rejects_malformed_input(client):
    lines = [{'account_code': '1001', 'debit': 5000}, {'account_code': '3001', 'credit': 5000}]
    response = client.post('/ledger/api/journals', json={'entry_date': 'not-a-date', 'lines': lines})
    assert response.status_code == 400
    assert response.get_json()['success'] is False

    bad_lines = [{'account_code': '1001', 'debit': 'lots'}, {'account_code': '3001', 'credit': 5000}]
    assert client.post('/ledger/api/journals', json={'lines': bad_lines}).status_code == 400
    assert client.post('/ledger/api/journals', json={
        'template_key': 'LOAN_LOSS_PROVISION', 'amount': 'ten'}).status_code == 400

def test_change_password(client, admin):
    response = client.post('/auth/change-password', data={
        'current_password': 'secret123', 'new_password': 'secret123', 'confirm_password': 'secret123'})
    assert response.status_code == 200
    assert b'must differ' in response.data

    response = client.post('/auth/change-password', data={
        'current_password': 'wrong', 'new_password': 'harvest2026', 'confirm_password': 'harvest2026'})
    assert b'Current password is incorrect.' in response.data

    response = client.post('/auth/change-password', data={
        'current_password': 'secret123', 'new_password': 'harvest2026', 'confirm_password': 'harvest2026'})
    assert response.status_code == 302
    db.session.expire_all()
    assert User.query.filter_by(username='admin').one().check_password('harvest2026')
