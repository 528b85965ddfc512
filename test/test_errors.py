import pytest
from sqlalchemy.exc import IntegrityError, NoResultFound, OperationalError, SQLAlchemyError

from rythm.errors import (AuthenticationError, AuthorizationError, BusinessLogicError, DatabaseError, ErrorHandler,
                          NetworkError, RythmError, ValidationError, classify_database_error,
                          network_error_for_status)

@pytest.mark.parametrize('error_class, status, retry', [
    (ValidationError, 400, False),
    (AuthenticationError, 401, False),
    (AuthorizationError, 403, False),
    (BusinessLogicError, 422, False),
    (NetworkError, 503, True),
    (DatabaseError, 500, True),
])
def test_taxonomy_defaults(error_class, status, retry):
    error = error_class()
    assert error.status_code == status
    assert error.should_retry is retry
    assert error.to_dict()['success'] is False
    assert error.user_message == error_class.default_message

def test_messages_and_overrides():
    error = ValidationError('amount < 0', user_message='Amount must be positive', status_code=404, code='amount')
    assert str(error) == 'amount < 0'
    assert error.user_message == 'Amount must be positive'
    assert error.status_code == 404
    assert error.to_dict() == {'success': False, 'error': 'Amount must be positive', 'code': 'amount',
                               'should_retry': False}
    # The class default is untouched
    assert ValidationError().status_code == 400

@pytest.mark.parametrize('exc, status, code, retry', [
    (IntegrityError('INSERT', {}, Exception('UNIQUE constraint failed: users.username')), 409, 'duplicate', False),
    (IntegrityError('INSERT', {}, Exception('FOREIGN KEY constraint failed')), 400, 'foreign_key', False),
    (IntegrityError('INSERT', {}, Exception('NOT NULL violated')), 400, 'integrity', False),
    (OperationalError('SELECT 1', {}, Exception('could not connect to server')), 503, 'connection_failed', True),
    (NoResultFound('No row was found'), 404, 'not_found', False),
    (SQLAlchemyError('something odd'), 500, 'database_error', True),
])
def test_classify_database_error(exc, status, code, retry):
    error = classify_database_error(exc)
    assert isinstance(error, DatabaseError)
    assert error.status_code == status
    assert error.code == code
    assert error.should_retry is retry

def test_classified_errors_pass_through():
    error = BusinessLogicError('Loan is closed')
    assert classify_database_error(error) is error

@pytest.mark.parametrize('status, error_class, code', [
    (0, NetworkError, 'no_response'),
    (400, ValidationError, 'bad_request'),
    (401, AuthenticationError, 'unauthorized'),
    (403, AuthorizationError, 'forbidden'),
    (404, RythmError, 'not_found'),
    (502, NetworkError, 'upstream_error'),
    (418, RythmError, 'http_error'),
])
def test_network_error_for_status(status, error_class, code):
    error = network_error_for_status(status, 'call failed')
    assert type(error) is error_class
    assert error.code == code

def test_error_queue_is_bounded():
    handler = ErrorHandler(max_queue_size=2)
    first = handler.handle_error(ValueError('first'))
    handler.handle_error('second', severity='low')
    handler.handle_error(RuntimeError('third'), severity='critical')

    assert len(handler.queue) == 2
    assert first not in handler.queue
    stats = handler.get_error_statistics()
    assert stats['total'] == 2
    assert stats['by_severity'] == {'low': 1, 'medium': 0, 'high': 0, 'critical': 1}
    assert [report['message'] for report in stats['recent']] == ['third', 'second']

def test_reports_carry_stack_and_context():
    handler = ErrorHandler()
    try:
        raise KeyError('loan_id')
    except KeyError as e:
        report = handler.handle_error(e, {'path': '/monitoring/api/loans'}, severity='unheard-of')

    assert report.id.startswith('err_')
    assert 'KeyError' in report.stack
    assert report.context['path'] == '/monitoring/api/loans'
    assert 'timestamp' in report.context
    assert report.severity == 'medium'

def test_resolve_and_clear():
    handler = ErrorHandler()
    kept = handler.handle_error('kept')
    resolved = handler.handle_error('resolved')

    assert handler.resolve_error(resolved.id)
    assert not handler.resolve_error('err_missing')
    assert handler.clear_resolved_errors() == 1
    assert list(handler.queue) == [kept]

@pytest.mark.parametrize('message, severity', [
    ('permission denied for table loans', 'high'),
    ('connection reset by peer', 'medium'),
    ('duplicate key value', 'low'),
    ('division by zero', 'medium'),
])
def test_database_error_severity(message, severity):
    report = ErrorHandler().handle_database_error(Exception(message))
    assert report.severity == severity
    assert report.context['source'] == 'database'

@pytest.mark.parametrize('status, severity', [(500, 'high'), (404, 'medium'), (None, 'low')])
def test_api_error_severity(status, severity):
    report = ErrorHandler().handle_api_error('upstream failure', status=status)
    assert report.severity == severity
    assert report.context['status'] == status

def test_api_errors_render_json(app, client):
    response = client.get('/disbursement/api/preview/999')

    assert response.status_code == 404
    assert response.get_json()['success'] is False
    handler = app.extensions['error_handler']
    assert handler.queue[-1].context['path'] == '/disbursement/api/preview/999'

def test_page_errors_flash_and_redirect(client):
    response = client.get('/restructuring/requests/999')
    assert response.status_code == 302

    with client.session_transaction() as session:
        categories = [category for category, _message in session['_flashes']]
    assert categories == ['danger']
