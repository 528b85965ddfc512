"""Error taxonomy and the application error handler"""
import logging
import random
import time
import traceback
from collections import deque, Counter
from datetime import datetime
from flask import current_app, flash, jsonify, redirect, request, url_for
from sqlalchemy.exc import IntegrityError, NoResultFound, OperationalError, DBAPIError, SQLAlchemyError

logger = logging.getLogger(__name__)

SEVERITIES = ('low', 'medium', 'high', 'critical')

SEVERITY_LOG_LEVELS = {
    'low': logging.INFO,
    'medium': logging.WARNING,
    'high': logging.ERROR,
    'critical': logging.CRITICAL,
}

class RythmError(Exception):
    """Base class for errors surfaced to users"""
    status_code = 500
    should_retry = False
    log_level = 'error'
    default_message = 'An unexpected error occurred. Please try again.'

    def __init__(self, message=None, user_message=None, status_code=None, should_retry=None,
                 log_level=None, code=None, context=None):
        super().__init__(message or user_message or self.default_message)
        self.user_message = user_message or message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        if should_retry is not None:
            self.should_retry = should_retry
        if log_level is not None:
            self.log_level = log_level
        self.code = code
        self.context = context or {}

    def to_dict(self):
        return {
            'success': False,
            'error': self.user_message,
            'code': self.code,
            'should_retry': self.should_retry,
        }

class DatabaseError(RythmError):
    default_message = 'A database error occurred. Please try again.'
    should_retry = True

class NetworkError(RythmError):
    status_code = 503
    should_retry = True
    default_message = 'Network error. Please check your connection and try again.'

class ValidationError(RythmError):
    status_code = 400
    log_level = 'warning'
    default_message = 'The submitted data is not valid.'

class AuthenticationError(RythmError):
    status_code = 401
    log_level = 'warning'
    default_message = 'Please log in to continue.'

class AuthorizationError(RythmError):
    status_code = 403
    log_level = 'warning'
    default_message = 'You do not have permission to perform this action.'

class BusinessLogicError(RythmError):
    status_code = 422
    log_level = 'warning'
    default_message = 'This operation is not allowed in the current state.'

def classify_database_error(exc):
    """Translate a SQLAlchemy exception into a DatabaseError"""
    if isinstance(exc, RythmError):
        return exc

    message = str(getattr(exc, 'orig', None) or exc)
    lowered = message.lower()

    if isinstance(exc, NoResultFound):
        return DatabaseError(message, user_message='The requested record was not found.',
                             status_code=404, should_retry=False, log_level='error', code='not_found')

    if isinstance(exc, IntegrityError):
        if 'unique' in lowered or 'duplicate' in lowered:
            return DatabaseError(message, user_message='This record already exists.',
                                 status_code=409, should_retry=False, log_level='warning', code='duplicate')
        if 'foreign key' in lowered:
            return DatabaseError(message, user_message='Referenced record does not exist.',
                                 status_code=400, should_retry=False, log_level='warning', code='foreign_key')
        if 'check constraint' in lowered or 'constraint failed' in lowered:
            return DatabaseError(message, user_message='Data validation failed.',
                                 status_code=400, should_retry=False, log_level='warning', code='check_constraint')
        return DatabaseError(message, user_message='Data validation failed.',
                             status_code=400, should_retry=False, log_level='warning', code='integrity')

    if isinstance(exc, OperationalError) or (isinstance(exc, DBAPIError) and exc.connection_invalidated):
        return DatabaseError(message, user_message='Database connection failed. Please try again.',
                             status_code=503, should_retry=True, log_level='error', code='connection_failed')

    return DatabaseError(message, status_code=500, should_retry=True, log_level='error', code='database_error')

def network_error_for_status(status, message=None):
    """Map an HTTP status from an outbound call to an error"""
    if status == 0:
        return NetworkError(message, code='no_response')
    if status == 400:
        return ValidationError(message, user_message='Invalid request. Please check your input.', code='bad_request')
    if status == 401:
        return AuthenticationError(message, code='unauthorized')
    if status == 403:
        return AuthorizationError(message, code='forbidden')
    if status == 404:
        return RythmError(message, user_message='The requested resource was not found.',
                          status_code=404, log_level='warning', code='not_found')
    if status >= 500:
        return NetworkError(message, user_message='The remote service is unavailable. Please try again later.',
                            status_code=502, code='upstream_error')
    return RythmError(message, status_code=status, code='http_error')

def _generate_error_id():
    return 'err_{}_{}'.format(int(time.time() * 1000), ''.join(random.choices('abcdefghijklmnopqrstuvwxyz0123456789', k=9)))

class ErrorReport:
    """Captured error kept in the in-memory queue"""

    def __init__(self, message, stack=None, context=None, severity='medium'):
        self.id = _generate_error_id()
        self.message = message
        self.stack = stack
        self.timestamp = datetime.utcnow()
        self.context = dict(context or {})
        self.context.setdefault('timestamp', self.timestamp.isoformat())
        self.severity = severity if severity in SEVERITIES else 'medium'
        self.resolved = False

    def to_dict(self):
        return {
            'id': self.id,
            'message': self.message,
            'stack': self.stack,
            'context': self.context,
            'timestamp': self.timestamp.isoformat(),
            'severity': self.severity,
            'resolved': self.resolved,
        }

class ErrorHandler:
    """Bounded queue of error reports with severity-aware logging"""

    def __init__(self, app=None, max_queue_size=100):
        self.max_queue_size = max_queue_size
        self.queue = deque(maxlen=max_queue_size)
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.max_queue_size = app.config.get('ERROR_QUEUE_SIZE', self.max_queue_size)
        self.queue = deque(self.queue, maxlen=self.max_queue_size)
        app.extensions['error_handler'] = self

    def handle_error(self, error, context=None, severity='medium'):
        """Record an error and log it; returns the report"""
        if isinstance(error, BaseException):
            message = str(error) or error.__class__.__name__
            stack = ''.join(traceback.format_exception(type(error), error, error.__traceback__))
        else:
            message = str(error)
            stack = None

        report = ErrorReport(message, stack=stack, context=context, severity=severity)
        self.queue.append(report)
        logger.log(SEVERITY_LOG_LEVELS[report.severity], '%s (%s) %s', report.message, report.id, report.context)
        return report

    def handle_database_error(self, error, context=None):
        """Record a database failure with a severity derived from its message"""
        message = str(error).lower()
        if 'permission denied' in message or 'unauthorized' in message:
            severity = 'high'
        elif 'connection' in message or 'timeout' in message:
            severity = 'medium'
        elif 'constraint' in message or 'duplicate' in message or 'unique' in message:
            severity = 'low'
        else:
            severity = 'medium'
        return self.handle_error(error, dict(context or {}, source='database'), severity)

    def handle_api_error(self, error, status=None, context=None):
        if status is not None and status >= 500:
            severity = 'high'
        elif status is not None and status >= 400:
            severity = 'medium'
        else:
            severity = 'low'
        return self.handle_error(error, dict(context or {}, source='api', status=status), severity)

    def get_error_statistics(self):
        by_severity = Counter(report.severity for report in self.queue)
        recent = list(self.queue)[-10:]
        recent.reverse()
        return {
            'total': len(self.queue),
            'by_severity': {severity: by_severity.get(severity, 0) for severity in SEVERITIES},
            'recent': [report.to_dict() for report in recent],
        }

    def resolve_error(self, error_id):
        for report in self.queue:
            if report.id == error_id:
                report.resolved = True
                return True
        return False

    def clear_resolved_errors(self):
        remaining = [report for report in self.queue if not report.resolved]
        cleared = len(self.queue) - len(remaining)
        self.queue = deque(remaining, maxlen=self.max_queue_size)
        return cleared

def get_error_handler():
    return current_app.extensions['error_handler']

def _wants_json():
    return request.path.startswith('/api') or '/api/' in request.path or request.is_json

def register_error_handlers(app):
    """Render taxonomy errors as JSON for API calls and flash messages for pages"""

    @app.errorhandler(RythmError)
    def handle_rythm_error(error):
        from rythm import db
        db.session.rollback()
        severity = 'high' if error.status_code >= 500 else 'medium' if error.status_code >= 400 else 'low'
        get_error_handler().handle_error(error, {'path': request.path, 'code': error.code}, severity)
        if _wants_json():
            return jsonify(error.to_dict()), error.status_code
        flash(error.user_message, 'danger')
        return redirect(request.referrer or url_for('main.dashboard'))

    @app.errorhandler(SQLAlchemyError)
    def handle_sqlalchemy_error(error):
        from rythm import db
        db.session.rollback()
        classified = classify_database_error(error)
        get_error_handler().handle_database_error(error, {'path': request.path, 'code': classified.code})
        if _wants_json():
            return jsonify(classified.to_dict()), classified.status_code
        flash(classified.user_message, 'danger')
        return redirect(url_for('main.dashboard'))
