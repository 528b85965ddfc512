"""Utility decorators"""
from functools import wraps
from flask import flash, jsonify, redirect, request, url_for
from flask_login import current_user

def _is_api_request():
    return '/api/' in request.path or request.is_json

def permission_required(permission):
    """Decorator to check if user has required permission

    API endpoints get a JSON 401/403 instead of a redirect.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                if _is_api_request():
                    return jsonify({'success': False, 'error': 'Authentication required'}), 401
                flash('Please log in to access this page.', 'warning')
                return redirect(url_for('auth.login', next=request.path))

            if not current_user.has_permission(permission):
                if _is_api_request():
                    return jsonify({'success': False, 'error': 'Permission denied'}), 403
                flash('You do not have permission to access this page.', 'danger')
                return redirect(url_for('main.dashboard'))

            return f(*args, **kwargs)
        return decorated_function
    return decorator

def admin_required(f):
    """Decorator to require admin role"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            flash('Please log in to access this page.', 'warning')
            return redirect(url_for('auth.login'))

        if current_user.role != 'admin':
            flash('Admin access required.', 'danger')
            return redirect(url_for('main.dashboard'))

        return f(*args, **kwargs)
    return decorated_function
