"""Authentication routes"""
from flask import render_template, redirect, url_for, flash, request
from flask_login import login_user, logout_user, current_user, login_required
from urllib.parse import urlparse
from datetime import datetime
from rythm import db
from rythm.auth import auth_bp
from rythm.models import User
from rythm.auth.forms import LoginForm, ChangePasswordForm
from rythm.utils.helpers import log_activity

@auth_bp.route('/login', methods=['GET', 'POST'])
def login():
    """User login"""
    if current_user.is_authenticated:
        return redirect(url_for('main.dashboard'))

    form = LoginForm()
    if form.validate_on_submit():
        user = User.query.filter_by(username=form.username.data).first()

        if user is None or not user.check_password(form.password.data):
            flash('Invalid username or password', 'danger')
            return redirect(url_for('auth.login'))

        if not user.is_active:
            flash('Your account has been deactivated. Please contact administrator.', 'danger')
            return redirect(url_for('auth.login'))

        login_user(user, remember=form.remember_me.data)
        user.last_login = datetime.utcnow()
        log_activity('login', 'user', user.id, f'User {user.username} logged in', user=user)
        db.session.commit()

        next_page = request.args.get('next')
        if not next_page or urlparse(next_page).netloc != '':
            next_page = url_for('main.dashboard')

        flash(f'Welcome back, {user.full_name}!', 'success')
        return redirect(next_page)

    return render_template('auth/login.html', title='Sign In', form=form)

@auth_bp.route('/logout')
def logout():
    """User logout"""
    if current_user.is_authenticated:
        log_activity('logout', 'user', current_user.id, f'User {current_user.username} logged out')
        db.session.commit()

    logout_user()
    flash('You have been logged out successfully.', 'info')
    return redirect(url_for('auth.login'))

@auth_bp.route('/change-password', methods=['GET', 'POST'])
@login_required
def change_password():
    """Change user password"""
    form = ChangePasswordForm()
    if form.validate_on_submit():
        current_user.set_password(form.new_password.data)
        log_activity('change_password', 'user', current_user.id, 'Password changed')
        db.session.commit()

        flash('Your password has been changed successfully!', 'success')
        return redirect(url_for('main.dashboard'))

    return render_template('auth/change_password.html', title='Change Password', form=form)
