"""Staff sign-in and password forms"""
from flask_login import current_user
from flask_wtf import FlaskForm
from wtforms import StringField, PasswordField, BooleanField, SubmitField
from wtforms.validators import DataRequired, EqualTo, Length, ValidationError

def _strip(value):
    return value.strip() if isinstance(value, str) else value

class LoginForm(FlaskForm):
    """Staff sign-in by username"""
    username = StringField('Username', filters=[_strip], validators=[DataRequired(), Length(max=80)])
    password = PasswordField('Password', validators=[DataRequired()])
    remember_me = BooleanField('Keep me signed in')
    submit = SubmitField('Sign In')

class ChangePasswordForm(FlaskForm):
    """Password change for the signed-in staff member"""
    current_password = PasswordField('Current Password', validators=[DataRequired()])
    new_password = PasswordField('New Password', validators=[
        DataRequired(),
        Length(min=8, message='Password must be at least 8 characters long')
    ])
    confirm_password = PasswordField('Confirm New Password', validators=[
        DataRequired(),
        EqualTo('new_password', message='Passwords must match')
    ])
    submit = SubmitField('Update Password')

    def validate_current_password(self, field):
        if not current_user.check_password(field.data):
            raise ValidationError('Current password is incorrect.')

    def validate_new_password(self, field):
        if field.data == self.current_password.data:
            raise ValidationError('New password must differ from the current one.')
        if field.data.lower() == current_user.username.lower():
            raise ValidationError('Password cannot be your username.')
