"""Disbursement and repayment forms"""
from datetime import date
from flask_wtf import FlaskForm
from flask_wtf.file import FileField, FileAllowed, FileRequired
from wtforms import StringField, SelectField, DecimalField, DateField, TextAreaField, SubmitField
from wtforms.validators import DataRequired, Optional, NumberRange, Length

PAYMENT_METHOD_CHOICES = [
    ('bank_transfer', 'Bank Transfer'),
    ('cash', 'Cash'),
    ('mobile_money', 'Mobile Money'),
]

class ContractUploadForm(FlaskForm):
    """Signed loan contract upload"""
    contract = FileField('Signed Contract (PDF)', validators=[
        FileRequired(),
        FileAllowed(['pdf'], 'PDF files only!')
    ])
    submit = SubmitField('Upload Contract')

class DisbursementForm(FlaskForm):
    """Release funds for an approved application"""
    disbursement_method = SelectField('Disbursement Method', choices=PAYMENT_METHOD_CHOICES,
                                      validators=[DataRequired()])
    disbursement_date = DateField('Disbursement Date', validators=[DataRequired()], default=date.today)
    reference = StringField('Reference', validators=[Optional(), Length(max=100)])
    submit = SubmitField('Disburse Loan')

class DisbursementFailureForm(FlaskForm):
    reason = TextAreaField('Reason', validators=[DataRequired()])
    submit = SubmitField('Mark as Failed')

class RepaymentForm(FlaskForm):
    """Loan repayment form"""
    amount = DecimalField('Amount', validators=[DataRequired(), NumberRange(min=0.01)], places=2)
    payment_date = DateField('Payment Date', validators=[DataRequired()], default=date.today)
    payment_method = SelectField('Payment Method', choices=PAYMENT_METHOD_CHOICES, default='cash')
    reference = StringField('Reference', validators=[Optional(), Length(max=100)])
    submit = SubmitField('Record Repayment')
