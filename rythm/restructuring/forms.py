"""Restructuring forms"""
from flask_wtf import FlaskForm
from wtforms import SelectField, DecimalField, IntegerField, TextAreaField, SubmitField
from wtforms.validators import DataRequired, Optional, NumberRange

class RestructuringRequestForm(FlaskForm):
    """New restructuring request"""
    restructuring_type = SelectField('Restructuring Type', choices=[
        ('term_extension', 'Term Extension'),
        ('term_reduction', 'Term Reduction'),
        ('rate_adjustment', 'Rate Adjustment'),
        ('loan_topup', 'Loan Top-up'),
        ('early_settlement', 'Early Settlement'),
    ], validators=[DataRequired()])
    priority = SelectField('Priority', choices=[
        ('low', 'Low'),
        ('medium', 'Medium'),
        ('high', 'High'),
        ('urgent', 'Urgent'),
    ], default='medium')
    proposed_interest_rate = DecimalField('New Interest Rate (% p.a.)', validators=[Optional(), NumberRange(min=0, max=100)], places=2)
    proposed_tenor = IntegerField('New Tenor (Months)', validators=[Optional(), NumberRange(min=1, max=360)])
    proposed_amount = DecimalField('Top-up Amount', validators=[Optional(), NumberRange(min=0)], places=2)
    grace_period = IntegerField('Grace Period (Months)', validators=[Optional(), NumberRange(min=0, max=12)], default=0)
    reason = TextAreaField('Reason', validators=[DataRequired()])
    submit = SubmitField('Submit Request')

class ReviewForm(FlaskForm):
    """Restructuring review decision"""
    decision = SelectField('Decision', choices=[
        ('approve', 'Approve'),
        ('reject', 'Reject'),
        ('review', 'Mark Under Review'),
    ], validators=[DataRequired()])
    notes = TextAreaField('Review Notes', validators=[Optional()])
    submit = SubmitField('Submit Review')
