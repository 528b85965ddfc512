"""Ledger forms"""
from datetime import date
from flask_wtf import FlaskForm
from wtforms import StringField, SelectField, DecimalField, DateField, TextAreaField, SubmitField
from wtforms.validators import DataRequired, Optional, NumberRange, Length
from rythm.services.ledger import JOURNAL_TEMPLATES

class TemplateEntryForm(FlaskForm):
    """Post a journal entry from a template"""
    template_key = SelectField('Template', choices=[(key, t['name']) for key, t in JOURNAL_TEMPLATES.items()],
                               validators=[DataRequired()])
    amount = DecimalField('Amount', validators=[DataRequired(), NumberRange(min=0.01)], places=2)
    entry_date = DateField('Entry Date', validators=[DataRequired()], default=date.today)
    reference = StringField('Reference / Loan Number', validators=[Optional(), Length(max=100)])
    submit = SubmitField('Post Entry')

class JournalReviewForm(FlaskForm):
    notes = TextAreaField('Notes', validators=[Optional()])
    submit = SubmitField('Submit')

class ReconciliationForm(FlaskForm):
    """Statement balances for the cash accounts"""
    cash_in_hand = DecimalField('Cash in Hand (1001)', validators=[Optional()], places=2, default=0)
    bank_balances = DecimalField('Bank Balances (1002)', validators=[Optional()], places=2, default=0)
    agent_balances = DecimalField('Agent Banking Balances (1005)', validators=[Optional()], places=2, default=0)
    submit = SubmitField('Reconcile')

    def statement_balances(self):
        return {
            '1001': self.cash_in_hand.data or 0,
            '1002': self.bank_balances.data or 0,
            '1005': self.agent_balances.data or 0,
        }
