"""Database models for RYTHM Microfinance"""
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from sqlalchemy import func
from rythm import db, login_manager
from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

TWO_PLACES = Decimal('0.01')

def to_decimal(value):
    """Coerce a numeric column value to a 2dp Decimal"""
    if value is None:
        return Decimal('0.00')
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))

# User and Authentication Models
class User(UserMixin, db.Model):
    """User model for staff members"""
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False, index=True)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(200), nullable=False)
    phone = db.Column(db.String(20))
    role = db.Column(db.String(50), nullable=False, default='loan_officer')  # admin, manager, loan_officer, accountant, credit_officer
    branch_id = db.Column(db.Integer, db.ForeignKey('branches.id'), nullable=True)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    last_login = db.Column(db.DateTime)

    # Permissions
    can_view_monitoring = db.Column(db.Boolean, default=True)
    can_manage_disbursements = db.Column(db.Boolean, default=False)
    can_manage_ledger = db.Column(db.Boolean, default=False)
    can_approve_journals = db.Column(db.Boolean, default=False)
    can_manage_restructuring = db.Column(db.Boolean, default=True)
    can_approve_restructuring = db.Column(db.Boolean, default=False)
    can_view_reports = db.Column(db.Boolean, default=True)
    can_manage_settings = db.Column(db.Boolean, default=False)

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def has_permission(self, permission):
        """Check if user has specific permission"""
        if self.role == 'admin':
            return True
        return bool(getattr(self, f'can_{permission}', False))

    def set_role_permissions(self, role=None):
        """Set default permissions based on role"""
        if role is None:
            role = self.role

        permissions_map = {
            'loan_officer': {
                'can_view_monitoring': True,
                'can_manage_disbursements': False,
                'can_manage_ledger': False,
                'can_approve_journals': False,
                'can_manage_restructuring': True,
                'can_approve_restructuring': False,
                'can_view_reports': False,
                'can_manage_settings': False
            },
            'credit_officer': {
                'can_view_monitoring': True,
                'can_manage_disbursements': False,
                'can_manage_ledger': False,
                'can_approve_journals': False,
                'can_manage_restructuring': True,
                'can_approve_restructuring': True,
                'can_view_reports': True,
                'can_manage_settings': False
            },
            'accountant': {
                'can_view_monitoring': True,
                'can_manage_disbursements': True,
                'can_manage_ledger': True,
                'can_approve_journals': False,
                'can_manage_restructuring': False,
                'can_approve_restructuring': False,
                'can_view_reports': True,
                'can_manage_settings': False
            },
            'manager': {
                'can_view_monitoring': True,
                'can_manage_disbursements': True,
                'can_manage_ledger': True,
                'can_approve_journals': True,
                'can_manage_restructuring': True,
                'can_approve_restructuring': True,
                'can_view_reports': True,
                'can_manage_settings': True
            },
            'admin': {
                'can_view_monitoring': True,
                'can_manage_disbursements': True,
                'can_manage_ledger': True,
                'can_approve_journals': True,
                'can_manage_restructuring': True,
                'can_approve_restructuring': True,
                'can_view_reports': True,
                'can_manage_settings': True
            }
        }

        permissions = permissions_map.get(role, {})
        for permission, value in permissions.items():
            setattr(self, permission, value)

    def __repr__(self):
        return f'<User {self.username}>'

# Branch Model
class Branch(db.Model):
    """Branch model for multi-branch support"""
    __tablename__ = 'branches'

    id = db.Column(db.Integer, primary_key=True)
    branch_code = db.Column(db.String(20), unique=True, nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    address = db.Column(db.Text)
    phone = db.Column(db.String(20))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    users = db.relationship('User', backref='branch', lazy='dynamic')
    clients = db.relationship('Client', backref='branch', lazy='dynamic')

    def __repr__(self):
        return f'<Branch {self.name}>'

# Client Model
class Client(db.Model):
    """Borrower (individual, group, SME or agricultural)"""
    __tablename__ = 'clients'

    id = db.Column(db.Integer, primary_key=True)
    client_number = db.Column(db.String(50), unique=True, nullable=False, index=True)
    first_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100))
    gender = db.Column(db.String(20))
    client_type = db.Column(db.String(30), default='individual')  # individual, group, sme, agricultural
    phone = db.Column(db.String(20))
    credit_score = db.Column(db.Integer)
    monthly_income = db.Column(db.Numeric(15, 2))
    branch_id = db.Column(db.Integer, db.ForeignKey('branches.id'))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    applications = db.relationship('LoanApplication', backref='client', lazy='dynamic')
    loans = db.relationship('Loan', backref='client', lazy='dynamic')

    @property
    def full_name(self):
        return f'{self.first_name or ""} {self.last_name or ""}'.strip() or 'Unknown Client'

    def __repr__(self):
        return f'<Client {self.client_number}>'

# Loan Product Model
class LoanProduct(db.Model):
    """Loan product with pricing and fee terms"""
    __tablename__ = 'loan_products'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    category = db.Column(db.String(50), default='General')
    loan_type = db.Column(db.String(30), default='general')  # general, housing_microfinance
    interest_rate = db.Column(db.Numeric(5, 2), nullable=False)  # Annual percentage rate
    term_months = db.Column(db.Integer, default=12)
    term_days = db.Column(db.Integer)
    repayment_method = db.Column(db.String(30), default='reducing_balance')  # flat_rate, reducing_balance, balloon_structure
    processing_fee_rate = db.Column(db.Numeric(5, 2), default=3)
    processing_fee_method = db.Column(db.String(30), default='deduct_at_disbursement')  # upfront, deduct_at_disbursement
    application_fee = db.Column(db.Numeric(15, 2), default=0)
    legal_fee = db.Column(db.Numeric(15, 2), default=0)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    applications = db.relationship('LoanApplication', backref='product', lazy='dynamic')
    loans = db.relationship('Loan', backref='product', lazy='dynamic')

    def __repr__(self):
        return f'<LoanProduct {self.name}>'

# Loan Application Model
class LoanApplication(db.Model):
    """Loan application moving through assessment, approval and disbursement"""
    __tablename__ = 'loan_applications'

    id = db.Column(db.Integer, primary_key=True)
    application_number = db.Column(db.String(50), unique=True, nullable=False, index=True)
    client_id = db.Column(db.Integer, db.ForeignKey('clients.id'), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey('loan_products.id'))
    branch_id = db.Column(db.Integer, db.ForeignKey('branches.id'))

    requested_amount = db.Column(db.Numeric(15, 2), nullable=False)
    approved_amount = db.Column(db.Numeric(15, 2))
    approved_interest_rate = db.Column(db.Numeric(5, 2))  # Annual percentage rate
    approved_tenor = db.Column(db.Integer)  # Months
    calculation_method = db.Column(db.String(30), default='reducing_balance')

    # Status flow: pending -> under_review -> pending_committee_review -> approved -> disbursed -> closed
    status = db.Column(db.String(40), default='pending', index=True)
    contract_status = db.Column(db.String(20), default='not_generated')  # not_generated, generated, uploaded
    contract_file = db.Column(db.String(255))
    is_disbursed = db.Column(db.Boolean, default=False)
    disbursement_date = db.Column(db.Date)
    approval_date = db.Column(db.Date)
    rejection_reason = db.Column(db.Text)
    purpose = db.Column(db.Text)

    created_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    loan = db.relationship('Loan', backref='application', uselist=False)
    queue_entry = db.relationship('DisbursementQueue', backref='application', uselist=False,
                                  cascade='all, delete-orphan')

    @property
    def amount(self):
        """Approved amount, falling back to the requested amount"""
        return to_decimal(self.approved_amount if self.approved_amount is not None else self.requested_amount)

    @property
    def has_approved_terms(self):
        return bool(self.approved_interest_rate is not None and self.approved_tenor)

    def __repr__(self):
        return f'<LoanApplication {self.application_number}>'

class DisbursementQueue(db.Model):
    """Approved applications waiting for disbursement"""
    __tablename__ = 'disbursement_queue'

    id = db.Column(db.Integer, primary_key=True)
    application_id = db.Column(db.Integer, db.ForeignKey('loan_applications.id'), unique=True, nullable=False)
    status = db.Column(db.String(30), default='ready_for_disbursement')  # ready_for_disbursement, disbursed, failed
    failure_reason = db.Column(db.Text)
    queued_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    queued_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<DisbursementQueue {self.application_id} {self.status}>'

# Loan Model
class Loan(db.Model):
    """Disbursed loan under monitoring"""
    __tablename__ = 'loans'

    id = db.Column(db.Integer, primary_key=True)
    loan_number = db.Column(db.String(50), unique=True, nullable=False, index=True)
    application_id = db.Column(db.Integer, db.ForeignKey('loan_applications.id'), unique=True)
    client_id = db.Column(db.Integer, db.ForeignKey('clients.id'), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey('loan_products.id'))

    principal_amount = db.Column(db.Numeric(15, 2), nullable=False)
    interest_rate = db.Column(db.Numeric(5, 2), nullable=False)  # Annual percentage rate
    interest_amount = db.Column(db.Numeric(15, 2), default=0)
    total_amount = db.Column(db.Numeric(15, 2), nullable=False)
    term_months = db.Column(db.Integer, nullable=False, default=12)
    repayment_method = db.Column(db.String(30), default='reducing_balance')
    loan_type = db.Column(db.String(30), default='general')  # general, housing_microfinance

    status = db.Column(db.String(20), default='active', index=True)  # active, overdue, repaid, written_off

    disbursement_date = db.Column(db.Date)
    first_repayment_date = db.Column(db.Date)
    next_repayment_date = db.Column(db.Date)
    maturity_date = db.Column(db.Date)
    closing_date = db.Column(db.Date)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    schedule = db.relationship('RepaymentSchedule', backref='loan', lazy='dynamic',
                               cascade='all, delete-orphan', order_by='RepaymentSchedule.installment_number')
    repayments = db.relationship('LoanRepayment', backref='loan', lazy='dynamic', cascade='all, delete-orphan')
    disbursements = db.relationship('LoanDisbursement', backref='loan', lazy='dynamic')
    restructurings = db.relationship('LoanRestructuring', backref='loan', lazy='dynamic')

    def get_total_paid(self):
        total = self.repayments.with_entities(func.sum(LoanRepayment.amount)).scalar()
        return to_decimal(total)

    def get_principal_paid(self):
        total = self.repayments.with_entities(func.sum(LoanRepayment.principal_paid)).scalar()
        return to_decimal(total)

    def get_outstanding_balance(self):
        """Contractual total less everything paid, never below zero"""
        balance = to_decimal(self.total_amount) - self.get_total_paid()
        return max(balance, Decimal('0.00'))

    def get_outstanding_principal(self):
        balance = to_decimal(self.principal_amount) - self.get_principal_paid()
        return max(balance, Decimal('0.00'))

    def get_open_installments(self):
        return self.schedule.filter(RepaymentSchedule.status != 'paid').all()

    def get_monthly_payment(self):
        """Installment amount of the next open installment"""
        installment = self.schedule.filter(RepaymentSchedule.status != 'paid').first()
        if installment:
            return to_decimal(installment.total_payment)
        if self.term_months:
            return (to_decimal(self.total_amount) / Decimal(self.term_months)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
        return Decimal('0.00')

    def __repr__(self):
        return f'<Loan {self.loan_number}>'

class RepaymentSchedule(db.Model):
    """One installment of a loan's repayment schedule"""
    __tablename__ = 'repayment_schedules'

    id = db.Column(db.Integer, primary_key=True)
    loan_id = db.Column(db.Integer, db.ForeignKey('loans.id'), nullable=False, index=True)
    installment_number = db.Column(db.Integer, nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    principal_portion = db.Column(db.Numeric(15, 2), default=0)
    interest_portion = db.Column(db.Numeric(15, 2), default=0)
    management_fee_portion = db.Column(db.Numeric(15, 2), default=0)
    total_payment = db.Column(db.Numeric(15, 2), nullable=False)
    remaining_balance = db.Column(db.Numeric(15, 2), default=0)
    principal_paid = db.Column(db.Numeric(15, 2), default=0)
    interest_paid = db.Column(db.Numeric(15, 2), default=0)
    paid_amount = db.Column(db.Numeric(15, 2), default=0)
    status = db.Column(db.String(20), default='pending')  # pending, partial, paid
    interest_accrued = db.Column(db.Boolean, default=False)
    paid_date = db.Column(db.Date)

    @property
    def amount_due(self):
        return max(to_decimal(self.total_payment) - to_decimal(self.paid_amount), Decimal('0.00'))

    def __repr__(self):
        return f'<RepaymentSchedule {self.loan_id}#{self.installment_number}>'

class LoanRepayment(db.Model):
    """Repayment received against a loan"""
    __tablename__ = 'loan_repayments'

    id = db.Column(db.Integer, primary_key=True)
    loan_id = db.Column(db.Integer, db.ForeignKey('loans.id'), nullable=False, index=True)
    amount = db.Column(db.Numeric(15, 2), nullable=False)
    principal_paid = db.Column(db.Numeric(15, 2), default=0)
    interest_paid = db.Column(db.Numeric(15, 2), default=0)
    payment_date = db.Column(db.Date, nullable=False, default=datetime.utcnow)
    payment_method = db.Column(db.String(30), default='cash')  # cash, bank_transfer, mobile_money
    reference = db.Column(db.String(100))
    received_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f'<LoanRepayment {self.loan_id} {self.amount}>'

class LoanDisbursement(db.Model):
    """Record of funds released for a loan"""
    __tablename__ = 'loan_disbursements'

    id = db.Column(db.Integer, primary_key=True)
    loan_id = db.Column(db.Integer, db.ForeignKey('loans.id'), index=True)
    application_id = db.Column(db.Integer, db.ForeignKey('loan_applications.id'), index=True)
    amount = db.Column(db.Numeric(15, 2), nullable=False)
    processing_fee = db.Column(db.Numeric(15, 2), default=0)
    upfront_fees = db.Column(db.Numeric(15, 2), default=0)
    net_amount = db.Column(db.Numeric(15, 2), nullable=False)
    disbursement_method = db.Column(db.String(30), default='bank_transfer')  # cash, bank_transfer, mobile_money
    reference = db.Column(db.String(100))
    status = db.Column(db.String(20), default='completed')
    disbursement_date = db.Column(db.Date, nullable=False)
    disbursed_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    application = db.relationship('LoanApplication', backref=db.backref('disbursements', lazy='dynamic'))

    def __repr__(self):
        return f'<LoanDisbursement {self.application_id} {self.net_amount}>'

class LoanRestructuring(db.Model):
    """Restructuring request raised against an existing loan"""
    __tablename__ = 'loan_restructuring'

    id = db.Column(db.Integer, primary_key=True)
    request_number = db.Column(db.String(50), unique=True, nullable=False, index=True)
    loan_id = db.Column(db.Integer, db.ForeignKey('loans.id'), nullable=False, index=True)
    restructuring_type = db.Column(db.String(30), nullable=False)  # early_settlement, loan_topup, term_extension, term_reduction, rate_adjustment
    status = db.Column(db.String(20), default='pending')  # pending, under_review, approved, rejected, cancelled, implemented
    priority = db.Column(db.String(10), default='medium')  # low, medium, high, urgent
    reason = db.Column(db.Text)

    original_balance = db.Column(db.Numeric(15, 2))
    original_interest_rate = db.Column(db.Numeric(5, 2))
    original_tenor = db.Column(db.Integer)
    original_monthly_payment = db.Column(db.Numeric(15, 2))
    proposed_amount = db.Column(db.Numeric(15, 2))  # Top-up or settlement amount
    proposed_interest_rate = db.Column(db.Numeric(5, 2))
    proposed_tenor = db.Column(db.Integer)
    proposed_monthly_payment = db.Column(db.Numeric(15, 2))
    grace_period = db.Column(db.Integer, default=0)  # Interest-only months
    total_interest_savings = db.Column(db.Numeric(15, 2), default=0)
    total_payment_reduction = db.Column(db.Numeric(15, 2), default=0)

    submitted_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    submitted_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    reviewed_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    reviewed_at = db.Column(db.DateTime)
    review_notes = db.Column(db.Text)
    implemented_at = db.Column(db.DateTime)
    implemented_by = db.Column(db.Integer, db.ForeignKey('users.id'))

    submitter = db.relationship('User', foreign_keys=[submitted_by])
    reviewer = db.relationship('User', foreign_keys=[reviewed_by])

    def __repr__(self):
        return f'<LoanRestructuring {self.request_number}>'

# Accounting Models
class ChartOfAccount(db.Model):
    """General ledger account with its BOT reporting line"""
    __tablename__ = 'chart_of_accounts'

    id = db.Column(db.Integer, primary_key=True)
    account_code = db.Column(db.String(10), unique=True, nullable=False, index=True)
    account_name = db.Column(db.String(150), nullable=False)
    account_type = db.Column(db.String(20), nullable=False)  # asset, liability, equity, income, expense
    bot_code = db.Column(db.String(10))
    msp_report = db.Column(db.String(10))  # MSP2_01 balance sheet, MSP2_02 income statement
    is_cash_account = db.Column(db.Boolean, default=False)
    is_active = db.Column(db.Boolean, default=True)

    lines = db.relationship('GeneralLedgerEntry', backref='account', lazy='dynamic')

    def __repr__(self):
        return f'<ChartOfAccount {self.account_code} {self.account_name}>'

class JournalEntry(db.Model):
    """Balanced set of ledger lines"""
    __tablename__ = 'journal_entries'

    id = db.Column(db.Integer, primary_key=True)
    entry_number = db.Column(db.String(40), unique=True, nullable=False, index=True)
    template_key = db.Column(db.String(40))
    entry_date = db.Column(db.Date, nullable=False)
    description = db.Column(db.Text)
    reference = db.Column(db.String(100))
    loan_id = db.Column(db.Integer, db.ForeignKey('loans.id'))
    status = db.Column(db.String(20), default='posted')  # posted, pending_approval, rejected
    approval_required = db.Column(db.Boolean, default=False)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    approved_by = db.Column(db.Integer, db.ForeignKey('users.id'))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    posted_at = db.Column(db.DateTime)

    lines = db.relationship('GeneralLedgerEntry', backref='journal_entry', lazy='dynamic',
                            cascade='all, delete-orphan')

    def get_total_debit(self):
        return to_decimal(self.lines.with_entities(func.sum(GeneralLedgerEntry.debit)).scalar())

    def get_total_credit(self):
        return to_decimal(self.lines.with_entities(func.sum(GeneralLedgerEntry.credit)).scalar())

    def __repr__(self):
        return f'<JournalEntry {self.entry_number}>'

class GeneralLedgerEntry(db.Model):
    """Single debit or credit line of a journal entry"""
    __tablename__ = 'general_ledger'

    id = db.Column(db.Integer, primary_key=True)
    journal_entry_id = db.Column(db.Integer, db.ForeignKey('journal_entries.id'), nullable=False, index=True)
    account_id = db.Column(db.Integer, db.ForeignKey('chart_of_accounts.id'), nullable=False, index=True)
    debit = db.Column(db.Numeric(15, 2), default=0)
    credit = db.Column(db.Numeric(15, 2), default=0)
    entry_date = db.Column(db.Date, nullable=False)
    description = db.Column(db.Text)

    def __repr__(self):
        return f'<GeneralLedgerEntry {self.account_id} Dr {self.debit} Cr {self.credit}>'

# System Settings Model
class SystemSettings(db.Model):
    """System-wide settings and configurations"""
    __tablename__ = 'system_settings'

    id = db.Column(db.Integer, primary_key=True)

    app_name = db.Column(db.String(100), default='RYTHM Microfinance')
    institution_name = db.Column(db.String(200), default='RYTHM Microfinance Limited')
    msp_code = db.Column(db.String(20), default='MSP001')
    currency = db.Column(db.String(10), default='TZS')

    # Lending defaults
    default_interest_rate = db.Column(db.Numeric(5, 2), default=15)
    default_term_months = db.Column(db.Integer, default=12)
    processing_fee_rate = db.Column(db.Numeric(5, 2), default=3)
    processing_fee_method = db.Column(db.String(30), default='deduct_at_disbursement')
    application_fee = db.Column(db.Numeric(15, 2), default=0)
    legal_fee = db.Column(db.Numeric(15, 2), default=0)

    # Accounting
    reconciliation_tolerance = db.Column(db.Numeric(15, 2), default=1000)

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @staticmethod
    def get_settings():
        """Get system settings, create default if not exists"""
        settings = SystemSettings.query.first()
        if not settings:
            settings = SystemSettings()
            db.session.add(settings)
            db.session.commit()
        return settings

    def __repr__(self):
        return f'<SystemSettings {self.app_name}>'

# Activity Log Model
class ActivityLog(db.Model):
    """Activity log for audit trail"""
    __tablename__ = 'activity_logs'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), index=True)
    action = db.Column(db.String(100), nullable=False)
    entity_type = db.Column(db.String(50))  # loan, application, journal_entry, restructuring, etc.
    entity_id = db.Column(db.Integer)
    description = db.Column(db.Text)
    ip_address = db.Column(db.String(50))
    user_agent = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def __repr__(self):
        return f'<ActivityLog {self.action}>'
