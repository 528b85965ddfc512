"""initial_rythm_schema

Revision ID: a3c9e51d7b20
Revises:
Create Date: 2026-10-16 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a3c9e51d7b20'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('branches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_code', sa.String(length=20), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_branches_branch_code'), 'branches', ['branch_code'], unique=True)

    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=80), nullable=False),
        sa.Column('email', sa.String(length=120), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=200), nullable=False),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('role', sa.String(length=50), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('last_login', sa.DateTime(), nullable=True),
        sa.Column('can_view_monitoring', sa.Boolean(), nullable=True),
        sa.Column('can_manage_disbursements', sa.Boolean(), nullable=True),
        sa.Column('can_manage_ledger', sa.Boolean(), nullable=True),
        sa.Column('can_approve_journals', sa.Boolean(), nullable=True),
        sa.Column('can_manage_restructuring', sa.Boolean(), nullable=True),
        sa.Column('can_approve_restructuring', sa.Boolean(), nullable=True),
        sa.Column('can_view_reports', sa.Boolean(), nullable=True),
        sa.Column('can_manage_settings', sa.Boolean(), nullable=True),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_users_username'), 'users', ['username'], unique=True)
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    op.create_table('clients',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_number', sa.String(length=50), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('gender', sa.String(length=20), nullable=True),
        sa.Column('client_type', sa.String(length=30), nullable=True),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('credit_score', sa.Integer(), nullable=True),
        sa.Column('monthly_income', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('branch_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_clients_client_number'), 'clients', ['client_number'], unique=True)

    op.create_table('loan_products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('category', sa.String(length=50), nullable=True),
        sa.Column('loan_type', sa.String(length=30), nullable=True),
        sa.Column('interest_rate', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('term_months', sa.Integer(), nullable=True),
        sa.Column('term_days', sa.Integer(), nullable=True),
        sa.Column('repayment_method', sa.String(length=30), nullable=True),
        sa.Column('processing_fee_rate', sa.Numeric(precision=5, scale=2), nullable=True),
        sa.Column('processing_fee_method', sa.String(length=30), nullable=True),
        sa.Column('application_fee', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('legal_fee', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('loan_applications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('application_number', sa.String(length=50), nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('branch_id', sa.Integer(), nullable=True),
        sa.Column('requested_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('approved_amount', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('approved_interest_rate', sa.Numeric(precision=5, scale=2), nullable=True),
        sa.Column('approved_tenor', sa.Integer(), nullable=True),
        sa.Column('calculation_method', sa.String(length=30), nullable=True),
        sa.Column('status', sa.String(length=40), nullable=True),
        sa.Column('contract_status', sa.String(length=20), nullable=True),
        sa.Column('contract_file', sa.String(length=255), nullable=True),
        sa.Column('is_disbursed', sa.Boolean(), nullable=True),
        sa.Column('disbursement_date', sa.Date(), nullable=True),
        sa.Column('approval_date', sa.Date(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('purpose', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['loan_products.id'], ),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id'], ),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_loan_applications_application_number'), 'loan_applications', ['application_number'], unique=True)
    op.create_index(op.f('ix_loan_applications_client_id'), 'loan_applications', ['client_id'], unique=False)
    op.create_index(op.f('ix_loan_applications_status'), 'loan_applications', ['status'], unique=False)
    op.create_index(op.f('ix_loan_applications_created_at'), 'loan_applications', ['created_at'], unique=False)

    op.create_table('disbursement_queue',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('application_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=30), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('queued_by', sa.Integer(), nullable=True),
        sa.Column('queued_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['application_id'], ['loan_applications.id'], ),
        sa.ForeignKeyConstraint(['queued_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('application_id')
    )

    op.create_table('loans',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('loan_number', sa.String(length=50), nullable=False),
        sa.Column('application_id', sa.Integer(), nullable=True),
        sa.Column('client_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('principal_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('interest_rate', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('interest_amount', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('total_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('term_months', sa.Integer(), nullable=False),
        sa.Column('repayment_method', sa.String(length=30), nullable=True),
        sa.Column('loan_type', sa.String(length=30), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=True),
        sa.Column('disbursement_date', sa.Date(), nullable=True),
        sa.Column('first_repayment_date', sa.Date(), nullable=True),
        sa.Column('next_repayment_date', sa.Date(), nullable=True),
        sa.Column('maturity_date', sa.Date(), nullable=True),
        sa.Column('closing_date', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['application_id'], ['loan_applications.id'], ),
        sa.ForeignKeyConstraint(['client_id'], ['clients.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['loan_products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('application_id')
    )
    op.create_index(op.f('ix_loans_loan_number'), 'loans', ['loan_number'], unique=True)
    op.create_index(op.f('ix_loans_client_id'), 'loans', ['client_id'], unique=False)
    op.create_index(op.f('ix_loans_status'), 'loans', ['status'], unique=False)
    op.create_index(op.f('ix_loans_created_at'), 'loans', ['created_at'], unique=False)

    op.create_table('repayment_schedules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('loan_id', sa.Integer(), nullable=False),
        sa.Column('installment_number', sa.Integer(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('principal_portion', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('interest_portion', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('management_fee_portion', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('total_payment', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('remaining_balance', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('principal_paid', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('interest_paid', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('paid_amount', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=True),
        sa.Column('interest_accrued', sa.Boolean(), nullable=True),
        sa.Column('paid_date', sa.Date(), nullable=True),
        sa.ForeignKeyConstraint(['loan_id'], ['loans.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_repayment_schedules_loan_id'), 'repayment_schedules', ['loan_id'], unique=False)

    op.create_table('loan_repayments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('loan_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('principal_paid', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('interest_paid', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('payment_date', sa.Date(), nullable=False),
        sa.Column('payment_method', sa.String(length=30), nullable=True),
        sa.Column('reference', sa.String(length=100), nullable=True),
        sa.Column('received_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['loan_id'], ['loans.id'], ),
        sa.ForeignKeyConstraint(['received_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_loan_repayments_loan_id'), 'loan_repayments', ['loan_id'], unique=False)

    op.create_table('loan_disbursements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('loan_id', sa.Integer(), nullable=True),
        sa.Column('application_id', sa.Integer(), nullable=True),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('processing_fee', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('upfront_fees', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('net_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('disbursement_method', sa.String(length=30), nullable=True),
        sa.Column('reference', sa.String(length=100), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=True),
        sa.Column('disbursement_date', sa.Date(), nullable=False),
        sa.Column('disbursed_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['loan_id'], ['loans.id'], ),
        sa.ForeignKeyConstraint(['application_id'], ['loan_applications.id'], ),
        sa.ForeignKeyConstraint(['disbursed_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_loan_disbursements_loan_id'), 'loan_disbursements', ['loan_id'], unique=False)
    op.create_index(op.f('ix_loan_disbursements_application_id'), 'loan_disbursements', ['application_id'], unique=False)

    op.create_table('loan_restructuring',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('request_number', sa.String(length=50), nullable=False),
        sa.Column('loan_id', sa.Integer(), nullable=False),
        sa.Column('restructuring_type', sa.String(length=30), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=True),
        sa.Column('priority', sa.String(length=10), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('original_balance', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('original_interest_rate', sa.Numeric(precision=5, scale=2), nullable=True),
        sa.Column('original_tenor', sa.Integer(), nullable=True),
        sa.Column('original_monthly_payment', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('proposed_amount', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('proposed_interest_rate', sa.Numeric(precision=5, scale=2), nullable=True),
        sa.Column('proposed_tenor', sa.Integer(), nullable=True),
        sa.Column('proposed_monthly_payment', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('grace_period', sa.Integer(), nullable=True),
        sa.Column('total_interest_savings', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('total_payment_reduction', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('submitted_by', sa.Integer(), nullable=True),
        sa.Column('submitted_at', sa.DateTime(), nullable=True),
        sa.Column('reviewed_by', sa.Integer(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(), nullable=True),
        sa.Column('review_notes', sa.Text(), nullable=True),
        sa.Column('implemented_at', sa.DateTime(), nullable=True),
        sa.Column('implemented_by', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['loan_id'], ['loans.id'], ),
        sa.ForeignKeyConstraint(['submitted_by'], ['users.id'], ),
        sa.ForeignKeyConstraint(['reviewed_by'], ['users.id'], ),
        sa.ForeignKeyConstraint(['implemented_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_loan_restructuring_request_number'), 'loan_restructuring', ['request_number'], unique=True)
    op.create_index(op.f('ix_loan_restructuring_loan_id'), 'loan_restructuring', ['loan_id'], unique=False)
    op.create_index(op.f('ix_loan_restructuring_submitted_at'), 'loan_restructuring', ['submitted_at'], unique=False)

    op.create_table('chart_of_accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_code', sa.String(length=10), nullable=False),
        sa.Column('account_name', sa.String(length=150), nullable=False),
        sa.Column('account_type', sa.String(length=20), nullable=False),
        sa.Column('bot_code', sa.String(length=10), nullable=True),
        sa.Column('msp_report', sa.String(length=10), nullable=True),
        sa.Column('is_cash_account', sa.Boolean(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_chart_of_accounts_account_code'), 'chart_of_accounts', ['account_code'], unique=True)

    op.create_table('journal_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('entry_number', sa.String(length=40), nullable=False),
        sa.Column('template_key', sa.String(length=40), nullable=True),
        sa.Column('entry_date', sa.Date(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('reference', sa.String(length=100), nullable=True),
        sa.Column('loan_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=True),
        sa.Column('approval_required', sa.Boolean(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('approved_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('posted_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['loan_id'], ['loans.id'], ),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ),
        sa.ForeignKeyConstraint(['approved_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_journal_entries_entry_number'), 'journal_entries', ['entry_number'], unique=True)

    op.create_table('general_ledger',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('journal_entry_id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('debit', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('credit', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('entry_date', sa.Date(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['journal_entry_id'], ['journal_entries.id'], ),
        sa.ForeignKeyConstraint(['account_id'], ['chart_of_accounts.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_general_ledger_journal_entry_id'), 'general_ledger', ['journal_entry_id'], unique=False)
    op.create_index(op.f('ix_general_ledger_account_id'), 'general_ledger', ['account_id'], unique=False)

    op.create_table('system_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('app_name', sa.String(length=100), nullable=True),
        sa.Column('institution_name', sa.String(length=200), nullable=True),
        sa.Column('msp_code', sa.String(length=20), nullable=True),
        sa.Column('currency', sa.String(length=10), nullable=True),
        sa.Column('default_interest_rate', sa.Numeric(precision=5, scale=2), nullable=True),
        sa.Column('default_term_months', sa.Integer(), nullable=True),
        sa.Column('processing_fee_rate', sa.Numeric(precision=5, scale=2), nullable=True),
        sa.Column('processing_fee_method', sa.String(length=30), nullable=True),
        sa.Column('application_fee', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('legal_fee', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('reconciliation_tolerance', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('activity_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('entity_type', sa.String(length=50), nullable=True),
        sa.Column('entity_id', sa.Integer(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('ip_address', sa.String(length=50), nullable=True),
        sa.Column('user_agent', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_activity_logs_user_id'), 'activity_logs', ['user_id'], unique=False)
    op.create_index(op.f('ix_activity_logs_created_at'), 'activity_logs', ['created_at'], unique=False)


def downgrade():
    # Dependents first
    for table in ('activity_logs', 'system_settings', 'general_ledger', 'journal_entries', 'chart_of_accounts',
                  'loan_restructuring', 'loan_disbursements', 'loan_repayments', 'repayment_schedules', 'loans',
                  'disbursement_queue', 'loan_applications', 'loan_products', 'clients', 'users', 'branches'):
        op.drop_table(table)
