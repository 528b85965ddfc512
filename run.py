#!/usr/bin/env python3
"""Application entry point"""
import os
import sys

def _app():
    from rythm import create_app
    return create_app(os.getenv('FLASK_ENV') or 'development')

def init_database():
    """Initialize the database and the chart of accounts"""
    from rythm import db
    from rythm.services.ledger import seed_chart_of_accounts
    app = _app()
    with app.app_context():
        db.create_all()
        added = seed_chart_of_accounts()
        print("Database initialized! {} ledger accounts added.".format(added))

def create_admin_user():
    """Create an admin user"""
    from rythm import db
    from rythm.models import User, SystemSettings

    app = _app()

    with app.app_context():
        db.create_all()

        existing_admin = User.query.filter_by(username='admin').first()
        if existing_admin:
            print("Admin user already exists!")
            return

        admin = User(
            username='admin',
            email='admin@rythm.co.tz',
            full_name='System Administrator',
            role='admin',
            is_active=True
        )
        admin.set_password('admin123')
        admin.set_role_permissions()
        db.session.add(admin)

        if not SystemSettings.query.first():
            db.session.add(SystemSettings(
                app_name=app.config['DEFAULT_APP_NAME'],
                institution_name=app.config['INSTITUTION_NAME'],
                msp_code=app.config['MSP_CODE'],
                currency=app.config['DEFAULT_CURRENCY'],
                default_interest_rate=app.config['DEFAULT_INTEREST_RATE'],
                default_term_months=app.config['DEFAULT_TERM_MONTHS'],
                processing_fee_rate=app.config['PROCESSING_FEE_RATE'],
                reconciliation_tolerance=app.config['RECONCILIATION_TOLERANCE']
            ))

        try:
            db.session.commit()
            print("Admin user created successfully!")
            print("Username: admin")
            print("Password: admin123")
            print("Please change the password after first login!")
        except Exception as e:
            db.session.rollback()
            print("Error: {}".format(e))
            sys.exit(1)

def seed_accounts():
    from rythm.services.ledger import seed_chart_of_accounts
    app = _app()
    with app.app_context():
        print("{} ledger accounts added.".format(seed_chart_of_accounts()))

def sync_loans():
    """Create missing loans for disbursed applications and refresh statuses"""
    from rythm.services.sync import reconcile_orphan_disbursements, refresh_loan_statuses, sync_all_disbursed_loans
    app = _app()
    with app.app_context():
        result = sync_all_disbursed_loans()
        print("Synced {} loans from disbursed applications".format(result.synced))
        for error in result.errors:
            print("  {}".format(error))
        print("Reconciled {} orphan disbursements".format(reconcile_orphan_disbursements().synced))
        changes = refresh_loan_statuses()
        print("Status changes: {}".format(', '.join('{}={}'.format(k, v) for k, v in changes.items())))

def accrue_interest():
    from datetime import date
    from rythm.services.ledger import accrue_interest as run_accrual
    app = _app()
    with app.app_context():
        entries = run_accrual(date.today())
        print("Posted {} interest accrual entries".format(len(entries)))

def print_classification():
    """Print the BOT loan classification return"""
    from rythm.models import SystemSettings
    from rythm.services.classification import generate_bot_report_data
    from rythm.services.monitoring import fetch_active_loans
    from rythm.utils.rounding import format_currency
    app = _app()
    with app.app_context():
        settings = SystemSettings.get_settings()
        report = generate_bot_report_data([r.to_exposure() for r in fetch_active_loans()],
                                          settings.institution_name, settings.msp_code)
        print("{} ({}) as of {}: {}".format(report['institution_name'], report['msp_code'],
                                            report['report_date'], report['compliance_status']))
        for key, bucket in report['classification_breakdown'].items():
            print("  {:<12} {:>5} {:>18} {:>18}".format(key, bucket['count'], format_currency(bucket['amount']),
                                                      format_currency(bucket['provision'])))
        print("NPL {}%  PAR30 {}%  PAR90 {}%".format(report['npl_ratio'], report['par30'], report['par90']))

COMMANDS = {
    'init-db': init_database,
    'create-admin': create_admin_user,
    'seed-accounts': seed_accounts,
    'sync-loans': sync_loans,
    'accrue-interest': accrue_interest,
    'classify': print_classification,
}

if __name__ == '__main__':
    if len(sys.argv) > 1:
        command = COMMANDS.get(sys.argv[1])
        if command is None:
            print("Unknown command: {}".format(sys.argv[1]))
            print("Available commands: {}".format(', '.join(COMMANDS)))
            sys.exit(1)
        command()
    else:
        # Run the Flask development server
        app = _app()
        app.run(host='0.0.0.0', port=5000, debug=app.config.get('DEBUG', False))
