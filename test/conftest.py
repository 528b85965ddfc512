from datetime import date
from decimal import Decimal

import pytest

from rythm import create_app, db
from rythm.models import Client, LoanApplication, LoanProduct, SystemSettings, User
from rythm.services.ledger import seed_chart_of_accounts

DISBURSED_ON = date(2026, 1, 15)

@pytest.fixture
def app():
    app = create_app('testing')
    ctx = app.app_context()
    ctx.push()
    db.create_all()
    SystemSettings.get_settings()
    seed_chart_of_accounts()

    yield app

    db.session.remove()
    db.drop_all()
    ctx.pop()

def make_user(username='admin', role='admin'):
    user = User(username=username, email=f'{username}@rythm.test', full_name=username.title(), role=role)
    user.set_password('secret123')
    user.set_role_permissions()
    db.session.add(user)
    db.session.commit()
    return user

@pytest.fixture
def admin(app):
    return make_user()

@pytest.fixture
def new_user(app):
    return make_user

@pytest.fixture
def login(app):
    """Log a test client in as user"""
    def _login(client, user):
        with client.session_transaction() as session:
            session['_user_id'] = str(user.id)
            session['_fresh'] = True
        return client
    return _login

@pytest.fixture
def client(app, admin, login):
    return login(app.test_client(), admin)

@pytest.fixture
def borrower(app):
    borrower = Client(client_number='CL0001', first_name='Amina', last_name='Mushi', gender='female',
                      client_type='individual', phone='0755000001')
    db.session.add(borrower)
    db.session.commit()
    return borrower

@pytest.fixture
def product(app):
    product = LoanProduct(name='Biashara Loan', category='Business', loan_type='general', interest_rate=24,
                          term_months=12, repayment_method='reducing_balance', processing_fee_rate=3,
                          processing_fee_method='deduct_at_disbursement', application_fee=0, legal_fee=0)
    db.session.add(product)
    db.session.commit()
    return product

def make_application(borrower, product, number='APP/26/00001', amount=1000000, status='approved',
                     with_terms=True, contract_status='uploaded'):
    application = LoanApplication(
        application_number=number,
        client_id=borrower.id,
        product_id=product.id,
        requested_amount=Decimal(amount),
        approved_amount=Decimal(amount),
        approved_interest_rate=Decimal('24') if with_terms else None,
        approved_tenor=12 if with_terms else None,
        calculation_method='reducing_balance',
        status=status,
        contract_status=contract_status
    )
    db.session.add(application)
    db.session.commit()
    return application

@pytest.fixture
def new_application(borrower, product):
    def _new_application(**kwargs):
        return make_application(borrower, product, **kwargs)
    return _new_application

@pytest.fixture
def application(new_application):
    return new_application()

@pytest.fixture
def loan(application):
    """1,000,000 at 24% over 12 months, disbursed on 15 January 2026"""
    from rythm.services.disbursement import execute_disbursement
    loan, _disbursement = execute_disbursement(application, method='bank_transfer',
                                               disbursement_date=DISBURSED_ON)
    return loan
