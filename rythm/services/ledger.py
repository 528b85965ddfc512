"""General ledger: chart of accounts, journal templates and BOT regulatory views"""
import logging
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from string import Template
from sqlalchemy import func
from rythm import db
from rythm.errors import ValidationError, BusinessLogicError
from rythm.models import (ChartOfAccount, JournalEntry, GeneralLedgerEntry, Loan, RepaymentSchedule,
                          SystemSettings, to_decimal)
from rythm.utils.helpers import generate_journal_number, log_activity
from rythm.utils.rounding import format_currency

logger = logging.getLogger(__name__)

ZERO = Decimal('0.00')
TWO_PLACES = Decimal('0.01')

BALANCE_SHEET = 'MSP2_01'
INCOME_STATEMENT = 'MSP2_02'

# (code, name, type, BOT code, report, cash account)
CHART_OF_ACCOUNTS = (
    ('1001', 'Cash in Hand', 'asset', 'C1', BALANCE_SHEET, True),
    ('1002', 'Bank Balances', 'asset', 'C2', BALANCE_SHEET, True),
    ('1005', 'Agent Banking Balances', 'asset', 'C5', BALANCE_SHEET, True),
    ('1017', 'Gross Loans', 'asset', 'C17', BALANCE_SHEET, False),
    ('1018', 'Accrued Interest Receivable', 'asset', 'C18', BALANCE_SHEET, False),
    ('1020', 'Other Current Assets', 'asset', 'C20', BALANCE_SHEET, False),
    ('1022', 'Loan Loss Provisions', 'asset', 'C22', BALANCE_SHEET, False),
    ('1025', 'Property, Plant & Equipment', 'asset', 'C25', BALANCE_SHEET, False),
    ('1026', 'Intangible Assets', 'asset', 'C26', BALANCE_SHEET, False),
    ('2001', 'Compulsory Savings', 'liability', 'C46', BALANCE_SHEET, False),
    ('2002', 'Voluntary Savings', 'liability', 'C47', BALANCE_SHEET, False),
    ('2003', 'Term Deposits', 'liability', 'C48', BALANCE_SHEET, False),
    ('2010', 'Borrowings from Banks', 'liability', 'C50', BALANCE_SHEET, False),
    ('2011', 'Borrowings from Other Institutions', 'liability', 'C51', BALANCE_SHEET, False),
    ('2015', 'Other Liabilities', 'liability', 'C52', BALANCE_SHEET, False),
    ('3001', 'Paid-up Capital', 'equity', 'C55', BALANCE_SHEET, False),
    ('3002', 'Share Premium', 'equity', 'C56', BALANCE_SHEET, False),
    ('3010', 'Retained Earnings', 'equity', 'C59', BALANCE_SHEET, False),
    ('3011', 'Current Year Profit', 'equity', 'C60', BALANCE_SHEET, False),
    ('4001', 'Interest on Loans', 'income', 'D1', INCOME_STATEMENT, False),
    ('4002', 'Interest on Investments', 'income', 'D2', INCOME_STATEMENT, False),
    ('4010', 'Commission Income', 'income', 'D10', INCOME_STATEMENT, False),
    ('4011', 'Service Charges', 'income', 'D11', INCOME_STATEMENT, False),
    ('4015', 'Other Operating Income', 'income', 'D15', INCOME_STATEMENT, False),
    ('5001', 'Interest on Borrowings', 'expense', 'D20', INCOME_STATEMENT, False),
    ('5002', 'Interest on Deposits', 'expense', 'D21', INCOME_STATEMENT, False),
    ('5020', 'Salaries and Benefits', 'expense', 'D35', INCOME_STATEMENT, False),
    ('5021', 'Administrative Expenses', 'expense', 'D36', INCOME_STATEMENT, False),
    ('5025', 'Provision for Loan Losses', 'expense', 'D40', INCOME_STATEMENT, False),
    ('5030', 'Depreciation', 'expense', 'D45', INCOME_STATEMENT, False),
)

DEBIT_NORMAL = ('asset', 'expense')

JOURNAL_TEMPLATES = {
    'LOAN_DISBURSEMENT': {
        'name': 'Loan Disbursement',
        'debit': '1017',
        'credit': '1001',
        'description': 'Disbursement of ${LOAN_AMOUNT} for loan ${LOAN_NUMBER}',
        'regulatory_tags': ['MSP2_01', 'C17', 'MSP2_09'],
        'bot_report_impact': ['Gross Loans (C17) increases', 'Cash in Hand (C1) decreases'],
        'required_fields': ['LOAN_AMOUNT', 'LOAN_NUMBER'],
        'approval_required': False,
    },
    'INTEREST_ACCRUAL': {
        'name': 'Interest Accrual',
        'debit': '1018',
        'credit': '4001',
        'description': 'Interest accrued ${INTEREST_AMOUNT} on loan ${LOAN_NUMBER}',
        'regulatory_tags': ['MSP2_01', 'MSP2_02', 'C18', 'D1'],
        'bot_report_impact': ['Accrued Interest Receivable (C18) increases', 'Interest on Loans (D1) increases'],
        'required_fields': ['INTEREST_AMOUNT', 'LOAN_NUMBER'],
        'approval_required': False,
    },
    'INTEREST_COLLECTION': {
        'name': 'Interest Collection',
        'debit': '1001',
        'credit': '1018',
        'description': 'Interest of ${INTEREST_AMOUNT} collected on loan ${LOAN_NUMBER}',
        'regulatory_tags': ['MSP2_01', 'C1', 'C18'],
        'bot_report_impact': ['Cash in Hand (C1) increases', 'Accrued Interest Receivable (C18) decreases'],
        'required_fields': ['INTEREST_AMOUNT', 'LOAN_NUMBER'],
        'approval_required': False,
    },
    'PRINCIPAL_REPAYMENT': {
        'name': 'Principal Repayment',
        'debit': '1001',
        'credit': '1017',
        'description': 'Principal repayment of ${PRINCIPAL_AMOUNT} on loan ${LOAN_NUMBER}',
        'regulatory_tags': ['MSP2_01', 'C1', 'C17'],
        'bot_report_impact': ['Cash in Hand (C1) increases', 'Gross Loans (C17) decreases'],
        'required_fields': ['PRINCIPAL_AMOUNT', 'LOAN_NUMBER'],
        'approval_required': False,
    },
    'LOAN_LOSS_PROVISION': {
        'name': 'Loan Loss Provision',
        'debit': '5025',
        'credit': '1022',
        'description': 'Loan loss provision of ${PROVISION_AMOUNT} as at ${AS_OF}',
        'regulatory_tags': ['MSP2_01', 'MSP2_02', 'MSP2_03', 'C22', 'D40'],
        'bot_report_impact': ['Loan Loss Provisions (C22) increase', 'Provision for Loan Losses (D40) increases'],
        'required_fields': ['PROVISION_AMOUNT', 'AS_OF'],
        'approval_required': True,
    },
    'FEE_INCOME': {
        'name': 'Fee Income',
        'debit': '1001',
        'credit': '4011',
        'description': 'Fees of ${FEE_AMOUNT} on loan ${LOAN_NUMBER}',
        'regulatory_tags': ['MSP2_02', 'C1', 'D11'],
        'bot_report_impact': ['Cash in Hand (C1) increases', 'Service Charges (D11) increase'],
        'required_fields': ['FEE_AMOUNT', 'LOAN_NUMBER'],
        'approval_required': False,
    },
}

def _money(value):
    return Decimal(str(value or 0)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

def seed_chart_of_accounts():
    """Create any missing accounts; returns the number added"""
    existing = {code for (code,) in db.session.query(ChartOfAccount.account_code).all()}
    added = 0
    for code, name, account_type, bot_code, report, is_cash in CHART_OF_ACCOUNTS:
        if code in existing:
            continue
        db.session.add(ChartOfAccount(account_code=code, account_name=name, account_type=account_type,
                                      bot_code=bot_code, msp_report=report, is_cash_account=is_cash))
        added += 1
    if added:
        db.session.commit()
        logger.info('Seeded %d chart of accounts entries', added)
    return added

def get_account(code):
    account = ChartOfAccount.query.filter_by(account_code=str(code)).first()
    if account is None:
        raise ValidationError(f'Account {code} does not exist in the chart of accounts')
    return account

def post_journal_entry(lines, description, entry_date=None, reference=None, loan_id=None,
                       template_key=None, approval_required=False, user=None):
    """Create a balanced journal entry from (account_code, debit, credit) lines

    Entries that need approval are held as pending_approval and do not
    affect balances until approved. The caller commits.
    """
    if len(lines) < 2:
        raise ValidationError('A journal entry needs at least two lines')

    entry_date = entry_date or date.today()
    prepared = []
    total_debit = ZERO
    total_credit = ZERO
    for line in lines:
        code, debit, credit = line[0], _money(line[1]), _money(line[2])
        if debit < 0 or credit < 0 or (debit > 0) == (credit > 0):
            raise ValidationError(f'Line for account {code} must carry exactly one positive debit or credit')
        prepared.append((get_account(code), debit, credit, (line[3] if len(line) > 3 else None) or description))
        total_debit += debit
        total_credit += credit

    if total_debit != total_credit:
        raise ValidationError(
            f'Journal entry is not balanced: debits {total_debit} != credits {total_credit}')

    entry = JournalEntry(
        entry_number=generate_journal_number(datetime.combine(entry_date, datetime.min.time())),
        template_key=template_key,
        entry_date=entry_date,
        description=description,
        reference=reference,
        loan_id=loan_id,
        approval_required=approval_required,
        status='pending_approval' if approval_required else 'posted',
        posted_at=None if approval_required else datetime.utcnow(),
        created_by=user.id if user is not None else None
    )
    db.session.add(entry)
    for account, debit, credit, line_description in prepared:
        entry.lines.append(GeneralLedgerEntry(account_id=account.id, debit=debit, credit=credit,
                                              entry_date=entry_date, description=line_description))
    db.session.flush()
    log_activity('post_journal_entry', 'journal_entry', entry.id,
                 f'{entry.entry_number} {description} ({format_currency(total_debit)})', user=user)
    return entry

def render_template_description(template_key, values):
    return Template(JOURNAL_TEMPLATES[template_key]['description']).safe_substitute(values)

def post_template_entry(template_key, amount, values=None, entry_date=None, reference=None,
                        loan_id=None, user=None):
    """Post a two-line entry from one of the journal templates"""
    template = JOURNAL_TEMPLATES.get(template_key)
    if template is None:
        raise ValidationError(f'Unknown journal template: {template_key}')

    amount = _money(amount)
    if amount <= 0:
        raise ValidationError('Journal amount must be greater than zero')

    values = dict(values or {})
    missing = [field for field in template['required_fields'] if field not in values]
    if missing:
        raise ValidationError(f'Missing template fields: {", ".join(missing)}')
    for key, value in list(values.items()):
        if isinstance(value, Decimal):
            values[key] = format_currency(value)

    description = render_template_description(template_key, values)
    return post_journal_entry(
        [(template['debit'], amount, 0), (template['credit'], 0, amount)],
        description,
        entry_date=entry_date,
        reference=reference,
        loan_id=loan_id,
        template_key=template_key,
        approval_required=template['approval_required'],
        user=user
    )

def approve_journal_entry(entry, user=None):
    if entry.status != 'pending_approval':
        raise BusinessLogicError(f'Journal entry {entry.entry_number} is not awaiting approval')
    entry.status = 'posted'
    entry.approved_by = user.id if user is not None else None
    entry.posted_at = datetime.utcnow()
    log_activity('approve_journal_entry', 'journal_entry', entry.id, f'Approved {entry.entry_number}', user=user)
    return entry

def reject_journal_entry(entry, user=None, reason=None):
    if entry.status != 'pending_approval':
        raise BusinessLogicError(f'Journal entry {entry.entry_number} is not awaiting approval')
    entry.status = 'rejected'
    entry.approved_by = user.id if user is not None else None
    log_activity('reject_journal_entry', 'journal_entry', entry.id,
                 f'Rejected {entry.entry_number}: {reason or "no reason given"}', user=user)
    return entry

def get_account_balances(as_of=None):
    """Posted debit/credit totals and natural balance per account code"""
    query = db.session.query(
        GeneralLedgerEntry.account_id,
        func.coalesce(func.sum(GeneralLedgerEntry.debit), 0),
        func.coalesce(func.sum(GeneralLedgerEntry.credit), 0)
    ).join(JournalEntry).filter(JournalEntry.status == 'posted')
    if as_of is not None:
        query = query.filter(GeneralLedgerEntry.entry_date <= as_of)
    totals = {account_id: (_money(debit), _money(credit))
              for account_id, debit, credit in query.group_by(GeneralLedgerEntry.account_id).all()}

    balances = {}
    for account in ChartOfAccount.query.filter_by(is_active=True).order_by(ChartOfAccount.account_code).all():
        debit, credit = totals.get(account.id, (ZERO, ZERO))
        if account.account_type in DEBIT_NORMAL:
            balance = debit - credit
        else:
            balance = credit - debit
        balances[account.account_code] = {
            'account_code': account.account_code,
            'account_name': account.account_name,
            'account_type': account.account_type,
            'bot_code': account.bot_code,
            'msp_report': account.msp_report,
            'debit': debit,
            'credit': credit,
            'balance': balance,
        }
    return balances

def trial_balance(as_of=None):
    rows = list(get_account_balances(as_of).values())
    total_debit = sum((row['debit'] for row in rows), ZERO)
    total_credit = sum((row['credit'] for row in rows), ZERO)
    return {
        'rows': rows,
        'total_debit': total_debit,
        'total_credit': total_credit,
        'is_balanced': total_debit == total_credit,
    }

def bot_code_for(account_code, account_type, bot_code=None):
    """BOT reporting line for an account"""
    if account_code == '1001':
        return 'C1'
    if account_code in ('1002', '1003'):
        return 'C2'
    if account_code == '1017':
        return 'C17'
    if bot_code:
        return bot_code
    return {
        'asset': 'C99',
        'liability': 'L99',
        'equity': 'E99',
        'income': 'R99',
        'expense': 'E99',
    }.get(account_type, 'C99')

def map_to_bot_report(as_of=None):
    """Account balances grouped into MSP2_01 and MSP2_02 lines"""
    report = {BALANCE_SHEET: {}, INCOME_STATEMENT: {}}
    for row in get_account_balances(as_of).values():
        section = INCOME_STATEMENT if row['account_type'] in ('income', 'expense') else BALANCE_SHEET
        code = bot_code_for(row['account_code'], row['account_type'], row['bot_code'])
        line = report[section].setdefault(code, {'bot_code': code, 'accounts': [], 'balance': ZERO})
        line['accounts'].append(row['account_code'])
        line['balance'] += row['balance']
    return {section: sorted(lines.values(), key=lambda line: line['bot_code'])
            for section, lines in report.items()}

def validate_accounting_equation(as_of=None):
    """Assets = liabilities + equity + current period net income"""
    totals = {'asset': ZERO, 'liability': ZERO, 'equity': ZERO, 'income': ZERO, 'expense': ZERO}
    for row in get_account_balances(as_of).values():
        totals[row['account_type']] += row['balance']

    net_income = totals['income'] - totals['expense']
    difference = totals['asset'] - (totals['liability'] + totals['equity'] + net_income)
    return {
        'assets': totals['asset'],
        'liabilities': totals['liability'],
        'equity': totals['equity'],
        'net_income': net_income,
        'difference': difference,
        'is_balanced': abs(difference) < TWO_PLACES,
    }

def reconcile_cash_accounts(statement_balances, tolerance=None, as_of=None):
    """Compare cash account book balances with statement balances"""
    if tolerance is None:
        tolerance = SystemSettings.get_settings().reconciliation_tolerance
    tolerance = _money(tolerance)
    balances = get_account_balances(as_of)

    results = []
    for account in ChartOfAccount.query.filter_by(is_cash_account=True).order_by(ChartOfAccount.account_code).all():
        book = balances.get(account.account_code, {}).get('balance', ZERO)
        statement = _money(statement_balances.get(account.account_code, 0))
        difference = book - statement
        results.append({
            'account_code': account.account_code,
            'account_name': account.account_name,
            'book_balance': book,
            'statement_balance': statement,
            'difference': difference,
            'status': 'Matched' if abs(difference) < tolerance else 'Variance',
        })
    return results

def calculate_ecl_provisions(as_of=None):
    """IFRS 9 stage breakdown over the active portfolio"""
    from rythm.services.classification import calculate_ecl_stages
    from rythm.services.monitoring import fetch_active_loans
    records = fetch_active_loans(as_of)
    return calculate_ecl_stages(record.to_exposure() for record in records)

def provision_held(as_of=None):
    """Credit balance of the loan loss provision account, zero when it is not active"""
    account = get_account_balances(as_of).get('1022')
    return -account['balance'] if account else ZERO

def post_loan_loss_provision(as_of=None, user=None):
    """Top up account 1022 to the ECL requirement; None if already covered"""
    as_of = as_of or date.today()
    required = calculate_ecl_provisions(as_of)['total_provision']
    held = provision_held()
    pending = db.session.query(func.coalesce(func.sum(GeneralLedgerEntry.credit), 0)).join(JournalEntry).join(
        ChartOfAccount).filter(JournalEntry.status == 'pending_approval',
                               ChartOfAccount.account_code == '1022').scalar()
    shortfall = required - held - _money(pending)
    if shortfall <= 0:
        logger.info('Loan loss provision covered: required %s, held %s', required, held)
        return None
    return post_template_entry('LOAN_LOSS_PROVISION', shortfall,
                               {'PROVISION_AMOUNT': shortfall, 'AS_OF': as_of.isoformat()},
                               entry_date=as_of, reference=f'ECL-{as_of.isoformat()}', user=user)

def accrue_installment_interest(loan, installments, entry_date=None, user=None):
    """Post one accrual for the unaccrued interest on installments"""
    pending = [item for item in installments if not item.interest_accrued]
    interest = sum((to_decimal(item.interest_portion) + to_decimal(item.management_fee_portion)
                    for item in pending), ZERO)
    for item in pending:
        item.interest_accrued = True
    if interest <= 0:
        return None
    return post_template_entry('INTEREST_ACCRUAL', interest,
                               {'INTEREST_AMOUNT': interest, 'LOAN_NUMBER': loan.loan_number},
                               entry_date=entry_date, reference=loan.loan_number, loan_id=loan.id, user=user)

def accrue_interest(as_of=None, user=None):
    """Accrue interest on every installment of open loans falling due by as_of"""
    as_of = as_of or date.today()
    entries = []
    loans = Loan.query.filter(Loan.status.in_(['active', 'overdue'])).all()
    for loan in loans:
        due = loan.schedule.filter(RepaymentSchedule.due_date <= as_of,
                                   RepaymentSchedule.interest_accrued.is_(False)).all()
        entry = accrue_installment_interest(loan, due, entry_date=as_of, user=user)
        if entry is not None:
            entries.append(entry)
    db.session.commit()
    logger.info('Posted %d interest accrual entries as at %s', len(entries), as_of)
    return entries

def template_values(template_key, amount, reference=None, entry_date=None):
    """Fill a template's required fields from a manual entry"""
    values = {}
    for field in JOURNAL_TEMPLATES[template_key]['required_fields']:
        if field.endswith('_AMOUNT'):
            values[field] = _money(amount)
        elif field == 'AS_OF':
            values[field] = (entry_date or date.today()).isoformat()
        else:
            values[field] = reference or '-'
    return values

def get_templates():
    return [dict(template, key=key) for key, template in JOURNAL_TEMPLATES.items()]

def journal_to_dict(entry):
    return {
        'id': entry.id,
        'entry_number': entry.entry_number,
        'template_key': entry.template_key,
        'entry_date': entry.entry_date.isoformat() if entry.entry_date else None,
        'description': entry.description,
        'reference': entry.reference,
        'status': entry.status,
        'approval_required': entry.approval_required,
        'total_debit': float(entry.get_total_debit()),
        'total_credit': float(entry.get_total_credit()),
        'lines': [{
            'account_code': line.account.account_code,
            'account_name': line.account.account_name,
            'debit': float(to_decimal(line.debit)),
            'credit': float(to_decimal(line.credit)),
        } for line in entry.lines],
    }
