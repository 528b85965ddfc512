"""Bank of Tanzania loan classification, provisioning and IFRS 9 ECL staging

General loans and housing microfinance loans are bucketed by days past due
(DPD) into the BOT categories, each carrying a fixed provision rate:

    Category               General    Housing MF   Provision
    Current                0-5        0-90         1%
    Especially Mentioned   6-30       -            5%
    Substandard            31-60      91-180       25%
    Doubtful               61-90      181-360      50%
    Loss                   91+        361+         100%

ECL staging uses the IFRS 9 30 and 90 day backstops.
"""
from collections import namedtuple
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from dateutil.relativedelta import relativedelta

CURRENT = 'Current'
ESPECIALLY_MENTIONED = 'Especially Mentioned'
SUBSTANDARD = 'Substandard'
DOUBTFUL = 'Doubtful'
LOSS = 'Loss'

CATEGORY_KEYS = {
    CURRENT: 'current',
    ESPECIALLY_MENTIONED: 'esm',
    SUBSTANDARD: 'substandard',
    DOUBTFUL: 'doubtful',
    LOSS: 'loss',
}

NON_PERFORMING = (SUBSTANDARD, DOUBTFUL, LOSS)

HOUSING_MICROFINANCE = 'housing_microfinance'

# (min_days, max_days, category); max None is open ended
GENERAL_LOAN_CRITERIA = (
    (0, 5, CURRENT),
    (6, 30, ESPECIALLY_MENTIONED),
    (31, 60, SUBSTANDARD),
    (61, 90, DOUBTFUL),
    (91, None, LOSS),
)

HOUSING_MICROFINANCE_CRITERIA = (
    (0, 90, CURRENT),
    (91, 180, SUBSTANDARD),
    (181, 360, DOUBTFUL),
    (361, None, LOSS),
)

PROVISION_RATES = {
    CURRENT: Decimal('0.01'),
    ESPECIALLY_MENTIONED: Decimal('0.05'),
    SUBSTANDARD: Decimal('0.25'),
    DOUBTFUL: Decimal('0.50'),
    LOSS: Decimal('1.00'),
}

# (stage, min_dpd, max_dpd, provision rate in percent)
ECL_STAGES = (
    (1, 0, 30, Decimal('0.5')),
    (2, 31, 90, Decimal('5')),
    (3, 91, None, Decimal('50')),
)

TWO_PLACES = Decimal('0.01')

Exposure = namedtuple('Exposure', ['loan_id', 'outstanding', 'days_past_due', 'loan_type'])

def _money(value):
    return Decimal(str(value or 0)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

def _ratio(part, whole):
    """Percentage of part in whole, 0 when whole is 0"""
    if not whole:
        return Decimal('0.00')
    return (Decimal(str(part)) / Decimal(str(whole)) * 100).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

def days_past_due(due_date, as_of=None):
    """Whole days elapsed since due_date, 0 if not yet due"""
    if due_date is None:
        return 0
    as_of = as_of or date.today()
    return max(0, (as_of - due_date).days)

def _category_for(dpd, criteria):
    for min_days, max_days, category in criteria:
        if dpd >= min_days and (max_days is None or dpd <= max_days):
            return category
    return LOSS

def next_review_date(category, classification_date):
    """Current loans are reviewed quarterly, everything else monthly"""
    months = 3 if category == CURRENT else 1
    return classification_date + relativedelta(months=months)

class LoanClassification:
    """BOT category and provision for one loan"""

    def __init__(self, category, days_past_due, provision_rate, provision_amount,
                 is_housing_microfinance, classification_date):
        self.category = category
        self.days_past_due = days_past_due
        self.provision_rate = provision_rate
        self.provision_amount = provision_amount
        self.is_housing_microfinance = is_housing_microfinance
        self.classification_date = classification_date
        self.next_review_date = next_review_date(category, classification_date)

    @property
    def category_key(self):
        return CATEGORY_KEYS[self.category]

    @property
    def is_non_performing(self):
        return self.category in NON_PERFORMING

    def to_dict(self):
        return {
            'category': self.category,
            'days_past_due': self.days_past_due,
            'provision_rate': float(self.provision_rate),
            'provision_amount': float(self.provision_amount),
            'is_housing_microfinance': self.is_housing_microfinance,
            'classification_date': self.classification_date.isoformat(),
            'next_review_date': self.next_review_date.isoformat(),
        }

    def __repr__(self):
        return f'<LoanClassification {self.category} dpd={self.days_past_due}>'

def classify_loan(outstanding, dpd, loan_type='general', as_of=None):
    """Classify one exposure by its DPD and loan type"""
    housing = loan_type == HOUSING_MICROFINANCE
    criteria = HOUSING_MICROFINANCE_CRITERIA if housing else GENERAL_LOAN_CRITERIA
    dpd = max(0, int(dpd or 0))
    category = _category_for(dpd, criteria)
    rate = PROVISION_RATES[category]
    provision = (_money(outstanding) * rate).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
    return LoanClassification(category, dpd, rate, provision, housing, as_of or date.today())

def classify_exposure(exposure, as_of=None):
    return classify_loan(exposure.outstanding, exposure.days_past_due, exposure.loan_type, as_of)

def calculate_portfolio_classification(exposures, as_of=None):
    """Category breakdown with NPL, PAR30, PAR90 and provision coverage"""
    exposures = list(exposures)
    breakdown = {key: {'count': 0, 'amount': Decimal('0.00'), 'provision': Decimal('0.00')}
                 for key in CATEGORY_KEYS.values()}
    total_outstanding = Decimal('0.00')
    total_provision = Decimal('0.00')
    par30_count = 0
    par90_count = 0

    for exposure in exposures:
        classification = classify_exposure(exposure, as_of)
        amount = _money(exposure.outstanding)
        total_outstanding += amount
        total_provision += classification.provision_amount
        if classification.days_past_due > 30:
            par30_count += 1
        if classification.days_past_due > 90:
            par90_count += 1

        bucket = breakdown[classification.category_key]
        bucket['count'] += 1
        bucket['amount'] += amount
        bucket['provision'] += classification.provision_amount

    non_performing = sum(breakdown[CATEGORY_KEYS[category]]['amount'] for category in NON_PERFORMING)

    return {
        'total_outstanding': total_outstanding,
        'total_provision_required': total_provision,
        'classification_breakdown': breakdown,
        'npl_ratio': _ratio(non_performing, total_outstanding),
        'par30': _ratio(par30_count, len(exposures)),
        'par90': _ratio(par90_count, len(exposures)),
        'provision_coverage_ratio': _ratio(total_provision, total_outstanding),
    }

def get_classification_criteria():
    def _rows(criteria):
        return [{'category': category, 'min_days': low, 'max_days': high} for low, high, category in criteria]

    return {
        'general_loans': _rows(GENERAL_LOAN_CRITERIA),
        'housing_microfinance': _rows(HOUSING_MICROFINANCE_CRITERIA),
        'provision_rates': {category: float(rate) for category, rate in PROVISION_RATES.items()},
    }

def validate_bot_compliance(exposure, classification, as_of=None):
    """True if classification matches what the BOT rules give for exposure"""
    expected = classify_exposure(exposure, as_of)
    return (expected.category == classification.category and
            abs(expected.provision_rate - classification.provision_rate) < Decimal('0.001'))

def generate_bot_report_data(exposures, institution_name, msp_code, as_of=None, classifications=None):
    """Portfolio classification packaged for regulatory submission

    When recorded classifications are supplied (loan id -> LoanClassification)
    each is validated against the rules; any mismatch marks the report
    NON_COMPLIANT.
    """
    exposures = list(exposures)
    as_of = as_of or date.today()
    portfolio = calculate_portfolio_classification(exposures, as_of)

    mismatches = []
    for exposure in exposures:
        recorded = (classifications or {}).get(exposure.loan_id)
        if recorded is not None and not validate_bot_compliance(exposure, recorded, as_of):
            mismatches.append(exposure.loan_id)

    report = dict(portfolio)
    report.update({
        'report_date': as_of.isoformat(),
        'institution_name': institution_name,
        'msp_code': msp_code,
        'criteria': get_classification_criteria(),
        'compliance_status': 'NON_COMPLIANT' if mismatches else 'BOT_COMPLIANT',
        'non_compliant_loans': mismatches,
    })
    return report

def ecl_stage_for(dpd):
    for stage, low, high, rate in ECL_STAGES:
        if dpd >= low and (high is None or dpd <= high):
            return stage, rate
    return ECL_STAGES[-1][0], ECL_STAGES[-1][3]

def calculate_ecl_stages(exposures):
    """Stage count, amount and provision for each IFRS 9 stage"""
    stages = {stage: {'stage': stage, 'rate': rate, 'count': 0, 'amount': Decimal('0.00'),
                      'provision': Decimal('0.00')}
              for stage, _low, _high, rate in ECL_STAGES}

    for exposure in exposures:
        stage, rate = ecl_stage_for(max(0, int(exposure.days_past_due or 0)))
        amount = _money(exposure.outstanding)
        bucket = stages[stage]
        bucket['count'] += 1
        bucket['amount'] += amount
        bucket['provision'] += (amount * rate / 100).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

    rows = [stages[stage] for stage in sorted(stages)]
    return {
        'stages': rows,
        'total_amount': sum((row['amount'] for row in rows), Decimal('0.00')),
        'total_provision': sum((row['provision'] for row in rows), Decimal('0.00')),
    }
