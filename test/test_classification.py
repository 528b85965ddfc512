from datetime import date
from decimal import Decimal

import pytest

from rythm.services.classification import (CURRENT, DOUBTFUL, ESPECIALLY_MENTIONED, LOSS, SUBSTANDARD, Exposure,
                                           LoanClassification, calculate_ecl_stages,
                                           calculate_portfolio_classification, classify_loan, days_past_due,
                                           generate_bot_report_data)

AS_OF = date(2026, 3, 31)

@pytest.mark.parametrize('dpd, category', [
    (0, CURRENT),
    (5, CURRENT),
    (6, ESPECIALLY_MENTIONED),
    (30, ESPECIALLY_MENTIONED),
    (31, SUBSTANDARD),
    (60, SUBSTANDARD),
    (61, DOUBTFUL),
    (90, DOUBTFUL),
    (91, LOSS),
    (400, LOSS),
])
def test_general_loan_buckets(dpd, category):
    assert classify_loan(100000, dpd, 'general', AS_OF).category == category

@pytest.mark.parametrize('dpd, category', [
    (90, CURRENT),
    (91, SUBSTANDARD),
    (180, SUBSTANDARD),
    (181, DOUBTFUL),
    (360, DOUBTFUL),
    (361, LOSS),
])
def test_housing_microfinance_buckets(dpd, category):
    classification = classify_loan(100000, dpd, 'housing_microfinance', AS_OF)
    assert classification.category == category
    assert classification.is_housing_microfinance

def test_provision_amount_and_review_date():
    current = classify_loan(Decimal('250000'), 0, 'general', AS_OF)
    assert current.provision_rate == Decimal('0.01')
    assert current.provision_amount == Decimal('2500.00')
    assert current.next_review_date == date(2026, 6, 30)

    doubtful = classify_loan(Decimal('250000'), 75, 'general', AS_OF)
    assert doubtful.provision_amount == Decimal('125000.00')
    assert doubtful.next_review_date == date(2026, 4, 30)
    assert doubtful.is_non_performing

def test_negative_dpd_is_treated_as_current():
    assert classify_loan(1000, -4, 'general', AS_OF).days_past_due == 0

def test_days_past_due():
    assert days_past_due(date(2026, 3, 1), AS_OF) == 30
    assert days_past_due(date(2026, 4, 15), AS_OF) == 0
    assert days_past_due(None, AS_OF) == 0

def test_portfolio_classification():
    exposures = [
        Exposure(1, Decimal('600000'), 0, 'general'),
        Exposure(2, Decimal('200000'), 45, 'general'),
        Exposure(3, Decimal('100000'), 120, 'general'),
        Exposure(4, Decimal('100000'), 10, 'general'),
    ]
    portfolio = calculate_portfolio_classification(exposures, AS_OF)

    assert portfolio['total_outstanding'] == Decimal('1000000.00')
    breakdown = portfolio['classification_breakdown']
    assert breakdown['current']['count'] == 1
    assert breakdown['esm']['amount'] == Decimal('100000.00')
    assert breakdown['substandard']['provision'] == Decimal('50000.00')
    assert breakdown['loss']['provision'] == Decimal('100000.00')
    # 6,000 + 5,000 + 50,000 + 100,000
    assert portfolio['total_provision_required'] == Decimal('161000.00')
    assert portfolio['npl_ratio'] == Decimal('30.00')
    assert portfolio['par30'] == Decimal('50.00')
    assert portfolio['par90'] == Decimal('25.00')
    assert portfolio['provision_coverage_ratio'] == Decimal('16.10')

def test_empty_portfolio():
    portfolio = calculate_portfolio_classification([], AS_OF)
    assert portfolio['total_outstanding'] == 0
    assert portfolio['npl_ratio'] == 0
    assert portfolio['par30'] == 0

def test_bot_report_compliance():
    exposures = [Exposure(1, Decimal('100000'), 10, 'general'), Exposure(2, Decimal('50000'), 0, 'general')]
    report = generate_bot_report_data(exposures, 'RYTHM Microfinance Limited', 'MSP001', AS_OF)
    assert report['compliance_status'] == 'BOT_COMPLIANT'
    assert report['report_date'] == '2026-03-31'
    assert report['msp_code'] == 'MSP001'
    assert report['criteria']['provision_rates'][LOSS] == 1.0

    wrong = LoanClassification(CURRENT, 10, Decimal('0.01'), Decimal('1000.00'), False, AS_OF)
    report = generate_bot_report_data(exposures, 'RYTHM Microfinance Limited', 'MSP001', AS_OF,
                                      classifications={1: wrong})
    assert report['compliance_status'] == 'NON_COMPLIANT'
    assert report['non_compliant_loans'] == [1]

def test_ecl_stages():
    exposures = [
        Exposure(1, Decimal('100000'), 0, 'general'),
        Exposure(2, Decimal('100000'), 30, 'general'),
        Exposure(3, Decimal('100000'), 31, 'general'),
        Exposure(4, Decimal('100000'), 91, 'general'),
    ]
    ecl = calculate_ecl_stages(exposures)
    stages = {row['stage']: row for row in ecl['stages']}
    assert stages[1]['count'] == 2
    assert stages[1]['provision'] == Decimal('1000.00')
    assert stages[2]['provision'] == Decimal('5000.00')
    assert stages[3]['provision'] == Decimal('50000.00')
    assert ecl['total_amount'] == Decimal('400000.00')
    assert ecl['total_provision'] == Decimal('56000.00')
