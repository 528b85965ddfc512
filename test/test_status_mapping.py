from rythm.services.status_mapping import (get_active_loan_statuses, get_all_mappings, get_closure_eligible_statuses,
                                           get_loan_application_status, get_restructuring_eligible_statuses,
                                           get_loans_table_status, get_stage, get_status_description,
                                           is_valid_application_status, is_valid_loans_status)

def test_application_to_loans_status():
    assert get_loans_table_status('disbursed') == 'active'
    assert get_loans_table_status('closed') == 'repaid'
    assert get_loans_table_status('approved') == 'none'
    assert get_loans_table_status('mystery') == 'none'

def test_loans_to_application_status():
    assert get_loan_application_status('active') == 'disbursed'
    assert get_loan_application_status('overdue') == 'disbursed'
    assert get_loan_application_status('repaid') == 'closed'
    assert get_loan_application_status('mystery') == 'pending'

def test_descriptions_and_stages():
    assert get_status_description('disbursed', 'overdue') == 'Active loan with overdue payments'
    assert get_status_description('nope') == 'Unknown status'
    assert get_stage('under_review') == 'processing'
    assert get_stage('disbursed', 'written_off') == 'default'
    assert get_stage('nope') == 'application'

def test_status_validation():
    assert is_valid_application_status('pending_committee_review')
    assert not is_valid_application_status('active')
    assert is_valid_loans_status('written_off')
    assert not is_valid_loans_status('disbursed')

def test_active_statuses():
    statuses = get_active_loan_statuses()
    assert statuses['loans'] == ['active', 'overdue']
    assert statuses['loan_application'] == ['disbursed']

def test_mappings_are_serializable():
    mappings = get_all_mappings()
    assert len(mappings) == 10
    assert mappings[0] == {'application_status': 'pending', 'loans_status': 'none',
                           'description': 'New loan application submitted', 'stage': 'application'}

def test_eligible_statuses():
    assert get_restructuring_eligible_statuses()['loans'] == ['active', 'overdue']
    closure = get_closure_eligible_statuses()
    assert 'repaid' in closure['loans']
    assert closure['loan_application'] == ['disbursed', 'closed']
