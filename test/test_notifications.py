from rythm import db
from rythm.services.notifications import ChangeNotifier

def test_update_published_after_commit(app, loan):
    notifier = app.extensions['change_notifier']
    received = []
    unsubscribe = notifier.subscribe('loans', received.append, events=('UPDATE',))

    loan.status = 'overdue'
    db.session.flush()
    assert received == []

    db.session.commit()
    assert len(received) == 1
    payload = received[0]
    assert payload['table'] == 'loans'
    assert payload['event_type'] == 'UPDATE'
    assert payload['new']['status'] == 'overdue'
    assert payload['new']['id'] == loan.id
    assert 'status' in payload['changed']

    unsubscribe()
    assert notifier.subscriber_count('loans') == 0

def test_rolled_back_changes_are_discarded(app, loan):
    notifier = app.extensions['change_notifier']
    received = []
    notifier.subscribe('loans', received.append)

    loan.status = 'written_off'
    db.session.flush()
    db.session.rollback()
    db.session.commit()

    assert received == []
    assert loan.status == 'active'

def test_inserts_reach_table_subscribers_only(app, borrower, product, new_application):
    notifier = app.extensions['change_notifier']
    applications = []
    loans = []
    notifier.subscribe('loan_applications', applications.append, events=('INSERT',))
    notifier.subscribe('loans', loans.append)

    application = new_application(number='APP/26/00042', status='pending')

    assert [payload['new']['application_number'] for payload in applications] == ['APP/26/00042']
    assert applications[0]['new']['id'] == application.id
    assert loans == []

def test_failing_subscriber_does_not_stop_others():
    notifier = ChangeNotifier()
    received = []

    def broken(payload):
        raise RuntimeError('subscriber bug')

    notifier.subscribe('journal_entries', broken)
    notifier.subscribe('journal_entries', received.append)
    notifier.publish({'table': 'journal_entries', 'event_type': 'INSERT', 'new': {'id': 1}})

    assert received == [{'table': 'journal_entries', 'event_type': 'INSERT', 'new': {'id': 1}}]
    assert notifier.subscriber_count() == 2
    notifier.clear()
    assert notifier.subscriber_count() == 0

def test_event_filter():
    notifier = ChangeNotifier()
    received = []
    notifier.subscribe('loan_repayments', received.append, events=('DELETE',))
    notifier.publish({'table': 'loan_repayments', 'event_type': 'INSERT', 'new': {}})
    assert received == []
