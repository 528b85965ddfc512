"""Row change notifications dispatched after commit

Mapper events collect inserts, updates and deletes of the tracked tables on
the session; once the transaction commits, subscribers registered for that
table receive one payload per change. Rolled back changes are discarded.
Callbacks run after the commit and must not use the session to write.
"""
import logging
import threading
from sqlalchemy import event, inspect
from sqlalchemy.orm import Session
from flask import current_app

logger = logging.getLogger(__name__)

PENDING_KEY = 'rythm_pending_changes'

TRACKED_MODELS = (
    'Loan', 'LoanApplication', 'LoanRepayment', 'LoanDisbursement',
    'DisbursementQueue', 'LoanRestructuring', 'JournalEntry',
)

_listeners_installed = False

def _snapshot(target):
    state = inspect(target)
    return {attr.key: attr.value for attr in state.attrs if attr.key in state.mapper.columns}

def _changed_columns(target):
    state = inspect(target)
    return [attr.key for attr in state.attrs
            if attr.key in state.mapper.columns and attr.history.has_changes()]

def _queue_change(event_type):
    def listener(mapper, connection, target):
        session = Session.object_session(target)
        if session is None:
            return
        payload = {
            'table': mapper.local_table.name,
            'event_type': event_type,
            'new': _snapshot(target),
        }
        if event_type == 'UPDATE':
            payload['changed'] = _changed_columns(target)
        session.info.setdefault(PENDING_KEY, []).append(payload)
    return listener

def _after_commit(session):
    changes = session.info.pop(PENDING_KEY, [])
    if not changes:
        return
    try:
        notifier = current_app.extensions.get('change_notifier')
    except RuntimeError:
        # Committed outside an application context
        notifier = None
    if notifier is None:
        return
    for payload in changes:
        notifier.publish(payload)

def _after_rollback(session):
    session.info.pop(PENDING_KEY, None)

def install_listeners():
    """Attach the mapper and session events once per process"""
    global _listeners_installed
    if _listeners_installed:
        return
    from rythm import models

    for name in TRACKED_MODELS:
        model = getattr(models, name)
        event.listen(model, 'after_insert', _queue_change('INSERT'))
        event.listen(model, 'after_update', _queue_change('UPDATE'))
        event.listen(model, 'after_delete', _queue_change('DELETE'))

    event.listen(Session, 'after_commit', _after_commit)
    event.listen(Session, 'after_rollback', _after_rollback)
    _listeners_installed = True

class ChangeNotifier:
    """Per-table callback registry"""

    def __init__(self, app=None):
        self._subscribers = {}
        self._lock = threading.Lock()
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        app.extensions['change_notifier'] = self
        install_listeners()

    def subscribe(self, table, callback, events=None):
        """Register callback for changes to table; returns an unsubscribe function"""
        entry = (callback, frozenset(events) if events else None)
        with self._lock:
            self._subscribers.setdefault(table, []).append(entry)

        def unsubscribe():
            with self._lock:
                entries = self._subscribers.get(table, [])
                if entry in entries:
                    entries.remove(entry)
        return unsubscribe

    def subscriber_count(self, table=None):
        with self._lock:
            if table is not None:
                return len(self._subscribers.get(table, []))
            return sum(len(entries) for entries in self._subscribers.values())

    def publish(self, payload):
        with self._lock:
            entries = list(self._subscribers.get(payload['table'], []))
        for callback, events in entries:
            if events is not None and payload['event_type'] not in events:
                continue
            try:
                callback(payload)
            except Exception:
                logger.exception('Change subscriber failed for %s %s', payload['table'], payload['event_type'])

    def clear(self):
        with self._lock:
            self._subscribers.clear()
