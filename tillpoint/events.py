"""
tillpoint/events.py
-------------------
Live subscriptions over the local ledger.

Dependent projections (the alert feed, dashboard caches) register
interest in a set of table names. While a transaction flushes, the
names of every table it inserts into, updates or deletes from are
collected on the session; once the transaction commits, each
subscriber whose tables intersect that set is called with the changed
names. A rollback discards the collected names.

Callbacks run inside the commit and must not use the session. Mark a
cache stale and recompute on the next read instead.
"""
import logging
from typing import Callable, Iterable

from sqlalchemy import event

logger = logging.getLogger(__name__)

_CHANGED_KEY = 'tillpoint_changed_tables'


class LedgerEvents:
    """Flask-style extension object: create once, init_app per app."""

    def __init__(self):
        self._subscribers = []
        self._listening = False

    def init_app(self, app):
        from tillpoint import db
        if not self._listening:
            event.listen(db.session, 'after_flush', self._collect)
            event.listen(db.session, 'after_commit', self._dispatch)
            event.listen(db.session, 'after_rollback', self._discard)
            self._listening = True
        app.extensions['ledger_events'] = self

    # ── Subscription API ──────────────────────────────────────────

    def subscribe(self, tables: Iterable[str], callback: Callable[[frozenset], None]):
        """
        Call `callback(changed_tables)` after every commit touching any
        of `tables`. Returns a zero-argument function that unsubscribes.
        """
        entry = (frozenset(tables), callback)
        self._subscribers.append(entry)

        def unsubscribe():
            if entry in self._subscribers:
                self._subscribers.remove(entry)
        return unsubscribe

    # ── Session hooks ─────────────────────────────────────────────

    def _collect(self, session, flush_context):
        changed = session.info.setdefault(_CHANGED_KEY, set())
        for obj in list(session.new) + list(session.dirty) + list(session.deleted):
            table = getattr(obj, '__tablename__', None)
            if table:
                changed.add(table)

    def _dispatch(self, session):
        changed = frozenset(session.info.pop(_CHANGED_KEY, ()))
        if not changed:
            return
        for tables, callback in list(self._subscribers):
            if tables & changed:
                try:
                    callback(changed)
                except Exception:
                    logger.exception("Ledger subscriber %r failed", callback)

    def _discard(self, session):
        session.info.pop(_CHANGED_KEY, None)


ledger_events = LedgerEvents()
