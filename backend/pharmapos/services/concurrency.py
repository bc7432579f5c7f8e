# Overview: Service-layer helpers for transaction scope and row locking.

from __future__ import annotations

from contextlib import contextmanager

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


@contextmanager
def atomic():
    """
    All-or-nothing unit of work on the current session.

    Commits when the block exits normally; rolls back and re-raises on any
    exception so no partial write survives. There is no retry: storage
    failures reach the caller unmodified.
    """
    try:
        yield db.session
        db.session.commit()
    except BaseException:
        db.session.rollback()
        raise
