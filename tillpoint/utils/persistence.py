"""
tillpoint/utils/persistence.py
------------------------------
Small helpers shared by the ledger and checkout services.
"""
import logging
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

from tillpoint import db
from tillpoint.errors import NotFound

logger = logging.getLogger(__name__)


@contextmanager
def unit_of_work():
    """
    Commit on success; roll back and re-raise on any failure.
    Nothing is retried; the caller decides whether to try again.
    """
    try:
        yield db.session
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error(f"Ledger write rolled back: {exc}")
        raise
    except Exception:
        db.session.rollback()
        raise


def get_or_raise(model, record_id):
    """Fetch by primary key or raise NotFound."""
    record = db.session.get(model, record_id)
    if record is None:
        raise NotFound(f'{model.__name__} {record_id} not found.')
    return record
