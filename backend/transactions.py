"""Multi-step writes with bounded retry on transient database conflicts."""

import logging
import random
import time

from flask import current_app
from sqlalchemy.exc import DBAPIError, OperationalError

from backend.errors import TransientWriteConflict
from models import db

logger = logging.getLogger(__name__)

DEFAULT_ATTEMPTS = 3
BASE_DELAY_SECONDS = 0.05

TRANSIENT_MARKERS = (
    'database is locked',
    'deadlock',
    'could not serialize',
    'serialization failure',
    'write conflict',
    'lock wait timeout',
)


def is_transient(exc):
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    message = str(getattr(exc, 'orig', exc) or '').lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


def _configured_attempts():
    try:
        return max(int(current_app.config.get('TRANSACTION_MAX_RETRIES', DEFAULT_ATTEMPTS)), 1)
    except (RuntimeError, TypeError, ValueError):
        return DEFAULT_ATTEMPTS


def run_in_transaction(work, attempts=None, retry_on=(), sleep=time.sleep):
    """
    Run `work()` and commit its changes as one unit.

    Transient conflicts (and any exception type listed in `retry_on`) roll the
    session back and re-run `work` after a jittered exponential backoff. When
    every attempt fails the caller gets TransientWriteConflict. Anything else
    rolls back and propagates unchanged, so no partial writes survive.
    """
    attempts = attempts or _configured_attempts()
    for attempt in range(1, attempts + 1):
        try:
            result = work()
            db.session.commit()
            return result
        except (OperationalError, DBAPIError) + tuple(retry_on) as exc:
            db.session.rollback()
            retryable = isinstance(exc, tuple(retry_on)) or is_transient(exc)
            if not retryable:
                raise
            if attempt >= attempts:
                logger.error(f"Transaction failed after {attempts} attempts: {exc}")
                raise TransientWriteConflict(
                    'The record is being modified by another request, please retry'
                ) from exc
            delay = BASE_DELAY_SECONDS * (2 ** (attempt - 1))
            delay += random.uniform(0, delay)
            logger.warning(f"Transient write conflict (attempt {attempt}/{attempts}), retrying in {delay:.3f}s")
            sleep(delay)
        except Exception:
            db.session.rollback()
            raise
