# Overview: Data-store primitives for cross-process coordination; retries and compare-and-set updates.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import StoreUnavailableError

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical reads.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def conditional_update(query, values: dict) -> int:
    """
    Run a single UPDATE ... WHERE <query filters> and return the row count.

    The WHERE clause is the guard: a zero count means another writer got
    there first (or the row is gone) and the caller must re-read to find out
    which. Identity-map copies of the touched rows are expired so later
    reads in this session see the new values.
    """
    count = query.update(values, synchronize_session=False)
    db.session.expire_all()
    return count


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, lock and statement timeouts) and
    StaleDataError. When the last attempt still fails the operation raises
    StoreUnavailableError, which callers surface as a retryable 503.

    Any other exception rolls the session back before propagating, so an
    operation that fails half-way (stock reserved, order row not yet written)
    leaves nothing behind.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                logger.error("Store operation failed after %d attempts: %s", attempts, exc)
                raise StoreUnavailableError("Data store unavailable, please retry") from exc
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
