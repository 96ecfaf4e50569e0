"""
Periodic maintenance jobs: expire stale slot locks, drain the POS event queue,
and time out unpaid reservations. Each job opens its own session.
"""
import logging

from tablebook.db.session import SessionLocal
from tablebook.services.lock_service import reap_expired_locks
from tablebook.services.rate_limit_service import purge_expired
from tablebook.services.reconciliation_service import drain_queue
from tablebook.services.reservation_service import expire_pending_payments

logger = logging.getLogger(__name__)


def run_lock_reaper_job() -> None:
    db = SessionLocal()
    try:
        expired = reap_expired_locks(db)
        purged = purge_expired(db)
        if expired or purged:
            logger.info("Lock reaper: expired=%s rate_buckets_purged=%s", expired, purged)
    except Exception as e:
        db.rollback()
        logger.warning("Lock reaper failed: %s", e, exc_info=True)
    finally:
        db.close()


def run_queue_drain_job() -> None:
    db = SessionLocal()
    try:
        result = drain_queue(db)
        if result.processed or result.retried or result.escalated:
            logger.info(
                "POS queue: processed=%s retried=%s escalated=%s",
                result.processed,
                result.retried,
                result.escalated,
            )
    except Exception as e:
        db.rollback()
        logger.warning("POS queue drain failed: %s", e, exc_info=True)
    finally:
        db.close()


def run_payment_timeout_job() -> None:
    db = SessionLocal()
    try:
        expire_pending_payments(db)
    except Exception as e:
        db.rollback()
        logger.warning("Payment timeout job failed: %s", e, exc_info=True)
    finally:
        db.close()
