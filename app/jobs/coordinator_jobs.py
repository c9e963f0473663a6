"""
Coordinator maintenance jobs.

Each job is an idempotent batch run inside its own app context; none of
them holds state shared with request handlers.
"""
import logging

from sqlalchemy.exc import SQLAlchemyError

from app_services.coordinator_service import get_services

logger = logging.getLogger('main')


def sweep_leases_job(app):
    """Delete leases that stopped heartbeating"""
    with app.app_context():
        try:
            removed = get_services(app).lease_manager.sweep_expired()
        except SQLAlchemyError as e:
            logger.error(f"[RD Lease] Sweep failed: {e}")
            return 0
        if removed:
            logger.debug(f"[RD Lease] Sweeper removed {removed} lease(s)")
        return removed


def evict_link_cache_job(app):
    """Drop link cache rows past their TTL"""
    with app.app_context():
        try:
            return get_services(app).link_cache.evict_expired()
        except SQLAlchemyError as e:
            logger.error(f"[RD Cache] Eviction failed: {e}")
            return 0


def check_rd_expiry_job(app):
    """Revalidate every known RD credential against Real-Debrid"""
    with app.app_context():
        logger.info("[RD Expiry] Starting scheduled expiry check...")
        summary = get_services(app).expiry_validator.run_batch()
        logger.info(f"[RD Expiry] Scheduled check completed: {summary}")
        return summary
