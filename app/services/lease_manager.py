"""
RD lease manager: one credential, one active network location, system-wide.

Every state change is a single SQL statement against rd_leases, whose only
UNIQUE key is the credential fingerprint. Two servers racing to admit the same
credential from different locations therefore serialize in SQLite and exactly
one of them wins; no in-process lock is involved.

State per fingerprint:
    Free --try_acquire--> Live --heartbeat--> Live --release/sweep--> Free
A try_acquire from another location while Live is rejected and changes nothing.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import and_, case, delete, or_, update
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import SQLAlchemyError

from db import db
from metrics import lease_acquisitions_total, leases_swept_total
from models.lease import RdLease
from utils import now_utc, ensure_utc, short_fingerprint

logger = logging.getLogger("main")

DEFAULT_LIVENESS_WINDOW = timedelta(seconds=30)

# A rejected upsert is followed by a read of the winning row; if that row has
# vanished in between (released or swept) the acquire is simply retried.
MAX_ACQUIRE_ATTEMPTS = 3


@dataclass(frozen=True)
class AcquireResult:
    admitted: bool
    conflicting_location: Optional[str] = None
    conflicting_holder: Optional[str] = None
    conflicting_user_id: Optional[int] = None
    lease_started_at: Optional[datetime] = None

    @classmethod
    def admit(cls):
        return cls(admitted=True)

    @classmethod
    def reject(cls, lease: RdLease):
        return cls(
            admitted=False,
            conflicting_location=lease.ip_address,
            conflicting_holder=lease.username,
            conflicting_user_id=lease.user_id,
            lease_started_at=ensure_utc(lease.stream_started_at),
        )


class LeaseManager:
    """Grants and renews leases on (credential fingerprint, network location)"""

    def __init__(self, liveness_window: timedelta = DEFAULT_LIVENESS_WINDOW, clock: Callable[[], datetime] = now_utc):
        if liveness_window <= timedelta(0):
            raise ValueError("liveness_window must be positive")
        self.liveness_window = liveness_window
        self.clock = clock

    @classmethod
    def from_settings(cls, coordinator_settings, clock=now_utc):
        return cls(
            liveness_window=timedelta(seconds=coordinator_settings["lease_liveness_seconds"]),
            clock=clock,
        )

    def _stale_before(self, now):
        return now - self.liveness_window

    def try_acquire(self, fingerprint: str, network_location: str, holder_user_id: int,
                    holder_name: Optional[str] = None) -> AcquireResult:
        """Admit the caller unless a live lease exists for another location.

        Re-acquiring from the location that already holds the lease is always
        admitted and keeps the original start time.
        """
        if not fingerprint or not network_location:
            raise ValueError("fingerprint and network_location are required")

        for _ in range(MAX_ACQUIRE_ATTEMPTS):
            now = self.clock()
            if self._upsert(fingerprint, network_location, holder_user_id, holder_name, now):
                lease_acquisitions_total.labels(outcome="admitted").inc()
                logger.info(
                    f"[RD Lease] Admitted {holder_name or holder_user_id} on {network_location} "
                    f"for {short_fingerprint(fingerprint)}"
                )
                return AcquireResult.admit()

            holder = self.get_lease(fingerprint)
            if holder is not None and holder.is_live(now, self.liveness_window):
                lease_acquisitions_total.labels(outcome="rejected").inc()
                logger.warning(
                    f"[RD Lease] Concurrent stream blocked for {short_fingerprint(fingerprint)}: "
                    f"held on {holder.ip_address} by {holder.username}, requested from {network_location}"
                )
                return AcquireResult.reject(holder)

        # Holder kept flapping between our write and our read; report it as busy
        lease_acquisitions_total.labels(outcome="rejected").inc()
        holder = self.get_lease(fingerprint)
        if holder is None:
            return AcquireResult(admitted=False)
        return AcquireResult.reject(holder)

    def _upsert(self, fingerprint, network_location, holder_user_id, holder_name, now):
        stale_before = self._stale_before(now)
        leases = RdLease.__table__

        stmt = insert(RdLease).values(
            fingerprint=fingerprint,
            ip_address=network_location,
            user_id=holder_user_id,
            username=holder_name,
            stream_started_at=now,
            last_heartbeat_at=now,
        )
        same_location = leases.c.ip_address == stmt.excluded.ip_address
        still_live = leases.c.last_heartbeat_at > stale_before
        stmt = stmt.on_conflict_do_update(
            index_elements=[leases.c.fingerprint],
            set_={
                "ip_address": stmt.excluded.ip_address,
                "user_id": stmt.excluded.user_id,
                "username": stmt.excluded.username,
                "stream_started_at": case(
                    (and_(same_location, still_live), leases.c.stream_started_at),
                    else_=stmt.excluded.stream_started_at,
                ),
                "last_heartbeat_at": stmt.excluded.last_heartbeat_at,
            },
            # Only the current holder or a takeover of a dead lease may write
            where=or_(same_location, leases.c.last_heartbeat_at <= stale_before),
        )
        try:
            result = db.session.execute(stmt)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise
        return result.rowcount > 0

    def heartbeat(self, fingerprint: str, network_location: str) -> bool:
        """Renew a live lease held by this location.

        Returns False when the caller does not hold a live lease (never had
        one, was swept, or another location owns it); it must re-acquire.
        """
        now = self.clock()
        stmt = (
            update(RdLease)
            .where(
                RdLease.fingerprint == fingerprint,
                RdLease.ip_address == network_location,
                RdLease.last_heartbeat_at > self._stale_before(now),
            )
            .values(last_heartbeat_at=now)
            .execution_options(synchronize_session=False)
        )
        try:
            result = db.session.execute(stmt)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

        if result.rowcount == 0:
            logger.debug(f"[RD Lease] Heartbeat for unheld lease {short_fingerprint(fingerprint)} from {network_location}")
            return False
        return True

    def release(self, fingerprint: str, network_location: str) -> None:
        """Drop the lease if this location holds it. Idempotent."""
        stmt = (
            delete(RdLease)
            .where(RdLease.fingerprint == fingerprint, RdLease.ip_address == network_location)
            .execution_options(synchronize_session=False)
        )
        try:
            result = db.session.execute(stmt)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

        if result.rowcount:
            logger.info(f"[RD Lease] Released {short_fingerprint(fingerprint)} on {network_location}")

    def sweep_expired(self) -> int:
        """Delete every lease whose last heartbeat is outside the liveness window"""
        stmt = (
            delete(RdLease)
            .where(RdLease.last_heartbeat_at <= self._stale_before(self.clock()))
            .execution_options(synchronize_session=False)
        )
        try:
            result = db.session.execute(stmt)
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            raise

        removed = result.rowcount or 0
        if removed:
            leases_swept_total.inc(removed)
            logger.debug(f"[RD Lease] Swept {removed} stale lease(s)")
        return removed

    def get_lease(self, fingerprint: str) -> Optional[RdLease]:
        return (
            RdLease.query.filter_by(fingerprint=fingerprint)
            .execution_options(populate_existing=True)
            .first()
        )

    def get_active_leases(self) -> List[RdLease]:
        return (
            RdLease.query.filter(RdLease.last_heartbeat_at > self._stale_before(self.clock()))
            .order_by(RdLease.last_heartbeat_at.desc())
            .all()
        )
