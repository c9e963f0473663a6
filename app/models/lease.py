"""
Model: RdLease

One row per RD credential currently streaming. The UNIQUE constraint is on
the fingerprint alone (not fingerprint + ip), so two locations racing for the
same credential collide in storage instead of in application code.
"""

from db import db
from utils import now_utc, ensure_utc, isoformat_utc


class RdLease(db.Model):
    __tablename__ = "rd_leases"

    id = db.Column(db.Integer, primary_key=True)
    fingerprint = db.Column(db.String(64), nullable=False)
    ip_address = db.Column(db.String(64), nullable=False)
    user_id = db.Column(db.Integer, nullable=False)
    username = db.Column(db.String(100))
    stream_started_at = db.Column(db.DateTime, nullable=False, default=now_utc)
    last_heartbeat_at = db.Column(db.DateTime, nullable=False, default=now_utc)

    __table_args__ = (
        db.UniqueConstraint("fingerprint", name="uq_rd_leases_fingerprint"),
        db.Index("idx_rd_leases_heartbeat", "last_heartbeat_at"),
    )

    def is_live(self, now, liveness_window):
        return ensure_utc(self.last_heartbeat_at) > now - liveness_window

    def to_dict(self):
        return {
            "fingerprint": self.fingerprint[:12],
            "ipAddress": self.ip_address,
            "userId": self.user_id,
            "username": self.username,
            "startedAt": isoformat_utc(self.stream_started_at),
            "lastHeartbeatAt": isoformat_utc(self.last_heartbeat_at),
        }
