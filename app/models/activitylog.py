"""Activity log model.

The log_activity helper lives in `app/db.py`.
"""

import json

from db import db
from utils import now_utc, isoformat_utc


class ActivityLog(db.Model):
    __tablename__ = "activity_log"

    id = db.Column(db.Integer, primary_key=True)
    timestamp = db.Column(db.DateTime, default=now_utc, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("user.id", ondelete="SET NULL"), nullable=True)
    action_type = db.Column(db.String(50), index=True)
    details = db.Column(db.Text)

    __table_args__ = (db.Index("idx_activity_timestamp_action", "timestamp", "action_type"),)

    def to_dict(self):
        return {
            "id": self.id,
            "timestamp": isoformat_utc(self.timestamp),
            "userId": self.user_id,
            "actionType": self.action_type,
            "details": json.loads(self.details) if self.details else {},
        }
