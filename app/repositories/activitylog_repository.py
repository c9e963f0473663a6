"""
Repository for ActivityLog database operations
"""

from db import db
from models.activitylog import ActivityLog


class ActivityLogRepository:
    """Repository for ActivityLog database operations"""

    @staticmethod
    def get_recent(limit=50, action_type=None):
        """Most recent entries, optionally filtered by action type"""
        query = ActivityLog.query
        if action_type:
            query = query.filter_by(action_type=action_type)
        return query.order_by(ActivityLog.timestamp.desc(), ActivityLog.id.desc()).limit(limit).all()
