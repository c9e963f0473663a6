"""
Model: User

Root accounts own an RD API key; sub-accounts point at a parent through
parent_user_id and borrow the parent's key (one hop, see credential_resolver).
"""

from db import db
from utils import now_utc
from flask_login import UserMixin
from constants import DISABLED_REASON_RD_EXPIRED


class User(UserMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(100), unique=True, nullable=False)
    password = db.Column(db.String(255), nullable=False)
    admin_access = db.Column(db.Boolean, default=False, nullable=False)
    parent_user_id = db.Column(db.Integer, db.ForeignKey("user.id", ondelete="CASCADE"), nullable=True, index=True)
    rd_api_key = db.Column(db.String(255))
    enabled = db.Column(db.Boolean, default=True, nullable=False)
    disabled_reason = db.Column(db.String(20))
    created_at = db.Column(db.DateTime, default=now_utc)
    last_login_at = db.Column(db.DateTime)

    parent = db.relationship("User", remote_side=[id], backref=db.backref("sub_accounts", lazy=True))

    @property
    def is_admin(self):
        return bool(self.admin_access)

    @property
    def is_sub_account(self):
        return self.parent_user_id is not None

    @property
    def is_rd_expired(self):
        return not self.enabled and self.disabled_reason == DISABLED_REASON_RD_EXPIRED

    def has_admin_access(self):
        return self.is_admin

    def has_access(self, access):
        if access == "admin":
            return self.has_admin_access()
        elif access == "user":
            return True
        return False
