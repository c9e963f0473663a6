"""
Model: CredentialValidity
Last upstream-reported expiry per credential fingerprint
"""

from db import db
from utils import now_utc, ensure_utc


class CredentialValidity(db.Model):
    __tablename__ = "credential_validity"

    fingerprint = db.Column(db.String(64), primary_key=True)
    expires_at = db.Column(db.DateTime)
    checked_at = db.Column(db.DateTime, nullable=False, default=now_utc)
    account_type = db.Column(db.String(30))

    def is_expired(self, now=None):
        if self.expires_at is None:
            return False
        return ensure_utc(self.expires_at) < (now or now_utc())
