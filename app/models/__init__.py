"""
Models package

All database models live in separate files:
- user.py
- apitoken.py
- lease.py
- linkcache.py
- etc.
"""

from .user import User
from .apitoken import ApiToken
from .activitylog import ActivityLog
from .lease import RdLease
from .linkcache import RdLinkCache
from .credentialvalidity import CredentialValidity

__all__ = [
    "User",
    "ApiToken",
    "ActivityLog",
    "RdLease",
    "RdLinkCache",
    "CredentialValidity",
]
