"""
Credential resolution: which RD API key applies to a user.

A sub-account with no key of its own borrows its parent's key. The lookup
goes exactly one hop; a parent's parent is never consulted.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from db import db
from exceptions import NoCredentialException
from models.user import User
from repositories.user_repository import UserRepository
from utils import credential_fingerprint, short_fingerprint

logger = logging.getLogger("main")


@dataclass(frozen=True)
class ResolvedCredential:
    user_id: int
    owner_user_id: int
    api_key: str
    fingerprint: str
    inherited: bool = False

    def __repr__(self):
        # api_key stays out of reprs so it never lands in a log line
        return (
            f"ResolvedCredential(user_id={self.user_id}, owner_user_id={self.owner_user_id}, "
            f"fingerprint={short_fingerprint(self.fingerprint)}, inherited={self.inherited})"
        )


@dataclass
class KnownCredential:
    fingerprint: str
    api_key: str
    owner_ids: List[int]


def find_credential(user_id) -> Optional[ResolvedCredential]:
    """Resolve a user's credential, or None when there is nothing to resolve"""
    user = db.session.get(User, user_id)
    if user is None:
        logger.warning(f"User {user_id} not found while resolving RD credential")
        return None

    if user.rd_api_key:
        return ResolvedCredential(
            user_id=user.id,
            owner_user_id=user.id,
            api_key=user.rd_api_key,
            fingerprint=credential_fingerprint(user.rd_api_key),
        )

    if user.parent_user_id:
        parent = db.session.get(User, user.parent_user_id)
        if parent is not None and parent.rd_api_key:
            logger.debug(f"User {user.id} inheriting RD credential from parent {parent.id}")
            return ResolvedCredential(
                user_id=user.id,
                owner_user_id=parent.id,
                api_key=parent.rd_api_key,
                fingerprint=credential_fingerprint(parent.rd_api_key),
                inherited=True,
            )

    return None


def resolve_credential(user_id) -> ResolvedCredential:
    """Like find_credential, but a missing credential raises NoCredentialException"""
    credential = find_credential(user_id)
    if credential is None:
        logger.warning(f"No RD credential found for user {user_id}")
        raise NoCredentialException(user_id)
    return credential


def get_effective_user_id(user_id):
    """Parent id for sub-accounts, own id otherwise"""
    user = db.session.get(User, user_id)
    if user is None or not user.parent_user_id:
        return user_id
    return user.parent_user_id


def list_known_credentials() -> List[KnownCredential]:
    """Every distinct credential on record, grouped by fingerprint.

    Two root accounts configured with the same key share one entry, so the
    upstream service is asked about each key once per cycle.
    """
    known: Dict[str, KnownCredential] = {}
    for owner in UserRepository.get_credential_owners():
        fingerprint = credential_fingerprint(owner.rd_api_key)
        entry = known.get(fingerprint)
        if entry is None:
            known[fingerprint] = KnownCredential(fingerprint=fingerprint, api_key=owner.rd_api_key, owner_ids=[owner.id])
        else:
            entry.owner_ids.append(owner.id)
    return list(known.values())
