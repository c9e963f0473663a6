"""
Real-Debrid expiry validation.

Asks the upstream service when each known credential's subscription ends,
records the answer, and disables the owning accounts once it has passed.
An upstream failure is "unknown", never "expired": nothing is written and
login behaviour stays as it was.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from constants import DISABLED_REASON_RD_EXPIRED
from db import log_activity
from exceptions import UpstreamValidationFailure
from metrics import expiry_checks_total
from repositories.credentialvalidity_repository import CredentialValidityRepository
from repositories.user_repository import UserRepository
from services.credential_resolver import list_known_credentials
from services.realdebrid import RealDebridClient
from utils import now_utc, credential_fingerprint, days_until, isoformat_utc, short_fingerprint

logger = logging.getLogger("main")


@dataclass(frozen=True)
class ValidationOutcome:
    fingerprint: str
    expires_at: datetime
    account_type: Optional[str]
    expired: bool
    disabled_user_ids: List[int]
    reenabled_user_ids: List[int]


class ExpiryValidator:
    def __init__(self, client: RealDebridClient, clock: Callable[[], datetime] = now_utc):
        self.client = client
        self.clock = clock

    def check_credential(self, fingerprint: str, api_key: str, owner_ids: List[int]) -> ValidationOutcome:
        """Revalidate one credential.

        Raises UpstreamValidationFailure without touching any state when the
        upstream answer is missing or unusable.
        """
        info = self.client.get_user(api_key)
        if info.expires_at is None:
            raise UpstreamValidationFailure("No expiry date returned from RD API")

        now = self.clock()
        CredentialValidityRepository.record(fingerprint, info.expires_at, now, info.account_type)

        expired = info.expires_at < now
        disabled, reenabled = [], []
        if expired:
            for user in UserRepository.get_by_ids(owner_ids):
                if user.enabled:
                    disabled.append(user.id)
            UserRepository.set_enabled(disabled, False, DISABLED_REASON_RD_EXPIRED)
            for user_id in disabled:
                log_activity("account_disabled", user_id=user_id, reason=DISABLED_REASON_RD_EXPIRED,
                             fingerprint=short_fingerprint(fingerprint), expired_at=isoformat_utc(info.expires_at))
            logger.warning(
                f"[RD Expiry] {short_fingerprint(fingerprint)} expired at {isoformat_utc(info.expires_at)}; "
                f"disabled users {disabled}"
            )
        else:
            for user in UserRepository.get_by_ids(owner_ids):
                if not user.enabled and user.disabled_reason == DISABLED_REASON_RD_EXPIRED:
                    reenabled.append(user.id)
            UserRepository.reenable(reenabled, DISABLED_REASON_RD_EXPIRED)
            for user_id in reenabled:
                log_activity("account_reenabled", user_id=user_id, fingerprint=short_fingerprint(fingerprint),
                             expires_at=isoformat_utc(info.expires_at))
            logger.info(
                f"[RD Expiry] {short_fingerprint(fingerprint)}: "
                f"{days_until(info.expires_at, now)} days remaining"
            )

        return ValidationOutcome(
            fingerprint=fingerprint,
            expires_at=info.expires_at,
            account_type=info.account_type,
            expired=expired,
            disabled_user_ids=disabled,
            reenabled_user_ids=reenabled,
        )

    def run_batch(self) -> dict:
        """Check every known credential; one failure never stops the rest"""
        checked = expired = failed = 0
        for credential in list_known_credentials():
            try:
                outcome = self.check_credential(credential.fingerprint, credential.api_key, credential.owner_ids)
            except (UpstreamValidationFailure, SQLAlchemyError) as e:
                failed += 1
                expiry_checks_total.labels(outcome="failed").inc()
                logger.error(f"[RD Expiry] Check failed for {short_fingerprint(credential.fingerprint)}: {e}")
                continue

            checked += 1
            if outcome.expired:
                expired += 1
                expiry_checks_total.labels(outcome="expired").inc()
            else:
                expiry_checks_total.labels(outcome="valid").inc()

        summary = {"checked": checked, "expired": expired, "failed": failed}
        logger.info(f"[RD Expiry] Checked {checked} credentials, {expired} expired, {failed} errors")
        log_activity("rd_expiry_check_completed", **summary)
        return summary

    def validate_key(self, api_key: str, record: bool = True) -> dict:
        """Validate a key before it is stored; upstream errors propagate.

        A successful answer also refreshes the key's validity record.
        """
        info = self.client.get_user(api_key)
        now = self.clock()
        if record and info.expires_at is not None:
            CredentialValidityRepository.record(credential_fingerprint(api_key), info.expires_at, now,
                                                info.account_type)
        return {
            "valid": True,
            "expiryDate": isoformat_utc(info.expires_at),
            "daysRemaining": days_until(info.expires_at, now) if info.expires_at else None,
            "isExpired": bool(info.expires_at and info.expires_at < now),
            "accountType": info.account_type or "unknown",
        }
