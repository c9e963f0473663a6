"""
Repository for CredentialValidity database operations
"""

from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.exc import SQLAlchemyError
from db import db
from models.credentialvalidity import CredentialValidity


class CredentialValidityRepository:
    """Repository for CredentialValidity database operations"""

    @staticmethod
    def get(fingerprint):
        return db.session.get(CredentialValidity, fingerprint)

    @staticmethod
    def get_many(fingerprints):
        if not fingerprints:
            return {}
        rows = CredentialValidity.query.filter(CredentialValidity.fingerprint.in_(list(fingerprints))).all()
        return {row.fingerprint: row for row in rows}

    @staticmethod
    def record(fingerprint, expires_at, checked_at, account_type=None):
        """Overwrite the validity record for a fingerprint"""
        stmt = insert(CredentialValidity).values(
            fingerprint=fingerprint,
            expires_at=expires_at,
            checked_at=checked_at,
            account_type=account_type,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[CredentialValidity.fingerprint],
            set_={
                "expires_at": stmt.excluded.expires_at,
                "checked_at": stmt.excluded.checked_at,
                "account_type": stmt.excluded.account_type,
            },
        )
        try:
            db.session.execute(stmt)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e
