"""
Repository for User database operations
"""

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from db import db
from models.user import User


class UserRepository:
    """Repository for User database operations"""

    @staticmethod
    def get_all():
        """Get all User records, newest first"""
        return User.query.order_by(User.created_at.desc()).all()

    @staticmethod
    def get_by_id(id):
        """Get User by ID"""
        return db.session.get(User, id)

    @staticmethod
    def get_by_username(username):
        """Case-insensitive username lookup"""
        if not username:
            return None
        return User.query.filter(func.lower(User.username) == username.lower()).first()

    @staticmethod
    def get_credential_owners():
        """Accounts that carry their own RD API key"""
        return User.query.filter(User.rd_api_key.isnot(None), User.rd_api_key != "").all()

    @staticmethod
    def get_by_ids(ids):
        if not ids:
            return []
        return User.query.filter(User.id.in_(ids)).all()

    @staticmethod
    def create(**kwargs):
        """Create new User record"""
        try:
            item = User(**kwargs)
            db.session.add(item)
            db.session.commit()
            db.session.refresh(item)
            return item
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def update(id, **kwargs):
        """Update User record"""
        item = db.session.get(User, id)
        if not item:
            return None

        for key, value in kwargs.items():
            if hasattr(item, key):
                setattr(item, key, value)

        try:
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e
        return item

    @staticmethod
    def set_enabled(ids, enabled, reason=None):
        """Bulk enable/disable; returns number of rows changed"""
        if not ids:
            return 0
        try:
            changed = (
                User.query.filter(User.id.in_(ids), User.enabled != enabled)
                .update({User.enabled: enabled, User.disabled_reason: reason}, synchronize_session=False)
            )
            db.session.commit()
            return changed
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def reenable(ids, reason):
        """Re-enable only accounts that were disabled for the given reason"""
        if not ids:
            return 0
        try:
            changed = (
                User.query.filter(User.id.in_(ids), User.enabled.is_(False), User.disabled_reason == reason)
                .update({User.enabled: True, User.disabled_reason: None}, synchronize_session=False)
            )
            db.session.commit()
            return changed
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def admin_account_created():
        return User.query.filter_by(admin_access=True).count() > 0
