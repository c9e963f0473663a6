"""
Repository for ApiToken database operations
"""

import secrets

from sqlalchemy.exc import SQLAlchemyError
from db import db
from models.apitoken import ApiToken
from utils import now_utc


class ApiTokenRepository:
    """Repository for ApiToken database operations"""

    @staticmethod
    def get_by_token(token_str):
        if not token_str:
            return None
        return ApiToken.query.filter_by(token=token_str).first()

    @staticmethod
    def issue(user_id, name):
        """Create a token with a fresh random value"""
        return ApiTokenRepository.create(user_id=user_id, name=name, token=secrets.token_hex(32))

    @staticmethod
    def create(**kwargs):
        """Create new ApiToken record"""
        try:
            item = ApiToken(**kwargs)
            db.session.add(item)
            db.session.commit()
            db.session.refresh(item)
            return item
        except SQLAlchemyError as e:
            db.session.rollback()
            raise e

    @staticmethod
    def touch(item):
        """Update last used timestamp; never fails the request"""
        try:
            item.last_used = now_utc()
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()

    @staticmethod
    def delete_by_token(token_str):
        deleted = ApiToken.query.filter_by(token=token_str).delete()
        db.session.commit()
        return deleted > 0
