from flask import Blueprint, request
from flask_login import LoginManager, login_user, logout_user, current_user
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.security import generate_password_hash, check_password_hash
from sqlalchemy.exc import SQLAlchemyError
from db import db, log_activity
from models import User
from exceptions import (
    AuthenticationException,
    AccountDisabledException,
    CredentialExpiredException,
    DuckFlixException,
)
from api_responses import success_response, error_response, handle_api_errors, ErrorCode
from repositories.user_repository import UserRepository
from repositories.apitoken_repository import ApiTokenRepository
from repositories.credentialvalidity_repository import CredentialValidityRepository
from services.credential_resolver import find_credential, get_effective_user_id
from app_services.coordinator_service import get_services
from utils import now_utc, isoformat_utc, days_until
import os
import logging

# Retrieve main logger
logger = logging.getLogger("main")

LOGIN_RATE_LIMIT = "20 per minute"

# Rejected password checks still pay for a hash comparison
_DUMMY_PASSWORD_HASH = generate_password_hash("duckflix-invalid-user", method="pbkdf2:sha256")

login_manager = LoginManager()
limiter = Limiter(key_func=get_remote_address, default_limits=[], storage_uri="memory://")


@login_manager.user_loader
def load_user(user_id):
    """Load user for Flask-Login"""
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized_json():
    return error_response(error_code=ErrorCode.UNAUTHORIZED, message="Authentication required", status_code=401)


def check_api_token(request):
    """
    Validate Bearer token from Authorization header.
    Returns: (success, error, user_object)
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return False, "Missing or invalid token", None

    token_str = auth_header.split(" ", 1)[1].strip()
    token = ApiTokenRepository.get_by_token(token_str)

    if token:
        # Don't fail auth just because of timestamp update error
        ApiTokenRepository.touch(token)
        return True, None, token.user

    return False, "Invalid token", None


def get_credential_validity(user):
    """Validity record of the credential the user resolves to, or None"""
    credential = find_credential(user.id)
    if credential is None:
        return None
    return CredentialValidityRepository.get(credential.fingerprint)


def check_account_access(user, now=None):
    """
    Raise if a non-admin account may not use the service right now.
    Expiry is reported separately from other disabled states so clients can
    tell the user to renew their subscription.
    """
    if user.is_admin:
        return

    now = now or now_utc()
    credential = find_credential(user.id)
    validity = CredentialValidityRepository.get(credential.fingerprint) if credential else None
    expired_at = isoformat_utc(validity.expires_at) if validity else None

    if user.is_rd_expired:
        raise CredentialExpiredException(expired_at=expired_at)
    if not user.enabled:
        raise AccountDisabledException()

    # A sub-account with its own key answers only for that key
    parent = user.parent if credential is None or credential.inherited else None
    if parent is not None and not parent.enabled:
        if parent.is_rd_expired:
            raise CredentialExpiredException(expired_at=expired_at)
        raise AccountDisabledException()

    if validity is not None and validity.is_expired(now):
        raise CredentialExpiredException(expired_at=expired_at)


def user_summary(user, now=None):
    """Public view of a user, including the expiry of its resolved credential"""
    validity = get_credential_validity(user)
    expires_at = validity.expires_at if validity else None
    return {
        "id": user.id,
        "username": user.username,
        "isAdmin": user.is_admin,
        "parentUserId": user.parent_user_id,
        "enabled": bool(user.enabled),
        "disabledReason": user.disabled_reason,
        "rdExpiryDate": isoformat_utc(expires_at),
        "daysRemaining": days_until(expires_at, now) if expires_at else None,
    }


def create_or_update_user(username, password, admin_access=False, parent_user_id=None, rd_api_key=None):
    """
    Create a new user or update an existing user with the given credentials and access rights.
    """
    user = UserRepository.get_by_username(username)
    try:
        hashed_pw = generate_password_hash(password, method="pbkdf2:sha256")
        if user:
            logger.info(f"Updating existing user {username}")
            user.admin_access = admin_access
            user.password = hashed_pw
            if parent_user_id is not None:
                user.parent_user_id = parent_user_id
            if rd_api_key is not None:
                user.rd_api_key = rd_api_key
        else:
            logger.info(f"Creating new user {username}")
            user = User(
                username=username,
                password=hashed_pw,
                admin_access=admin_access,
                parent_user_id=parent_user_id,
                rd_api_key=rd_api_key,
            )
            db.session.add(user)
        db.session.commit()
        return user
    except SQLAlchemyError as e:
        logger.error(f"Error saving user {username}: {e}")
        db.session.rollback()
        raise e


def init_user_from_environment(environment_name, admin=False):
    """
    allow to init some user from environment variable to init some users without using the UI
    """
    username = os.getenv(environment_name + "_NAME")
    password = os.getenv(environment_name + "_PASSWORD")
    if username and password:
        if admin:
            logger.info("Initializing an admin user from environment variable...")
        else:
            logger.info("Initializing a regular user from environment variable...")
            if not UserRepository.admin_account_created():
                logger.error(f"Error creating user {username}, first account created must be admin")
                return

        create_or_update_user(
            username,
            password,
            admin_access=admin,
            rd_api_key=os.getenv(environment_name + "_RD_API_KEY"),
        )


def init_users(app):
    with app.app_context():
        # init users from ENV
        if os.environ.get("USER_ADMIN_NAME") is not None:
            init_user_from_environment(environment_name="USER_ADMIN", admin=True)
        if os.environ.get("USER_GUEST_NAME") is not None:
            init_user_from_environment(environment_name="USER_GUEST", admin=False)


auth_blueprint = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_blueprint.route("/login", methods=["POST"])
@limiter.limit(LOGIN_RATE_LIMIT)
@handle_api_errors
def login():
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""

    if not username or not password:
        return error_response(ErrorCode.VALIDATION_ERROR, message="Username and password required", status_code=400)

    user = UserRepository.get_by_username(username)
    password_hash = user.password if user else _DUMMY_PASSWORD_HASH
    password_ok = check_password_hash(password_hash, password)

    if not user or not password_ok:
        logger.warning(f"Incorrect login for user {username} from {request.remote_addr}")
        raise AuthenticationException("Invalid credentials", code=ErrorCode.INVALID_CREDENTIALS)

    try:
        check_account_access(user, get_services().clock())
    except DuckFlixException as e:
        logger.warning(f"Login blocked for user {username}: {e.code}")
        log_activity("login_blocked", user_id=user.id, code=e.code)
        raise

    user.last_login_at = now_utc()
    db.session.commit()

    token = ApiTokenRepository.issue(user.id, name=data.get("deviceName") or "login")
    login_user(user, remember=bool(data.get("remember")))

    logger.info(f"Successful login for user {username}")
    return success_response(token=token.token, user=user_summary(user, get_services().clock()))


@auth_blueprint.route("/me", methods=["GET"])
@handle_api_errors
def me():
    from middleware.auth import get_authenticated_user

    user = get_authenticated_user()
    if user is None:
        raise AuthenticationException()

    summary = user_summary(user, get_services().clock())
    summary["accountOwnerId"] = get_effective_user_id(user.id)
    return success_response(user=summary)


@auth_blueprint.route("/change_password", methods=["POST"])
@handle_api_errors
def change_password():
    from middleware.auth import get_authenticated_user

    user = get_authenticated_user()
    if user is None:
        raise AuthenticationException()

    data = request.get_json(silent=True) or {}
    current_password = data.get("current_password")
    new_password = data.get("new_password")
    confirm_password = data.get("confirm_password")

    if not current_password or not new_password or not confirm_password:
        return error_response(ErrorCode.VALIDATION_ERROR, message="All fields are required.")

    if new_password != confirm_password:
        return error_response(ErrorCode.VALIDATION_ERROR, message="Passwords do not match.")

    if not check_password_hash(user.password, current_password):
        return error_response(ErrorCode.UNAUTHORIZED, message="Current password is incorrect.", status_code=401)

    user.password = generate_password_hash(new_password, method="pbkdf2:sha256")
    db.session.commit()
    logger.info(f"Password changed for user {user.username}")
    return success_response(message="Password changed successfully!")


@auth_blueprint.route("/logout", methods=["POST"])
@handle_api_errors
def logout():
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        ApiTokenRepository.delete_by_token(auth_header.split(" ", 1)[1].strip())
    if current_user.is_authenticated:
        logger.info(f"User logged out: {current_user.username}")
        logout_user()
    return success_response()
