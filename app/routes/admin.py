"""
Admin Routes - user management, RD expiry oversight and coordinator maintenance
"""

from flask import Blueprint, request, g
from werkzeug.security import generate_password_hash
import structlog

from api_responses import success_response, error_response, handle_api_errors, ErrorCode, not_found_response
from app_services.coordinator_service import get_services
from auth import user_summary
from constants import DISABLED_REASON_MANUAL, DISABLED_REASON_NO_CREDENTIAL, DISABLED_REASON_RD_EXPIRED
from db import log_activity
from exceptions import UpstreamValidationFailure, ValidationException
from middleware.auth import admin_required
from repositories.activitylog_repository import ActivityLogRepository
from repositories.credentialvalidity_repository import CredentialValidityRepository
from repositories.user_repository import UserRepository
from services.credential_resolver import list_known_credentials
from settings import load_settings, set_coordinator_settings
from utils import credential_fingerprint, days_until, isoformat_utc, mask_credential

logger = structlog.get_logger("admin")

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _admin_user_view(user, now):
    view = user_summary(user, now)
    view.update({
        "rdApiKey": mask_credential(user.rd_api_key),
        "hasOwnKey": bool(user.rd_api_key),
        "createdAt": isoformat_utc(user.created_at),
        "lastLoginAt": isoformat_utc(user.last_login_at),
    })
    return view


def _validate_rd_key(api_key):
    """Ask Real-Debrid about a key an admin is about to store"""
    try:
        return get_services().expiry_validator.validate_key(api_key)
    except UpstreamValidationFailure as e:
        raise ValidationException(f"Invalid RD API key: {e.message}")


@admin_bp.route("/users", methods=["GET"])
@admin_required
@handle_api_errors
def list_users():
    now = get_services().clock()
    return success_response(users=[_admin_user_view(u, now) for u in UserRepository.get_all()])


@admin_bp.route("/users", methods=["POST"])
@admin_required
@handle_api_errors
def create_user():
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or "").strip()
    password = data.get("password")
    is_admin = bool(data.get("isAdmin"))
    parent_user_id = data.get("parentUserId")
    rd_api_key = (data.get("rdApiKey") or "").strip() or None

    if not username or not password:
        return error_response(ErrorCode.VALIDATION_ERROR, message="Username and password required", status_code=400)

    if UserRepository.get_by_username(username):
        return error_response(ErrorCode.CONFLICT, message="Username already exists", status_code=409)

    parent = None
    if parent_user_id:
        parent = UserRepository.get_by_id(parent_user_id)
        if parent is None:
            return error_response(ErrorCode.VALIDATION_ERROR, message="Parent user not found", status_code=400)
        if parent.is_sub_account:
            return error_response(
                ErrorCode.VALIDATION_ERROR, message="A sub-account cannot own sub-accounts", status_code=400
            )

    validation = None
    if rd_api_key:
        validation = _validate_rd_key(rd_api_key)

    # Root accounts stay disabled until they can resolve a credential.
    # Sub-accounts follow their parent's state at access time.
    if validation is not None and validation["isExpired"] and not is_admin:
        enabled, disabled_reason = False, DISABLED_REASON_RD_EXPIRED
    elif is_admin or validation is not None or parent is not None:
        enabled, disabled_reason = True, None
    else:
        enabled, disabled_reason = False, DISABLED_REASON_NO_CREDENTIAL

    user = UserRepository.create(
        username=username,
        password=generate_password_hash(password, method="pbkdf2:sha256"),
        admin_access=is_admin,
        parent_user_id=parent.id if parent else None,
        rd_api_key=rd_api_key,
        enabled=enabled,
        disabled_reason=disabled_reason,
    )
    log_activity("user_created", user_id=user.id, created_by=g.current_user.id, enabled=enabled)
    logger.info("User created", username=username, user_id=user.id, enabled=enabled)
    return success_response(user=_admin_user_view(user, get_services().clock()), status_code=201)


@admin_bp.route("/users/<int:user_id>/rd-key", methods=["POST"])
@admin_required
@handle_api_errors
def set_rd_key(user_id):
    user = UserRepository.get_by_id(user_id)
    if user is None:
        return not_found_response("User", user_id)

    data = request.get_json(silent=True) or {}
    rd_api_key = (data.get("rdApiKey") or "").strip()
    if not rd_api_key:
        return error_response(ErrorCode.VALIDATION_ERROR, message="rdApiKey is required", status_code=400)

    validation = _validate_rd_key(rd_api_key)
    old_key = user.rd_api_key

    updates = {"rd_api_key": rd_api_key}
    if validation["isExpired"]:
        updates.update(enabled=False, disabled_reason=DISABLED_REASON_RD_EXPIRED)
    elif user.enabled or user.disabled_reason in (DISABLED_REASON_RD_EXPIRED, DISABLED_REASON_NO_CREDENTIAL):
        updates.update(enabled=True, disabled_reason=None)
    UserRepository.update(user.id, **updates)

    services = get_services()
    if old_key and credential_fingerprint(old_key) != credential_fingerprint(rd_api_key):
        removed = services.link_cache.evict_fingerprint(credential_fingerprint(old_key))
        logger.info("Dropped cached links of replaced RD key", user_id=user.id, removed=removed)

    log_activity("rd_key_updated", user_id=user.id, updated_by=g.current_user.id, expiry=validation["expiryDate"])
    return success_response(user=_admin_user_view(user, services.clock()), validation=validation)


@admin_bp.route("/users/<int:user_id>/enabled", methods=["POST"])
@admin_required
@handle_api_errors
def set_user_enabled(user_id):
    user = UserRepository.get_by_id(user_id)
    if user is None:
        return not_found_response("User", user_id)

    data = request.get_json(silent=True) or {}
    if "enabled" not in data:
        return error_response(ErrorCode.VALIDATION_ERROR, message="enabled is required", status_code=400)

    enabled = bool(data["enabled"])
    UserRepository.update(user.id, enabled=enabled, disabled_reason=None if enabled else DISABLED_REASON_MANUAL)
    log_activity("account_reenabled" if enabled else "account_disabled", user_id=user.id,
                 reason=DISABLED_REASON_MANUAL, updated_by=g.current_user.id)
    return success_response(user=_admin_user_view(user, get_services().clock()))


@admin_bp.route("/rd-expiry-alerts", methods=["GET"])
@admin_required
@handle_api_errors
def rd_expiry_alerts():
    """Credentials that have expired or expire within the alert window"""
    services = get_services()
    now = services.clock()
    alert_days = services.coordinator_settings["expiry_alert_days"]

    known = list_known_credentials()
    validity = CredentialValidityRepository.get_many(c.fingerprint for c in known)
    owners = {u.id: u for u in UserRepository.get_by_ids([i for c in known for i in c.owner_ids])}

    alerts = []
    for credential in known:
        record = validity.get(credential.fingerprint)
        if record is None or record.expires_at is None:
            continue
        days_remaining = days_until(record.expires_at, now)
        if days_remaining > alert_days:
            continue
        for owner_id in credential.owner_ids:
            owner = owners.get(owner_id)
            alerts.append({
                "userId": owner_id,
                "username": owner.username if owner else None,
                "rdExpiryDate": isoformat_utc(record.expires_at),
                "daysRemaining": days_remaining,
                "isExpired": record.is_expired(now),
                "checkedAt": isoformat_utc(record.checked_at),
            })

    alerts.sort(key=lambda a: a["daysRemaining"])
    return success_response(alerts=alerts, alertDays=alert_days)


@admin_bp.route("/rd-expiry/check", methods=["POST"])
@admin_required
@handle_api_errors
def run_rd_expiry_check():
    summary = get_services().expiry_validator.run_batch()
    return success_response(summary)


@admin_bp.route("/rd-sessions", methods=["GET"])
@admin_required
@handle_api_errors
def rd_sessions():
    leases = get_services().lease_manager.get_active_leases()
    return success_response(sessions=[lease.to_dict() for lease in leases])


@admin_bp.route("/link-cache/evict", methods=["POST"])
@admin_required
@handle_api_errors
def evict_link_cache():
    removed = get_services().link_cache.evict_expired()
    return success_response(removed=removed)


@admin_bp.route("/activity", methods=["GET"])
@admin_required
@handle_api_errors
def recent_activity():
    limit = min(request.args.get("limit", 50, type=int), 500)
    entries = ActivityLogRepository.get_recent(limit=limit, action_type=request.args.get("action"))
    return success_response([e.to_dict() for e in entries])


@admin_bp.route("/settings/coordinator", methods=["GET"])
@admin_required
@handle_api_errors
def get_coordinator_settings_api():
    return success_response(load_settings()["coordinator"])


@admin_bp.route("/settings/coordinator", methods=["POST"])
@admin_required
@handle_api_errors
def set_coordinator_settings_api():
    data = request.get_json(silent=True) or {}
    success, errors = set_coordinator_settings(data)
    if not success:
        return error_response(ErrorCode.VALIDATION_ERROR, message="Invalid coordinator settings",
                              details={"errors": errors}, status_code=400)

    settings = load_settings()
    get_services().configure(settings)
    log_activity("coordinator_settings_updated", user_id=g.current_user.id, **data)
    return success_response(settings["coordinator"])
