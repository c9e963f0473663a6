"""
VOD Session Routes - RD lease admission, heartbeat and release for TV clients
"""

from flask import Blueprint, g

from api_responses import success_response, error_response, handle_api_errors, ErrorCode
from app_services.coordinator_service import get_services
from exceptions import LeaseConflictException
from middleware.auth import api_login_required, get_network_location
from services.credential_resolver import find_credential, resolve_credential
from utils import isoformat_utc

session_bp = Blueprint("session", __name__, url_prefix="/api/vod/session")


@session_bp.route("/check", methods=["POST"])
@api_login_required
@handle_api_errors
def check_session():
    """Admit playback unless the caller's RD key is live on another network"""
    user = g.current_user
    credential = resolve_credential(user.id)
    services = get_services()

    result = services.lease_manager.try_acquire(
        credential.fingerprint, get_network_location(), user.id, holder_name=user.username
    )
    if not result.admitted:
        raise LeaseConflictException(
            active_user=result.conflicting_holder,
            started_at=isoformat_utc(result.lease_started_at),
            active_location=result.conflicting_location,
        )

    return success_response(
        allowed=True,
        heartbeatIntervalSeconds=services.coordinator_settings["heartbeat_interval_seconds"],
    )


@session_bp.route("/heartbeat", methods=["POST"])
@api_login_required
@handle_api_errors
def heartbeat():
    user = g.current_user
    credential = find_credential(user.id)
    if credential is not None and get_services().lease_manager.heartbeat(credential.fingerprint, get_network_location()):
        return success_response()

    return error_response(ErrorCode.LEASE_NOT_HELD, status_code=404, log_error=False)


@session_bp.route("/end", methods=["POST"])
@api_login_required(check_access=False)
@handle_api_errors
def end_session():
    """Release the caller's lease; succeeds whether or not one was held"""
    user = g.current_user
    credential = find_credential(user.id)
    if credential is not None:
        get_services().lease_manager.release(credential.fingerprint, get_network_location())
    return success_response()
