"""
Authentication Middleware - decorators for the JSON API
"""
from functools import wraps
from flask import request, g
from flask_login import current_user
from auth import check_api_token, check_account_access
from app_services.coordinator_service import get_services
from exceptions import AuthenticationException, AuthorizationException
import logging

logger = logging.getLogger('main')


def get_authenticated_user():
    """User behind the request: browser session first, then Bearer token"""
    if current_user.is_authenticated:
        return current_user._get_current_object()

    token_valid, _, user = check_api_token(request)
    if token_valid:
        return user
    return None


def get_network_location():
    """
    Network location used for RD leases.
    Behind a reverse proxy this is only the client address when ProxyFix is
    enabled through server.trust_proxy.
    """
    return request.remote_addr or 'unknown'


def api_login_required(f=None, check_access=True):
    """Require an authenticated user; optionally also an account allowed to stream"""
    def decorator(view):
        @wraps(view)
        def decorated_function(*args, **kwargs):
            user = get_authenticated_user()
            if user is None:
                raise AuthenticationException()

            if check_access:
                check_account_access(user, get_services().clock())

            g.current_user = user
            return view(*args, **kwargs)
        return decorated_function

    if f is not None:
        return decorator(f)
    return decorator


def admin_required(f):
    """Decorator for administrative endpoints"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = get_authenticated_user()
        if user is None:
            raise AuthenticationException()

        if not user.has_access('admin'):
            logger.warning(f"User {user.username} denied admin access to {request.path}")
            raise AuthorizationException("Admin access required")

        g.current_user = user
        return f(*args, **kwargs)
    return decorated_function
