"""
Pytest fixtures and configuration for DuckFlix coordinator tests
"""
import os
import sys
import tempfile
from collections import namedtuple
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

# Add app directory to path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), '..', 'app'))

# Settings and the default database live under the config dir; keep them out of the source tree
os.environ.setdefault('DUCKFLIX_CONFIG_DIR', tempfile.mkdtemp(prefix='duckflix-tests-'))

from werkzeug.security import generate_password_hash  # noqa: E402

TEST_PASSWORD = 'correct-horse'
# Low iteration count keeps user fixtures fast
TEST_PASSWORD_HASH = generate_password_hash(TEST_PASSWORD, method='pbkdf2:sha256:1000')

START_TIME = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

ApiUser = namedtuple('ApiUser', ['id', 'username', 'headers'])


class FakeClock:
    """Settable clock shared by every coordinator service of a test app"""

    def __init__(self, start=START_TIME):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, value):
        self.now = value
        return self.now


@pytest.fixture(autouse=True)
def reset_settings():
    """Every test starts from the default settings.yaml"""
    import settings
    from constants import CONFIG_FILE

    if os.path.exists(CONFIG_FILE):
        os.remove(CONFIG_FILE)
    settings.reload_conf()
    yield
    if os.path.exists(CONFIG_FILE):
        os.remove(CONFIG_FILE)
    settings.reload_conf()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rd_client():
    """Real-Debrid client double; tests set get_user / unrestrict_link behaviour"""
    from services.realdebrid import RealDebridClient

    return MagicMock(spec=RealDebridClient)


@pytest.fixture
def app(tmp_path, clock, rd_client):
    """
    Application backed by a throwaway SQLite file.

    No app context is left pushed: Flask-Login caches the current user on
    the app context, so route tests must let each request push its own.
    """
    from app import create_app
    from db import db

    _app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret-key',
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'duckflix-test.db'}",
        'SCHEDULER_ENABLED': False,
        'RATELIMIT_ENABLED': False,
    }, clock=clock, rd_client=rd_client)

    yield _app

    with _app.app_context():
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def app_ctx(app):
    """Push an app context for service-level tests"""
    with app.app_context():
        yield app


@pytest.fixture
def services(app_ctx):
    from app_services.coordinator_service import get_services

    return get_services(app_ctx)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app_ctx):
    """Create a user in the current app context and return the model"""
    from repositories.user_repository import UserRepository

    def _make_user(username, rd_api_key=None, parent=None, admin=False, enabled=True, disabled_reason=None):
        return UserRepository.create(
            username=username,
            password=TEST_PASSWORD_HASH,
            admin_access=admin,
            parent_user_id=parent.id if parent is not None else None,
            rd_api_key=rd_api_key,
            enabled=enabled,
            disabled_reason=disabled_reason,
        )

    return _make_user


@pytest.fixture
def api_user(app):
    """Create a user plus a bearer token; returns an ApiUser usable outside any app context"""
    from repositories.apitoken_repository import ApiTokenRepository
    from repositories.user_repository import UserRepository

    def _api_user(username, rd_api_key=None, parent_id=None, admin=False, enabled=True, disabled_reason=None):
        with app.app_context():
            user = UserRepository.create(
                username=username,
                password=TEST_PASSWORD_HASH,
                admin_access=admin,
                parent_user_id=parent_id,
                rd_api_key=rd_api_key,
                enabled=enabled,
                disabled_reason=disabled_reason,
            )
            token = ApiTokenRepository.issue(user.id, name='pytest')
            return ApiUser(user.id, user.username, {'Authorization': f'Bearer {token.token}'})

    return _api_user


@pytest.fixture
def admin_user(api_user):
    return api_user('admin', admin=True)


def rd_user_info(expires_at, account_type='premium', username='rd-user'):
    from services.realdebrid import RdUserInfo

    return RdUserInfo(username=username, account_type=account_type, expires_at=expires_at)


@pytest.fixture
def rd_expiring():
    """Factory for RdUserInfo answers, relative to START_TIME"""
    def _rd_expiring(days=None, **kwargs):
        expires_at = START_TIME + timedelta(days=days) if days is not None else None
        return rd_user_info(expires_at, **kwargs)

    return _rd_expiring
