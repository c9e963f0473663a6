"""
Tests for admin endpoints (/api/admin/*)
"""
from datetime import timedelta

import pytest

from app_services.coordinator_service import get_services
from constants import DISABLED_REASON_NO_CREDENTIAL, DISABLED_REASON_RD_EXPIRED
from db import db
from exceptions import UpstreamValidationFailure
from models import RdLinkCache, User
from repositories.credentialvalidity_repository import CredentialValidityRepository
from services.link_cache import ContentKey
from utils import credential_fingerprint


def get_user(app, user_id):
    with app.app_context():
        user = db.session.get(User, user_id)
        return {'enabled': user.enabled, 'disabled_reason': user.disabled_reason, 'rd_api_key': user.rd_api_key}


class TestAdminAccess:

    def test_anonymous_is_rejected(self, client):
        assert client.get('/api/admin/users').status_code == 401

    def test_regular_user_is_forbidden(self, client, api_user):
        alice = api_user('alice', rd_api_key='KEY-ALICE')

        response = client.get('/api/admin/users', headers=alice.headers)

        assert response.status_code == 403
        assert response.get_json()['code'] == 'FORBIDDEN'

    def test_list_users_masks_keys(self, client, admin_user, api_user):
        api_user('alice', rd_api_key='KEY-ALICE-1234')

        response = client.get('/api/admin/users', headers=admin_user.headers)
        users = {u['username']: u for u in response.get_json()['users']}

        assert response.status_code == 200
        assert users['alice']['rdApiKey'] == '****1234'
        assert users['alice']['hasOwnKey'] is True


class TestCreateUser:
    """POST /api/admin/users"""

    def test_valid_key_creates_enabled_user(self, app, client, admin_user, rd_client, rd_expiring):
        rd_client.get_user.return_value = rd_expiring(days=30)

        response = client.post('/api/admin/users', headers=admin_user.headers, json={
            'username': 'alice', 'password': 'pw', 'rdApiKey': 'KEY-ALICE',
        })
        user = response.get_json()['user']

        assert response.status_code == 201
        assert user['enabled'] is True
        assert user['daysRemaining'] == 30
        rd_client.get_user.assert_called_once_with('KEY-ALICE')

    def test_expired_key_creates_disabled_user(self, app, client, admin_user, rd_client, rd_expiring):
        rd_client.get_user.return_value = rd_expiring(days=-3)

        response = client.post('/api/admin/users', headers=admin_user.headers, json={
            'username': 'alice', 'password': 'pw', 'rdApiKey': 'KEY-ALICE',
        })
        user = response.get_json()['user']

        assert response.status_code == 201
        assert user['enabled'] is False
        assert user['disabledReason'] == DISABLED_REASON_RD_EXPIRED

    def test_rejected_key(self, client, admin_user, rd_client):
        rd_client.get_user.side_effect = UpstreamValidationFailure('Invalid or expired RD API key', http_status=401)

        response = client.post('/api/admin/users', headers=admin_user.headers, json={
            'username': 'alice', 'password': 'pw', 'rdApiKey': 'BAD',
        })

        assert response.status_code == 400
        assert response.get_json()['code'] == 'VALIDATION_ERROR'

    def test_no_key_and_no_parent(self, client, admin_user, rd_client):
        response = client.post('/api/admin/users', headers=admin_user.headers, json={
            'username': 'erin', 'password': 'pw',
        })
        user = response.get_json()['user']

        assert response.status_code == 201
        assert user['enabled'] is False
        assert user['disabledReason'] == DISABLED_REASON_NO_CREDENTIAL
        rd_client.get_user.assert_not_called()

    def test_sub_account(self, client, admin_user, api_user):
        parent = api_user('parent', rd_api_key='KEY-PARENT')

        response = client.post('/api/admin/users', headers=admin_user.headers, json={
            'username': 'child', 'password': 'pw', 'parentUserId': parent.id,
        })
        user = response.get_json()['user']

        assert response.status_code == 201
        assert user['enabled'] is True
        assert user['parentUserId'] == parent.id

    def test_sub_account_cannot_be_a_parent(self, client, admin_user, api_user):
        parent = api_user('parent', rd_api_key='KEY-PARENT')
        child = api_user('child', parent_id=parent.id)

        response = client.post('/api/admin/users', headers=admin_user.headers, json={
            'username': 'grandchild', 'password': 'pw', 'parentUserId': child.id,
        })

        assert response.status_code == 400

    def test_duplicate_username(self, client, admin_user, api_user):
        api_user('alice', rd_api_key='KEY-ALICE')

        response = client.post('/api/admin/users', headers=admin_user.headers, json={
            'username': 'ALICE', 'password': 'pw',
        })

        assert response.status_code == 409
        assert response.get_json()['code'] == 'CONFLICT'


class TestSetRdKey:
    """POST /api/admin/users/<id>/rd-key"""

    def test_renewed_key_reenables_expired_user(self, app, client, admin_user, api_user, rd_client, rd_expiring):
        alice = api_user('alice', rd_api_key='OLD-KEY', enabled=False, disabled_reason=DISABLED_REASON_RD_EXPIRED)
        rd_client.get_user.return_value = rd_expiring(days=90)

        response = client.post(f'/api/admin/users/{alice.id}/rd-key', headers=admin_user.headers,
                               json={'rdApiKey': 'NEW-KEY'})

        assert response.status_code == 200
        assert response.get_json()['validation']['daysRemaining'] == 90
        assert get_user(app, alice.id) == {'enabled': True, 'disabled_reason': None, 'rd_api_key': 'NEW-KEY'}

    def test_replaced_key_drops_cached_links(self, app, client, admin_user, api_user, rd_client, rd_expiring):
        alice = api_user('alice', rd_api_key='OLD-KEY')
        with app.app_context():
            cache = get_services(app).link_cache
            cache.put(ContentKey.movie(603), 1080, credential_fingerprint('OLD-KEY'), 'https://cdn.rd.example/a')
        rd_client.get_user.return_value = rd_expiring(days=90)

        client.post(f'/api/admin/users/{alice.id}/rd-key', headers=admin_user.headers, json={'rdApiKey': 'NEW-KEY'})

        with app.app_context():
            assert RdLinkCache.query.count() == 0

    def test_manual_disable_survives_new_key(self, app, client, admin_user, api_user, rd_client, rd_expiring):
        alice = api_user('alice', rd_api_key='OLD-KEY', enabled=False, disabled_reason='manual')
        rd_client.get_user.return_value = rd_expiring(days=90)

        client.post(f'/api/admin/users/{alice.id}/rd-key', headers=admin_user.headers, json={'rdApiKey': 'NEW-KEY'})

        assert get_user(app, alice.id)['enabled'] is False

    def test_unknown_user(self, client, admin_user):
        response = client.post('/api/admin/users/999/rd-key', headers=admin_user.headers, json={'rdApiKey': 'K'})

        assert response.status_code == 404


class TestSetEnabled:

    def test_disable_then_enable(self, app, client, admin_user, api_user):
        alice = api_user('alice', rd_api_key='KEY-ALICE')

        client.post(f'/api/admin/users/{alice.id}/enabled', headers=admin_user.headers, json={'enabled': False})
        assert get_user(app, alice.id)['disabled_reason'] == 'manual'
        assert client.post('/api/vod/session/check', headers=alice.headers).status_code == 403

        client.post(f'/api/admin/users/{alice.id}/enabled', headers=admin_user.headers, json={'enabled': True})
        assert client.post('/api/vod/session/check', headers=alice.headers).status_code == 200

    def test_requires_flag(self, client, admin_user, api_user):
        alice = api_user('alice', rd_api_key='KEY-ALICE')

        response = client.post(f'/api/admin/users/{alice.id}/enabled', headers=admin_user.headers, json={})

        assert response.status_code == 400


class TestExpiryAlerts:
    """GET /api/admin/rd-expiry-alerts and POST /api/admin/rd-expiry/check"""

    def test_lists_credentials_inside_alert_window(self, app, client, admin_user, api_user, clock):
        api_user('soon', rd_api_key='KEY-SOON')
        api_user('later', rd_api_key='KEY-LATER')
        api_user('gone', rd_api_key='KEY-GONE')
        with app.app_context():
            for key, days in (('KEY-SOON', 3), ('KEY-LATER', 40), ('KEY-GONE', -1)):
                CredentialValidityRepository.record(credential_fingerprint(key), clock.now + timedelta(days=days),
                                                    clock.now, 'premium')

        response = client.get('/api/admin/rd-expiry-alerts', headers=admin_user.headers)
        data = response.get_json()

        assert response.status_code == 200
        assert data['alertDays'] == 5
        assert [a['username'] for a in data['alerts']] == ['gone', 'soon']
        assert data['alerts'][0]['isExpired'] is True

    def test_manual_check_runs_batch(self, client, admin_user, api_user, rd_client, rd_expiring):
        api_user('alice', rd_api_key='KEY-ALICE')
        rd_client.get_user.return_value = rd_expiring(days=-1)

        response = client.post('/api/admin/rd-expiry/check', headers=admin_user.headers)

        assert response.status_code == 200
        assert response.get_json()['data'] == {'checked': 1, 'expired': 1, 'failed': 0}


class TestCoordinatorMaintenance:

    def test_rd_sessions_lists_live_leases(self, client, admin_user, api_user):
        alice = api_user('alice', rd_api_key='KEY-ALICE')
        client.post('/api/vod/session/check', headers=alice.headers, environ_base={'REMOTE_ADDR': '203.0.113.10'})

        response = client.get('/api/admin/rd-sessions', headers=admin_user.headers)
        sessions = response.get_json()['sessions']

        assert len(sessions) == 1
        assert sessions[0]['username'] == 'alice'
        assert sessions[0]['ipAddress'] == '203.0.113.10'
        assert 'KEY-ALICE' not in str(sessions)

    def test_link_cache_eviction(self, app, client, admin_user, clock):
        with app.app_context():
            get_services(app).link_cache.put(ContentKey.movie(603), 1080, 'f' * 64, 'https://cdn.rd.example/a')
        clock.advance(hours=49)

        response = client.post('/api/admin/link-cache/evict', headers=admin_user.headers)

        assert response.get_json()['removed'] == 1

    def test_activity_log(self, client, admin_user, api_user):
        alice = api_user('alice', rd_api_key='KEY-ALICE')
        client.post(f'/api/admin/users/{alice.id}/enabled', headers=admin_user.headers, json={'enabled': False})

        response = client.get('/api/admin/activity?action=account_disabled', headers=admin_user.headers)
        entries = response.get_json()['data']

        assert len(entries) == 1
        assert entries[0]['userId'] == alice.id
        assert entries[0]['details']['reason'] == 'manual'


class TestCoordinatorSettings:
    """GET/POST /api/admin/settings/coordinator"""

    def test_defaults(self, client, admin_user):
        data = client.get('/api/admin/settings/coordinator', headers=admin_user.headers).get_json()['data']

        assert data['lease_liveness_seconds'] == 30
        assert data['heartbeat_interval_seconds'] == 5
        assert data['link_cache_ttl_hours'] == 48

    def test_update_applies_to_running_services(self, app, client, admin_user):
        response = client.post('/api/admin/settings/coordinator', headers=admin_user.headers,
                               json={'lease_liveness_seconds': 60})

        assert response.status_code == 200
        assert get_services(app).lease_manager.liveness_window == timedelta(seconds=60)

    @pytest.mark.parametrize('payload', [
        {'lease_liveness_seconds': 4},
        {'heartbeat_interval_seconds': 0},
        {'link_cache_ttl_hours': 'forever'},
        {'unknown_knob': 1},
    ])
    def test_invalid_update(self, app, client, admin_user, payload):
        response = client.post('/api/admin/settings/coordinator', headers=admin_user.headers, json=payload)

        assert response.status_code == 400
        assert response.get_json()['details']['errors']
        assert get_services(app).lease_manager.liveness_window == timedelta(seconds=30)
