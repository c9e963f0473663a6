"""
Tests for RD expiry validation
"""
import json
from datetime import timedelta

import pytest

from app_services.coordinator_service import get_services
from constants import DISABLED_REASON_MANUAL, DISABLED_REASON_RD_EXPIRED
from exceptions import UpstreamValidationFailure
from models import ActivityLog, CredentialValidity, User
from db import db
from repositories.credentialvalidity_repository import CredentialValidityRepository
from utils import credential_fingerprint, ensure_utc


@pytest.fixture
def validator(services):
    return services.expiry_validator


def reload_user(user_id):
    return db.session.get(User, user_id, populate_existing=True)


def login(client, username):
    return client.post('/api/auth/login', json={'username': username, 'password': 'correct-horse'})


class TestCheckCredential:
    """Single-credential revalidation"""

    def test_expired_credential_disables_owner(self, validator, make_user, rd_client, rd_expiring):
        alice = make_user('alice', rd_api_key='KEY-ALICE')
        rd_client.get_user.return_value = rd_expiring(days=-1)

        outcome = validator.check_credential(credential_fingerprint('KEY-ALICE'), 'KEY-ALICE', [alice.id])

        assert outcome.expired
        assert outcome.disabled_user_ids == [alice.id]
        user = reload_user(alice.id)
        assert not user.enabled
        assert user.disabled_reason == DISABLED_REASON_RD_EXPIRED

        log = ActivityLog.query.filter_by(action_type='account_disabled').one()
        assert log.user_id == alice.id
        assert json.loads(log.details)['reason'] == DISABLED_REASON_RD_EXPIRED

    def test_valid_credential_records_expiry(self, validator, make_user, rd_client, rd_expiring):
        alice = make_user('alice', rd_api_key='KEY-ALICE')
        rd_client.get_user.return_value = rd_expiring(days=20)

        outcome = validator.check_credential(credential_fingerprint('KEY-ALICE'), 'KEY-ALICE', [alice.id])

        assert not outcome.expired
        assert reload_user(alice.id).enabled
        record = db.session.get(CredentialValidity, credential_fingerprint('KEY-ALICE'))
        assert record.account_type == 'premium'
        assert record.expires_at is not None

    def test_renewal_reenables_expired_owner(self, validator, make_user, rd_client, rd_expiring):
        alice = make_user('alice', rd_api_key='KEY-ALICE', enabled=False,
                          disabled_reason=DISABLED_REASON_RD_EXPIRED)
        rd_client.get_user.return_value = rd_expiring(days=30)

        outcome = validator.check_credential(credential_fingerprint('KEY-ALICE'), 'KEY-ALICE', [alice.id])

        assert outcome.reenabled_user_ids == [alice.id]
        user = reload_user(alice.id)
        assert user.enabled
        assert user.disabled_reason is None

    def test_renewal_leaves_manual_disable_alone(self, validator, make_user, rd_client, rd_expiring):
        alice = make_user('alice', rd_api_key='KEY-ALICE', enabled=False, disabled_reason=DISABLED_REASON_MANUAL)
        rd_client.get_user.return_value = rd_expiring(days=30)

        validator.check_credential(credential_fingerprint('KEY-ALICE'), 'KEY-ALICE', [alice.id])

        assert not reload_user(alice.id).enabled

    def test_missing_expiry_is_a_failure(self, validator, make_user, rd_client, rd_expiring):
        alice = make_user('alice', rd_api_key='KEY-ALICE')
        rd_client.get_user.return_value = rd_expiring(days=None)

        with pytest.raises(UpstreamValidationFailure):
            validator.check_credential(credential_fingerprint('KEY-ALICE'), 'KEY-ALICE', [alice.id])

        assert CredentialValidity.query.count() == 0
        assert reload_user(alice.id).enabled


class TestRunBatch:
    """Full sweep over every known credential"""

    def test_transient_failure_changes_nothing(self, validator, make_user, rd_client):
        alice = make_user('alice', rd_api_key='KEY-ALICE')
        rd_client.get_user.side_effect = UpstreamValidationFailure('Real-Debrid request timed out')

        summary = validator.run_batch()

        assert summary == {'checked': 0, 'expired': 0, 'failed': 1}
        assert reload_user(alice.id).enabled
        assert CredentialValidity.query.count() == 0

    def test_one_failure_does_not_stop_the_batch(self, validator, make_user, rd_client, rd_expiring):
        make_user('alice', rd_api_key='KEY-ALICE')
        bob = make_user('bob', rd_api_key='KEY-BOB')

        def answer(api_key):
            if api_key == 'KEY-ALICE':
                raise UpstreamValidationFailure('Real-Debrid returned HTTP 503 for /user', http_status=503)
            return rd_expiring(days=-2)

        rd_client.get_user.side_effect = answer

        summary = validator.run_batch()

        assert summary == {'checked': 1, 'expired': 1, 'failed': 1}
        assert not reload_user(bob.id).enabled

    def test_shared_key_is_checked_once(self, validator, make_user, rd_client, rd_expiring):
        alice = make_user('alice', rd_api_key='SHARED')
        bob = make_user('bob', rd_api_key='SHARED')
        rd_client.get_user.return_value = rd_expiring(days=-1)

        summary = validator.run_batch()

        assert rd_client.get_user.call_count == 1
        assert summary['expired'] == 1
        assert not reload_user(alice.id).enabled
        assert not reload_user(bob.id).enabled

    def test_sub_accounts_are_not_checked(self, validator, make_user, rd_client, rd_expiring):
        parent = make_user('parent', rd_api_key='KEY-PARENT')
        child = make_user('child', parent=parent)
        rd_client.get_user.return_value = rd_expiring(days=-1)

        validator.run_batch()

        rd_client.get_user.assert_called_once_with('KEY-PARENT')
        # The child stays enabled; access checks follow the parent
        assert reload_user(child.id).enabled
        assert not reload_user(parent.id).enabled

    def test_completion_is_logged(self, validator, make_user, rd_client, rd_expiring):
        make_user('alice', rd_api_key='KEY-ALICE')
        rd_client.get_user.return_value = rd_expiring(days=10)

        validator.run_batch()

        log = ActivityLog.query.filter_by(action_type='rd_expiry_check_completed').one()
        assert json.loads(log.details) == {'checked': 1, 'expired': 0, 'failed': 0}


class TestValidateKey:

    def test_reports_days_remaining(self, validator, rd_client, rd_expiring):
        rd_client.get_user.return_value = rd_expiring(days=12)

        result = validator.validate_key('NEW-KEY')

        assert result['valid']
        assert result['daysRemaining'] == 12
        assert not result['isExpired']
        assert result['expiryDate'].endswith('Z')
        assert db.session.get(CredentialValidity, credential_fingerprint('NEW-KEY')) is not None

    def test_upstream_errors_propagate(self, validator, rd_client):
        rd_client.get_user.side_effect = UpstreamValidationFailure('Invalid or expired RD API key', http_status=401)

        with pytest.raises(UpstreamValidationFailure):
            validator.validate_key('BAD-KEY')


class TestValidationThenLogin:
    """What login sees after a validation batch"""

    def run_batch(self, app):
        with app.app_context():
            return get_services(app).expiry_validator.run_batch()

    def seed_validity(self, app, api_key, expires_at, checked_at):
        with app.app_context():
            CredentialValidityRepository.record(credential_fingerprint(api_key), expires_at, checked_at, 'premium')

    def read_validity(self, app, api_key):
        with app.app_context():
            record = db.session.get(CredentialValidity, credential_fingerprint(api_key))
            return ensure_utc(record.expires_at), ensure_utc(record.checked_at)

    def test_failure_keeps_valid_record_and_login(self, app, client, api_user, rd_client, clock):
        api_user('alice', rd_api_key='KEY-ALICE')
        seeded_at = clock.now
        self.seed_validity(app, 'KEY-ALICE', seeded_at + timedelta(days=20), seeded_at)
        clock.advance(hours=6)
        rd_client.get_user.side_effect = UpstreamValidationFailure('Real-Debrid returned HTTP 503 for /user',
                                                                   http_status=503)

        assert self.run_batch(app) == {'checked': 0, 'expired': 0, 'failed': 1}

        assert self.read_validity(app, 'KEY-ALICE') == (seeded_at + timedelta(days=20), seeded_at)
        assert login(client, 'alice').status_code == 200

    def test_failure_keeps_expired_record_and_rejection(self, app, client, api_user, rd_client, clock):
        alice = api_user('alice', rd_api_key='KEY-ALICE', enabled=False, disabled_reason=DISABLED_REASON_RD_EXPIRED)
        seeded_at = clock.now
        self.seed_validity(app, 'KEY-ALICE', seeded_at - timedelta(days=2), seeded_at)
        clock.advance(hours=6)
        rd_client.get_user.side_effect = UpstreamValidationFailure('Real-Debrid request timed out')

        assert self.run_batch(app) == {'checked': 0, 'expired': 0, 'failed': 1}

        assert self.read_validity(app, 'KEY-ALICE') == (seeded_at - timedelta(days=2), seeded_at)
        response = login(client, 'alice')
        assert response.status_code == 403
        assert response.get_json()['code'] == 'RD_SUBSCRIPTION_EXPIRED'
        with app.app_context():
            assert reload_user(alice.id).disabled_reason == DISABLED_REASON_RD_EXPIRED

    def test_expired_answer_rejects_next_login(self, app, client, api_user, rd_client, rd_expiring):
        api_user('alice', rd_api_key='KEY-ALICE')
        assert login(client, 'alice').status_code == 200
        rd_client.get_user.return_value = rd_expiring(days=-1)

        assert self.run_batch(app) == {'checked': 1, 'expired': 1, 'failed': 0}

        response = login(client, 'alice')
        assert response.status_code == 403
        assert response.get_json()['code'] == 'RD_SUBSCRIPTION_EXPIRED'
        assert response.get_json()['details']['expiredAt'].endswith('Z')
