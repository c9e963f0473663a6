"""
Tests for the Real-Debrid API client
"""
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests

from exceptions import UpstreamValidationFailure
from services.realdebrid import RealDebridClient, parse_rd_timestamp


def make_response(status_code=200, payload=None, json_error=False):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 400
    if json_error:
        response.json.side_effect = ValueError('No JSON object could be decoded')
    else:
        response.json.return_value = payload
    return response


@pytest.fixture
def rd():
    client = RealDebridClient(base_url='https://rd.example/rest/1.0/', timeout=3)
    client.session = MagicMock()
    return client


class TestParseTimestamp:

    def test_zulu_timestamp(self):
        assert parse_rd_timestamp('2026-12-31T23:59:59.000Z') == datetime(2026, 12, 31, 23, 59, 59, tzinfo=timezone.utc)

    def test_offset_is_normalised_to_utc(self):
        assert parse_rd_timestamp('2026-06-01T02:00:00+02:00') == datetime(2026, 6, 1, 0, 0, tzinfo=timezone.utc)

    def test_empty(self):
        assert parse_rd_timestamp(None) is None
        assert parse_rd_timestamp('') is None


class TestGetUser:

    def test_returns_expiry_and_type(self, rd):
        rd.session.request.return_value = make_response(payload={
            'username': 'duck',
            'type': 'premium',
            'expiration': '2026-12-31T23:59:59.000Z',
        })

        info = rd.get_user('KEY')

        assert info.username == 'duck'
        assert info.account_type == 'premium'
        assert info.expires_at == datetime(2026, 12, 31, 23, 59, 59, tzinfo=timezone.utc)

        method, url = rd.session.request.call_args.args
        assert method == 'GET'
        assert url == 'https://rd.example/rest/1.0/user'
        assert rd.session.request.call_args.kwargs['headers'] == {'Authorization': 'Bearer KEY'}
        assert rd.session.request.call_args.kwargs['timeout'] == (3, 3)

    def test_free_account_has_no_expiry(self, rd):
        rd.session.request.return_value = make_response(payload={'username': 'duck', 'type': 'free'})

        assert rd.get_user('KEY').expires_at is None

    @pytest.mark.parametrize('status_code', [401, 403])
    def test_rejected_key(self, rd, status_code):
        rd.session.request.return_value = make_response(status_code=status_code, payload={'error': 'bad_token'})

        with pytest.raises(UpstreamValidationFailure) as exc_info:
            rd.get_user('KEY')
        assert exc_info.value.http_status == status_code

    def test_server_error(self, rd):
        rd.session.request.return_value = make_response(status_code=503)

        with pytest.raises(UpstreamValidationFailure) as exc_info:
            rd.get_user('KEY')
        assert exc_info.value.http_status == 503

    def test_timeout(self, rd):
        rd.session.request.side_effect = requests.Timeout('read timed out')

        with pytest.raises(UpstreamValidationFailure):
            rd.get_user('KEY')

    def test_connection_error(self, rd):
        rd.session.request.side_effect = requests.ConnectionError('connection refused')

        with pytest.raises(UpstreamValidationFailure):
            rd.get_user('KEY')

    def test_non_json_body(self, rd):
        rd.session.request.return_value = make_response(json_error=True)

        with pytest.raises(UpstreamValidationFailure):
            rd.get_user('KEY')

    def test_unexpected_payload(self, rd):
        rd.session.request.return_value = make_response(payload=['not', 'a', 'dict'])

        with pytest.raises(UpstreamValidationFailure):
            rd.get_user('KEY')

    def test_unparseable_expiry(self, rd):
        rd.session.request.return_value = make_response(payload={'expiration': 'next tuesday'})

        with pytest.raises(UpstreamValidationFailure):
            rd.get_user('KEY')


class TestUnrestrictLink:

    def test_returns_download_url(self, rd):
        rd.session.request.return_value = make_response(payload={
            'download': 'https://cdn.rd.example/d/abc/The.Matrix.1080p.mkv',
            'filename': 'The.Matrix.1080p.mkv',
            'filesize': 8_000_000_000,
        })

        link = rd.unrestrict_link('KEY', 'https://hoster.example/file/abc')

        assert link.download_url == 'https://cdn.rd.example/d/abc/The.Matrix.1080p.mkv'
        assert link.file_name == 'The.Matrix.1080p.mkv'
        assert link.file_size_bytes == 8_000_000_000
        assert rd.session.request.call_args.args[0] == 'POST'
        assert rd.session.request.call_args.kwargs['data'] == {'link': 'https://hoster.example/file/abc'}

    def test_missing_download_url(self, rd):
        rd.session.request.return_value = make_response(payload={'filename': 'x.mkv'})

        with pytest.raises(UpstreamValidationFailure):
            rd.unrestrict_link('KEY', 'https://hoster.example/file/abc')


class TestFromSettings:

    def test_defaults(self):
        client = RealDebridClient.from_settings({})

        assert client.base_url == 'https://api.real-debrid.com/rest/1.0'
        assert client.timeout == 10
        assert client.connect_timeout == 5
        assert client.session.headers['User-Agent'].startswith('DuckFlix/')
