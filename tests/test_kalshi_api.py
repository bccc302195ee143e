"""Tests for request signing, transport errors and error messages."""
import base64
from unittest.mock import MagicMock, patch

import pytest
import requests
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from kalshi_weather import kalshi_api
from kalshi_weather.kalshi_api import (
    KalshiAPIError,
    auth_headers,
    format_api_error,
    get_balance,
    get_positions,
    kalshi_fetch,
    place_order,
    sign_request,
)


@pytest.fixture(scope='module')
def private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _verify(private_key, signature, message):
    private_key.public_key().verify(
        base64.b64decode(signature),
        message.encode(),
        padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.DIGEST_LENGTH),
        hashes.SHA256(),
    )


class TestSigning:

    def test_signature_covers_timestamp_method_and_path(self, private_key):
        sig = sign_request(private_key, '1700000000000', 'get', '/trade-api/v2/portfolio/balance')
        _verify(private_key, sig, '1700000000000GET/trade-api/v2/portfolio/balance')

    def test_query_string_is_not_signed(self, private_key):
        sig = sign_request(private_key, '1', 'GET', '/trade-api/v2/portfolio/orders?limit=5')
        _verify(private_key, sig, '1GET/trade-api/v2/portfolio/orders')

    def test_auth_headers(self, private_key):
        headers = auth_headers('POST', '/trade-api/v2/portfolio/orders', private_key, key_id='key-123')
        assert headers['KALSHI-ACCESS-KEY'] == 'key-123'
        assert headers['KALSHI-ACCESS-TIMESTAMP'].isdigit()
        _verify(private_key, headers['KALSHI-ACCESS-SIGNATURE'],
                headers['KALSHI-ACCESS-TIMESTAMP'] + 'POST/trade-api/v2/portfolio/orders')


def _response(status=200, payload=None):
    r = MagicMock()
    r.ok = 200 <= status < 300
    r.status_code = status
    r.reason = 'OK' if r.ok else 'Error'
    r.text = ''
    r.json.return_value = payload or {}
    return r


class TestTransport:

    def test_public_fetch(self):
        with patch('kalshi_weather.kalshi_api.requests.request',
                   return_value=_response(payload={'event': {}})) as req:
            assert kalshi_fetch('/events/X') == {'event': {}}
        args, kwargs = req.call_args
        assert args == ('GET', 'https://api.elections.kalshi.com/trade-api/v2/events/X')
        assert kwargs['timeout'] == kalshi_api.KALSHI_TIMEOUT

    def test_http_error_carries_status(self):
        with patch('kalshi_weather.kalshi_api.requests.request', return_value=_response(404)):
            with pytest.raises(KalshiAPIError) as exc:
                kalshi_fetch('/events/missing')
        assert exc.value.status == 404

    def test_timeout_is_distinct(self):
        with patch('kalshi_weather.kalshi_api.requests.request', side_effect=requests.Timeout('slow')):
            with pytest.raises(KalshiAPIError) as exc:
                kalshi_fetch('/events/X')
        assert format_api_error(exc.value).startswith('Request timed out')

    def test_missing_credentials_refuse_authenticated_calls(self, monkeypatch):
        monkeypatch.setattr(kalshi_api, 'KALSHI_API_KEY_ID', '')
        with pytest.raises(KalshiAPIError, match='KALSHI_API_KEY_ID'):
            kalshi_api.kalshi_request('GET', '/portfolio/balance')


class TestErrorFormatting:

    @pytest.mark.parametrize('status', [401, 403])
    def test_auth(self, status):
        assert 'Authentication failed' in format_api_error(KalshiAPIError('x', status=status))

    def test_rate_limit(self):
        assert 'Rate limited' in format_api_error(KalshiAPIError('x', status=429))

    def test_generic(self):
        assert format_api_error(KalshiAPIError('market closed', status=400)) == 'market closed'


class TestAccount:

    def test_positions_skip_flat_markets(self):
        data = {'market_positions': [
            {'ticker': 'A', 'position': 3, 'market_exposure': 120},
            {'ticker': 'B', 'position': 0, 'resting_orders_count': 0},
        ]}
        with patch('kalshi_weather.kalshi_api.kalshi_request', return_value=data):
            result = get_positions()
        assert [p['ticker'] for p in result['positions']] == ['A']
        assert result['positions'][0]['exposure'] == 120

    def test_positions_failure_is_returned(self):
        with patch('kalshi_weather.kalshi_api.kalshi_request',
                   side_effect=KalshiAPIError('denied', status=401)):
            result = get_positions()
        assert result['success'] is False
        assert 'Authentication failed' in result['error']

    def test_order_body_for_yes(self):
        with patch('kalshi_weather.kalshi_api.kalshi_request', return_value={'order': {}}) as req:
            place_order('T', 'yes', 3, 46)
        method, path, body = req.call_args[0]
        assert (method, path) == ('POST', '/portfolio/orders')
        assert body == {'ticker': 'T', 'action': 'buy', 'side': 'yes', 'type': 'limit',
                        'count': 3, 'yes_price': 46}


class TestCredentialFailures:

    @pytest.fixture(autouse=True)
    def fresh_key_cache(self, monkeypatch):
        monkeypatch.setattr(kalshi_api, 'KALSHI_API_KEY_ID', 'key-123')
        kalshi_api._load_private_key.cache_clear()
        yield
        kalshi_api._load_private_key.cache_clear()

    def test_missing_key_file_is_an_auth_failure(self, monkeypatch, tmp_path):
        monkeypatch.setattr(kalshi_api, 'KALSHI_PRIVATE_KEY_PEM', '')
        monkeypatch.setattr(kalshi_api, 'KALSHI_PRIVATE_KEY_PATH', str(tmp_path / 'missing.pem'))
        result = get_balance()
        assert result['success'] is False
        assert 'Authentication failed' in result['error']

    def test_malformed_pem_fails_the_order_without_raising(self, monkeypatch, live_config):
        from kalshi_weather.execution import submit_trade
        monkeypatch.setattr(kalshi_api, 'KALSHI_PRIVATE_KEY_PEM', 'not a pem')
        result = submit_trade('KXHIGHNY-26APR05-B40', 'yes', 92, 46, live_config)
        assert result['success'] is False
        assert 'Authentication failed' in result['error']

    def test_non_json_body_is_an_api_error(self):
        r = _response()
        r.json.side_effect = ValueError('Expecting value')
        with patch('kalshi_weather.kalshi_api.requests.request', return_value=r):
            with pytest.raises(KalshiAPIError, match='invalid JSON'):
                kalshi_fetch('/events/X')
