"""
Kalshi REST API client.

Handles RSA-signed authentication for portfolio endpoints, unauthenticated
access to market data, and classification of API failures into messages a
human can act on.
"""
import base64
import time
from functools import lru_cache

import requests
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from kalshi_weather.config import (
    KALSHI_BASE,
    KALSHI_API_PREFIX,
    KALSHI_API_KEY_ID,
    KALSHI_PRIVATE_KEY_PATH,
    KALSHI_PRIVATE_KEY_PEM,
    KALSHI_TIMEOUT,
)


class KalshiAPIError(Exception):
    """Non-2xx response (or transport failure) from the Kalshi API."""

    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status


# ── Credentials ──────────────────────────────────────────────────────────

def validate_env():
    """Return a list of missing-credential messages (empty when configured)."""
    errors = []
    if not KALSHI_API_KEY_ID:
        errors.append("KALSHI_API_KEY_ID is not set")
    if not KALSHI_PRIVATE_KEY_PEM and not KALSHI_PRIVATE_KEY_PATH:
        errors.append("KALSHI_PRIVATE_KEY_PATH or KALSHI_PRIVATE_KEY_PEM is not set")
    return errors


@lru_cache(maxsize=1)
def _load_private_key():
    if KALSHI_PRIVATE_KEY_PEM:
        pem = KALSHI_PRIVATE_KEY_PEM.encode()
    else:
        with open(KALSHI_PRIVATE_KEY_PATH, 'rb') as key_file:
            pem = key_file.read()
    return serialization.load_pem_private_key(pem, password=None)


# ── Request signing ──────────────────────────────────────────────────────

def sign_request(private_key, timestamp, method, path):
    """Sign ``timestamp + METHOD + path`` (query string stripped) with RSA-PSS.

    Returns the base64-encoded signature Kalshi expects in
    KALSHI-ACCESS-SIGNATURE.
    """
    path_without_query = path.split('?')[0]
    msg = (timestamp + method.upper() + path_without_query).encode()
    sig = private_key.sign(
        msg,
        padding.PSS(
            mgf=padding.MGF1(hashes.SHA256()),
            salt_length=padding.PSS.DIGEST_LENGTH,
        ),
        hashes.SHA256(),
    )
    return base64.b64encode(sig).decode()


def auth_headers(method, path, private_key=None, key_id=None):
    """Build the three Kalshi auth headers for a full API path."""
    private_key = private_key or _load_private_key()
    ts = str(int(time.time() * 1000))
    return {
        'KALSHI-ACCESS-KEY': key_id or KALSHI_API_KEY_ID,
        'KALSHI-ACCESS-TIMESTAMP': ts,
        'KALSHI-ACCESS-SIGNATURE': sign_request(private_key, ts, method, path),
        'Content-Type': 'application/json',
    }


# ── Requests ─────────────────────────────────────────────────────────────

def _send(method, url, headers, body=None):
    try:
        r = requests.request(method, url, headers=headers, json=body, timeout=KALSHI_TIMEOUT)
    except requests.Timeout as e:
        raise KalshiAPIError(f"Kalshi API request timed out: {e}") from e
    except requests.RequestException as e:
        raise KalshiAPIError(f"Kalshi API request failed: {e}") from e
    if not r.ok:
        raise KalshiAPIError(
            f"Kalshi API error: {r.status_code} {r.reason} {r.text[:200]}".rstrip(),
            status=r.status_code,
        )
    try:
        return r.json()
    except ValueError as e:
        raise KalshiAPIError(f"Kalshi API returned invalid JSON: {e}", status=r.status_code) from e


def kalshi_fetch(path):
    """Public (unauthenticated) GET, e.g. kalshi_fetch('/events/KXHIGHNY-26APR05')."""
    return _send('GET', KALSHI_BASE + KALSHI_API_PREFIX + path, {'Accept': 'application/json'})


def kalshi_request(method, path, body=None):
    """Authenticated request; *path* is relative to /trade-api/v2."""
    env_errors = validate_env()
    if env_errors:
        raise KalshiAPIError(", ".join(env_errors))
    try:
        private_key = _load_private_key()
    except (OSError, ValueError, TypeError) as e:
        raise KalshiAPIError(f"Kalshi private key could not be loaded: {e}", status=401) from e
    full_path = KALSHI_API_PREFIX + path
    headers = auth_headers(method, full_path, private_key)
    return _send(method.upper(), KALSHI_BASE + full_path, headers, body)


# ── Error formatting ─────────────────────────────────────────────────────

def format_api_error(error):
    """Map an exception to a short message suitable for an alert."""
    status = getattr(error, 'status', None)
    text = str(error)
    if status in (401, 403) or ' 401 ' in text or ' 403 ' in text:
        return "Authentication failed. Check your KALSHI_API_KEY_ID and private key."
    if status == 429 or ' 429 ' in text:
        return "Rate limited. Wait a moment and try again."
    if isinstance(error, requests.Timeout) or 'timed out' in text:
        return "Request timed out. The exchange did not respond in time."
    return text or "Unknown API error"


# ── Account ──────────────────────────────────────────────────────────────

def get_balance():
    """Available cash and pending payouts, in cents."""
    try:
        data = kalshi_request('GET', '/portfolio/balance')
    except KalshiAPIError as e:
        return {'success': False, 'error': format_api_error(e)}
    return {
        'success': True,
        'balance': {
            'available': data.get('balance', 0),
            'payout': data.get('payout', 0),
        },
    }


def get_positions():
    """Open market positions with their notional exposure in cents."""
    try:
        data = kalshi_request('GET', '/portfolio/positions')
    except KalshiAPIError as e:
        return {'success': False, 'error': format_api_error(e)}

    positions = []
    for p in data.get('market_positions', []):
        if not p.get('position') and not p.get('resting_orders_count'):
            continue
        positions.append({
            'ticker': p.get('ticker', ''),
            'yes_count': p.get('position', 0),
            'exposure': p.get('market_exposure', 0),
            'realized_pnl': p.get('realized_pnl', 0),
            'resting_order_count': p.get('resting_orders_count', 0),
        })
    return {'success': True, 'positions': positions}


def place_order(ticker, side, count, price_cents):
    """Submit a limit buy; raises KalshiAPIError on rejection."""
    body = {
        'ticker': ticker,
        'action': 'buy',
        'side': side,
        'type': 'limit',
        'count': count,
        'yes_price': price_cents if side == 'yes' else None,
        'no_price': price_cents if side == 'no' else None,
    }
    body = {k: v for k, v in body.items() if v is not None}
    return kalshi_request('POST', '/portfolio/orders', body)
