"""
Kalshi weather market discovery.

Builds the expected event ticker for each city × {today, tomorrow}, fetches
the events that exist, and parses each market's temperature bucket.
"""
import re
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from weather_providers import CITY_CONFIGS
from kalshi_weather.config import CITIES, SERIES
from kalshi_weather.forecast import fan_out
from kalshi_weather.kalshi_api import KalshiAPIError, kalshi_fetch
from kalshi_weather.logger import log_action
from kalshi_weather.probability import Bucket

MONTHS = ['JAN', 'FEB', 'MAR', 'APR', 'MAY', 'JUN',
          'JUL', 'AUG', 'SEP', 'OCT', 'NOV', 'DEC']

OPEN_STATUSES = ('open', 'active')


# ── Event tickers ────────────────────────────────────────────────────────

def build_event_ticker(city, day):
    """Kalshi event ticker for a city/date, e.g. KXHIGHNY-26APR05.

    Returns None for a city with no series.
    """
    series = SERIES.get(city)
    if not series:
        return None
    return f"{series}-{day.year % 100:02d}{MONTHS[day.month - 1]}{day.day:02d}"


def date_from_ticker(ticker):
    """YYYY-MM-DD from an event or market ticker ('' if it doesn't parse)."""
    parts = (ticker or '').split('-')
    if len(parts) < 2:
        return ''
    m = re.fullmatch(r'(\d{2})([A-Z]{3})(\d{2})', parts[1].upper())
    if not m or m.group(2) not in MONTHS:
        return ''
    try:
        return date(2000 + int(m.group(1)), MONTHS.index(m.group(2)) + 1, int(m.group(3))).isoformat()
    except ValueError:
        return ''


def derive_event_ticker(market_ticker):
    """KXHIGHNY-26FEB12-B36.5 -> KXHIGHNY-26FEB12."""
    if not market_ticker:
        return ''
    parts = market_ticker.split('-')
    if len(parts) >= 2:
        return f"{parts[0]}-{parts[1]}"
    return market_ticker


def city_local_date(city, now=None):
    """Calendar date in the city's own timezone."""
    tz = ZoneInfo(CITY_CONFIGS[city]['timezone']) if city in CITY_CONFIGS else None
    now = now or datetime.now(tz=ZoneInfo('UTC'))
    return now.astimezone(tz).date() if tz else now.date()


# ── Bucket parsing ───────────────────────────────────────────────────────

_BELOW = re.compile(r'(-?\d+(?:\.\d+)?)°?\s*(?:F\s*)?or\s+below', re.IGNORECASE)
_ABOVE = re.compile(r'(-?\d+(?:\.\d+)?)°?\s*(?:F\s*)?or\s+above', re.IGNORECASE)
_RANGE = re.compile(r'(-?\d+(?:\.\d+)?)°?\s*(?:-|–|to)\s*(-?\d+(?:\.\d+)?)', re.IGNORECASE)
_LE = re.compile(r'(?:≤|<=)\s*(-?\d+(?:\.\d+)?)')
_GE = re.compile(r'(?:≥|>=)\s*(-?\d+(?:\.\d+)?)')


def _num(text):
    value = float(text)
    return int(value) if value.is_integer() else value


def parse_bucket_from_title(title):
    """Fallback parser for subtitles like '31° or below', '32-33°', '40° or above'."""
    if not title:
        return None

    m = _BELOW.search(title) or _LE.search(title)
    if m:
        return Bucket(None, _num(m.group(1)))

    m = _ABOVE.search(title) or _GE.search(title)
    if m:
        return Bucket(_num(m.group(1)), None)

    m = _RANGE.search(title)
    if m:
        low, high = _num(m.group(1)), _num(m.group(2))
        if low <= high:
            return Bucket(low, high)

    return None


def parse_bucket(market):
    """Bucket from the structured strike fields, else from the subtitle text."""
    strike_type = market.get('strike_type')
    floor = market.get('floor_strike')
    cap = market.get('cap_strike')

    if strike_type == 'less' and cap is not None:
        return Bucket(None, cap)
    if strike_type == 'greater' and floor is not None:
        return Bucket(floor, None)
    if strike_type == 'between' and floor is not None and cap is not None and floor <= cap:
        return Bucket(floor, cap)

    return parse_bucket_from_title(market.get('yes_sub_title') or market.get('subtitle') or market.get('title'))


def _yes_price(market):
    """Best YES quote in cents: last price, else ask, else bid."""
    for key in ('last_price', 'yes_ask', 'yes_bid'):
        value = market.get(key)
        if value:
            return value
    return 0


def normalize_market(m):
    return {
        'ticker': m.get('ticker', ''),
        'question': m.get('yes_sub_title') or m.get('subtitle') or m.get('title', ''),
        'bucket': parse_bucket(m),
        'yes_price': _yes_price(m),
        'yes_bid': m.get('yes_bid', 0),
        'yes_ask': m.get('yes_ask', 0),
        'volume': m.get('volume', 0),
        'status': m.get('status', ''),
    }


# ── Event fetch ──────────────────────────────────────────────────────────

def get_city_weather_event(city, day, label=None):
    """Fetch one city's event for a date.

    Returns ``{'success': True, 'event': {...}}``, ``{'success': False,
    'not_found': True}`` when Kalshi has not listed it (normal for future
    dates), or ``{'success': False, 'error': ...}``.
    """
    event_ticker = build_event_ticker(city, day)
    if not event_ticker:
        return {'success': False, 'error': f"No series configured for {city}"}

    try:
        data = kalshi_fetch(f"/events/{event_ticker}?with_nested_markets=true")
    except KalshiAPIError as e:
        if e.status == 404:
            return {'success': False, 'not_found': True, 'event_ticker': event_ticker}
        log_action('city_event_error', level='warn', city=city, event_ticker=event_ticker, error=str(e))
        return {'success': False, 'error': f"Failed to fetch {event_ticker}: {e}"}

    event = data.get('event') or {}
    raw_markets = data.get('markets') or event.get('markets') or []
    markets = [
        normalize_market(m) for m in raw_markets
        if not m.get('status') or m.get('status') in OPEN_STATUSES
    ]
    log_action('city_event_fetched', city=city, event_ticker=event_ticker, markets=len(markets))
    return {
        'success': True,
        'event': {
            'title': event.get('title', ''),
            'event_ticker': event_ticker,
            'city': city,
            'label': label,
            'date': day.isoformat(),
            'markets': markets,
        },
    }


def scan_markets(cities=None, now=None):
    """List every open today/tomorrow weather event across cities.

    The city/horizon fetches run concurrently.  Missing events are dropped
    silently; so are events with no open market.  Any other failure for one
    city is reported in ``errors`` and the rest of the scan goes on.
    """
    targets = []
    for city in (CITIES if cities is None else cities):
        today = city_local_date(city, now)
        targets.append((city, 'today', today))
        targets.append((city, 'tomorrow', today + timedelta(days=1)))

    def fetch(target):
        city, label, day = target
        result = get_city_weather_event(city, day, label)
        if result.get('not_found'):
            return {'success': True, 'event': None}
        return result

    results, failures = fan_out(fetch, targets)
    events = [r['event'] for _, r in results if r['event'] and r['event']['markets']]
    errors = [{'city': f['city'][0], 'label': f['city'][1], 'error': f['error']} for f in failures]

    log_action('markets_scanned', events=len(events), errors=len(errors))
    return {'success': True, 'events': events, 'errors': errors}
