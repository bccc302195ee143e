"""
Opportunity scanner.

Compares NOAA point forecasts and GFS ensemble members against Kalshi
high-temperature bucket prices, and returns the mispriced YES contracts,
sized with fractional Kelly, best edge first.
"""
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from zoneinfo import ZoneInfo

from weather_providers import CITY_CONFIGS
from kalshi_weather.config import FALLBACK_BANKROLL, MIN_ENSEMBLE_MEMBERS
from kalshi_weather.execution import account_balance, account_positions
from kalshi_weather.forecast import get_all_ensemble_forecasts, get_all_forecasts
from kalshi_weather.logger import log_action
from kalshi_weather.markets import scan_markets
from kalshi_weather.probability import (
    calculate_position_size,
    ensemble_bucket_confidence,
    temperature_bucket_confidence,
)


# ── Helpers ──────────────────────────────────────────────────────────────

def is_stale(city, label, config, now=None):
    """True for a city's 'today' markets once its local afternoon has begun."""
    if label != 'today':
        return False
    tz = ZoneInfo(CITY_CONFIGS[city]['timezone']) if city in CITY_CONFIGS else None
    now = now or datetime.now(tz=ZoneInfo('UTC'))
    local = now.astimezone(tz) if tz else now
    return local.hour >= config.today_cutoff_hour


def available_bankroll(config):
    """Cash available for sizing, net of capital already in open positions."""
    balance = account_balance(config)
    if not balance['success']:
        log_action('bankroll_fallback', level='warn', error=balance.get('error'), bankroll=FALLBACK_BANKROLL)
        return FALLBACK_BANKROLL

    bankroll = balance['balance']['available']
    positions = account_positions(config)
    if positions['success']:
        committed = sum(p.get('exposure', 0) for p in positions['positions'])
        bankroll = max(0, bankroll - committed)
    else:
        log_action('positions_fallback', level='warn', error=positions.get('error'))
    return bankroll


def market_confidence(market, forecast_temp, members, sigma, config):
    """(confidence percent, source tag) for one market's bucket."""
    bucket = market['bucket']
    if members and len(members) >= MIN_ENSEMBLE_MEMBERS:
        p = ensemble_bucket_confidence(members, bucket.low, bucket.high)
        return round(p * 100), 'ensemble'
    p = temperature_bucket_confidence(forecast_temp, bucket.low, bucket.high, sigma)
    return min(round(p * 100), config.max_normal_confidence), 'normal'


def score_market(market, event, forecast_temp, members, config, bankroll):
    """Opportunity dict for a mispriced market, or None."""
    if not market.get('bucket') or forecast_temp is None:
        return None

    sigma = config.sigma_for(event['label'])
    confidence, source = market_confidence(market, forecast_temp, members, sigma, config)
    edge = confidence - market['yes_price']
    if edge < config.min_edge:
        return None

    sizing = calculate_position_size(
        bankroll, edge, market['yes_price'],
        kelly_multiplier=config.kelly_multiplier,
        max_trade_size=config.max_trade_size,
        min_trade_size=config.min_trade_size,
    )
    if sizing['amount'] == 0:
        return None

    use_ensemble = source == 'ensemble'
    return {
        'event_title': event.get('title', ''),
        'market': market['question'],
        'ticker': market['ticker'],
        'event_ticker': event['event_ticker'],
        'city': event['city'],
        'label': event['label'],
        'bucket': market['bucket'],
        'forecast_temp': forecast_temp,
        'forecast_confidence': confidence,
        'confidence_source': source,
        'sigma': None if use_ensemble else sigma,
        'ensemble_spread': round(max(members) - min(members), 1) if use_ensemble else None,
        'market_price': market['yes_price'],
        'edge': edge,
        'side': 'yes',
        'suggested_amount': sizing['amount'],
        'suggested_yes_price': market['yes_price'] + 1,
        'sizing_reason': sizing['reason'],
        'contracts': sizing['contracts'],
    }


# ── Main scanner ─────────────────────────────────────────────────────────

def _safe_ensembles():
    try:
        return get_all_ensemble_forecasts()
    except Exception as e:  # scan continues on the normal model
        log_action('ensemble_fallback', level='warn', error=str(e))
        return {'success': True, 'forecasts': [], 'errors': [{'city': '*', 'error': str(e)}]}


def find_opportunities(config, now=None):
    """Scan every city/horizon and return opportunities sorted by edge.

    Returns ``{'success': True, 'opportunities': [...], 'summary': {...}}`` or
    ``{'success': False, 'error': ...}`` when a whole provider fails.
    """
    with ThreadPoolExecutor(max_workers=3) as pool:
        forecasts_f = pool.submit(get_all_forecasts)
        ensembles_f = pool.submit(_safe_ensembles)
        markets_f = pool.submit(scan_markets, None, now)
        try:
            forecast_result = forecasts_f.result()
            markets_result = markets_f.result()
        except Exception as e:
            log_action('scan_provider_error', level='error', error=str(e))
            return {'success': False, 'error': f"Provider failure: {e}"}
        ensemble_result = ensembles_f.result()

    if not forecast_result.get('success'):
        return forecast_result
    if not markets_result.get('success'):
        return markets_result

    forecast_by_city = {f['city']: f for f in forecast_result['forecasts']}
    ensemble_by_city = {f['city']: f for f in ensemble_result.get('forecasts', [])}
    bankroll = available_bankroll(config)

    opportunities = []
    skipped_stale = 0
    for event in markets_result['events']:
        city, label = event['city'], event['label']
        if is_stale(city, label, config, now):
            skipped_stale += 1
            continue

        forecast = forecast_by_city.get(city)
        horizon = forecast and forecast.get(label)
        if not horizon:
            continue

        ensemble = ensemble_by_city.get(city)
        ens_horizon = ensemble and ensemble.get(label)
        members = ens_horizon['members'] if ens_horizon else None

        for market in event['markets']:
            opp = score_market(market, event, horizon['high_temp'], members, config, bankroll)
            if opp:
                opportunities.append(opp)

    opportunities.sort(key=lambda o: o['edge'], reverse=True)

    summary = {
        'events_scanned': len(markets_result['events']),
        'cities_forecasted': len(forecast_result['forecasts']),
        'ensemble_cities': len(ensemble_by_city),
        'opportunities_found': len(opportunities),
        'forecast_errors': forecast_result.get('errors', []),
        'ensemble_errors': ensemble_result.get('errors', []),
        'skipped_stale': skipped_stale,
    }
    log_action('opportunities_found', count=len(opportunities), bankroll=bankroll,
               events_scanned=summary['events_scanned'],
               cities_forecasted=summary['cities_forecasted'],
               ensemble_cities=summary['ensemble_cities'],
               skipped_stale=skipped_stale, min_edge=config.min_edge)
    return {'success': True, 'opportunities': opportunities, 'summary': summary}
