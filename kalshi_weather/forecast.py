"""
Batch forecast interface.

Fans the per-city weather providers out across all configured cities in a
thread pool.  One city failing never aborts the batch: the caller gets the
cities that worked plus a per-city error list.
"""
from concurrent.futures import ThreadPoolExecutor

import weather_providers
from kalshi_weather.config import CITIES
from kalshi_weather.logger import log_action

MAX_WORKERS = 8


def fan_out(fetch, items):
    """Call ``fetch(item)`` concurrently for every item.

    *fetch* returns ``{'success': ..., ...}``.  Returns ``(results, errors)``
    where results is a list of ``(item, value)`` in input order and errors is
    a list of ``{'city': item, 'error': msg}``.
    """
    items = list(items)
    if not items:
        return [], []

    results, errors = [], []
    with ThreadPoolExecutor(max_workers=min(MAX_WORKERS, len(items))) as pool:
        futures = [(item, pool.submit(fetch, item)) for item in items]
        for item, future in futures:
            try:
                value = future.result()
            except Exception as e:  # one city's crash must not sink the batch
                errors.append({'city': item, 'error': str(e)})
                continue
            if value.get('success'):
                results.append((item, value))
            else:
                errors.append({'city': item, 'error': value.get('error', 'unknown error')})
    return results, errors


def get_forecast(city):
    """NOAA point forecast for one city."""
    result = weather_providers.get_point_forecast(city)
    if result['success']:
        fc = result['forecast']
        log_action('forecast_fetched', city=city,
                   today_high=fc['today'] and fc['today']['high_temp'],
                   tomorrow_high=fc['tomorrow'] and fc['tomorrow']['high_temp'])
    else:
        log_action('forecast_error', level='warn', city=city, error=result['error'])
    return result


def get_all_forecasts(cities=None):
    """Point forecasts for every configured city."""
    results, errors = fan_out(get_forecast, CITIES if cities is None else cities)
    forecasts = [value['forecast'] for _, value in results]
    log_action('all_forecasts', fetched=len(forecasts), errors=len(errors))
    return {'success': True, 'forecasts': forecasts, 'errors': errors}


def get_ensemble_forecast(city):
    result = weather_providers.get_ensemble_forecast(city)
    if result['success']:
        fc = result['forecast']
        log_action('ensemble_fetched', city=city,
                   today_members=len(fc['today']['members']) if fc['today'] else 0,
                   tomorrow_members=len(fc['tomorrow']['members']) if fc['tomorrow'] else 0,
                   today_spread=fc['today'] and fc['today']['spread'],
                   tomorrow_spread=fc['tomorrow'] and fc['tomorrow']['spread'])
    else:
        log_action('ensemble_error', level='error', city=city, error=result['error'])
    return result


def get_all_ensemble_forecasts(cities=None):
    """GFS ensemble forecasts for every configured city."""
    results, errors = fan_out(get_ensemble_forecast, CITIES if cities is None else cities)
    forecasts = [value['forecast'] for _, value in results]
    log_action('all_ensembles', fetched=len(forecasts), errors=len(errors))
    return {'success': True, 'forecasts': forecasts, 'errors': errors}


def get_observed_highs(cities, date_str):
    """Observed highs for several cities on one date: ``{'highs': {city: °F}}``."""
    results, errors = fan_out(
        lambda city: weather_providers.get_observed_high(city, date_str), cities,
    )
    highs = {city: value['actual_high'] for city, value in results}
    log_action('observed_highs_batch', date=date_str, fetched=len(highs), errors=len(errors))
    return {'success': True, 'highs': highs, 'errors': errors}
