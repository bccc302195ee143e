#!/usr/bin/env python3
"""
Weather data providers for the Kalshi daily-high markets.

Three public, keyless feeds are wrapped here, each behind the same small
provider interface:

* NOAA gridpoint forecasts  -> point forecast of today's / tomorrow's high
* Open-Meteo GFS ensemble   -> ~31 member samples of each day's high
* NOAA station observations -> realised high for a past date (settlement)

Every public call returns ``{'success': True, ...}`` or
``{'success': False, 'error': ...}``; nothing raises past this module.
"""
import logging
import time
from abc import ABC
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

import requests

from kalshi_weather.config import (
    ENSEMBLE_API_URL,
    NOAA_BASE_URL,
    NOAA_USER_AGENT,
    WEATHER_TIMEOUT,
)

logger = logging.getLogger(__name__)


# ── City configs (NOAA grid, settlement station, coordinates) ────────────
CITY_CONFIGS = {
    'NYC':          {'name': 'New York',      'gridpoint': 'OKX/33,37',  'station': 'KNYC', 'lat': 40.7789, 'lon': -73.9692,  'timezone': 'America/New_York'},
    'Chicago':      {'name': 'Chicago',       'gridpoint': 'LOT/76,73',  'station': 'KMDW', 'lat': 41.7868, 'lon': -87.7522,  'timezone': 'America/Chicago'},
    'Miami':        {'name': 'Miami',         'gridpoint': 'MFL/110,50', 'station': 'KMIA', 'lat': 25.7959, 'lon': -80.2870,  'timezone': 'America/New_York'},
    'Austin':       {'name': 'Austin',        'gridpoint': 'EWX/156,91', 'station': 'KAUS', 'lat': 30.1945, 'lon': -97.6699,  'timezone': 'America/Chicago'},
    'LA':           {'name': 'Los Angeles',   'gridpoint': 'LOX/154,44', 'station': 'KLAX', 'lat': 33.9416, 'lon': -118.4085, 'timezone': 'America/Los_Angeles'},
    'Philadelphia': {'name': 'Philadelphia',  'gridpoint': 'PHI/57,97',  'station': 'KPHL', 'lat': 39.8744, 'lon': -75.2424,  'timezone': 'America/New_York'},
    'DC':           {'name': 'Washington DC', 'gridpoint': 'LWX/97,71',  'station': 'KDCA', 'lat': 38.8512, 'lon': -77.0402,  'timezone': 'America/New_York'},
    'Denver':       {'name': 'Denver',        'gridpoint': 'BOU/62,60',  'station': 'KDEN', 'lat': 39.8561, 'lon': -104.6737, 'timezone': 'America/Denver'},
    'SF':           {'name': 'San Francisco', 'gridpoint': 'MTR/85,105', 'station': 'KSFO', 'lat': 37.6213, 'lon': -122.3790, 'timezone': 'America/Los_Angeles'},
}

ENSEMBLE_MEMBERS = 30


def _unknown_city(city: str) -> Dict:
    return {'success': False, 'error': f"Unknown city: {city}. Available: {', '.join(CITY_CONFIGS)}"}


class WeatherProvider(ABC):
    """Base class: shared HTTP plumbing and a light rate limit."""

    def __init__(self, name: str):
        self.name = name
        self.last_request_time = 0
        self.rate_limit_delay = 0.1  # seconds between requests

    def _rate_limit(self):
        elapsed = time.time() - self.last_request_time
        if elapsed < self.rate_limit_delay:
            time.sleep(self.rate_limit_delay - elapsed)
        self.last_request_time = time.time()

    def _get_json(self, url: str, params: Optional[Dict] = None, headers: Optional[Dict] = None) -> Dict:
        self._rate_limit()
        try:
            r = requests.get(url, params=params, headers=headers, timeout=WEATHER_TIMEOUT)
        except requests.Timeout as e:
            raise RuntimeError(f"{self.name} request timed out") from e
        if not r.ok:
            raise RuntimeError(f"{self.name} API error: {r.status_code} {r.reason}")
        return r.json()


class NOAAForecastProvider(WeatherProvider):
    """NOAA National Weather Service gridpoint forecast."""

    def __init__(self):
        super().__init__("NOAA")

    def get_forecast(self, city: str) -> Dict:
        """High temperature for today and tomorrow in °F."""
        cfg = CITY_CONFIGS.get(city)
        if not cfg:
            return _unknown_city(city)

        try:
            data = self._get_json(
                f"{NOAA_BASE_URL}/gridpoints/{cfg['gridpoint']}/forecast",
                headers={'User-Agent': NOAA_USER_AGENT, 'Accept': 'application/geo+json'},
            )
            props = data.get('properties', {})
            periods = props.get('periods') or []
            if not periods:
                return {'success': False, 'error': f"No forecast data available for {city}"}

            # Periods alternate day/night; the first daytime one is "today"
            # and the next daytime one past index 1 is "tomorrow".
            today = next((p for p in periods if p.get('isDaytime')), None)
            tomorrow = next((p for i, p in enumerate(periods) if p.get('isDaytime') and i > 1), None)

            forecast = {
                'city': city,
                'source': 'noaa',
                'generated_at': props.get('generatedAt'),
                'today': self._period(today),
                'tomorrow': self._period(tomorrow),
            }
            logger.info(f"NOAA forecast for {city}: today={forecast['today'] and forecast['today']['high_temp']}°F "
                        f"tomorrow={forecast['tomorrow'] and forecast['tomorrow']['high_temp']}°F")
            return {'success': True, 'forecast': forecast}
        except (RuntimeError, requests.RequestException, ValueError, KeyError) as e:
            logger.error(f"NOAA forecast error for {city}: {e}")
            return {'success': False, 'error': f"Failed to fetch forecast for {city}: {e}"}

    @staticmethod
    def _period(period: Optional[Dict]) -> Optional[Dict]:
        if not period:
            return None
        temp = period['temperature']
        if period.get('temperatureUnit') == 'C':
            temp = round(temp * 9 / 5 + 32)
        precip = (period.get('probabilityOfPrecipitation') or {}).get('value')
        return {
            'high_temp': temp,
            'unit': 'F',
            'precip_chance': precip if precip is not None else 0,
            'short_forecast': period.get('shortForecast'),
        }


class OpenMeteoEnsembleProvider(WeatherProvider):
    """Open-Meteo GFS ensemble: mean plus 30 perturbed members per day."""

    def __init__(self):
        super().__init__("OpenMeteo_GFS_Ensemble")

    def get_forecast(self, city: str) -> Dict:
        cfg = CITY_CONFIGS.get(city)
        if not cfg:
            return _unknown_city(city)

        try:
            data = self._get_json(ENSEMBLE_API_URL, params={
                'latitude': cfg['lat'],
                'longitude': cfg['lon'],
                'daily': 'temperature_2m_max',
                'models': 'gfs_seamless',
                'forecast_days': 2,
                'temperature_unit': 'fahrenheit',
            }, headers={'Accept': 'application/json'})
            daily = data.get('daily') or {}
            if not daily.get('time'):
                return {'success': False, 'error': f"No ensemble data for {city}"}

            today_members: List[float] = []
            tomorrow_members: List[float] = []
            keys = ['temperature_2m_max'] + [
                f"temperature_2m_max_member{i:02d}" for i in range(1, ENSEMBLE_MEMBERS + 1)
            ]
            for key in keys:
                values = daily.get(key) or []
                if len(values) > 0 and values[0] is not None:
                    today_members.append(values[0])
                if len(values) > 1 and values[1] is not None:
                    tomorrow_members.append(values[1])

            forecast = {
                'city': city,
                'source': 'gfs_ensemble',
                'dates': daily['time'],
                'today': summarize_members(today_members),
                'tomorrow': summarize_members(tomorrow_members),
            }
            logger.info(f"Ensemble for {city}: {len(today_members)} today / {len(tomorrow_members)} tomorrow members")
            return {'success': True, 'forecast': forecast}
        except (RuntimeError, requests.RequestException, ValueError) as e:
            logger.error(f"Ensemble error for {city}: {e}")
            return {'success': False, 'error': f"Ensemble fetch failed for {city}: {e}"}


def summarize_members(members: List[float]) -> Optional[Dict]:
    """Mean/min/max/spread of an ensemble member list, or None when empty."""
    if not members:
        return None
    lo, hi = min(members), max(members)
    return {
        'members': members,
        'mean': sum(members) / len(members),
        'min': lo,
        'max': hi,
        'spread': hi - lo,
    }


class NOAAObservationProvider(WeatherProvider):
    """NOAA station observations: the realised high for a past date."""

    def __init__(self):
        super().__init__("NOAA_Observations")

    def get_observed_high(self, city: str, date_str: str, today: Optional[date] = None) -> Dict:
        """Max observed temperature for ``date_str`` (YYYY-MM-DD), °F rounded.

        Today and future dates are refused because their observations are
        still incomplete.
        """
        cfg = CITY_CONFIGS.get(city)
        if not cfg:
            return {'success': False, 'error': f"Unknown city: {city}"}

        today_str = (today or date.today()).isoformat()
        if date_str >= today_str:
            return {'success': False, 'error': f"Cannot fetch observations for today or future: {date_str}"}

        try:
            data = self._get_json(
                f"{NOAA_BASE_URL}/stations/{cfg['station']}/observations",
                params={'start': f"{date_str}T00:00:00Z", 'end': f"{next_date(date_str)}T00:00:00Z"},
                headers={'User-Agent': NOAA_USER_AGENT, 'Accept': 'application/geo+json'},
            )
            features = data.get('features') or []
            if not features:
                return {'success': False, 'error': f"No observations found for {city} on {date_str}"}

            # Station readings come back in Celsius.
            readings = [
                f.get('properties', {}).get('temperature', {}).get('value')
                for f in features
            ]
            readings = [t for t in readings if isinstance(t, (int, float)) and not isinstance(t, bool)]
            if not readings:
                return {'success': False, 'error': f"No valid temperature readings for {city} on {date_str}"}

            actual_high = round(max(readings) * 9 / 5 + 32)
            logger.info(f"Observed high for {city} on {date_str}: {actual_high}°F ({cfg['station']})")
            return {'success': True, 'actual_high': actual_high}
        except (RuntimeError, requests.RequestException, ValueError) as e:
            logger.error(f"Observation error for {city} on {date_str}: {e}")
            return {'success': False, 'error': f"Failed to fetch observations for {city}: {e}"}


def next_date(date_str: str) -> str:
    """Next calendar day for a YYYY-MM-DD string."""
    return (datetime.strptime(date_str, "%Y-%m-%d") + timedelta(days=1)).strftime("%Y-%m-%d")


# Stateless HTTP callers; one of each is enough.
_noaa = NOAAForecastProvider()
_ensemble = OpenMeteoEnsembleProvider()
_observations = NOAAObservationProvider()


def get_point_forecast(city: str) -> Dict:
    return _noaa.get_forecast(city)


def get_ensemble_forecast(city: str) -> Dict:
    return _ensemble.get_forecast(city)


def get_observed_high(city: str, date_str: str, today: Optional[date] = None) -> Dict:
    return _observations.get_observed_high(city, date_str, today=today)
