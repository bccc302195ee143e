"""
Persistent daily-spend tracking.

The tracker is a single small JSON file ``{"daily_spend": int, "date": str}``
that resets itself on the first read of a new calendar day.
"""
import json
from datetime import date
from pathlib import Path

from kalshi_weather.config import SPEND_PATH
from kalshi_weather.logger import log_action


def _today():
    return date.today().isoformat()


def load_spend(path=None, today=None):
    """Return today's BudgetState, starting from zero on a new day."""
    today = today or _today()
    path = Path(path or SPEND_PATH)
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, ValueError):
        return {'daily_spend': 0, 'date': today}
    if not isinstance(data, dict) or data.get('date') != today:
        return {'daily_spend': 0, 'date': today}
    return {'daily_spend': int(data.get('daily_spend', 0)), 'date': today}


def save_spend(state, path=None):
    path = Path(path or SPEND_PATH)
    try:
        with open(path, 'w') as f:
            json.dump(state, f)
    except OSError as e:
        log_action('spend_save_error', level='error', error=str(e))


def track_spend(amount, path=None, today=None):
    """Add a filled order's cost to today's spend; returns the new total."""
    state = load_spend(path, today)
    state['daily_spend'] += amount
    save_spend(state, path)
    return state['daily_spend']


def get_remaining_daily_budget(config, path=None, today=None):
    return config.max_daily_spend - load_spend(path, today)['daily_spend']


def can_afford_trade(amount, config, path=None, today=None):
    """Client-side budget gate: per-trade cap and remaining daily budget."""
    if amount > config.max_trade_size:
        return False
    return amount <= get_remaining_daily_budget(config, path, today)
