"""
Paper trading simulator.

Runs the same validation and contract math as the live executor against an
independent virtual balance kept in a JSON file.  Nothing here talks to the
exchange; settlement uses NOAA observed highs instead of Kalshi results.
"""
import json
import uuid
from datetime import date, datetime, timezone
from pathlib import Path

import weather_providers
from kalshi_weather.config import PAPER_PATH
from kalshi_weather.logger import log_action
from kalshi_weather.markets import date_from_ticker
from kalshi_weather.probability import Bucket, did_bucket_win

DEFAULT_BALANCE = 100_000          # cents ($1000)


def _fresh_state(balance=DEFAULT_BALANCE):
    return {'initial_balance': balance, 'balance': balance, 'positions': [], 'settled': []}


# ── State ────────────────────────────────────────────────────────────────

def get_paper_state(path=None):
    """Load the paper state, or a fresh one if missing or malformed."""
    path = Path(path or PAPER_PATH)
    try:
        with open(path) as f:
            state = json.load(f)
    except (OSError, ValueError):
        return _fresh_state()
    if (not isinstance(state, dict)
            or not isinstance(state.get('balance'), (int, float))
            or not isinstance(state.get('positions'), list)
            or not isinstance(state.get('settled'), list)):
        return _fresh_state()
    state.setdefault('initial_balance', DEFAULT_BALANCE)
    return state


def save_paper_state(state, path=None):
    path = Path(path or PAPER_PATH)
    try:
        with open(path, 'w') as f:
            json.dump(state, f, indent=2)
    except OSError as e:
        log_action('paper_save_error', level='error', error=str(e))


def reset_paper(balance_cents=DEFAULT_BALANCE, path=None):
    save_paper_state(_fresh_state(balance_cents), path)
    log_action('paper_reset', balance=balance_cents)
    return {'success': True,
            'message': f"Paper trading reset. Balance: {balance_cents}¢ (${balance_cents / 100:.2f})"}


# ── Account views (same shape as the live client) ────────────────────────

def get_paper_balance(path=None):
    state = get_paper_state(path)
    return {'success': True, 'balance': {'available': state['balance'], 'payout': 0}}


def get_paper_positions(path=None):
    state = get_paper_state(path)
    positions = [{
        'ticker': p['ticker'],
        'yes_count': p['count'],
        'exposure': p['cost'],
        'realized_pnl': 0,
        'resting_order_count': 0,
    } for p in state['positions']]
    return {'success': True, 'positions': positions}


# ── Trading ──────────────────────────────────────────────────────────────

def validate_order(ticker, side, amount, yes_price):
    """Shared order validation; returns an error message or None."""
    if not ticker:
        return "ticker is required"
    if not side or side.lower() not in ('yes', 'no'):
        return 'side must be "yes" or "no"'
    if not amount or amount <= 0:
        return "amount must be positive"
    if not yes_price or yes_price < 1 or yes_price > 99:
        return "yes_price must be between 1 and 99 cents"
    return None


def execute_paper_trade(ticker, side, amount, yes_price, opportunity=None, path=None):
    """Buy contracts with virtual money; returns the executor's result shape."""
    error = validate_order(ticker, side, amount, yes_price)
    if error:
        return {'success': False, 'error': error}

    count = amount // yes_price
    if count < 1:
        return {'success': False, 'error': f"Amount {amount}¢ too small for price {yes_price}¢"}

    cost = count * yes_price
    state = get_paper_state(path)
    if cost > state['balance']:
        return {'success': False,
                'error': f"Paper balance insufficient: need {cost}¢, have {state['balance']}¢"}

    opp = opportunity or {}
    bucket = opp.get('bucket')
    position = {
        'id': f"paper-{uuid.uuid4().hex[:12]}",
        'ticker': ticker,
        'side': side.lower(),
        'count': count,
        'yes_price': yes_price,
        'cost': cost,
        'city': opp.get('city', ''),
        'date': date_from_ticker(ticker),
        'bucket': bucket.to_dict() if bucket else None,
        'forecast_temp': opp.get('forecast_temp'),
        'forecast_confidence': opp.get('forecast_confidence'),
        'confidence_source': opp.get('confidence_source'),
        'edge': opp.get('edge'),
        'timestamp': datetime.now(timezone.utc).isoformat(),
    }

    state['balance'] -= cost
    state['positions'].append(position)
    save_paper_state(state, path)

    log_action('paper_trade_executed', ticker=ticker, side=position['side'], count=count,
               yes_price=yes_price, cost=cost, paper_balance=state['balance'])

    return {
        'success': True,
        'trade': {
            'order_id': position['id'],
            'ticker': ticker,
            'side': position['side'],
            'count': count,
            'yes_price': yes_price,
            'cost': cost,
            'status': 'paper-filled',
            'timestamp': position['timestamp'],
        },
    }


def settle_paper_trades(path=None, today=None, observe=None):
    """Settle positions whose date has passed using observed highs.

    A position whose observation cannot be fetched stays open and is retried
    on the next pass.
    """
    observe = observe or weather_providers.get_observed_high
    today_str = (today or date.today()).isoformat()
    state = get_paper_state(path)
    if not state['positions']:
        return {'success': True, 'settled': 0, 'summary': 'No paper positions to settle.'}

    settled_count = 0
    remaining = []
    for pos in state['positions']:
        if not pos.get('date') or pos['date'] >= today_str or not pos.get('bucket') or not pos.get('city'):
            remaining.append(pos)
            continue

        obs = observe(pos['city'], pos['date'])
        if not obs.get('success'):
            log_action('paper_settle_skip', level='warn', ticker=pos['ticker'], error=obs.get('error'))
            remaining.append(pos)
            continue

        actual_high = obs['actual_high']
        bucket_won = did_bucket_win(Bucket.from_dict(pos['bucket']), actual_high)
        won = bucket_won if pos['side'] == 'yes' else not bucket_won
        revenue = pos['count'] * 100 if won else 0
        pnl = revenue - pos['cost']
        state['balance'] += revenue

        state['settled'].append({
            **pos,
            'actual_high': actual_high,
            'won': won,
            'revenue': revenue,
            'pnl': pnl,
            'settled_at': datetime.now(timezone.utc).isoformat(),
        })
        settled_count += 1
        log_action('paper_settled', ticker=pos['ticker'], actual_high=actual_high, won=won,
                   pnl=pnl, paper_balance=state['balance'])

    state['positions'] = remaining
    save_paper_state(state, path)

    if settled_count:
        summary = (f"Settled {settled_count} paper trades. "
                   f"Balance: {state['balance']}¢ (${state['balance'] / 100:.2f})")
    else:
        summary = 'No paper positions could be settled yet.'
    return {'success': True, 'settled': settled_count, 'summary': summary}


def get_paper_summary(path=None):
    state = get_paper_state(path)
    settled = state['settled']
    wins = sum(1 for s in settled if s.get('won'))
    losses = len(settled) - wins
    net_pnl = state['balance'] - state['initial_balance']
    stats = {
        'total_trades': len(settled) + len(state['positions']),
        'wins': wins,
        'losses': losses,
        'open_positions': len(state['positions']),
        'balance': state['balance'],
        'initial_balance': state['initial_balance'],
        'net_pnl': net_pnl,
    }

    if stats['total_trades'] == 0:
        return {'success': True,
                'message': f"Paper trading: ${state['balance'] / 100:.2f} balance, 0 trades.",
                'stats': stats}

    win_rate = round(wins / len(settled) * 100) if settled else 0
    sign = '+' if net_pnl >= 0 else '-'
    lines = [
        f"Paper Trading (${state['initial_balance'] / 100:.2f} virtual):",
        f"  Balance: ${state['balance'] / 100:.2f}",
        f"  Settled: {len(settled)} | Won: {wins} | Lost: {losses} | Win rate: {win_rate}%",
        f"  Open: {len(state['positions'])} positions",
        f"  Net P&L: {sign}${abs(net_pnl) / 100:.2f}",
    ]
    return {'success': True, 'message': "\n".join(lines), 'stats': stats}


def _cell(value):
    return '' if value is None else str(value)


def _trade_date(settled):
    try:
        return datetime.fromisoformat(settled['timestamp']).astimezone().date().isoformat()
    except (KeyError, TypeError, ValueError):
        return settled.get('date') or ''


def get_paper_ledger_rows(path=None):
    """Settled paper positions shaped like trade-ledger rows, oldest first.

    Lets the circuit breakers judge the paper account exactly as they judge
    the live ledger.
    """
    return [
        {
            'date': _trade_date(s),
            'city': s.get('city', ''),
            'market_ticker': s.get('ticker', ''),
            'side': s.get('side', ''),
            'forecast_temp': _cell(s.get('forecast_temp')),
            'actual_high': _cell(s.get('actual_high')),
            'settled_won': 'yes' if s.get('won') else 'no',
            'pnl_cents': _cell(s.get('pnl', 0)),
        }
        for s in get_paper_state(path)['settled']
    ]
