"""
Trade execution and risk management.

Takes opportunities from the scanner and submits limit orders subject to the
daily budget, the per-trade cap and the circuit breakers.  Paper mode routes
every order to the simulator instead of the exchange.
"""
import math
from datetime import date

from kalshi_weather.config import (
    DAILY_LOSS_FRACTION,
    MAX_CONSECUTIVE_LOSSES,
    MAX_FORECAST_MISS,
    FORECAST_MISS_LOOKBACK,
    save_trading_config,
)
from kalshi_weather import kalshi_api, paper
from kalshi_weather.kalshi_api import KalshiAPIError, format_api_error
from kalshi_weather.ledger import get_trade_log, log_trade
from kalshi_weather.logger import log, log_action
from kalshi_weather.state import can_afford_trade, get_remaining_daily_budget, track_spend


def _number(value):
    """Float from a ledger cell, or None for blanks and junk."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _fmt_temp(value):
    return int(value) if float(value).is_integer() else value


# ── Circuit breaker ──────────────────────────────────────────────────────

def check_circuit_breakers(rows, config, today=None):
    """Decide whether trading may continue given the full trade history.

    Returns ``{'can_trade': bool, 'reasons': [str, ...]}``; every rule that
    fires contributes its own reason.
    """
    reasons = []
    today = today or date.today().isoformat()

    # 1. Realized loss today beyond a fraction of the daily budget
    settled_today = [r for r in rows if r.get('date') == today and r.get('pnl_cents', '') != '']
    daily_pnl = sum(int(_number(r['pnl_cents']) or 0) for r in settled_today)
    threshold = -math.floor(config.max_daily_spend * DAILY_LOSS_FRACTION)
    if daily_pnl < threshold:
        reasons.append(f"Daily loss {daily_pnl}¢ exceeds {DAILY_LOSS_FRACTION:.0%} of budget ({threshold}¢)")

    # 2. Losing streak, most recent settled trade first
    streak = 0
    for r in reversed([r for r in rows if r.get('settled_won', '') != '']):
        if r['settled_won'] != 'no':
            break
        streak += 1
    if streak >= MAX_CONSECUTIVE_LOSSES:
        reasons.append(f"{streak} consecutive losses")

    # 3. Large forecast miss among recent trades with an observed high
    with_actual = [
        r for r in rows
        if _number(r.get('forecast_temp')) is not None and _number(r.get('actual_high')) is not None
    ][-FORECAST_MISS_LOOKBACK:]
    for r in with_actual:
        forecast, actual = _number(r['forecast_temp']), _number(r['actual_high'])
        miss = _fmt_temp(abs(forecast - actual))
        if miss > MAX_FORECAST_MISS:
            reasons.append(
                f"Forecast miss of {miss}°F for {r.get('city', '?')} on {r.get('date', '?')} "
                f"(forecast: {_fmt_temp(forecast)}°F, actual: {_fmt_temp(actual)}°F)"
            )
            break

    can_trade = not reasons
    if not can_trade:
        log_action('circuit_breaker_tripped', level='warn', reasons=reasons)
    return {'can_trade': can_trade, 'reasons': reasons}


def enforce_circuit_breakers(config, rows=None, config_path=None, today=None):
    """Run the breakers and, on a trip in autonomous mode, drop to alert-only.

    Paper mode is judged on settled paper positions, live mode on the ledger.

    The downgrade is saved so the next cycle starts in the safer mode.
    Returns the breaker result plus ``downgraded``.
    """
    if rows is None:
        rows = paper.get_paper_ledger_rows() if config.paper_trading else get_trade_log()
    result = check_circuit_breakers(rows, config, today)
    downgraded = False
    if not result['can_trade'] and config.mode == 'autonomous':
        config.mode = 'alert-only'
        save_trading_config(config, config_path)
        downgraded = True
        log("CIRCUIT BREAKER: " + "; ".join(result['reasons']) + "; mode set to alert-only")
        log_action('mode_downgraded', level='warn', mode='alert-only', reasons=result['reasons'])
    return {**result, 'downgraded': downgraded}


# ── Account (paper or live) ──────────────────────────────────────────────

def account_balance(config):
    if config.paper_trading:
        return paper.get_paper_balance()
    return kalshi_api.get_balance()


def account_positions(config):
    if config.paper_trading:
        return paper.get_paper_positions()
    return kalshi_api.get_positions()


# ── Trade executor ───────────────────────────────────────────────────────

def submit_trade(ticker, side, amount, limit_price, config, opportunity=None,
                 spend_path=None, trades_path=None):
    """Validate, budget-check and submit one limit buy.

    *amount* is the spend in cents; *limit_price* the YES price in cents.
    Budget is charged only once the exchange accepts the order.  Never
    raises for API failures; returns ``{'success': False, 'error': ...}``.
    """
    error = paper.validate_order(ticker, side, amount, limit_price)
    if error:
        return {'success': False, 'error': error}
    side = side.lower()

    if amount > config.max_trade_size:
        return {'success': False, 'reason': 'over max trade size',
                'error': f"Amount {amount}¢ exceeds max trade size {config.max_trade_size}¢"}
    if not can_afford_trade(amount, config, spend_path):
        remaining = get_remaining_daily_budget(config, spend_path)
        return {'success': False, 'reason': 'over daily budget',
                'error': f"Daily budget exceeded: {remaining}¢ remaining, {amount}¢ requested"}

    count = amount // limit_price
    if count < 1:
        return {'success': False, 'reason': 'cannot afford 1 contract',
                'error': f"Amount {amount}¢ too small for price {limit_price}¢"}
    cost = count * limit_price

    if config.paper_trading:
        result = paper.execute_paper_trade(ticker, side, amount, limit_price, opportunity)
        if result['success']:
            track_spend(result['trade']['cost'], spend_path)
        return result

    log(f"LIVE ORDER: {ticker} {side.upper()} {count}x @ {limit_price}¢ (${cost / 100:.2f})")
    try:
        data = kalshi_api.place_order(ticker, side, count, limit_price)
    except KalshiAPIError as e:
        message = format_api_error(e)
        log_action('trade_error', level='error', ticker=ticker, error=message)
        return {'success': False, 'error': message}

    order = data.get('order', {})
    track_spend(cost, spend_path)
    trade = {
        'order_id': order.get('order_id', ''),
        'ticker': ticker,
        'side': side,
        'count': count,
        'yes_price': limit_price,
        'cost': cost,
        'status': order.get('status', 'submitted'),
    }
    log_trade(trade, opportunity, trades_path)
    log_action('trade_executed', ticker=ticker, side=side, count=count,
               yes_price=limit_price, order_id=trade['order_id'], status=trade['status'])
    return {'success': True, 'trade': trade}


def execute_opportunities(opportunities, config, spend_path=None, trades_path=None):
    """Trade the best opportunities one after another.

    Markets already holding a position are skipped, and at most
    ``auto_trade_max_per_scan`` orders are attempted.
    """
    held = set()
    positions = account_positions(config)
    if positions['success']:
        held = {p['ticker'] for p in positions['positions']}
    else:
        log_action('positions_unavailable', level='warn', error=positions.get('error'))

    tradeable = [o for o in opportunities if o['ticker'] not in held]
    results = []
    for opp in tradeable[:config.auto_trade_max_per_scan]:
        result = submit_trade(
            opp['ticker'], opp['side'],
            min(opp['suggested_amount'], config.max_trade_size),
            opp['suggested_yes_price'], config, opportunity=opp,
            spend_path=spend_path, trades_path=trades_path,
        )
        results.append({'ticker': opp['ticker'], **result})
    return results


def get_performance(config, rows=None):
    """Totals derived from the trade ledger plus the current balance."""
    rows = get_trade_log() if rows is None else rows
    settled = [r for r in rows if r.get('settled_won')]
    wins = sum(1 for r in settled if r['settled_won'] == 'yes')
    total_pnl = sum(int(_number(r.get('pnl_cents')) or 0) for r in settled)
    total_cost = sum(
        int((_number(r.get('price_paid')) or 0) * (_number(r.get('contracts')) or 0)) for r in rows
    )

    balance = account_balance(config)
    return {
        'success': True,
        'performance': {
            'total_trades': len(rows),
            'settled': len(settled),
            'wins': wins,
            'losses': len(settled) - wins,
            'win_rate': round(wins / len(settled) * 100) if settled else None,
            'total_cost_cents': total_cost,
            'total_pnl_cents': total_pnl,
            'daily_budget_remaining': get_remaining_daily_budget(config),
            'max_trade_size': config.max_trade_size,
            'max_daily_spend': config.max_daily_spend,
            'balance': balance['balance'] if balance['success'] else None,
        },
    }
