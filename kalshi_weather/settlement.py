"""
Settlement reconciliation.

Joins the trade ledger against Kalshi's settlement and order feeds, records
win/loss and P&L once per trade, and backfills the observed high so the
calibration report has something to compare forecasts against.
"""
from datetime import date

import weather_providers
from kalshi_weather.kalshi_api import KalshiAPIError, format_api_error, kalshi_request
from kalshi_weather.ledger import TradeLedger
from kalshi_weather.logger import log, log_action
from kalshi_weather.markets import date_from_ticker


def _set(row, field, value):
    """Assign a ledger cell; True if the stored text changed."""
    value = '' if value is None else str(value)
    if row[field] == value:
        return False
    row[field] = value
    return True


def _int(value):
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return 0


def apply_order(row, order):
    """Copy exchange order status and fill count onto an unsettled row."""
    changed = _set(row, 'status', order.get('status') or row['status'])
    fill = order.get('fill_count')
    if fill is not None:
        changed = _set(row, 'fill_count', fill) or changed
    return changed


def apply_settlement(row, settlement):
    """Write the settlement fields; a row that already has them is left alone."""
    if row['settled_won']:
        return False
    result = settlement.get('market_result') or ''
    if not result:
        return False
    revenue = _int(settlement.get('revenue'))
    cost = _int(row['price_paid']) * _int(row['contracts'])
    row['settled_won'] = 'yes' if result == (row['side'] or 'yes') else 'no'
    row['revenue_cents'] = str(revenue)
    row['pnl_cents'] = str(revenue - cost)
    return True


def fill_actual_highs(ledger, observe=None, today=None):
    """Record the observed high on settled rows that lack one.

    A failed lookup leaves the cell empty for the next pass.  Returns the
    number of rows filled.
    """
    observe = observe or weather_providers.get_observed_high
    today_str = (today or date.today()).isoformat()
    cache = {}
    filled = 0
    for row in ledger:
        if not row['settled_won'] or row['actual_high'] or not row['city']:
            continue
        market_date = date_from_ticker(row['event_ticker'] or row['market_ticker']) or row['date']
        if not market_date or market_date >= today_str:
            continue
        key = (row['city'], market_date)
        if key not in cache:
            cache[key] = observe(row['city'], market_date)
        obs = cache[key]
        if not obs.get('success'):
            log_action('actual_high_unavailable', level='warn', city=row['city'],
                       date=market_date, error=obs.get('error'))
            continue
        row['actual_high'] = str(obs['actual_high'])
        filled += 1
    return filled


def check_settlements(path=None, observe=None, today=None):
    """Reconcile unsettled ledger rows with the exchange.

    Safe to run repeatedly: a second pass with no new exchange data reports
    zero updates and leaves the file untouched.
    """
    ledger = TradeLedger.load(path)
    if not len(ledger):
        return {'success': True, 'updated': 0, 'summary': 'No trades to check.'}

    unsettled = ledger.unsettled()
    settlements, orders = [], []
    if unsettled:
        try:
            settlements = kalshi_request('GET', '/portfolio/settlements').get('settlements', [])
        except KalshiAPIError as e:
            log_action('settlement_fetch_error', level='error', error=str(e))
            return {'success': False, 'error': f"Failed to fetch settlements: {format_api_error(e)}"}
        try:
            orders = kalshi_request('GET', '/portfolio/orders').get('orders', [])
        except KalshiAPIError as e:
            log_action('orders_fetch_error', level='warn', error=str(e))

    settlements_by_ticker = {s.get('ticker') or s.get('market_ticker'): s for s in settlements}
    orders_by_id = {o.get('order_id'): o for o in orders if o.get('order_id')}

    updated = 0
    for row in unsettled:
        changed = False
        order = orders_by_id.get(row['order_id'])
        if order:
            changed = apply_order(row, order)
        settlement = settlements_by_ticker.get(row['market_ticker'])
        if settlement:
            changed = apply_settlement(row, settlement) or changed
        if changed:
            updated += 1

    filled = fill_actual_highs(ledger, observe, today)

    if updated or filled:
        try:
            ledger.save()
        except OSError as e:
            log_action('settlement_write_error', level='error', error=str(e))
            return {'success': False, 'error': f"Failed to write updated trades: {e}"}
        log_action('settlements_updated', updated=updated, actual_highs=filled)
        log(f"Settlements: {updated} rows updated, {filled} observed highs recorded")

    if not unsettled:
        summary = 'All trades already settled.'
    else:
        summary = f"Checked {len(unsettled)} unsettled trades, updated {updated}."
    if filled:
        summary += f" Recorded {filled} observed highs."
    return {'success': True, 'updated': updated, 'actual_highs': filled, 'summary': summary}
