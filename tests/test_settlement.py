"""Tests for settlement reconciliation against the exchange feeds."""
from datetime import date
from unittest.mock import patch

from kalshi_weather.kalshi_api import KalshiAPIError
from kalshi_weather.ledger import TradeLedger, get_trade_log
from kalshi_weather.settlement import check_settlements

from conftest import make_row

TODAY = date(2026, 4, 10)


def _feeds(settlements=None, orders=None, orders_error=None):
    """Fake kalshi_request serving the settlements and orders endpoints."""
    def fake(method, path, body=None):
        if path == '/portfolio/settlements':
            return {'settlements': settlements or []}
        if path == '/portfolio/orders':
            if orders_error:
                raise orders_error
            return {'orders': orders or []}
        raise AssertionError(f"unexpected path {path}")
    return fake


def _no_observation(city, day):
    return {'success': False, 'error': 'offline'}


def _seed(*rows):
    TradeLedger(list(rows)).save()


class TestCheckSettlements:

    def test_empty_ledger(self):
        with patch('kalshi_weather.settlement.kalshi_request') as req:
            result = check_settlements(today=TODAY)
        assert result['updated'] == 0
        req.assert_not_called()

    def test_settles_and_computes_pnl(self):
        _seed(make_row(order_id='o1', side='yes', price_paid=46, contracts=2))
        feeds = _feeds(
            settlements=[{'ticker': 'KXHIGHNY-26APR05-B40', 'market_result': 'yes', 'revenue': 200}],
            orders=[{'order_id': 'o1', 'status': 'executed', 'fill_count': 2}],
        )
        with patch('kalshi_weather.settlement.kalshi_request', side_effect=feeds):
            result = check_settlements(observe=_no_observation, today=TODAY)

        assert result['success'] is True
        assert result['updated'] == 1
        row = get_trade_log()[0]
        assert row['settled_won'] == 'yes'
        assert row['revenue_cents'] == '200'
        assert row['pnl_cents'] == '108'
        assert row['status'] == 'executed'
        assert row['fill_count'] == '2'

    def test_losing_side(self):
        _seed(make_row(order_id='o1', side='yes', price_paid=46, contracts=2))
        feeds = _feeds(settlements=[{'market_ticker': 'KXHIGHNY-26APR05-B40',
                                     'market_result': 'no', 'revenue': 0}])
        with patch('kalshi_weather.settlement.kalshi_request', side_effect=feeds):
            check_settlements(observe=_no_observation, today=TODAY)
        row = get_trade_log()[0]
        assert row['settled_won'] == 'no'
        assert row['pnl_cents'] == '-92'

    def test_second_run_makes_no_updates(self):
        _seed(
            make_row(order_id='o1'),
            make_row(order_id='o2', market_ticker='KXHIGHNY-26APR05-B42', status='resting'),
        )
        feeds = _feeds(
            settlements=[{'ticker': 'KXHIGHNY-26APR05-B40', 'market_result': 'yes', 'revenue': 200}],
            orders=[{'order_id': 'o1', 'status': 'executed', 'fill_count': 2},
                    {'order_id': 'o2', 'status': 'executed', 'fill_count': 2}],
        )
        with patch('kalshi_weather.settlement.kalshi_request', side_effect=feeds):
            first = check_settlements(observe=_no_observation, today=TODAY)
            snapshot = get_trade_log()
            second = check_settlements(observe=_no_observation, today=TODAY)

        assert first['updated'] == 2
        assert second['updated'] == 0
        assert get_trade_log() == snapshot

    def test_settlement_fields_are_never_overwritten(self):
        _seed(make_row(order_id='o1', settled_won='yes', revenue_cents=200, pnl_cents=108))
        feeds = _feeds(settlements=[{'ticker': 'KXHIGHNY-26APR05-B40', 'market_result': 'no', 'revenue': 0}])
        with patch('kalshi_weather.settlement.kalshi_request', side_effect=feeds) as req:
            result = check_settlements(observe=_no_observation, today=TODAY)
        assert result['updated'] == 0
        assert get_trade_log()[0]['pnl_cents'] == '108'
        req.assert_not_called()

    def test_orders_feed_failure_is_not_fatal(self):
        _seed(make_row(order_id='o1'))
        feeds = _feeds(
            settlements=[{'ticker': 'KXHIGHNY-26APR05-B40', 'market_result': 'yes', 'revenue': 200}],
            orders_error=KalshiAPIError('boom', status=500),
        )
        with patch('kalshi_weather.settlement.kalshi_request', side_effect=feeds):
            result = check_settlements(observe=_no_observation, today=TODAY)
        assert result['updated'] == 1
        assert get_trade_log()[0]['settled_won'] == 'yes'

    def test_settlements_feed_failure_is_reported(self):
        _seed(make_row(order_id='o1'))
        with patch('kalshi_weather.settlement.kalshi_request',
                   side_effect=KalshiAPIError('x', status=429)):
            result = check_settlements(observe=_no_observation, today=TODAY)
        assert result['success'] is False
        assert 'Rate limited' in result['error']

    def test_actual_high_filled_once_per_market_date(self):
        _seed(make_row(order_id='o1', settled_won='yes'), make_row(order_id='o2', settled_won='no'))
        calls = []

        def observe(city, day):
            calls.append((city, day))
            return {'success': True, 'actual_high': 39}

        with patch('kalshi_weather.settlement.kalshi_request') as req:
            result = check_settlements(observe=observe, today=TODAY)
            again = check_settlements(observe=observe, today=TODAY)

        req.assert_not_called()
        assert calls == [('NYC', '2026-04-05')]
        assert result['actual_highs'] == 2
        assert again['actual_highs'] == 0
        assert [r['actual_high'] for r in get_trade_log()] == ['39', '39']
