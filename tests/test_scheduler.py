"""Tests for the scan cycle, operator commands and the timer loop."""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

from kalshi_weather.config import TradingConfig, load_trading_config, save_trading_config
from kalshi_weather.ledger import TradeLedger
from kalshi_weather.paper import get_paper_state, save_paper_state
from kalshi_weather.probability import Bucket
from kalshi_weather.scheduler import (
    Committed,
    Proposed,
    Scheduler,
    confirm_trades,
    propose_trades,
    run_scan,
    set_mode,
)

from conftest import make_row

NOW = datetime(2026, 4, 5, 14, 0, tzinfo=timezone.utc)


def _opp(ticker='KXHIGHNY-26APR05-B40', edge=39):
    return {'event_title': 'NYC', 'market': '≤40', 'ticker': ticker, 'event_ticker': 'KXHIGHNY-26APR05',
            'city': 'NYC', 'label': 'today', 'bucket': Bucket(None, 40), 'forecast_temp': 38,
            'forecast_confidence': 84, 'confidence_source': 'normal', 'sigma': 2.0,
            'ensemble_spread': None, 'market_price': 45, 'edge': edge, 'side': 'yes',
            'suggested_amount': 90, 'suggested_yes_price': 46, 'sizing_reason': 'Kelly', 'contracts': 2}


def _found(*opps):
    summary = {'events_scanned': 3, 'cities_forecasted': 2, 'ensemble_cities': 1,
               'opportunities_found': len(opps), 'forecast_errors': [], 'ensemble_errors': [],
               'skipped_stale': 0}
    return {'success': True, 'opportunities': list(opps), 'summary': summary}


class TestRunScan:

    def test_paused_makes_no_calls(self):
        with patch('kalshi_weather.scheduler.find_opportunities') as find, \
             patch('requests.sessions.Session.request') as http:
            result = run_scan(TradingConfig(mode='paused'))
        assert 'paused' in result['message']
        find.assert_not_called()
        http.assert_not_called()

    def test_alert_only_reports_without_trading(self):
        with patch('kalshi_weather.scheduler.find_opportunities', return_value=_found(_opp())), \
             patch('kalshi_weather.scheduler.execute_opportunities') as execute:
            result = run_scan(TradingConfig(mode='alert-only'), now=NOW)
        execute.assert_not_called()
        assert 'Found 1 opportunities' in result['message']
        assert 'NYC ≤40°F' in result['message']

    def test_alert_then_trade_asks_for_confirmation(self):
        with patch('kalshi_weather.scheduler.find_opportunities', return_value=_found(_opp())), \
             patch('kalshi_weather.scheduler.execute_opportunities') as execute:
            result = run_scan(TradingConfig(mode='alert-then-trade'), now=NOW)
        execute.assert_not_called()
        assert 'Reply "trade"' in result['message']

    def test_autonomous_trades(self):
        trade = {'ticker': 'T', 'success': True, 'trade': {'count': 2, 'yes_price': 46}}
        with patch('kalshi_weather.scheduler.find_opportunities', return_value=_found(_opp())), \
             patch('kalshi_weather.scheduler.execute_opportunities', return_value=[trade]) as execute:
            result = run_scan(TradingConfig(mode='autonomous'), now=NOW)
        execute.assert_called_once()
        assert 'Auto-traded 1 positions' in result['message']

    def test_breaker_trip_blocks_trades_and_downgrades(self, isolated_files):
        rows = [make_row(settled_won='no', pnl_cents=-10, date='2026-01-01') for _ in range(5)]
        TradeLedger(rows).save()
        save_trading_config(TradingConfig(mode='autonomous', paper_trading=False))
        with patch('kalshi_weather.scheduler.find_opportunities', return_value=_found(_opp())), \
             patch('kalshi_weather.scheduler.execute_opportunities') as execute:
            result = run_scan(now=NOW)
        execute.assert_not_called()
        assert result['downgraded'] is True
        assert '5 consecutive losses' in result['message']
        assert load_trading_config().mode == 'alert-only'

    def test_breaker_trip_is_reported_when_nothing_is_found(self):
        state = get_paper_state()
        state['settled'] = [{'ticker': f"T{i}", 'city': 'NYC', 'won': False, 'pnl': -50}
                            for i in range(5)]
        save_paper_state(state)
        save_trading_config(TradingConfig(mode='autonomous', paper_trading=True))
        with patch('kalshi_weather.scheduler.find_opportunities', return_value=_found()), \
             patch('kalshi_weather.scheduler.execute_opportunities') as execute:
            result = run_scan(now=NOW)
        execute.assert_not_called()
        assert result['downgraded'] is True
        assert 'No opportunities found' in result['message']
        assert '5 consecutive losses' in result['message']
        assert load_trading_config().mode == 'alert-only'

    def test_scan_failure(self):
        with patch('kalshi_weather.scheduler.find_opportunities',
                   return_value={'success': False, 'error': 'exchange down'}):
            result = run_scan(TradingConfig(mode='alert-only'), now=NOW)
        assert result['success'] is False
        assert 'exchange down' in result['message']


class TestTwoPhaseConfirm:

    def test_proposal_has_no_side_effects(self):
        with patch('kalshi_weather.scheduler.find_opportunities',
                   return_value=_found(_opp('A'), _opp('B'), _opp('C'), _opp('D'))), \
             patch('kalshi_weather.scheduler.execute_opportunities') as execute:
            proposal = propose_trades(TradingConfig(auto_trade_max_per_scan=3), now=NOW)
        execute.assert_not_called()
        assert isinstance(proposal, Proposed)
        assert [o['ticker'] for o in proposal.opportunities] == ['A', 'B', 'C']

    def test_declined_proposal_executes_nothing(self):
        with patch('kalshi_weather.scheduler.execute_opportunities') as execute:
            committed = confirm_trades(Proposed([_opp()], ''), confirm=False,
                                       config=TradingConfig(mode='alert-then-trade'))
        execute.assert_not_called()
        assert committed == Committed(message='Trades cancelled.')

    def test_confirmed_proposal_executes(self):
        trade = {'ticker': 'A', 'success': True, 'trade': {'count': 2, 'yes_price': 46}}
        with patch('kalshi_weather.scheduler.execute_opportunities', return_value=[trade]) as execute:
            committed = confirm_trades(Proposed([_opp('A')], ''),
                                       config=TradingConfig(mode='alert-then-trade'))
        execute.assert_called_once()
        assert committed.executed is True
        assert committed.results == [trade]


class TestSetMode:

    def test_valid_mode_is_persisted(self):
        result = set_mode('autonomous')
        assert result['success'] is True
        assert load_trading_config().mode == 'autonomous'

    def test_invalid_mode(self):
        result = set_mode('yolo')
        assert result['success'] is False
        assert load_trading_config().mode == 'alert-only'


class TestSchedulerTimers:

    def _scheduler(self, start):
        notify = MagicMock()
        return Scheduler(notify=notify, started=start), notify

    def test_first_scan_after_delay_then_on_interval(self):
        start = NOW
        scheduler, notify = self._scheduler(start)
        with patch('kalshi_weather.scheduler.run_scan',
                   return_value={'success': True, 'message': 'scan ok'}) as scan, \
             patch('kalshi_weather.scheduler.check_settlements',
                   return_value={'success': True, 'updated': 0, 'summary': ''}), \
             patch('kalshi_weather.scheduler.settle_paper_trades', return_value={'settled': 0}):
            assert 'scan' not in scheduler.tick(start + timedelta(seconds=10))
            assert 'scan' in scheduler.tick(start + timedelta(seconds=31))
            assert 'scan' not in scheduler.tick(start + timedelta(minutes=20))
            assert 'scan' in scheduler.tick(start + timedelta(minutes=31, seconds=31))
        assert scan.call_count == 2
        notify.assert_any_call('scan ok')

    def test_daily_summary_fires_once_per_day(self):
        # 01:00 UTC on Apr 6 is 21:00 on Apr 5 in New York
        evening = datetime(2026, 4, 6, 1, 0, tzinfo=timezone.utc)
        scheduler, notify = self._scheduler(evening)
        scheduler.next_scan = scheduler.next_settlement = evening + timedelta(days=2)
        with patch('kalshi_weather.scheduler.get_daily_summary',
                   return_value={'success': True, 'message': 'summary'}) as summary:
            ran = [scheduler.tick(evening + timedelta(minutes=m)) for m in range(0, 5)]
        assert summary.call_count == 1
        assert ran[0] == ['summary']
        assert summary.call_args[0][2] == '2026-04-05'

    def test_failing_job_is_reported_not_raised(self):
        scheduler, notify = self._scheduler(NOW)
        with patch('kalshi_weather.scheduler.run_scan', side_effect=RuntimeError('kaput')), \
             patch('kalshi_weather.scheduler.check_settlements',
                   return_value={'success': True, 'updated': 0, 'summary': ''}), \
             patch('kalshi_weather.scheduler.settle_paper_trades', return_value={'settled': 0}):
            ran = scheduler.tick(NOW + timedelta(minutes=2))
        assert 'scan' in ran
        notify.assert_any_call('❌ Kalshi scan failed: kaput')

    def test_settlement_reports_updates(self):
        scheduler, notify = self._scheduler(NOW)
        scheduler.next_scan = NOW + timedelta(days=1)
        with patch('kalshi_weather.scheduler.check_settlements',
                   return_value={'success': True, 'updated': 2, 'summary': 'Checked 3, updated 2.'}), \
             patch('kalshi_weather.scheduler.settle_paper_trades',
                   return_value={'settled': 1, 'summary': 'Settled 1 paper trades.'}):
            ran = scheduler.tick(NOW + timedelta(minutes=2))
        assert 'settlement' in ran
        notify.assert_any_call('📊 Settlement Update\nChecked 3, updated 2.')
        notify.assert_any_call('📝 Paper Settlement: Settled 1 paper trades.')


class TestDaemonCommands:

    def test_mode_command(self):
        from kalshi_daemon import run_command
        assert run_command('mode', ['paused']) == 0
        assert load_trading_config().mode == 'paused'
        assert run_command('mode', ['bogus']) == 1

    def test_suppressed_usage_sends_nothing(self):
        from kalshi_daemon import run_command
        with patch('kalshi_daemon.send_text') as send:
            assert run_command('usage', []) == 0
        send.assert_not_called()

    def test_unknown_command(self):
        from kalshi_daemon import run_command
        assert run_command('dance', []) == 1

    def test_entry_point_dispatches_arguments(self):
        from kalshi_daemon import main
        with patch('kalshi_daemon.run_command', return_value=0) as run, \
             patch('kalshi_daemon.Scheduler') as scheduler:
            assert main(['status']) == 0
        run.assert_called_once_with('status', [])
        scheduler.assert_not_called()
