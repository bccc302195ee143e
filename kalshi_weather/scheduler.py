"""
Scan scheduler and operator commands.

Modes: paused, alert-only, alert-then-trade, autonomous.  The operator moves
between them with set_mode; the only automatic transition is autonomous to
alert-only when a circuit breaker trips.

Scheduler.tick() is called about once a minute by the daemon and runs the
scan, usage alert, settlement check and daily summary on their own timers.
Each job reports through notifications.send_text.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from kalshi_weather.config import (
    MODE_DESCRIPTIONS,
    SUMMARY_TIMEZONE,
    VALID_MODES,
    load_trading_config,
    save_trading_config,
)
from kalshi_weather.execution import (
    account_balance,
    enforce_circuit_breakers,
    execute_opportunities,
    get_performance,
)
from kalshi_weather.ledger import get_trade_log
from kalshi_weather.logger import log, log_action
from kalshi_weather.notifications import notify_system_alert, send_text
from kalshi_weather.paper import get_paper_summary, settle_paper_trades
from kalshi_weather.scanner import find_opportunities
from kalshi_weather.settlement import check_settlements
from kalshi_weather.state import get_remaining_daily_budget
from kalshi_weather.usage import get_session_costs, get_usage_alert

FIRST_SCAN_DELAY = timedelta(seconds=30)
FIRST_SETTLEMENT_DELAY = timedelta(seconds=60)


# ── Formatting ───────────────────────────────────────────────────────────

def format_opportunity(opp, index):
    bucket = opp['bucket'].label() if opp.get('bucket') else '?'
    return "\n".join([
        f"{index + 1}. {opp['city']} {bucket}°F ({opp['label']})",
        f"   Forecast: {opp['forecast_temp']}°F ({opp['forecast_confidence']}% conf, {opp['confidence_source']})",
        f"   Market: {opp['market_price']}¢ → Edge: +{opp['edge']}pp | Size: {opp['contracts']}x",
        f"   {opp['ticker']}",
    ])


def format_trade_results(results):
    lines = [f"Auto-traded {len(results)} positions:"]
    for tr in results:
        if tr['success']:
            detail = f"{tr['trade']['count']}x @ {tr['trade']['yes_price']}¢"
            lines.append(f"  ✅ {tr['ticker']}: {detail}")
        else:
            lines.append(f"  ❌ {tr['ticker']}: {tr['error']}")
    return lines


def _et_now(now=None):
    now = now or datetime.now(timezone.utc)
    return now.astimezone(ZoneInfo(SUMMARY_TIMEZONE))


# ── Scan ─────────────────────────────────────────────────────────────────

def _breaker_lines(breakers):
    lines = ['', '🚨 Circuit breaker tripped, no trades placed:']
    lines.extend(f"  • {r}" for r in breakers['reasons'])
    if breakers['downgraded']:
        lines.append('Mode downgraded to alert-only.')
    return lines


def run_scan(config=None, config_path=None, now=None):
    """One scan cycle: find opportunities, report, and trade when autonomous.

    Returns ``{'success': bool, 'message': str, ...}``.  A paused scanner
    returns at once without touching the network.  In autonomous mode the
    circuit breakers are checked before the scan, and a trip is reported
    even when nothing is found.
    """
    config = config or load_trading_config(config_path)
    mode = config.mode
    log_action('scan_started', mode=mode)

    if mode == 'paused':
        return {'success': True, 'message': '⏸️ Scanner is paused. Set mode to alert-only to resume.'}

    breakers = None
    if mode == 'autonomous':
        breakers = enforce_circuit_breakers(config, config_path=config_path)

    result = find_opportunities(config, now)
    tripped = bool(breakers) and not breakers['can_trade']
    downgraded = tripped and breakers['downgraded']
    if not result['success']:
        log_action('scan_error', level='error', error=result.get('error'))
        lines = [f"❌ Scan failed: {result.get('error', 'Unknown error')}"]
        if tripped:
            lines += _breaker_lines(breakers)
        return {'success': False, 'message': "\n".join(lines), 'downgraded': downgraded}

    opportunities, summary = result['opportunities'], result['summary']
    top = opportunities[:config.top_opportunities_to_show]
    lines = [
        f"🌡️ Weather Scan — {_et_now(now):%H:%M} ET",
        f"Mode: {mode} | Budget left: {get_remaining_daily_budget(config)}¢"
        + (" | PAPER" if config.paper_trading else ""),
        f"Scanned {summary['events_scanned']} events across {summary['cities_forecasted']} cities"
        f" ({summary['ensemble_cities']} with ensembles)",
        '',
    ]
    if not opportunities:
        lines.append('No opportunities found above minimum edge.')
    else:
        lines.append(f"Found {len(opportunities)} opportunities (showing top {len(top)}):")
        lines.append('')
        lines.extend(format_opportunity(o, i) for i, o in enumerate(top))

    trades = []
    if tripped:
        lines += _breaker_lines(breakers)
    elif breakers and opportunities:
        trades = execute_opportunities(opportunities, config)
        lines.append('')
        lines.extend(format_trade_results(trades))

    if mode == 'alert-then-trade' and opportunities:
        lines.append('')
        lines.append('💬 Reply "trade" to execute top opportunities.')

    if summary['forecast_errors']:
        lines.append('')
        lines.append(f"⚠️ Forecast errors: {len(summary['forecast_errors'])} cities failed")
    if summary['skipped_stale']:
        lines.append(f"Skipped {summary['skipped_stale']} same-day events past the cutoff.")

    log_action('scan_completed', mode=mode, opportunities_found=len(opportunities),
               events_scanned=summary['events_scanned'], trades=len(trades))
    return {'success': True, 'message': "\n".join(lines),
            'opportunities': opportunities, 'trades': trades, 'downgraded': downgraded}


# ── Two-phase confirmation ───────────────────────────────────────────────

@dataclass
class Proposed:
    """Trades that would be placed; building one has no side effects."""
    opportunities: list
    message: str


@dataclass
class Committed:
    results: list = field(default_factory=list)
    message: str = ''
    executed: bool = False


def propose_trades(config=None, config_path=None, now=None):
    """First phase of alert-then-trade: describe the trades, place nothing."""
    config = config or load_trading_config(config_path)
    result = find_opportunities(config, now)
    if not result['success']:
        return Proposed([], f"❌ Scan failed: {result.get('error', 'Unknown error')}")
    picks = result['opportunities'][:config.auto_trade_max_per_scan]
    if not picks:
        return Proposed([], 'No opportunities to trade.')
    lines = [f"Proposed {len(picks)} trades:"]
    lines.extend(format_opportunity(o, i) for i, o in enumerate(picks))
    lines.append('Confirm to execute.')
    return Proposed(picks, "\n".join(lines))


def confirm_trades(proposal, confirm=True, config=None, config_path=None):
    """Second phase: execute a proposal only on explicit confirmation."""
    if not confirm:
        log_action('trades_declined', count=len(proposal.opportunities))
        return Committed(message='Trades cancelled.')
    if not proposal.opportunities:
        return Committed(message='Nothing to execute.')

    config = config or load_trading_config(config_path)
    if config.mode == 'paused':
        return Committed(message='Scanner is paused; trades not executed.')
    breakers = enforce_circuit_breakers(config, config_path=config_path)
    if not breakers['can_trade']:
        return Committed(message="🚨 Circuit breaker tripped:\n" + "\n".join(breakers['reasons']))

    results = execute_opportunities(proposal.opportunities, config)
    return Committed(results, "\n".join(format_trade_results(results)), executed=True)


# ── Operator commands ────────────────────────────────────────────────────

def set_mode(mode, config_path=None):
    if mode not in VALID_MODES:
        return {'success': False,
                'message': f"❌ Invalid mode \"{mode}\". Valid: {', '.join(VALID_MODES)}"}
    config = load_trading_config(config_path)
    config.mode = mode
    save_trading_config(config, config_path)
    log_action('mode_changed', mode=mode)
    return {'success': True, 'message': f"✅ Mode set to: {mode}\n{MODE_DESCRIPTIONS[mode]}"}


def get_status(config=None, config_path=None, today=None):
    config = config or load_trading_config(config_path)
    trades = get_trade_log()
    today = today or date.today().isoformat()
    balance = account_balance(config)
    balance_str = f"{balance['balance']['available']}¢" if balance['success'] else 'unknown'
    lines = [
        '📈 Kalshi Trading Status',
        '',
        f"Mode: {config.mode}" + (" (paper)" if config.paper_trading else ""),
        f"Daily budget remaining: {get_remaining_daily_budget(config)}¢ / {config.max_daily_spend}¢",
        f"Trades today: {sum(1 for t in trades if t['date'] == today)}",
        f"Total trades: {len(trades)}",
        f"Balance: {balance_str}",
        f"Min edge: {config.min_edge}pp",
        f"Max trade size: {config.max_trade_size}¢",
    ]
    return {'success': True, 'message': "\n".join(lines)}


def get_daily_summary(config=None, config_path=None, today=None):
    config = config or load_trading_config(config_path)
    today = today or date.today().isoformat()
    trades = get_trade_log()
    remaining = get_remaining_daily_budget(config)

    settle = check_settlements()
    settlement_summary = settle['summary'] if settle['success'] else 'Unable to check'

    balance = account_balance(config)
    if balance['success']:
        bal = balance['balance']
        balance_str = f"{bal['available']}¢ available, {bal['payout']}¢ in payouts"
    else:
        balance_str = 'unknown'

    perf = get_performance(config, trades)['performance']
    usage = get_session_costs()
    lines = [
        f"📋 Daily Summary — {today}",
        '',
        f"Mode: {config.mode}",
        f"Trades today: {sum(1 for t in trades if t['date'] == today)}",
        f"Budget spent: {config.max_daily_spend - remaining}¢ / {config.max_daily_spend}¢",
        f"Record: {perf['wins']}W-{perf['losses']}L | P&L: {perf['total_pnl_cents']}¢",
        '',
        f"Settlements: {settlement_summary}",
        f"Balance: {balance_str}",
    ]
    if config.paper_trading:
        lines += ['', get_paper_summary()['message']]
    lines += [
        '',
        'Usage today:',
        f"  Cost: ${usage['total_cost']:.4f}",
        f"  Invocations: {usage['invocations']}",
        f"  Tokens: {usage['tokens_in']:,} in / {usage['tokens_out']:,} out",
    ]
    log_action('daily_summary', trades=len(trades), mode=config.mode)
    return {'success': True, 'message': "\n".join(lines)}


# ── Timers ───────────────────────────────────────────────────────────────

class Scheduler:
    """Independent timers for scan, usage alert, settlement and summary."""

    def __init__(self, config_path=None, notify=send_text, started=None):
        self.config_path = config_path
        self.notify = notify
        started = started or datetime.now(timezone.utc)
        self.next_scan = started + FIRST_SCAN_DELAY
        self.next_settlement = started + FIRST_SETTLEMENT_DELAY
        self.next_usage = None
        self.last_summary_date = None

    def _run(self, name, job):
        try:
            job()
        except Exception as e:  # one failing job must not stop the loop
            log(f"ERROR in {name}: {e}")
            log_action(f"{name}_error", level='error', error=str(e))
            self.notify(f"❌ Kalshi {name} failed: {e}")

    def scan_job(self, config, now):
        result = run_scan(config, self.config_path, now)
        self.notify(result['message'])
        if result.get('downgraded'):
            notify_system_alert('Circuit Breaker Activated', 'Autonomous trading halted; mode is alert-only.',
                                level='critical')

    def usage_job(self):
        result = get_usage_alert()
        if not result['suppress']:
            self.notify(result['message'])

    def settlement_job(self):
        result = check_settlements()
        if not result['success']:
            self.notify(f"❌ Settlement check failed: {result['error']}")
        elif result['updated'] or result.get('actual_highs'):
            self.notify(f"📊 Settlement Update\n{result['summary']}")

        paper_result = settle_paper_trades()
        if paper_result['settled']:
            self.notify(f"📝 Paper Settlement: {paper_result['summary']}")

    def summary_job(self, config, now):
        self.notify(get_daily_summary(config, self.config_path, _et_now(now).date().isoformat())['message'])

    def tick(self, now=None):
        """Run every job that is due at *now*; returns the names that ran."""
        now = now or datetime.now(timezone.utc)
        config = load_trading_config(self.config_path)
        ran = []

        if self.next_usage is None:
            self.next_usage = now + timedelta(minutes=config.usage_alert_interval_minutes)

        if now >= self.next_scan:
            self.next_scan = now + timedelta(minutes=config.scan_interval_minutes)
            self._run('scan', lambda: self.scan_job(config, now))
            ran.append('scan')

        if now >= self.next_usage:
            self.next_usage = now + timedelta(minutes=config.usage_alert_interval_minutes)
            self._run('usage', self.usage_job)
            ran.append('usage')

        if now >= self.next_settlement:
            self.next_settlement = now + timedelta(hours=config.settlement_interval_hours)
            self._run('settlement', self.settlement_job)
            ran.append('settlement')

        et = _et_now(now)
        if et.hour == config.daily_summary_hour and self.last_summary_date != et.date():
            self.last_summary_date = et.date()
            self._run('summary', lambda: self.summary_job(config, now))
            ran.append('summary')

        return ran
