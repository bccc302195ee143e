#!/usr/bin/env python3
"""
Kalshi weather trading daemon.

Usage:
    python kalshi_daemon.py               run the scheduler loop
    python kalshi_daemon.py scan          one scan, sent to Telegram
    python kalshi_daemon.py usage         usage alert (suppressed if no activity)
    python kalshi_daemon.py summary       daily summary
    python kalshi_daemon.py status        current status
    python kalshi_daemon.py calibration   calibration report
    python kalshi_daemon.py mode <mode>   change trading mode
"""
import sys
import time
import traceback

from kalshi_weather.calibration import get_calibration_report
from kalshi_weather.config import CITIES, load_trading_config
from kalshi_weather.kalshi_api import validate_env
from kalshi_weather.logger import log
from kalshi_weather.notifications import send_text
from kalshi_weather.scheduler import (
    Scheduler,
    get_daily_summary,
    get_status,
    run_scan,
    set_mode,
)
from kalshi_weather.usage import get_usage_alert

TICK_SECONDS = 60


def run_command(command, args):
    """Run a one-shot command; returns the process exit code."""
    if command == 'scan':
        message = run_scan()['message']
    elif command == 'usage':
        result = get_usage_alert()
        if result['suppress']:
            log('Usage alert suppressed (no new activity)')
            return 0
        message = result['message']
    elif command == 'summary':
        message = get_daily_summary()['message']
    elif command == 'status':
        message = get_status()['message']
    elif command == 'calibration':
        config = load_trading_config()
        message = get_calibration_report(assumed_sigma=config.sigma_tomorrow)
    elif command == 'mode' and args:
        result = set_mode(args[0])
        print(result['message'])
        return 0 if result['success'] else 1
    else:
        print(f"Unknown command: {command}. Use: scan, usage, summary, status, calibration, mode <mode>")
        return 1
    send_text(message)
    print(message)
    return 0


def main(argv=None):
    """Run one command when given, otherwise the scheduler loop."""
    argv = sys.argv[1:] if argv is None else argv
    if argv:
        return run_command(argv[0], argv[1:])

    config = load_trading_config()
    log("=" * 70)
    if config.paper_trading:
        log("PAPER TRADING MODE ACTIVE: no real money at risk")
    else:
        for problem in validate_env():
            log(f"WARNING: {problem}")
    log(f"Kalshi weather daemon: {len(CITIES)} cities | mode: {config.mode} | "
        f"scan every {config.scan_interval_minutes}m | settlements every {config.settlement_interval_hours}h")

    scheduler = Scheduler()
    try:
        while True:
            try:
                ran = scheduler.tick()
                if ran:
                    log(f"Ran: {', '.join(ran)}")
            except Exception as e:
                log(f"ERROR in main loop: {e}")
                traceback.print_exc()
            time.sleep(TICK_SECONDS)
    except KeyboardInterrupt:
        log("Shutting down...")
    return 0


if __name__ == '__main__':
    sys.exit(main())
