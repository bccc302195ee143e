"""
Logging helpers: a rolling plain-text log and one-line JSON action records.
"""
import json
from datetime import datetime, timezone

from kalshi_weather.config import LOG_PATH, MAX_LOG_LINES

SKILL_NAME = "WeatherTradingSkill"


def log(msg):
    """Write a timestamped message to stdout and the rolling log file."""
    ts = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    line = f"[{ts}] {msg}"
    print(line, flush=True)
    try:
        with open(LOG_PATH, 'a') as f:
            f.write(line + "\n")
        with open(LOG_PATH, 'r') as f:
            lines = f.readlines()
        if len(lines) > MAX_LOG_LINES:
            with open(LOG_PATH, 'w') as f:
                f.writelines(lines[-MAX_LOG_LINES:])
    except OSError as e:
        print(f"[ERROR] Log file write/rotation failed: {e}")


def log_action(action, level='info', **details):
    """Log a structured event as a single JSON line.

    Example: log_action('forecast_fetched', city='NYC', today_high=41)
    """
    entry = {
        "skill": SKILL_NAME,
        "level": level,
        "action": action,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **details,
    }
    log(json.dumps(entry, default=str))
