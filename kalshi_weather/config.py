"""
Configuration constants, environment loading, and the persisted trading config.

Static data (series tickers, API URLs, file paths) lives at module level.
Everything the operator can change at runtime lives in TradingConfig, which
is reloaded from disk at the start of every cycle and passed explicitly.
"""
import json
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path

# ── Environment loading ──────────────────────────────────────────────────

BASE_DIR = Path(__file__).parent.parent


def _load_env():
    """Load .env file into os.environ (does not override existing vars)."""
    env_path = BASE_DIR / ".env"
    if env_path.exists():
        for line in env_path.read_text().splitlines():
            line = line.strip()
            if line and not line.startswith("#") and "=" in line:
                k, v = line.split("=", 1)
                os.environ.setdefault(k.strip(), v.strip())


_load_env()


def _path_from_env(name, default):
    value = os.getenv(name)
    return Path(value) if value else BASE_DIR / default


# ── File paths ───────────────────────────────────────────────────────────

LOG_PATH = _path_from_env("KALSHI_LOG_PATH", "kalshi_weather_log.txt")
TRADING_CONFIG_PATH = _path_from_env("KALSHI_TRADING_CONFIG_PATH", "trading-config.json")
SPEND_PATH = _path_from_env("KALSHI_SPEND_PATH", "kalshi_spend.json")
TRADES_PATH = _path_from_env("KALSHI_TRADES_PATH", "trades.csv")
PAPER_PATH = _path_from_env("KALSHI_PAPER_PATH", "kalshi_paper.json")
USAGE_PATH = _path_from_env("KALSHI_USAGE_PATH", "kalshi_usage.json")
SESSIONS_DIR = Path(os.getenv(
    "KALSHI_SESSIONS_DIR",
    str(Path.home() / ".openclaw" / "agents" / "main" / "sessions"),
))

MAX_LOG_LINES = 200

# ── Kalshi API ───────────────────────────────────────────────────────────

KALSHI_BASE = "https://api.elections.kalshi.com"
KALSHI_API_PREFIX = "/trade-api/v2"
KALSHI_API_KEY_ID = os.getenv("KALSHI_API_KEY_ID", "")
KALSHI_PRIVATE_KEY_PATH = os.getenv("KALSHI_PRIVATE_KEY_PATH", "")
KALSHI_PRIVATE_KEY_PEM = os.getenv("KALSHI_PRIVATE_KEY_PEM", "")
KALSHI_TIMEOUT = 15               # seconds

# ── Weather APIs ─────────────────────────────────────────────────────────

NOAA_BASE_URL = "https://api.weather.gov"
NOAA_USER_AGENT = os.getenv("NOAA_USER_AGENT", "weather-trading-bot")
ENSEMBLE_API_URL = "https://ensemble-api.open-meteo.com/v1/ensemble"
WEATHER_TIMEOUT = 15              # seconds

# ── Markets ──────────────────────────────────────────────────────────────

CITIES = ['NYC', 'Chicago', 'Miami', 'Austin', 'LA', 'Philadelphia', 'DC', 'Denver', 'SF']

SERIES = {
    'NYC':          'KXHIGHNY',
    'Chicago':      'KXHIGHCHI',
    'Miami':        'KXHIGHMIA',
    'Austin':       'KXHIGHAUS',
    'LA':           'KXHIGHLAX',
    'Philadelphia': 'KXHIGHPHIL',
    'DC':           'KXHIGHTDC',
    'Denver':       'KXHIGHDEN',
    'SF':           'KXHIGHTSFO',
}

MIN_ENSEMBLE_MEMBERS = 10
FALLBACK_BANKROLL = 2000          # cents, used when the balance call fails
SUMMARY_TIMEZONE = "America/New_York"

# ── Risk rules ───────────────────────────────────────────────────────────

DAILY_LOSS_FRACTION = 0.2
MAX_CONSECUTIVE_LOSSES = 5
MAX_FORECAST_MISS = 8             # °F
FORECAST_MISS_LOOKBACK = 10

# ── Telegram ─────────────────────────────────────────────────────────────

TG_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
TG_CHAT_ID = os.getenv("TELEGRAM_CHAT_ID", "")


# ── Trading config (persisted, reloaded every cycle) ─────────────────────

VALID_MODES = ('paused', 'alert-only', 'alert-then-trade', 'autonomous')

MODE_DESCRIPTIONS = {
    'paused': 'No scanning, no trades.',
    'alert-only': 'Scans and alerts, no trades.',
    'alert-then-trade': 'Scans, alerts, waits for confirmation to trade.',
    'autonomous': 'Scans and auto-trades within budget.',
}


@dataclass
class TradingConfig:
    mode: str = 'alert-only'
    min_edge: int = 20                    # percentage points
    max_trade_size: int = 500             # cents per trade
    max_daily_spend: int = 5000           # cents per day
    min_trade_size: int = 5               # cents
    kelly_multiplier: float = 0.25
    scan_interval_minutes: int = 30
    usage_alert_interval_minutes: int = 60
    settlement_interval_hours: int = 6
    top_opportunities_to_show: int = 5
    auto_trade_max_per_scan: int = 3
    sigma_today: float = 2.0              # °F
    sigma_tomorrow: float = 3.0           # °F
    max_normal_confidence: int = 90       # percent
    today_cutoff_hour: int = 14           # city-local hour
    daily_summary_hour: int = 21          # SUMMARY_TIMEZONE hour
    paper_trading: bool = os.getenv("PAPER_TRADING", "true").lower() == "true"

    @classmethod
    def from_dict(cls, data):
        """Build a config from a (possibly partial) dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        config = cls(**{k: v for k, v in data.items() if k in known})
        if config.mode not in VALID_MODES:
            config.mode = cls.mode
        return config

    def to_dict(self):
        return asdict(self)

    def sigma_for(self, label):
        """Normal-model sigma for a horizon label ('today' or 'tomorrow')."""
        return self.sigma_today if label == 'today' else self.sigma_tomorrow


def load_trading_config(path=None):
    """Read the trading config from disk, falling back to defaults."""
    path = Path(path or TRADING_CONFIG_PATH)
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, ValueError):
        return TradingConfig()
    if not isinstance(data, dict):
        return TradingConfig()
    return TradingConfig.from_dict(data)


def save_trading_config(config, path=None):
    path = Path(path or TRADING_CONFIG_PATH)
    with open(path, 'w') as f:
        json.dump(config.to_dict(), f, indent=2)
