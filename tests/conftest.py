"""Shared fixtures: every test gets its own state files and no network."""
import pytest
import requests

from kalshi_weather.config import TradingConfig


@pytest.fixture(autouse=True)
def isolated_files(tmp_path, monkeypatch):
    """Point every persisted file at a per-test temp directory."""
    monkeypatch.setattr('kalshi_weather.logger.LOG_PATH', tmp_path / 'log.txt')
    monkeypatch.setattr('kalshi_weather.config.TRADING_CONFIG_PATH', tmp_path / 'trading-config.json')
    monkeypatch.setattr('kalshi_weather.state.SPEND_PATH', tmp_path / 'spend.json')
    monkeypatch.setattr('kalshi_weather.ledger.TRADES_PATH', tmp_path / 'trades.csv')
    monkeypatch.setattr('kalshi_weather.paper.PAPER_PATH', tmp_path / 'paper.json')
    monkeypatch.setattr('kalshi_weather.usage.USAGE_PATH', tmp_path / 'usage.json')
    monkeypatch.setattr('kalshi_weather.usage.SESSIONS_DIR', tmp_path / 'sessions')
    return tmp_path


@pytest.fixture(autouse=True)
def no_network(monkeypatch):
    """Any HTTP call that a test forgot to mock fails like an outage."""
    def refuse(*args, **kwargs):
        raise requests.ConnectionError("network disabled in tests")
    monkeypatch.setattr(requests.sessions.Session, 'request', refuse)


@pytest.fixture
def live_config():
    return TradingConfig(mode='autonomous', paper_trading=False, max_daily_spend=1000)


@pytest.fixture
def paper_config():
    return TradingConfig(mode='autonomous', paper_trading=True)


def make_row(**overrides):
    """Ledger row with every column present, as read back from the CSV."""
    row = {
        'date': '2026-04-05', 'city': 'NYC', 'event_ticker': 'KXHIGHNY-26APR05',
        'market_ticker': 'KXHIGHNY-26APR05-B40', 'bucket': '≤40', 'forecast_temp': '',
        'sigma': '2', 'model_confidence': '84', 'market_price': '45', 'edge': '39',
        'side': 'yes', 'price_paid': '46', 'contracts': '2', 'order_id': '',
        'status': 'resting', 'fill_count': '', 'actual_high': '', 'settled_won': '',
        'revenue_cents': '', 'pnl_cents': '',
    }
    row.update({k: str(v) for k, v in overrides.items()})
    return row
