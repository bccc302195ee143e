"""
Trade ledger: a fixed-schema CSV, appended on every trade and rewritten in
place when settlements arrive.

The whole file is loaded into a TradeLedger, mutated, and written back in
the original row order.  Rows are never deleted.
"""
import csv
import io
from datetime import date
from pathlib import Path

from kalshi_weather.config import TRADES_PATH
from kalshi_weather.logger import log_action
from kalshi_weather.markets import derive_event_ticker

CSV_HEADERS = [
    'date', 'city', 'event_ticker', 'market_ticker', 'bucket', 'forecast_temp',
    'sigma', 'model_confidence', 'market_price', 'edge', 'side', 'price_paid',
    'contracts', 'order_id', 'status', 'fill_count', 'actual_high',
    'settled_won', 'revenue_cents', 'pnl_cents',
]

SETTLEMENT_FIELDS = ('actual_high', 'settled_won', 'revenue_cents', 'pnl_cents')


def _cell(value):
    return '' if value is None else str(value)


class TradeLedger:
    """In-memory view of the trade CSV, keyed by order id where present."""

    def __init__(self, rows=None, path=None):
        self.path = Path(path or TRADES_PATH)
        self.rows = [self._normalize(r) for r in (rows or [])]

    @staticmethod
    def _normalize(row):
        return {h: _cell(row.get(h)) for h in CSV_HEADERS}

    # ── Persistence ──────────────────────────────────────────────────────

    @classmethod
    def load(cls, path=None):
        """Read the ledger; a missing file is an empty ledger."""
        path = Path(path or TRADES_PATH)
        if not path.exists():
            return cls(path=path)
        with open(path, newline='', encoding='utf-8') as f:
            reader = csv.DictReader(f)
            rows = [r for r in reader if any((r.get(h) or '').strip() for h in CSV_HEADERS)]
        return cls(rows, path=path)

    def save(self):
        """Rewrite the whole file in row order."""
        with open(self.path, 'w', newline='', encoding='utf-8') as f:
            f.write(self.to_csv())

    def to_csv(self):
        buf = io.StringIO()
        writer = csv.DictWriter(buf, fieldnames=CSV_HEADERS, lineterminator='\n')
        writer.writeheader()
        writer.writerows(self.rows)
        return buf.getvalue()

    def append(self, row):
        """Append one row to disk without rewriting existing rows."""
        row = self._normalize(row)
        needs_header = not self.path.exists() or self.path.stat().st_size == 0
        with open(self.path, 'a', newline='', encoding='utf-8') as f:
            writer = csv.DictWriter(f, fieldnames=CSV_HEADERS, lineterminator='\n')
            if needs_header:
                writer.writeheader()
            writer.writerow(row)
        self.rows.append(row)
        return row

    # ── Queries ──────────────────────────────────────────────────────────

    def __iter__(self):
        return iter(self.rows)

    def __len__(self):
        return len(self.rows)

    def by_order_id(self):
        return {r['order_id']: r for r in self.rows if r['order_id']}

    def unsettled(self):
        return [r for r in self.rows if not r['settled_won']]

    def for_date(self, day):
        return [r for r in self.rows if r['date'] == day]


def get_trade_log(path=None):
    """All ledger rows as a list of dicts (empty if no trades yet)."""
    return list(TradeLedger.load(path).rows)


def build_trade_row(trade, opportunity=None, day=None):
    """Ledger row for a submitted order; settlement fields start empty."""
    opp = opportunity or {}
    bucket = opp.get('bucket')
    return {
        'date': day or date.today().isoformat(),
        'city': opp.get('city', ''),
        'event_ticker': derive_event_ticker(trade.get('ticker', '')),
        'market_ticker': trade.get('ticker', ''),
        'bucket': bucket.label() if bucket else '',
        'forecast_temp': opp.get('forecast_temp'),
        'sigma': opp.get('sigma'),
        'model_confidence': opp.get('forecast_confidence'),
        'market_price': opp.get('market_price'),
        'edge': opp.get('edge'),
        'side': trade.get('side', ''),
        'price_paid': trade.get('yes_price'),
        'contracts': trade.get('count'),
        'order_id': trade.get('order_id', ''),
        'status': trade.get('status', ''),
    }


def log_trade(trade, opportunity=None, path=None):
    """Append a trade to the ledger; a write failure is logged, not raised."""
    try:
        row = TradeLedger.load(path).append(build_trade_row(trade, opportunity))
        log_action('trade_logged', ticker=row['market_ticker'], order_id=row['order_id'])
        return row
    except OSError as e:
        log_action('trade_log_error', level='error', error=str(e))
        return None
