"""
Probability math and position sizing.

Contains the statistical core: the temperature Bucket a contract pays on,
normal-model and ensemble-model bucket probabilities, and fractional-Kelly
sizing for binary contracts.
"""
import math
from dataclasses import dataclass
from typing import Optional

from kalshi_weather.logger import log_action


# ── Buckets ──────────────────────────────────────────────────────────────

def _open(bound):
    return bound is None or math.isinf(bound)


@dataclass(frozen=True)
class Bucket:
    """Temperature range a YES contract wins on.

    ``low=None`` means "≤ high", ``high=None`` means "≥ low"; both ends are
    inclusive.
    """
    low: Optional[float] = None
    high: Optional[float] = None

    def __post_init__(self):
        if _open(self.low) and _open(self.high):
            raise ValueError("bucket needs at least one bound")
        if not _open(self.low) and not _open(self.high) and self.low > self.high:
            raise ValueError(f"bucket low {self.low} > high {self.high}")
        # Canonicalise infinite bounds to None.
        if self.low is not None and _open(self.low):
            object.__setattr__(self, 'low', None)
        if self.high is not None and _open(self.high):
            object.__setattr__(self, 'high', None)

    def contains(self, temp):
        if self.low is None:
            return temp <= self.high
        if self.high is None:
            return temp >= self.low
        return self.low <= temp <= self.high

    def label(self):
        if self.low is None:
            return f"≤{_fmt(self.high)}"
        if self.high is None:
            return f"≥{_fmt(self.low)}"
        return f"{_fmt(self.low)}-{_fmt(self.high)}"

    def to_dict(self):
        return {'low': self.low, 'high': self.high}

    @classmethod
    def from_dict(cls, data):
        if not data:
            return None
        return cls(data.get('low'), data.get('high'))


def _fmt(value):
    return str(int(value)) if float(value).is_integer() else str(value)


def did_bucket_win(bucket, actual_high):
    """True when the observed high settles the bucket's YES side."""
    return bucket.contains(actual_high)


# ── Normal model ─────────────────────────────────────────────────────────

def normal_cdf(x):
    """Standard normal cumulative distribution function."""
    return 0.5 * (1 + math.erf(x / math.sqrt(2)))


def temperature_bucket_confidence(forecast_temp, low, high, sigma=3.0):
    """P(high temperature lands in [low, high]) under N(forecast_temp, sigma²)."""
    if _open(low) and _open(high):
        return 1.0
    if _open(low):
        return normal_cdf((high - forecast_temp) / sigma)
    if _open(high):
        return 1.0 - normal_cdf((low - forecast_temp) / sigma)
    z_low = (low - forecast_temp) / sigma
    z_high = (high - forecast_temp) / sigma
    return normal_cdf(z_high) - normal_cdf(z_low)


# ── Ensemble model ───────────────────────────────────────────────────────

def ensemble_bucket_confidence(members, low, high):
    """Fraction of ensemble members whose rounded high lands in the bucket.

    Kalshi settles on whole-degree observations, so each member is rounded
    half-up before the inclusive bound comparison.  Empty input gives 0.
    """
    if not members:
        return 0.0
    if _open(low) and _open(high):
        return 1.0

    count = 0
    for temp in members:
        rounded = math.floor(temp + 0.5)
        if _open(low):
            hit = rounded <= high
        elif _open(high):
            hit = rounded >= low
        else:
            hit = low <= rounded <= high
        if hit:
            count += 1
    return count / len(members)


# ── Kelly criterion ──────────────────────────────────────────────────────

def _no_trade(reason, kelly_fraction=0.0, adjusted_fraction=0.0):
    return {
        'amount': 0,
        'kelly_fraction': kelly_fraction,
        'adjusted_fraction': adjusted_fraction,
        'contracts': 0,
        'reason': reason,
    }


def calculate_position_size(bankroll, edge, yes_price, kelly_multiplier=0.25,
                            max_trade_size=500, min_trade_size=5):
    """Fractional-Kelly size for a binary YES contract.

    For price p (cents) and believed probability q, full Kelly is
    (q - p) / (100 - p) = edge / (100 - yes_price).  The result's amount is
    always an exact multiple of yes_price.
    """
    if edge <= 0:
        return _no_trade('no edge')
    if bankroll <= 0:
        return _no_trade('no bankroll')
    if yes_price < 1 or yes_price > 99:
        return _no_trade('invalid price')

    kelly_fraction = edge / (100 - yes_price)
    adjusted_fraction = kelly_fraction * kelly_multiplier

    amount = min(math.floor(bankroll * adjusted_fraction), max_trade_size)

    if amount < min_trade_size:
        # Kelly says less than the minimum; fall back to a single contract.
        if yes_price <= max_trade_size and yes_price <= bankroll:
            amount = yes_price
        else:
            return _no_trade('below minimum size', kelly_fraction, adjusted_fraction)

    contracts = amount // yes_price
    if contracts < 1:
        return _no_trade('cannot afford 1 contract', kelly_fraction, adjusted_fraction)

    amount = contracts * yes_price

    log_action('position_sized', bankroll=bankroll, edge=edge, yes_price=yes_price,
               kelly_fraction=round(kelly_fraction, 3), amount=amount, contracts=contracts)

    return {
        'amount': amount,
        'kelly_fraction': kelly_fraction,
        'adjusted_fraction': adjusted_fraction,
        'contracts': contracts,
        'reason': (f"Kelly {kelly_fraction * 100:.1f}% × {kelly_multiplier} = "
                   f"{adjusted_fraction * 100:.1f}% of bankroll"),
    }
