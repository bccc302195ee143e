"""
Model calibration diagnostics.

Reads the trade ledger only.  Nothing here changes live config; a sigma
change is always an explicit operator decision.
"""
import statistics

from kalshi_weather.ledger import get_trade_log
from kalshi_weather.logger import log_action
from kalshi_weather.markets import date_from_ticker

CONFIDENCE_BUCKETS = [(0, 20), (20, 40), (40, 60), (60, 80), (80, 100)]


def _number(value):
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def compute_forecast_errors(rows):
    """Forecast-minus-actual statistics, one sample per city and market date.

    Positive error means the forecast ran hot.  ``realized_sigma`` is the
    sample standard deviation of the errors.
    """
    seen = set()
    errors = []
    for r in rows:
        forecast, actual = _number(r.get('forecast_temp')), _number(r.get('actual_high'))
        if forecast is None or actual is None:
            continue
        day = date_from_ticker(r.get('event_ticker') or r.get('market_ticker')) or r.get('date', '')
        key = (r.get('city', ''), day)
        if key in seen:
            continue
        seen.add(key)
        errors.append({'city': key[0], 'date': day, 'forecast_temp': forecast,
                       'actual_high': actual, 'error': forecast - actual})

    n = len(errors)
    if n == 0:
        return {'errors': [], 'mean_error': 0, 'mean_absolute_error': 0,
                'realized_sigma': 0, 'sample_size': 0}

    values = [e['error'] for e in errors]
    return {
        'errors': errors,
        'mean_error': round(statistics.mean(values), 1),
        'mean_absolute_error': round(statistics.mean(abs(v) for v in values), 1),
        'realized_sigma': round(statistics.stdev(values), 1) if n > 1 else 0,
        'sample_size': n,
    }


def compute_calibration(rows):
    """Actual win rate per 20-point model-confidence band (top band includes 100)."""
    settled = [
        r for r in rows
        if r.get('settled_won') and _number(r.get('model_confidence')) is not None
    ]
    buckets = []
    for low, high in CONFIDENCE_BUCKETS:
        members = [
            r for r in settled
            if low <= _number(r['model_confidence']) < high
            or (high == 100 and _number(r['model_confidence']) == 100)
        ]
        wins = sum(1 for r in members if r['settled_won'] == 'yes')
        buckets.append({
            'label': f"{low}-{high}%",
            'total': len(members),
            'wins': wins,
            'win_rate': round(wins / len(members) * 100) if members else None,
        })
    return {'buckets': buckets, 'sample_size': len(settled)}


def get_calibration_report(rows=None, assumed_sigma=3.0):
    """Plain-text calibration report for the operator."""
    rows = get_trade_log() if rows is None else rows
    if not rows:
        return "Calibration Report\n\nNo trades logged yet. Start trading to collect calibration data."

    stats = compute_forecast_errors(rows)
    calibration = compute_calibration(rows)
    lines = ['Calibration Report', '']

    if stats['sample_size']:
        sigma = stats['realized_sigma']
        sign = '+' if stats['mean_error'] > 0 else ''
        lines += [
            'Forecast Accuracy:',
            f"  Sample size: {stats['sample_size']} city-days",
            f"  Mean error: {sign}{stats['mean_error']}°F (+ = forecast too high)",
            f"  Mean absolute error: {stats['mean_absolute_error']}°F",
            f"  Realized sigma: {sigma}°F (model assumes {assumed_sigma}°F)",
        ]
        if sigma <= assumed_sigma + 1:
            lines.append('  Status: GOOD, model is reasonably calibrated')
        elif sigma <= assumed_sigma + 2:
            lines.append(f"  Status: CAUTION, consider increasing sigma to {sigma}")
        else:
            lines.append(f"  Status: WARNING, model is overconfident; sigma should be {sigma}")
    else:
        lines += ['Forecast Accuracy: No actual temperature data yet.',
                  '  (Waiting for settlement checks to record actual highs)']

    lines.append('')
    if calibration['sample_size']:
        lines.append('Calibration (confidence -> actual win rate):')
        for b in calibration['buckets']:
            if b['total']:
                lines.append(f"  {b['label']}: {b['win_rate']}% actual ({b['wins']}/{b['total']})")
    else:
        lines.append('Calibration: No settled trades yet.')

    lines += ['', f"Total trades: {len(rows)}"]
    log_action('calibration_report', sample_size=stats['sample_size'],
               realized_sigma=stats['realized_sigma'])
    return "\n".join(lines)
