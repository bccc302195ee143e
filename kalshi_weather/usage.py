"""
LLM usage accounting for the operator alerts.

Sums today's agent session costs from JSONL session logs and reports the
change since the last alert.  The last-alerted snapshot is a small JSON
watermark file passed in explicitly by the scheduler.
"""
import json
from datetime import datetime, timezone
from pathlib import Path

from kalshi_weather.config import SESSIONS_DIR, USAGE_PATH
from kalshi_weather.logger import log_action


def _empty(today):
    return {'date': today, 'total_cost': 0.0, 'tokens_in': 0, 'tokens_out': 0, 'invocations': 0}


def _entries(path):
    try:
        with open(path, encoding='utf-8') as f:
            lines = f.readlines()
    except OSError:
        return
    for line in lines:
        if not line.strip():
            continue
        try:
            entry = json.loads(line)
        except ValueError:
            continue
        if isinstance(entry, dict):
            yield entry


def get_session_costs(sessions_dir=None, today=None):
    """Today's summed cost (dollars), token counts and invocations."""
    today = today or datetime.now(timezone.utc).date().isoformat()
    sessions_dir = Path(sessions_dir or SESSIONS_DIR)
    stats = _empty(today)
    if not sessions_dir.is_dir():
        return stats

    for path in sorted(sessions_dir.glob('*.jsonl')):
        for entry in _entries(path):
            timestamp = str(entry.get('timestamp') or entry.get('created_at') or '')
            usage = entry.get('usage')
            if not timestamp.startswith(today) or not isinstance(usage, dict):
                continue
            cost = usage.get('cost')
            cost = cost.get('total') if isinstance(cost, dict) else None
            if cost:
                stats['total_cost'] += cost
                stats['invocations'] += 1
            stats['tokens_in'] += usage.get('input_tokens') or 0
            stats['tokens_out'] += usage.get('output_tokens') or 0
    return stats


def load_watermark(path=None):
    try:
        with open(Path(path or USAGE_PATH)) as f:
            data = json.load(f)
    except (OSError, ValueError):
        return _empty('')
    return data if isinstance(data, dict) else _empty('')


def save_watermark(stats, path=None):
    try:
        with open(Path(path or USAGE_PATH), 'w') as f:
            json.dump(stats, f, indent=2)
    except OSError as e:
        log_action('usage_watermark_error', level='warn', error=str(e))


def get_usage_report(current, watermark):
    """Compare *current* totals to the last-alerted *watermark*.

    Returns ``{'has_new_activity': bool, 'message': str}``.
    """
    new_day = watermark.get('date') != current['date']
    delta_cost = current['total_cost'] - (0 if new_day else watermark.get('total_cost', 0))
    delta_calls = current['invocations'] - (0 if new_day else watermark.get('invocations', 0))
    if delta_cost <= 0 and delta_calls <= 0:
        return {'has_new_activity': False, 'message': ''}

    lines = [
        'Usage Update',
        '',
        'Since last report:',
        f"  Cost: +${delta_cost:.4f}",
        f"  Invocations: +{delta_calls}",
        '',
        "Today's totals:",
        f"  Total cost: ${current['total_cost']:.4f}",
        f"  Tokens in: {current['tokens_in']:,}",
        f"  Tokens out: {current['tokens_out']:,}",
        f"  Invocations: {current['invocations']}",
    ]
    return {'has_new_activity': True, 'message': "\n".join(lines)}


def get_usage_alert(sessions_dir=None, watermark_path=None, today=None):
    """Usage delta message, or ``suppress=True`` when nothing is new.

    Advances the watermark only when a message is produced.
    """
    current = get_session_costs(sessions_dir, today)
    report = get_usage_report(current, load_watermark(watermark_path))
    if not report['has_new_activity']:
        return {'success': True, 'message': '', 'suppress': True}
    save_watermark(current, watermark_path)
    log_action('usage_alert', total_cost=round(current['total_cost'], 4),
               invocations=current['invocations'])
    return {'success': True, 'message': report['message'], 'suppress': False}
