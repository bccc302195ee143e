"""
Telegram notification helpers.

Every report (scan results, usage, settlements, daily summary, alerts) goes
out through send_text.  A failed send is logged and never raised.
"""
import requests

from kalshi_weather.config import TG_BOT_TOKEN, TG_CHAT_ID
from kalshi_weather.logger import log

MAX_MESSAGE_LENGTH = 4096
TELEGRAM_TIMEOUT = 10             # seconds


def _post(text, parse_mode=None):
    payload = {"chat_id": TG_CHAT_ID, "text": text}
    if parse_mode:
        payload["parse_mode"] = parse_mode
    r = requests.post(
        f"https://api.telegram.org/bot{TG_BOT_TOKEN}/sendMessage",
        json=payload,
        timeout=TELEGRAM_TIMEOUT,
    )
    return r.ok


def send_text(text):
    """Send *text* to the operator chat; returns True if delivered.

    Tries Markdown first and falls back to plain text, since scan output
    can contain characters Telegram's Markdown parser rejects.
    """
    if not TG_BOT_TOKEN or not TG_CHAT_ID or not text:
        return False
    text = text[:MAX_MESSAGE_LENGTH]
    try:
        if _post(text, "Markdown"):
            return True
        return _post(text)
    except requests.RequestException as e:
        log(f"[WARN] Telegram notification failed: {e}")
        return False


def notify_system_alert(title, message, level='warning'):
    """Prominent alert, e.g. a circuit-breaker trip."""
    prefix = {'info': 'ℹ️', 'warning': '⚠️', 'critical': '\U0001f6a8'}.get(level, '⚠️')
    return send_text(f"{prefix} {title}\n\n{message}")
