"""Telegram fill notifications. Disabled unless both env vars are set."""
import logging
import os

import requests

logger = logging.getLogger(__name__)


def telegram_enabled() -> bool:
    return bool(os.environ.get("TELEGRAM_BOT_TOKEN") and os.environ.get("TELEGRAM_CHAT_ID"))


def send_telegram(msg: str) -> None:
    if not telegram_enabled():
        return
    token = os.environ["TELEGRAM_BOT_TOKEN"]
    try:
        requests.post(
            f"https://api.telegram.org/bot{token}/sendMessage",
            json={"chat_id": os.environ["TELEGRAM_CHAT_ID"], "text": msg, "parse_mode": "HTML"},
            timeout=10,
        )
    except requests.RequestException as e:
        logger.warning("Telegram notification failed: %s", e)
