import logging

import requests
from celery import shared_task
from django.conf import settings

logger = logging.getLogger(__name__)


@shared_task
def send_telegram_payment_notification(data: dict):
    if not settings.TELEGRAM_BOT_TOKEN or not settings.TELEGRAM_CHAT_ID:
        logger.debug("Telegram notifications are not configured, skipping")
        return False

    message = (
        f"💸 *Fine payment {data['status'].lower()}*\n"
        f"User: `{data['user']}`\n"
        f"Method: `{data['method']}`\n"
        f"Sum: `{data['amount']}` of `{data['total_fine']}`\n"
        f"Receipt: `{data['receipt']}`\n"
        f"Borrow ID: `{data['borrowing_id']}`\n"
        f"Book: *{data['book']}*"
    )
    url = f"https://api.telegram.org/bot{settings.TELEGRAM_BOT_TOKEN}/sendMessage"
    payload = {
        "chat_id": settings.TELEGRAM_CHAT_ID,
        "text": message,
        "parse_mode": "Markdown",
    }
    try:
        response = requests.post(url, data=payload, timeout=10)
        response.raise_for_status()
    except requests.RequestException as e:
        logger.error(f"Telegram notification failed for receipt {data['receipt']}: {e}")
        return False
    return True
