"""Register or remove the Telegram webhook.

    python bot_webhook.py           # point Telegram at WEBHOOK_URL/webhook/WEBHOOK_SECRET
    python bot_webhook.py --delete  # remove it
"""
import logging
import sys

import telebot

from rewardbot.config import BOT_TOKEN, WEBHOOK_SECRET, WEBHOOK_URL

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("bot_webhook")


def webhook_url(base_url: str, secret: str) -> str:
    return f"{base_url.rstrip('/')}/webhook/{secret}"


def main(argv):
    if not BOT_TOKEN:
        raise RuntimeError("BOT_TOKEN must be set in environment")
    bot = telebot.TeleBot(BOT_TOKEN)
    bot.remove_webhook()
    if "--delete" in argv:
        logger.info("Webhook removed")
        return
    if not WEBHOOK_SECRET or not WEBHOOK_URL:
        raise RuntimeError("WEBHOOK_SECRET and WEBHOOK_URL must be set in environment")
    bot.set_webhook(webhook_url(WEBHOOK_URL, WEBHOOK_SECRET), allowed_updates=["message", "callback_query"])
    logger.info("Webhook set to %s/webhook/***", WEBHOOK_URL)


if __name__ == "__main__":
    main(sys.argv[1:])
