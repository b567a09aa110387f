import logging
from typing import Optional

import requests
import telebot
from telebot.apihelper import ApiException

from .config import BOT_TOKEN
from .errors import DependencyError

logger = logging.getLogger(__name__)


class TelegramSender:
    """Fire-and-forget delivery through the Bot API. Failures are logged only."""

    def __init__(self, bot: Optional[telebot.TeleBot] = None, token: str = BOT_TOKEN):
        self.bot = bot or telebot.TeleBot(token, parse_mode="HTML", threaded=False)
        self._username = None

    def send_message(self, chat_id: int, text: str, reply_markup=None) -> bool:
        try:
            self.bot.send_message(chat_id, text, reply_markup=reply_markup, disable_web_page_preview=True)
            return True
        except (ApiException, requests.RequestException) as e:
            logger.warning("sendMessage to %s failed: %s", chat_id, e)
            return False

    def answer_callback(self, callback_id: str) -> bool:
        try:
            self.bot.answer_callback_query(callback_id)
            return True
        except (ApiException, requests.RequestException) as e:
            logger.warning("answerCallbackQuery %s failed: %s", callback_id, e)
            return False

    def bot_username(self) -> str:
        if self._username is None:
            try:
                self._username = self.bot.get_me().username
            except (ApiException, requests.RequestException) as e:
                raise DependencyError(f"getMe failed: {e}") from e
        return self._username
