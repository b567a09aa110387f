# Run with: uvicorn bot_fastapi:app
import logging

from rewardbot.bot import Dispatcher
from rewardbot.config import LOG_LEVEL, WEBHOOK_SECRET
from rewardbot.db import get_store
from rewardbot.sender import TelegramSender
from rewardbot.server import create_app

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

dispatcher = Dispatcher(get_store(), TelegramSender())
app = create_app(dispatcher, WEBHOOK_SECRET)
