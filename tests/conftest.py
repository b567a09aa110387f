from datetime import datetime, timezone

import pytest

from rewardbot.bot import Dispatcher
from rewardbot.clock import FrozenClock
from rewardbot.db import MemoryStore
from rewardbot.rewards import RewardEngine

START = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


class StubRandom:
    """Stands in for random.Random with fixed draws."""

    def __init__(self, base=1234, roll=0.5):
        self.base = base
        self.roll = roll

    def randint(self, a, b):
        assert a <= self.base <= b
        return self.base

    def random(self):
        return self.roll


class FakeSender:
    def __init__(self):
        self.sent = []
        self.answered = []

    def send_message(self, chat_id, text, reply_markup=None):
        self.sent.append((chat_id, text, reply_markup))
        return True

    def answer_callback(self, callback_id):
        self.answered.append(callback_id)
        return True

    def bot_username(self):
        return "TestBot"


@pytest.fixture
def clock():
    return FrozenClock(START)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def rng():
    return StubRandom()


@pytest.fixture
def engine(rng):
    return RewardEngine(rng=rng)


@pytest.fixture
def dispatcher(store, sender, engine, clock):
    return Dispatcher(store, sender, engine=engine, clock=clock, bot_username="TestBot")


def message_update(user_id, text, chat_id=None, username="tester"):
    return {
        "update_id": 1,
        "message": {
            "message_id": 1,
            "from": {"id": user_id, "is_bot": False, "first_name": "Test", "username": username},
            "chat": {"id": chat_id or user_id, "type": "private"},
            "date": 1710000000,
            "text": text,
        },
    }


def callback_update(user_id, data, chat_id=None):
    return {
        "update_id": 2,
        "callback_query": {
            "id": "cb-1",
            "from": {"id": user_id, "is_bot": False, "first_name": "Test", "username": "tester"},
            "message": {"message_id": 3, "chat": {"id": chat_id or user_id, "type": "private"}, "date": 1710000000},
            "data": data,
        },
    }
