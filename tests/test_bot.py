from dataclasses import replace
from datetime import timedelta

import pytest

from conftest import START, StubRandom, callback_update, message_update
from rewardbot.bot import (
    ERROR_TEXT, Dispatcher, fmt_duration, make_referral_link, parse_referral_code, parse_update,
)
from rewardbot.errors import DependencyError
from rewardbot.models import UserRecord
from rewardbot.rewards import RewardEngine


class BrokenStore:
    def get(self, user_id):
        raise DependencyError("RTDB GET failed: 503")

    def put(self, user_id, record):
        raise DependencyError("RTDB PUT failed: 503")

    def append_log(self, entry):
        raise DependencyError("RTDB POST failed: 503")


# --- parsing ---

def test_parse_message_command_with_args():
    cmd = parse_update(message_update(42, "/start ref123"))
    assert (cmd.user_id, cmd.chat_id, cmd.command, cmd.args) == (42, 42, "start", ["ref123"])
    assert cmd.username == "tester"


def test_parse_command_addressed_to_bot():
    assert parse_update(message_update(42, "/Stats@TestBot")).command == "stats"


def test_parse_plain_text_has_no_command():
    cmd = parse_update(message_update(42, "hello there"))
    assert cmd.command == ""
    assert cmd.args == []


def test_parse_callback_query():
    cmd = parse_update(callback_update(42, "stats", chat_id=-100))
    assert (cmd.user_id, cmd.chat_id, cmd.command, cmd.callback_id) == (42, -100, "stats", "cb-1")


@pytest.mark.parametrize("update", [
    None,
    "not a dict",
    {},
    {"update_id": 1},
    {"message": {}},
    {"message": {"text": "/start", "chat": {"id": 1}}},
    {"message": {"from": {"id": 1}, "chat": {"id": 1}}},
    {"message": {"from": {"id": "abc"}, "text": "/start"}},
    {"message": {"from": {"id": 1}, "text": "   "}},
    {"callback_query": {"from": {"id": 1}}},
    {"callback_query": {"data": "stats"}},
])
def test_parse_malformed_updates(update):
    assert parse_update(update) is None


def test_referral_link_round_trip():
    link = make_referral_link("TestBot", 123)
    assert link == "https://t.me/TestBot?start=ref123"
    assert parse_referral_code(link.split("start=")[1]) == 123


@pytest.mark.parametrize("code,expected", [
    ("ref123", 123),
    ("REF7", 7),
    ("555", 555),
    ("", None),
    ("refabc", None),
    ("ref12x", None),
])
def test_parse_referral_code(code, expected):
    assert parse_referral_code(code) == expected


def test_fmt_duration():
    assert fmt_duration(timedelta(hours=3, minutes=12, seconds=5)) == "3h 12m"
    assert fmt_duration(timedelta(minutes=2, seconds=3)) == "2m 3s"
    assert fmt_duration(timedelta(seconds=9)) == "9s"
    assert fmt_duration(timedelta(seconds=-5)) == "0s"


# --- /start and referrals ---

def test_start_creates_user(dispatcher, store, sender):
    reply = dispatcher.handle_update(message_update(42, "/start"))
    record = store.get(42)
    assert record.points == 0
    assert record.referral_count == 0
    assert record.daily_streak == 0
    assert record.created_at == START
    assert "Welcome" in reply.text
    assert sender.sent[0][0] == 42
    assert sender.sent[0][2] is reply.reply_markup


def test_start_with_referral_credits_referrer(dispatcher, store, sender):
    store.put(123, replace(UserRecord.new(123, START), referral_count=3, points=500))
    reply = dispatcher.handle_update(message_update(42, "/start ref123"))

    referrer = store.get(123)
    assert referrer.points == 25_500
    assert referrer.referral_count == 4
    assert store.get(42).referred_by == 123
    assert "friend" in reply.text
    assert [chat for chat, _, _ in sender.sent] == [123, 42]
    assert "25,000" in sender.sent[0][1]
    assert store.logs[0]["action"] == "referral"
    assert store.logs[0]["userId"] == 123
    assert store.logs[0]["amount"] == 25_000


def test_start_with_unknown_referrer_still_creates_user(dispatcher, store):
    reply = dispatcher.handle_update(message_update(42, "/start ref999"))
    assert "Welcome" in reply.text
    assert store.get(42).referred_by is None
    assert store.get(999) is None


def test_start_with_garbage_code(dispatcher, store):
    dispatcher.handle_update(message_update(42, "/start hello"))
    assert store.get(42) is not None
    assert store.logs == []


def test_start_with_own_code_is_not_credited(dispatcher, store):
    dispatcher.handle_update(message_update(42, "/start ref42"))
    record = store.get(42)
    assert record.referred_by is None
    assert record.referral_count == 0
    assert record.points == 0


def test_existing_user_cannot_be_referred_later(dispatcher, store):
    store.put(123, UserRecord.new(123, START))
    dispatcher.handle_update(message_update(42, "/start"))
    dispatcher.handle_update(message_update(42, "/start ref123"))
    assert store.get(123).referral_count == 0
    assert store.get(42).referred_by is None


def test_repeated_start_does_not_credit_twice(dispatcher, store):
    store.put(123, UserRecord.new(123, START))
    dispatcher.handle_update(message_update(42, "/start ref123"))
    dispatcher.handle_update(message_update(42, "/start ref123"))
    assert store.get(123).referral_count == 1
    assert store.get(123).points == 25_000


# --- /daily ---

def test_daily_then_repeat_same_day(dispatcher, store, clock):
    dispatcher.handle_update(message_update(42, "/start"))
    reply = dispatcher.handle_update(message_update(42, "/daily"))
    assert "+1,000" in reply.text
    assert store.get(42).daily_streak == 1
    assert store.get(42).points == 1000

    clock.advance(hours=2)
    reply = dispatcher.handle_update(message_update(42, "/daily"))
    assert "already checked in" in reply.text
    assert "10h 0m" in reply.text
    assert store.get(42).points == 1000


def test_daily_streak_and_bonus_text(dispatcher, store, clock):
    store.put(42, replace(UserRecord.new(42, START), daily_streak=6, last_daily_check_in=START - timedelta(days=1)))
    reply = dispatcher.handle_update(message_update(42, "/daily"))
    assert "+6,000" in reply.text
    assert "7-day bonus" in reply.text
    assert store.logs[-1] == {"userId": 42, "action": "daily", "amount": 6000, "at": START.isoformat(), "streak": 7}


def test_daily_for_unregistered_user_creates_record(dispatcher, store):
    dispatcher.handle_update(message_update(42, "/daily"))
    assert store.get(42).points == 1000


def test_daily_with_arguments_shows_usage(dispatcher, store):
    reply = dispatcher.handle_update(message_update(42, "/daily now"))
    assert "Usage: /daily" in reply.text
    assert store.get(42) is None


# --- /reward ---

def test_reward_and_cooldown(dispatcher, store, clock):
    reply = dispatcher.handle_update(message_update(42, "/reward"))
    assert "+1,234" in reply.text
    assert store.get(42).points == 1234

    clock.advance(hours=1)
    reply = dispatcher.handle_update(message_update(42, "/reward"))
    assert "cooldown" in reply.text
    assert "3h 0m" in reply.text

    clock.advance(hours=3)
    dispatcher.handle_update(message_update(42, "/reward"))
    assert store.get(42).points == 2468


def test_reward_jackpot_text(store, sender, clock):
    dispatcher = Dispatcher(store, sender, RewardEngine(rng=StubRandom(base=1000, roll=0.0)), clock, "TestBot")
    reply = dispatcher.handle_update(message_update(42, "/reward"))
    assert "JACKPOT" in reply.text
    assert store.get(42).points == 5000
    assert store.logs[-1]["jackpot"] is True


# --- /stats, /refer, /help ---

def test_stats_is_read_only(dispatcher, store):
    store.put(42, replace(UserRecord.new(42, START, "tester"), points=61_000, referral_count=2, daily_streak=4))
    before = store.users[42].copy()
    first = dispatcher.handle_update(message_update(42, "/stats"))
    second = dispatcher.handle_update(message_update(42, "/stats"))
    assert first.text == second.text
    assert store.users[42] == before
    assert "61,000" in first.text
    assert "Bronze" in first.text
    assert "3 more referrals to reach Silver" in first.text
    assert "ready now" in first.text


def test_refer_returns_link(dispatcher):
    reply = dispatcher.handle_update(message_update(42, "/refer"))
    assert "https://t.me/TestBot?start=ref42" in reply.text
    assert "25,000" in reply.text


def test_refer_falls_back_to_get_me(store, sender, engine, clock):
    dispatcher = Dispatcher(store, sender, engine, clock, bot_username="")
    reply = dispatcher.handle_update(message_update(42, "/refer"))
    assert "https://t.me/TestBot?start=ref42" in reply.text


@pytest.mark.parametrize("text", ["/bogus", "hello", "/help"])
def test_unknown_input_gets_help(dispatcher, text):
    reply = dispatcher.handle_update(message_update(42, text))
    assert "/daily" in reply.text
    assert "/reward" in reply.text


def test_callback_button_runs_command(dispatcher, sender, store):
    reply = dispatcher.handle_update(callback_update(42, "daily"))
    assert sender.answered == ["cb-1"]
    assert "+1,000" in reply.text
    assert store.get(42).daily_streak == 1


# --- failures ---

def test_malformed_update_has_no_side_effects(dispatcher, store, sender):
    assert dispatcher.handle_update({"message": {"chat": {"id": 1}}}) is None
    assert store.users == {}
    assert sender.sent == []


def test_store_failure_gets_generic_reply(sender, engine, clock):
    dispatcher = Dispatcher(BrokenStore(), sender, engine, clock, "TestBot")
    reply = dispatcher.handle_update(message_update(42, "/daily"))
    assert reply.text == ERROR_TEXT
    assert "503" not in sender.sent[0][1]


def test_log_failure_does_not_undo_award(store, sender, engine, clock):
    def broken_log(entry):
        raise DependencyError("log down")

    store.append_log = broken_log
    dispatcher = Dispatcher(store, sender, engine, clock, "TestBot")
    reply = dispatcher.handle_update(message_update(42, "/daily"))
    assert "+1,000" in reply.text
    assert store.get(42).points == 1000


def test_unexpected_error_still_replies(dispatcher, sender, monkeypatch):
    def boom(cmd):
        raise RuntimeError("bug")

    monkeypatch.setitem(dispatcher.handlers, "stats", boom)
    reply = dispatcher.handle_update(message_update(42, "/stats"))
    assert reply.text == ERROR_TEXT
    assert sender.sent[-1][1] == ERROR_TEXT


def test_username_is_refreshed(dispatcher, store):
    dispatcher.handle_update(message_update(42, "/start", username="old"))
    dispatcher.handle_update(message_update(42, "/daily", username="new"))
    assert store.get(42).username == "new"
    assert store.get(42).points == 1000

    dispatcher.handle_update(message_update(42, "/start", username="newer"))
    assert store.get(42).username == "newer"


def test_missing_username_keeps_stored_one(dispatcher, store):
    dispatcher.handle_update(message_update(42, "/start", username="alice"))
    dispatcher.handle_update(message_update(42, "/stats", username=None))
    assert store.get(42).username == "alice"
