import html
import logging
import re
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import List, Optional

from telebot.types import InlineKeyboardButton, InlineKeyboardMarkup

from .clock import SystemClock
from .config import BOT_USERNAME
from .errors import BusinessRuleRejection, DependencyError, ValidationError
from .models import UserRecord
from .rewards import RewardEngine

logger = logging.getLogger(__name__)

REFERRAL_PREFIX = "ref"
NO_ARG_COMMANDS = ("refer", "stats", "daily", "reward", "help")

HELP_TEXT = (
    "📖 <b>Commands</b>\n"
    "/start - Register and see the welcome message\n"
    "/refer - Get your referral link\n"
    "/stats - Your points, tier and streak\n"
    "/daily - Daily check-in bonus\n"
    "/reward - Random reward every 4 hours\n"
    "/help - Show this message"
)
ERROR_TEXT = "⚠️ Something went wrong, please try again later."


@dataclass
class Command:
    user_id: int
    chat_id: int
    command: str
    args: List[str] = field(default_factory=list)
    username: Optional[str] = None
    callback_id: Optional[str] = None


@dataclass
class Reply:
    text: str
    reply_markup: Optional[InlineKeyboardMarkup] = None


def fmt_points(points: int) -> str:
    return f"{points or 0:,}"


def fmt_duration(delta: timedelta) -> str:
    secs = max(int(delta.total_seconds()), 0)
    hours, rest = divmod(secs, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def make_referral_link(bot_username: str, user_id: int) -> str:
    return f"https://t.me/{bot_username}?start={REFERRAL_PREFIX}{user_id}"


def parse_referral_code(code: str) -> Optional[int]:
    m = re.fullmatch(rf"(?:{REFERRAL_PREFIX})?(\d+)", (code or "").strip(), flags=re.IGNORECASE)
    return int(m.group(1)) if m else None


def main_keyboard() -> InlineKeyboardMarkup:
    kb = InlineKeyboardMarkup(row_width=2)
    kb.add(
        InlineKeyboardButton("📊 Stats", callback_data="stats"),
        InlineKeyboardButton("📅 Daily", callback_data="daily"),
        InlineKeyboardButton("🎁 Reward", callback_data="reward"),
        InlineKeyboardButton("👥 Refer", callback_data="refer"),
    )
    return kb


def _as_id(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_update(update) -> Optional[Command]:
    """Turn a raw Telegram update into a Command, or None if it is unusable."""
    if not isinstance(update, dict):
        return None

    callback = update.get("callback_query")
    if isinstance(callback, dict):
        user = callback.get("from") or {}
        message = callback.get("message") or {}
        data = callback.get("data")
        user_id = _as_id(user.get("id"))
        if user_id is None or not isinstance(data, str) or not data.strip():
            return None
        chat_id = _as_id((message.get("chat") or {}).get("id")) or user_id
        return Command(
            user_id=user_id,
            chat_id=chat_id,
            command=data.strip().lstrip("/").lower(),
            username=user.get("username"),
            callback_id=callback.get("id"),
        )

    msg = update.get("message") or update.get("edited_message")
    if not isinstance(msg, dict):
        return None
    user = msg.get("from") or {}
    text = msg.get("text")
    user_id = _as_id(user.get("id"))
    if user_id is None or not isinstance(text, str) or not text.strip():
        return None
    chat_id = _as_id((msg.get("chat") or {}).get("id")) or user_id

    parts = text.split()
    command = ""
    if parts[0].startswith("/"):
        command = parts[0][1:].split("@")[0].lower()
    return Command(
        user_id=user_id,
        chat_id=chat_id,
        command=command,
        args=parts[1:] if command else [],
        username=user.get("username"),
    )


class Dispatcher:
    def __init__(self, store, sender, engine: Optional[RewardEngine] = None, clock=None, bot_username: str = BOT_USERNAME):
        self.store = store
        self.sender = sender
        self.engine = engine or RewardEngine()
        self.clock = clock or SystemClock()
        self._bot_username = bot_username
        self.handlers = {
            "start": self.start,
            "refer": self.refer,
            "stats": self.stats,
            "daily": self.daily,
            "reward": self.reward,
            "help": self.help,
        }

    def handle_update(self, update) -> Optional[Reply]:
        cmd = parse_update(update)
        if cmd is None:
            logger.debug("Ignoring update without a usable command")
            return None
        if cmd.callback_id:
            self.sender.answer_callback(cmd.callback_id)
        reply = self.dispatch(cmd)
        self.sender.send_message(cmd.chat_id, reply.text, reply_markup=reply.reply_markup)
        return reply

    def dispatch(self, cmd: Command) -> Reply:
        handler = self.handlers.get(cmd.command, self.help)
        try:
            if cmd.command in NO_ARG_COMMANDS and cmd.args:
                raise ValidationError(f"Usage: /{cmd.command}")
            return handler(cmd)
        except ValidationError as e:
            return Reply(f"⚠️ {html.escape(e.usage)}")
        except BusinessRuleRejection as e:
            logger.info("User %s /%s rejected: %s", cmd.user_id, cmd.command, e.reason)
            return Reply(self.rejection_text(e), main_keyboard())
        except DependencyError:
            logger.exception("User %s /%s failed", cmd.user_id, cmd.command)
            return Reply(ERROR_TEXT)
        except Exception:
            logger.exception("Unexpected error in /%s for user %s", cmd.command, cmd.user_id)
            return Reply(ERROR_TEXT)

    def rejection_text(self, e: BusinessRuleRejection) -> str:
        if e.reason == BusinessRuleRejection.ALREADY_CHECKED_IN:
            return f"✅ You already checked in today. Next check-in in <b>{fmt_duration(e.remaining)}</b>."
        if e.reason == BusinessRuleRejection.COOLDOWN_ACTIVE:
            return f"⏳ Reward on cooldown. Try again in <b>{fmt_duration(e.remaining)}</b>."
        return f"❌ Not allowed: {html.escape(e.reason)}."

    # --- helpers ---

    def bot_username(self) -> str:
        if not self._bot_username:
            self._bot_username = self.sender.bot_username()
        return self._bot_username

    def load_user(self, cmd: Command) -> UserRecord:
        record = self.store.get(cmd.user_id)
        if record is None:
            record = UserRecord.new(cmd.user_id, self.clock.now(), cmd.username)
            self.store.put(cmd.user_id, record)
            logger.info("Created user %s", cmd.user_id)
            return record
        return self.refresh_username(record, cmd)

    def refresh_username(self, record: UserRecord, cmd: Command) -> UserRecord:
        if cmd.username and cmd.username != record.username:
            record = replace(record, username=cmd.username)
            self.store.put(cmd.user_id, record)
        return record

    def log_activity(self, user_id: int, action: str, amount: int, **extra):
        entry = {"userId": user_id, "action": action, "amount": amount, "at": self.clock.now().isoformat()}
        entry.update(extra)
        try:
            self.store.append_log(entry)
        except DependencyError as e:
            logger.warning("Activity log write failed: %s", e)

    # --- handlers ---

    def start(self, cmd: Command) -> Reply:
        now = self.clock.now()
        record = self.store.get(cmd.user_id)
        bonus_text = ""
        if record is None:
            record = UserRecord.new(cmd.user_id, now, cmd.username)
            referrer_id = parse_referral_code(cmd.args[0]) if cmd.args else None
            result = None
            if referrer_id is not None:
                try:
                    referrer = self.store.get(referrer_id) if referrer_id != cmd.user_id else record
                    result = self.engine.process_referral(record, referrer, now)
                except BusinessRuleRejection as e:
                    logger.info("Referral %s -> %s ignored: %s", referrer_id, cmd.user_id, e.reason)
            if result:
                # new user first: a failed referrer write must not allow a second credit
                self.store.put(cmd.user_id, result.new_user)
                self.store.put(result.referrer.id, result.referrer)
                self.log_activity(result.referrer.id, "referral", result.amount, referredUser=cmd.user_id)
                self.sender.send_message(
                    result.referrer.id,
                    f"🎉 New referral! You earned <b>{fmt_points(result.amount)}</b> points "
                    f"({result.tier.name} tier). Total referrals: <b>{result.referrer.referral_count}</b>.",
                )
                bonus_text = "\n\n🤝 You joined through a friend's link, they just got a referral bonus!"
            else:
                self.store.put(cmd.user_id, record)
            logger.info("Created user %s", cmd.user_id)
        else:
            self.refresh_username(record, cmd)

        name = html.escape(cmd.username or "there")
        text = (
            f"👋 <b>Welcome, {name}!</b>\n\n"
            "• /daily - check in every day and build a streak\n"
            "• /reward - claim a random reward every 4 hours\n"
            "• /refer - invite friends and earn up to 50,000 points each\n"
            "• /stats - see your balance"
            f"{bonus_text}"
        )
        return Reply(text, main_keyboard())

    def refer(self, cmd: Command) -> Reply:
        record = self.load_user(cmd)
        tier = self.engine.tier_for(record.referral_count)
        link = make_referral_link(self.bot_username(), cmd.user_id)
        return Reply(
            "🔗 <b>Your referral link</b>\n"
            f"{link}\n\n"
            f"Earn <b>{fmt_points(tier.reward)}</b> points for each friend who joins ({tier.name} tier).",
            main_keyboard(),
        )

    def stats(self, cmd: Command) -> Reply:
        record = self.load_user(cmd)
        s = self.engine.compute_stats(record, self.clock.now())
        if s.next_tier:
            more = "referral" if s.referrals_to_next_tier == 1 else "referrals"
            next_line = f"🎯 {s.referrals_to_next_tier} more {more} to reach {s.next_tier.name}\n"
        else:
            next_line = "🏆 Top tier reached\n"
        reward_line = "ready now" if not s.next_reward_in else f"in {fmt_duration(s.next_reward_in)}"
        return Reply(
            "📊 <b>Your stats</b>\n"
            f"💰 Points: <b>{fmt_points(s.points)}</b>\n"
            f"👥 Referrals: <b>{s.referral_count}</b> ({s.tier.name} tier, {fmt_points(s.tier.reward)} per referral)\n"
            f"{next_line}"
            f"🔥 Daily streak: <b>{s.daily_streak}</b>\n"
            f"🎁 Random reward: {reward_line}",
            main_keyboard(),
        )

    def daily(self, cmd: Command) -> Reply:
        record = self.load_user(cmd)
        result = self.engine.process_daily_check_in(record, self.clock.now())
        self.store.put(cmd.user_id, result.record)
        self.log_activity(cmd.user_id, "daily", result.amount, streak=result.streak)

        lines = [f"📅 Daily check-in: <b>+{fmt_points(result.amount)}</b> points", f"🔥 Streak: <b>{result.streak}</b> days"]
        if result.three_day_bonus:
            lines.append("✨ 3-day bonus included")
        if result.seven_day_bonus:
            lines.append("🌟 7-day bonus included")
        if result.streak_protected:
            lines.append("🛡 Streak protection saved your streak")
        return Reply("\n".join(lines), main_keyboard())

    def reward(self, cmd: Command) -> Reply:
        record = self.load_user(cmd)
        result = self.engine.process_random_reward(record, self.clock.now())
        self.store.put(cmd.user_id, result.record)
        self.log_activity(cmd.user_id, "reward", result.amount, jackpot=result.jackpot)

        if result.jackpot:
            text = f"🎰 <b>JACKPOT!</b> x{self.engine.config.jackpot_multiplier}: <b>+{fmt_points(result.amount)}</b> points"
        else:
            text = f"🎁 You got <b>+{fmt_points(result.amount)}</b> points"
        return Reply(f"{text}\nCome back in {fmt_duration(self.engine.config.random_cooldown)}.", main_keyboard())

    def help(self, cmd: Command) -> Reply:
        return Reply(HELP_TEXT, main_keyboard())
