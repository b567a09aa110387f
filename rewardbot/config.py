import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Tuple

from dotenv import load_dotenv
load_dotenv()

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Tier:
    name: str
    min_referrals: int
    reward: int


# Business rules
TIERS = (
    Tier("Bronze", 0, 25_000),
    Tier("Silver", 5, 30_000),
    Tier("Gold", 15, 40_000),
    Tier("Platinum", 30, 50_000),
)
DAILY_BASE_REWARD = 1000
DAILY_THREE_DAY_BONUS = 2000
DAILY_SEVEN_DAY_BONUS = 5000
STREAK_PROTECTION_MIN = 7
RANDOM_REWARD_MIN = 500
RANDOM_REWARD_MAX = 5000
JACKPOT_CHANCE = 0.10
JACKPOT_MULTIPLIER = 5
RANDOM_REWARD_COOLDOWN = timedelta(hours=4)


@dataclass(frozen=True)
class RewardConfig:
    """Every constant the reward engine needs, passed in explicitly."""
    tiers: Tuple[Tier, ...] = TIERS
    daily_base: int = DAILY_BASE_REWARD
    daily_three_day_bonus: int = DAILY_THREE_DAY_BONUS
    daily_seven_day_bonus: int = DAILY_SEVEN_DAY_BONUS
    streak_protection_min: int = STREAK_PROTECTION_MIN
    random_min: int = RANDOM_REWARD_MIN
    random_max: int = RANDOM_REWARD_MAX
    jackpot_chance: float = JACKPOT_CHANCE
    jackpot_multiplier: int = JACKPOT_MULTIPLIER
    random_cooldown: timedelta = RANDOM_REWARD_COOLDOWN
    timezone: str = "UTC"

    def __post_init__(self):
        if not self.tiers or self.tiers[0].min_referrals != 0:
            raise ValueError("tier table must start at 0 referrals")
        bounds = [t.min_referrals for t in self.tiers]
        if bounds != sorted(set(bounds)):
            raise ValueError("tier thresholds must be strictly increasing")


# Env
BOT_TOKEN = os.getenv("BOT_TOKEN", "")
BOT_USERNAME = os.getenv("BOT_USERNAME", "").lstrip("@")
WEBHOOK_URL = os.getenv("WEBHOOK_URL", "").rstrip("/")  # public URL of the webhook server
WEBHOOK_SECRET = os.getenv("WEBHOOK_SECRET", "")
TIMEZONE = os.getenv("TIMEZONE", "UTC")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Firebase Realtime Database
# Example: https://your-project-id-default-rtdb.firebaseio.com
FIREBASE_DB_URL = os.getenv("FIREBASE_DB_URL", "").rstrip("/")
FIREBASE_AUTH = os.getenv("FIREBASE_AUTH", "")
STORE_BACKEND = os.getenv("STORE_BACKEND", "firebase").lower()
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "10"))

DEFAULT_REWARD_CONFIG = RewardConfig(timezone=TIMEZONE)

if not BOT_TOKEN:
    logger.warning("BOT_TOKEN not set in .env")
