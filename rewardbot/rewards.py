"""Reward rules: referral tiers, daily streaks, random claims.

Nothing in here does I/O. Every operation takes the current record(s) and the
current time and either returns a result holding the new record(s) or raises
:class:`BusinessRuleRejection`. Records are frozen, so a rejected or failed
computation never leaves a half-applied award behind.
"""
import random
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from .config import DEFAULT_REWARD_CONFIG, RewardConfig, Tier
from .errors import BusinessRuleRejection
from .models import UserRecord


@dataclass(frozen=True)
class ReferralResult:
    new_user: UserRecord
    referrer: UserRecord
    amount: int
    tier: Tier


@dataclass(frozen=True)
class DailyCheckInResult:
    record: UserRecord
    amount: int
    streak: int
    three_day_bonus: bool
    seven_day_bonus: bool
    streak_protected: bool


@dataclass(frozen=True)
class RandomRewardResult:
    record: UserRecord
    amount: int
    base_amount: int
    jackpot: bool


@dataclass(frozen=True)
class Stats:
    points: int
    referral_count: int
    tier: Tier
    daily_streak: int
    next_reward_in: timedelta
    next_tier: Optional[Tier]
    referrals_to_next_tier: int


class RewardEngine:
    def __init__(self, config: RewardConfig = DEFAULT_REWARD_CONFIG, rng: Optional[random.Random] = None):
        self.config = config
        self.rng = rng or random.Random()
        self._tz = ZoneInfo(config.timezone)

    # --- tiers ---

    def tier_for(self, referral_count: int) -> Tier:
        if referral_count < 0:
            raise ValueError("referral count cannot be negative")
        current = self.config.tiers[0]
        for tier in self.config.tiers:
            if referral_count >= tier.min_referrals:
                current = tier
        return current

    def next_tier(self, referral_count: int) -> Optional[Tier]:
        for tier in self.config.tiers:
            if tier.min_referrals > referral_count:
                return tier
        return None

    # --- referral ---

    def process_referral(self, new_user: UserRecord, referrer: Optional[UserRecord], now: datetime) -> ReferralResult:
        if new_user.referred_by is not None:
            raise BusinessRuleRejection(BusinessRuleRejection.ALREADY_REFERRED)
        if referrer is None:
            raise BusinessRuleRejection(BusinessRuleRejection.REFERRER_NOT_FOUND)
        if referrer.id == new_user.id:
            raise BusinessRuleRejection(BusinessRuleRejection.SELF_REFERRAL)

        # tier is decided by the count before this referral is added
        tier = self.tier_for(referrer.referral_count)
        return ReferralResult(
            new_user=replace(new_user, referred_by=referrer.id),
            referrer=replace(
                referrer,
                referral_count=referrer.referral_count + 1,
                points=referrer.points + tier.reward,
            ),
            amount=tier.reward,
            tier=tier,
        )

    # --- daily check-in ---

    def _local_date(self, when: datetime):
        return when.astimezone(self._tz).date()

    def days_since_check_in(self, record: UserRecord, now: datetime) -> Optional[int]:
        if record.last_daily_check_in is None:
            return None
        return (self._local_date(now) - self._local_date(record.last_daily_check_in)).days

    def time_to_next_day(self, now: datetime) -> timedelta:
        local = now.astimezone(self._tz)
        midnight = datetime.combine(local.date() + timedelta(days=1), datetime.min.time(), tzinfo=self._tz)
        return midnight.astimezone(timezone.utc) - local.astimezone(timezone.utc)

    def process_daily_check_in(self, record: UserRecord, now: datetime) -> DailyCheckInResult:
        cfg = self.config
        days = self.days_since_check_in(record, now)
        protected = False

        if days is None:
            streak = 1
        elif days <= 0:
            raise BusinessRuleRejection(BusinessRuleRejection.ALREADY_CHECKED_IN, self.time_to_next_day(now))
        elif days == 1:
            streak = record.daily_streak + 1
        elif days == 2 and record.daily_streak >= cfg.streak_protection_min and not record.streak_protected:
            # one missed day is forgiven once
            streak = record.daily_streak + 1
            protected = True
        else:
            streak = 1

        three = streak % 3 == 0
        seven = streak % 7 == 0
        amount = cfg.daily_base
        if three:
            amount += cfg.daily_three_day_bonus
        if seven:
            amount += cfg.daily_seven_day_bonus

        return DailyCheckInResult(
            record=replace(
                record,
                daily_streak=streak,
                last_daily_check_in=now,
                streak_protected=protected,
                points=record.points + amount,
            ),
            amount=amount,
            streak=streak,
            three_day_bonus=three,
            seven_day_bonus=seven,
            streak_protected=protected,
        )

    # --- random reward ---

    def random_reward_remaining(self, record: UserRecord, now: datetime) -> timedelta:
        if record.last_random_reward_claim is None:
            return timedelta(0)
        remaining = record.last_random_reward_claim + self.config.random_cooldown - now
        return max(remaining, timedelta(0))

    def process_random_reward(self, record: UserRecord, now: datetime) -> RandomRewardResult:
        cfg = self.config
        remaining = self.random_reward_remaining(record, now)
        if remaining > timedelta(0):
            raise BusinessRuleRejection(BusinessRuleRejection.COOLDOWN_ACTIVE, remaining)

        base = self.rng.randint(cfg.random_min, cfg.random_max)
        jackpot = self.rng.random() < cfg.jackpot_chance
        amount = base * cfg.jackpot_multiplier if jackpot else base
        return RandomRewardResult(
            record=replace(record, last_random_reward_claim=now, points=record.points + amount),
            amount=amount,
            base_amount=base,
            jackpot=jackpot,
        )

    # --- stats ---

    def compute_stats(self, record: UserRecord, now: datetime) -> Stats:
        nxt = self.next_tier(record.referral_count)
        return Stats(
            points=record.points,
            referral_count=record.referral_count,
            tier=self.tier_for(record.referral_count),
            daily_streak=record.daily_streak,
            next_reward_in=self.random_reward_remaining(record, now),
            next_tier=nxt,
            referrals_to_next_tier=nxt.min_referrals - record.referral_count if nxt else 0,
        )
