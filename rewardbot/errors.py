from datetime import timedelta
from typing import Optional


class RewardBotError(Exception):
    pass


class ValidationError(RewardBotError):
    """Malformed command or arguments. ``usage`` is shown to the user."""

    def __init__(self, usage: str):
        super().__init__(usage)
        self.usage = usage


class BusinessRuleRejection(RewardBotError):
    """A reward rule refused the action (cooldown, already claimed, ...)."""

    ALREADY_REFERRED = "already referred"
    SELF_REFERRAL = "self-referral"
    REFERRER_NOT_FOUND = "referrer not found"
    ALREADY_CHECKED_IN = "already checked in today"
    COOLDOWN_ACTIVE = "cooldown active"

    def __init__(self, reason: str, remaining: Optional[timedelta] = None):
        super().__init__(reason)
        self.reason = reason
        self.remaining = remaining


class DependencyError(RewardBotError):
    """The store or the Telegram API failed."""
