from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


def _ts_to_str(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def _ts_from_str(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, (int, float)):
        # RTDB server timestamps are milliseconds since the epoch
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# stands in for records stored without a creation time
UNKNOWN_CREATED_AT = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class UserRecord:
    id: int
    created_at: datetime
    points: int = 0
    referral_count: int = 0
    referred_by: Optional[int] = None
    daily_streak: int = 0
    last_daily_check_in: Optional[datetime] = None
    last_random_reward_claim: Optional[datetime] = None
    streak_protected: bool = False
    username: Optional[str] = None

    @classmethod
    def new(cls, user_id: int, now: datetime, username: Optional[str] = None) -> "UserRecord":
        return cls(id=user_id, created_at=now, username=username)

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "points": self.points,
            "referralCount": self.referral_count,
            "referredBy": self.referred_by,
            "dailyStreak": self.daily_streak,
            "lastDailyCheckIn": _ts_to_str(self.last_daily_check_in),
            "lastRandomRewardClaim": _ts_to_str(self.last_random_reward_claim),
            "streakProtected": self.streak_protected,
            "createdAt": _ts_to_str(self.created_at),
            "username": self.username,
        }
        # RTDB drops null children anyway
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, user_id: int, data: dict) -> "UserRecord":
        referred_by = data.get("referredBy")
        return cls(
            id=int(user_id),
            created_at=_ts_from_str(data.get("createdAt")) or UNKNOWN_CREATED_AT,
            points=max(int(data.get("points") or 0), 0),
            referral_count=max(int(data.get("referralCount") or 0), 0),
            referred_by=int(referred_by) if referred_by not in (None, "") else None,
            daily_streak=max(int(data.get("dailyStreak") or 0), 0),
            last_daily_check_in=_ts_from_str(data.get("lastDailyCheckIn")),
            last_random_reward_claim=_ts_from_str(data.get("lastRandomRewardClaim")),
            streak_protected=bool(data.get("streakProtected", False)),
            username=data.get("username") or None,
        )
