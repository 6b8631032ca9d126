from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any, Dict, Optional

from shared.envelope import RemoteError
from shared.utils import parse_bot_datetime


class VIP(IntEnum):
    """VIP levels"""
    REGULAR = 0
    BRONZE = 1
    SILVER = 2
    GOLD = 3

    @classmethod
    def from_bot(cls, value: Any) -> "VIP":
        # The bot reports an expired/cleared VIP as level 10
        level = int(value)
        if level == 10:
            return cls.REGULAR
        return cls(level)


class UserLevel(IntEnum):
    """Moderation levels"""
    USER = 0
    CHANNEL_MOD = 1     # "mod level 1"
    BOT_MOD = 2         # "mod level 2"
    BOT = 4             # the bot itself
    OP = 5              # the streamer


@dataclass
class User:
    """
    Snapshot of one DeepBot user.

    Equality compares the data fields only; `refreshed_at` records when the
    snapshot was fetched and is ignored.
    """
    name: str
    points: int = 0
    minutes: int = 0
    vip: VIP = VIP.REGULAR
    level: UserLevel = UserLevel.USER
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    vip_expiry: Optional[datetime] = None
    refreshed_at: Optional[datetime] = field(default=None, compare=False)

    @property
    def hours(self) -> float:
        return self.minutes / 60

    @classmethod
    def from_reply(cls, data: Dict[str, Any]) -> "User":
        """Build a snapshot from a get_user / get_users record"""
        try:
            return cls(
                name=str(data["user"]),
                points=int(data.get("points", 0)),
                minutes=int(data.get("watch_time", 0)),
                vip=VIP.from_bot(data.get("vip", 0)),
                level=UserLevel(int(data.get("mod", 0))),
                first_seen=parse_bot_datetime(data.get("join_date")),
                last_seen=parse_bot_datetime(data.get("last_seen")),
                vip_expiry=parse_bot_datetime(data.get("vip_expiry")),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise RemoteError(f"Malformed user record: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "points": self.points,
            "minutes": self.minutes,
            "vip": self.vip.name,
            "level": self.level.name,
            "first_seen": self.first_seen.isoformat() if self.first_seen else None,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
            "vip_expiry": self.vip_expiry.isoformat() if self.vip_expiry else None,
        }
