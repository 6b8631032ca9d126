from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

# In-memory user table of the mock bot


def _now() -> datetime:
    return datetime.now().replace(microsecond=0)


@dataclass
class BotUserRecord:
    name: str
    points: int = 0
    watch_minutes: int = 0
    vip: int = 0
    mod: int = 0
    join_date: datetime = field(default_factory=_now)
    last_seen: datetime = field(default_factory=_now)
    vip_expiry: datetime = field(default_factory=_now)
    escrow: int = 0

    def to_reply(self) -> Dict[str, Any]:
        """User record as the bot sends it"""
        return {
            "user": self.name,
            "points": self.points,
            "watch_time": self.watch_minutes,
            "vip": self.vip,
            "mod": self.mod,
            "join_date": self.join_date.isoformat(timespec="seconds"),
            "last_seen": self.last_seen.isoformat(timespec="seconds"),
            "vip_expiry": self.vip_expiry.isoformat(timespec="seconds"),
        }

    def set_vip(self, level: int, days: int) -> None:
        # Days extend an unexpired VIP, otherwise start from now
        now = _now()
        self.vip = level
        if level == 0 and days == 0:
            self.vip_expiry = now
            return
        start = self.vip_expiry if self.vip_expiry > now else now
        self.vip_expiry = start + timedelta(days=days)


class UserTable:
    """Users keyed by lower-cased name, kept in insertion order."""

    def __init__(self, users: Optional[Iterable[BotUserRecord]] = None) -> None:
        self._users: Dict[str, BotUserRecord] = {}
        for user in users or ():
            self.add(user)

    def add(self, user: BotUserRecord) -> BotUserRecord:
        self._users[user.name.lower()] = user
        return user

    def get(self, name: str) -> Optional[BotUserRecord]:
        return self._users.get(name.lower())

    def __len__(self) -> int:
        return len(self._users)

    def page(self, offset: int = 0, count: Optional[int] = None) -> List[BotUserRecord]:
        users = list(self._users.values())
        end = None if count is None else offset + count
        return users[offset:end]

    def top(self, offset: int = 0, count: Optional[int] = None) -> List[BotUserRecord]:
        ranked = sorted(self._users.values(), key=lambda u: (-u.points, u.name.lower()))
        end = None if count is None else offset + count
        return ranked[offset:end]

    def rank_of(self, name: str) -> Optional[int]:
        for position, user in enumerate(self.top(), start=1):
            if user.name.lower() == name.lower():
                return position
        return None
