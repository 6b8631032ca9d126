#!/usr/bin/env python3
"""
DeepBot API client

Typed operations over the DeepBot websocket API: user lookups, points,
VIP levels and escrow.

    async with DeepBot("ws://localhost:3337/", "my-api-secret") as bot:
        user = await bot.get_user("alice")
        await bot.add_points("alice", 50)
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, AsyncIterator, List, Optional, Union

from deepbot.cache import UserCache
from deepbot.config import DEFAULT_URI, DeepBotConfig
from deepbot.dispatcher import CallDispatcher
from deepbot.models import VIP, User
from deepbot.ws_client import BotSession, Connector, SessionState
from shared.commands import LIST_EMPTY, SUCCESS, USER_NOT_FOUND, Command
from shared.envelope import NotFoundError, RemoteError, ReplyValue
from shared.log import get_logger

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 100


class DeepBot:
    """Client for one DeepBot instance."""

    def __init__(
        self,
        uri: str = DEFAULT_URI,
        secret: str = "",
        *,
        config: Optional[DeepBotConfig] = None,
        connector: Optional[Connector] = None,
    ) -> None:
        self.config = (config or DeepBotConfig(uri=uri, secret=secret)).validate()
        self.session = BotSession(self.config, connector=connector)
        self.dispatcher = CallDispatcher(self.session, self.config)
        self.cache = UserCache(ttl=self.config.refresh_interval, auto_refresh=self.config.auto_refresh)

    async def __aenter__(self) -> "DeepBot":
        if self.config.auto_connect:
            await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ---- session ------------------------------------------------------

    @property
    def uri(self) -> str:
        return self.session.uri

    @property
    def secret(self) -> str:
        return self.session.secret

    @secret.setter
    def secret(self, value: str) -> None:
        self.session.secret = value

    @property
    def state(self) -> SessionState:
        return self.session.state

    def is_connected(self) -> bool:
        return self.session.is_connected()

    def is_authenticated(self) -> bool:
        return self.session.is_authenticated()

    async def connect(self, uri: Optional[str] = None, secret: Optional[str] = None) -> bool:
        return await self.session.connect(uri, secret)

    async def close(self) -> None:
        await self.session.close()

    # ---- helpers ------------------------------------------------------

    async def _call(self, command: Command, *args: Any, raw: bool = False) -> ReplyValue:
        return await self.dispatcher.call_command(command, *args, raw=raw)

    async def _expect_success(self, command: Command, username: str, *args: Any) -> None:
        reply = await self._call(command, username, *args)
        if self.config.cache_users:
            self.cache.invalidate(username)
        if reply == SUCCESS:
            return
        if reply == USER_NOT_FOUND:
            raise NotFoundError(USER_NOT_FOUND)
        raise RemoteError(str(reply))

    def _remember(self, user: User) -> User:
        if self.config.cache_users:
            return self.cache.put(user)
        return user

    def _users_from_reply(self, reply: ReplyValue) -> List[User]:
        if reply == LIST_EMPTY:
            return []
        if isinstance(reply, str):
            raise RemoteError(reply)
        if not isinstance(reply, list):
            raise RemoteError(f"Unexpected user list reply: {reply!r}")
        users = []
        for record in reply:
            if not isinstance(record, dict):
                raise RemoteError(f"Unexpected user record: {record!r}")
            users.append(self._remember(User.from_reply(record)))
        return users

    @staticmethod
    def _paging_args(offset: Optional[int], count: Optional[int]) -> List[int]:
        if offset is None and count is not None:
            raise ValueError("You must also specify an offset when specifying a count")
        return [a for a in (offset, count) if a is not None]

    # ---- users --------------------------------------------------------

    async def get_user(self, username: str, refresh: bool = False) -> Optional[User]:
        """
        Look up one user.

        Returns None when the bot does not know the user. Served from the
        cache unless `refresh` is set or the cached snapshot is stale.
        """
        if self.config.cache_users and not refresh:
            cached = self.cache.get(username)
            if cached is not None:
                return cached

        reply = await self._call(Command.GET_USER, username)
        if reply == USER_NOT_FOUND:
            if self.config.cache_users:
                self.cache.invalidate(username)
            return None
        if isinstance(reply, str):
            raise RemoteError(reply)
        if not isinstance(reply, dict):
            raise RemoteError(f"Unexpected get_user reply: {reply!r}")
        return self._remember(User.from_reply(reply))

    async def require_user(self, username: str, refresh: bool = False) -> User:
        """Like get_user, but raises NotFoundError when the user does not exist"""
        user = await self.get_user(username, refresh=refresh)
        if user is None:
            raise NotFoundError(USER_NOT_FOUND)
        return user

    async def refresh_user(self, user: Union[User, str]) -> User:
        name = user.name if isinstance(user, User) else user
        return await self.require_user(name, refresh=True)

    async def get_users_count(self) -> int:
        reply = await self._call(Command.GET_USERS_COUNT)
        if isinstance(reply, bool) or not isinstance(reply, (int, float)):
            raise RemoteError(str(reply))
        return int(reply)

    async def get_users(self, offset: Optional[int] = None, count: Optional[int] = None) -> List[User]:
        reply = await self._call(Command.GET_USERS, *self._paging_args(offset, count))
        return self._users_from_reply(reply)

    async def get_top_users(self, offset: Optional[int] = None, count: Optional[int] = None) -> List[User]:
        reply = await self._call(Command.GET_TOP_USERS, *self._paging_args(offset, count))
        return self._users_from_reply(reply)

    async def iter_user_pages(self, page_size: int = DEFAULT_PAGE_SIZE) -> AsyncIterator[List[User]]:
        """Yield pages of users until the bot returns an empty page"""
        if page_size < 1:
            raise ValueError("page_size must be positive")
        offset = 0
        while True:
            page = await self.get_users(offset, page_size)
            if not page:
                return
            yield page
            offset += page_size

    async def get_all_users(self, page_size: int = DEFAULT_PAGE_SIZE) -> List[User]:
        users: List[User] = []
        async for page in self.iter_user_pages(page_size):
            users.extend(page)
        return users

    async def get_hours(self, username: str) -> float:
        reply = await self._call(Command.GET_HOURS, username)
        if isinstance(reply, bool) or not isinstance(reply, (int, float)):
            if reply == USER_NOT_FOUND:
                raise NotFoundError(USER_NOT_FOUND)
            raise RemoteError(str(reply))
        return float(reply)

    async def get_rank(self, username: str) -> str:
        # Rank names are free text; "1.50" must not come back as 1.5
        reply = await self._call(Command.GET_RANK, username, raw=True)
        if reply == USER_NOT_FOUND:
            raise NotFoundError(USER_NOT_FOUND)
        return str(reply)

    # ---- points -------------------------------------------------------

    async def add_points(self, username: str, points: int) -> None:
        await self._expect_success(Command.ADD_POINTS, username, points)

    async def del_points(self, username: str, points: int) -> None:
        await self._expect_success(Command.DEL_POINTS, username, points)

    async def set_points(self, username: str, points: int) -> None:
        await self._expect_success(Command.SET_POINTS, username, points)

    async def change_points(self, user: Union[User, str], total: int) -> User:
        """
        Move a user's points to `total` by adding or removing the difference.

        Uses add/del rather than set_points so points the bot awards in the
        meantime are not overwritten. Returns the refreshed snapshot.
        """
        current = user if isinstance(user, User) else await self.require_user(user)
        delta = total - current.points
        if delta > 0:
            await self.add_points(current.name, delta)
        elif delta < 0:
            await self.del_points(current.name, -delta)
        return await self.refresh_user(current.name)

    # ---- VIP ----------------------------------------------------------

    async def set_vip(self, username: str, level: Union[VIP, int], days: int = 0) -> None:
        """Set the VIP level and add `days` to the VIP expiry"""
        await self._expect_success(Command.SET_VIP, username, VIP.from_bot(level), days)

    async def set_vip_expiry(self, username: str, expiry: Union[datetime, str]) -> None:
        await self._expect_success(Command.SET_VIP_EXPIRY, username, expiry)

    # ---- escrow -------------------------------------------------------

    async def add_to_escrow(self, username: str, points: int) -> None:
        await self._expect_success(Command.ADD_TO_ESCROW, username, points)

    async def commit_escrow(self, username: str) -> None:
        await self._expect_success(Command.COMMIT_USER_ESCROW, username)

    async def cancel_escrow(self, username: str) -> None:
        await self._expect_success(Command.CANCEL_ESCROW, username)
