"""Client library for the DeepBot websocket API."""

from deepbot.bot import DeepBot
from deepbot.cache import UserCache
from deepbot.config import DEFAULT_URI, DeepBotConfig
from deepbot.dispatcher import CallDispatcher, PendingCall, ReplySlot
from deepbot.models import VIP, User, UserLevel
from deepbot.router import MessageRouter
from deepbot.ws_client import BotSession, SessionState
from shared.envelope import (
    AuthenticationError,
    ConnectionError,
    DeepBotError,
    NotFoundError,
    RemoteError,
    TimeoutError,
)

__version__ = "1.1.0"

__all__ = [
    "DeepBot",
    "DeepBotConfig",
    "DEFAULT_URI",
    "BotSession",
    "SessionState",
    "CallDispatcher",
    "PendingCall",
    "ReplySlot",
    "MessageRouter",
    "UserCache",
    "User",
    "VIP",
    "UserLevel",
    "DeepBotError",
    "ConnectionError",
    "AuthenticationError",
    "TimeoutError",
    "RemoteError",
    "NotFoundError",
]
