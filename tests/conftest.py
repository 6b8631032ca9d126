import asyncio
import json
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

import pytest
from websockets.exceptions import ConnectionClosedOK

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from deepbot.config import DeepBotConfig


SECRET = "D0A8EZPRYKPIBdAMJARQUJWAEeZLFCWNYZdGI"

_CLOSED = object()

# Maps a command frame to (function, msg), or None for "no reply"
Responder = Callable[[str], Optional[Tuple[str, object]]]


def scripted_responder(replies: Dict[str, object], secret: str = SECRET) -> Responder:
    """
    Answer register frames by comparing the secret, and other frames from
    `replies` keyed by the exact frame or by command name.
    """
    def respond(frame: str):
        tokens = frame.split("|")
        name = tokens[1]
        if name == "register":
            ok = len(tokens) > 2 and tokens[2] == secret
            return "register", "success" if ok else "incorrect api secret"
        if frame in replies:
            return name, replies[frame]
        if name in replies:
            return name, replies[name]
        return None
    return respond


class FakeBotSocket:
    """In-memory stand-in for a websockets ClientConnection talking to DeepBot."""

    def __init__(self, responder: Responder, reply_delay: float = 0.0) -> None:
        self.responder = responder
        self.reply_delay = reply_delay
        self.sent: List[str] = []
        self.events: List[Tuple[str, str]] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        if self.closed:
            raise ConnectionClosedOK(None, None)
        self.sent.append(data)
        self.events.append(("send", data))
        answer = self.responder(data)
        if answer is None:
            return
        function, msg = answer
        if self.reply_delay:
            asyncio.get_running_loop().call_later(self.reply_delay, self.push, function, msg)
        else:
            self.push(function, msg)

    def push(self, function: str, msg: object) -> None:
        if self.closed:
            return
        self.events.append(("reply", function))
        self.push_raw(json.dumps({"function": function, "msg": msg}))

    def push_raw(self, raw: Union[str, bytes]) -> None:
        self._inbox.put_nowait(raw)

    def drop(self) -> None:
        """Simulate the bot closing the connection"""
        self.closed = True
        self._inbox.put_nowait(_CLOSED)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if not self.closed:
            self.drop()

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item


class FakeConnector:
    """Connector handing out FakeBotSockets; can refuse the first N attempts."""

    def __init__(self, responder: Responder, *, refuse: int = 0, reply_delay: float = 0.0) -> None:
        self.responder = responder
        self.refuse = refuse
        self.reply_delay = reply_delay
        self.attempts = 0
        self.sockets: List[FakeBotSocket] = []

    async def __call__(self, uri: str) -> FakeBotSocket:
        self.attempts += 1
        if self.attempts <= self.refuse:
            raise ConnectionRefusedError(f"Connect call failed {uri}")
        socket = FakeBotSocket(self.responder, reply_delay=self.reply_delay)
        self.sockets.append(socket)
        return socket

    @property
    def last(self) -> FakeBotSocket:
        return self.sockets[-1]


def user_record(name: str = "alice", points: int = 500, minutes: int = 600, **extra) -> Dict[str, object]:
    record = {
        "user": name,
        "points": points,
        "watch_time": minutes,
        "vip": 0,
        "mod": 0,
        "join_date": "2015-03-01T10:00:00",
        "last_seen": "2015-06-01T21:30:00",
        "vip_expiry": "2015-06-30T00:00:00",
    }
    record.update(extra)
    return record


@pytest.fixture
def fast_config() -> DeepBotConfig:
    return DeepBotConfig(
        uri="ws://localhost:3337/",
        secret=SECRET,
        response_timeout_ms=200,
        reconnect_delay=0.01,
        auto_reconnect=False,
    )
