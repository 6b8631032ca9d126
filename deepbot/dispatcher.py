from __future__ import annotations

import asyncio
import itertools
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from deepbot.config import DeepBotConfig
from deepbot.router import MessageRouter
from deepbot.ws_client import BotSession
from shared.commands import SEPARATOR, Command
from shared.envelope import Reply, ReplyValue, TimeoutError, encode_command
from shared.log import get_logger

logger = get_logger(__name__)


@dataclass
class PendingCall:
    """The one request currently waiting for its reply."""
    seq: int
    command: str
    created_at: float = field(default_factory=time.monotonic)
    future: asyncio.Future = field(default_factory=lambda: asyncio.get_running_loop().create_future())

    @property
    def name(self) -> str:
        """Command name the reply's `function` tag must echo"""
        parts = self.command.split(SEPARATOR)
        return parts[1] if len(parts) > 1 else self.command

    @property
    def age(self) -> float:
        return time.monotonic() - self.created_at


class ReplySlot:
    """
    Single-entry mailbox between the receive loop and the calling task.

    Replies carry no request id, so a reply is matched to whichever call is
    open when it arrives, provided its `function` tag names that call's
    command. Replies that arrive while no call is open, after the open call
    was abandoned, or tagged with another command are dropped.
    """

    def __init__(self) -> None:
        self._pending: Optional[PendingCall] = None
        self._seq = itertools.count(1)

    @property
    def pending(self) -> Optional[PendingCall]:
        return self._pending

    def open(self, command: str) -> PendingCall:
        if self._pending is not None and not self._pending.future.done():
            raise RuntimeError(
                f"Call #{self._pending.seq} ({self._pending.command!r}) is still waiting for its reply"
            )
        call = PendingCall(seq=next(self._seq), command=command)
        self._pending = call
        return call

    def deliver(self, reply: Reply) -> bool:
        call = self._pending
        if call is None or call.future.done():
            logger.debug("Discarding reply with no call waiting: %r", reply.msg)
            return False
        if reply.function != call.name:
            logger.debug(
                "Discarding %s reply while call #%d waits", reply.function, call.seq,
                extra={"command": call.command},
            )
            return False
        call.future.set_result(reply)
        return True

    def fail(self, error: Exception) -> bool:
        call = self._pending
        if call is None or call.future.done():
            return False
        logger.warning("Call #%d failed: %s", call.seq, error, extra={"command": call.command})
        call.future.set_exception(error)
        return True

    def release(self, call: PendingCall) -> None:
        if self._pending is call:
            self._pending = None


class CallDispatcher:
    """
    Turns a command frame into its decoded reply, one call at a time.

    The whole send-and-wait sequence runs under a lock: a second caller
    waits until the first call has its reply (or has timed out) before its
    own frame is sent.
    """

    def __init__(self, session: BotSession, config: Optional[DeepBotConfig] = None) -> None:
        self.session = session
        self.config = config or session.config
        self.slot = ReplySlot()
        self.router = MessageRouter(session, self.slot)
        self._lock = asyncio.Lock()

        session.on_frame(self.router.route)
        session.on_disconnect(self.slot.fail)

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def call(self, command: str, raw: bool = False) -> ReplyValue:
        """
        Send one command frame and wait for its reply.

        Returns the decoded payload, or the `msg` field untouched when `raw`
        is set (for commands whose reply is always plain text).

        Raises:
            ConnectionError: not connected and connecting is not allowed/possible,
                or the connection dropped while waiting
            AuthenticationError: the bot rejected the secret while reconnecting
            TimeoutError: no reply within the response timeout
        """
        async with self._lock:
            await self.session.ensure_connected()

            call = self.slot.open(command)
            try:
                await self.session.send(command)
                try:
                    reply: Reply = await asyncio.wait_for(call.future, self.config.response_timeout)
                    return reply.msg if raw else reply.decoded()
                except asyncio.TimeoutError:
                    logger.warning(
                        "No reply to call #%d after %dms", call.seq, self.config.response_timeout_ms,
                        extra={"command": command},
                    )
                    if self.config.reset_on_timeout:
                        # A late reply to the same command would be taken for the next call's reply
                        await self.session.disconnect()
                    raise TimeoutError("Message processing failure") from None
            finally:
                self.slot.release(call)
                if call.future.done() and not call.future.cancelled():
                    call.future.exception()  # mark retrieved

    async def call_command(self, command: Union[Command, str], *args: Any, raw: bool = False) -> ReplyValue:
        return await self.call(encode_command(command, *args), raw=raw)
