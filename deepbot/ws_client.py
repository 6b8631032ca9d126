from __future__ import annotations
import asyncio
from contextlib import suppress
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from deepbot.config import DeepBotConfig
from shared.commands import INCORRECT_SECRET, SUCCESS
from shared.envelope import (
    AuthenticationError,
    ConnectionError,
    encode_register,
    mask_secret,
)
from shared.log import get_logger, log_frame

logger = get_logger(__name__)


# Opens a transport for a URI; returns an object with send/close/async-iteration
Connector = Callable[[str], Awaitable[Any]]
FrameHandler = Callable[[str], None]
DisconnectHandler = Callable[[Exception], None]


class SessionState(str, Enum):
    """Connection/authentication lifecycle of a BotSession."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    AUTH_FAILED = "auth_failed"
    CLOSED = "closed"


class BotSession:
    """
    DeepBot session owning the WebSocket connection and the register handshake.

    Inbound frames are read by a background task and handed to the frame
    handler installed with `on_frame` (the message router). Transport errors
    are logged, never raised from the receive loop; callers see them as
    state changes or as a ConnectionError on the call that was in flight.
    """

    def __init__(self, config: DeepBotConfig, connector: Optional[Connector] = None) -> None:
        self.config = config
        self.uri = config.uri
        self.secret = config.secret
        self.state = SessionState.DISCONNECTED
        self.websocket: Optional[Any] = None
        self._connector = connector or self._default_connector
        self._recv_task: Optional[asyncio.Task] = None
        self._handshake: Optional[asyncio.Future] = None
        self._connect_lock = asyncio.Lock()
        self._frame_handler: Optional[FrameHandler] = None
        self._disconnect_handlers: List[DisconnectHandler] = []

    async def _default_connector(self, uri: str) -> Any:
        return await websockets.connect(
            uri,
            ping_interval=self.config.ping_interval,
            ping_timeout=self.config.ping_timeout,
        )

    # ---- wiring -------------------------------------------------------

    def on_frame(self, handler: FrameHandler) -> None:
        self._frame_handler = handler

    def on_disconnect(self, handler: DisconnectHandler) -> None:
        self._disconnect_handlers.append(handler)

    # ---- state --------------------------------------------------------

    def _set_state(self, state: SessionState) -> None:
        if state is not self.state:
            logger.debug("Session %s -> %s", self.state.value, state.value)
            self.state = state

    def is_connected(self) -> bool:
        return self.websocket is not None and self.state in (
            SessionState.AUTHENTICATING,
            SessionState.AUTHENTICATED,
        )

    def is_authenticated(self) -> bool:
        return self.state is SessionState.AUTHENTICATED

    # ---- handshake ----------------------------------------------------

    async def connect(self, uri: Optional[str] = None, secret: Optional[str] = None) -> bool:
        """
        Connect to DeepBot and authenticate with the API secret.

        Returns True once authenticated. Raises AuthenticationError when the
        secret is rejected (or already known to be invalid) and
        ConnectionError when the bot cannot be reached and reconnecting is
        disabled or out of attempts.
        """
        if uri:
            self.uri = uri
        if secret:
            self.secret = secret

        async with self._connect_lock:
            if self.is_authenticated():
                return True

            attempt = 0
            while True:
                if not self.secret:
                    self._set_state(SessionState.AUTH_FAILED)
                    raise AuthenticationError("Invalid API secret")

                attempt += 1
                try:
                    await asyncio.wait_for(self._open_and_register(), self.config.response_timeout)
                    logger.info("Authenticated with DeepBot", extra={"uri": self.uri})
                    return True
                except AuthenticationError:
                    await self._drop_transport()
                    raise
                except (asyncio.TimeoutError, OSError, WebSocketException, ConnectionError) as e:
                    await self._drop_transport()
                    self._set_state(SessionState.DISCONNECTED)
                    reason = str(e) or type(e).__name__
                    if not self.config.auto_reconnect:
                        raise ConnectionError(f"Could not connect to DeepBot at {self.uri}: {reason}") from e
                    limit = self.config.max_reconnect_attempts
                    if limit is not None and attempt >= limit:
                        raise ConnectionError(
                            f"Could not connect to DeepBot at {self.uri} after {attempt} attempts: {reason}"
                        ) from e
                    logger.warning(
                        f"Connect attempt {attempt} failed ({reason}); retrying in {self.config.reconnect_delay}s",
                        extra={"uri": self.uri},
                    )
                    await asyncio.sleep(self.config.reconnect_delay)

    async def _open_and_register(self) -> None:
        if self.websocket is not None or self._recv_task is not None:
            await self._drop_transport()
        self._set_state(SessionState.CONNECTING)
        websocket = await self._connector(self.uri)
        self.websocket = websocket
        self._set_state(SessionState.AUTHENTICATING)

        self._handshake = asyncio.get_running_loop().create_future()
        self._recv_task = asyncio.create_task(self._recv_loop(websocket))

        # Register as soon as the socket is open
        await self.send(encode_register(self.secret))
        await self._handshake

    def handle_register_reply(self, msg: Any) -> None:
        """Apply the outcome of a register reply (called by the router)."""
        handshake = self._handshake
        error: Optional[Exception] = None

        if msg == SUCCESS:
            self._set_state(SessionState.AUTHENTICATED)
        elif msg == INCORRECT_SECRET:
            self._set_state(SessionState.AUTH_FAILED)
            self.secret = ""
            error = AuthenticationError("Invalid API secret")
            logger.error("DeepBot rejected the API secret")
        else:
            self._set_state(SessionState.AUTH_FAILED)
            error = AuthenticationError(f"Registration failed: {msg}")
            logger.error("Registration failed: %s", msg)

        if handshake is None or handshake.done():
            logger.debug("Register reply with no handshake in progress")
            return
        if error is None:
            handshake.set_result(True)
        else:
            handshake.set_exception(error)

    async def ensure_connected(self) -> None:
        """Connect lazily before a call, or fail fast when that is not allowed."""
        if self.is_authenticated():
            return
        if self.state is SessionState.CLOSED:
            raise ConnectionError("Session has been closed")
        if not self.config.auto_connect:
            raise ConnectionError("Not connected to DeepBot")
        await self.connect()

    # ---- transport ----------------------------------------------------

    async def send(self, frame: str) -> None:
        """Send one text frame"""
        websocket = self.websocket
        if websocket is None:
            raise ConnectionError("Not connected to DeepBot")
        log_frame(logger, "SEND", mask_secret(frame))
        try:
            await websocket.send(frame)
        except ConnectionClosed as e:
            logger.warning("Connection closed while sending")
            self._mark_disconnected(websocket)
            raise ConnectionError("Connection to DeepBot lost") from e

    async def _recv_loop(self, websocket: Any) -> None:
        try:
            async for raw in websocket:
                if isinstance(raw, bytes):
                    raw = raw.decode('utf-8', errors='replace')
                log_frame(logger, "RECV", raw)
                if self._frame_handler is None:
                    continue
                try:
                    self._frame_handler(raw)
                except Exception as e:
                    logger.error("Failed to parse/process inbound frame: %s", e)
        except ConnectionClosed as e:
            logger.info("Connection closed by DeepBot: %s", e)
        except Exception as e:
            logger.error("Transport error: %s", e)
        finally:
            self._mark_disconnected(websocket)

    def _mark_disconnected(self, websocket: Any) -> None:
        # Only the current transport may change session state
        if websocket is not self.websocket:
            return
        self.websocket = None
        if self.state not in (SessionState.AUTH_FAILED, SessionState.CLOSED):
            self._set_state(SessionState.DISCONNECTED)

        error = ConnectionError("Connection to DeepBot lost")
        if self._handshake is not None and not self._handshake.done():
            self._handshake.set_exception(error)
        self._notify_disconnect(error)

    def _notify_disconnect(self, error: Exception) -> None:
        for handler in list(self._disconnect_handlers):
            handler(error)

    async def _drop_transport(self) -> None:
        websocket, task, handshake = self.websocket, self._recv_task, self._handshake
        self.websocket = None
        self._recv_task = None
        self._handshake = None
        if handshake is not None:
            if not handshake.done():
                handshake.cancel()
            elif not handshake.cancelled():
                handshake.exception()  # mark retrieved

        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        if websocket is not None:
            try:
                await websocket.close()
            except Exception as e:
                logger.error(f"Error closing connection: {e}")
            self._notify_disconnect(ConnectionError("Connection to DeepBot closed"))

    async def disconnect(self) -> None:
        """Drop the transport; the next call reconnects if auto-connect is on"""
        await self._drop_transport()
        if self.state is not SessionState.CLOSED:
            self._set_state(SessionState.DISCONNECTED)

    async def close(self) -> None:
        """Close the session for good"""
        await self._drop_transport()
        self._set_state(SessionState.CLOSED)
        logger.info("Session closed")
