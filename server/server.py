#!/usr/bin/env python3
"""
Mock DeepBot API server

Speaks the DeepBot websocket API (pipe-delimited commands in, JSON replies
out) against an in-memory user table. Used for local development of the
client and by the end-to-end tests.
"""

from __future__ import annotations
import asyncio
from contextlib import suppress
from pathlib import Path
from typing import Any, Iterable, List, Optional, Set

import typer
import websockets
from websockets.exceptions import ConnectionClosed
import yaml

from server.core.CommandHandlers import COMMAND_HANDLER_REGISTRY, BadArguments
from server.core.UserTable import BotUserRecord, UserTable
from shared.commands import INCORRECT_SECRET, SUCCESS, Command
from shared.envelope import BadFrameError, Reply, create_reply, mask_secret, parse_command
from shared.log import configure_root_logging, get_logger
from shared.utils import parse_bot_datetime

logger = get_logger(__name__)

NOT_REGISTERED = "API not registered"


class MockDeepBotServer:

    def __init__(
        self,
        host: str = "localhost",
        port: int = 3337,
        *,
        secret: str = "",
        users: Optional[Iterable[BotUserRecord]] = None,
        default_page_size: int = 100,
    ):
        self.host = host
        self.port = port
        self.secret = secret
        self.users = UserTable(users)
        self.default_page_size = default_page_size

        # Commands the server reads but never answers (lets clients time out)
        self.silent_commands: Set[str] = set()
        # Frames pushed to every client right after it connects, before register
        self.greeting_frames: List[str] = []
        # Every command frame received, in order
        self.received: List[str] = []

        self.connections: Set[Any] = set()
        self.bound_port: Optional[int] = None
        self.ready = asyncio.Event()

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.bound_port or self.port}/"

    async def start_server(self) -> None:
        """Start the WebSocket server and serve until cancelled"""
        logger.info(f"Starting mock DeepBot on {self.host}:{self.port}")

        async with websockets.serve(self.handle_connection, self.host, self.port) as server:
            sockets = list(server.sockets)
            if sockets:
                self.bound_port = sockets[0].getsockname()[1]
            logger.info(f"Mock DeepBot listening on {self.url}")
            self.ready.set()
            try:
                await asyncio.Future()  # Run forever
            finally:
                self.ready.clear()

    async def handle_connection(self, websocket: Any) -> None:
        """Serve one client: greeting frames, register handshake, then commands"""
        self.connections.add(websocket)
        logger.info(f"New connection from {websocket.remote_address}")
        registered = False

        try:
            for frame in self.greeting_frames:
                await websocket.send(frame)

            async for message in websocket:
                if isinstance(message, bytes):
                    message = message.decode("utf-8")
                logger.debug("RECV: %s", mask_secret(message))

                try:
                    name, args = parse_command(message)
                except BadFrameError as e:
                    logger.warning(f"Ignoring frame: {e}")
                    continue

                if name == Command.REGISTER.value:
                    registered = bool(args) and args[0] == self.secret
                    msg = SUCCESS if registered else INCORRECT_SECRET
                    await self._send(websocket, create_reply(Command.REGISTER, msg))
                    continue

                self.received.append(message)
                if name in self.silent_commands:
                    logger.debug(f"Staying silent on {name}")
                    continue
                if not registered:
                    await self._send(websocket, create_reply(name, NOT_REGISTERED))
                    continue

                await self._send(websocket, self.process_command(name, args))
        except ConnectionClosed:
            logger.info("Client disconnected")
        finally:
            self.connections.discard(websocket)

    def process_command(self, name: str, args: List[str]) -> Reply:
        """Run one command against the user table and build its reply"""
        if not Command.is_valid(name):
            return create_reply(name, f"Unknown command: {name}")
        handler = COMMAND_HANDLER_REGISTRY.get(Command(name))
        if handler is None:
            return create_reply(name, f"Unsupported command: {name}")
        try:
            return create_reply(name, handler(self, args))
        except BadArguments as e:
            return create_reply(name, str(e))

    async def _send(self, websocket: Any, reply: Reply) -> None:
        raw = reply.to_json()
        logger.debug("SEND: %s", raw)
        await websocket.send(raw)

    async def push(self, function: str, msg: Any) -> None:
        """Send an unsolicited frame to every connected client"""
        raw = create_reply(function, msg).to_json()
        for websocket in list(self.connections):
            with suppress(ConnectionClosed):
                await websocket.send(raw)

    async def drop_connections(self) -> None:
        """Close every client connection from the server side"""
        for websocket in list(self.connections):
            await websocket.close(code=1001, reason="Mock server dropping connection")


def load_users(path: Path) -> List[BotUserRecord]:
    """
    Read seed users from YAML:

        users:
          - name: alice
            points: 100
            watch_minutes: 600
            vip: 1
            vip_expiry: "2030-01-01T00:00:00"
    """
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    entries = data.get("users", []) if isinstance(data, dict) else []
    users = []
    for entry in entries:
        if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
            logger.warning(f"Skipping malformed user entry: {entry!r}")
            continue
        record = BotUserRecord(
            name=entry["name"],
            points=int(entry.get("points", 0)),
            watch_minutes=int(entry.get("watch_minutes", 0)),
            vip=int(entry.get("vip", 0)),
            mod=int(entry.get("mod", 0)),
        )
        for key in ("join_date", "last_seen", "vip_expiry"):
            if entry.get(key):
                setattr(record, key, parse_bot_datetime(str(entry[key])))
        users.append(record)
    return users


def serve(
    host: str = typer.Option("localhost", help="Interface to listen on"),
    port: int = typer.Option(3337, help="Port to listen on"),
    secret: str = typer.Option(..., envvar="DEEPBOT_SECRET", help="API secret clients must register with"),
    users: Optional[Path] = typer.Option(None, exists=True, dir_okay=False, help="YAML file of seed users"),
    log_level: str = typer.Option("INFO", help="Log level"),
) -> None:
    """Run a mock DeepBot API server."""
    configure_root_logging(log_level)
    seed = load_users(users) if users else []
    server = MockDeepBotServer(host=host, port=port, secret=secret, users=seed)
    logger.info(f"Seeded {len(seed)} users")
    with suppress(KeyboardInterrupt):
        asyncio.run(server.start_server())


def main() -> None:
    typer.run(serve)


if __name__ == "__main__":
    main()
