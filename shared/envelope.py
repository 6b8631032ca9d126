from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Tuple, Union
import json

from shared.commands import API_PREFIX, SEPARATOR, Command
from shared.utils import format_expiry, is_safe_token


class DeepBotError(Exception):
    """Base class for every error raised by the DeepBot client."""
    pass
class ConnectionError(DeepBotError):
    """Could not reach the bot, or the session is not usable."""
    pass
class AuthenticationError(DeepBotError):
    """The bot rejected the API secret."""
    pass
class TimeoutError(DeepBotError):
    """No reply arrived within the response timeout."""
    pass
class RemoteError(DeepBotError):
    """The bot answered with an error string. `message` is its text verbatim."""
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
class NotFoundError(RemoteError):
    """The bot reported that the requested user does not exist."""
    pass
class BadFrameError(DeepBotError):
    """An inbound frame is not a valid reply envelope."""
    pass


# Decoded reply payload: whatever JSON shape the command answers with,
# or the raw string when the payload is not JSON.
ReplyValue = Union[str, int, float, bool, None, List[Any], Dict[str, Any]]


@dataclass
class Reply:
    """
    Inbound frame envelope:
    {
    "function": "STRING",   command family, or "register" for the handshake
    "msg": "STRING | JSON-as-string | any JSON value"
    }
    """
    function: str
    msg: Any

    @classmethod
    def from_json(cls, raw: Union[str, bytes]) -> 'Reply':
        """Parse a raw frame, validating structure"""
        if isinstance(raw, bytes):
            try:
                raw = raw.decode('utf-8')
            except UnicodeDecodeError as e:
                raise BadFrameError(f"Frame is not UTF-8: {e}")
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise BadFrameError(f"Invalid JSON: {e}")

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Any) -> 'Reply':
        """Create Reply from a decoded JSON value, validating required fields"""
        if not isinstance(data, dict):
            raise BadFrameError("Frame must be a JSON object")

        missing = {'function', 'msg'} - set(data.keys())
        if missing:
            raise BadFrameError(f"Missing required fields: {sorted(missing)}")
        if not isinstance(data['function'], str):
            raise BadFrameError("'function' must be a string")

        return cls(function=data['function'], msg=data['msg'])

    @property
    def is_register(self) -> bool:
        return self.function == Command.REGISTER.value

    def decoded(self) -> ReplyValue:
        return decode_payload(self.msg)

    def to_dict(self) -> Dict[str, Any]:
        return {'function': self.function, 'msg': self.msg}

    def to_json(self) -> str:
        """Convert Reply to JSON string"""
        return json.dumps(self.to_dict(), separators=(',', ':'))


def decode_payload(msg: Any) -> ReplyValue:
    """
    Best-effort structured decode of a reply payload.

    Strings holding JSON (user records, lists, numbers) are parsed; any
    other string ("success", error messages, ranks) comes back unchanged.
    Payloads that already arrived as JSON values are returned as-is.
    """
    if not isinstance(msg, str):
        return msg
    try:
        return json.loads(msg)
    except ValueError:
        return msg


def _render_token(value: Any) -> str:
    if isinstance(value, Command):
        return value.value
    if isinstance(value, bool):
        raise ValueError("Boolean command arguments are not supported")
    if isinstance(value, datetime):
        return format_expiry(value)
    if isinstance(value, int):
        return str(int(value))
    if isinstance(value, str):
        if not is_safe_token(value):
            raise ValueError(f"Command argument contains a separator or line break: {value!r}")
        return value
    raise ValueError(f"Unsupported command argument type: {type(value).__name__}")


def encode_command(command: Union[Command, str], *args: Any) -> str:
    """
    Build an outgoing frame: api|<command>[|<arg1>[|<arg2>...]]

    Integers (including IntEnum levels) are rendered as decimal, datetimes
    as yyyy-mm-ddThh:mm:ss. Raises ValueError for a token that would break
    the pipe framing.
    """
    name = _render_token(command)
    if not name:
        raise ValueError("Command name must not be empty")
    tokens = [API_PREFIX, name]
    tokens.extend(_render_token(a) for a in args)
    return SEPARATOR.join(tokens)


def encode_register(secret: str) -> str:
    """Registration frame sent right after the socket opens"""
    return encode_command(Command.REGISTER, secret)


def mask_secret(frame: str) -> str:
    """Hide the secret in a registration frame before it is logged"""
    prefix = encode_command(Command.REGISTER) + SEPARATOR
    if frame.startswith(prefix):
        return prefix + "***"
    return frame


def parse_command(frame: str) -> Tuple[str, List[str]]:
    """
    Split an incoming command frame into (command, args).

    Raises BadFrameError when the frame does not start with the api token.
    """
    tokens = frame.split(SEPARATOR)
    if len(tokens) < 2 or tokens[0] != API_PREFIX or not tokens[1]:
        raise BadFrameError(f"Not an api command: {frame!r}")
    return tokens[1], tokens[2:]


def create_reply(function: Union[Command, str], msg: Any, *, embed_json: bool = True) -> Reply:
    """Helper to build a reply; structured payloads are embedded as JSON strings"""
    name = function.value if isinstance(function, Command) else function
    if embed_json and not isinstance(msg, str):
        msg = json.dumps(msg, separators=(',', ':'))
    return Reply(function=name, msg=msg)
