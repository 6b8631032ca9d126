from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from shared.log import get_logger
from shared.utils import is_ws_url

logger = get_logger(__name__)

DEFAULT_URI = "ws://localhost:3337/"

_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off"}


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_STRINGS:
        return True
    if lowered in _FALSE_STRINGS:
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")


@dataclass
class DeepBotConfig:
    """
    Connection and caching settings for a DeepBot client.

    The session and dispatcher read the connection fields; the cache fields
    only affect how the facade serves user snapshots.
    """

    uri: str = DEFAULT_URI
    secret: str = ""
    auto_connect: bool = True
    auto_reconnect: bool = True
    response_timeout_ms: int = 5000
    reconnect_delay: float = 2.0
    max_reconnect_attempts: Optional[int] = None  # None retries forever
    reset_on_timeout: bool = True
    cache_users: bool = True
    auto_refresh: bool = True
    refresh_interval: float = 60.0
    ping_interval: Optional[float] = 15.0
    ping_timeout: Optional[float] = 45.0

    @property
    def response_timeout(self) -> float:
        """Response timeout in seconds"""
        return self.response_timeout_ms / 1000.0

    def validate(self) -> "DeepBotConfig":
        if not is_ws_url(self.uri):
            raise ValueError(f"uri must be a ws:// or wss:// URL, got {self.uri!r}")
        if self.response_timeout_ms <= 0:
            raise ValueError("response_timeout_ms must be positive")
        if self.reconnect_delay < 0:
            raise ValueError("reconnect_delay must not be negative")
        if self.max_reconnect_attempts is not None and self.max_reconnect_attempts < 1:
            raise ValueError("max_reconnect_attempts must be at least 1")
        if self.refresh_interval <= 0:
            raise ValueError("refresh_interval must be positive")
        return self

    def with_overrides(self, **overrides: Any) -> "DeepBotConfig":
        """Copy with every non-None override applied"""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DeepBotConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}")
        return cls(**dict(data)).validate()

    @classmethod
    def from_yaml(cls, path: Path) -> "DeepBotConfig":
        """
        Load settings from a YAML file.

        Accepts either a top-level mapping of fields or one nested under a
        ``deepbot:`` key.
        """
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a mapping")
        if isinstance(data.get("deepbot"), dict):
            data = data["deepbot"]
        logger.debug("Loaded config from %s", path)
        return cls.from_dict(data)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None,
                 base: Optional["DeepBotConfig"] = None) -> "DeepBotConfig":
        """Apply DEEPBOT_* environment variables on top of `base` (or defaults)"""
        env = os.environ if environ is None else environ
        overrides: Dict[str, Any] = {}
        if env.get("DEEPBOT_URI"):
            overrides["uri"] = env["DEEPBOT_URI"]
        if env.get("DEEPBOT_SECRET"):
            overrides["secret"] = env["DEEPBOT_SECRET"]
        if env.get("DEEPBOT_TIMEOUT_MS"):
            overrides["response_timeout_ms"] = int(env["DEEPBOT_TIMEOUT_MS"])
        if env.get("DEEPBOT_AUTO_CONNECT"):
            overrides["auto_connect"] = _parse_bool("DEEPBOT_AUTO_CONNECT", env["DEEPBOT_AUTO_CONNECT"])
        return (base or cls()).with_overrides(**overrides).validate()
