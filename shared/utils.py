from __future__ import annotations
from datetime import datetime
from typing import Optional
from urllib.parse import urlparse

# ========================================
#           INPUT VALIDATION HELPERS
# ========================================
"""
Helpers the command encoder and the config layer call to decide whether a
value can safely go on the wire or be used as an endpoint.
"""

# Characters that would split or terminate a pipe-delimited frame
_FORBIDDEN_TOKEN_CHARS = ("|", "\r", "\n")

def is_safe_token(s: str) -> bool:
    """
    returns True if the string can be sent as one command argument
    (no '|' separator and no line breaks).
    """
    return not any(c in s for c in _FORBIDDEN_TOKEN_CHARS)

def is_ws_url(s: str) -> bool:
    """
    Accepts 'ws://host[:port][/path]' or 'wss://...'.

    - scheme must be ws or wss
    - host must be non-empty
    - port, when given, must be between 1 and 65535
    """
    try:
        parsed = urlparse(s)
        if parsed.scheme not in ("ws", "wss") or not parsed.hostname:
            return False
        port = parsed.port
        return port is None or 0 < port <= 65535
    except ValueError:
        return False


# ========================================
#           DATE HELPERS
# ========================================

# Sortable pattern the bot expects for set_vip_expiry
EXPIRY_FORMAT = "%Y-%m-%dT%H:%M:%S"

# Non-ISO renderings seen from .NET DateTime serialization
_FALLBACK_FORMATS = (
    "%m/%d/%Y %I:%M:%S %p",
    "%m/%d/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
)

def format_expiry(value: datetime) -> str:
    """Render a datetime the way the bot parses VIP expiry dates."""
    return value.strftime(EXPIRY_FORMAT)

def parse_bot_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a date string from a user record.

    Tries ISO-8601 first (trailing 'Z' accepted), then a few .NET
    renderings. Returns None for empty values; raises ValueError for
    anything else it cannot read.
    """
    if value is None or value == "":
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        pass
    for fmt in _FALLBACK_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    raise ValueError(f"Unrecognized date: {value!r}")
