from __future__ import annotations

from enum import Enum


class Command(str, Enum):
    """DeepBot API commands (the token after ``api|`` on the wire)."""

    # Handshake
    REGISTER = "register"

    # Lookups
    GET_USER = "get_user"
    GET_USERS = "get_users"                      # [|offset[|count]]
    GET_TOP_USERS = "get_top_users"              # [|offset[|count]]
    GET_USERS_COUNT = "get_users_count"
    GET_HOURS = "get_hours"
    GET_RANK = "get_rank"

    # Points
    ADD_POINTS = "add_points"
    DEL_POINTS = "del_points"
    SET_POINTS = "set_points"

    # VIP
    SET_VIP = "set_vip"                          # |user|level|days
    SET_VIP_EXPIRY = "set_vip_expiry"            # |user|yyyy-mm-ddThh:mm:ss

    # Escrow
    ADD_TO_ESCROW = "add_to_escrow"
    COMMIT_USER_ESCROW = "commit_user_escrow"
    CANCEL_ESCROW = "cancel_escrow"

    @classmethod
    def from_string(cls, value: str) -> Command:
        """Convert string to Command enum, raise ValueError if unknown."""
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Unknown command: {value}")

    @classmethod
    def is_valid(cls, value: str) -> bool:
        """Check if string is a known command."""
        try:
            cls(value)
            return True
        except ValueError:
            return False


# Every outgoing frame starts with this token
API_PREFIX = "api"
SEPARATOR = "|"

# Literal replies the bot uses
SUCCESS = "success"
INCORRECT_SECRET = "incorrect api secret"
USER_NOT_FOUND = "User not found"
LIST_EMPTY = "List empty"
