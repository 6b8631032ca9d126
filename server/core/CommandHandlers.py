from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from server.core.UserTable import BotUserRecord
from shared.commands import LIST_EMPTY, SUCCESS, USER_NOT_FOUND, Command
from shared.utils import EXPIRY_FORMAT

if TYPE_CHECKING:
    from server.server import MockDeepBotServer


# Handlers return the reply `msg`: a string, or a JSON value the server embeds as a string
CommandHandler = Callable[["MockDeepBotServer", List[str]], Any]


class BadArguments(ValueError):
    """Raised when a command frame has missing or malformed arguments."""
    pass


def _int_arg(args: List[str], index: int, name: str, default: Optional[int] = None) -> int:
    if index >= len(args) or args[index] == "":
        if default is None:
            raise BadArguments(f"Missing {name}")
        return default
    try:
        return int(args[index])
    except ValueError:
        raise BadArguments(f"Invalid {name}: {args[index]}")


def _user_arg(server: "MockDeepBotServer", args: List[str]) -> Optional[BotUserRecord]:
    if not args or not args[0]:
        raise BadArguments("Missing user")
    return server.users.get(args[0])


class LookupHandlers:
    """Read-only commands."""

    @staticmethod
    def handle_get_user(server: "MockDeepBotServer", args: List[str]) -> Any:
        user = _user_arg(server, args)
        if user is None:
            return USER_NOT_FOUND
        return user.to_reply()

    @staticmethod
    def handle_get_users(server: "MockDeepBotServer", args: List[str]) -> Any:
        offset = _int_arg(args, 0, "offset", default=0)
        count = _int_arg(args, 1, "count", default=server.default_page_size)
        page = server.users.page(offset, count)
        if not page:
            return LIST_EMPTY
        return [u.to_reply() for u in page]

    @staticmethod
    def handle_get_top_users(server: "MockDeepBotServer", args: List[str]) -> Any:
        offset = _int_arg(args, 0, "offset", default=0)
        count = _int_arg(args, 1, "count", default=server.default_page_size)
        page = server.users.top(offset, count)
        if not page:
            return LIST_EMPTY
        return [u.to_reply() for u in page]

    @staticmethod
    def handle_get_users_count(server: "MockDeepBotServer", args: List[str]) -> Any:
        return len(server.users)

    @staticmethod
    def handle_get_hours(server: "MockDeepBotServer", args: List[str]) -> Any:
        user = _user_arg(server, args)
        if user is None:
            return USER_NOT_FOUND
        return round(user.watch_minutes / 60, 2)

    @staticmethod
    def handle_get_rank(server: "MockDeepBotServer", args: List[str]) -> Any:
        user = _user_arg(server, args)
        if user is None:
            return USER_NOT_FOUND
        rank = server.users.rank_of(user.name)
        return f"#{rank}"


class PointsHandlers:
    """Point and VIP mutations."""

    @staticmethod
    def handle_add_points(server: "MockDeepBotServer", args: List[str]) -> Any:
        user = _user_arg(server, args)
        if user is None:
            return USER_NOT_FOUND
        user.points += _int_arg(args, 1, "points")
        return SUCCESS

    @staticmethod
    def handle_del_points(server: "MockDeepBotServer", args: List[str]) -> Any:
        user = _user_arg(server, args)
        if user is None:
            return USER_NOT_FOUND
        points = _int_arg(args, 1, "points")
        if points > user.points:
            return "Not enough points"
        user.points -= points
        return SUCCESS

    @staticmethod
    def handle_set_points(server: "MockDeepBotServer", args: List[str]) -> Any:
        user = _user_arg(server, args)
        if user is None:
            return USER_NOT_FOUND
        user.points = _int_arg(args, 1, "points")
        return SUCCESS

    @staticmethod
    def handle_set_vip(server: "MockDeepBotServer", args: List[str]) -> Any:
        user = _user_arg(server, args)
        if user is None:
            return USER_NOT_FOUND
        level = _int_arg(args, 1, "level")
        if level not in (0, 1, 2, 3, 10):
            return f"Invalid VIP level: {level}"
        user.set_vip(0 if level == 10 else level, _int_arg(args, 2, "days", default=0))
        return SUCCESS

    @staticmethod
    def handle_set_vip_expiry(server: "MockDeepBotServer", args: List[str]) -> Any:
        user = _user_arg(server, args)
        if user is None:
            return USER_NOT_FOUND
        if len(args) < 2:
            raise BadArguments("Missing expiry")
        try:
            user.vip_expiry = datetime.strptime(args[1], EXPIRY_FORMAT)
        except ValueError:
            return f"Invalid date: {args[1]}"
        return SUCCESS


class EscrowHandlers:
    """Escrow holds points until they are committed (deducted) or cancelled."""

    @staticmethod
    def handle_add_to_escrow(server: "MockDeepBotServer", args: List[str]) -> Any:
        user = _user_arg(server, args)
        if user is None:
            return USER_NOT_FOUND
        points = _int_arg(args, 1, "points")
        if user.escrow + points > user.points:
            return "Not enough points"
        user.escrow += points
        return SUCCESS

    @staticmethod
    def handle_commit_user_escrow(server: "MockDeepBotServer", args: List[str]) -> Any:
        user = _user_arg(server, args)
        if user is None:
            return USER_NOT_FOUND
        user.points -= user.escrow
        user.escrow = 0
        return SUCCESS

    @staticmethod
    def handle_cancel_escrow(server: "MockDeepBotServer", args: List[str]) -> Any:
        user = _user_arg(server, args)
        if user is None:
            return USER_NOT_FOUND
        user.escrow = 0
        return SUCCESS


COMMAND_HANDLER_REGISTRY: Dict[Command, CommandHandler] = {
    Command.GET_USER: LookupHandlers.handle_get_user,
    Command.GET_USERS: LookupHandlers.handle_get_users,
    Command.GET_TOP_USERS: LookupHandlers.handle_get_top_users,
    Command.GET_USERS_COUNT: LookupHandlers.handle_get_users_count,
    Command.GET_HOURS: LookupHandlers.handle_get_hours,
    Command.GET_RANK: LookupHandlers.handle_get_rank,
    Command.ADD_POINTS: PointsHandlers.handle_add_points,
    Command.DEL_POINTS: PointsHandlers.handle_del_points,
    Command.SET_POINTS: PointsHandlers.handle_set_points,
    Command.SET_VIP: PointsHandlers.handle_set_vip,
    Command.SET_VIP_EXPIRY: PointsHandlers.handle_set_vip_expiry,
    Command.ADD_TO_ESCROW: EscrowHandlers.handle_add_to_escrow,
    Command.COMMIT_USER_ESCROW: EscrowHandlers.handle_commit_user_escrow,
    Command.CANCEL_ESCROW: EscrowHandlers.handle_cancel_escrow,
}
