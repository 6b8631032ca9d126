import json
from datetime import datetime

import pytest

from conftest import SECRET, FakeConnector, scripted_responder, user_record
from deepbot import DeepBot, SessionState
from deepbot.models import VIP, User, UserLevel
from shared.envelope import NotFoundError, RemoteError


def make_bot(config, replies):
    connector = FakeConnector(scripted_responder(replies))
    return DeepBot(config=config, connector=connector), connector


def commands_sent(connector):
    return [f for s in connector.sockets for f in s.sent if not f.startswith("api|register|")]


class FakeBotState:
    """Tiny stateful bot: one user whose points move with add/del/set"""

    def __init__(self, name="alice", points=100):
        self.name = name
        self.points = points

    def __call__(self, frame):
        tokens = frame.split("|")
        command, args = tokens[1], tokens[2:]
        if command == "register":
            return "register", "success" if args[0] == SECRET else "incorrect api secret"
        if args and args[0] != self.name:
            return command, "User not found"
        if command == "get_user":
            return command, json.dumps(user_record(self.name, self.points))
        if command == "add_points":
            self.points += int(args[1])
        elif command == "del_points":
            self.points -= int(args[1])
        elif command == "set_points":
            self.points = int(args[1])
        return command, "success"


@pytest.mark.asyncio
async def test_context_manager_connects_and_closes(fast_config):
    bot, connector = make_bot(fast_config, {})

    async with bot:
        assert bot.is_authenticated()
        assert bot.state is SessionState.AUTHENTICATED
        assert connector.last.sent == [f"api|register|{SECRET}"]

    assert bot.state is SessionState.CLOSED


@pytest.mark.asyncio
async def test_get_user_parses_record(fast_config):
    record = user_record("alice", points=1500, minutes=90, vip=2, mod=1)
    bot, connector = make_bot(fast_config, {"api|get_user|alice": json.dumps(record)})

    user = await bot.get_user("alice")

    assert user == User(
        name="alice",
        points=1500,
        minutes=90,
        vip=VIP.SILVER,
        level=UserLevel.CHANNEL_MOD,
        first_seen=datetime(2015, 3, 1, 10, 0),
        last_seen=datetime(2015, 6, 1, 21, 30),
        vip_expiry=datetime(2015, 6, 30),
    )
    assert user.hours == 1.5
    assert user.refreshed_at is not None
    assert commands_sent(connector) == ["api|get_user|alice"]
    await bot.close()


@pytest.mark.asyncio
async def test_expired_vip_level_maps_to_regular(fast_config):
    bot, _ = make_bot(fast_config, {"get_user": user_record("bob", vip=10)})
    user = await bot.get_user("bob")
    assert user.vip is VIP.REGULAR
    await bot.close()


@pytest.mark.asyncio
async def test_unknown_user(fast_config):
    bot, _ = make_bot(fast_config, {"get_user": "User not found"})

    assert await bot.get_user("ghost") is None
    with pytest.raises(NotFoundError) as info:
        await bot.require_user("ghost")
    assert info.value.message == "User not found"
    await bot.close()


@pytest.mark.asyncio
async def test_malformed_user_record_raises_remote_error(fast_config):
    bot, _ = make_bot(fast_config, {"get_user": {"points": 5}})
    with pytest.raises(RemoteError, match="Malformed user record"):
        await bot.get_user("alice")
    await bot.close()


@pytest.mark.asyncio
async def test_get_user_is_served_from_cache(fast_config):
    bot, connector = make_bot(fast_config, {"get_user": user_record("alice")})

    first = await bot.get_user("alice")
    second = await bot.get_user("Alice")
    await bot.get_user("alice", refresh=True)

    assert first is second
    assert commands_sent(connector) == ["api|get_user|alice", "api|get_user|alice"]
    await bot.close()


@pytest.mark.asyncio
async def test_cache_disabled_always_asks_the_bot(fast_config):
    fast_config.cache_users = False
    bot, connector = make_bot(fast_config, {"get_user": user_record("alice")})

    await bot.get_user("alice")
    await bot.get_user("alice")

    assert len(commands_sent(connector)) == 2
    assert bot.cache.size() == 0
    await bot.close()


@pytest.mark.asyncio
async def test_mutation_invalidates_cached_user(fast_config):
    bot, connector = make_bot(fast_config, {"get_user": user_record("alice"), "add_points": "success"})

    await bot.get_user("alice")
    await bot.add_points("alice", 5)
    await bot.get_user("alice")

    assert commands_sent(connector) == [
        "api|get_user|alice",
        "api|add_points|alice|5",
        "api|get_user|alice",
    ]
    await bot.close()


@pytest.mark.asyncio
async def test_list_commands_and_paging_arguments(fast_config):
    records = [user_record("a", 30), user_record("b", 20)]
    bot, connector = make_bot(fast_config, {
        "get_users": json.dumps(records),
        "get_top_users": records,
    })

    users = await bot.get_users(10, 2)
    top = await bot.get_top_users(0)
    everyone = await bot.get_users()

    assert [u.name for u in users] == ["a", "b"]
    assert [u.points for u in top] == [30, 20]
    assert len(everyone) == 2
    assert commands_sent(connector) == [
        "api|get_users|10|2",
        "api|get_top_users|0",
        "api|get_users",
    ]
    await bot.close()


@pytest.mark.asyncio
async def test_empty_list_reply(fast_config):
    bot, _ = make_bot(fast_config, {"get_users": "List empty", "get_top_users": "List empty"})
    assert await bot.get_users(500, 10) == []
    assert await bot.get_top_users() == []
    await bot.close()


@pytest.mark.asyncio
async def test_count_without_offset_is_rejected_before_sending(fast_config):
    bot, connector = make_bot(fast_config, {})

    with pytest.raises(ValueError, match="offset"):
        await bot.get_users(count=5)
    with pytest.raises(ValueError, match="offset"):
        await bot.get_top_users(count=5)

    assert connector.attempts == 0


@pytest.mark.asyncio
async def test_iterates_pages_until_empty(fast_config):
    bot, connector = make_bot(fast_config, {
        "api|get_users|0|2": [user_record("a"), user_record("b")],
        "api|get_users|2|2": [user_record("c")],
        "api|get_users|4|2": "List empty",
    })

    everyone = await bot.get_all_users(page_size=2)

    assert [u.name for u in everyone] == ["a", "b", "c"]
    assert commands_sent(connector) == ["api|get_users|0|2", "api|get_users|2|2", "api|get_users|4|2"]
    await bot.close()


@pytest.mark.asyncio
async def test_count_hours_and_rank(fast_config):
    bot, connector = make_bot(fast_config, {
        "get_users_count": "17",
        "get_hours": "12.5",
        "get_rank": "Diamond Viewer",
    })

    assert await bot.get_users_count() == 17
    assert await bot.get_hours("alice") == 12.5
    assert await bot.get_rank("alice") == "Diamond Viewer"
    assert commands_sent(connector) == [
        "api|get_users_count",
        "api|get_hours|alice",
        "api|get_rank|alice",
    ]
    await bot.close()


@pytest.mark.asyncio
async def test_error_string_replies_raise_remote_error(fast_config):
    bot, _ = make_bot(fast_config, {
        "get_users_count": "API not registered",
        "get_hours": "User not found",
        "get_rank": "User not found",
    })

    with pytest.raises(RemoteError, match="API not registered"):
        await bot.get_users_count()
    with pytest.raises(NotFoundError):
        await bot.get_hours("ghost")
    with pytest.raises(NotFoundError):
        await bot.get_rank("ghost")
    await bot.close()


@pytest.mark.asyncio
async def test_points_mutations_send_expected_frames(fast_config):
    bot, connector = make_bot(fast_config, {
        "add_points": "success",
        "del_points": "success",
        "set_points": "success",
    })

    await bot.add_points("alice", 50)
    await bot.del_points("alice", 20)
    await bot.set_points("alice", 0)

    assert commands_sent(connector) == [
        "api|add_points|alice|50",
        "api|del_points|alice|20",
        "api|set_points|alice|0",
    ]
    await bot.close()


@pytest.mark.asyncio
async def test_failed_mutation_reports_bot_message(fast_config):
    bot, _ = make_bot(fast_config, {"del_points": "Not enough points", "add_points": "User not found"})

    with pytest.raises(RemoteError) as info:
        await bot.del_points("alice", 5000)
    assert info.value.message == "Not enough points"
    assert not isinstance(info.value, NotFoundError)

    with pytest.raises(NotFoundError):
        await bot.add_points("ghost", 1)
    await bot.close()


@pytest.mark.asyncio
async def test_set_vip_and_expiry_frames(fast_config):
    bot, connector = make_bot(fast_config, {"set_vip": "success", "set_vip_expiry": "success"})

    await bot.set_vip("alice", VIP.GOLD, 30)
    await bot.set_vip("alice", 10)
    await bot.set_vip_expiry("alice", datetime(2016, 1, 31, 23, 59, 59))
    await bot.set_vip_expiry("alice", "2016-02-01T00:00:00")

    assert commands_sent(connector) == [
        "api|set_vip|alice|3|30",
        "api|set_vip|alice|0|0",
        "api|set_vip_expiry|alice|2016-01-31T23:59:59",
        "api|set_vip_expiry|alice|2016-02-01T00:00:00",
    ]
    await bot.close()


@pytest.mark.asyncio
async def test_escrow_frames(fast_config):
    bot, connector = make_bot(fast_config, {
        "add_to_escrow": "success",
        "commit_user_escrow": "success",
        "cancel_escrow": "success",
    })

    await bot.add_to_escrow("alice", 25)
    await bot.commit_escrow("alice")
    await bot.cancel_escrow("alice")

    assert commands_sent(connector) == [
        "api|add_to_escrow|alice|25",
        "api|commit_user_escrow|alice",
        "api|cancel_escrow|alice",
    ]
    await bot.close()


@pytest.mark.asyncio
async def test_change_points_adds_or_removes_difference(fast_config):
    state = FakeBotState(points=100)
    connector = FakeConnector(state)
    bot = DeepBot(config=fast_config, connector=connector)

    user = await bot.change_points("alice", 130)
    assert user.points == 130

    user = await bot.change_points(user, 90)
    assert user.points == 90

    sent = commands_sent(connector)
    assert "api|add_points|alice|30" in sent
    assert "api|del_points|alice|40" in sent
    assert not any(f.startswith("api|set_points") for f in sent)
    await bot.close()


@pytest.mark.asyncio
async def test_change_points_to_same_total_only_refreshes(fast_config):
    state = FakeBotState(points=100)
    connector = FakeConnector(state)
    bot = DeepBot(config=fast_config, connector=connector)

    current = await bot.require_user("alice")
    user = await bot.change_points(current, 100)

    assert user.points == 100
    assert commands_sent(connector) == ["api|get_user|alice", "api|get_user|alice"]
    await bot.close()


@pytest.mark.asyncio
async def test_secret_setter_updates_session(fast_config):
    fast_config.secret = "wrong"
    bot, connector = make_bot(fast_config, {"get_users_count": "1"})

    bot.secret = SECRET
    assert await bot.get_users_count() == 1
    assert connector.last.sent[0] == f"api|register|{SECRET}"
    await bot.close()


@pytest.mark.parametrize("rank", ["1.50", "true", "null", "42"])
@pytest.mark.asyncio
async def test_rank_text_is_returned_verbatim(fast_config, rank):
    bot, _ = make_bot(fast_config, {"get_rank": rank})
    assert await bot.get_rank("alice") == rank
    await bot.close()
