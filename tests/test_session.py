import asyncio

import pytest

from conftest import SECRET, FakeConnector, scripted_responder
from deepbot.dispatcher import CallDispatcher
from deepbot.ws_client import BotSession, SessionState
from shared.envelope import AuthenticationError, ConnectionError


def make_session(config, connector):
    session = BotSession(config, connector=connector)
    # Wire the router the same way the facade does
    CallDispatcher(session, config)
    return session


@pytest.mark.asyncio
async def test_connect_sends_register_frame_and_authenticates(fast_config):
    connector = FakeConnector(scripted_responder({}))
    session = make_session(fast_config, connector)

    assert await session.connect() is True

    assert session.state is SessionState.AUTHENTICATED
    assert session.is_authenticated()
    assert session.is_connected()
    assert connector.last.sent == [f"api|register|{SECRET}"]
    await session.close()


@pytest.mark.asyncio
async def test_connect_when_authenticated_is_a_noop(fast_config):
    connector = FakeConnector(scripted_responder({}))
    session = make_session(fast_config, connector)
    await session.connect()

    assert await session.connect() is True

    assert connector.attempts == 1
    assert connector.last.sent == [f"api|register|{SECRET}"]
    await session.close()


@pytest.mark.asyncio
async def test_incorrect_secret_invalidates_secret(fast_config):
    fast_config.secret = "foo"
    connector = FakeConnector(scripted_responder({}))
    session = make_session(fast_config, connector)

    with pytest.raises(AuthenticationError):
        await session.connect()

    assert session.state is SessionState.AUTH_FAILED
    assert session.secret == ""
    assert connector.last.closed is True

    # No second network attempt without a new secret
    with pytest.raises(AuthenticationError):
        await session.connect()
    assert connector.attempts == 1


@pytest.mark.asyncio
async def test_new_secret_after_rejection_connects(fast_config):
    fast_config.secret = "foo"
    connector = FakeConnector(scripted_responder({}))
    session = make_session(fast_config, connector)
    with pytest.raises(AuthenticationError):
        await session.connect()

    assert await session.connect(secret=SECRET) is True
    assert session.is_authenticated()
    await session.close()


@pytest.mark.asyncio
async def test_other_register_reply_fails_but_keeps_secret(fast_config):
    connector = FakeConnector(lambda frame: ("register", "api disabled"))
    session = make_session(fast_config, connector)

    with pytest.raises(AuthenticationError, match="api disabled"):
        await session.connect()

    assert session.state is SessionState.AUTH_FAILED
    assert session.secret == SECRET


@pytest.mark.asyncio
async def test_handshake_timeout_without_reconnect_raises_connection_error(fast_config):
    fast_config.response_timeout_ms = 50
    connector = FakeConnector(lambda frame: None)
    session = make_session(fast_config, connector)

    with pytest.raises(ConnectionError):
        await session.connect()

    assert session.state is SessionState.DISCONNECTED
    assert connector.last.closed is True


@pytest.mark.asyncio
async def test_refused_connection_retries_until_success(fast_config):
    fast_config.auto_reconnect = True
    connector = FakeConnector(scripted_responder({}), refuse=2)
    session = make_session(fast_config, connector)

    assert await session.connect() is True

    assert connector.attempts == 3
    await session.close()


@pytest.mark.asyncio
async def test_reconnect_attempt_limit(fast_config):
    fast_config.auto_reconnect = True
    fast_config.max_reconnect_attempts = 2
    connector = FakeConnector(scripted_responder({}), refuse=5)
    session = make_session(fast_config, connector)

    with pytest.raises(ConnectionError, match="after 2 attempts"):
        await session.connect()
    assert connector.attempts == 2


@pytest.mark.asyncio
async def test_rejection_stops_reconnect_loop(fast_config):
    fast_config.auto_reconnect = True
    fast_config.secret = "wrong"
    connector = FakeConnector(scripted_responder({}))
    session = make_session(fast_config, connector)

    with pytest.raises(AuthenticationError):
        await session.connect()
    assert connector.attempts == 1


@pytest.mark.asyncio
async def test_transport_close_flips_state_to_disconnected(fast_config):
    connector = FakeConnector(scripted_responder({}))
    session = make_session(fast_config, connector)
    await session.connect()

    connector.last.drop()
    await asyncio.sleep(0.01)

    assert session.state is SessionState.DISCONNECTED
    assert not session.is_authenticated()
    assert not session.is_connected()


@pytest.mark.asyncio
async def test_ensure_connected_fails_fast_without_auto_connect(fast_config):
    fast_config.auto_connect = False
    connector = FakeConnector(scripted_responder({}))
    session = make_session(fast_config, connector)

    with pytest.raises(ConnectionError, match="Not connected"):
        await session.ensure_connected()
    assert connector.attempts == 0


@pytest.mark.asyncio
async def test_ensure_connected_connects_lazily(fast_config):
    connector = FakeConnector(scripted_responder({}))
    session = make_session(fast_config, connector)

    await session.ensure_connected()

    assert session.is_authenticated()
    await session.close()


@pytest.mark.asyncio
async def test_closed_session_refuses_lazy_connect(fast_config):
    connector = FakeConnector(scripted_responder({}))
    session = make_session(fast_config, connector)
    await session.connect()
    await session.close()

    assert session.state is SessionState.CLOSED
    with pytest.raises(ConnectionError, match="closed"):
        await session.ensure_connected()
    assert connector.attempts == 1


@pytest.mark.asyncio
async def test_unsolicited_frame_before_register_reply_is_ignored(fast_config):
    connector = FakeConnector(scripted_responder({}))
    session = make_session(fast_config, connector)

    open_socket = connector.__call__

    async def noisy(uri):
        socket = await open_socket(uri)
        socket.push("music", "getVolume")
        socket.push_raw("not json")
        return socket

    session._connector = noisy
    assert await session.connect() is True
    await session.close()


def ignore_first_registers(count):
    """Responder that leaves the first `count` register frames unanswered"""
    answer = scripted_responder({})
    seen = []

    def respond(frame):
        if frame.startswith("api|register|"):
            seen.append(frame)
            if len(seen) <= count:
                return None
        return answer(frame)
    return respond


@pytest.mark.asyncio
async def test_handshake_timeout_retries_when_auto_reconnect(fast_config):
    fast_config.auto_reconnect = True
    fast_config.response_timeout_ms = 50
    connector = FakeConnector(ignore_first_registers(2))
    session = make_session(fast_config, connector)

    assert await session.connect() is True

    assert connector.attempts == 3
    assert [s.closed for s in connector.sockets] == [True, True, False]
    assert session.is_authenticated()
    await session.close()


@pytest.mark.asyncio
async def test_handshake_timeouts_stop_at_attempt_limit(fast_config):
    fast_config.auto_reconnect = True
    fast_config.response_timeout_ms = 50
    fast_config.max_reconnect_attempts = 2
    connector = FakeConnector(ignore_first_registers(5))
    session = make_session(fast_config, connector)

    with pytest.raises(ConnectionError, match="after 2 attempts"):
        await session.connect()

    assert connector.attempts == 2
    assert all(s.closed for s in connector.sockets)
    assert session.state is SessionState.DISCONNECTED


@pytest.mark.asyncio
async def test_send_on_socket_closed_underneath_raises_connection_error(fast_config):
    connector = FakeConnector(scripted_responder({}))
    session = make_session(fast_config, connector)
    await session.connect()

    # Socket refuses writes before the receive loop has seen the close
    connector.last.closed = True
    with pytest.raises(ConnectionError, match="lost"):
        await session.send("api|get_users_count")

    assert session.state is SessionState.DISCONNECTED
    await session.close()
    assert session.state is SessionState.CLOSED
