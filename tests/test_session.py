import asyncio

import pytest
import pytest_asyncio

from puretelnet.config import CONTINUOUS_MODE_MARKER, SETTLE_QUIESCENT
from puretelnet.events import EventFeed, SessionEventType
from puretelnet.exceptions import ConfigurationError, PureTelnetError
from puretelnet.identity import IdentityRegistry
from puretelnet.session import AsyncSession, Session
from puretelnet.version import client_name

from conftest import (
    TEST_HOST,
    MockTelnetServer,
    ThreadedTelnetServer,
    unused_port,
    wait_for_condition,
)

NOT_CONNECTED = "Not connected to a telnet server"


@pytest_asyncio.fixture
async def session(fast_config, identity):
    engine = AsyncSession(fast_config, identity)
    try:
        yield engine
    finally:
        await engine.close()


def texts(engine, kind):
    return [e.text for e in engine.get_events(kind)]


class TestConnect:
    @pytest.mark.asyncio
    async def test_requires_identity(self, fast_config, telnet_server):
        engine = AsyncSession(fast_config, IdentityRegistry())
        result = await engine.connect(TEST_HOST, telnet_server.port)
        assert result.success is False
        assert "identity not set" in result.message
        assert telnet_server.connections == 0
        assert engine.connected is False

    @pytest.mark.asyncio
    async def test_connect_updates_state_and_events(self, session, telnet_server):
        port = telnet_server.port
        result = await session.connect(TEST_HOST, port)
        assert result.success is True
        assert result.message == f"Connected to {TEST_HOST}:{port}"

        state = session.status()
        assert state.connected is True
        assert state.host == TEST_HOST
        assert state.port == port
        assert state.name == f"{TEST_HOST}:{port}"
        assert state.use_tls is False
        assert state.last_error == ""
        assert len(state.session_id) == 12

        assert texts(session, SessionEventType.SYSTEM) == [
            f"Session started ({TEST_HOST}:{port})"
        ]
        assert texts(session, SessionEventType.CONNECTION) == [
            f"Connected to {TEST_HOST}:{port} ({TEST_HOST}:{port})"
        ]
        await wait_for_condition(lambda: telnet_server.connections == 1)

    @pytest.mark.asyncio
    async def test_named_connection(self, session, telnet_server):
        await session.connect(TEST_HOST, telnet_server.port, name="mud")
        assert session.status().name == "mud"
        assert session.status_preview()["connectionName"] == "mud"

    @pytest.mark.asyncio
    async def test_connect_failure_is_reported(self, session):
        port = unused_port()
        result = await session.connect(TEST_HOST, port)
        assert result.success is False
        assert result.message == (
            f"Failed to connect to {TEST_HOST}:{port}: "
            f"Connection refused by {TEST_HOST}:{port}"
        )
        state = session.status()
        assert state.connected is False
        assert state.last_error == f"Connection refused by {TEST_HOST}:{port}"
        assert texts(session, SessionEventType.ERROR)
        assert not session.recovery.active

    @pytest.mark.asyncio
    async def test_connect_replaces_existing_connection(self, session, telnet_server):
        await session.connect(TEST_HOST, telnet_server.port)
        first_id = session.status().session_id
        result = await session.connect(TEST_HOST, telnet_server.port)
        assert result.success is True
        assert session.status().session_id != first_id
        assert "Disconnected before new connection" in texts(
            session, SessionEventType.DISCONNECTION
        )
        await wait_for_condition(lambda: telnet_server.connections == 2)
        response = await session.send_command("look")
        assert "You see a room." in response.response


class TestCommands:
    @pytest.mark.asyncio
    async def test_command_response(self, session, telnet_server):
        await session.connect(TEST_HOST, telnet_server.port)
        result = await session.send_command("look")
        assert result.success is True
        assert result.response == "You see a room.\r\n"
        state = session.status()
        assert state.last_command == "look"
        assert state.last_response == "You see a room.\r\n"
        assert texts(session, SessionEventType.COMMAND) == ["look"]
        assert texts(session, SessionEventType.RESPONSE) == ["You see a room.\r\n"]
        assert session.get_buffer() == "You see a room.\r\n"

    @pytest.mark.asyncio
    async def test_not_connected(self, session):
        result = await session.send_command("look")
        assert result.success is False
        assert result.response == NOT_CONNECTED
        assert session.get_buffer() == NOT_CONNECTED

    @pytest.mark.asyncio
    async def test_late_output_does_not_leak_into_next_response(
        self, session, telnet_server
    ):
        await session.connect(TEST_HOST, telnet_server.port)
        first = await session.send_command("slow")
        assert "first part" in first.response
        assert "late part" not in first.response
        await asyncio.sleep(0.4)
        second = await session.send_command("look")
        assert second.response == "You see a room.\r\n"

    @pytest.mark.asyncio
    async def test_hard_timeout_returns_partial_response(
        self, fast_config, identity, telnet_server
    ):
        config = fast_config.with_overrides(settle_window=5.0, min_command_timeout=0.05)
        engine = AsyncSession(config, identity)
        try:
            await engine.connect(TEST_HOST, telnet_server.port)
            result = await engine.send_command("silent", timeout=200)
        finally:
            await engine.close()
        assert result.success is True
        assert result.response == "Command timed out after 200ms.\nPartial response:\n"
        assert texts(engine, SessionEventType.TIMEOUT)

    @pytest.mark.asyncio
    async def test_quiescent_settle(self, fast_config, identity, telnet_server):
        config = fast_config.with_overrides(settle_mode=SETTLE_QUIESCENT)
        engine = AsyncSession(config, identity)
        try:
            await engine.connect(TEST_HOST, telnet_server.port)
            result = await engine.send_command("look")
        finally:
            await engine.close()
        assert result.response == "You see a room.\r\n"

    @pytest.mark.asyncio
    async def test_control_characters_stripped(self, session, telnet_server):
        await session.connect(TEST_HOST, telnet_server.port)
        result = await session.send_command("lo\x07o\x1bk")
        assert result.response == "You see a room.\r\n"
        assert "look" in telnet_server.lines
        assert session.status().last_command == "look"

    @pytest.mark.asyncio
    async def test_commands_are_serialized(self, session, telnet_server):
        await session.connect(TEST_HOST, telnet_server.port)
        first, second = await asyncio.gather(
            session.send_command("look"), session.send_command("echo hi")
        )
        assert first.response == "You see a room.\r\n"
        assert second.response == "hi\r\n"
        assert telnet_server.lines == ["look", "echo hi"]

    @pytest.mark.asyncio
    async def test_wait_after(self, session, telnet_server):
        await session.connect(TEST_HOST, telnet_server.port)
        result = await session.send_command("look", wait_after=0.1)
        assert result.response.endswith("\n\n[Waited 0.1 seconds after command]")

    @pytest.mark.asyncio
    async def test_continuous_mode_marker(self, session, telnet_server):
        await session.connect(TEST_HOST, telnet_server.port)
        assert session.set_continuous_mode() is True
        result = await session.send_command("look")
        assert result.response == "You see a room.\r\n" + CONTINUOUS_MODE_MARKER
        assert session.status().last_response == "You see a room.\r\n"
        assert session.set_continuous_mode(False) is False
        plain = await session.send_command("look")
        assert plain.response == "You see a room.\r\n"
        assert result.response.endswith(CONTINUOUS_MODE_MARKER)
        assert texts(session, SessionEventType.MODE_CHANGE) == [
            "Continuous mode enabled",
            "Continuous mode disabled",
        ]

    @pytest.mark.asyncio
    async def test_default_delay(self, session):
        assert session.set_default_delay(2) == 2.0
        assert session.status().default_delay == 2.0
        assert texts(session, SessionEventType.CONFIG_CHANGE) == [
            "Default delay set to 2 seconds"
        ]
        with pytest.raises(ConfigurationError):
            session.set_default_delay(61)
        with pytest.raises(ConfigurationError):
            session.set_default_delay("soon")


class TestTerminalType:
    @pytest.mark.asyncio
    async def test_identification_cycle(self, session):
        server = await MockTelnetServer(ttype_requests=4).start()
        try:
            await session.connect(TEST_HOST, server.port)
            await wait_for_condition(lambda: len(server.ttype_answers) == 4)
            assert server.ttype_answers == [
                f"{client_name()}/TestLLM/1.0 (Acme)",
                "XTERM",
                "MTTS 13",
                "MTTS 13",
            ]
        finally:
            await session.close()
            await server.stop()

    @pytest.mark.asyncio
    async def test_cycle_restarts_on_new_connection(self, session):
        server = await MockTelnetServer(ttype_requests=1).start()
        try:
            await session.connect(TEST_HOST, server.port)
            await wait_for_condition(lambda: len(server.ttype_answers) == 1)
            await session.connect(TEST_HOST, server.port)
            await wait_for_condition(lambda: len(server.ttype_answers) == 2)
            assert server.ttype_answers[0] == server.ttype_answers[1]
        finally:
            await session.close()
            await server.stop()


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_explicit_disconnect(self, session, telnet_server):
        port = telnet_server.port
        await session.connect(TEST_HOST, port)
        result = await session.disconnect()
        assert result.success is True
        assert result.message == f"Disconnected from {TEST_HOST}:{port}"
        assert session.connected is False
        assert len(session.timers) == 0
        assert texts(session, SessionEventType.DISCONNECTION) == [
            f"Disconnected from {TEST_HOST}:{port}"
        ]
        assert texts(session, SessionEventType.SYSTEM)[-1] == "Session ended"
        await asyncio.sleep(0.1)
        assert telnet_server.connections == 1
        assert (await session.send_command("look")).response == NOT_CONNECTED

    @pytest.mark.asyncio
    async def test_disconnect_when_not_connected(self, session):
        result = await session.disconnect()
        assert result.success is False
        assert result.message == NOT_CONNECTED

    @pytest.mark.asyncio
    async def test_disconnect_during_command(self, session, telnet_server):
        await session.connect(TEST_HOST, telnet_server.port)
        command = asyncio.create_task(session.send_command("silent", timeout=5000))
        await wait_for_condition(lambda: "silent" in telnet_server.lines)
        await session.disconnect()
        result = await asyncio.wait_for(command, 1.0)
        assert result.success is False
        assert "while waiting for a response" in result.response

    @pytest.mark.asyncio
    async def test_managed_connection(self, session, telnet_server):
        async with session.managed(TEST_HOST, telnet_server.port) as engine:
            assert engine.connected
        assert session.connected is False

    @pytest.mark.asyncio
    async def test_managed_connection_failure(self, session):
        with pytest.raises(PureTelnetError):
            async with session.managed(TEST_HOST, unused_port()):
                pass


class TestRecovery:
    @pytest.mark.asyncio
    async def test_reconnects_after_drop(self, session, telnet_server):
        port = telnet_server.port
        await session.connect(TEST_HOST, port)
        first_id = session.status().session_id
        await telnet_server.drop_clients()

        await wait_for_condition(
            lambda: telnet_server.connections == 2 and session.connected
        )
        assert session.status().session_id != first_id
        assert "Connection closed by remote host" in texts(
            session, SessionEventType.DISCONNECTION
        )
        assert f"Reconnected to {TEST_HOST}:{port} ({TEST_HOST}:{port})" in texts(
            session, SessionEventType.CONNECTION
        )
        result = await session.send_command("look")
        assert result.response == "You see a room.\r\n"

    @pytest.mark.asyncio
    async def test_reconnection_exhausted(self, session, telnet_server):
        port = telnet_server.port
        await session.connect(TEST_HOST, port)
        await telnet_server.stop_listening()
        await telnet_server.drop_clients()

        await wait_for_condition(
            lambda: "failed after 3 attempt(s)" in session.status().last_error
        )
        state = session.status()
        assert state.connected is False
        assert state.last_error.startswith(f"Reconnection to {TEST_HOST}:{port}")
        assert state.last_error.endswith(f"Connection refused by {TEST_HOST}:{port}")
        assert any(
            "failed after 3 attempt(s)" in text
            for text in texts(session, SessionEventType.ERROR)
        )
        assert session.recovery.attempts == 3
        assert (await session.disconnect()).message == NOT_CONNECTED

    @pytest.mark.asyncio
    async def test_disconnect_cancels_pending_reconnection(
        self, fast_config, identity, telnet_server
    ):
        config = fast_config.with_overrides(reconnect_base_delay=5.0, reconnect_max_delay=5.0)
        engine = AsyncSession(config, identity)
        await engine.connect(TEST_HOST, telnet_server.port)
        await telnet_server.drop_clients()
        await wait_for_condition(lambda: engine.recovery.active)

        result = await engine.disconnect()
        assert result.success is True
        await asyncio.sleep(0.05)
        assert not engine.recovery.active
        assert engine.recovery.attempts == 0
        assert telnet_server.connections == 1
        assert engine.connected is False

    @pytest.mark.asyncio
    async def test_remote_close_mid_command(self, fast_config, identity, telnet_server):
        config = fast_config.with_overrides(max_reconnect_attempts=0)
        engine = AsyncSession(config, identity)
        try:
            await engine.connect(TEST_HOST, telnet_server.port)
            result = await engine.send_command("bye")
        finally:
            await engine.close()
        assert result.success is False
        assert result.response.startswith(
            "Connection closed by remote host while waiting for a response."
        )
        assert not engine.recovery.active


class TestSyncSession:
    def test_round_trip(self, fast_config, identity):
        events = EventFeed()
        with ThreadedTelnetServer() as server:
            with Session(fast_config, identity, events) as session:
                result = session.connect(TEST_HOST, server.port)
                assert result.success is True
                assert session.connected
                response = session.send_command("echo hi")
                assert response.response == "hi\r\n"
                assert session.status().last_command == "echo hi"
                assert session.set_continuous_mode(True) is True
                assert session.disconnect().success is True
                assert not session.connected
        kinds = [e.kind for e in events.events()]
        assert SessionEventType.CONNECTION in kinds
        assert SessionEventType.MODE_CHANGE in kinds

    def test_identity_gate(self, fast_config):
        with Session(fast_config) as session:
            result = session.connect(TEST_HOST, 23)
        assert result.success is False
        assert "identity not set" in result.message
