import asyncio
import logging
import socket
import socketserver
import threading
from logging import NullHandler
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from puretelnet.config import EngineConfig
from puretelnet.identity import IdentityRegistry
from puretelnet.protocol.ssl_wrapper import SSLWrapper
from puretelnet.protocol.utils import DO, IAC, SB, SE, TELOPT_TTYPE, TTYPE_IS, TTYPE_SEND

TEST_HOST = "127.0.0.1"

logger = logging.getLogger(__name__)

DEFAULT_RESPONSES = {
    "look": b"You see a room.\r\n",
    "echo hi": b"hi\r\n",
}


def split_telnet(data: bytes):
    """Separate application bytes, TTYPE IS answers and raw commands."""
    plain = bytearray()
    answers: List[str] = []
    commands: List[bytes] = []
    i = 0
    while i < len(data):
        byte = data[i]
        if byte != IAC or i + 1 >= len(data):
            plain.append(byte)
            i += 1
            continue
        cmd = data[i + 1]
        if cmd == SB:
            end = data.find(bytes([IAC, SE]), i)
            if end == -1:
                break
            payload = data[i + 2 : end]
            if payload[:2] == bytes([TELOPT_TTYPE, TTYPE_IS]):
                answers.append(payload[2:].decode("ascii"))
            i = end + 2
        elif cmd == IAC:
            plain.append(IAC)
            i += 2
        else:
            commands.append(data[i : i + 3])
            i += 3
    return bytes(plain), answers, commands


class MockTelnetServer:
    """In-process line-oriented telnet server.

    Answers known commands from ``responses``; ``slow`` answers in two parts
    with a delay, ``silent`` gets no answer, ``bye`` closes the connection.
    """

    def __init__(
        self,
        responses: Optional[Dict[str, bytes]] = None,
        ttype_requests: int = 0,
        late_delay: float = 0.3,
    ) -> None:
        self.responses = dict(DEFAULT_RESPONSES if responses is None else responses)
        self.ttype_requests = ttype_requests
        self.late_delay = late_delay
        self.server: Optional[asyncio.base_events.Server] = None
        self.port = 0
        self.connections = 0
        self.received = bytearray()
        self.lines: List[str] = []
        self.writers: List[asyncio.StreamWriter] = []

    @property
    def ttype_answers(self) -> List[str]:
        return split_telnet(bytes(self.received))[1]

    @property
    def negotiation(self) -> List[bytes]:
        return split_telnet(bytes(self.received))[2]

    async def start(self) -> "MockTelnetServer":
        self.server = await asyncio.start_server(self.handle_client, TEST_HOST, 0)
        self.port = self.server.sockets[0].getsockname()[1]
        return self

    async def stop(self) -> None:
        if self.server is not None:
            self.server.close()
            self.server = None
        await self.drop_clients()

    async def stop_listening(self) -> None:
        if self.server is not None:
            self.server.close()
            self.server = None
        # Let the listening socket close before clients are dropped.
        await asyncio.sleep(0)

    async def drop_clients(self) -> None:
        writers, self.writers = self.writers, []
        for writer in writers:
            writer.close()
            try:
                await writer.wait_closed()
            except (OSError, ConnectionError):
                pass

    async def handle_client(self, reader, writer):
        self.connections += 1
        self.writers.append(writer)
        if self.ttype_requests:
            writer.write(bytes([IAC, DO, TELOPT_TTYPE]))
            for _ in range(self.ttype_requests):
                writer.write(bytes([IAC, SB, TELOPT_TTYPE, TTYPE_SEND, IAC, SE]))
            await writer.drain()
        pending = b""
        try:
            while True:
                data = await reader.read(1024)
                if not data:
                    break
                self.received.extend(data)
                plain, _, _ = split_telnet(data)
                pending += plain.replace(b"\x00", b"")
                while b"\r\n" in pending:
                    line, pending = pending.split(b"\r\n", 1)
                    text = line.decode("utf-8", errors="replace")
                    self.lines.append(text)
                    if not await self.answer(text, writer):
                        return
        except (ConnectionError, OSError):
            pass
        finally:
            if writer in self.writers:
                self.writers.remove(writer)
            writer.close()

    async def answer(self, text: str, writer) -> bool:
        if text == "bye":
            return False
        if text == "silent":
            return True
        if text == "slow":
            writer.write(b"first part\r\n")
            await writer.drain()
            await asyncio.sleep(self.late_delay)
            writer.write(b"late part\r\n")
        else:
            writer.write(self.responses.get(text, b"Unknown command\r\n"))
        await writer.drain()
        return True


class ThreadedTelnetServer(socketserver.ThreadingTCPServer):
    """Blocking server for the synchronous Session wrapper tests."""

    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, responses: Optional[Dict[str, bytes]] = None) -> None:
        self.responses = dict(DEFAULT_RESPONSES if responses is None else responses)
        super().__init__((TEST_HOST, 0), _ThreadedHandler)
        self.port = self.server_address[1]
        self._thread = threading.Thread(target=self.serve_forever, daemon=True)

    def __enter__(self) -> "ThreadedTelnetServer":
        self._thread.start()
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()
        self.server_close()


class _ThreadedHandler(socketserver.BaseRequestHandler):
    def handle(self) -> None:
        pending = b""
        while True:
            try:
                data = self.request.recv(1024)
            except OSError:
                return
            if not data:
                return
            plain, _, _ = split_telnet(data)
            pending += plain.replace(b"\x00", b"")
            while b"\r\n" in pending:
                line, pending = pending.split(b"\r\n", 1)
                text = line.decode("utf-8", errors="replace")
                self.request.sendall(
                    self.server.responses.get(text, b"Unknown command\r\n")
                )


async def wait_for_condition(predicate, timeout: float = 3.0, interval: float = 0.01):
    """Poll ``predicate`` until true; fail the test on timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met within timeout")
        await asyncio.sleep(interval)


def unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((TEST_HOST, 0))
        return sock.getsockname()[1]


@pytest.fixture(autouse=True)
def suppress_logging():
    root = logging.getLogger()
    old_handlers = root.handlers[:]
    null_handler = NullHandler()
    root.addHandler(null_handler)
    yield
    try:
        root.removeHandler(null_handler)
    except ValueError:
        pass
    for h in root.handlers[:]:
        if h not in old_handlers:
            root.removeHandler(h)
    for h in old_handlers:
        if h not in root.handlers:
            root.addHandler(h)


@pytest.fixture
def identity():
    """Identity registry with a registered client."""
    registry = IdentityRegistry()
    registry.set_identity(name="TestLLM", version="1.0", provider="Acme")
    return registry


@pytest.fixture
def fast_config():
    """Engine config with short timers for socket tests."""
    return EngineConfig(
        socket_timeout=5.0,
        settle_window=0.2,
        keepalive_interval=60.0,
        reconnect_base_delay=0.01,
        reconnect_max_delay=0.05,
        reconnect_jitter=0.0,
    ).validate()


@pytest.fixture
def mock_sync_writer():
    """StreamWriter stand-in with synchronous write."""
    writer = MagicMock()
    writer.is_closing.return_value = False
    writer.drain = AsyncMock()
    return writer


@pytest.fixture
def ssl_wrapper():
    """Fixture providing an SSLWrapper."""
    return SSLWrapper()


@pytest_asyncio.fixture
async def telnet_server():
    """Running MockTelnetServer, stopped after the test."""
    server = await MockTelnetServer().start()
    try:
        yield server
    finally:
        await server.stop()
