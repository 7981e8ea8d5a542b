"""
Session management for puretelnet, handling synchronous and asynchronous telnet
connections driven by an external controller.
"""

import asyncio
import functools
import logging
import threading
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Coroutine, Dict, List, Optional, TypeVar

from .config import SETTLE_QUIESCENT, EngineConfig
from .events import EventFeed, SessionEvent, SessionEventType
from .exceptions import (
    CommandTimeoutError,
    ConfigurationError,
    IdentityNotSetError,
    NotConnectedError,
    PureTelnetError,
    TLSError,
)
from .identity import IdentityRegistry
from .protocol.negotiator import Negotiator
from .protocol.recovery import (
    BackoffPolicy,
    KeepAlive,
    ReconnectTarget,
    RecoveryManager,
    TimerRegistry,
)
from .protocol.telnet_handler import CLOSE_EOF, CLOSE_ERROR, CLOSE_IDLE, TelnetHandler
from .protocol.terminal_type import TerminalTypeCycle
from .protocol.utils import (
    KEEPALIVE_PAYLOAD,
    encode_command,
    sanitize_command,
    sanitize_for_logging,
)
from .state.connection_state import ConnectionState, StateStore
from .state.response_buffer import ResponseBuffer
from .transport import TLSParams, Transport, TransportHandle
from .utils.logging_utils import (
    log_command_event,
    log_connection_event,
    log_data_processing,
    log_recovery_event,
)

T = TypeVar("T")

logger = logging.getLogger(__name__)

_SETTLED = "settled"
_TIMED_OUT = "timeout"
_CLOSED = "closed"


@dataclass(frozen=True)
class ConnectResult:
    success: bool
    message: str


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one command cycle.

    ``success`` is False only when there was no connection to send on or the
    connection went away mid-cycle; a hard timeout still counts as success and
    carries the partial output.
    """

    success: bool
    response: str


class _PendingCommand:
    def __init__(self, future: "asyncio.Future[str]", session_id: str) -> None:
        self.future = future
        self.session_id = session_id
        self.settle_timer: Optional[asyncio.TimerHandle] = None
        self.hard_timer: Optional[asyncio.TimerHandle] = None

    def resolve(self, outcome: str) -> None:
        if not self.future.done():
            self.future.set_result(outcome)


class AsyncSession:
    """
    Asynchronous telnet connection engine.

    One instance owns one logical connection: the transport handle, the
    connection state, the response buffer and every timer scheduled on the
    connection's behalf. Collaborators receive :class:`ConnectionState`
    snapshots and :class:`SessionEvent` notifications only.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        identity: Optional[IdentityRegistry] = None,
        events: Optional[EventFeed] = None,
        transport: Optional[Transport] = None,
        backoff: Optional[BackoffPolicy] = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            config: Engine tunables (defaults to ``EngineConfig()``).
            identity: Identity gate consulted before connecting and for the
                client name announced during terminal-type negotiation.
            events: Event feed to emit to.
            transport: Transport used to open connections.
            backoff: Reconnection backoff policy (built from config if None).
        """
        self.config = (config or EngineConfig()).validate()
        self.identity = identity or IdentityRegistry()
        self.events = events or EventFeed(self.config.event_history_size)
        self.transport = transport or Transport(self.config.socket_timeout)
        self.backoff = backoff or BackoffPolicy(
            base=self.config.reconnect_base_delay,
            cap=self.config.reconnect_max_delay,
            jitter=self.config.reconnect_jitter,
            max_attempts=self.config.max_reconnect_attempts,
        )

        self._store = StateStore()
        self._buffer = ResponseBuffer(self.config.response_buffer_limit)
        self._terminal_type = TerminalTypeCycle(
            self.identity, self.config.terminal_type
        )
        self._handle: Optional[TransportHandle] = None
        self._handler: Optional[TelnetHandler] = None
        self._negotiator: Optional[Negotiator] = None
        self._target: Optional[ReconnectTarget] = None
        self._pending: Optional[_PendingCommand] = None

        self._timers = TimerRegistry()
        self._recovery = self._make_recovery()
        self._keepalive: Optional[KeepAlive] = None

        self._lifecycle_lock = asyncio.Lock()
        self._command_lock = asyncio.Lock()

    # Properties ---------------------------------------------------------------
    @property
    def connected(self) -> bool:
        return self._store.snapshot().connected

    @property
    def timers(self) -> TimerRegistry:
        return self._timers

    @property
    def recovery(self) -> RecoveryManager:
        return self._recovery

    @property
    def terminal_type(self) -> TerminalTypeCycle:
        return self._terminal_type

    def status(self) -> ConnectionState:
        """Snapshot of the current connection state."""
        return self._store.snapshot()

    def status_preview(self, limit: int = 200) -> Dict[str, Any]:
        return self._store.snapshot().preview(limit)

    def get_buffer(self) -> str:
        """Current response buffer text, or the not-connected message."""
        if not self.connected:
            return NotConnectedError().message
        return self._buffer.text()

    def get_events(self, kind: Optional[SessionEventType] = None) -> List[SessionEvent]:
        return self.events.events(kind=kind)

    # Connection lifecycle -----------------------------------------------------
    async def connect(
        self,
        host: str,
        port: Optional[int] = None,
        name: Optional[str] = None,
        tls: Optional[TLSParams] = None,
    ) -> ConnectResult:
        """
        Connect to a telnet server.

        Args:
            host: Remote host.
            port: Remote port (default from config, normally 23).
            name: Logical connection name (defaults to ``host:port``).
            tls: TLS parameters, or None for a plain connection.

        Returns:
            ConnectResult with a human-readable message.
        """
        if not self.identity.is_identified():
            message = IdentityNotSetError().message
            logger.warning(f"[CONNECTION] Refusing to connect: {message}")
            return ConnectResult(False, message)

        port = self.config.default_port if port is None else port
        target = ReconnectTarget(host, port, name or f"{host}:{port}", tls)

        async with self._lifecycle_lock:
            if self._handle is not None or self._recovery.active:
                log_connection_event(
                    logger, "replacing existing connection", host, port
                )
                await self._teardown_locked("Disconnected before new connection")

            self._timers.close()
            self._resolve_pending(_CLOSED)
            self._timers = TimerRegistry()
            self._recovery = self._make_recovery()
            try:
                await self._open_session(target)
            except PureTelnetError as e:
                use_tls = tls is not None and tls.enabled
                self._store.update(
                    connected=False,
                    host=host,
                    port=port,
                    name=target.name,
                    use_tls=use_tls,
                    tls_info=None,
                    last_error=e.message,
                )
                kind = (
                    SessionEventType.SSL_ERROR
                    if isinstance(e, TLSError)
                    else SessionEventType.ERROR
                )
                self.events.emit(kind, f"Connection to {host}:{port} failed: {e.message}")
                return ConnectResult(
                    False, f"Failed to connect to {host}:{port}: {e.message}"
                )
            self._target = target

        state = self._store.snapshot()
        message = f"Connected to {host}:{port}"
        if state.use_tls and state.tls_info is not None:
            message += f" using TLS ({state.tls_info.protocol})"
            if not state.tls_info.authorized:
                message += (
                    "\nWarning: server certificate not authorized: "
                    f"{state.tls_info.authorization_error}"
                )
        return ConnectResult(True, message)

    async def disconnect(self) -> ConnectResult:
        """
        Explicitly disconnect.

        Cancels every pending timer of the session (keep-alive, reconnection
        backoff, command timers) and prevents any further reconnection.
        """
        self._timers.close()
        self._resolve_pending(_CLOSED)
        async with self._lifecycle_lock:
            state = self._store.snapshot()
            if self._handle is None and self._target is None:
                return ConnectResult(False, NotConnectedError().message)
            await self._teardown_locked(
                f"Disconnected from {state.host}:{state.port}"
            )
        return ConnectResult(True, f"Disconnected from {state.host}:{state.port}")

    async def close(self) -> None:
        """Disconnect if needed; safe to call repeatedly."""
        if self._handle is not None or self._target is not None:
            await self.disconnect()
        else:
            self._timers.close()

    async def _teardown_locked(self, reason: str) -> None:
        """Tear down the live connection. Caller holds the lifecycle lock."""
        self._timers.close()
        self._resolve_pending(_CLOSED)
        state = self._store.update(connected=False)
        handle, handler = self._handle, self._handler
        self._handle = None
        self._handler = None
        self._negotiator = None
        self._keepalive = None
        self._target = None
        if handler is not None:
            await handler.stop()
        await self.transport.close(handle)
        self._buffer.clear()
        self._terminal_type.reset()
        self.events.emit(SessionEventType.DISCONNECTION, reason, state.session_id)
        self.events.emit(
            SessionEventType.SYSTEM, "Session ended", state.session_id
        )
        log_connection_event(logger, "disconnected", state.host, state.port)

    async def _open_session(self, target: ReconnectTarget, reconnect: bool = False) -> None:
        """Open the transport and start the reader and keep-alive."""
        handle = await self.transport.open(target.host, target.port, target.tls)
        session_id = uuid.uuid4().hex[:12]

        self._terminal_type.reset()
        negotiator = Negotiator(handle.writer, self._terminal_type)
        handler = TelnetHandler(
            handle.reader,
            handle.writer,
            negotiator,
            on_data=self._on_data,
            on_close=functools.partial(self._on_transport_closed, session_id),
            idle_timeout=self.config.socket_timeout,
            max_chunk_size=self.config.max_chunk_size,
            max_subnegotiation_size=self.config.max_subnegotiation_size,
            read_chunk_size=self.config.read_chunk_size,
        )
        self._handle = handle
        self._handler = handler
        self._negotiator = negotiator
        self._buffer.clear()

        state = self._store.update(
            connected=True,
            host=target.host,
            port=target.port,
            name=target.name,
            use_tls=handle.tls_info is not None,
            tls_info=handle.tls_info,
            last_error="",
            session_id=session_id,
        )

        negotiator.offer_terminal_type()
        handler.start()
        self._keepalive = KeepAlive(
            self._timers,
            self.config.keepalive_interval,
            functools.partial(self._send_keepalive, session_id),
        )
        self._keepalive.start()

        verb = "Reconnected" if reconnect else "Connected"
        self.events.emit(
            SessionEventType.SYSTEM, f"Session started ({state.name})", session_id
        )
        self.events.emit(
            SessionEventType.CONNECTION,
            f"{verb} to {target.host}:{target.port} ({target.name})",
            session_id,
        )
        logger.info(
            f"[CONNECTION] {verb} to {target.host}:{target.port}",
            extra={"session_id": session_id},
        )
        if handle.tls_info is not None:
            self._emit_tls_events(handle, session_id)

    def _emit_tls_events(self, handle: TransportHandle, session_id: str) -> None:
        info = handle.tls_info
        assert info is not None
        self.events.emit(
            SessionEventType.SSL_HANDSHAKE,
            f"SSL/TLS handshake completed. Protocol: {info.protocol}, "
            f"Cipher: {info.cipher}",
            session_id,
        )
        if info.peer_certificate is not None:
            self.events.emit(
                SessionEventType.SSL_CERTIFICATE,
                f"Certificate details: {info.peer_certificate.summary()}",
                session_id,
            )
        if info.authorized:
            self.events.emit(
                SessionEventType.SSL_CERTIFICATE,
                "Certificate validation: PASSED",
                session_id,
            )
        else:
            self.events.emit(
                SessionEventType.SSL_ERROR,
                f"Certificate authorization error: {info.authorization_error}",
                session_id,
            )

    # Inbound data and connection loss -----------------------------------------
    def _on_data(self, data: bytes) -> None:
        self._buffer.append(data)
        log_data_processing(logger, "received", f"{len(data)} bytes")
        pending = self._pending
        if (
            pending is not None
            and self.config.settle_mode == SETTLE_QUIESCENT
            and not pending.future.done()
        ):
            self._timers.cancel(pending.settle_timer)
            pending.settle_timer = self._timers.call_later(
                self.config.settle_window, pending.resolve, _SETTLED
            )

    def _on_transport_closed(
        self, session_id: str, reason: str, error: Optional[BaseException]
    ) -> None:
        if reason == CLOSE_EOF:
            message = "Connection closed by remote host"
        elif reason == CLOSE_IDLE:
            message = (
                f"Connection timed out after {self.config.socket_timeout:g}s "
                "without activity"
            )
        else:
            message = f"Connection error: {error}"
        changed, state = self._store.compare_and_update(
            session_id, connected=False, last_error=message
        )
        if not changed or self._timers.closed:
            return
        if self._pending is not None and self._pending.session_id == session_id:
            self._pending.resolve(_CLOSED)
        if self._keepalive is not None:
            self._keepalive.stop()
        kind = (
            SessionEventType.DISCONNECTION
            if reason == CLOSE_EOF
            else SessionEventType.ERROR
        )
        self.events.emit(kind, message, session_id)
        logger.warning(f"[CONNECTION] {message}", extra={"session_id": session_id})
        self._timers.create_task(
            self._handle_connection_loss(session_id), name="puretelnet-loss"
        )

    async def _handle_connection_loss(self, session_id: str) -> None:
        async with self._lifecycle_lock:
            if self._store.snapshot().session_id != session_id:
                return
            handle, handler = self._handle, self._handler
            self._handle = None
            self._handler = None
            self._negotiator = None
            if handler is not None:
                await handler.stop()
            await self.transport.close(handle)
            target = self._target
        if target is not None and not self._timers.closed:
            log_recovery_event(
                logger, "scheduling reconnection", f"{target.host}:{target.port}"
            )
            self._recovery.schedule(target)

    def _send_keepalive(self, session_id: str) -> bool:
        state = self._store.snapshot()
        handle, handler = self._handle, self._handler
        if (
            not state.connected
            or state.session_id != session_id
            or handle is None
            or not handle.is_open
        ):
            return False
        try:
            handle.writer.write(KEEPALIVE_PAYLOAD)
        except (OSError, RuntimeError) as e:
            self._on_transport_closed(session_id, CLOSE_ERROR, e)
            return False
        if handler is not None:
            handler.touch()
        return True

    # Recovery -----------------------------------------------------------------
    def _make_recovery(self) -> RecoveryManager:
        return RecoveryManager(
            self._timers,
            self.backoff,
            self._reconnect,
            on_exhausted=self._on_reconnect_exhausted,
        )

    async def _reconnect(self, target: ReconnectTarget) -> None:
        async with self._lifecycle_lock:
            if self._timers.closed:
                return
            try:
                await self._open_session(target, reconnect=True)
            except PureTelnetError as e:
                self._store.update(last_error=f"Reconnection failed: {e.message}")
                raise

    def _on_reconnect_exhausted(
        self, target: ReconnectTarget, error: Optional[BaseException]
    ) -> None:
        detail = getattr(error, "message", None) or str(error or "")
        message = (
            f"Reconnection to {target.host}:{target.port} failed after "
            f"{self.backoff.max_attempts} attempt(s)"
        )
        if detail:
            message += f": {detail}"
        self._target = None
        state = self._store.update(connected=False, last_error=message)
        self.events.emit(SessionEventType.ERROR, message, state.session_id)

    # Commands -----------------------------------------------------------------
    async def send_command(
        self,
        command: str,
        timeout: Optional[float] = None,
        wait_after: float = 0,
    ) -> CommandResult:
        """
        Send one command and collect its response.

        Args:
            command: Command text; control characters other than TAB, LF and
                CR are stripped.
            timeout: Hard timeout in milliseconds, clamped to the configured
                range (default 30000).
            wait_after: Extra seconds (0-60) to wait after the response.

        Returns:
            CommandResult. A hard timeout yields ``success=True`` with the
            partial output behind a timeout notice.
        """
        async with self._command_lock:
            result = await self._run_command(command, timeout)
        if result.success and wait_after:
            wait = max(0.0, min(float(wait_after), self.config.max_wait_after))
            if wait > 0:
                logger.info(f"Waiting for {wait:g} seconds after command...")
                await asyncio.sleep(wait)
                result = CommandResult(
                    result.success,
                    f"{result.response}\n\n[Waited {wait:g} seconds after command]",
                )
        return result

    async def _run_command(
        self, command: str, timeout: Optional[float]
    ) -> CommandResult:
        state = self._store.snapshot()
        handle = self._handle
        if not state.connected or handle is None or not handle.is_open:
            return CommandResult(False, NotConnectedError().message)

        timeout_s = self.config.clamp_command_timeout(
            None if timeout is None else timeout / 1000.0
        )
        timeout_ms = int(round(timeout_s * 1000))
        sanitized = sanitize_command(command)
        if len(sanitized) != len(command):
            logger.warning(
                f"[COMMAND] Removed {len(command) - len(sanitized)} control "
                "character(s) from command"
            )
        log_safe = sanitize_for_logging(sanitized)
        session_id = state.session_id

        loop = asyncio.get_running_loop()
        pending = _PendingCommand(loop.create_future(), session_id)

        self._buffer.clear()
        self._store.update(last_command=sanitized)
        self.events.emit(SessionEventType.COMMAND, sanitized, session_id)
        log_command_event(logger, "sending", log_safe, f"timeout={timeout_ms}ms")

        self._pending = pending
        try:
            handle.writer.write(encode_command(sanitized))
            if self._handler is not None:
                self._handler.touch()
            await asyncio.wait_for(
                handle.writer.drain(), timeout=self.config.socket_timeout
            )
        except (OSError, RuntimeError, asyncio.TimeoutError) as e:
            self._pending = None
            message = f"Failed to send command: {e}"
            self._on_transport_closed(session_id, CLOSE_ERROR, e)
            return CommandResult(False, message)

        pending.settle_timer = self._timers.call_later(
            self.config.settle_window, pending.resolve, _SETTLED
        )
        pending.hard_timer = self._timers.call_later(
            timeout_s, pending.resolve, _TIMED_OUT
        )
        if pending.settle_timer is None or pending.hard_timer is None:
            pending.resolve(_CLOSED)

        try:
            outcome = await pending.future
        finally:
            self._timers.cancel(pending.settle_timer)
            self._timers.cancel(pending.hard_timer)
            if self._pending is pending:
                self._pending = None

        text = self._buffer.text()
        if outcome == _SETTLED:
            response = text
            self.events.emit(SessionEventType.RESPONSE, response, session_id)
            log_command_event(logger, "completed", log_safe, f"{len(text)} chars")
        elif outcome == _TIMED_OUT:
            notice = CommandTimeoutError(timeout_ms, sanitized)
            response = f"{notice.message}.\nPartial response:\n{text}"
            self.events.emit(SessionEventType.TIMEOUT, response, session_id)
            log_command_event(logger, "timed out", log_safe, f"after {timeout_ms}ms")
        else:
            reason = self._store.snapshot().last_error or "Connection closed"
            response = (
                f"{reason} while waiting for a response.\nPartial response:\n{text}"
            )
            self.events.emit(SessionEventType.ERROR, response, session_id)
            log_command_event(logger, "aborted", log_safe, reason)
            self._store.update(last_response=response)
            return CommandResult(False, response)

        state = self._store.update(last_response=response)
        if state.continuous_mode:
            response += self.config.continuous_mode_marker
        return CommandResult(True, response)

    def _resolve_pending(self, outcome: str) -> None:
        if self._pending is not None:
            self._pending.resolve(outcome)

    # Settings -----------------------------------------------------------------
    def set_continuous_mode(self, enabled: Optional[bool] = None) -> bool:
        """Set continuous mode, or toggle it when ``enabled`` is None."""
        current = self._store.snapshot().continuous_mode
        new_value = (not current) if enabled is None else bool(enabled)
        state = self._store.update(continuous_mode=new_value)
        text = f"Continuous mode {'enabled' if new_value else 'disabled'}"
        self.events.emit(SessionEventType.MODE_CHANGE, text, state.session_id)
        logger.info(text)
        return new_value

    def set_default_delay(self, seconds: float) -> float:
        """Record the controller's advisory default delay (0-60 seconds)."""
        try:
            value = float(seconds)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Invalid default delay: {seconds!r}", original_exception=e
            ) from e
        if not 0 <= value <= self.config.max_wait_after:
            raise ConfigurationError(
                "Default delay out of range",
                {"value": value, "max": self.config.max_wait_after},
            )
        state = self._store.update(default_delay=value)
        text = f"Default delay set to {value:g} seconds"
        self.events.emit(SessionEventType.CONFIG_CHANGE, text, state.session_id)
        logger.info(text)
        return value

    # Context management -------------------------------------------------------
    async def __aenter__(self) -> "AsyncSession":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @asynccontextmanager
    async def managed(
        self,
        host: str,
        port: Optional[int] = None,
        name: Optional[str] = None,
        tls: Optional[TLSParams] = None,
    ) -> AsyncIterator["AsyncSession"]:
        """Connect for the duration of the block and always disconnect.

        Raises:
            PureTelnetError: If the connection cannot be established.
        """
        result = await self.connect(host, port, name, tls)
        if not result.success:
            raise PureTelnetError(result.message, {"host": host})
        try:
            yield self
        finally:
            await self.close()


class Session:
    """
    Synchronous wrapper for AsyncSession.

    The engine runs on a dedicated worker thread with its own event loop so
    background tasks (reader, keep-alive, reconnection) keep running between
    calls.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        identity: Optional[IdentityRegistry] = None,
        events: Optional[EventFeed] = None,
    ) -> None:
        self._config = config
        self._identity = identity or IdentityRegistry()
        self._events = events
        self._async_session: Optional[AsyncSession] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None

    def _ensure_worker_loop(self) -> None:
        """Ensure a dedicated worker thread with an event loop exists."""
        if self._loop is not None and self._thread is not None and self._thread.is_alive():
            return

        loop = asyncio.new_event_loop()

        def _runner() -> None:
            asyncio.set_event_loop(loop)
            try:
                loop.run_forever()
            finally:
                loop.close()

        th = threading.Thread(target=_runner, name="puretelnet-SessionLoop", daemon=True)
        th.start()
        self._loop = loop
        self._thread = th

    def _shutdown_worker_loop(self) -> None:
        """Stop and join the worker loop thread if present."""
        loop = self._loop
        th = self._thread
        self._loop = None
        self._thread = None
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(loop.stop)
        if th is not None:
            th.join(timeout=1.0)

    def _run_async(self, coro: Coroutine[Any, Any, T]) -> T:
        """Run a coroutine on the worker loop and wait for its result."""
        self._ensure_worker_loop()
        assert self._loop is not None
        fut = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return fut.result()

    def _session(self) -> AsyncSession:
        if self._async_session is None:

            async def _create() -> AsyncSession:
                return AsyncSession(self._config, self._identity, self._events)

            # Created on the worker loop so its locks and tasks belong there.
            self._async_session = self._run_async(_create())
        return self._async_session

    @property
    def identity(self) -> IdentityRegistry:
        return self._identity

    @property
    def events(self) -> EventFeed:
        return self._session().events

    @property
    def connected(self) -> bool:
        return self._async_session is not None and self._async_session.connected

    def connect(
        self,
        host: str,
        port: Optional[int] = None,
        name: Optional[str] = None,
        tls: Optional[TLSParams] = None,
    ) -> ConnectResult:
        session = self._session()
        return self._run_async(session.connect(host, port, name, tls))

    def send_command(
        self, command: str, timeout: Optional[float] = None, wait_after: float = 0
    ) -> CommandResult:
        session = self._session()
        return self._run_async(session.send_command(command, timeout, wait_after))

    def disconnect(self) -> ConnectResult:
        session = self._session()
        return self._run_async(session.disconnect())

    def status(self) -> ConnectionState:
        return self._session().status()

    def get_buffer(self) -> str:
        return self._session().get_buffer()

    def set_continuous_mode(self, enabled: Optional[bool] = None) -> bool:
        return self._session().set_continuous_mode(enabled)

    def set_default_delay(self, seconds: float) -> float:
        return self._session().set_default_delay(seconds)

    def close(self) -> None:
        """Close the session and tear down the worker loop."""
        if self._async_session is not None:
            self._run_async(self._async_session.close())
            self._async_session = None
        self._shutdown_worker_loop()

    def __enter__(self) -> "Session":
        return self

    def __exit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Optional[Any],
    ) -> None:
        self.close()
