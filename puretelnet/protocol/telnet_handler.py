"""
Telnet stream decoding and the per-connection reader task.

The decoder strips in-band command sequences from the inbound byte stream,
hands negotiation to the :class:`~puretelnet.protocol.negotiator.Negotiator`
and returns only application-visible bytes. Sequences split across reads are
carried over to the next chunk.
"""

import asyncio
import logging
import ssl
import time
from typing import Callable, Optional, Tuple

from ..exceptions import ProtocolError
from .negotiator import Negotiator
from .utils import IAC, NEGOTIATION_VERBS, SB, SE, command_name

logger = logging.getLogger(__name__)

CLOSE_EOF = "eof"
CLOSE_ERROR = "error"
CLOSE_IDLE = "idle"

DataCallback = Callable[[bytes], None]
CloseCallback = Callable[[str, Optional[BaseException]], None]


class TelnetHandler:
    """
    Decodes one telnet connection.

    Args:
        reader: StreamReader of the open transport (may be None for pure
            decoding).
        writer: StreamWriter used to drain negotiation replies.
        negotiator: Negotiator answering option requests.
        on_data: Called with each non-empty block of application bytes.
        on_close: Called once with a close reason (``eof``, ``error`` or
            ``idle``) and the causing exception, if any.
        idle_timeout: Seconds without reads or writes before the connection
            is reported idle.
        max_chunk_size: Per-chunk processing cap; excess bytes are dropped.
        max_subnegotiation_size: Cap on a buffered, unterminated
            subnegotiation.
        read_chunk_size: Bytes requested per read.
    """

    def __init__(
        self,
        reader: Optional[asyncio.StreamReader],
        writer: Optional[asyncio.StreamWriter],
        negotiator: Negotiator,
        on_data: Optional[DataCallback] = None,
        on_close: Optional[CloseCallback] = None,
        idle_timeout: float = 30.0,
        max_chunk_size: int = 1024 * 1024,
        max_subnegotiation_size: int = 8 * 1024,
        read_chunk_size: int = 4096,
    ) -> None:
        self.reader = reader
        self.writer = writer
        self.negotiator = negotiator
        self.on_data = on_data
        self.on_close = on_close
        self.idle_timeout = idle_timeout
        self.max_chunk_size = max_chunk_size
        self.max_subnegotiation_size = max_subnegotiation_size
        self.read_chunk_size = read_chunk_size

        self._telnet_buffer = b""
        self._discarding_subnegotiation = False
        self._discard_pending_iac = False
        self._reader_task: Optional[asyncio.Task[None]] = None
        self._closed = False
        self.last_activity = time.monotonic()
        self.bytes_received = 0
        self.bytes_dropped = 0

    # Decoding -----------------------------------------------------------------
    def process_telnet_stream(self, data: bytes) -> bytes:
        """
        Decode one inbound chunk.

        Args:
            data: Raw bytes as read from the transport.

        Returns:
            The application-visible bytes in this chunk.
        """
        if len(data) > self.max_chunk_size:
            dropped = len(data) - self.max_chunk_size
            self.bytes_dropped += dropped
            logger.warning(
                f"[TELNET] Inbound chunk of {len(data)} bytes exceeds "
                f"{self.max_chunk_size} byte cap; dropping {dropped} bytes"
            )
            data = data[: self.max_chunk_size]

        if self._discarding_subnegotiation:
            data = self._skip_discarded_subnegotiation(data)
            if not data:
                return b""

        if self._telnet_buffer:
            data = self._telnet_buffer + data
            self._telnet_buffer = b""

        processed = bytearray()
        i = 0
        length = len(data)
        while i < length:
            byte = data[i]
            if byte != IAC:
                processed.append(byte)
                i += 1
                continue
            if i + 1 >= length:
                # Lone IAC at end, buffer it for next chunk
                self._telnet_buffer = data[i:]
                break
            cmd = data[i + 1]
            if cmd == IAC:
                processed.append(IAC)
                i += 2
            elif cmd in NEGOTIATION_VERBS:
                if i + 2 >= length:
                    self._telnet_buffer = data[i:]
                    break
                self.negotiator.handle_iac_command(cmd, data[i + 2])
                i += 3
            elif cmd == SB:
                found = self._parse_subnegotiation(data, i)
                if found is None:
                    self._buffer_subnegotiation(data[i:])
                    break
                end, option, payload = found
                if len(payload) > self.max_subnegotiation_size:
                    self._log_oversized_subnegotiation(option, len(payload))
                else:
                    self.negotiator.handle_subnegotiation(option, payload)
                i = end
            else:
                logger.debug(f"[TELNET] Consumed IAC {command_name(cmd)}")
                i += 2
        return bytes(processed)

    @staticmethod
    def _parse_subnegotiation(
        data: bytes, start: int
    ) -> Optional[Tuple[int, int, bytes]]:
        """Find the end of the subnegotiation beginning at ``data[start]``.

        Returns:
            (index after IAC SE, option, unescaped payload) or None if the
            terminator has not arrived yet.
        """
        if start + 2 >= len(data):
            return None
        option = data[start + 2]
        payload = bytearray()
        j = start + 3
        length = len(data)
        while j < length:
            if data[j] == IAC:
                if j + 1 >= length:
                    return None
                nxt = data[j + 1]
                if nxt == SE:
                    return j + 2, option, bytes(payload)
                if nxt == IAC:
                    payload.append(IAC)
                j += 2
                continue
            payload.append(data[j])
            j += 1
        return None

    def _buffer_subnegotiation(self, partial: bytes) -> None:
        if len(partial) > self.max_subnegotiation_size:
            option = partial[2] if len(partial) > 2 else -1
            self._log_oversized_subnegotiation(option, len(partial))
            self.bytes_dropped += len(partial)
            self._discarding_subnegotiation = True
            # An odd run of trailing IACs leaves one unpaired.
            payload = partial[3:]
            trailing = len(payload) - len(payload.rstrip(bytes([IAC])))
            self._discard_pending_iac = trailing % 2 == 1
            return
        self._telnet_buffer = partial

    def _skip_discarded_subnegotiation(self, data: bytes) -> bytes:
        """Skip the remainder of an oversized subnegotiation.

        Returns:
            The bytes following its terminator, or b"" if it has not ended.
        """
        j = 0
        length = len(data)
        if self._discard_pending_iac and length:
            self._discard_pending_iac = False
            if data[0] == SE:
                self._discarding_subnegotiation = False
                return data[1:]
            j = 1
        while j < length:
            if data[j] == IAC:
                if j + 1 >= length:
                    self._discard_pending_iac = True
                    break
                if data[j + 1] == SE:
                    self._discarding_subnegotiation = False
                    self.bytes_dropped += j + 2
                    logger.debug("[TELNET] Oversized subnegotiation ended")
                    return data[j + 2 :]
                j += 2
                continue
            j += 1
        self.bytes_dropped += length
        return b""

    def _log_oversized_subnegotiation(self, option: int, size: int) -> None:
        error = ProtocolError(
            "Subnegotiation exceeds size cap; dropping it",
            {
                "option": f"0x{option:02x}" if option >= 0 else "unknown",
                "size": size,
                "cap": self.max_subnegotiation_size,
            },
        )
        logger.warning(f"[TELNET] {error}")

    # Reader task --------------------------------------------------------------
    def touch(self) -> None:
        """Record read or write activity for idle detection."""
        self.last_activity = time.monotonic()

    def idle_for(self) -> float:
        return time.monotonic() - self.last_activity

    @property
    def running(self) -> bool:
        return self._reader_task is not None and not self._reader_task.done()

    def start(self) -> "asyncio.Task[None]":
        if self.reader is None:
            raise ProtocolError("Cannot start reader without a stream reader")
        self.touch()
        self._reader_task = asyncio.create_task(self._read_loop())
        return self._reader_task

    async def stop(self) -> None:
        """Cancel the reader task without reporting a close."""
        self._closed = True
        task = self._reader_task
        self._reader_task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _read_loop(self) -> None:
        assert self.reader is not None
        try:
            while not self._closed:
                remaining = self.idle_timeout - self.idle_for()
                if remaining <= 0:
                    logger.warning(
                        f"[TELNET] No activity for {self.idle_timeout:.0f}s, "
                        "treating connection as lost"
                    )
                    self._finish(CLOSE_IDLE, None)
                    return
                try:
                    chunk = await asyncio.wait_for(
                        self.reader.read(self.read_chunk_size), timeout=remaining
                    )
                except asyncio.TimeoutError:
                    continue
                if not chunk:
                    logger.info("[TELNET] Connection closed by remote host")
                    self._finish(CLOSE_EOF, None)
                    return
                self.touch()
                self.bytes_received += len(chunk)
                replies_before = self.negotiator.replies_sent
                data = self.process_telnet_stream(chunk)
                if self.negotiator.replies_sent != replies_before:
                    await self._drain()
                if data and self.on_data is not None:
                    self.on_data(data)
        except (OSError, ssl.SSLError, asyncio.IncompleteReadError) as e:
            logger.warning(f"[TELNET] Transport error while reading: {e}")
            self._finish(CLOSE_ERROR, e)

    async def _drain(self) -> None:
        if self.writer is None:
            return
        try:
            await asyncio.wait_for(self.writer.drain(), timeout=self.idle_timeout)
        except asyncio.TimeoutError as e:
            raise ConnectionError("Timed out draining negotiation replies") from e

    def _finish(self, reason: str, error: Optional[BaseException]) -> None:
        if self._closed:
            return
        self._closed = True
        if self.on_close is not None:
            self.on_close(reason, error)
