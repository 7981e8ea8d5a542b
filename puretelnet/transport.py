"""
Transport layer for puretelnet: plain or TLS byte streams to (host, port).
"""

import asyncio
import logging
import ssl
from asyncio import StreamReader, StreamWriter
from dataclasses import dataclass, field
from typing import Optional

from .exceptions import ConnectError
from .protocol.errors import PHASE_CONNECT, PHASE_HANDSHAKE, transport_errors
from .protocol.ssl_wrapper import SSLWrapper
from .state.connection_state import TLSInfo
from .utils.logging_utils import log_connection_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TLSParams:
    """
    TLS settings for one connection.

    ``trust_anchor`` is a CA bundle path or PEM text; ``client_cert`` and
    ``client_key`` are paths. ``server_name`` overrides the name used for SNI
    and hostname checks (defaults to the connect host).
    """

    enabled: bool = True
    verify_peer: bool = True
    server_name: Optional[str] = None
    trust_anchor: Optional[str] = None
    client_cert: Optional[str] = None
    client_key: Optional[str] = None
    key_passphrase: Optional[str] = field(default=None, repr=False)

    def wrapper(self) -> SSLWrapper:
        return SSLWrapper(
            verify=self.verify_peer,
            trust_anchor=self.trust_anchor,
            certfile=self.client_cert,
            keyfile=self.client_key,
            password=self.key_passphrase,
        )


@dataclass
class TransportHandle:
    reader: StreamReader
    writer: StreamWriter
    host: str
    port: int
    tls_info: Optional[TLSInfo] = None

    @property
    def is_open(self) -> bool:
        return not self.writer.is_closing()


class Transport:
    """Opens and closes transport handles, bounded by the socket timeout."""

    def __init__(self, socket_timeout: float = 30.0) -> None:
        self.socket_timeout = socket_timeout

    async def open(
        self, host: str, port: int, tls: Optional[TLSParams] = None
    ) -> TransportHandle:
        """
        Open a stream to ``host:port``, upgrading to TLS when requested.

        Args:
            host: Remote host name or address.
            port: Remote TCP port.
            tls: TLS parameters; ``None`` or ``enabled=False`` means plain.

        Returns:
            An open TransportHandle.

        Raises:
            ConnectError: DNS failure, refused, unreachable or timeout.
            HandshakeError: TLS handshake failed.
            CertificateError: Peer certificate rejected.
        """
        use_tls = tls is not None and tls.enabled
        ctx: Optional[ssl.SSLContext] = None
        wrapper: Optional[SSLWrapper] = None
        if use_tls:
            assert tls is not None
            wrapper = tls.wrapper()
            ctx = wrapper.create_context()

        log_connection_event(logger, "connecting", host, port, tls=use_tls)
        async with transport_errors(host, port, PHASE_CONNECT, self.socket_timeout):
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=self.socket_timeout
            )

        handle = TransportHandle(reader=reader, writer=writer, host=host, port=port)
        if not use_tls:
            log_connection_event(logger, "connected", host, port)
            return handle

        assert tls is not None and ctx is not None and wrapper is not None
        server_name = tls.server_name or host
        try:
            async with transport_errors(
                host, port, PHASE_HANDSHAKE, self.socket_timeout
            ):
                await asyncio.wait_for(
                    writer.start_tls(
                        ctx,
                        server_hostname=server_name,
                        ssl_handshake_timeout=self.socket_timeout,
                    ),
                    timeout=self.socket_timeout,
                )
        except ConnectError:
            await self.close(handle)
            raise

        handle.tls_info = wrapper.describe_connection(
            writer.get_extra_info("ssl_object")
        )
        log_connection_event(
            logger,
            "tls established",
            host,
            port,
            protocol=handle.tls_info.protocol,
            cipher=handle.tls_info.cipher,
            authorized=handle.tls_info.authorized,
        )
        return handle

    async def close(self, handle: Optional[TransportHandle]) -> None:
        """Close a handle; teardown errors are logged, not raised."""
        if handle is None:
            return
        writer = handle.writer
        if not writer.is_closing():
            writer.close()
        try:
            await asyncio.wait_for(writer.wait_closed(), timeout=self.socket_timeout)
        except (OSError, ssl.SSLError, asyncio.TimeoutError) as e:
            logger.debug(f"[CONNECTION] Error while closing transport: {e}")
        log_connection_event(logger, "closed", handle.host, handle.port)
