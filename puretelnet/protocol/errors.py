"""
Centralized classification of socket and TLS failures.

Low-level exceptions raised while opening a transport are translated into the
puretelnet taxonomy so the controller always receives a message that names the
cause (self-signed certificate, refused connection, ...) rather than a raw
OpenSSL or errno string.
"""

import errno
import logging
import socket
import ssl
from typing import Any, Optional

from ..exceptions import (
    CertificateError,
    CertificateFailureReason,
    ConnectError,
    HandshakeError,
    PureTelnetError,
)

logger = logging.getLogger(__name__)

PHASE_CONNECT = "connect"
PHASE_HANDSHAKE = "handshake"

# OpenSSL X509_V_ERR_* codes
_X509_UNABLE_TO_GET_ISSUER_CERT = 2
_X509_CERT_HAS_EXPIRED = 10
_X509_DEPTH_ZERO_SELF_SIGNED_CERT = 18
_X509_SELF_SIGNED_CERT_IN_CHAIN = 19
_X509_UNABLE_TO_GET_ISSUER_CERT_LOCALLY = 20
_X509_UNABLE_TO_VERIFY_LEAF_SIGNATURE = 21
_X509_HOSTNAME_MISMATCH = 62

CERTIFICATE_MESSAGES = {
    CertificateFailureReason.SELF_SIGNED: (
        "Server uses a self-signed certificate. Supply it as a trust anchor "
        "or disable verification if you trust this server."
    ),
    CertificateFailureReason.INCOMPLETE_CHAIN: (
        "Unable to verify certificate chain. The server may be missing an "
        "intermediate certificate, or its CA is not trusted."
    ),
    CertificateFailureReason.HOSTNAME_MISMATCH: (
        "Certificate hostname does not match the server. Check the host name "
        "or set a server name override."
    ),
    CertificateFailureReason.EXPIRED: (
        "Server certificate has expired. Check the server certificate "
        "validity period and the local clock."
    ),
    CertificateFailureReason.UNTRUSTED: "Server certificate could not be verified",
}

_VERIFY_CODE_REASONS = {
    _X509_DEPTH_ZERO_SELF_SIGNED_CERT: CertificateFailureReason.SELF_SIGNED,
    _X509_SELF_SIGNED_CERT_IN_CHAIN: CertificateFailureReason.SELF_SIGNED,
    _X509_UNABLE_TO_GET_ISSUER_CERT: CertificateFailureReason.INCOMPLETE_CHAIN,
    _X509_UNABLE_TO_GET_ISSUER_CERT_LOCALLY: CertificateFailureReason.INCOMPLETE_CHAIN,
    _X509_UNABLE_TO_VERIFY_LEAF_SIGNATURE: CertificateFailureReason.INCOMPLETE_CHAIN,
    _X509_HOSTNAME_MISMATCH: CertificateFailureReason.HOSTNAME_MISMATCH,
    _X509_CERT_HAS_EXPIRED: CertificateFailureReason.EXPIRED,
}

_PROTOCOL_MISMATCH_MARKERS = (
    "WRONG_VERSION_NUMBER",
    "UNSUPPORTED_PROTOCOL",
    "PROTOCOL_VERSION",
    "VERSION_TOO_LOW",
)
_CIPHER_MISMATCH_MARKERS = (
    "NO_SHARED_CIPHER",
    "NO_CIPHERS_AVAILABLE",
    "HANDSHAKE_FAILURE",
)


def classify_certificate_error(
    exc: ssl.SSLCertVerificationError,
) -> CertificateFailureReason:
    """Map a verification failure to a :class:`CertificateFailureReason`."""
    code = getattr(exc, "verify_code", None)
    if code in _VERIFY_CODE_REASONS:
        return _VERIFY_CODE_REASONS[code]
    text = f"{getattr(exc, 'verify_message', '')} {exc}".lower()
    if "self-signed" in text or "self signed" in text:
        return CertificateFailureReason.SELF_SIGNED
    if "hostname mismatch" in text or "doesn't match" in text:
        return CertificateFailureReason.HOSTNAME_MISMATCH
    if "expired" in text:
        return CertificateFailureReason.EXPIRED
    if "issuer" in text or "chain" in text:
        return CertificateFailureReason.INCOMPLETE_CHAIN
    return CertificateFailureReason.UNTRUSTED


def classify_transport_error(
    exc: BaseException,
    host: str,
    port: int,
    phase: str = PHASE_CONNECT,
    timeout: Optional[float] = None,
) -> PureTelnetError:
    """
    Translate a low-level exception into the puretelnet taxonomy.

    Args:
        exc: The exception raised while connecting or handshaking.
        host: Target host.
        port: Target port.
        phase: ``connect`` for the TCP phase, ``handshake`` for TLS.
        timeout: Configured timeout, used in timeout messages.

    Returns:
        A ConnectError, HandshakeError or CertificateError instance.
    """
    if isinstance(exc, PureTelnetError):
        return exc

    if isinstance(exc, ssl.SSLCertVerificationError):
        reason = classify_certificate_error(exc)
        message = CERTIFICATE_MESSAGES[reason]
        if reason is CertificateFailureReason.UNTRUSTED:
            detail = getattr(exc, "verify_message", "") or str(exc)
            message = f"{message}: {detail}"
        return CertificateError(message, reason, host, port, exc)

    if isinstance(exc, TimeoutError):
        if phase == PHASE_HANDSHAKE:
            return HandshakeError("SSL handshake timed out", host, port, exc)
        limit = f" after {timeout:g}s" if timeout else ""
        return ConnectError(
            f"Connection to {host}:{port} timed out{limit}", host, port, exc
        )

    if isinstance(exc, ssl.SSLError):
        return _classify_handshake_error(exc, host, port)

    if phase == PHASE_HANDSHAKE and isinstance(
        exc, (ConnectionResetError, ConnectionAbortedError, EOFError, BrokenPipeError)
    ):
        return HandshakeError("Connection closed during handshake", host, port, exc)

    if isinstance(exc, socket.gaierror):
        return ConnectError(f"Host not found: {host}", host, port, exc)
    if isinstance(exc, ConnectionRefusedError):
        return ConnectError(f"Connection refused by {host}:{port}", host, port, exc)
    if isinstance(exc, OSError) and exc.errno in (
        errno.ENETUNREACH,
        errno.EHOSTUNREACH,
    ):
        return ConnectError(f"Network unreachable for {host}:{port}", host, port, exc)
    return ConnectError(f"Failed to connect to {host}:{port}: {exc}", host, port, exc)


def _classify_handshake_error(
    exc: ssl.SSLError, host: str, port: int
) -> HandshakeError:
    if isinstance(exc, (ssl.SSLEOFError, ssl.SSLZeroReturnError)):
        return HandshakeError("Connection closed during handshake", host, port, exc)
    marker = f"{getattr(exc, 'reason', '') or ''} {exc}".upper()
    if any(m in marker for m in _PROTOCOL_MISMATCH_MARKERS):
        return HandshakeError("SSL protocol mismatch", host, port, exc)
    if any(m in marker for m in _CIPHER_MISMATCH_MARKERS):
        return HandshakeError("No compatible cipher suites found", host, port, exc)
    return HandshakeError(f"SSL handshake failed: {exc}", host, port, exc)


class transport_errors:
    """
    Async context manager translating socket/SSL failures.

    Catches OSError, ssl.SSLError, TimeoutError and EOFError raised inside the
    block and re-raises the classified puretelnet error.
    """

    def __init__(
        self,
        host: str,
        port: int,
        phase: str = PHASE_CONNECT,
        timeout: Optional[float] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.phase = phase
        self.timeout = timeout

    async def __aenter__(self) -> "transport_errors":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if exc_val is None or not isinstance(
            exc_val, (OSError, ssl.SSLError, TimeoutError, EOFError)
        ):
            return None
        error = classify_transport_error(
            exc_val, self.host, self.port, self.phase, self.timeout
        )
        logger.error(f"[CONNECTION] {self.phase} failed: {error.message}")
        raise error from exc_val
