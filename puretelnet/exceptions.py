"""Exceptions for puretelnet with contextual information."""

from enum import Enum
from typing import Any, Dict, Optional


class PureTelnetError(Exception):
    """Base error for puretelnet with contextual information."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[BaseException] = None,
    ):
        """
        Initialize a puretelnet error.

        Args:
            message: Error message
            context: Optional context information (host, port, command, etc.)
            original_exception: Original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception

    def __str__(self) -> str:
        """Get string representation with context."""
        base_msg = super().__str__()
        if self.context:
            context_items = []
            for key, value in self.context.items():
                if isinstance(value, str) and len(value) > 50:
                    value = value[:47] + "..."
                context_items.append(f"{key}={value}")
            context_str = ", ".join(context_items)
            return f"{base_msg} (Context: {context_str})"
        return base_msg

    def __repr__(self) -> str:
        """Get repr with context details."""
        base_repr = super().__repr__()
        if self.context:
            return f"{base_repr} (context={self.context!r})"
        return base_repr

    def add_context(self, key: str, value: Any) -> None:
        """
        Add context information to the exception.

        Args:
            key: Context key
            value: Context value
        """
        self.context[key] = value

    def get_context(self, key: str, default: Any = None) -> Any:
        """
        Get context information from the exception.

        Args:
            key: Context key
            default: Default value if key not found

        Returns:
            Context value or default
        """
        return self.context.get(key, default)


class NotConnectedError(PureTelnetError):
    """Error raised when an operation needs a live connection and there is none."""

    def __init__(
        self,
        message: str = "Not connected to a telnet server",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, context)


class ConnectError(PureTelnetError):
    """Connection error (DNS failure, refused, unreachable, connect timeout)."""

    def __init__(
        self,
        message: str,
        host: Optional[str] = None,
        port: Optional[int] = None,
        original_exception: Optional[BaseException] = None,
    ):
        context: Dict[str, Any] = {}
        if host:
            context["host"] = host
        if port:
            context["port"] = port
        super().__init__(message, context, original_exception)
        self.host = host
        self.port = port


class TLSError(ConnectError):
    """Base error for TLS-layer failures."""

    pass


class HandshakeError(TLSError):
    """TLS handshake failure (protocol/cipher mismatch, closed mid-handshake)."""

    pass


class CertificateFailureReason(Enum):
    """Why a peer certificate was rejected."""

    SELF_SIGNED = "self-signed"
    INCOMPLETE_CHAIN = "incomplete-chain"
    HOSTNAME_MISMATCH = "hostname-mismatch"
    EXPIRED = "expired"
    UNTRUSTED = "untrusted"


class CertificateError(TLSError):
    """Peer certificate validation failure with a classified reason."""

    def __init__(
        self,
        message: str,
        reason: CertificateFailureReason = CertificateFailureReason.UNTRUSTED,
        host: Optional[str] = None,
        port: Optional[int] = None,
        original_exception: Optional[BaseException] = None,
    ):
        super().__init__(message, host, port, original_exception)
        self.reason = reason
        self.add_context("reason", reason.value)


class CommandTimeoutError(PureTelnetError):
    """A command's hard timeout elapsed before the response settled.

    Used to format the partial-result notice; the engine never raises it to
    the controller.
    """

    def __init__(self, timeout_ms: int, command: str = ""):
        super().__init__(f"Command timed out after {timeout_ms}ms")
        self.timeout_ms = timeout_ms
        self.command = command


class IdentityNotSetError(PureTelnetError):
    """Raised when a connection is requested before the client identified itself."""

    def __init__(
        self,
        message: str = (
            "LLM identity not set. Please register an identity before connecting."
        ),
    ):
        super().__init__(message)


class ConfigurationError(PureTelnetError):
    """Invalid configuration or state update."""

    pass


class ProtocolError(PureTelnetError):
    """Telnet stream violated a decoder bound."""

    pass
