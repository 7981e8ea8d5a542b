"""
Connection state record and its single mutation path.

Collaborators only ever see frozen :class:`ConnectionState` snapshots; the
engine mutates through :meth:`StateStore.update`, which applies each
read-modify-write atomically under a non-reentrant lock that is never held
across I/O.
"""

import logging
import threading
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict, Optional, Tuple

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeerCertificate:
    subject: str = ""
    issuer: str = ""
    not_before: str = ""
    not_after: str = ""
    fingerprint_sha256: str = ""

    def summary(self) -> str:
        return (
            f"Subject: {self.subject or 'Unknown'}, "
            f"Issuer: {self.issuer or 'Unknown'}, "
            f"Valid until: {self.not_after or 'Unknown'}"
        )


@dataclass(frozen=True)
class TLSInfo:
    """Negotiated security properties of a TLS session."""

    authorized: bool = False
    authorization_error: str = ""
    protocol: str = ""
    cipher: str = ""
    peer_certificate: Optional[PeerCertificate] = None


@dataclass(frozen=True)
class ConnectionState:
    connected: bool = False
    host: str = ""
    port: int = 0
    name: str = ""
    last_error: str = ""
    last_command: str = ""
    last_response: str = ""
    continuous_mode: bool = False
    default_delay: float = 0.0
    use_tls: bool = False
    tls_info: Optional[TLSInfo] = None
    session_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def preview(self, limit: int = 200) -> Dict[str, Any]:
        """Status view with ``last_response`` elided past ``limit`` characters."""
        response = self.last_response
        if len(response) > limit:
            response = response[:limit] + "..."
        return {
            "isConnected": self.connected,
            "host": self.host,
            "port": self.port,
            "connectionName": self.name,
            "lastError": self.last_error,
            "lastCommand": self.last_command,
            "lastResponsePreview": response,
            "continuousModeEnabled": self.continuous_mode,
            "defaultDelay": self.default_delay,
            "useTLS": self.use_tls,
            "tlsInfo": asdict(self.tls_info) if self.tls_info else None,
        }


_STATE_FIELDS = frozenset(f.name for f in fields(ConnectionState))


class StateStore:
    """Owner of the current :class:`ConnectionState`."""

    def __init__(self, initial: Optional[ConnectionState] = None) -> None:
        self._lock = threading.Lock()
        self._state = initial or ConnectionState()
        self._version = 0

    def snapshot(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def update(self, **changes: Any) -> ConnectionState:
        """
        Apply field changes atomically.

        Returns:
            The new snapshot.

        Raises:
            ConfigurationError: If an unknown field is named.
        """
        unknown = set(changes) - _STATE_FIELDS
        if unknown:
            raise ConfigurationError(
                "Unknown connection state field(s)",
                {"fields": ", ".join(sorted(unknown))},
            )
        with self._lock:
            self._state = replace(self._state, **changes)
            self._version += 1
            return self._state

    def compare_and_update(
        self, expected_session_id: str, **changes: Any
    ) -> Tuple[bool, ConnectionState]:
        """Apply changes only if the session id still matches.

        Used by background sources (reader task, timers) so a late event from a
        torn-down session cannot overwrite the state of its successor.
        """
        unknown = set(changes) - _STATE_FIELDS
        if unknown:
            raise ConfigurationError(
                "Unknown connection state field(s)",
                {"fields": ", ".join(sorted(unknown))},
            )
        with self._lock:
            if self._state.session_id != expected_session_id:
                return False, self._state
            self._state = replace(self._state, **changes)
            self._version += 1
            return True, self._state
