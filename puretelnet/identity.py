"""
Client identity gate.

The controller registers who it is before connecting. The engine only asks two
things of this collaborator: whether an identity is set (connections are
refused otherwise) and the identity string announced during the terminal-type
cycle. Persisting the identity is the caller's business.
"""

import logging
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

UNKNOWN_NAME = "Unknown"
UNKNOWN_VERSION = "0.0.0"
UNKNOWN_PROVIDER = "Unknown"


@dataclass(frozen=True)
class ClientIdentity:
    """Self-reported identity of the controlling client."""

    name: str = UNKNOWN_NAME
    version: str = UNKNOWN_VERSION
    provider: str = UNKNOWN_PROVIDER
    capabilities: List[str] = field(default_factory=list)
    metadata: Dict[str, str] = field(default_factory=dict)

    def is_identified(self) -> bool:
        return (
            self.name != UNKNOWN_NAME
            and self.version != UNKNOWN_VERSION
            and self.provider != UNKNOWN_PROVIDER
        )

    def __str__(self) -> str:
        if self.is_identified():
            return f"{self.name}/{self.version} ({self.provider})"
        return "UNKNOWN_LLM (Please register an identity)"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "provider": self.provider,
            "capabilities": list(self.capabilities),
            "metadata": dict(self.metadata),
        }


class IdentityRegistry:
    """Thread-safe holder for the current :class:`ClientIdentity`."""

    def __init__(self, identity: Optional[ClientIdentity] = None) -> None:
        self._lock = threading.Lock()
        self._identity = identity or ClientIdentity()

    def get_identity(self) -> ClientIdentity:
        with self._lock:
            return self._identity

    def set_identity(self, **changes: Any) -> ClientIdentity:
        """
        Update only the provided identity fields.

        Args:
            **changes: Any of name, version, provider, capabilities, metadata.

        Returns:
            The updated identity.
        """
        with self._lock:
            self._identity = replace(self._identity, **changes)
            identity = self._identity
        logger.info(f"Client identity set: {identity}")
        return identity

    def clear(self) -> None:
        with self._lock:
            self._identity = ClientIdentity()

    def is_identified(self) -> bool:
        return self.get_identity().is_identified()

    def identity_string(self) -> str:
        return str(self.get_identity())
