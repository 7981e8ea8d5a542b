"""Engine-owned state: connection record and response buffer."""

from .connection_state import ConnectionState, PeerCertificate, StateStore, TLSInfo
from .response_buffer import DEFAULT_RESPONSE_BUFFER_LIMIT, ResponseBuffer

__all__ = [
    "ConnectionState",
    "PeerCertificate",
    "StateStore",
    "TLSInfo",
    "ResponseBuffer",
    "DEFAULT_RESPONSE_BUFFER_LIMIT",
]
