import datetime
import json
import logging
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

__all__ = [
    "SessionEventType",
    "SessionEvent",
    "EventFeed",
]

logger = logging.getLogger(__name__)


class SessionEventType(Enum):
    """Kinds of events emitted to the session transcript collaborator."""

    CONNECTION = "CONNECTION"
    DISCONNECTION = "DISCONNECTION"
    COMMAND = "COMMAND"
    RESPONSE = "RESPONSE"
    ERROR = "ERROR"
    TIMEOUT = "TIMEOUT"
    MODE_CHANGE = "MODE_CHANGE"
    CONFIG_CHANGE = "CONFIG_CHANGE"
    SSL_HANDSHAKE = "SSL_HANDSHAKE"
    SSL_CERTIFICATE = "SSL_CERTIFICATE"
    SSL_ERROR = "SSL_ERROR"
    SYSTEM = "SYSTEM"


@dataclass(frozen=True)
class SessionEvent:
    seq: int
    ts: datetime.datetime
    kind: SessionEventType
    session_id: str
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "ts": self.ts.isoformat(),
            "kind": self.kind.value,
            "session_id": self.session_id,
            "text": self.text,
        }


Subscriber = Callable[[SessionEvent], None]


class EventFeed:
    """Ordered, bounded feed of session events.

    The engine emits; collaborators either subscribe (called synchronously in
    emission order) or read the retained history. A failing subscriber is
    logged and never interrupts the engine.
    """

    def __init__(self, max_events: int = 1000) -> None:
        self._lock = threading.Lock()
        self._events: Deque[SessionEvent] = deque(maxlen=max_events)
        self._subscribers: List[Subscriber] = []
        self._seq = 0

    # Emission -----------------------------------------------------------------
    def emit(
        self, kind: SessionEventType, text: str, session_id: str = ""
    ) -> SessionEvent:
        with self._lock:
            self._seq += 1
            event = SessionEvent(
                seq=self._seq,
                ts=datetime.datetime.now(datetime.timezone.utc),
                kind=kind,
                session_id=session_id,
                text=text,
            )
            self._events.append(event)
            subscribers = list(self._subscribers)
        for subscriber in subscribers:
            try:
                subscriber(event)
            except Exception:
                logger.exception(f"Event subscriber failed on {kind.value} event")
        return event

    # Subscription -------------------------------------------------------------
    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a subscriber; returns a callable that unsubscribes it."""
        with self._lock:
            self._subscribers.append(subscriber)

        def _unsubscribe() -> None:
            with self._lock:
                if subscriber in self._subscribers:
                    self._subscribers.remove(subscriber)

        return _unsubscribe

    # Queries ------------------------------------------------------------------
    def events(
        self,
        kind: Optional[SessionEventType] = None,
        session_id: Optional[str] = None,
    ) -> List[SessionEvent]:
        with self._lock:
            snapshot = list(self._events)
        return [
            e
            for e in snapshot
            if (kind is None or e.kind is kind)
            and (session_id is None or e.session_id == session_id)
        ]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def to_json(self, *, indent: Optional[int] = None) -> str:
        return json.dumps([e.to_dict() for e in self.events()], indent=indent)
