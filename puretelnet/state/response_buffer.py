"""Bounded accumulator for inbound application text."""

import logging
import threading

logger = logging.getLogger(__name__)

DEFAULT_RESPONSE_BUFFER_LIMIT = 256 * 1024


def _is_continuation(byte: int) -> bool:
    return 0x80 <= byte <= 0xBF


class ResponseBuffer:
    """
    Append-only byte buffer with a fixed ceiling.

    Appending past the ceiling discards the oldest bytes first so the newest
    output is always retained.
    """

    def __init__(self, limit: int = DEFAULT_RESPONSE_BUFFER_LIMIT) -> None:
        if limit <= 0:
            raise ValueError("ResponseBuffer limit must be positive")
        self.limit = limit
        self._data = bytearray()
        self._lock = threading.Lock()
        self.truncated_bytes = 0

    def append(self, data: bytes) -> int:
        """
        Append bytes, sliding the window if the ceiling is exceeded.

        Args:
            data: Bytes to append.

        Returns:
            Number of old bytes discarded to make room.
        """
        if not data:
            return 0
        with self._lock:
            self._data.extend(data)
            excess = len(self._data) - self.limit
            if excess > 0:
                # Never start the window inside a UTF-8 sequence.
                limit = min(excess + 3, len(self._data))
                while excess < limit and _is_continuation(self._data[excess]):
                    excess += 1
                del self._data[:excess]
                self.truncated_bytes += excess
            else:
                excess = 0
        if excess:
            logger.warning(
                f"Response buffer truncated: removed {excess} bytes to stay within "
                f"{self.limit} byte limit"
            )
        return excess

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self.truncated_bytes = 0

    def getvalue(self) -> bytes:
        with self._lock:
            return bytes(self._data)

    def text(self) -> str:
        return self.getvalue().decode("utf-8", errors="replace")

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
