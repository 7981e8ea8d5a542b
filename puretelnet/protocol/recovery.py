"""
Liveness and recovery: timer registry, keep-alive and reconnection.

Every timer a session schedules (keep-alive, reconnection backoff, command
settle and hard timeout) is registered with a :class:`TimerRegistry` so an
explicit disconnect can cancel them as a group. Once the registry is closed it
refuses new schedules, which is what keeps an already-due reconnection from
starting after the controller asked to disconnect.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Coroutine,
    List,
    Optional,
    Set,
    Union,
)

from ..exceptions import PureTelnetError

if TYPE_CHECKING:
    from ..transport import TLSParams

logger = logging.getLogger(__name__)

Scheduled = Union[asyncio.TimerHandle, "asyncio.Task[Any]"]


class TimerRegistry:
    """Tracks a session's timers and background tasks."""

    def __init__(self) -> None:
        self._scheduled: Set[Scheduled] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._scheduled)

    def call_later(
        self, delay: float, callback: Callable[..., Any], *args: Any
    ) -> Optional[asyncio.TimerHandle]:
        """Schedule ``callback`` after ``delay`` seconds, or return None if closed."""
        if self._closed:
            logger.debug("[RECOVERY] Registry closed, timer not scheduled")
            return None
        loop = asyncio.get_running_loop()
        handle: Optional[asyncio.TimerHandle] = None

        def _fire() -> None:
            self._scheduled.discard(handle)  # type: ignore[arg-type]
            callback(*args)

        handle = loop.call_later(delay, _fire)
        self._scheduled.add(handle)
        return handle

    def create_task(
        self, coro: Coroutine[Any, Any, Any], name: Optional[str] = None
    ) -> "Optional[asyncio.Task[Any]]":
        """Run ``coro`` as a tracked task, or close it and return None if closed."""
        if self._closed:
            coro.close()
            logger.debug(f"[RECOVERY] Registry closed, task {name} not started")
            return None
        task = asyncio.create_task(coro, name=name)
        self._scheduled.add(task)
        task.add_done_callback(self._scheduled.discard)
        return task

    def cancel(self, item: Optional[Scheduled]) -> None:
        if item is None:
            return
        item.cancel()
        self._scheduled.discard(item)

    def cancel_all(self) -> int:
        """Cancel every tracked timer and task except the calling task."""
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        cancelled = 0
        for item in list(self._scheduled):
            if item is current:
                continue
            item.cancel()
            self._scheduled.discard(item)
            cancelled += 1
        if cancelled:
            logger.debug(f"[RECOVERY] Cancelled {cancelled} scheduled timer(s)")
        return cancelled

    def close(self) -> int:
        """Refuse further schedules and cancel everything outstanding."""
        self._closed = True
        return self.cancel_all()


class BackoffPolicy:
    """
    Exponential backoff with additive jitter.

    Delay before attempt ``n`` (1-based) is
    ``min(base * 2 ** (n - 1), cap) + uniform(0, jitter)``.
    """

    def __init__(
        self,
        base: float = 1.0,
        cap: float = 30.0,
        jitter: float = 1.0,
        max_attempts: int = 3,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.base = base
        self.cap = cap
        self.jitter = jitter
        self.max_attempts = max_attempts
        self._rng = rng or random.Random()

    def base_delay(self, attempt: int) -> float:
        return min(self.base * (2 ** (attempt - 1)), self.cap)

    def delay(self, attempt: int) -> float:
        extra = self._rng.uniform(0, self.jitter) if self.jitter > 0 else 0.0
        return self.base_delay(attempt) + extra


class KeepAlive:
    """
    Periodic liveness probe.

    ``probe`` is called every ``interval`` seconds; it sends the probe and
    returns False once the connection is no longer live, which ends the loop.
    """

    def __init__(
        self,
        registry: TimerRegistry,
        interval: float,
        probe: Callable[[], bool],
    ) -> None:
        self.registry = registry
        self.interval = interval
        self.probe = probe
        self._task: "Optional[asyncio.Task[Any]]" = None
        self.sent = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = self.registry.create_task(self._run(), name="puretelnet-keepalive")

    def stop(self) -> None:
        self.registry.cancel(self._task)
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if not self.probe():
                logger.debug("[RECOVERY] Keep-alive stopped: connection not live")
                return
            self.sent += 1


@dataclass(frozen=True)
class ReconnectTarget:
    host: str
    port: int
    name: str = ""
    tls: Optional["TLSParams"] = None


class RecoveryManager:
    """
    Runs sequential reconnection attempts for one logical connection.

    Args:
        registry: Session timer registry; the reconnection task is tracked in
            it and stops before an attempt if the registry has been closed.
        policy: Backoff policy and attempt budget.
        reconnect: Coroutine function performing one attempt; raises a
            PureTelnetError on failure.
        on_exhausted: Called with the target and last error once the budget
            is spent.
    """

    def __init__(
        self,
        registry: TimerRegistry,
        policy: BackoffPolicy,
        reconnect: Callable[[ReconnectTarget], Awaitable[None]],
        on_exhausted: Optional[
            Callable[[ReconnectTarget, Optional[BaseException]], None]
        ] = None,
    ) -> None:
        self.registry = registry
        self.policy = policy
        self.reconnect = reconnect
        self.on_exhausted = on_exhausted
        self._task: "Optional[asyncio.Task[Any]]" = None
        self.attempts = 0
        self.delays: List[float] = []

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(self, target: ReconnectTarget) -> bool:
        """Start reconnecting unless a run is already active or the registry is closed."""
        if self.active:
            logger.debug("[RECOVERY] Reconnection already in progress")
            return False
        if self.policy.max_attempts <= 0:
            logger.info("[RECOVERY] Reconnection disabled")
            if self.on_exhausted is not None:
                self.on_exhausted(target, None)
            return False
        self._task = self.registry.create_task(
            self._run(target), name="puretelnet-reconnect"
        )
        return self._task is not None

    def cancel(self) -> None:
        self.registry.cancel(self._task)
        self._task = None

    async def wait(self) -> None:
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self, target: ReconnectTarget) -> bool:
        last_error: Optional[BaseException] = None
        self.attempts = 0
        self.delays = []
        for attempt in range(1, self.policy.max_attempts + 1):
            delay = self.policy.delay(attempt)
            self.delays.append(delay)
            logger.info(
                f"[RECOVERY] Reconnect attempt {attempt}/{self.policy.max_attempts} "
                f"to {target.host}:{target.port} in {delay:.2f}s"
            )
            await asyncio.sleep(delay)
            if self.registry.closed:
                logger.info("[RECOVERY] Session closed, abandoning reconnection")
                return False
            self.attempts = attempt
            try:
                await self.reconnect(target)
            except PureTelnetError as e:
                last_error = e
                logger.warning(f"[RECOVERY] Reconnect attempt {attempt} failed: {e}")
                continue
            if self.registry.closed:
                return False
            logger.info(
                f"[RECOVERY] Reconnected to {target.host}:{target.port} "
                f"after {attempt} attempt(s)"
            )
            return True
        logger.error(
            f"[RECOVERY] Giving up on {target.host}:{target.port} after "
            f"{self.policy.max_attempts} attempt(s)"
        )
        if self.on_exhausted is not None:
            self.on_exhausted(target, last_error)
        return False
