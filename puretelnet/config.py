"""
Engine configuration for puretelnet.

All durations are in seconds. Defaults mirror the behaviour controllers have
come to rely on; every value can be overridden through ``PURETELNET_*``
environment variables via :meth:`EngineConfig.from_env`.
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "PURETELNET_"

SETTLE_FIXED = "fixed"
SETTLE_QUIESCENT = "quiescent"

CONTINUOUS_MODE_MARKER = "\n\n[Waiting for your next command or instruction...]"


@dataclass(frozen=True)
class EngineConfig:
    """Tunables for one connection engine."""

    default_port: int = 23
    socket_timeout: float = 30.0

    # Command/response correlation
    settle_window: float = 0.5
    settle_mode: str = SETTLE_FIXED
    default_command_timeout: float = 30.0
    min_command_timeout: float = 1.0
    max_command_timeout: float = 300.0
    max_wait_after: float = 60.0
    continuous_mode_marker: str = CONTINUOUS_MODE_MARKER

    # Liveness and recovery
    keepalive_interval: float = 15.0
    max_reconnect_attempts: int = 3
    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 30.0
    reconnect_jitter: float = 1.0

    # Bounds
    response_buffer_limit: int = 256 * 1024
    max_chunk_size: int = 1024 * 1024
    max_subnegotiation_size: int = 8 * 1024
    read_chunk_size: int = 4096
    event_history_size: int = 1000

    # Identification
    terminal_type: str = "XTERM"

    def validate(self) -> "EngineConfig":
        """Check value ranges, returning self so calls can be chained."""
        if not 0 < self.default_port < 65536:
            raise ConfigurationError(
                "default_port out of range", {"default_port": self.default_port}
            )
        if self.settle_mode not in (SETTLE_FIXED, SETTLE_QUIESCENT):
            raise ConfigurationError(
                f"Unknown settle_mode '{self.settle_mode}'",
                {"allowed": f"{SETTLE_FIXED}, {SETTLE_QUIESCENT}"},
            )
        if self.min_command_timeout <= 0 or (
            self.min_command_timeout > self.max_command_timeout
        ):
            raise ConfigurationError(
                "Invalid command timeout range",
                {
                    "min_command_timeout": self.min_command_timeout,
                    "max_command_timeout": self.max_command_timeout,
                },
            )
        for name in (
            "socket_timeout",
            "settle_window",
            "keepalive_interval",
            "reconnect_base_delay",
            "reconnect_max_delay",
        ):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        if self.reconnect_jitter < 0 or self.max_reconnect_attempts < 0:
            raise ConfigurationError("Reconnection settings must not be negative")
        for name in (
            "response_buffer_limit",
            "max_chunk_size",
            "max_subnegotiation_size",
            "read_chunk_size",
            "event_history_size",
        ):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        return self

    def clamp_command_timeout(self, timeout: Optional[float]) -> float:
        """Clamp a caller-supplied command timeout into the configured range."""
        if timeout is None:
            timeout = self.default_command_timeout
        return max(self.min_command_timeout, min(float(timeout), self.max_command_timeout))

    def with_overrides(self, **overrides: Any) -> "EngineConfig":
        """Return a validated copy with the given fields replaced."""
        return replace(self, **overrides).validate()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        """
        Build a config from ``PURETELNET_<FIELD>`` environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``).

        Returns:
            A validated EngineConfig.

        Raises:
            ConfigurationError: If a value cannot be converted.
        """
        env = os.environ if environ is None else environ
        overrides: Dict[str, Any] = {}
        for field in fields(cls):
            raw = env.get(ENV_PREFIX + field.name.upper())
            if raw is None:
                continue
            default = field.default
            try:
                if isinstance(default, bool):
                    value: Any = raw.strip().lower() in ("1", "true", "yes", "on")
                elif isinstance(default, int):
                    value = int(raw)
                elif isinstance(default, float):
                    value = float(raw)
                else:
                    value = raw
            except ValueError as e:
                raise ConfigurationError(
                    f"Invalid value for {ENV_PREFIX}{field.name.upper()}: {raw!r}",
                    original_exception=e,
                ) from e
            overrides[field.name] = value
            logger.debug(f"Config override {field.name}={value!r} from environment")
        return cls(**overrides).validate()
