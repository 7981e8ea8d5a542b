"""
Centralized logging utilities for puretelnet.

Provides standardized logging functions for common scenarios so log lines
carry the same bracketed category prefixes across the codebase.
"""

import logging
from typing import Any

__all__ = [
    "log_connection_event",
    "log_command_event",
    "log_negotiation_event",
    "log_recovery_event",
    "log_data_processing",
]


def _format_details(details: dict) -> str:
    if not details:
        return ""
    return " (" + ", ".join(f"{k}={v}" for k, v in details.items()) + ")"


def log_connection_event(
    logger: logging.Logger,
    event_type: str,
    host: str = "",
    port: int = 0,
    **details: Any,
) -> None:
    """Log connection events with consistent format."""
    suffix = _format_details(details)
    if host and port:
        logger.info(f"[CONNECTION] {event_type} - {host}:{port}{suffix}")
    else:
        logger.info(f"[CONNECTION] {event_type}{suffix}")


def log_command_event(
    logger: logging.Logger, event_type: str, command: str, details: str = ""
) -> None:
    """Log command lifecycle events; ``command`` must already be log-safe."""
    detail_str = f": {details}" if details else ""
    logger.info(f"[COMMAND] {event_type} '{command}'{detail_str}")


def log_negotiation_event(
    logger: logging.Logger, event_type: str, details: str = ""
) -> None:
    """Log negotiation events with consistent format."""
    detail_str = f": {details}" if details else ""
    logger.info(f"[NEGOTIATION] {event_type}{detail_str}")


def log_recovery_event(
    logger: logging.Logger, event_type: str, details: str = ""
) -> None:
    detail_str = f": {details}" if details else ""
    logger.info(f"[RECOVERY] {event_type}{detail_str}")


def log_data_processing(
    logger: logging.Logger, operation: str, data_info: str = ""
) -> None:
    """Log data processing operations with consistent format."""
    info_str = f" - {data_info}" if data_info else ""
    logger.debug(f"[DATA] {operation}{info_str}")
