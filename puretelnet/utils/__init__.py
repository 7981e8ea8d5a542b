"""
Utilities package for puretelnet.

Contains common utility functions used across the puretelnet codebase.
"""

from .logging_utils import (
    log_command_event,
    log_connection_event,
    log_data_processing,
    log_negotiation_event,
    log_recovery_event,
)

__all__ = [
    "log_connection_event",
    "log_command_event",
    "log_negotiation_event",
    "log_recovery_event",
    "log_data_processing",
]
