"""Utility functions and constants for telnet protocol handling."""

import asyncio
import logging
import re
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Telnet commands (RFC 854)
IAC = 0xFF
DONT = 0xFE
DO = 0xFD
WONT = 0xFC
WILL = 0xFB
SB = 0xFA
GA = 0xF9
NOP = 0xF1
SE = 0xF0

# Terminal-type option (RFC 1091)
TELOPT_TTYPE = 0x18
TTYPE_IS = 0x00
TTYPE_SEND = 0x01

NEGOTIATION_VERBS = (WILL, WONT, DO, DONT)

COMMAND_NAMES = {
    IAC: "IAC",
    DONT: "DONT",
    DO: "DO",
    WONT: "WONT",
    WILL: "WILL",
    SB: "SB",
    GA: "GA",
    NOP: "NOP",
    SE: "SE",
}

# MTTS bitvector flags
MTTS_ANSI = 1
MTTS_VT100 = 2
MTTS_UTF8 = 4
MTTS_256_COLORS = 8
MTTS_FLAGS = MTTS_ANSI | MTTS_UTF8 | MTTS_256_COLORS

KEEPALIVE_PAYLOAD = b"\x00"

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")


def command_name(byte: int) -> str:
    return COMMAND_NAMES.get(byte, f"0x{byte:02x}")


def _safe_writer_write(writer: Optional[Any], data: bytes) -> bool:
    """Write bytes without awaiting drain.

    Returns:
        True if the write was handed to the transport.
    """
    if writer is None:
        return False
    if writer.is_closing():
        logger.debug("[TELNET] Writer is closing, dropping write")
        return False
    try:
        writer.write(data)
    except (OSError, RuntimeError) as e:
        logger.warning(f"[TELNET] Write failed: {e}")
        return False
    return True


def send_iac(writer: Optional[asyncio.StreamWriter], command: bytes) -> bool:
    """Send an IAC command to the writer.

    The IAC prefix is added unless ``command`` already starts with it.
    """
    if writer is None:
        logger.debug("[TELNET] Writer is None, skipping IAC send")
        return False
    payload = (
        command if (len(command) > 0 and command[0] == IAC) else bytes([IAC]) + command
    )
    sent = _safe_writer_write(writer, payload)
    if sent:
        logger.debug(f"[TELNET] Sent IAC command: {payload.hex()}")
    return sent


def send_subnegotiation(
    writer: Optional[asyncio.StreamWriter], opt: bytes, data: bytes
) -> bool:
    """
    Send subnegotiation.

    Args:
        writer: StreamWriter.
        opt: Option byte.
        data: Subnegotiation data.
    """
    sub = bytes([IAC, SB]) + opt + data + bytes([IAC, SE])
    sent = _safe_writer_write(writer, sub)
    if sent:
        logger.debug(f"[TELNET] Sent subnegotiation: {sub.hex()}")
    return sent


def escape_iac(data: bytes) -> bytes:
    """Double every 0xFF so application data is never read as a command."""
    return data.replace(bytes([IAC]), bytes([IAC, IAC]))


def sanitize_command(command: str) -> str:
    """Strip control characters except TAB, LF and CR."""
    return _CONTROL_CHARS.sub("", command)


def sanitize_for_logging(text: str) -> str:
    """Render control characters visibly for log output."""
    text = text.replace("\t", "\\t").replace("\n", "\\n").replace("\r", "\\r")
    return _CONTROL_CHARS.sub(lambda m: f"\\x{ord(m.group(0)):02x}", text)


def encode_command(command: str) -> bytes:
    """Terminate an already sanitized command with CRLF and encode it."""
    line = command
    if not line.endswith("\r\n"):
        line = line.rstrip("\r\n") + "\r\n"
    return escape_iac(line.encode("utf-8"))
