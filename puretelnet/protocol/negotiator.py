"""Telnet option negotiation for puretelnet.

Only the terminal-type option is ever accepted. Every other option the peer
asks us to perform is refused; options the peer offers to perform are
consumed without reply.
"""

import asyncio
import logging
from typing import Optional

from ..utils.logging_utils import log_negotiation_event
from .terminal_type import TerminalTypeCycle
from .utils import (
    DO,
    DONT,
    TELOPT_TTYPE,
    TTYPE_IS,
    TTYPE_SEND,
    WILL,
    WONT,
    send_iac,
    send_subnegotiation,
)

logger = logging.getLogger(__name__)


class Negotiator:
    """
    Answers option negotiation on behalf of a connection.

    Replies are queued on the writer without awaiting; the reader loop drains
    the writer after each decoded chunk.
    """

    def __init__(
        self,
        writer: Optional[asyncio.StreamWriter],
        terminal_type: TerminalTypeCycle,
    ) -> None:
        self.writer = writer
        self.terminal_type = terminal_type
        self.replies_sent = 0

    def offer_terminal_type(self) -> None:
        """Proactively announce that we will send our terminal type."""
        logger.debug("[TELNET] Offering WILL TTYPE")
        self._reply(WILL, TELOPT_TTYPE)

    def handle_iac_command(self, command: int, option: int) -> None:
        """Handle a WILL/WONT/DO/DONT command from the peer."""
        if command == DO:
            self._handle_do(option)
        elif command == DONT:
            self._handle_dont(option)
        elif command == WILL:
            logger.debug(f"[TELNET] Server WILL 0x{option:02x} - consumed")
        elif command == WONT:
            logger.debug(f"[TELNET] Server WONT 0x{option:02x} - consumed")
        else:
            logger.debug(
                f"[TELNET] Ignoring unexpected command 0x{command:02x} "
                f"option 0x{option:02x}"
            )

    def _handle_do(self, option: int) -> None:
        if option == TELOPT_TTYPE:
            log_negotiation_event(
                logger, "DO TTYPE accepted", "identification cycle armed"
            )
            self._reply(WILL, TELOPT_TTYPE)
            self.terminal_type.arm()
        else:
            logger.debug(f"[TELNET] Server DO unknown option 0x{option:02x} - rejecting")
            self._reply(WONT, option)

    def _handle_dont(self, option: int) -> None:
        logger.debug(f"[TELNET] Server DONT 0x{option:02x}")
        if option == TELOPT_TTYPE:
            log_negotiation_event(logger, "DONT TTYPE", "identification cycle reset")
            self.terminal_type.reset()
        self._reply(WONT, option)

    def handle_subnegotiation(self, option: int, payload: bytes) -> None:
        """Handle a complete ``IAC SB <option> <payload> IAC SE`` sequence."""
        if option != TELOPT_TTYPE:
            logger.debug(
                f"[TELNET] Ignoring subnegotiation for option 0x{option:02x} "
                f"({len(payload)} bytes)"
            )
            return
        if not payload or payload[0] != TTYPE_SEND:
            logger.debug(f"[TTYPE] Ignoring TTYPE subnegotiation: {payload.hex()}")
            return
        answer = self.terminal_type.next_response()
        send_subnegotiation(
            self.writer,
            bytes([TELOPT_TTYPE]),
            bytes([TTYPE_IS]) + answer.encode("utf-8"),
        )
        self.replies_sent += 1
        logger.info(f"[TTYPE] Sent terminal type '{answer}'")

    def _reply(self, command: int, option: int) -> None:
        if send_iac(self.writer, bytes([command, option])):
            self.replies_sent += 1
