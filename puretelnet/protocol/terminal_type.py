"""
Terminal-type identification cycle (MTTS).

Remote services that follow the MTTS convention request the terminal type
repeatedly and classify the client from the successive answers: client name,
terminal type, then the capability bitvector. The last answer is repeated for
every further request.
"""

import logging
from enum import Enum
from typing import Optional

from ..identity import IdentityRegistry
from ..version import client_name
from .utils import MTTS_FLAGS

logger = logging.getLogger(__name__)

DEFAULT_TERMINAL_TYPE = "XTERM"


class TerminalTypeState(Enum):
    CLIENT_NAME = 0
    TERMINAL_TYPE = 1
    CAPABILITY_BITS = 2
    CAPABILITY_REPEAT = 3


_NEXT_STATE = {
    TerminalTypeState.CLIENT_NAME: TerminalTypeState.TERMINAL_TYPE,
    TerminalTypeState.TERMINAL_TYPE: TerminalTypeState.CAPABILITY_BITS,
    TerminalTypeState.CAPABILITY_BITS: TerminalTypeState.CAPABILITY_REPEAT,
    TerminalTypeState.CAPABILITY_REPEAT: TerminalTypeState.CAPABILITY_REPEAT,
}


class TerminalTypeCycle:
    """Produces successive TTYPE IS answers."""

    def __init__(
        self,
        identity: Optional[IdentityRegistry] = None,
        terminal_type: str = DEFAULT_TERMINAL_TYPE,
        mtts_flags: int = MTTS_FLAGS,
    ) -> None:
        self.identity = identity
        self.terminal_type = terminal_type
        self.mtts_flags = mtts_flags
        self.state = TerminalTypeState.CLIENT_NAME
        self.armed = False

    def reset(self) -> None:
        self.state = TerminalTypeState.CLIENT_NAME
        self.armed = False

    def arm(self) -> None:
        """Enable answering; a fresh arm starts the cycle from the client name."""
        if not self.armed:
            self.state = TerminalTypeState.CLIENT_NAME
            self.armed = True
            logger.debug("[TTYPE] Identification cycle armed")

    def client_name(self) -> str:
        name = client_name()
        if self.identity is not None:
            ident = self.identity.get_identity()
            if ident.is_identified():
                name = f"{name}/{ident.name}/{ident.version} ({ident.provider})"
        return name

    def capability_token(self) -> str:
        return f"MTTS {self.mtts_flags}"

    def payload_for(self, state: TerminalTypeState) -> str:
        if state is TerminalTypeState.CLIENT_NAME:
            return self.client_name()
        if state is TerminalTypeState.TERMINAL_TYPE:
            return self.terminal_type
        return self.capability_token()

    def next_response(self) -> str:
        """Answer the current request and advance the cycle."""
        if not self.armed:
            # A SEND without a prior DO still deserves an answer.
            self.arm()
        state = self.state
        payload = self.payload_for(state)
        self.state = _NEXT_STATE[state]
        logger.debug(f"[TTYPE] {state.name} -> '{payload}'")
        return payload
