import pytest

from puretelnet.identity import IdentityRegistry
from puretelnet.protocol.terminal_type import TerminalTypeCycle, TerminalTypeState
from puretelnet.version import __version__


@pytest.fixture
def cycle():
    return TerminalTypeCycle(IdentityRegistry())


class TestTerminalTypeCycle:
    def test_initial_state(self, cycle):
        assert cycle.state is TerminalTypeState.CLIENT_NAME
        assert cycle.armed is False

    def test_four_requests_in_order(self, cycle):
        answers = [cycle.next_response() for _ in range(4)]
        assert answers == [
            f"MCP-TELNET-{__version__}",
            "XTERM",
            "MTTS 13",
            "MTTS 13",
        ]
        assert cycle.state is TerminalTypeState.CAPABILITY_REPEAT

    def test_fifth_request_repeats_capabilities(self, cycle):
        answers = [cycle.next_response() for _ in range(5)]
        assert answers[4] == answers[3] == "MTTS 13"
        assert cycle.state is TerminalTypeState.CAPABILITY_REPEAT

    def test_client_name_includes_registered_identity(self, identity):
        cycle = TerminalTypeCycle(identity)
        assert cycle.next_response() == (
            f"MCP-TELNET-{__version__}/TestLLM/1.0 (Acme)"
        )

    def test_client_name_without_registry(self):
        cycle = TerminalTypeCycle(None)
        assert cycle.next_response() == f"MCP-TELNET-{__version__}"

    def test_reset_restarts_cycle(self, cycle):
        cycle.arm()
        cycle.next_response()
        cycle.next_response()
        cycle.reset()
        assert cycle.armed is False
        assert cycle.next_response() == f"MCP-TELNET-{__version__}"

    def test_rearm_does_not_restart(self, cycle):
        cycle.arm()
        cycle.next_response()
        cycle.arm()
        assert cycle.state is TerminalTypeState.TERMINAL_TYPE

    def test_custom_terminal_type(self):
        cycle = TerminalTypeCycle(terminal_type="ANSI")
        cycle.next_response()
        assert cycle.next_response() == "ANSI"
