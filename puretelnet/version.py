"""Version and client product identification for puretelnet."""

__version__ = "0.3.0"

# Product token announced to remote hosts during the terminal-type cycle.
CLIENT_PRODUCT = "MCP-TELNET"


def client_name() -> str:
    """Return the bare client name, e.g. ``MCP-TELNET-0.3.0``."""
    return f"{CLIENT_PRODUCT}-{__version__}"
