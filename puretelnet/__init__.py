"""
puretelnet package init.
Exports the telnet bridge engine, its configuration and the logging setup.
"""

import argparse
import datetime
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from .config import EngineConfig
from .events import EventFeed, SessionEvent, SessionEventType
from .exceptions import (
    CertificateError,
    CertificateFailureReason,
    CommandTimeoutError,
    ConfigurationError,
    ConnectError,
    HandshakeError,
    IdentityNotSetError,
    NotConnectedError,
    ProtocolError,
    PureTelnetError,
    TLSError,
)
from .identity import ClientIdentity, IdentityRegistry
from .session import AsyncSession, CommandResult, ConnectResult, Session
from .state.connection_state import ConnectionState, TLSInfo
from .transport import TLSParams
from .version import __version__


class JSONFormatter(logging.Formatter):
    """JSON formatter with session correlation support."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.datetime.now().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        session_id = getattr(record, "session_id", None)
        if session_id:
            log_entry["session_id"] = session_id

        extra = getattr(record, "puretelnet_extra", {})
        if extra:
            log_entry.update(extra)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "WARNING") -> None:
    """
    Setup basic logging configuration.

    Set ``PURETELNET_LOG_JSON=true`` to emit one JSON object per line.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    use_json = os.environ.get("PURETELNET_LOG_JSON", "false").lower() == "true"
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    if use_json:
        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        root.addHandler(handler)
    else:
        logging.basicConfig(level=getattr(logging, level.upper()))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="puretelnet", description="puretelnet - telnet bridge for LLM controllers"
    )
    parser.add_argument("host", help="Host to connect to")
    parser.add_argument(
        "port", type=int, nargs="?", default=None, help="Port (default 23)"
    )
    parser.add_argument("--ssl", action="store_true", help="Use SSL/TLS")
    parser.add_argument(
        "--no-verify",
        action="store_true",
        help="Do not verify the server certificate",
    )
    parser.add_argument("--server-name", help="Server name for SNI and hostname checks")
    parser.add_argument("--ca", help="CA bundle path trusted for the server")
    parser.add_argument("--cert", help="Client certificate path")
    parser.add_argument("--key", help="Client private key path")
    parser.add_argument("--passphrase", help="Passphrase for the client key")
    parser.add_argument(
        "--identity",
        nargs=3,
        metavar=("NAME", "VERSION", "PROVIDER"),
        help="Client identity announced to the server",
    )
    parser.add_argument(
        "--command",
        action="append",
        default=[],
        help="Command to send (repeatable, sent in order)",
    )
    parser.add_argument(
        "--timeout", type=int, default=None, help="Command timeout in milliseconds"
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point: connect, run each command, print responses, disconnect."""
    args = _build_parser().parse_args(argv)
    setup_logging(args.log_level)

    identity = IdentityRegistry()
    if args.identity:
        name, version, provider = args.identity
    else:
        name, version, provider = "puretelnet-cli", __version__, "local"
    identity.set_identity(name=name, version=version, provider=provider)

    tls = None
    if args.ssl:
        tls = TLSParams(
            enabled=True,
            verify_peer=not args.no_verify,
            server_name=args.server_name,
            trust_anchor=args.ca,
            client_cert=args.cert,
            client_key=args.key,
            key_passphrase=args.passphrase,
        )

    try:
        config = EngineConfig.from_env()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    exit_code = 0
    with Session(config=config, identity=identity) as session:
        result = session.connect(args.host, args.port, tls=tls)
        print(result.message)
        if not result.success:
            return 1
        for command in args.command:
            reply = session.send_command(command, timeout=args.timeout)
            print(reply.response)
            if not reply.success:
                exit_code = 1
                break
        print(session.disconnect().message)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())


__all__ = [
    "__version__",
    "AsyncSession",
    "Session",
    "ConnectResult",
    "CommandResult",
    "ConnectionState",
    "TLSInfo",
    "TLSParams",
    "EngineConfig",
    "EventFeed",
    "SessionEvent",
    "SessionEventType",
    "ClientIdentity",
    "IdentityRegistry",
    "PureTelnetError",
    "NotConnectedError",
    "ConnectError",
    "TLSError",
    "HandshakeError",
    "CertificateError",
    "CertificateFailureReason",
    "CommandTimeoutError",
    "IdentityNotSetError",
    "ConfigurationError",
    "ProtocolError",
    "JSONFormatter",
    "setup_logging",
    "main",
]
