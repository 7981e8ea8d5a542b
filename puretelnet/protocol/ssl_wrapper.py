"""SSL/TLS wrapper for secure telnet connections using stdlib ssl module."""

import hashlib
import logging
import os
import ssl
from typing import Any, Dict, Optional, Tuple

from ..exceptions import TLSError
from ..state.connection_state import PeerCertificate, TLSInfo

logger = logging.getLogger(__name__)

VERIFICATION_DISABLED = "Certificate verification disabled by client"

PEM_MARKER = "-----BEGIN"


class SSLWrapper:
    """Builds client SSLContexts and summarizes completed handshakes."""

    def __init__(
        self,
        verify: bool = True,
        trust_anchor: Optional[str] = None,
        certfile: Optional[str] = None,
        keyfile: Optional[str] = None,
        password: Optional[str] = None,
    ):
        """
        Initialize the SSLWrapper.

        :param verify: Whether to verify the server's certificate.
        :param trust_anchor: CA bundle path, or PEM text of trusted certificates.
        :param certfile: Path to the client certificate for mutual TLS.
        :param keyfile: Path to the client private key.
        :param password: Passphrase for an encrypted private key.
        """
        self.verify = verify
        self.trust_anchor = trust_anchor
        self.certfile = certfile
        self.keyfile = keyfile
        self.password = password
        self.context: Optional[ssl.SSLContext] = None

        if not verify:
            logger.warning(
                "SSL verification disabled at SSLWrapper creation. "
                "The server identity will not be checked."
            )

    def create_context(self) -> ssl.SSLContext:
        """
        Create an SSLContext for a client connection.

        - TLS 1.2 minimum
        - When verify=True: check_hostname=True and verify_mode=CERT_REQUIRED,
          trusting the configured anchor or the system store
        - Client certificate loaded when configured

        :return: Configured SSLContext.
        :raises TLSError: If the context cannot be built.
        """
        try:
            ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
            ctx.minimum_version = ssl.TLSVersion.TLSv1_2

            if self.verify:
                ctx.check_hostname = True
                ctx.verify_mode = ssl.CERT_REQUIRED
                if self.trust_anchor:
                    self._load_trust_anchor(ctx, self.trust_anchor)
                else:
                    ctx.load_default_certs()
            else:
                ctx.check_hostname = False
                ctx.verify_mode = ssl.CERT_NONE

            if self.certfile:
                ctx.load_cert_chain(
                    certfile=self.certfile,
                    keyfile=self.keyfile,
                    password=self.password,
                )
                logger.debug(f"Loaded client certificate from {self.certfile}")

            self.context = ctx
            logger.debug("SSLContext created successfully")
            return ctx
        except (ssl.SSLError, OSError, ValueError) as e:
            logger.error(f"SSL context creation failed: {e}")
            raise TLSError(
                f"SSL context creation failed: {e}", original_exception=e
            ) from e

    @staticmethod
    def _load_trust_anchor(ctx: ssl.SSLContext, anchor: str) -> None:
        if PEM_MARKER in anchor:
            ctx.load_verify_locations(cadata=anchor)
        elif os.path.isdir(anchor):
            ctx.load_verify_locations(capath=anchor)
        else:
            ctx.load_verify_locations(cafile=anchor)

    def get_context(self) -> ssl.SSLContext:
        if self.context is None:
            return self.create_context()
        return self.context

    def describe_connection(self, ssl_object: Any) -> TLSInfo:
        """
        Summarize a completed handshake.

        :param ssl_object: The ``ssl_object`` extra info of a TLS transport.
        :return: TLSInfo with protocol, cipher, peer certificate and
            authorization outcome.
        """
        if ssl_object is None:
            return TLSInfo(
                authorized=False,
                authorization_error="No TLS session information available",
            )
        protocol = ssl_object.version() or ""
        cipher_info = ssl_object.cipher()
        cipher = cipher_info[0] if cipher_info else ""
        cert = ssl_object.getpeercert() or {}
        der = ssl_object.getpeercert(binary_form=True)

        peer = None
        if cert or der:
            peer = PeerCertificate(
                subject=_common_name(cert.get("subject")),
                issuer=_common_name(cert.get("issuer")),
                not_before=cert.get("notBefore", ""),
                not_after=cert.get("notAfter", ""),
                fingerprint_sha256=_fingerprint(der),
            )

        if self.verify:
            authorized, error = True, ""
        else:
            authorized, error = False, VERIFICATION_DISABLED
        return TLSInfo(
            authorized=authorized,
            authorization_error=error,
            protocol=protocol,
            cipher=cipher,
            peer_certificate=peer,
        )


def _common_name(name: Optional[Tuple[Tuple[Tuple[str, str], ...], ...]]) -> str:
    """Pick the commonName out of a getpeercert() subject/issuer tuple."""
    if not name:
        return ""
    fields: Dict[str, str] = {}
    for rdn in name:
        for key, value in rdn:
            fields.setdefault(key, value)
    return fields.get("commonName") or fields.get("organizationName", "")


def _fingerprint(der: Optional[bytes]) -> str:
    if not der:
        return ""
    digest = hashlib.sha256(der).hexdigest().upper()
    return ":".join(digest[i : i + 2] for i in range(0, len(digest), 2))
