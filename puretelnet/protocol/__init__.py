"""Telnet protocol handling: decoding, negotiation, TLS and recovery."""
