#!/usr/bin/env python3
"""
PyDistrib wire protocol
ASCII text datagrams exchanged between worker and coordinating server:

  server -> worker (multicast)  PyDistrib INIT <port>
  worker -> server (unicast)    PyDistrib HANDSHAKE|<worker-identity>
  server -> worker (unicast)    PyDistrib HANDSHAKE ACK|<worker-identity>

The server's IP always comes from the UDP envelope, never the payload.
"""

import re
from typing import Tuple

# Discovery endpoint
MULTICAST_GROUP_V4 = "224.1.1.1"
MULTICAST_GROUP_V6 = "ff02::123"  # reserved, not joined
DISCOVERY_PORT = 5007

ANNOUNCE_PREFIX = "PyDistrib INIT"
HANDSHAKE_PREFIX = "PyDistrib HANDSHAKE|"
ACK_PREFIX = "PyDistrib HANDSHAKE ACK|"

# Longest legal datagram is an ack carrying a 36-char UUID
MAX_MESSAGE_LENGTH = max(
    len(ANNOUNCE_PREFIX) + 1 + 5,
    len(ACK_PREFIX) + 36,
)
# Room for four maximal messages, rounded up to a power of two
RECV_BUFFER_SIZE = 1 << (MAX_MESSAGE_LENGTH * 4 - 1).bit_length()

_PORT_RE = re.compile(r"[0-9]{1,5}")


class MalformedMessageError(ValueError):
    """Datagram does not have the expected protocol shape"""


def decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def parse_announcement(data: bytes) -> int:
    """
    Extract the advertised handshake port from an announcement datagram.

    Raises MalformedMessageError for anything other than
    ``PyDistrib INIT <port>`` with 0 <= port <= 65535.
    """
    text = decode(data)
    prefix_len = len(ANNOUNCE_PREFIX)

    if text[:prefix_len] != ANNOUNCE_PREFIX:
        raise MalformedMessageError(f"unexpected prefix in {text[:32]!r}")

    rest = text[prefix_len:]
    if not rest or not rest[0].isspace():
        raise MalformedMessageError(f"missing port separator in {text[:32]!r}")

    port_text = rest.strip()
    if not _PORT_RE.fullmatch(port_text):
        raise MalformedMessageError(f"invalid port text {port_text[:16]!r}")

    port = int(port_text)
    if port > 65535:
        raise MalformedMessageError(f"port out of range: {port}")
    return port


def encode_announcement(port: int) -> bytes:
    return f"{ANNOUNCE_PREFIX} {port}".encode("ascii")


def encode_handshake(identity) -> bytes:
    return f"{HANDSHAKE_PREFIX}{identity}".encode("ascii")


def encode_ack(identity) -> bytes:
    return f"{ACK_PREFIX}{identity}".encode("ascii")


def parse_handshake(data: bytes) -> str:
    """Return the identity carried by a handshake datagram"""
    text = decode(data).rstrip()
    if not text.startswith(HANDSHAKE_PREFIX) or len(text) == len(HANDSHAKE_PREFIX):
        raise MalformedMessageError(f"not a handshake: {text[:48]!r}")
    return text[len(HANDSHAKE_PREFIX):]


def is_matching_ack(data: bytes, identity) -> bool:
    """Ack text, trimmed of trailing whitespace, must equal the expected ack exactly"""
    return decode(data).rstrip() == f"{ACK_PREFIX}{identity}"


def same_host(addr_a: Tuple[str, int], addr_b: Tuple[str, int]) -> bool:
    """Compare only the IP part of two (ip, port) addresses"""
    return addr_a[0] == addr_b[0]
