#!/usr/bin/env python3
"""
Socket setup for discovery and handshake
Every failure here means the local network environment is broken and is
raised as DiscoveryEnvironmentError rather than retried
"""

import ipaddress
import logging
import socket
import struct
import sys

logger = logging.getLogger(__name__)


class DiscoveryEnvironmentError(OSError):
    """Socket could not be created, configured, bound or joined"""


def _bind_multicast(sock: socket.socket, group: str, port: int):
    """Windows cannot bind to a multicast address, so it takes the wildcard"""
    if sys.platform == "win32":
        sock.bind(("0.0.0.0", port))
    else:
        sock.bind((group, port))


class SocketFactory:
    """Creates the two fresh sockets each connection attempt owns"""

    def open_listener(self, group: str, port: int, timeout: float) -> socket.socket:
        """UDP socket joined to an IPv4 multicast group"""
        if ipaddress.ip_address(group).version != 4:
            raise DiscoveryEnvironmentError(f"IPv6 discovery group {group} is not supported")

        sock = None
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.settimeout(timeout)

            mreq = struct.pack("4s4s", socket.inet_aton(group), socket.inet_aton("0.0.0.0"))
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)

            _bind_multicast(sock, group, port)
        except OSError as e:
            if sock is not None:
                sock.close()
            raise DiscoveryEnvironmentError(
                f"Failed to create listener socket on {group}:{port}: {e}"
            ) from e

        logger.debug(f"Joined multicast group {group}:{port}")
        return sock

    def open_handshake_socket(self, timeout: float) -> socket.socket:
        """Unicast UDP socket on an OS-assigned ephemeral port"""
        sock = None
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            sock.settimeout(timeout)
            sock.bind(("0.0.0.0", 0))
        except OSError as e:
            if sock is not None:
                sock.close()
            raise DiscoveryEnvironmentError(f"Failed to init handshake socket: {e}") from e

        logger.debug(f"Handshake socket bound to {sock.getsockname()}")
        return sock
