#!/usr/bin/env python3
"""
Multicast Announcement Listener
Waits on the discovery group for a "PyDistrib INIT <port>" announcement and
derives the server's handshake address from it (IP from the UDP envelope,
port from the payload). Malformed datagrams are discarded and listening
continues within the remaining timeout budget.
"""

import enum
import logging
import socket
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from prometheus_client import Counter

from pydistrib_worker.protocol import RECV_BUFFER_SIZE, MalformedMessageError, parse_announcement

logger = logging.getLogger(__name__)

announcements_counter = Counter(
    'pydistrib_worker_announcements_total',
    'Announcement datagrams received on the discovery group',
    ['result']
)


class ListenError(enum.Enum):
    TIMEOUT = "timeout"


@dataclass
class DiscoveryResult:
    """Outcome of one listen() call"""
    success: bool
    server_address: Optional[Tuple[str, int]]
    error: Optional[ListenError]
    timestamp: float


class MulticastListener:
    """Reads announcements from an already joined multicast socket"""

    def __init__(self, sock: socket.socket, clock: Callable[[], float] = time.monotonic):
        self.sock = sock
        self.clock = clock

    def listen(self, timeout: float) -> DiscoveryResult:
        """Block until a valid announcement arrives or ``timeout`` seconds elapse"""
        deadline = self.clock() + timeout

        while True:
            remaining = deadline - self.clock()
            if remaining <= 0:
                break

            self.sock.settimeout(remaining)
            try:
                data, remote_addr = self.sock.recvfrom(RECV_BUFFER_SIZE)
            except socket.timeout:
                break
            except OSError as e:
                logger.warning(f"Worker error while listening: {e}")
                continue

            try:
                port = parse_announcement(data)
            except MalformedMessageError as e:
                announcements_counter.labels(result='malformed').inc()
                logger.warning(f"Discarding malformed announcement from {remote_addr[0]}: {e}")
                continue

            announcements_counter.labels(result='valid').inc()
            server_address = (remote_addr[0], port)
            logger.info(f"Received announcement from {server_address[0]}, handshake port {port}")
            return DiscoveryResult(success=True, server_address=server_address,
                                   error=None, timestamp=time.time())

        logger.debug(f"No announcement within {timeout:.1f}s")
        return DiscoveryResult(success=False, server_address=None,
                               error=ListenError.TIMEOUT, timestamp=time.time())
