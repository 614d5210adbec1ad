#!/usr/bin/env python3
"""
Unicast Handshake Initiator
Sends "PyDistrib HANDSHAKE|<id>" to the announced server and waits for a
single "PyDistrib HANDSHAKE ACK|<id>" reply on the same socket.

The reply is accepted only when its identity matches and it comes from the
server's IP. The source port is not checked: the server may answer from a
different port than the one it announced.
"""

import enum
import logging
import socket
import time
from dataclasses import dataclass
from typing import Optional, Tuple

from prometheus_client import Counter, Histogram

from pydistrib_worker.protocol import RECV_BUFFER_SIZE, encode_handshake, is_matching_ack, same_host

logger = logging.getLogger(__name__)

handshakes_counter = Counter(
    'pydistrib_worker_handshakes_total',
    'Handshake exchanges by result',
    ['result']
)
handshake_latency_hist = Histogram(
    'pydistrib_worker_handshake_latency_ms',
    'Handshake round-trip latency in milliseconds',
    buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 50.0, 100.0, 500.0]
)


class HandshakeError(enum.Enum):
    TIMEOUT = "timeout"
    IDENTITY_MISMATCH = "identity_mismatch"
    SOURCE_MISMATCH = "source_mismatch"
    SEND_FAILED = "send_failed"
    REFUSED = "refused"
    RECEIVE_FAILED = "receive_failed"


@dataclass
class HandshakeResult:
    """Outcome of one handshake exchange"""
    success: bool
    error: Optional[HandshakeError]
    latency_ms: Optional[float]
    timestamp: float


class HandshakeInitiator:
    """Runs the handshake exchange over one attempt's unicast socket"""

    def __init__(self, sock: socket.socket):
        self.sock = sock

    def handshake(self, server_address: Tuple[str, int], identity, timeout: float) -> HandshakeResult:
        start = time.perf_counter()
        try:
            self.sock.sendto(encode_handshake(identity), server_address)
        except OSError as e:
            logger.warning(f"Failed to handshake with {server_address[0]}:{server_address[1]}: {e}")
            return self._fail(HandshakeError.SEND_FAILED)

        logger.debug(f"Handshake sent to {server_address[0]}:{server_address[1]}")

        self.sock.settimeout(timeout)
        try:
            data, remote_addr = self.sock.recvfrom(RECV_BUFFER_SIZE)
        except socket.timeout:
            logger.warning(f"No acknowledgement from {server_address[0]} within {timeout:.1f}s")
            return self._fail(HandshakeError.TIMEOUT)
        except ConnectionResetError as e:
            # ICMP port unreachable surfaces here on some platforms
            logger.warning(f"Handshake rejected by {server_address[0]}: {e}")
            return self._fail(HandshakeError.REFUSED)
        except OSError as e:
            logger.warning(f"Receive error waiting for {server_address[0]}: {e}")
            return self._fail(HandshakeError.RECEIVE_FAILED)

        if not same_host(remote_addr, server_address):
            logger.warning(f"Ignoring reply from {remote_addr[0]}, expected {server_address[0]}")
            return self._fail(HandshakeError.SOURCE_MISMATCH)

        if not is_matching_ack(data, identity):
            logger.warning(f"Acknowledgement from {remote_addr[0]} does not match worker id")
            return self._fail(HandshakeError.IDENTITY_MISMATCH)

        latency_ms = (time.perf_counter() - start) * 1000
        handshakes_counter.labels(result='ok').inc()
        handshake_latency_hist.observe(latency_ms)
        logger.info("Server acknowledged the handshake")
        return HandshakeResult(success=True, error=None, latency_ms=latency_ms, timestamp=time.time())

    def _fail(self, error: HandshakeError) -> HandshakeResult:
        handshakes_counter.labels(result=error.value).inc()
        return HandshakeResult(success=False, error=error, latency_ms=None, timestamp=time.time())
