#!/usr/bin/env python3
"""
Stub Coordinator
Lightweight stand-in for the coordinating server: multicasts
"PyDistrib INIT <port>" announcements and acknowledges every well-formed
handshake it receives. Used by the integration tests and for trying a
worker out on a LAN.
"""

import argparse
import logging
import socket
import threading
from typing import List, Optional

from pydistrib_worker.protocol import (
    DISCOVERY_PORT,
    MULTICAST_GROUP_V4,
    RECV_BUFFER_SIZE,
    MalformedMessageError,
    encode_ack,
    encode_announcement,
    parse_handshake,
)

logger = logging.getLogger(__name__)


class CoordinatorStub:
    """Acks handshakes on a unicast socket; optionally announces it"""

    def __init__(self, host: str = '0.0.0.0', port: int = 0, ack_identity: Optional[str] = None):
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind((host, port))
        self.sock.settimeout(0.2)
        # Set to force a mismatching ack identity
        self.ack_identity = ack_identity
        self.handshakes: List[str] = []
        self._stop = threading.Event()
        self._thread = None

    @property
    def address(self):
        return self.sock.getsockname()

    def announce(self, group: str = MULTICAST_GROUP_V4, port: int = DISCOVERY_PORT, ttl: int = 1):
        """Send one announcement datagram for this stub's handshake port"""
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP) as sender:
            sender.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, ttl)
            sender.sendto(encode_announcement(self.address[1]), (group, port))

    def serve_once(self) -> bool:
        """Answer at most one handshake; returns False on receive timeout"""
        try:
            data, addr = self.sock.recvfrom(RECV_BUFFER_SIZE)
        except socket.timeout:
            return False

        try:
            identity = parse_handshake(data)
        except MalformedMessageError as e:
            logger.warning(f"Ignoring datagram from {addr[0]}: {e}")
            return True

        self.handshakes.append(identity)
        logger.info(f"Handshake from worker {identity} at {addr[0]}:{addr[1]}")
        self.sock.sendto(encode_ack(self.ack_identity or identity), addr)
        return True

    def serve_forever(self):
        while not self._stop.is_set():
            self.serve_once()

    def start(self) -> "CoordinatorStub":
        self._thread = threading.Thread(target=self.serve_forever, daemon=True)
        self._thread.start()
        return self

    def stop(self):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
        self.sock.close()

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False


def main():
    """Announce every --interval seconds and ack handshakes until interrupted"""
    parser = argparse.ArgumentParser(description="PyDistrib stub coordinator")
    parser.add_argument('--port', type=int, default=0, help="Handshake port (0 = ephemeral)")
    parser.add_argument('--interval', type=float, default=2.0, help="Announcement interval in seconds")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - [%(name)s] %(message)s'
    )

    stub = CoordinatorStub(port=args.port).start()
    logger.info(f"Stub coordinator acking on {stub.address[0]}:{stub.address[1]}")
    stopped = threading.Event()
    try:
        while not stopped.wait(args.interval):
            stub.announce()
    except KeyboardInterrupt:
        logger.info("Shutting down stub coordinator")
    finally:
        stub.stop()


if __name__ == "__main__":
    main()
