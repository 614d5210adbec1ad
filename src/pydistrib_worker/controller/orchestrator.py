#!/usr/bin/env python3
"""
Connection Orchestrator
Drives discovery + handshake attempts until one succeeds or the retry
budget runs out.

    IDLE -> ATTEMPTING -> ESTABLISHED
                |  ^
                v  |
               FAILED -> ABORTED (retries exhausted or broken environment)

Each attempt owns a freshly bound listener socket and a freshly bound
handshake socket; both are closed when the attempt ends, whatever the
outcome. Only the worker identity is carried from one attempt to the next.
"""

import enum
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from prometheus_client import Counter, Gauge

from pydistrib_worker.controller.config_loader import WorkerConfig
from pydistrib_worker.identity import WorkerIdentity
from pydistrib_worker.probes.handshake import HandshakeInitiator
from pydistrib_worker.probes.multicast_listener import MulticastListener
from pydistrib_worker.sockets import SocketFactory

logger = logging.getLogger(__name__)

attempts_counter = Counter(
    'pydistrib_worker_attempts_total',
    'Discovery + handshake attempts by outcome',
    ['outcome']
)
established_gauge = Gauge(
    'pydistrib_worker_established',
    'Handshake established with a server (1=yes, 0=no)'
)


class ConnectionState(enum.Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    FAILED = "failed"
    ESTABLISHED = "established"
    ABORTED = "aborted"


@dataclass
class ConnectionOutcome:
    """Final result of ConnectionOrchestrator.connect()"""
    established: bool
    server_address: Optional[Tuple[str, int]]
    attempts: int
    reason: Optional[str] = None


class Attempt:
    """One discovery + handshake cycle; a context manager owning its sockets"""

    def __init__(self, number: int, config: WorkerConfig, socket_factory: SocketFactory):
        self.number = number
        self.config = config
        self.socket_factory = socket_factory
        self.listener_sock = None
        self.handshake_sock = None

    def __enter__(self) -> "Attempt":
        try:
            self.handshake_sock = self.socket_factory.open_handshake_socket(self.config.handshake_timeout)
            self.listener_sock = self.socket_factory.open_listener(
                self.config.multicast_group, self.config.discovery_port, self.config.listen_timeout
            )
        except BaseException:
            self.close()
            raise
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def close(self):
        for sock in (self.listener_sock, self.handshake_sock):
            if sock is not None:
                sock.close()
        self.listener_sock = None
        self.handshake_sock = None

    def run(self, identity: WorkerIdentity) -> Tuple[Optional[Tuple[str, int]], Optional[str]]:
        """Returns (server_address, None) on success or (None, reason) on failure"""
        discovery = MulticastListener(self.listener_sock).listen(self.config.listen_timeout)
        if not discovery.success:
            return None, f"listen {discovery.error.value}"

        result = HandshakeInitiator(self.handshake_sock).handshake(
            discovery.server_address, identity, self.config.handshake_timeout
        )
        if not result.success:
            return None, f"handshake {result.error.value}"

        return discovery.server_address, None


class ConnectionOrchestrator:
    """Retries attempts up to config.max_retries with the configured backoff"""

    def __init__(self, config: WorkerConfig, identity: Optional[WorkerIdentity] = None,
                 socket_factory: Optional[SocketFactory] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.identity = identity or WorkerIdentity.generate()
        self.socket_factory = socket_factory or SocketFactory()
        self.sleep = sleep
        self.state = ConnectionState.IDLE
        self.attempt = 0

    def _transition(self, state: ConnectionState):
        logger.debug(f"State {self.state.value} -> {state.value}")
        self.state = state

    def connect(self) -> ConnectionOutcome:
        """
        Run attempts until one is established or max_retries have failed.

        DiscoveryEnvironmentError from socket setup aborts immediately and is
        re-raised to the caller; no further attempts are made.
        """
        if self.state is not ConnectionState.IDLE:
            raise RuntimeError(f"connect() called in state {self.state.value}")

        max_retries = self.config.max_retries
        reason = None

        while self.attempt < max_retries:
            self.attempt += 1
            self._transition(ConnectionState.ATTEMPTING)
            logger.info(f"Attempt {self.attempt}/{max_retries}: listening on "
                        f"{self.config.multicast_group}:{self.config.discovery_port}")

            try:
                with Attempt(self.attempt, self.config, self.socket_factory) as attempt:
                    server_address, reason = attempt.run(self.identity)
            except OSError:
                self._transition(ConnectionState.ABORTED)
                raise

            if server_address is not None:
                self._transition(ConnectionState.ESTABLISHED)
                attempts_counter.labels(outcome='established').inc()
                established_gauge.set(1)
                return ConnectionOutcome(established=True, server_address=server_address,
                                         attempts=self.attempt)

            self._transition(ConnectionState.FAILED)
            attempts_counter.labels(outcome='failed').inc()
            logger.warning(f"Attempt {self.attempt}/{max_retries} failed: {reason}")

            if self.attempt < max_retries:
                delay = self.config.backoff.delay_for(self.attempt)
                if delay > 0:
                    logger.info(f"Retrying in {delay:.2f}s")
                    self.sleep(delay)

        self._transition(ConnectionState.ABORTED)
        established_gauge.set(0)
        return ConnectionOutcome(established=False, server_address=None,
                                 attempts=self.attempt, reason=reason)
