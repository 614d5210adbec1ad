"""
Shared fakes for worker discovery tests

FakeSocket replays scripted datagrams; an empty script behaves like a
receive timeout. FakeSocketFactory hands out one scripted listener and one
scripted handshake socket per attempt and records everything it created.
"""

import os
import socket
import sys
from pathlib import Path

import pytest

# Allow running without an editable install
SRC = Path(__file__).resolve().parents[1] / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from pydistrib_worker.identity import WorkerIdentity  # noqa: E402

WORKER_ID = "3f2b8c1e-9d4a-4e6f-8b2a-1c5d7e9f0a12"


class FakeSocket:
    def __init__(self, events=None, sockname=("0.0.0.0", 54321)):
        self.events = list(events or [])
        self.sockname = sockname
        self.sent = []
        self.timeouts = []
        self.recv_calls = 0
        self.closed = False

    def settimeout(self, value):
        self.timeouts.append(value)

    def recvfrom(self, bufsize):
        self.recv_calls += 1
        if not self.events:
            raise socket.timeout("timed out")
        event = self.events.pop(0)
        if isinstance(event, BaseException):
            raise event
        return event

    def sendto(self, data, address):
        self.sent.append((data, address))
        return len(data)

    def getsockname(self):
        return self.sockname

    def close(self):
        self.closed = True


class FakeSocketFactory:
    """``attempts`` is a list of (listener_events, handshake_events) per attempt"""

    def __init__(self, attempts=None, listener_error=None):
        self.attempts = list(attempts or [])
        self.listener_error = listener_error
        self.listeners = []
        self.handshake_sockets = []

    def _script(self, index):
        if index < len(self.attempts):
            return self.attempts[index]
        return ([], [])

    def open_handshake_socket(self, timeout):
        sock = FakeSocket(self._script(len(self.handshake_sockets))[1])
        self.handshake_sockets.append(sock)
        return sock

    def open_listener(self, group, port, timeout):
        if self.listener_error is not None:
            raise self.listener_error
        sock = FakeSocket(self._script(len(self.listeners))[0])
        self.listeners.append(sock)
        return sock

    @property
    def all_sockets(self):
        return self.listeners + self.handshake_sockets


def ack(identity=WORKER_ID):
    return f"PyDistrib HANDSHAKE ACK|{identity}".encode()


@pytest.fixture
def identity():
    return WorkerIdentity(WORKER_ID)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep PYDISTRIB_* variables from the host out of the tests"""
    for name in list(os.environ):
        if name.startswith("PYDISTRIB_"):
            monkeypatch.delenv(name)
