# tests/conftest.py
from __future__ import annotations

import json
import logging
import threading
from collections import deque
from typing import Any

import pytest

from hubmux.contracts.transport import TransportClosed, TransportError
from hubmux.core.decoder import FedmsgDecoder
from hubmux.core.subscription.connection import HubConnection
from hubmux.core.subscription.registry import ConnectionRegistry

_WAKE = object()


def envelope(topic: str, timestamp: float = 1000.0, body: Any = None, **extra: Any) -> list[bytes]:
    payload = {"topic": topic, "timestamp": timestamp, "msg": body or {}, **extra}
    return [topic.encode("utf-8"), json.dumps(payload).encode("utf-8")]


class FakeTransport:
    """In-memory transport: records subscription calls, replays fed frames."""

    def __init__(self, address: str = "fake://hub") -> None:
        self.address = address
        self.calls: list[tuple[str, str]] = []
        self.closed = False
        self.close_count = 0
        self._items: deque[Any] = deque()
        self._cond = threading.Condition()
        self._idle = False
        self.close_started = threading.Event()
        self.close_gate: threading.Event | None = None

    def subscribe(self, topic: str) -> None:
        with self._cond:
            self.calls.append(("subscribe", topic))

    def unsubscribe(self, topic: str) -> None:
        with self._cond:
            self.calls.append(("unsubscribe", topic))

    def receive(self) -> list[bytes] | None:
        with self._cond:
            while not self._items:
                if self.closed:
                    raise TransportClosed("fake transport closed")
                self._idle = True
                self._cond.notify_all()
                self._cond.wait()
            self._idle = False
            item = self._items.popleft()

        if item is _WAKE:
            return None
        if isinstance(item, BaseException):
            raise item
        return item

    def wakeup(self) -> None:
        with self._cond:
            if self.closed:
                return
            self._items.append(_WAKE)
            self._cond.notify_all()

    def close(self) -> None:
        self.close_started.set()
        if self.close_gate is not None:
            self.close_gate.wait()
        with self._cond:
            self.closed = True
            self.close_count += 1
            self._cond.notify_all()

    # -- test helpers -------------------------------------------------------

    def feed(self, *items: Any) -> None:
        """Queue raw frame lists (or exceptions to raise from receive)."""
        with self._cond:
            self._items.extend(items)
            self._cond.notify_all()

    def feed_message(self, topic: str, timestamp: float = 1000.0, body: Any = None) -> None:
        self.feed(envelope(topic, timestamp, body))

    def wait_idle(self, timeout: float = 2.0) -> bool:
        """Wait until the receive loop is blocked with nothing left to process."""
        with self._cond:
            return self._cond.wait_for(
                lambda: self.closed or (self._idle and not self._items),
                timeout,
            )

    def count(self, op: str, topic: str) -> int:
        with self._cond:
            return self.calls.count((op, topic))


class FakeTransportFactory:
    """Transport factory recording every transport it creates."""

    def __init__(self) -> None:
        self.created: list[FakeTransport] = []

    def __call__(self, address: str) -> FakeTransport:
        if address.startswith("bad://"):
            raise TransportError(f"Cannot connect to '{address}'")
        transport = FakeTransport(address)
        self.created.append(transport)
        return transport

    def latest(self, address: str) -> FakeTransport:
        return [t for t in self.created if t.address == address][-1]


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def connection(transport: FakeTransport):
    conn = HubConnection(
        address=transport.address,
        transport=transport,
        decoder=FedmsgDecoder(),
        stop_timeout=2.0,
    )
    conn.start()
    assert transport.wait_idle()
    yield conn
    conn.stop()


@pytest.fixture
def transports() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def registry(transports: FakeTransportFactory):
    reg = ConnectionRegistry(
        transport_factory=transports,
        decoder=FedmsgDecoder(),
        stop_timeout=2.0,
    )
    yield reg
    reg.close()


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture
def make_frames():
    return envelope
