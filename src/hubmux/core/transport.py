# hubmux/core/transport.py
"""
ZeroMQ SUB transport for hub connections.

Each transport owns a private context, a SUB socket connected to the hub
and an inproc PAIR pair used to wake up a blocked ``receive()``. Only
``wakeup()`` may be called from a thread other than the one receiving.
"""
from __future__ import annotations

import errno
import logging
import threading
from typing import TYPE_CHECKING
from uuid import uuid4

import zmq

from hubmux.contracts.transport import ConnectionLost, TransportClosed, TransportError

if TYPE_CHECKING:
    from hubmux.core.config import Settings

logger = logging.getLogger(__name__)


def _translate(exc: zmq.ZMQError) -> TransportError:
    if isinstance(exc, zmq.ContextTerminated) or exc.errno == zmq.ETERM:
        return TransportClosed(str(exc))
    if exc.errno in (zmq.ENOTSOCK, errno.EBADF):
        return ConnectionLost(str(exc))
    return TransportError(str(exc))


class ZmqTransport:
    """
    Subscription transport backed by a ZeroMQ SUB socket.

    Example:
        transport = ZmqTransport("tcp://hub.fedoraproject.org:9940")
        transport.subscribe("org.fedoraproject.prod.git.receive")

        frames = transport.receive()   # [b"<topic>", b"<json envelope>"]

        transport.close()
    """

    def __init__(
        self,
        address: str,
        io_threads: int = 1,
        linger_ms: int = 0,
        rcvhwm: int = 1000,
    ) -> None:
        self._address = address
        self._context = zmq.Context(io_threads)
        self._closed = False
        self._wake_lock = threading.Lock()

        try:
            self._socket = self._context.socket(zmq.SUB)
            self._socket.setsockopt(zmq.LINGER, linger_ms)
            self._socket.setsockopt(zmq.RCVHWM, rcvhwm)
            self._socket.connect(address)

            wake_address = f"inproc://hubmux-wake-{uuid4().hex}"
            self._wake_rx = self._context.socket(zmq.PAIR)
            self._wake_rx.setsockopt(zmq.LINGER, 0)
            self._wake_rx.bind(wake_address)
            self._wake_tx = self._context.socket(zmq.PAIR)
            self._wake_tx.setsockopt(zmq.LINGER, 0)
            self._wake_tx.connect(wake_address)
        except zmq.ZMQError as exc:
            self._context.destroy(linger=0)
            raise TransportError(f"Cannot connect to '{address}': {exc}") from exc

        self._poller = zmq.Poller()
        self._poller.register(self._socket, zmq.POLLIN)
        self._poller.register(self._wake_rx, zmq.POLLIN)

        logger.debug("Connecting to %s", address)

    @classmethod
    def from_settings(cls, address: str, settings: Settings) -> "ZmqTransport":
        return cls(
            address,
            io_threads=settings.zmq_io_threads,
            linger_ms=settings.zmq_linger_ms,
            rcvhwm=settings.zmq_rcvhwm,
        )

    @property
    def address(self) -> str:
        return self._address

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self, topic: str) -> None:
        try:
            self._socket.setsockopt(zmq.SUBSCRIBE, topic.encode("utf-8"))
        except zmq.ZMQError as exc:
            raise _translate(exc) from exc

    def unsubscribe(self, topic: str) -> None:
        try:
            self._socket.setsockopt(zmq.UNSUBSCRIBE, topic.encode("utf-8"))
        except zmq.ZMQError as exc:
            raise _translate(exc) from exc

    def receive(self) -> list[bytes] | None:
        if self._closed:
            raise TransportClosed(f"Transport for '{self._address}' is closed")

        try:
            ready = dict(self._poller.poll())

            if self._wake_rx in ready:
                self._drain_wakeups()

            if self._socket in ready:
                return self._socket.recv_multipart(zmq.NOBLOCK)
        except zmq.Again:
            return None
        except zmq.ZMQError as exc:
            raise _translate(exc) from exc

        return None

    def wakeup(self) -> None:
        with self._wake_lock:
            if self._closed:
                return
            try:
                self._wake_tx.send(b"", zmq.NOBLOCK)
            except zmq.Again:
                # A wakeup is already pending
                pass

    def close(self) -> None:
        with self._wake_lock:
            if self._closed:
                return
            self._closed = True
            self._wake_tx.close()

        self._wake_rx.close()
        self._socket.close()
        self._context.term()
        logger.debug("Closed transport for %s", self._address)

    def _drain_wakeups(self) -> None:
        while True:
            try:
                self._wake_rx.recv(zmq.NOBLOCK)
            except zmq.Again:
                return
