# hubmux/contracts/transport.py
"""
Transport contracts for hub connections.

A transport is owned by exactly one HubConnection. Every method except
``wakeup()`` is only ever called from that connection's receive thread.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable


class TransportError(Exception):
    """Transient transport failure; the receive loop keeps going."""


class ConnectionLost(TransportError):
    """The underlying connection is no longer usable."""


class TransportClosed(TransportError):
    """The transport has been terminated."""


@runtime_checkable
class Transport(Protocol):
    """Protocol for subscription transports (one per hub address)."""

    def subscribe(self, topic: str) -> None:
        """Start receiving messages for a topic."""
        ...

    def unsubscribe(self, topic: str) -> None:
        """Stop receiving messages for a topic."""
        ...

    def receive(self) -> list[bytes] | None:
        """
        Block until a frame arrives or ``wakeup()`` is called.

        Returns:
            The frames of one wire message, or None when woken up
            without anything to deliver.

        Raises:
            TransportClosed: If the transport was terminated.
            ConnectionLost: If the connection became unusable.
            TransportError: On any other (transient) failure.
        """
        ...

    def wakeup(self) -> None:
        """Make a pending or the next ``receive()`` return. Thread-safe."""
        ...

    def close(self) -> None:
        """Release the transport. Safe to call more than once."""
        ...
