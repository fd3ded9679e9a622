# hubmux/core/subscription/registry.py
"""
Connection registry: one HubConnection per hub address.

Connections are created lazily when the first registration for an address
is attached and stopped as soon as the last one is detached.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Iterator, Sequence

from hubmux.contracts.message import MessageDecoder
from hubmux.contracts.registration import MatchCallback, PredicateLike, Registration
from hubmux.contracts.transport import Transport
from hubmux.core.config import settings
from hubmux.core.subscription.connection import HubConnection
from hubmux.exceptions import ConnectionStateError, HubConnectionError, HubmuxError

logger = logging.getLogger(__name__)


TransportFactory = Callable[[str], Transport]


def _default_transport_factory(address: str) -> Transport:
    from hubmux.core.transport import ZmqTransport

    return ZmqTransport.from_settings(address, settings)


class ConnectionRegistry:
    """
    Thread-safe registry of hub connections keyed by hub address.

    Attach and detach for the same address are serialised against
    connection creation and teardown, so a registration is never added to
    a connection that is being torn down.

    Example:
        registry = ConnectionRegistry()

        registration = registry.attach(
            "tcp://hub.fedoraproject.org:9940",
            "org.fedoraproject.prod.buildsys.build.state.change",
            on_match=handle_message,
            predicates=[FieldCheck("owner", "ralph")],
        )

        # Later...
        registry.detach(registration)
    """

    def __init__(
        self,
        transport_factory: TransportFactory | None = None,
        decoder: MessageDecoder | None = None,
        stop_timeout: float | None = None,
    ) -> None:
        if decoder is None:
            from hubmux.core.decoder import FedmsgDecoder

            decoder = FedmsgDecoder()

        self._transport_factory = transport_factory or _default_transport_factory
        self._decoder = decoder
        self._stop_timeout = (
            stop_timeout if stop_timeout is not None else settings.stop_timeout
        )
        self._connections: dict[str, HubConnection] = {}
        self._lock = threading.Lock()

    def attach(
        self,
        hub_address: str,
        topic: str,
        on_match: MatchCallback,
        predicates: Sequence[PredicateLike] = (),
    ) -> Registration:
        """
        Register interest in a topic on a hub.

        Returns:
            The registration handle to pass to ``detach()``.

        Raises:
            HubConnectionError: If no connection to the hub can be created.
        """
        registration = Registration(
            hub_address=hub_address,
            topic=topic,
            on_match=on_match,
            predicates=predicates,
        )
        return self.attach_registration(registration)

    def attach_registration(self, registration: Registration) -> Registration:
        """
        Attach an existing registration to the connection for its hub.

        Raises:
            HubConnectionError: If no connection to the hub can be created.
        """
        address = registration.hub_address

        with self._lock:
            connection = self._connections.get(address)

            if connection is None:
                connection = self._create_connection(address)
                self._connections[address] = connection
            elif not connection.is_running:
                connection = self._replace_connection(connection)

            try:
                connection.add_registration(registration)
            except ConnectionStateError:
                # Receive loop exited after the check above
                connection = self._replace_connection(connection)
                connection.add_registration(registration)

        logger.info(
            "Attached registration '%s' to %s for topic '%s'",
            registration.id,
            address,
            registration.topic,
        )
        return registration

    def detach(self, registration: Registration) -> bool:
        """
        Detach a registration, stopping its connection if it was the last one.

        Returns:
            True if the registration was attached.
        """
        address = registration.hub_address

        with self._lock:
            connection = self._connections.get(address)
            if connection is None:
                logger.warning(
                    "Trying to detach registration '%s' from non-existent "
                    "hub connection %s",
                    registration.id,
                    address,
                )
                return False

            removed = connection.remove_registration(registration)
            if connection.has_registrations():
                return removed

            del self._connections[address]

        connection.stop()
        logger.info("Closed hub connection to %s (no registrations left)", address)
        return removed

    def get(self, hub_address: str) -> HubConnection | None:
        with self._lock:
            return self._connections.get(hub_address)

    def addresses(self) -> list[str]:
        with self._lock:
            return list(self._connections)

    def close(self) -> None:
        """Stop every connection. Registrations are dropped."""
        with self._lock:
            connections = list(self._connections.values())
            self._connections.clear()

        for connection in connections:
            connection.stop()

        if connections:
            logger.info("Closed %d hub connection(s)", len(connections))

    def _replace_connection(self, stale: HubConnection) -> HubConnection:
        """
        Swap a connection whose receive loop has exited for a fresh one and
        carry its registrations over. Must be called with the lock held.
        """
        logger.warning(
            "Hub connection to %s is %s, reconnecting",
            stale.address,
            stale.state.value,
        )
        connection = self._create_connection(stale.address)
        for existing in stale.registrations:
            connection.add_registration(existing)
        self._connections[stale.address] = connection
        stale.stop(wait=False)
        return connection

    def _create_connection(self, address: str) -> HubConnection:
        try:
            transport = self._transport_factory(address)
        except HubmuxError:
            raise
        except Exception as exc:
            logger.error("Cannot connect to hub %s: %s", address, exc)
            raise HubConnectionError(f"Cannot connect to hub '{address}': {exc}") from exc

        connection = HubConnection(
            address=address,
            transport=transport,
            decoder=self._decoder,
            stop_timeout=self._stop_timeout,
        )
        connection.start()
        return connection

    def __enter__(self) -> "ConnectionRegistry":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def __contains__(self, hub_address: str) -> bool:
        with self._lock:
            return hub_address in self._connections

    def __iter__(self) -> Iterator[HubConnection]:
        with self._lock:
            return iter(list(self._connections.values()))
