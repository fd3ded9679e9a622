# hubmux/core/subscription/__init__.py
"""
Hub connection multiplexing.

This module provides:
- ConnectionRegistry for sharing one connection per hub address
- HubConnection owning the transport, ledger and receive loop
- SubscriptionLedger for reference-counted topic subscriptions

Example usage:

    from hubmux.core.subscription import ConnectionRegistry

    registry = ConnectionRegistry()

    registration = registry.attach(
        "tcp://hub.fedoraproject.org:9940",
        "org.fedoraproject.prod.git.receive",
        on_match=lambda message: print(message.topic),
    )

    registry.detach(registration)
"""

from hubmux.core.subscription.ledger import SubscriptionLedger
from hubmux.core.subscription.connection import ConnectionState, HubConnection
from hubmux.core.subscription.registry import ConnectionRegistry, TransportFactory

__all__ = [
    # Ledger
    "SubscriptionLedger",
    # Connection
    "HubConnection",
    "ConnectionState",
    # Registry
    "ConnectionRegistry",
    "TransportFactory",
]
