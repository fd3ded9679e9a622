# hubmux/__init__.py
"""
Multiplexed topic subscriptions over shared hub connections.

Many registrations for the same hub address share one connection; topics are
reference counted and each message is delivered to every registration whose
topic and predicates match.
"""

from hubmux.contracts import Message, Registration
from hubmux.core.checks import FieldCheck
from hubmux.core.subscription import ConnectionRegistry, HubConnection
from hubmux.core.trigger import BuildScheduler, HubTrigger, TriggerCause

__all__ = [
    "Message",
    "Registration",
    "FieldCheck",
    "ConnectionRegistry",
    "HubConnection",
    "HubTrigger",
    "TriggerCause",
    "BuildScheduler",
]
