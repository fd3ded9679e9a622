# hubmux/contracts/__init__.py
"""Public contracts shared by the multiplexer and its collaborators."""

from hubmux.contracts.message import (
    MalformedFrameError,
    Message,
    MessageDecodeError,
    MessageDecoder,
    MessageSchemaError,
)
from hubmux.contracts.registration import (
    MatchCallback,
    Predicate,
    PredicateLike,
    Registration,
    evaluate_predicate,
)
from hubmux.contracts.transport import (
    ConnectionLost,
    Transport,
    TransportClosed,
    TransportError,
)

__all__ = [
    # Message
    "Message",
    "MessageDecoder",
    "MessageDecodeError",
    "MalformedFrameError",
    "MessageSchemaError",
    # Registration
    "Registration",
    "Predicate",
    "PredicateLike",
    "MatchCallback",
    "evaluate_predicate",
    # Transport
    "Transport",
    "TransportError",
    "TransportClosed",
    "ConnectionLost",
]
