# hubmux/contracts/message.py
"""
Message contracts for data received from a hub.

A Message is produced once per received wire frame by a MessageDecoder and
never mutated afterwards.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class Message:
    """
    A decoded message received from the bus.

    Attributes:
        topic: Topic the message was published on.
        timestamp: Publication time in seconds since the epoch.
        body: Structured message content, opaque to the multiplexer.
        msg_id: Publisher-assigned message ID (if available).
    """

    topic: str
    timestamp: float
    body: Any = None
    msg_id: str | None = None


class MessageDecodeError(Exception):
    """Raised when a frame cannot be turned into a Message."""


class MalformedFrameError(MessageDecodeError):
    """The payload is not in the expected structured format at all."""


class MessageSchemaError(MessageDecodeError):
    """The payload is structured but does not have the expected shape."""


@runtime_checkable
class MessageDecoder(Protocol):
    """Protocol for wire decoders."""

    def decode(self, frames: list[bytes]) -> Message:
        """Decode the frames of one wire message, raising MessageDecodeError."""
        ...
