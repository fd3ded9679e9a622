# hubmux/core/decoder.py
"""
Decoder for fedmsg-style JSON envelopes.

A hub publishes each message as ``[topic, envelope]`` frames where the
envelope is a JSON object::

    {
        "topic": "org.fedoraproject.prod.buildsys.build.state.change",
        "timestamp": 1438336582.0,
        "msg_id": "2015-4d7c...",
        "msg": {"owner": "ralph", "name": "python-requests", ...}
    }

Only the last frame is decoded; a leading frame is the ZeroMQ topic prefix.
"""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from hubmux.contracts.message import (
    MalformedFrameError,
    Message,
    MessageSchemaError,
)


class FedmsgEnvelope(BaseModel):
    """Wire envelope. Unknown keys (``i``, ``username``, ``crypto``...) are kept."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    topic: str
    timestamp: float
    body: Any = Field(default=None, alias="msg")
    msg_id: str | None = None


class FedmsgDecoder:
    """Turns wire frames into Message objects."""

    def decode(self, frames: list[bytes]) -> Message:
        if not frames:
            raise MalformedFrameError("No frames to decode")

        payload = frames[-1]
        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedFrameError(f"Payload is not UTF-8: {exc}") from exc

        try:
            envelope = FedmsgEnvelope.model_validate_json(text)
        except ValidationError as exc:
            if any(err["type"] == "json_invalid" for err in exc.errors()):
                raise MalformedFrameError(f"Payload is not JSON: {exc}") from exc
            raise MessageSchemaError(f"Unexpected envelope shape: {exc}") from exc

        return Message(
            topic=envelope.topic,
            timestamp=envelope.timestamp,
            body=envelope.body,
            msg_id=envelope.msg_id,
        )
