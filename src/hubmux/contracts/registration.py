# hubmux/contracts/registration.py
"""
Registration contracts.

A registration is one consumer's standing interest in messages published on
a topic at a hub address, optionally narrowed by predicates. Registrations
compare by identity: two registrations with identical fields are still two
distinct consumers.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Protocol, Sequence, Union, runtime_checkable
from uuid import uuid4

from hubmux.contracts.message import Message

logger = logging.getLogger(__name__)


@runtime_checkable
class Predicate(Protocol):
    """A boolean test against a message's content."""

    def evaluate(self, message: Message) -> bool: ...


PredicateLike = Union[Predicate, Callable[[Message], bool]]

# Invoked on the connection's receive thread. A slow callback delays
# delivery to every other registration on the same hub address.
MatchCallback = Callable[[Message], None]


def evaluate_predicate(predicate: PredicateLike, message: Message) -> bool:
    """Evaluate a single predicate, treating any failure as a non-match."""
    try:
        if isinstance(predicate, Predicate):
            return bool(predicate.evaluate(message))
        return bool(predicate(message))
    except Exception as exc:
        logger.warning(
            "Predicate %r failed on topic '%s': %s",
            predicate,
            message.topic,
            exc,
        )
        return False


@dataclass(frozen=True, eq=False)
class Registration:
    """
    One consumer's interest in a (hub address, topic, predicates) combination.

    Attributes:
        hub_address: Connection string of the hub to listen on.
        topic: Exact topic string to match.
        on_match: Callback invoked with every fully matching message.
        predicates: Tests evaluated in order after the topic matches.
        id: Identifier used in log lines only.
    """

    hub_address: str
    topic: str
    on_match: MatchCallback
    predicates: Sequence[PredicateLike] = ()
    id: str = field(default_factory=lambda: f"reg-{uuid4().hex[:8]}")

    def __post_init__(self) -> None:
        object.__setattr__(self, "predicates", tuple(self.predicates))

    def matches(self, message: Message) -> bool:
        """
        Check whether a message satisfies this registration.

        The topic must be equal to ``message.topic``. Predicates are then
        evaluated in declared order and evaluation stops at the first one
        that does not pass. No predicates means every message on the topic
        matches.
        """
        if message.topic != self.topic:
            return False
        return all(evaluate_predicate(p, message) for p in self.predicates)
