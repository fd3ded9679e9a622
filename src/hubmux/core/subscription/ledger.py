# hubmux/core/subscription/ledger.py
"""
Per-connection bookkeeping of subscribed topics.

A topic is present in the ledger exactly while at least one attached
registration needs it. The ledger itself does not talk to the transport;
it tells the caller when a subscribe or unsubscribe is due.
"""
from __future__ import annotations

from typing import Iterator


class SubscriptionLedger:
    """
    Reference-counted set of topics.

    Not thread-safe on its own; HubConnection guards it with its lock.

    Example:
        ledger = SubscriptionLedger()

        ledger.acquire("pkg.build")   # True  -> subscribe now
        ledger.acquire("pkg.build")   # False
        ledger.release("pkg.build")   # False
        ledger.release("pkg.build")   # True  -> unsubscribe now
    """

    def __init__(self) -> None:
        self._refcounts: dict[str, int] = {}

    def acquire(self, topic: str) -> bool:
        """
        Count one more user of a topic.

        Returns:
            True if this is the first user, i.e. the topic must be subscribed.
        """
        count = self._refcounts.get(topic, 0) + 1
        self._refcounts[topic] = count
        return count == 1

    def release(self, topic: str) -> bool:
        """
        Count one user less of a topic.

        Returns:
            True if this was the last user, i.e. the topic must be unsubscribed.

        Raises:
            KeyError: If the topic is not in the ledger.
        """
        try:
            count = self._refcounts[topic] - 1
        except KeyError:
            raise KeyError(f"Topic '{topic}' is not subscribed")

        if count == 0:
            del self._refcounts[topic]
            return True

        self._refcounts[topic] = count
        return False

    def refcount(self, topic: str) -> int:
        return self._refcounts.get(topic, 0)

    @property
    def topics(self) -> list[str]:
        return list(self._refcounts)

    def __len__(self) -> int:
        return len(self._refcounts)

    def __contains__(self, topic: object) -> bool:
        return topic in self._refcounts

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._refcounts))
