# hubmux/core/trigger.py
"""
Build triggers driven by hub messages.

A HubTrigger ties one registration to a build scheduler: every matching
message schedules a build with a TriggerCause describing the message.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol, Sequence, runtime_checkable

from hubmux.contracts.message import Message
from hubmux.contracts.registration import PredicateLike, Registration
from hubmux.core.subscription.registry import ConnectionRegistry
from hubmux.exceptions import ConnectionStateError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TriggerCause:
    """Why a build was scheduled."""

    message: Message

    @property
    def timestamp(self) -> datetime:
        return datetime.fromtimestamp(self.message.timestamp, tz=timezone.utc)

    @property
    def short_description(self) -> str:
        when = self.timestamp.strftime("%Y-%m-%d %H:%M:%S %Z")
        return f"Build triggered by bus message: ({when}) {self.message.topic}"

    def __str__(self) -> str:
        return self.short_description


@runtime_checkable
class BuildScheduler(Protocol):
    """Protocol for whatever queues builds in the host system."""

    def schedule_build(self, cause: TriggerCause) -> Any: ...


class HubTrigger:
    """
    Schedules builds when messages on a topic pass all checks.

    ``schedule_build`` is called on the hub's receive thread and should only
    enqueue work.

    Example:
        trigger = HubTrigger(
            hub_address="tcp://hub.fedoraproject.org:9940",
            topic="org.fedoraproject.prod.git.receive",
            checks=[FieldCheck("commit.branch", "master")],
        )
        trigger.start(scheduler, registry)
        ...
        trigger.stop()
    """

    def __init__(
        self,
        hub_address: str,
        topic: str,
        checks: Sequence[PredicateLike] | None = None,
    ) -> None:
        self.hub_address = hub_address
        self.topic = topic
        self.checks: tuple[PredicateLike, ...] = tuple(checks or ())

        self._lock = threading.Lock()
        self._scheduler: BuildScheduler | None = None
        self._registry: ConnectionRegistry | None = None
        self._registration: Registration | None = None

    @property
    def is_started(self) -> bool:
        return self._registration is not None

    def start(self, scheduler: BuildScheduler, registry: ConnectionRegistry) -> None:
        with self._lock:
            if self._registration is not None:
                raise ConnectionStateError(
                    f"Trigger for '{self.topic}' on {self.hub_address} already started"
                )
            self._scheduler = scheduler
            self._registry = registry
            self._registration = registry.attach(
                self.hub_address,
                self.topic,
                on_match=self.run,
                predicates=self.checks,
            )

    def stop(self) -> None:
        with self._lock:
            registration, self._registration = self._registration, None
            registry = self._registry

        if registration is None or registry is None:
            return
        registry.detach(registration)

    def run(self, message: Message) -> None:
        scheduler = self._scheduler
        if scheduler is None:
            logger.warning("Trigger for '%s' fired before start", self.topic)
            return

        cause = TriggerCause(message)
        logger.info("Scheduling build: %s", cause.short_description)
        scheduler.schedule_build(cause)
