# hubmux/core/subscription/connection.py
"""
A single long-lived subscription connection to one hub address.

The HubConnection owns the transport for its address, the subscription
ledger and the set of live registrations. A dedicated receive thread pulls
frames from the transport, decodes them and fans each message out to every
registration whose topic and predicates match.

The transport is only touched by the receive thread. Registration changes
made from other threads update the ledger under the connection lock and
queue a command; the receive thread applies queued commands between frames.
"""
from __future__ import annotations

import logging
import queue
import threading
from enum import Enum

from hubmux.contracts.message import (
    MalformedFrameError,
    Message,
    MessageDecodeError,
    MessageDecoder,
)
from hubmux.contracts.registration import Registration
from hubmux.contracts.transport import (
    ConnectionLost,
    Transport,
    TransportClosed,
    TransportError,
)
from hubmux.core.subscription.ledger import SubscriptionLedger
from hubmux.exceptions import ConnectionStateError

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class _Op(str, Enum):
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"
    BARRIER = "barrier"
    STOP = "stop"


class HubConnection:
    """
    Multiplexes many registrations over one transport connection.

    Lifecycle: ``CREATED -> RUNNING -> STOPPING -> STOPPED``. A stopped
    connection is never restarted; the registry creates a fresh one.

    Callbacks run on the receive thread, one after another. A slow or
    blocking ``on_match`` stalls delivery to every other registration on
    this hub address, so consumers should hand work off to another thread
    or queue instead of doing it inline.

    Example:
        connection = HubConnection(
            address="tcp://hub.example.org:9940",
            transport=ZmqTransport("tcp://hub.example.org:9940"),
            decoder=FedmsgDecoder(),
        )
        connection.start()

        connection.add_registration(registration)
        ...
        connection.remove_registration(registration)
        if not connection.has_registrations():
            connection.stop()
    """

    def __init__(
        self,
        address: str,
        transport: Transport,
        decoder: MessageDecoder,
        stop_timeout: float = 5.0,
    ) -> None:
        self._address = address
        self._transport = transport
        self._decoder = decoder
        self._stop_timeout = stop_timeout

        self._lock = threading.Lock()
        self._ledger = SubscriptionLedger()
        self._live: dict[Registration, None] = {}
        self._commands: queue.SimpleQueue[tuple[_Op, object]] = queue.SimpleQueue()

        self._state = ConnectionState.CREATED
        self._thread: threading.Thread | None = None
        self._stopped = threading.Event()

        self._message_count = 0
        self._dispatch_count = 0
        self._skipped_count = 0
        self._error_count = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def address(self) -> str:
        return self._address

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is ConnectionState.RUNNING

    @property
    def topics(self) -> list[str]:
        """Topics currently held in the subscription ledger."""
        with self._lock:
            return self._ledger.topics

    @property
    def registrations(self) -> list[Registration]:
        with self._lock:
            return list(self._live)

    def refcount(self, topic: str) -> int:
        with self._lock:
            return self._ledger.refcount(topic)

    @property
    def message_count(self) -> int:
        """Total decoded messages."""
        return self._message_count

    @property
    def dispatch_count(self) -> int:
        """Total callback invocations."""
        return self._dispatch_count

    @property
    def skipped_count(self) -> int:
        """Frames skipped because they were not structured at all."""
        return self._skipped_count

    @property
    def error_count(self) -> int:
        """Decode, transport and callback errors."""
        return self._error_count

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the receive thread."""
        with self._lock:
            if self._state is not ConnectionState.CREATED:
                raise ConnectionStateError(
                    f"Cannot start connection to '{self._address}' "
                    f"in state '{self._state.value}'"
                )
            self._thread = threading.Thread(
                target=self._run,
                name=f"hubmux-{self._address}",
                daemon=True,
            )
            self._state = ConnectionState.RUNNING
            self._thread.start()

        logger.info("Started hub connection to %s", self._address)

    def stop(self, wait: bool = True) -> bool:
        """
        Stop the connection and release its transport.

        Args:
            wait: Wait up to ``stop_timeout`` seconds for the receive
                thread to exit. Ignored when called from the receive
                thread itself (e.g. from an ``on_match`` callback).

        Returns:
            True if the connection reached ``STOPPED``.
        """
        with self._lock:
            if self._state is ConnectionState.CREATED:
                self._state = ConnectionState.STOPPED
                self._transport.close()
                self._stopped.set()
                return True
            if self._state is ConnectionState.RUNNING:
                self._state = ConnectionState.STOPPING
                self._commands.put((_Op.STOP, None))
        self._transport.wakeup()

        if not wait or threading.current_thread() is self._thread:
            return self._stopped.is_set()

        if not self._stopped.wait(self._stop_timeout):
            logger.warning(
                "Receive thread for %s did not exit within %.1fs",
                self._address,
                self._stop_timeout,
            )
            return False
        return True

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the connection to reach ``STOPPED``."""
        return self._stopped.wait(timeout)

    def flush(self, timeout: float | None = None) -> bool:
        """
        Wait until every subscription change queued so far has been applied.

        Returns:
            True if the receive thread reached the barrier in time.
        """
        reached = threading.Event()
        with self._lock:
            if self._state is not ConnectionState.RUNNING:
                return False
            self._commands.put((_Op.BARRIER, reached))
        self._transport.wakeup()
        return reached.wait(timeout)

    # ------------------------------------------------------------------
    # Registrations
    # ------------------------------------------------------------------

    def add_registration(self, registration: Registration) -> None:
        """
        Add a registration and subscribe to its topic if needed.

        Raises:
            ConnectionStateError: If the connection is not running.
        """
        with self._lock:
            if self._state is not ConnectionState.RUNNING:
                raise ConnectionStateError(
                    f"Cannot add registration to connection '{self._address}' "
                    f"in state '{self._state.value}'"
                )
            if registration in self._live:
                logger.warning(
                    "Registration '%s' already attached to %s",
                    registration.id,
                    self._address,
                )
                return

            self._live[registration] = None
            if self._ledger.acquire(registration.topic):
                self._commands.put((_Op.SUBSCRIBE, registration.topic))
                wake = True
            else:
                wake = False

        if wake:
            self._transport.wakeup()

        logger.debug(
            "Added registration '%s' for topic '%s' on %s",
            registration.id,
            registration.topic,
            self._address,
        )

    def remove_registration(self, registration: Registration) -> bool:
        """
        Remove a registration and unsubscribe from its topic when no other
        live registration uses it.

        Returns:
            True if the registration was attached to this connection.
        """
        with self._lock:
            if registration not in self._live:
                logger.warning(
                    "Registration '%s' is not attached to %s",
                    registration.id,
                    self._address,
                )
                return False

            del self._live[registration]
            wake = False
            if self._ledger.release(registration.topic):
                if self._state is ConnectionState.RUNNING:
                    self._commands.put((_Op.UNSUBSCRIBE, registration.topic))
                    wake = True

        if wake:
            self._transport.wakeup()

        logger.debug(
            "Removed registration '%s' for topic '%s' on %s",
            registration.id,
            registration.topic,
            self._address,
        )
        return True

    def has_registrations(self) -> bool:
        with self._lock:
            return bool(self._live)

    # ------------------------------------------------------------------
    # Receive thread
    # ------------------------------------------------------------------

    def _run(self) -> None:
        try:
            while self._apply_commands():
                try:
                    frames = self._transport.receive()
                except TransportClosed:
                    if self._state is ConnectionState.STOPPING:
                        logger.debug("Transport for %s closed", self._address)
                    else:
                        logger.warning(
                            "Transport for %s closed unexpectedly", self._address
                        )
                    break
                except ConnectionLost as exc:
                    self._error_count += 1
                    logger.error("Lost connection to %s: %s", self._address, exc)
                    break
                except TransportError as exc:
                    self._error_count += 1
                    logger.warning(
                        "Receive error on %s: %s, continuing", self._address, exc
                    )
                    continue

                if not frames:
                    continue

                self._handle_frames(frames)
        except Exception:
            logger.exception("Receive loop for %s crashed", self._address)
        finally:
            self._finish()

    def _apply_commands(self) -> bool:
        """Apply queued commands. Returns False once STOP is reached."""
        while True:
            try:
                op, arg = self._commands.get_nowait()
            except queue.Empty:
                return True

            if op is _Op.STOP:
                return False
            if op is _Op.BARRIER:
                if isinstance(arg, threading.Event):
                    arg.set()
                continue

            topic = str(arg)
            try:
                if op is _Op.SUBSCRIBE:
                    self._transport.subscribe(topic)
                else:
                    self._transport.unsubscribe(topic)
            except TransportError as exc:
                self._error_count += 1
                logger.error(
                    "Failed to %s topic '%s' on %s: %s",
                    op.value,
                    topic,
                    self._address,
                    exc,
                )
                continue

            if op is _Op.SUBSCRIBE:
                logger.info("Subscribed to '%s' on %s", topic, self._address)
            else:
                logger.info("Unsubscribed from '%s' on %s", topic, self._address)

    def _handle_frames(self, frames: list[bytes]) -> None:
        try:
            message = self._decoder.decode(frames)
        except MalformedFrameError:
            # Shared buses carry unstructured traffic too
            self._skipped_count += 1
            return
        except MessageDecodeError as exc:
            self._error_count += 1
            logger.error("Undecodable message on %s: %s", self._address, exc)
            return

        self._message_count += 1
        self.dispatch(message)

    def dispatch(self, message: Message) -> int:
        """
        Deliver a message to every matching live registration.

        Predicates and callbacks run outside the connection lock, so
        registrations may be added or removed while a message is being
        delivered.

        Returns:
            Number of callbacks invoked.
        """
        with self._lock:
            candidates = [r for r in self._live if r.topic == message.topic]

        if not candidates:
            logger.debug(
                "No registrations match topic '%s' on %s",
                message.topic,
                self._address,
            )
            return 0

        invoked = 0
        for registration in candidates:
            if not registration.matches(message):
                continue
            invoked += 1
            self._invoke(registration, message)

        logger.debug(
            "Dispatched '%s' to %d of %d registration(s) on %s",
            message.topic,
            invoked,
            len(candidates),
            self._address,
        )
        return invoked

    def _invoke(self, registration: Registration, message: Message) -> None:
        self._dispatch_count += 1
        try:
            registration.on_match(message)
        except Exception as exc:
            self._error_count += 1
            logger.error(
                "Callback for registration '%s' failed on '%s': %s",
                registration.id,
                message.topic,
                exc,
                exc_info=True,
            )

    def _finish(self) -> None:
        with self._lock:
            # Loop died on its own; refuse new registrations while closing
            if self._state is ConnectionState.RUNNING:
                self._state = ConnectionState.STOPPING

        try:
            self._transport.close()
        except Exception as exc:
            logger.warning("Error closing transport for %s: %s", self._address, exc)

        with self._lock:
            self._state = ConnectionState.STOPPED
            pending = self._drain_barriers()
        for reached in pending:
            reached.set()
        self._stopped.set()

        logger.info(
            "Stopped hub connection to %s (messages=%d, dispatched=%d, errors=%d)",
            self._address,
            self._message_count,
            self._dispatch_count,
            self._error_count,
        )

    def _drain_barriers(self) -> list[threading.Event]:
        barriers: list[threading.Event] = []
        while True:
            try:
                op, arg = self._commands.get_nowait()
            except queue.Empty:
                return barriers
            if op is _Op.BARRIER and isinstance(arg, threading.Event):
                barriers.append(arg)

