# tests/core/subscription/test_connection_registry.py
from __future__ import annotations

import dataclasses
import logging
import threading

import pytest

from hubmux.contracts.registration import Registration
from hubmux.contracts.transport import ConnectionLost
from hubmux.core.subscription.connection import ConnectionState
from hubmux.exceptions import ConnectionStateError, HubConnectionError

REGISTRY_LOGGER = "hubmux.core.subscription.registry"


class TestAttach:
    def test_first_attach_creates_connection(self, registry, transports):
        registry.attach("bus://x", "pkg.build", on_match=lambda m: None)

        assert registry.addresses() == ["bus://x"]
        assert len(transports.created) == 1
        assert registry.get("bus://x").state is ConnectionState.RUNNING

    def test_same_address_shares_connection(self, registry, transports):
        registry.attach("bus://x", "pkg.build", on_match=lambda m: None)
        registry.attach("bus://x", "pkg.test", on_match=lambda m: None)

        assert len(transports.created) == 1
        assert len(registry.get("bus://x").registrations) == 2

    def test_different_addresses_get_own_connections(self, registry, transports):
        registry.attach("bus://x", "pkg.build", on_match=lambda m: None)
        registry.attach("bus://y", "pkg.build", on_match=lambda m: None)

        assert sorted(registry.addresses()) == ["bus://x", "bus://y"]
        assert len(transports.created) == 2
        assert registry.get("bus://x") is not registry.get("bus://y")

    def test_attach_registration_returns_same_handle(self, registry):
        registration = Registration(hub_address="bus://x", topic="t", on_match=lambda m: None)

        assert registry.attach_registration(registration) is registration
        assert registry.get("bus://x").registrations == [registration]

    def test_unreachable_hub_raises(self, registry):
        with pytest.raises(HubConnectionError, match="bad://nowhere"):
            registry.attach("bad://nowhere", "pkg.build", on_match=lambda m: None)

        assert "bad://nowhere" not in registry
        assert len(registry) == 0

    def test_dead_connection_is_replaced(self, registry, transports):
        received = []
        first = registry.attach("bus://x", "pkg.build", on_match=received.append)
        dead = registry.get("bus://x")
        transports.latest("bus://x").feed(ConnectionLost("reset by peer"))
        assert dead.join(2.0) is True

        second = registry.attach("bus://x", "pkg.test", on_match=received.append)
        fresh = registry.get("bus://x")

        assert fresh is not dead
        assert fresh.is_running is True
        assert set(fresh.registrations) == {first, second}

        transport = transports.latest("bus://x")
        assert transport.wait_idle()
        assert transport.count("subscribe", "pkg.build") == 1
        assert transport.count("subscribe", "pkg.test") == 1

    def test_attach_while_connection_is_closing(self, registry, transports):
        first = registry.attach("bus://x", "pkg.build", on_match=lambda m: None)
        dying = registry.get("bus://x")
        transport = transports.latest("bus://x")
        gate = threading.Event()
        transport.close_gate = gate

        transport.feed(ConnectionLost("reset by peer"))
        assert transport.close_started.wait(2.0)
        try:
            assert dying.state is ConnectionState.STOPPING
            second = registry.attach("bus://x", "pkg.test", on_match=lambda m: None)
        finally:
            gate.set()
        assert dying.join(2.0) is True

        fresh = registry.get("bus://x")
        assert fresh is not dying
        assert fresh.state is ConnectionState.RUNNING
        assert set(fresh.registrations) == {first, second}
        assert len(transports.created) == 2

    def test_attach_retries_when_connection_stops_midway(
        self, registry, transports, monkeypatch
    ):
        first = registry.attach("bus://x", "pkg.build", on_match=lambda m: None)
        stale = registry.get("bus://x")

        def refuse(registration):
            raise ConnectionStateError(
                "Cannot add registration to connection 'bus://x' in state 'stopped'"
            )

        monkeypatch.setattr(stale, "add_registration", refuse)

        second = registry.attach("bus://x", "pkg.test", on_match=lambda m: None)

        fresh = registry.get("bus://x")
        assert fresh is not stale
        assert set(fresh.registrations) == {first, second}
        assert stale.join(2.0) is True
        assert len(transports.created) == 2


class TestDetach:
    def test_last_detach_tears_connection_down(self, registry, transports):
        registration = registry.attach("bus://x", "pkg.build", on_match=lambda m: None)
        connection = registry.get("bus://x")

        assert registry.detach(registration) is True

        assert "bus://x" not in registry
        assert connection.state is ConnectionState.STOPPED
        assert transports.latest("bus://x").closed is True

    def test_detach_keeps_connection_while_others_remain(self, registry):
        a = registry.attach("bus://x", "pkg.build", on_match=lambda m: None)
        registry.attach("bus://x", "pkg.build", on_match=lambda m: None)

        registry.detach(a)

        connection = registry.get("bus://x")
        assert connection is not None
        assert connection.is_running is True
        assert connection.refcount("pkg.build") == 1

    def test_detach_unknown_connection_warns(self, registry, caplog):
        registration = Registration(hub_address="bus://x", topic="t", on_match=lambda m: None)

        with caplog.at_level(logging.WARNING, logger=REGISTRY_LOGGER):
            assert registry.detach(registration) is False

        assert "non-existent hub connection bus://x" in caplog.text

    def test_double_detach_is_harmless(self, registry):
        registration = registry.attach("bus://x", "pkg.build", on_match=lambda m: None)

        assert registry.detach(registration) is True
        assert registry.detach(registration) is False

    def test_reattach_after_teardown_creates_fresh_connection(self, registry, transports):
        registration = registry.attach("bus://x", "pkg.build", on_match=lambda m: None)
        old = registry.get("bus://x")
        registry.detach(registration)

        registry.attach("bus://x", "pkg.build", on_match=lambda m: None)
        new = registry.get("bus://x")

        assert new is not old
        assert old.state is ConnectionState.STOPPED
        assert new.state is ConnectionState.RUNNING
        assert len(transports.created) == 2

    def test_refcount_across_attach_and_detach(self, registry, transports):
        registrations = [
            registry.attach("bus://x", "pkg.build", on_match=lambda m: None)
            for _ in range(4)
        ]
        registry.attach("bus://x", "pkg.other", on_match=lambda m: None)
        transport = transports.latest("bus://x")

        for registration in registrations:
            registry.detach(registration)
        assert transport.wait_idle()

        assert transport.count("subscribe", "pkg.build") == 1
        assert transport.count("unsubscribe", "pkg.build") == 1
        assert transport.count("unsubscribe", "pkg.other") == 0

    def test_registration_cannot_be_retargeted(self, registry):
        registration = registry.attach("bus://x", "pkg.build", on_match=lambda m: None)

        with pytest.raises(dataclasses.FrozenInstanceError):
            registration.topic = "pkg.other"

        assert registry.detach(registration) is True
        assert "bus://x" not in registry


class TestRegistryScenarios:
    def test_deliver_then_detach(self, registry, transports):
        received = []
        registration = registry.attach("bus://x", "pkg.build", on_match=received.append)
        transport = transports.latest("bus://x")
        assert transport.wait_idle()

        transport.feed_message("pkg.build", timestamp=1000.0, body={"name": "hubmux"})
        assert transport.wait_idle()

        assert len(received) == 1
        assert received[0].topic == "pkg.build"
        assert received[0].timestamp == 1000.0

        connection = registry.get("bus://x")
        registry.detach(registration)
        transport.feed_message("pkg.build", timestamp=1000.0)

        assert len(received) == 1
        assert "bus://x" not in registry
        assert connection.state is ConnectionState.STOPPED

    def test_close_stops_everything(self, registry):
        registry.attach("bus://x", "a", on_match=lambda m: None)
        registry.attach("bus://y", "b", on_match=lambda m: None)
        connections = list(registry)

        registry.close()

        assert len(registry) == 0
        assert all(c.state is ConnectionState.STOPPED for c in connections)

    def test_context_manager_closes(self, transports):
        from hubmux.core.decoder import FedmsgDecoder
        from hubmux.core.subscription.registry import ConnectionRegistry

        with ConnectionRegistry(transport_factory=transports, decoder=FedmsgDecoder()) as reg:
            reg.attach("bus://x", "a", on_match=lambda m: None)
            connection = reg.get("bus://x")

        assert connection.state is ConnectionState.STOPPED

    def test_concurrent_attach_detach_same_address(self, registry):
        errors = []

        def churn():
            try:
                for _ in range(50):
                    registration = registry.attach("bus://x", "pkg.build", on_match=lambda m: None)
                    registry.detach(registration)
            except Exception as exc:  # pragma: no cover - surfaced below
                errors.append(exc)

        threads = [threading.Thread(target=churn) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10.0)

        assert errors == []
        assert len(registry) == 0
