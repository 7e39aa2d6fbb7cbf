"""
Unit tests for the datagram dispatcher and the discovery client.

Tests cover:
1. Routing by exact source address
2. Subscribe-then-send ordering
3. Discovery success, timeout and decode failures
4. Binding the shared socket
"""

import asyncio
import socket

import pytest

from holepunch.errors import (
    AttributeNotFound,
    BindFailure,
    DiscoveryTimeout,
    MalformedMessage,
    SendFailure,
)
from holepunch.network import discovery as discovery_module
from holepunch.network.discovery import DiscoveryClient
from holepunch.network.stun import (
    BINDING_SUCCESS,
    AddressFamily,
    DiscoveryMessage,
    MappedAddress,
    encode_response,
)
from holepunch.network.transport import DatagramDispatcher, open_endpoint


STUN_SERVER = ("74.125.250.129", 19302)


@pytest.fixture
def resolved(monkeypatch):
    """Resolve every STUN host to a fixed address without DNS."""
    async def fake_resolve(host, port):
        return (STUN_SERVER[0], port)

    monkeypatch.setattr(discovery_module, "resolve_ipv4", fake_resolve)


# =============================================================================
# Dispatcher
# =============================================================================


class TestDispatcher:
    """Tests for DatagramDispatcher routing."""

    def test_routes_by_exact_address(self, dispatcher):
        received = []
        dispatcher.add_route(("198.51.100.7", 40000), lambda d, a: received.append((d, a)))

        dispatcher.dispatch(b"hello", ("198.51.100.7", 40000))
        dispatcher.dispatch(b"other port", ("198.51.100.7", 40001))
        dispatcher.dispatch(b"other host", ("198.51.100.8", 40000))

        assert received == [(b"hello", ("198.51.100.7", 40000))]

    def test_removed_route_drops(self, dispatcher):
        received = []
        dispatcher.add_route(("198.51.100.7", 40000), lambda d, a: received.append(d))
        dispatcher.remove_route(("198.51.100.7", 40000))

        dispatcher.dispatch(b"late", ("198.51.100.7", 40000))
        assert received == []

    def test_send_failure_wraps_os_error(self, dispatcher, transport):
        transport.fail_sends = True
        with pytest.raises(SendFailure):
            dispatcher.send(b"x", ("198.51.100.7", 40000))

    def test_send_on_closed_socket(self, dispatcher):
        dispatcher.close()
        with pytest.raises(SendFailure):
            dispatcher.send(b"x", ("198.51.100.7", 40000))

    def test_local_address(self, dispatcher):
        assert dispatcher.local_address == ("10.0.0.2", 50000)
        assert DatagramDispatcher().local_address is None

    def test_waiter_takes_precedence_over_route(self, dispatcher):
        """A one-shot waiter gets the next datagram, the route the rest."""
        async def scenario():
            routed = []
            addr = ("198.51.100.7", 40000)
            dispatcher.add_route(addr, lambda d, a: routed.append(d))
            waiter = dispatcher.expect(addr)

            dispatcher.dispatch(b"first", addr)
            dispatcher.dispatch(b"second", addr)

            return await waiter, routed

        first, routed = asyncio.run(scenario())
        assert first == b"first"
        assert routed == [b"second"]

    def test_request_subscribes_before_send(self, dispatcher, transport):
        """A reply delivered from inside sendto() is not lost."""
        server = ("192.0.2.10", 3478)
        transport.on_send = lambda data, addr: dispatcher.dispatch(b"instant", addr)

        async def scenario():
            return await dispatcher.request(b"ping", server)

        assert asyncio.run(scenario()) == b"instant"

    def test_request_send_failure_withdraws_waiter(self, dispatcher, transport):
        transport.fail_sends = True

        async def scenario():
            with pytest.raises(SendFailure):
                dispatcher.request(b"ping", ("192.0.2.10", 3478))
            return dict(dispatcher._waiters)

        assert asyncio.run(scenario()) == {}

    def test_close_cancels_waiters(self, dispatcher, transport):
        async def scenario():
            waiter = dispatcher.expect(("192.0.2.10", 3478))
            dispatcher.close()
            return waiter

        waiter = asyncio.run(scenario())
        assert waiter.cancelled()
        assert transport.closed


# =============================================================================
# Discovery Client
# =============================================================================


class TestDiscoveryClient:
    """Tests for one binding round trip."""

    def test_discover_success(self, dispatcher, transport, resolved):
        """The reply from the server is decoded into the public endpoint."""
        def reply(data, addr):
            request = DiscoveryMessage.from_bytes(data)
            mapped = MappedAddress(AddressFamily.IPV4, "203.0.113.5", 61000)
            dispatcher.dispatch(encode_response(mapped, request.transaction_id), addr)

        transport.on_send = reply

        async def scenario():
            client = DiscoveryClient(dispatcher)
            return await client.discover("stun.l.google.com", 19302, timeout=1.0)

        mapped = asyncio.run(scenario())

        assert (mapped.ip, mapped.port) == ("203.0.113.5", 61000)
        assert len(transport.sent) == 1
        data, addr = transport.sent[0]
        assert addr == STUN_SERVER
        assert len(data) == 20

    def test_discover_timeout(self, dispatcher, transport, resolved):
        """No reply within the timeout -> DiscoveryTimeout, single request."""
        async def scenario():
            client = DiscoveryClient(dispatcher)
            with pytest.raises(DiscoveryTimeout):
                await client.discover("stun.l.google.com", 19302, timeout=0.05)
            return dict(dispatcher._waiters)

        assert asyncio.run(scenario()) == {}
        assert len(transport.sent) == 1

    def test_reply_from_other_source_ignored(self, dispatcher, transport, resolved):
        """Only the server's address can answer a binding request."""
        def stray(data, addr):
            mapped = MappedAddress(AddressFamily.IPV4, "6.6.6.6", 6666)
            dispatcher.dispatch(encode_response(mapped), ("198.51.100.99", 19302))

        transport.on_send = stray

        async def scenario():
            client = DiscoveryClient(dispatcher)
            await client.discover("stun.l.google.com", 19302, timeout=0.05)

        with pytest.raises(DiscoveryTimeout):
            asyncio.run(scenario())

    def test_short_reply(self, dispatcher, transport, resolved):
        transport.on_send = lambda data, addr: dispatcher.dispatch(b"\x01\x01", addr)

        async def scenario():
            await DiscoveryClient(dispatcher).discover("stun.l.google.com", 19302)

        with pytest.raises(MalformedMessage):
            asyncio.run(scenario())

    def test_reply_without_mapped_address(self, dispatcher, transport, resolved):
        def reply(data, addr):
            dispatcher.dispatch(DiscoveryMessage(message_type=BINDING_SUCCESS).to_bytes(), addr)

        transport.on_send = reply

        async def scenario():
            await DiscoveryClient(dispatcher).discover("stun.l.google.com", 19302)

        with pytest.raises(AttributeNotFound):
            asyncio.run(scenario())

    def test_transaction_id_recorded(self, dispatcher, transport, resolved):
        async def scenario():
            client = DiscoveryClient(dispatcher)
            with pytest.raises(DiscoveryTimeout):
                await client.discover("stun.l.google.com", 19302, timeout=0.01)
            return client.last_transaction_id

        txid = asyncio.run(scenario())
        assert transport.sent[0][0][8:20] == txid


# =============================================================================
# Socket binding
# =============================================================================


class TestOpenEndpoint:
    """Binding the shared socket"""

    def test_port_in_use(self):
        taken = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        taken.bind(("127.0.0.1", 0))
        port = taken.getsockname()[1]

        async def scenario():
            await open_endpoint("127.0.0.1", port)

        try:
            with pytest.raises(BindFailure) as exc:
                asyncio.run(scenario())
        finally:
            taken.close()

        assert exc.value.kind == "bind"
        assert isinstance(exc.value.__cause__, OSError)

    def test_bound_dispatcher_is_open(self):
        async def scenario():
            dispatcher = await open_endpoint("127.0.0.1", 0)
            try:
                return dispatcher.is_open, dispatcher.local_address
            finally:
                dispatcher.close()

        is_open, local = asyncio.run(scenario())
        assert is_open
        assert local[0] == "127.0.0.1"
        assert local[1] > 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
