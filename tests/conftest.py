"""
Shared fixtures: an in-memory datagram transport and its dispatcher.
"""

import pytest

from holepunch.network.transport import DatagramDispatcher


class FakeTransport:
    """Records sendto() calls instead of touching the network."""

    def __init__(self, sockname=("10.0.0.2", 50000)):
        self.sockname = sockname
        self.sent = []
        self.closed = False
        self.fail_sends = False
        self.on_send = None

    def sendto(self, data, addr):
        if self.fail_sends:
            raise OSError("Network is unreachable")
        self.sent.append((bytes(data), addr))
        if self.on_send is not None:
            self.on_send(data, addr)

    def get_extra_info(self, name, default=None):
        if name == "sockname":
            return self.sockname
        return default

    def is_closing(self):
        return self.closed

    def close(self):
        self.closed = True

    def sent_to(self, addr):
        return [data for data, dest in self.sent if dest == addr]


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def dispatcher(transport):
    return DatagramDispatcher(transport)
