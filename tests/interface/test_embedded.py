import pytest

from big_brother.address import PhysicalAddress
from big_brother.errors import ConfigurationError, InterfaceError
from big_brother.interface.embedded import (
    SOCKET_METADATA_SIZE,
    SOCKET_STORAGE_SIZE,
    EmbeddedInterface,
    NetworkStack,
    PacketBuffer,
)
from big_brother.interface.port import Interface
from tests.helpers import FakeStack

PEER = PhysicalAddress("192.168.1.30")


class TestPacketBuffer:
    def test_defaults(self):
        buf = PacketBuffer()
        assert buf.capacity == SOCKET_STORAGE_SIZE == 512
        assert len(buf) == 0

    def test_fifo(self):
        buf = PacketBuffer()
        buf.enqueue(PEER, b"one")
        buf.enqueue(PEER, b"two")
        assert buf.peek() == (PEER, b"one")
        assert buf.dequeue() == (PEER, b"one")
        assert buf.dequeue() == (PEER, b"two")
        assert buf.dequeue() is None
        assert buf.peek() is None

    def test_tracks_used_bytes(self):
        buf = PacketBuffer()
        buf.enqueue(PEER, b"x" * 100)
        buf.enqueue(PEER, memoryview(b"y" * 50))
        assert buf.used == 150
        buf.dequeue()
        assert buf.used == 50

    def test_slots_exhausted(self):
        buf = PacketBuffer()
        for _ in range(SOCKET_METADATA_SIZE):
            buf.enqueue(PEER, b"x")
        with pytest.raises(InterfaceError, match="full"):
            buf.enqueue(PEER, b"x")

    def test_storage_exhausted(self):
        buf = PacketBuffer(capacity=100, slots=8)
        buf.enqueue(PEER, b"x" * 60)
        with pytest.raises(InterfaceError, match="full"):
            buf.enqueue(PEER, b"x" * 41)
        buf.enqueue(PEER, b"x" * 40)

    def test_oversize_datagram(self):
        with pytest.raises(InterfaceError, match="exceeds"):
            PacketBuffer(capacity=16).enqueue(PEER, b"x" * 17)

    def test_invalid_dimensions(self):
        with pytest.raises(ConfigurationError):
            PacketBuffer(capacity=0)

    def test_clear(self):
        buf = PacketBuffer()
        buf.enqueue(PEER, b"abc")
        buf.clear()
        assert len(buf) == 0
        assert buf.used == 0


class TestEmbeddedInterface:
    def test_protocols(self):
        stack = FakeStack()
        assert isinstance(stack, NetworkStack)
        assert isinstance(EmbeddedInterface(stack), Interface)

    def test_broadcast_from_cidr(self):
        iface = EmbeddedInterface(FakeStack("10.20.0.5/16"))
        assert iface.broadcast_ip() == b"\x0a\x14\xff\xff"

    def test_invalid_cidr(self):
        with pytest.raises(ConfigurationError):
            EmbeddedInterface(FakeStack("not-a-cidr"))

    def test_send_is_deferred_until_poll(self):
        stack = FakeStack()
        iface = EmbeddedInterface(stack)
        iface.send_udp(PEER, b"cmd")
        assert stack.transmitted == []
        iface.poll(5)
        assert stack.polls == [5]
        assert stack.transmitted == [(b"cmd", PEER)]
        assert len(iface.tx_buffer) == 0

    def test_send_buffer_full(self):
        iface = EmbeddedInterface(FakeStack(), metadata_slots=2)
        iface.send_udp(PEER, b"a")
        iface.send_udp(PEER, b"b")
        with pytest.raises(InterfaceError):
            iface.send_udp(PEER, b"c")

    def test_stack_backpressure_keeps_datagrams_queued(self):
        stack = FakeStack()
        iface = EmbeddedInterface(stack)
        iface.send_udp(PEER, b"a")
        iface.send_udp(PEER, b"b")
        stack.accepting = False
        iface.poll(1)
        assert len(iface.tx_buffer) == 2
        stack.accepting = True
        iface.poll(2)
        assert [d for d, _ in stack.transmitted] == [b"a", b"b"]

    def test_receive_after_poll(self):
        stack = FakeStack()
        iface = EmbeddedInterface(stack)
        stack.incoming.append((b"telemetry", PEER))
        buffer = bytearray(64)
        assert iface.recv_udp(buffer) is None
        iface.poll(1)
        size, source = iface.recv_udp(buffer)
        assert bytes(buffer[:size]) == b"telemetry"
        assert source == PEER
        assert iface.recv_udp(buffer) is None

    def test_receive_buffer_overflow_drops(self):
        stack = FakeStack()
        iface = EmbeddedInterface(stack, metadata_slots=2)
        for i in range(3):
            stack.incoming.append((bytes([i]), PEER))
        iface.poll(1)
        assert len(iface.rx_buffer) == 2
        assert iface.rx_dropped == 1

    def test_datagram_larger_than_caller_buffer(self):
        stack = FakeStack()
        iface = EmbeddedInterface(stack)
        stack.incoming.append((b"x" * 32, PEER))
        iface.poll(1)
        with pytest.raises(InterfaceError, match="truncated"):
            iface.recv_udp(bytearray(16))
        assert iface.recv_udp(bytearray(64)) is None
