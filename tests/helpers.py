"""Shared test utilities for big-brother tests."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass

from big_brother.address import PhysicalAddress
from big_brother.serdes import WORKING_BUFFER_SIZE, PacketCodec, encode_datagram

TEST_CODEC = PacketCodec()


@TEST_CODEC.register(0x01, "12s")
@dataclass(frozen=True, slots=True)
class RawCommand:
    payload: bytes


@TEST_CODEC.register(0x02, "Ifh?")
@dataclass(frozen=True, slots=True)
class Telemetry:
    sequence: int
    pressure: float
    temperature: int
    armed: bool


@TEST_CODEC.register(0x03)
@dataclass(frozen=True, slots=True)
class Ping:
    pass


def make_datagram(packet, from_addr, to_addr, counter=0, codec=TEST_CODEC) -> bytes:
    buffer = bytearray(WORKING_BUFFER_SIZE)
    size = encode_datagram(packet, from_addr, to_addr, counter, buffer, codec)
    return bytes(buffer[:size])


class RecordingInterface:
    """In-memory interface that records sends and replays queued datagrams."""

    def __init__(self, broadcast: bytes = b"\xc0\xa8\x01\xff") -> None:
        self.sent: list[tuple[PhysicalAddress, bytes]] = []
        self.inbound: deque[tuple[bytes, PhysicalAddress]] = deque()
        self.polls: list[int] = []
        self._broadcast = broadcast

    def poll(self, timestamp: int) -> None:
        self.polls.append(timestamp)

    def send_udp(self, destination: PhysicalAddress, data: bytes | memoryview) -> None:
        self.sent.append((destination, bytes(data)))

    def recv_udp(self, buffer: bytearray | memoryview) -> tuple[int, PhysicalAddress] | None:
        if not self.inbound:
            return None
        data, source = self.inbound.popleft()
        buffer[: len(data)] = data
        return len(data), source

    def broadcast_ip(self) -> bytes:
        return self._broadcast

    def deliver(self, data: bytes, source: PhysicalAddress) -> None:
        self.inbound.append((data, source))

    def clear(self) -> None:
        self.sent.clear()


class FakeStack:
    """Scriptable embedded network stack."""

    def __init__(self, ip_cidr: str = "192.168.1.20/24") -> None:
        self._ip_cidr = ip_cidr
        self.accepting = True
        self.transmitted: list[tuple[bytes, PhysicalAddress]] = []
        self.incoming: deque[tuple[bytes, PhysicalAddress]] = deque()
        self.polls: list[int] = []

    @property
    def ip_cidr(self) -> str:
        return self._ip_cidr

    def poll(self, timestamp: int) -> None:
        self.polls.append(timestamp)

    def transmit(self, data: bytes, destination: PhysicalAddress) -> bool:
        if not self.accepting:
            return False
        self.transmitted.append((data, destination))
        return True

    def receive(self) -> tuple[bytes, PhysicalAddress] | None:
        if not self.incoming:
            return None
        return self.incoming.popleft()
