import threading

import pytest

from big_brother.address import UDP_PORT, PhysicalAddress
from big_brother.errors import ConfigurationError, InterfaceError
from big_brother.mock_topology import SimulatedNetwork, SimulatedPayload


def _payload(source: PhysicalAddress, host: str, port: int = UDP_PORT, data: bytes = b"hi"):
    return SimulatedPayload(source=source, destination=PhysicalAddress(host, port), data=data)


class TestAttach:
    def test_sequential_allocation(self):
        net = SimulatedNetwork("192.168.1.0", 24)
        a = net.attach()
        b = net.attach()
        assert a.host_ip == b"\xc0\xa8\x01\x01"
        assert b.host_ip == b"\xc0\xa8\x01\x02"

    def test_explicit_ip(self):
        net = SimulatedNetwork("10.0.0.0", 8)
        phys = net.attach("10.1.2.3")
        assert phys.host_ip == b"\x0a\x01\x02\x03"

    def test_allocation_skips_explicit_ips(self):
        net = SimulatedNetwork("192.168.1.0", 24)
        net.attach("192.168.1.1")
        assert net.attach().host_ip == b"\xc0\xa8\x01\x02"

    def test_outside_subnet(self):
        net = SimulatedNetwork("192.168.1.0", 24)
        with pytest.raises(ConfigurationError, match="outside"):
            net.attach("192.168.2.1")

    def test_network_and_broadcast_address_rejected(self):
        net = SimulatedNetwork("192.168.1.0", 24)
        for ip in ("192.168.1.0", "192.168.1.255"):
            with pytest.raises(ConfigurationError, match="not a usable"):
                net.attach(ip)

    def test_duplicate_ip(self):
        net = SimulatedNetwork("192.168.1.0", 24)
        net.attach("192.168.1.7")
        with pytest.raises(ConfigurationError, match="already attached"):
            net.attach("192.168.1.7")

    def test_subnet_exhausted(self):
        net = SimulatedNetwork("192.168.1.0", 30)
        net.attach()
        net.attach()
        with pytest.raises(ConfigurationError, match="No free host"):
            net.attach()

    def test_invalid_subnet(self):
        with pytest.raises(ConfigurationError):
            SimulatedNetwork("192.168.1.5", 24)

    def test_broadcast_ip(self):
        assert SimulatedNetwork("192.168.1.0", 24).broadcast_ip() == b"\xc0\xa8\x01\xff"
        assert SimulatedNetwork("192.168.0.0", 16, "192.168.255.255").broadcast_ip() == b"\xc0\xa8\xff\xff"


class TestBind:
    def test_chained_default_ports(self):
        phys = SimulatedNetwork().attach()
        assert phys.bind().port == UDP_PORT
        assert phys.bind().port == UDP_PORT + 1
        assert phys.bound_ports == (UDP_PORT, UDP_PORT + 1)

    def test_explicit_port(self):
        phys = SimulatedNetwork().attach()
        addr = phys.bind(4000)
        assert addr == PhysicalAddress.from_ip(phys.host_ip, 4000)

    def test_duplicate_port(self):
        phys = SimulatedNetwork().attach()
        phys.bind(4000)
        with pytest.raises(ConfigurationError, match="already bound"):
            phys.bind(4000)


class TestDelivery:
    def test_unicast_only_reaches_owner(self):
        net = SimulatedNetwork("192.168.1.0", 24)
        a, b, c = net.attach(), net.attach(), net.attach()
        src = a.bind()
        b.bind()
        c.bind()
        a.send_udp(_payload(src, "192.168.1.2"))
        assert b.recv_udp(UDP_PORT).data == b"hi"
        assert c.recv_udp(UDP_PORT) is None
        assert a.recv_udp(UDP_PORT) is None

    def test_unicast_unreachable(self):
        net = SimulatedNetwork("192.168.1.0", 24)
        a = net.attach()
        src = a.bind()
        with pytest.raises(InterfaceError, match="unreachable"):
            a.send_udp(_payload(src, "192.168.1.200"))

    def test_unicast_to_unbound_port_dropped(self):
        net = SimulatedNetwork("192.168.1.0", 24)
        a, b = net.attach(), net.attach()
        src = a.bind()
        b.bind()
        a.send_udp(_payload(src, "192.168.1.2", port=9999))
        assert b.pending(UDP_PORT) == 0

    def test_fifo_order(self):
        net = SimulatedNetwork("192.168.1.0", 24)
        a, b = net.attach(), net.attach()
        src = a.bind()
        b.bind()
        for i in range(3):
            a.send_udp(_payload(src, "192.168.1.2", data=bytes([i])))
        assert [b.recv_udp(UDP_PORT).data for _ in range(3)] == [b"\x00", b"\x01", b"\x02"]

    def test_broadcast_with_loopback(self):
        net = SimulatedNetwork("192.168.1.0", 24, loopback_broadcast=True)
        a, b, c = net.attach(), net.attach(), net.attach()
        src = a.bind()
        b.bind()
        c.bind()
        a.send_udp(_payload(src, "192.168.1.255"))
        assert b.pending(UDP_PORT) == 1
        assert c.pending(UDP_PORT) == 1
        assert a.pending(UDP_PORT) == 1

    def test_broadcast_without_loopback(self):
        net = SimulatedNetwork("192.168.1.0", 24, loopback_broadcast=False)
        a, b = net.attach(), net.attach()
        src = a.bind()
        b.bind()
        a.send_udp(_payload(src, "192.168.1.255"))
        assert b.pending(UDP_PORT) == 1
        assert a.pending(UDP_PORT) == 0

    def test_broadcast_without_loopback_reaches_chained_port(self):
        net = SimulatedNetwork("192.168.1.0", 24, loopback_broadcast=False)
        a = net.attach()
        first = a.bind()
        a.bind()
        a.send_udp(_payload(PhysicalAddress(first.host, UDP_PORT + 1), "192.168.1.255"))
        assert a.pending(UDP_PORT) == 1

    def test_limited_broadcast(self):
        net = SimulatedNetwork("192.168.1.0", 24)
        a, b = net.attach(), net.attach()
        src = a.bind()
        b.bind()
        a.send_udp(_payload(src, "255.255.255.255"))
        assert b.pending(UDP_PORT) == 1

    def test_broadcast_only_reaches_matching_port(self):
        net = SimulatedNetwork("192.168.1.0", 24)
        a, b = net.attach(), net.attach()
        src = a.bind()
        b.bind(4000)
        a.send_udp(_payload(src, "192.168.1.255"))
        assert b.pending(4000) == 0

    def test_localhost_reaches_own_attachment(self):
        net = SimulatedNetwork("192.168.1.0", 24)
        a, b = net.attach(), net.attach()
        src = a.bind()
        a.bind()
        b.bind(UDP_PORT + 1)
        a.send_udp(_payload(src, "127.0.0.1", port=UDP_PORT + 1))
        assert a.pending(UDP_PORT + 1) == 1
        assert b.pending(UDP_PORT + 1) == 0


class TestLossAndLogging:
    def test_inject_loss(self):
        net = SimulatedNetwork("192.168.1.0", 24)
        a, b = net.attach(), net.attach()
        src = a.bind()
        b.bind()
        net.inject_loss(2)
        for i in range(3):
            a.send_udp(_payload(src, "192.168.1.2", data=bytes([i])))
        assert b.recv_udp(UDP_PORT).data == b"\x02"
        assert b.recv_udp(UDP_PORT) is None

    def test_inject_loss_negative(self):
        with pytest.raises(ValueError):
            SimulatedNetwork().inject_loss(-1)

    def test_lost_unicast_to_unknown_host_does_not_raise(self):
        net = SimulatedNetwork("192.168.1.0", 24)
        a = net.attach()
        src = a.bind()
        net.inject_loss(1)
        a.send_udp(_payload(src, "192.168.1.200"))

    def test_payload_log(self):
        net = SimulatedNetwork("192.168.1.0", 24)
        a, b = net.attach(), net.attach()
        src = a.bind()
        b.bind()
        assert net.take_payload_log() == []
        net.enable_payload_logging()
        payload = _payload(src, "192.168.1.2")
        a.send_udp(payload)
        assert net.take_payload_log() == [payload]
        assert net.take_payload_log() == []


class TestConcurrency:
    def test_parallel_senders_lose_nothing(self):
        net = SimulatedNetwork("192.168.1.0", 24)
        sink = net.attach()
        sink.bind()
        senders = [net.attach() for _ in range(4)]
        sources = [s.bind() for s in senders]

        def blast(phys, src):
            for i in range(250):
                phys.send_udp(_payload(src, "192.168.1.1", data=i.to_bytes(2, "big")))

        threads = [threading.Thread(target=blast, args=pair) for pair in zip(senders, sources)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sink.pending(UDP_PORT) == 1000
