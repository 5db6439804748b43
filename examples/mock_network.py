"""Run an engine controller and mission control on a simulated network.

Both nodes discover each other through their periodic announcements, then
mission control commands the engine controller and receives telemetry
back.  No sockets or hardware are involved.

Usage::

    python examples/mock_network.py
"""

import logging
from dataclasses import dataclass

from big_brother import MISSION_CONTROL, BigBrother, BigBrotherConfig, LogicalAddress, PacketCodec
from big_brother.interface import MockInterface
from big_brother.mock_topology import SimulatedNetwork

# Use DEBUG to see every dropped or duplicate datagram
logging.basicConfig(level=logging.INFO, format="%(name)s %(levelname)s %(message)s")

ENGINE = LogicalAddress.engine_controller(0)

codec = PacketCodec()


@codec.register(0x10, "12s")
@dataclass(frozen=True)
class Command:
    text: bytes


@codec.register(0x11, "If")
@dataclass(frozen=True)
class TankPressure:
    sequence: int
    psi: float


def main() -> None:
    """Tick both nodes for one simulated second."""
    network = SimulatedNetwork("192.168.1.0", 24)
    engine = BigBrother(BigBrotherConfig(host_address=ENGINE), MockInterface(network.attach()), codec)
    mission = BigBrother(
        BigBrotherConfig(host_address=MISSION_CONTROL), MockInterface(network.attach()), codec
    )
    mission.on_receive(lambda sender, packet: print(f"mission control <- {sender}: {packet}"))

    sequence = 0
    for now in range(0, 1000, 10):
        for received in engine.poll(now):
            print(f"engine controller <- {received.sender}: {received.packet}")
            sequence += 1
            engine.send(MISSION_CONTROL, TankPressure(sequence, 250.0 + sequence))
        mission.poll(now)

        if now % 250 == 0 and mission.resolve(ENGINE) is not None:
            mission.send(ENGINE, Command(b"VENT FUEL 01"))

    print(f"engine stats: {engine.stats}")
    print(f"mission stats: {mission.stats}")


if __name__ == "__main__":
    main()
