"""Run a node on the real network and print what it discovers.

Binds the well-known big-brother port (chaining to the next free port if
another node already runs on this host), announces itself as mission
control and prints the network map every second.

Usage::

    python examples/hosted_node.py [--prefix-length 24]
"""

import argparse
import logging
import time

from big_brother import MISSION_CONTROL, BigBrother, BigBrotherConfig, serialize
from big_brother.interface import HostedInterface

logging.basicConfig(level=logging.INFO, format="%(name)s %(levelname)s %(message)s")


def main() -> None:
    """Poll the network at 1 kHz until interrupted."""
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--prefix-length", type=int, default=24)
    args = parser.parse_args()

    with HostedInterface(prefix_length=args.prefix_length) as iface:
        bb = BigBrother(BigBrotherConfig(host_address=MISSION_CONTROL), iface)
        start = time.monotonic()
        last_report = 0
        try:
            while True:
                now = int((time.monotonic() - start) * 1000)
                for received in bb.poll(now):
                    print(serialize(received).decode())
                if now - last_report >= 1000:
                    last_report = now
                    print(serialize(bb.network_map, pretty=True).decode())
                time.sleep(0.001)
        except KeyboardInterrupt:
            pass


if __name__ == "__main__":
    main()
