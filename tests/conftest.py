"""Shared fixtures for the big-brother test suite."""

from __future__ import annotations

import pytest

from big_brother.mock_topology import SimulatedNetwork
from tests.helpers import RecordingInterface


@pytest.fixture
def network() -> SimulatedNetwork:
    """A fresh ``192.168.1.0/24`` simulated network with loopback broadcast."""
    return SimulatedNetwork("192.168.1.0", 24)


@pytest.fixture
def recording_interface() -> RecordingInterface:
    return RecordingInterface()
