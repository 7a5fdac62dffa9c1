"""Shared fixtures: a fully wired engine on a manual clock."""

import pytest

from defi_autopilot.auth.gate import Capability
from defi_autopilot.system import AutopilotSystem, build_system
from defi_autopilot.utils.clock import ManualClock

VENUES = [
    # name, risk_score, apy (bps), tvl (cents)
    ("Aave", 2, 320, 250_000_000_000),
    ("Compound", 2, 780, 180_000_000_000),
    ("Curve", 3, 540, 85_000_000_000),
]


@pytest.fixture
def engine() -> AutopilotSystem:
    """Engine with an agent, an updater and three fresh venues.

    Principals: 0xadmin (admin), 0xagent (agent), 0xoracle (updater).
    """
    system = build_system("0xadmin", clock=ManualClock())
    system.gate.authorize("0xadmin", Capability.AGENT, "0xagent", True)
    system.gate.authorize("0xadmin", Capability.UPDATER, "0xoracle", True)

    for name, risk, apy, tvl in VENUES:
        system.registry.register_protocol("0xadmin", name, risk)
        system.registry.update_yield("0xoracle", name, apy=apy, tvl=tvl, risk_score=risk)
    return system
