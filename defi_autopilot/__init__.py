"""DeFi Autopilot: admission and execution engine for yield rebalancing."""

from defi_autopilot.system import AutopilotSystem, build_system

__version__ = "0.1.0"

__all__ = [
    "AutopilotSystem",
    "build_system",
]
