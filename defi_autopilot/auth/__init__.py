"""Authorization Layer.

Components:
- AuthorizationGate: capability sets, admin principal and global pause switch
- Capability: the UPDATER and AGENT capability sets
"""

from defi_autopilot.auth.gate import AuthorizationGate, Capability

__all__ = [
    "AuthorizationGate",
    "Capability",
]
