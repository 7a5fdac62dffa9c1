"""Yield Registry Layer.

Stores yield observations pushed by the external analyzer and answers
best-opportunity queries.

Components:
- VenueTable: interned venue ids with a side name table
- YieldRecord: immutable per-venue observation
- YieldRegistry: records, bounded history, staleness and selection
"""

from defi_autopilot.registry.base import VenueTable, YieldRecord
from defi_autopilot.registry.yield_registry import YieldRegistry

__all__ = [
    "VenueTable",
    "YieldRecord",
    "YieldRegistry",
]
