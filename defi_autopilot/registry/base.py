"""Venue identifiers and yield records.

Venue names are interned into small integer ids once, so that admission and
selection paths compare ints instead of strings. The side table maps ids back
to names for logs, events and display.
"""

import threading
from dataclasses import dataclass, replace
from typing import Dict, List, Optional

MIN_RISK_SCORE = 1
MAX_RISK_SCORE = 10


class VenueTable:
    """Interns venue names into stable integer ids.

    Ids are assigned in first-seen order starting at 1 and never reused.

    Example:
        >>> venues = VenueTable()
        >>> venues.intern("Aave")
        1
        >>> venues.intern("Compound")
        2
        >>> venues.intern("Aave")
        1
        >>> venues.name(2)
        'Compound'
    """

    def __init__(self) -> None:
        self._ids: Dict[str, int] = {}
        self._names: List[str] = []
        self._lock = threading.Lock()

    def intern(self, name: str) -> int:
        existing = self._ids.get(name)
        if existing is not None:
            return existing
        with self._lock:
            existing = self._ids.get(name)
            if existing is None:
                self._names.append(name)
                existing = len(self._names)
                self._ids[name] = existing
            return existing

    def lookup(self, name: str) -> Optional[int]:
        """Return the id for name, or None if it was never interned."""
        return self._ids.get(name)

    def name(self, venue_id: int) -> str:
        if not 1 <= venue_id <= len(self._names):
            raise KeyError(f"Unknown venue id: {venue_id}")
        return self._names[venue_id - 1]

    def __contains__(self, name: str) -> bool:
        return name in self._ids

    def __len__(self) -> int:
        return len(self._names)


@dataclass(frozen=True)
class YieldRecord:
    """Latest yield observation for a venue.

    Records are immutable; an update replaces the whole record so readers
    never see a half-written observation.

    Attributes:
        protocol: Venue id (see VenueTable)
        name: Venue name
        apy: Annual yield in basis points
        tvl: Total value locked in cents
        risk_score: Venue risk in [1, 10]
        timestamp: Registry time of the observation (0 = never updated)
        active: False once the venue is deactivated
        registration_order: Position in registration sequence, for tie-breaks
    """

    protocol: int
    name: str
    apy: int
    tvl: int
    risk_score: int
    timestamp: int
    active: bool = True
    registration_order: int = 0

    def deactivated(self) -> "YieldRecord":
        return replace(self, active=False)

    def to_dict(self) -> Dict:
        return {
            "protocol": self.name,
            "apy": self.apy,
            "tvl": self.tvl,
            "risk_score": self.risk_score,
            "timestamp": self.timestamp,
            "active": self.active,
        }
