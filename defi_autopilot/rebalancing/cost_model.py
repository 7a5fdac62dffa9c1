"""Deterministic cost estimate for a venue switch.

A flat base cost plus a surcharge for each leg that touches a venue with a
more complex deposit/withdraw path. No gas oracle is consulted.
"""

from typing import Iterable

from defi_autopilot.registry.base import VenueTable
from defi_autopilot.utils.config import EngineSettings


class PairCostModel:
    """Estimates the cost of moving from one venue to another, in cents.

    Example:
        >>> model = PairCostModel(venues, base_cost=300, surcharge=150,
        ...                       complex_protocols=["Curve", "Uniswap"])
        >>> model.estimate("Aave", "Compound")
        300
        >>> model.estimate("Aave", "Curve")
        450
        >>> model.estimate("Curve", "Uniswap")
        600
    """

    def __init__(
        self,
        venues: VenueTable,
        base_cost: int,
        surcharge: int,
        complex_protocols: Iterable[str] = (),
    ):
        if base_cost < 0 or surcharge < 0:
            raise ValueError("base_cost and surcharge must be non-negative")
        self.venues = venues
        self.base_cost = base_cost
        self.surcharge = surcharge
        self._complex = frozenset(venues.intern(name) for name in complex_protocols)

    @classmethod
    def from_settings(cls, venues: VenueTable, settings: EngineSettings) -> "PairCostModel":
        return cls(
            venues,
            base_cost=settings.base_cost,
            surcharge=settings.complex_surcharge,
            complex_protocols=settings.complex_protocols,
        )

    def is_complex(self, venue_id: int) -> bool:
        return venue_id in self._complex

    def estimate_ids(self, from_protocol: int, to_protocol: int) -> int:
        cost = self.base_cost
        if self.is_complex(from_protocol):
            cost += self.surcharge
        if self.is_complex(to_protocol):
            cost += self.surcharge
        return cost

    def estimate(self, from_name: str, to_name: str) -> int:
        """Estimate by venue name. Unknown names cost as plain venues."""
        cost = self.base_cost
        for name in (from_name, to_name):
            venue_id = self.venues.lookup(name)
            if venue_id is not None and self.is_complex(venue_id):
                cost += self.surcharge
        return cost
