"""Portfolio data structures.

Currency amounts are integer cents and yields are integer basis points
throughout, so the profitability rule is exact integer arithmetic.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

BPS_DENOMINATOR = 10_000


class RiskProfile(Enum):
    """User-chosen risk tolerance."""

    CONSERVATIVE = "CONSERVATIVE"
    BALANCED = "BALANCED"
    AGGRESSIVE = "AGGRESSIVE"

    @classmethod
    def parse(cls, value) -> "RiskProfile":
        """Accept a RiskProfile, its name (any case) or the legacy 1/2/3 codes."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            codes = {1: cls.CONSERVATIVE, 2: cls.BALANCED, 3: cls.AGGRESSIVE}
            if value in codes:
                return codes[value]
        if isinstance(value, str) and value.upper() in cls.__members__:
            return cls[value.upper()]
        raise ValueError(f"Unknown risk profile: {value!r}")


@dataclass
class Portfolio:
    """Position state of one user.

    Attributes:
        owner: Owner address
        total_value: Deposited capital in cents, never negative
        current_yield: Yield of the active venue in basis points
        current_protocol: Active venue id
        protocol_name: Active venue name
        risk_profile: User risk tolerance
        auto_rebalance: Whether the agent may move this portfolio
        last_rebalance: Timestamp of the last applied rebalance (0 = never)
        cumulative_profit: Sum of projected annual profit net of cost over
            all applied rebalances, in cents
        created_at: Creation timestamp
    """

    owner: str
    total_value: int
    current_yield: int
    current_protocol: int
    protocol_name: str
    risk_profile: RiskProfile
    auto_rebalance: bool = True
    last_rebalance: int = 0
    cumulative_profit: int = 0
    created_at: int = 0

    def __post_init__(self):
        if self.total_value < 0:
            raise ValueError(f"total_value must be non-negative, got {self.total_value}")

    def to_dict(self) -> Dict:
        return {
            "owner": self.owner,
            "total_value": self.total_value,
            "current_yield": self.current_yield,
            "current_protocol": self.protocol_name,
            "risk_profile": self.risk_profile.value,
            "auto_rebalance": self.auto_rebalance,
            "last_rebalance": self.last_rebalance,
            "cumulative_profit": self.cumulative_profit,
        }


@dataclass(frozen=True)
class ProfitabilityCheck:
    """Breakdown of a profitability evaluation.

    Attributes:
        profitable: Whether the switch clears both thresholds
        yield_improvement: new_yield - current_yield in basis points
        annual_profit: Projected yearly gain in cents
        required_profit: cost plus margin, in cents (rounded up)
        reason: Why the check failed, empty when profitable
    """

    profitable: bool
    yield_improvement: int = 0
    annual_profit: int = 0
    required_profit: int = 0
    reason: str = ""


@dataclass(frozen=True)
class LedgerResult:
    """Outcome of a ledger mutation returned across the component seam.

    Attributes:
        success: Whether the mutation was applied
        reason: Failure reason, empty on success
        realized_profit: Annual profit net of cost credited on success
        previous_protocol: Venue id before the switch
        previous_yield: Yield before the switch
    """

    success: bool
    reason: str = ""
    realized_profit: int = 0
    previous_protocol: Optional[int] = None
    previous_yield: Optional[int] = None

    @classmethod
    def failure(cls, reason: str) -> "LedgerResult":
        return cls(success=False, reason=reason)
