"""Portfolio Ledger Layer.

Owns every user's position state and the profitability rule that gates
venue switches.

Components:
- PortfolioLedger: create/deposit/withdraw/rebalance with per-owner locking
- Portfolio: position state of one user
- RiskProfile: CONSERVATIVE, BALANCED, AGGRESSIVE
- ProfitabilityCheck: dry-run breakdown of the profitability rule
- LedgerResult: outcome value returned by ledger mutations
"""

from defi_autopilot.ledger.base import (
    LedgerResult,
    Portfolio,
    ProfitabilityCheck,
    RiskProfile,
)
from defi_autopilot.ledger.portfolio_ledger import PortfolioLedger, evaluate_profitability

__all__ = [
    "PortfolioLedger",
    "Portfolio",
    "RiskProfile",
    "ProfitabilityCheck",
    "LedgerResult",
    "evaluate_profitability",
]
