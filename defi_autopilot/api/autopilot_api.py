"""User-friendly Autopilot API for rebalancing decisions and reporting.

This module provides a high-level interface over the engine: building a
configured system, dry-running profitability, producing recommendations for
a portfolio, and formatting engine state for display.
"""

from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd

from defi_autopilot.ledger.base import RiskProfile
from defi_autopilot.ledger.portfolio_ledger import evaluate_profitability
from defi_autopilot.system import AutopilotSystem, build_system
from defi_autopilot.utils.clock import Clock
from defi_autopilot.utils.config import (
    Config,
    EngineSettings,
    load_config,
    load_environment,
)
from defi_autopilot.utils.exceptions import ConfigurationError
from defi_autopilot.utils.logging import get_logger

logger = get_logger(__name__)

DAYS_PER_YEAR = 365


def assess_risk(risk_score: int, yield_increase_bps: int) -> str:
    """Classify a switch as LOW, MEDIUM or HIGH risk.

    Example:
        >>> assess_risk(2, 150)
        'LOW'
        >>> assess_risk(2, 460)
        'MEDIUM'
        >>> assess_risk(6, 100)
        'HIGH'
    """
    if risk_score <= 2 and yield_increase_bps <= 200:
        return "LOW"
    if risk_score <= 4 and yield_increase_bps <= 500:
        return "MEDIUM"
    return "HIGH"


class AutopilotAPI:
    """High-level API for the rebalancing engine.

    Example:
        >>> api = AutopilotAPI.from_config()
        >>> api.check_profitability(
        ...     total_value=1_000_000, current_yield=320, new_yield=780, cost=300
        ... )["profitable"]
        True
    """

    def __init__(self, system: AutopilotSystem):
        """Initialize AutopilotAPI.

        Args:
            system: Wired engine components
        """
        self.system = system
        logger.debug("AutopilotAPI initialized (admin=%s)", system.gate.admin)

    @classmethod
    def from_config(
        cls,
        config_path: Optional[str | Path] = None,
        admin: Optional[str] = None,
        clock: Optional[Clock] = None,
    ) -> "AutopilotAPI":
        """Build the engine from YAML config and ``.env`` overrides.

        Precedence for the admin address: argument, ``AUTOPILOT_ADMIN``,
        ``admin.address`` in the config file.

        Raises:
            ConfigurationError: If no admin address can be found
        """
        env = load_environment()
        config = load_config(config_path or env["config_path"])
        settings = EngineSettings.from_config(config)

        admin = admin or env["admin"] or config.get("admin.address")
        if not admin:
            raise ConfigurationError(
                "No admin address configured. Set AUTOPILOT_ADMIN or admin.address."
            )

        system = build_system(
            admin=admin,
            settings=settings,
            clock=clock,
            audit_dir=env["log_dir"] or config.get("logging.audit_dir"),
        )
        return cls(system)

    @classmethod
    def from_dict(cls, data: Dict, admin: str, clock: Optional[Clock] = None) -> "AutopilotAPI":
        """Build the engine from an in-memory config mapping."""
        settings = EngineSettings.from_config(Config(data))
        return cls(build_system(admin=admin, settings=settings, clock=clock))

    # ------------------------------------------------------------------
    # Dry runs
    # ------------------------------------------------------------------

    def check_profitability(
        self,
        total_value: int,
        current_yield: int,
        new_yield: int,
        cost: int,
    ) -> Dict:
        """Evaluate the profitability rule for raw numbers.

        Returns:
            Dictionary with profitable, yield_improvement, annual_profit,
            required_profit, net_profit and reason
        """
        check = evaluate_profitability(
            total_value, current_yield, new_yield, cost, self.system.settings
        )
        return {
            "profitable": check.profitable,
            "yield_improvement": check.yield_improvement,
            "annual_profit": check.annual_profit,
            "required_profit": check.required_profit,
            "net_profit": check.annual_profit - cost,
            "reason": check.reason,
        }

    def check_portfolio_profitability(self, owner: str, new_yield: int, cost: int) -> Dict:
        """Same as ``check_profitability`` for an existing portfolio."""
        portfolio = self.system.ledger.get_portfolio(owner)
        return self.check_profitability(
            portfolio.total_value, portfolio.current_yield, new_yield, cost
        )

    def get_recommendation(self, owner: str) -> Dict:
        """Recommend the best switch for a portfolio without executing it.

        Returns:
            Dictionary with should_rebalance, recommendation (or None),
            risk_assessment and up to two alternatives
        """
        system = self.system
        portfolio = system.ledger.get_portfolio(owner)
        ceiling = system.coordinator.risk_ceiling(portfolio.risk_profile)
        opportunities = [
            r
            for r in system.registry.get_opportunities(ceiling, system.settings.batch_min_tvl)
            if r.protocol != portfolio.current_protocol
        ]

        strategy = {
            "should_rebalance": False,
            "recommendation": None,
            "risk_assessment": "LOW",
            "alternatives": [],
        }
        if not opportunities or portfolio.total_value == 0:
            return strategy

        best = opportunities[0]
        cost = system.cost_model.estimate_ids(portfolio.current_protocol, best.protocol)
        check = evaluate_profitability(
            portfolio.total_value, portfolio.current_yield, best.apy, cost, system.settings
        )

        if check.profitable:
            strategy["should_rebalance"] = True
            strategy["recommendation"] = {
                "from_protocol": portfolio.protocol_name,
                "to_protocol": best.name,
                "current_yield": portfolio.current_yield,
                "new_yield": best.apy,
                "yield_increase": check.yield_improvement,
                "annual_profit": check.annual_profit,
                "execution_cost": cost,
                "net_profit": check.annual_profit - cost,
                "payback_days": self._payback_days(cost, check.annual_profit),
            }
            strategy["risk_assessment"] = assess_risk(best.risk_score, check.yield_improvement)

        strategy["alternatives"] = [
            {
                "protocol": r.name,
                "apy": r.apy,
                "risk_score": r.risk_score,
                "yield_increase": r.apy - portfolio.current_yield,
            }
            for r in opportunities[1:3]
        ]
        return strategy

    @staticmethod
    def _payback_days(cost: int, annual_profit: int) -> Optional[int]:
        """Days of extra yield needed to recover the cost; None if never."""
        if annual_profit <= 0:
            return 0 if cost == 0 else None
        return round(cost * DAYS_PER_YEAR / annual_profit)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def get_metrics(self) -> Dict:
        metrics = self.system.coordinator.get_metrics()
        return {
            "total_rebalances": metrics.total_rebalances,
            "total_profit": metrics.total_profit,
            "average_yield_improvement": metrics.average_yield_improvement,
            "last_batch_run": metrics.last_batch_run,
        }

    def format_yields(self) -> pd.DataFrame:
        """Current yield records with staleness, one row per venue."""
        registry = self.system.registry
        rows = []
        for record in registry.get_all_yields():
            row = record.to_dict()
            row["apy_pct"] = record.apy / 100
            row["stale"] = registry.is_stale(record)
            rows.append(row)

        columns = ["protocol", "apy", "apy_pct", "tvl", "risk_score", "timestamp", "active", "stale"]
        if not rows:
            return pd.DataFrame(columns=columns)
        return pd.DataFrame(rows)[columns]

    def format_portfolios(self, owners: Optional[List[str]] = None) -> pd.DataFrame:
        ledger = self.system.ledger
        owners = owners if owners is not None else ledger.owners()
        rows = [ledger.get_portfolio(o).to_dict() for o in owners if ledger.has_portfolio(o)]
        if not rows:
            return pd.DataFrame(
                columns=["owner", "total_value", "current_yield", "current_protocol"]
            )
        return pd.DataFrame(rows)

    def format_requests(self, user: Optional[str] = None) -> pd.DataFrame:
        coordinator = self.system.coordinator
        requests = (
            coordinator.get_user_requests(user) if user is not None else coordinator.get_requests()
        )
        if not requests:
            return pd.DataFrame(
                columns=["request_id", "user", "from_protocol", "to_protocol", "status", "reason"]
            )
        return pd.DataFrame([r.to_dict() for r in requests]).sort_values("request_id")

    def format_audit(self) -> pd.DataFrame:
        events = self.system.audit.events()
        if not events:
            return pd.DataFrame(columns=["sequence", "event_type", "timestamp"])
        return pd.DataFrame(
            [
                {
                    "sequence": e.sequence,
                    "event_type": e.event_type.value,
                    "timestamp": e.timestamp,
                    **e.data,
                }
                for e in events
            ]
        )

    @staticmethod
    def parse_risk_profile(value) -> RiskProfile:
        return RiskProfile.parse(value)
