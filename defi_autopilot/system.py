"""Explicit store object wiring the engine components together.

Components never reach for process-wide globals; each one receives the gate,
venue table, settings, clock and audit trail it needs from here.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from defi_autopilot.auth.gate import AuthorizationGate
from defi_autopilot.ledger.portfolio_ledger import PortfolioLedger
from defi_autopilot.rebalancing.coordinator import RebalanceCoordinator
from defi_autopilot.rebalancing.cost_model import PairCostModel
from defi_autopilot.registry.base import VenueTable
from defi_autopilot.registry.yield_registry import YieldRegistry
from defi_autopilot.utils.audit import AuditLogger
from defi_autopilot.utils.clock import Clock, SystemClock
from defi_autopilot.utils.config import EngineSettings
from defi_autopilot.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class AutopilotSystem:
    """All engine components sharing one gate, venue table, clock and audit trail."""

    settings: EngineSettings
    clock: Clock
    audit: AuditLogger
    gate: AuthorizationGate
    venues: VenueTable
    registry: YieldRegistry
    ledger: PortfolioLedger
    cost_model: PairCostModel
    coordinator: RebalanceCoordinator


def build_system(
    admin: str,
    settings: Optional[EngineSettings] = None,
    clock: Optional[Clock] = None,
    audit_dir: Optional[str | Path] = None,
) -> AutopilotSystem:
    """Construct a fully wired engine.

    Args:
        admin: Admin principal address
        settings: Engine settings (defaults when None)
        clock: Engine clock (SystemClock when None)
        audit_dir: Directory for the rotating audit log (memory only when None)

    Example:
        >>> system = build_system("0xadmin", clock=ManualClock())
        >>> venue_id = system.registry.register_protocol("0xadmin", "Compound", 2)
    """
    settings = settings or EngineSettings()
    clock = clock or SystemClock()
    audit = AuditLogger(log_dir=audit_dir)
    gate = AuthorizationGate(admin=admin, audit=audit, clock=clock.now)
    venues = VenueTable()

    registry = YieldRegistry(gate, venues, settings, clock, audit)
    ledger = PortfolioLedger(gate, venues, settings, clock, audit)
    cost_model = PairCostModel.from_settings(venues, settings)
    coordinator = RebalanceCoordinator(
        gate, ledger, registry, cost_model, settings, clock, audit
    )

    logger.debug("Autopilot system built for admin %s", admin)
    return AutopilotSystem(
        settings=settings,
        clock=clock,
        audit=audit,
        gate=gate,
        venues=venues,
        registry=registry,
        ledger=ledger,
        cost_model=cost_model,
        coordinator=coordinator,
    )
