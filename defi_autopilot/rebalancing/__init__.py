"""Rebalancing Layer.

The state machine that turns decision-agent input into venue switches.

Components:
- RebalanceCoordinator: admission, execution, cancellation, batch optimization
- RebalanceRequest: an admitted request and its lifecycle state
- RequestStatus: PENDING, EXECUTED, CANCELLED
- ExecutionResult: outcome of executing one request
- BatchResult: per-user outcome of a batch run
- OptimizationMetrics: engine-wide statistics
- PairCostModel: deterministic switch cost estimate
"""

from defi_autopilot.rebalancing.base import (
    STALE_OR_UNPROFITABLE,
    BatchResult,
    ExecutionResult,
    OptimizationMetrics,
    RebalanceRequest,
    RequestStatus,
)
from defi_autopilot.rebalancing.coordinator import RebalanceCoordinator
from defi_autopilot.rebalancing.cost_model import PairCostModel

__all__ = [
    "RebalanceCoordinator",
    "RebalanceRequest",
    "RequestStatus",
    "ExecutionResult",
    "BatchResult",
    "OptimizationMetrics",
    "PairCostModel",
    "STALE_OR_UNPROFITABLE",
]
