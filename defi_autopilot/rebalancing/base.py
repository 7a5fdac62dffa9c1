"""Rebalance request state and optimization metrics.

A request moves PENDING -> EXECUTED or PENDING -> CANCELLED exactly once.
Both outcomes are terminal.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class RequestStatus(Enum):
    """Lifecycle states of a rebalance request."""

    PENDING = "pending"
    EXECUTED = "executed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not RequestStatus.PENDING


STALE_OR_UNPROFITABLE = "stale/unprofitable"


@dataclass
class RebalanceRequest:
    """An admitted rebalance awaiting or past execution.

    Attributes:
        request_id: Monotonically increasing id, starting at 1
        user: Portfolio owner
        from_protocol: Venue id the portfolio was on at admission
        to_protocol: Target venue id
        from_name: Source venue name
        to_name: Target venue name
        amount: Portfolio value snapshot at admission, in cents
        expected_yield: Target yield claimed at admission, in bps
        estimated_cost: Estimated switch cost, in cents
        created_at: Admission timestamp
        status: Current lifecycle state
        reason: Cancellation reason, empty otherwise
        realized_profit: Profit credited on execution
        resolved_at: Timestamp of the terminal transition
    """

    request_id: int
    user: str
    from_protocol: int
    to_protocol: int
    from_name: str
    to_name: str
    amount: int
    expected_yield: int
    estimated_cost: int
    created_at: int
    status: RequestStatus = RequestStatus.PENDING
    reason: str = ""
    realized_profit: int = 0
    resolved_at: Optional[int] = None

    def mark_executed(self, realized_profit: int, timestamp: int) -> None:
        self._resolve(RequestStatus.EXECUTED, timestamp)
        self.realized_profit = realized_profit

    def mark_cancelled(self, reason: str, timestamp: int) -> None:
        self._resolve(RequestStatus.CANCELLED, timestamp)
        self.reason = reason

    def _resolve(self, status: RequestStatus, timestamp: int) -> None:
        if self.status.is_terminal:
            raise ValueError(
                f"Request {self.request_id} already {self.status.value}, cannot become {status.value}"
            )
        self.status = status
        self.resolved_at = timestamp

    def to_dict(self) -> Dict:
        return {
            "request_id": self.request_id,
            "user": self.user,
            "from_protocol": self.from_name,
            "to_protocol": self.to_name,
            "amount": self.amount,
            "expected_yield": self.expected_yield,
            "estimated_cost": self.estimated_cost,
            "created_at": self.created_at,
            "status": self.status.value,
            "reason": self.reason,
            "realized_profit": self.realized_profit,
        }


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of ``execute_rebalance``.

    Attributes:
        request_id: The request that was executed or cancelled
        status: EXECUTED or CANCELLED, never PENDING
        realized_profit: Credited profit when executed
        reason: Cancellation reason when cancelled
    """

    request_id: int
    status: RequestStatus
    realized_profit: int = 0
    reason: str = ""

    @property
    def executed(self) -> bool:
        return self.status is RequestStatus.EXECUTED


@dataclass
class OptimizationMetrics:
    """Engine-wide optimization statistics.

    Attributes:
        total_rebalances: Successful executions
        total_profit: Sum of realized profit, in cents
        average_yield_improvement: Running mean of yield gained per
            execution, in bps
        last_batch_run: Timestamp of the last batch optimization (0 = never)
    """

    total_rebalances: int = 0
    total_profit: int = 0
    average_yield_improvement: float = 0.0
    last_batch_run: int = 0

    def record_execution(self, profit: int, yield_improvement: int) -> None:
        self.total_rebalances += 1
        self.total_profit += profit
        # Incremental mean avoids keeping every observation
        self.average_yield_improvement += (
            yield_improvement - self.average_yield_improvement
        ) / self.total_rebalances


@dataclass
class BatchResult:
    """Summary of a ``batch_optimize`` run.

    Attributes:
        optimized: Users whose portfolios were rebalanced
        skipped: user -> why nothing was attempted
        failed: user -> error or cancellation reason
        request_ids: user -> id of the request synthesized for them
        total_profit: Sum of realized profit across optimized users
    """

    optimized: List[str] = field(default_factory=list)
    skipped: Dict[str, str] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)
    request_ids: Dict[str, int] = field(default_factory=dict)
    total_profit: int = 0

    @property
    def optimized_count(self) -> int:
        return len(self.optimized)
