"""Rebalance coordinator: admission, execution and batch optimization.

The coordinator is the only component that drives venue switches. It admits
requests from the decision agent, re-validates them against current state at
execution time, and applies them through the ledger.

State machine:
    PENDING -> EXECUTED   (ledger applied the switch)
    PENDING -> CANCELLED  (explicit cancel, failed re-validation, or a
                           ledger failure captured at execution)

Every operation on a user runs under that user's lock, so admission and
execution for one user are serialized while other users proceed in parallel.
Lock order is coordinator user lock, then ledger owner lock.
"""

import itertools
import threading
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Tuple

from defi_autopilot.auth.gate import AuthorizationGate, Capability
from defi_autopilot.ledger.base import LedgerResult, RiskProfile
from defi_autopilot.ledger.portfolio_ledger import PortfolioLedger
from defi_autopilot.rebalancing.base import (
    STALE_OR_UNPROFITABLE,
    BatchResult,
    ExecutionResult,
    OptimizationMetrics,
    RebalanceRequest,
)
from defi_autopilot.rebalancing.cost_model import PairCostModel
from defi_autopilot.registry.yield_registry import YieldRegistry
from defi_autopilot.utils.audit import AuditEventType, AuditLogger
from defi_autopilot.utils.clock import Clock
from defi_autopilot.utils.config import EngineSettings
from defi_autopilot.utils.exceptions import (
    AutopilotError,
    CooldownError,
    ExecutionFailure,
    InvalidStateError,
    NotFoundError,
    NotProfitableError,
    ValidationError,
)
from defi_autopilot.utils.locks import KeyedLocks
from defi_autopilot.utils.logging import get_logger, log_with_context

logger = get_logger(__name__)


class RebalanceCoordinator:
    """Admits, executes and cancels rebalance requests.

    Example:
        >>> request_id = coordinator.request_rebalance(
        ...     "0xagent", "0xuser", "Aave", "Compound",
        ...     expected_yield=780, estimated_cost=300,
        ... )
        >>> coordinator.execute_rebalance("0xagent", request_id).executed
        True
    """

    def __init__(
        self,
        gate: AuthorizationGate,
        ledger: PortfolioLedger,
        registry: YieldRegistry,
        cost_model: PairCostModel,
        settings: EngineSettings,
        clock: Clock,
        audit: AuditLogger,
    ):
        self.gate = gate
        self.ledger = ledger
        self.registry = registry
        self.cost_model = cost_model
        self.settings = settings
        self.clock = clock
        self.audit = audit
        self.venues = registry.venues

        self._requests: Dict[int, RebalanceRequest] = {}
        self._latest: Dict[str, int] = {}
        self._by_user: Dict[str, List[int]] = {}
        self._ids = itertools.count(1)
        self._table_lock = threading.Lock()
        self._user_locks = KeyedLocks()
        self._metrics = OptimizationMetrics()
        self._metrics_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def request_rebalance(
        self,
        caller: str,
        user: str,
        from_protocol: str,
        to_protocol: str,
        expected_yield: int,
        estimated_cost: int,
    ) -> int:
        """Admit a rebalance request.

        Checks run in this order and the first failure aborts with no state
        change: capability, pause, portfolio existence, cost cap, target
        venue, portfolio state, profitability, cooldown.

        Returns:
            The new request id

        Raises:
            AuthorizationError: If caller lacks the agent capability
            PausedError: If the system is paused
            ValidationError: On a cost above the cap or malformed input
            NotFoundError: If the user has no portfolio or the target venue
                is not registered
            InvalidStateError: If auto-rebalance is off or the portfolio is
                not on ``from_protocol``
            NotProfitableError: If the switch does not clear the margin
            CooldownError: If the user's last request is too recent
        """
        self.gate.require(caller, Capability.AGENT)
        self.gate.require_not_paused()
        # User locks exist only for owners
        if not self.ledger.has_portfolio(user):
            raise NotFoundError(f"No portfolio for {user}")

        with self._user_locks.hold(user):
            request = self._admit(user, from_protocol, to_protocol, expected_yield, estimated_cost)
        return request.request_id

    def _admit(
        self,
        user: str,
        from_protocol: str,
        to_protocol: str,
        expected_yield: int,
        estimated_cost: int,
    ) -> RebalanceRequest:
        # Checked again under the user lock
        self.gate.require_not_paused()
        s = self.settings
        if estimated_cost < 0:
            raise ValidationError(f"estimated_cost must be non-negative, got {estimated_cost}")
        if estimated_cost > s.max_gas_cost:
            raise ValidationError(
                f"estimated_cost {estimated_cost} exceeds maximum {s.max_gas_cost}"
            )
        if not 0 <= expected_yield <= s.max_apy_bps:
            raise ValidationError(
                f"expected_yield must be in [0, {s.max_apy_bps}] bps, got {expected_yield}"
            )
        if not to_protocol or from_protocol == to_protocol:
            raise ValidationError("to_protocol must be non-empty and differ from from_protocol")
        to_id = self.venues.lookup(to_protocol)
        if to_id is None or self.registry.get_record(to_id) is None:
            raise NotFoundError(f"Protocol not registered: {to_protocol}")

        portfolio = self.ledger.find_portfolio(user)
        if portfolio is None:
            raise NotFoundError(f"No portfolio for {user}")
        if not portfolio.auto_rebalance:
            raise InvalidStateError(f"Auto-rebalance disabled for {user}")
        if self.venues.lookup(from_protocol) != portfolio.current_protocol:
            raise InvalidStateError(
                f"Portfolio of {user} is on {portfolio.protocol_name}, not {from_protocol}"
            )

        check = self.ledger.evaluate_rebalance(user, expected_yield, estimated_cost)
        if not check.profitable:
            raise NotProfitableError(check.reason)

        now = self.clock.now()
        with self._table_lock:
            latest_id = self._latest.get(user)
            if latest_id is not None:
                elapsed = now - self._requests[latest_id].created_at
                if elapsed < s.rebalance_cooldown:
                    raise CooldownError(
                        f"Cooldown active for {user}: {s.rebalance_cooldown - elapsed}s remaining"
                    )

            request = RebalanceRequest(
                request_id=next(self._ids),
                user=user,
                from_protocol=portfolio.current_protocol,
                to_protocol=to_id,
                from_name=portfolio.protocol_name,
                to_name=to_protocol,
                amount=portfolio.total_value,
                expected_yield=expected_yield,
                estimated_cost=estimated_cost,
                created_at=now,
            )
            self._requests[request.request_id] = request
            self._latest[user] = request.request_id
            self._by_user.setdefault(user, []).append(request.request_id)

        log_with_context(
            logger,
            "info",
            "Rebalance admitted",
            request_id=request.request_id,
            user=user,
            from_protocol=request.from_name,
            to_protocol=request.to_name,
            expected_yield=expected_yield,
            cost=estimated_cost,
        )
        self.audit.emit(
            AuditEventType.REBALANCE_REQUESTED,
            now,
            request_id=request.request_id,
            user=user,
            from_protocol=request.from_name,
            to_protocol=request.to_name,
            amount=request.amount,
            expected_yield=expected_yield,
            estimated_cost=estimated_cost,
        )
        return request

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute_rebalance(self, caller: str, request_id: int) -> ExecutionResult:
        """Execute a pending request, or cancel it if it no longer holds.

        Once this method gets past its precondition checks, the request is
        EXECUTED or CANCELLED when it returns (or raises).

        Raises:
            AuthorizationError: If caller lacks the agent capability
            PausedError: If the system is paused
            NotFoundError: If the request id is unknown
            InvalidStateError: If the request is not pending
            ExecutionFailure: If the ledger raised an unexpected error; the
                request is cancelled before this propagates
        """
        self.gate.require(caller, Capability.AGENT)
        self.gate.require_not_paused()
        request = self._require_request(request_id)

        with self._user_locks.hold(request.user):
            if request.status.is_terminal:
                raise InvalidStateError(
                    f"Request {request_id} is already {request.status.value}"
                )
            return self._execute_locked(caller, request)

    def _execute_locked(self, caller: str, request: RebalanceRequest) -> ExecutionResult:
        self.gate.require_not_paused()
        problem, new_yield = self._revalidate(request)
        if problem is not None:
            logger.info(
                "Request %d no longer valid (%s), cancelling", request.request_id, problem
            )
            self._cancel_locked(request, STALE_OR_UNPROFITABLE, detail=problem)
            return ExecutionResult(
                request_id=request.request_id,
                status=request.status,
                reason=request.reason,
            )

        try:
            outcome = self.ledger.apply_rebalance(
                caller,
                request.user,
                request.to_protocol,
                new_yield,
                request.estimated_cost,
            )
        except AutopilotError as e:
            outcome = LedgerResult.failure(str(e))
        except Exception as e:
            self._cancel_locked(request, f"execution error: {e}")
            raise ExecutionFailure(
                f"Ledger failed while executing request {request.request_id}: {e}"
            ) from e

        if not outcome.success:
            logger.warning(
                "Ledger rejected request %d: %s", request.request_id, outcome.reason
            )
            self._cancel_locked(request, outcome.reason)
            return ExecutionResult(
                request_id=request.request_id,
                status=request.status,
                reason=request.reason,
            )

        now = self.clock.now()
        request.mark_executed(outcome.realized_profit, now)
        improvement = new_yield - (
            outcome.previous_yield if outcome.previous_yield is not None else new_yield
        )
        with self._metrics_lock:
            self._metrics.record_execution(outcome.realized_profit, improvement)

        log_with_context(
            logger,
            "info",
            "Rebalance executed",
            request_id=request.request_id,
            user=request.user,
            to_protocol=request.to_name,
            new_yield=new_yield,
            profit=outcome.realized_profit,
        )
        self.audit.emit(
            AuditEventType.REBALANCE_EXECUTED,
            now,
            request_id=request.request_id,
            user=request.user,
            from_protocol=request.from_name,
            to_protocol=request.to_name,
            new_yield=new_yield,
            realized_profit=outcome.realized_profit,
        )
        return ExecutionResult(
            request_id=request.request_id,
            status=request.status,
            realized_profit=outcome.realized_profit,
        )

    def _revalidate(self, request: RebalanceRequest) -> Tuple[Optional[str], int]:
        """Check a pending request against current ledger and registry state.

        Returns:
            (problem, new_yield): problem is None when the request still holds,
            new_yield is the target venue's current apy
        """
        portfolio = self.ledger.find_portfolio(request.user)
        if portfolio is None:
            return "portfolio missing", 0
        if not portfolio.auto_rebalance:
            return "auto-rebalance disabled", 0
        if portfolio.current_protocol != request.from_protocol:
            return f"portfolio moved to {portfolio.protocol_name}", 0

        record = self.registry.get_record(request.to_protocol)
        if record is None:
            return f"{request.to_name} not registered", 0
        if not record.active:
            return f"{request.to_name} deactivated", 0
        if self.registry.is_stale(record):
            return f"{request.to_name} yield data stale", 0

        check = self.ledger.evaluate_rebalance(
            request.user, record.apy, request.estimated_cost
        )
        if not check.profitable:
            return check.reason, record.apy
        return None, record.apy

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_rebalance(self, caller: str, request_id: int, reason: str = "") -> None:
        """Cancel a pending request. Agent or admin.

        The admin may cancel while the system is paused.

        Raises:
            InvalidStateError: If the request is already terminal; nothing
                changes and no event is emitted
        """
        self.gate.require(caller, Capability.AGENT)
        if not self.gate.is_admin(caller):
            self.gate.require_not_paused()
        request = self._require_request(request_id)

        with self._user_locks.hold(request.user):
            if request.status.is_terminal:
                raise InvalidStateError(
                    f"Request {request_id} is already {request.status.value}"
                )
            self._cancel_locked(request, reason or "cancelled by operator")

    def _cancel_locked(self, request: RebalanceRequest, reason: str, detail: str = "") -> None:
        now = self.clock.now()
        request.mark_cancelled(reason, now)
        self.audit.emit(
            AuditEventType.REBALANCE_CANCELLED,
            now,
            request_id=request.request_id,
            user=request.user,
            reason=reason,
            detail=detail,
        )

    # ------------------------------------------------------------------
    # Batch optimization
    # ------------------------------------------------------------------

    def batch_optimize(self, caller: str, users: Iterable[str]) -> BatchResult:
        """Find and apply the best profitable switch for each user.

        Users are processed one at a time, each under its own lock. An error
        for one user is recorded and the loop moves on.
        """
        self.gate.require(caller, Capability.AGENT)
        self.gate.require_not_paused()

        result = BatchResult()
        for user in users:
            try:
                if not self.ledger.has_portfolio(user):
                    result.skipped[user] = "no portfolio"
                    continue
                with self._user_locks.hold(user):
                    self._optimize_user(caller, user, result)
            except AutopilotError as e:
                result.failed[user] = str(e)
                log_with_context(
                    logger, "warning", "Batch optimization failed for user",
                    user=user, error=type(e).__name__, detail=e,
                )

        now = self.clock.now()
        with self._metrics_lock:
            self._metrics.last_batch_run = now

        logger.info(
            "Batch optimization complete: %d optimized, %d skipped, %d failed",
            result.optimized_count,
            len(result.skipped),
            len(result.failed),
        )
        self.audit.emit(
            AuditEventType.BATCH_OPTIMIZED,
            now,
            optimized_count=result.optimized_count,
            total_profit=result.total_profit,
            users=len(result.optimized) + len(result.skipped) + len(result.failed),
        )
        return result

    def _optimize_user(self, caller: str, user: str, result: BatchResult) -> None:
        portfolio = self.ledger.find_portfolio(user)
        if portfolio is None:
            result.skipped[user] = "no portfolio"
            return
        if not portfolio.auto_rebalance:
            result.skipped[user] = "auto-rebalance disabled"
            return
        if portfolio.total_value == 0:
            result.skipped[user] = "empty portfolio"
            return

        ceiling = self.risk_ceiling(portfolio.risk_profile)
        best = self.registry.get_best_yield_for_risk(ceiling, self.settings.batch_min_tvl)
        if best is None:
            result.skipped[user] = "no eligible venue"
            return
        if best.protocol == portfolio.current_protocol:
            result.skipped[user] = "already on best venue"
            return

        cost = self.cost_model.estimate_ids(portfolio.current_protocol, best.protocol)
        if not self.ledger.check_rebalance_profitability(user, best.apy, cost):
            result.skipped[user] = "not profitable"
            return

        request = self._admit(user, portfolio.protocol_name, best.name, best.apy, cost)
        result.request_ids[user] = request.request_id

        outcome = self._execute_locked(caller, request)
        if outcome.executed:
            result.optimized.append(user)
            result.total_profit += outcome.realized_profit
        else:
            result.failed[user] = outcome.reason

    def risk_ceiling(self, profile: RiskProfile | str) -> int:
        """Maximum venue risk score for a risk profile."""
        key = profile.value if isinstance(profile, RiskProfile) else str(profile).upper()
        return self.settings.risk_ceilings.get(key, self.settings.default_risk_ceiling)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_request(self, request_id: int) -> RebalanceRequest:
        """Return a copy of a request."""
        return replace(self._require_request(request_id))

    def get_user_requests(self, user: str) -> List[RebalanceRequest]:
        with self._table_lock:
            ids = list(self._by_user.get(user, []))
        return [replace(self._requests[i]) for i in ids]

    def get_latest_request(self, user: str) -> Optional[RebalanceRequest]:
        with self._table_lock:
            latest_id = self._latest.get(user)
        return replace(self._requests[latest_id]) if latest_id is not None else None

    def get_requests(self) -> List[RebalanceRequest]:
        with self._table_lock:
            return [replace(r) for r in self._requests.values()]

    def get_metrics(self) -> OptimizationMetrics:
        with self._metrics_lock:
            return replace(self._metrics)

    def _require_request(self, request_id: int) -> RebalanceRequest:
        request = self._requests.get(request_id)
        if request is None:
            raise NotFoundError(f"Unknown request id: {request_id}")
        return request
