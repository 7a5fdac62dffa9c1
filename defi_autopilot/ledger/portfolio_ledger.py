"""Portfolio ledger: owns and mutates per-user position state.

Every mutation runs under the owner's lock and validates all preconditions
before changing any field, so a failed call never leaves a partial update.
Reads return copies; callers cannot mutate ledger state directly.
"""

from dataclasses import replace
from typing import Dict, List, Optional

from defi_autopilot.auth.gate import AuthorizationGate, Capability
from defi_autopilot.ledger.base import (
    BPS_DENOMINATOR,
    LedgerResult,
    Portfolio,
    ProfitabilityCheck,
    RiskProfile,
)
from defi_autopilot.registry.base import VenueTable
from defi_autopilot.utils.audit import AuditEventType, AuditLogger
from defi_autopilot.utils.clock import Clock
from defi_autopilot.utils.config import EngineSettings
from defi_autopilot.utils.exceptions import (
    InsufficientFundsError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from defi_autopilot.utils.locks import KeyedLocks
from defi_autopilot.utils.logging import get_logger

logger = get_logger(__name__)


def evaluate_profitability(
    total_value: int,
    current_yield: int,
    new_yield: int,
    cost: int,
    settings: EngineSettings,
) -> ProfitabilityCheck:
    """Apply the profitability rule to raw numbers.

    A switch is profitable when the yield gain exceeds the minimum improvement
    and one year of extra yield covers the cost plus the configured margin:

        new_yield > current_yield + min_yield_improvement_bps
        total_value * (new_yield - current_yield) / 10000 >= cost * num / den

    Example:
        >>> # $10,000 at 3.20% -> 7.80% for $3: $460/yr vs $3.45 required
        >>> evaluate_profitability(1_000_000, 320, 780, 300, EngineSettings()).profitable
        True
    """
    improvement = new_yield - current_yield
    numerator = cost * settings.profit_margin_numerator
    # Round up so the displayed requirement is never below the real one
    required = -(-numerator // settings.profit_margin_denominator)

    if improvement <= settings.min_yield_improvement_bps:
        return ProfitabilityCheck(
            profitable=False,
            yield_improvement=improvement,
            required_profit=required,
            reason=(
                f"yield improvement {improvement} bps does not exceed "
                f"{settings.min_yield_improvement_bps} bps"
            ),
        )

    annual_profit = total_value * improvement // BPS_DENOMINATOR
    if annual_profit * settings.profit_margin_denominator < numerator:
        return ProfitabilityCheck(
            profitable=False,
            yield_improvement=improvement,
            annual_profit=annual_profit,
            required_profit=required,
            reason=f"annual profit {annual_profit} below required {required}",
        )

    return ProfitabilityCheck(
        profitable=True,
        yield_improvement=improvement,
        annual_profit=annual_profit,
        required_profit=required,
    )


class PortfolioLedger:
    """Stores portfolios and applies deposits, withdrawals and rebalances.

    Example:
        >>> ledger.create_portfolio("0xuser", 1_000_000, RiskProfile.BALANCED)
        >>> ledger.check_rebalance_profitability("0xuser", new_yield=780, cost=300)
        True
    """

    def __init__(
        self,
        gate: AuthorizationGate,
        venues: VenueTable,
        settings: EngineSettings,
        clock: Clock,
        audit: AuditLogger,
    ):
        self.gate = gate
        self.venues = venues
        self.settings = settings
        self.clock = clock
        self.audit = audit

        self._portfolios: Dict[str, Portfolio] = {}
        self._locks = KeyedLocks()
        self._default_protocol = venues.intern(settings.default_protocol)

    # ------------------------------------------------------------------
    # User operations
    # ------------------------------------------------------------------

    def create_portfolio(
        self,
        owner: str,
        initial_deposit: int,
        risk_profile: RiskProfile | str | int = RiskProfile.BALANCED,
    ) -> Portfolio:
        """Open a portfolio on the default venue.

        Raises:
            PausedError: If the system is paused
            ValidationError: If the portfolio exists, the deposit is below the
                minimum, or the risk profile is unknown
        """
        self.gate.require_not_paused()
        if not owner:
            raise ValidationError("owner must be non-empty")
        if initial_deposit < self.settings.min_deposit:
            raise ValidationError(
                f"initial deposit {initial_deposit} below minimum {self.settings.min_deposit}"
            )
        try:
            profile = RiskProfile.parse(risk_profile)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        with self._locks.hold(owner):
            if owner in self._portfolios:
                raise ValidationError(f"Portfolio already exists for {owner}")

            now = self.clock.now()
            portfolio = Portfolio(
                owner=owner,
                total_value=initial_deposit,
                current_yield=self.settings.default_yield_bps,
                current_protocol=self._default_protocol,
                protocol_name=self.settings.default_protocol,
                risk_profile=profile,
                created_at=now,
            )
            self._portfolios[owner] = portfolio

            logger.info("Portfolio created for %s with %d cents", owner, initial_deposit)
            self.audit.emit(
                AuditEventType.PORTFOLIO_CREATED,
                now,
                owner=owner,
                amount=initial_deposit,
                risk_profile=profile.value,
                protocol=portfolio.protocol_name,
            )
            return replace(portfolio)

    def deposit(self, owner: str, amount: int) -> int:
        """Add funds. Returns the new total value."""
        self.gate.require_not_paused()
        if amount <= 0:
            raise ValidationError(f"deposit amount must be positive, got {amount}")

        with self._locks.hold(owner):
            portfolio = self._require(owner)
            portfolio.total_value += amount
            self.audit.emit(
                AuditEventType.PORTFOLIO_FUNDED,
                self.clock.now(),
                owner=owner,
                amount=amount,
                total_value=portfolio.total_value,
            )
            return portfolio.total_value

    def withdraw(self, owner: str, amount: int) -> int:
        """Remove funds. Returns the new total value.

        Raises:
            InsufficientFundsError: If amount exceeds the total value
        """
        self.gate.require_not_paused()
        if amount <= 0:
            raise ValidationError(f"withdraw amount must be positive, got {amount}")

        with self._locks.hold(owner):
            portfolio = self._require(owner)
            if amount > portfolio.total_value:
                raise InsufficientFundsError(
                    f"Cannot withdraw {amount} from {owner}: balance is {portfolio.total_value}"
                )
            portfolio.total_value -= amount
            self.audit.emit(
                AuditEventType.PORTFOLIO_WITHDRAWN,
                self.clock.now(),
                owner=owner,
                amount=amount,
                total_value=portfolio.total_value,
            )
            return portfolio.total_value

    def toggle_auto_rebalance(self, owner: str) -> bool:
        """Flip the auto-rebalance flag. Returns the new value."""
        self.gate.require_not_paused()
        with self._locks.hold(owner):
            portfolio = self._require(owner)
            portfolio.auto_rebalance = not portfolio.auto_rebalance
            self.audit.emit(
                AuditEventType.AUTO_REBALANCE_TOGGLED,
                self.clock.now(),
                owner=owner,
                enabled=portfolio.auto_rebalance,
            )
            return portfolio.auto_rebalance

    def update_risk_profile(self, owner: str, profile: RiskProfile | str | int) -> RiskProfile:
        self.gate.require_not_paused()
        try:
            new_profile = RiskProfile.parse(profile)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        with self._locks.hold(owner):
            portfolio = self._require(owner)
            portfolio.risk_profile = new_profile
            self.audit.emit(
                AuditEventType.RISK_PROFILE_UPDATED,
                self.clock.now(),
                owner=owner,
                risk_profile=new_profile.value,
            )
            return new_profile

    # ------------------------------------------------------------------
    # Profitability
    # ------------------------------------------------------------------

    def evaluate_rebalance(self, owner: str, new_yield: int, cost: int) -> ProfitabilityCheck:
        """Dry-run the profitability rule and return the intermediate numbers.

        No side effects. A missing portfolio evaluates as not profitable.
        """
        with self._locks.hold(owner):
            portfolio = self._portfolios.get(owner)
            if portfolio is None:
                return ProfitabilityCheck(profitable=False, reason="portfolio not found")
            return self._evaluate(portfolio, new_yield, cost)

    def check_rebalance_profitability(self, owner: str, new_yield: int, cost: int) -> bool:
        """Return True if moving to ``new_yield`` at ``cost`` clears the margin."""
        return self.evaluate_rebalance(owner, new_yield, cost).profitable

    def _evaluate(self, portfolio: Portfolio, new_yield: int, cost: int) -> ProfitabilityCheck:
        return evaluate_profitability(
            portfolio.total_value,
            portfolio.current_yield,
            new_yield,
            cost,
            self.settings,
        )

    # ------------------------------------------------------------------
    # Privileged mutations
    # ------------------------------------------------------------------

    def apply_rebalance(
        self,
        caller: str,
        owner: str,
        to_protocol: int,
        new_yield: int,
        cost: int,
    ) -> LedgerResult:
        """Switch the portfolio to another venue.

        Re-runs the profitability rule independently of any upstream check.
        Business failures come back as a failed ``LedgerResult``; nothing is
        modified in that case.

        Raises:
            AuthorizationError: If caller lacks the agent capability
            PausedError: If the system is paused
        """
        self.gate.require(caller, Capability.AGENT)
        self.gate.require_not_paused()

        with self._locks.hold(owner):
            portfolio = self._portfolios.get(owner)
            if portfolio is None:
                return LedgerResult.failure(f"portfolio not found for {owner}")
            if not portfolio.auto_rebalance:
                return LedgerResult.failure("auto-rebalance disabled")
            try:
                to_name = self.venues.name(to_protocol)
            except KeyError:
                return LedgerResult.failure(f"unknown venue id {to_protocol}")

            check = self._evaluate(portfolio, new_yield, cost)
            if not check.profitable:
                return LedgerResult.failure(f"not profitable: {check.reason}")

            now = self.clock.now()
            realized = check.annual_profit - cost
            previous_protocol = portfolio.current_protocol
            previous_yield = portfolio.current_yield
            previous_name = portfolio.protocol_name

            # All fields change together, after every check has passed
            portfolio.current_protocol = to_protocol
            portfolio.protocol_name = to_name
            portfolio.current_yield = new_yield
            portfolio.last_rebalance = now
            portfolio.cumulative_profit += realized

            logger.info(
                "Portfolio %s rebalanced %s -> %s (%d -> %d bps)",
                owner,
                previous_name,
                to_name,
                previous_yield,
                new_yield,
            )
            self.audit.emit(
                AuditEventType.PORTFOLIO_REBALANCED,
                now,
                owner=owner,
                from_protocol=previous_name,
                to_protocol=to_name,
                new_yield=new_yield,
                cost=cost,
                profit=realized,
            )
            return LedgerResult(
                success=True,
                realized_profit=realized,
                previous_protocol=previous_protocol,
                previous_yield=previous_yield,
            )

    def emergency_recover(self, caller: str, owner: str) -> int:
        """Withdraw the whole balance of a portfolio. Admin only, while paused.

        Returns:
            The recovered amount in cents

        Raises:
            AuthorizationError: If caller is not the admin
            InvalidStateError: If the system is not paused
        """
        self.gate.require_admin(caller)
        if not self.gate.paused:
            raise InvalidStateError("Emergency recovery requires the system to be paused")

        with self._locks.hold(owner):
            portfolio = self._require(owner)
            amount = portfolio.total_value
            portfolio.total_value = 0

            logger.warning("Emergency recovery of %d cents from %s", amount, owner)
            self.audit.emit(
                AuditEventType.EMERGENCY_RECOVERY,
                self.clock.now(),
                owner=owner,
                amount=amount,
                by=caller,
            )
            return amount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_portfolio(self, owner: str) -> Portfolio:
        """Return a copy of the owner's portfolio."""
        with self._locks.hold(owner):
            return replace(self._require(owner))

    def find_portfolio(self, owner: str) -> Optional[Portfolio]:
        if owner not in self._portfolios:
            return None
        with self._locks.hold(owner):
            portfolio = self._portfolios.get(owner)
            return replace(portfolio) if portfolio is not None else None

    def has_portfolio(self, owner: str) -> bool:
        return owner in self._portfolios

    def owners(self) -> List[str]:
        return list(self._portfolios)

    def _require(self, owner: str) -> Portfolio:
        portfolio = self._portfolios.get(owner)
        if portfolio is None:
            raise NotFoundError(f"No portfolio for {owner}")
        return portfolio
