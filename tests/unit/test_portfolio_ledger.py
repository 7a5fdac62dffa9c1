"""Unit tests for PortfolioLedger."""

import pytest

from defi_autopilot.auth.gate import Capability
from defi_autopilot.ledger import (
    LedgerResult,
    Portfolio,
    PortfolioLedger,
    RiskProfile,
    evaluate_profitability,
)
from defi_autopilot.system import AutopilotSystem, build_system
from defi_autopilot.utils.audit import AuditEventType
from defi_autopilot.utils.clock import ManualClock
from defi_autopilot.utils.config import EngineSettings
from defi_autopilot.utils.exceptions import (
    AuthorizationError,
    InsufficientFundsError,
    InvalidStateError,
    NotFoundError,
    PausedError,
    ValidationError,
)

ADMIN = "0xadmin"
AGENT = "0xagent"
USER = "0xalice"


@pytest.fixture
def system() -> AutopilotSystem:
    system = build_system(ADMIN, clock=ManualClock())
    system.gate.authorize(ADMIN, Capability.AGENT, AGENT, True)
    return system


@pytest.fixture
def ledger(system: AutopilotSystem) -> PortfolioLedger:
    return system.ledger


@pytest.fixture
def compound(system: AutopilotSystem) -> int:
    return system.venues.intern("Compound")


class TestEvaluateProfitability:
    """Test cases for the profitability rule."""

    def test_small_deposit_scenario(self) -> None:
        """$10,000 at 3.20% moving to 7.80% for $3 is profitable."""
        check = evaluate_profitability(1_000_000, 320, 780, 300, EngineSettings())

        assert check.profitable
        assert check.yield_improvement == 460
        assert check.annual_profit == 46_000
        assert check.required_profit == 345
        assert check.reason == ""

    def test_expensive_switch_not_profitable(self) -> None:
        """Same move for $500 does not clear the 15% margin."""
        check = evaluate_profitability(1_000_000, 320, 780, 50_000, EngineSettings())

        assert not check.profitable
        assert check.annual_profit == 46_000
        assert check.required_profit == 57_500
        assert "below required" in check.reason

    def test_improvement_must_exceed_threshold(self) -> None:
        """Exactly 50 bps of improvement is not enough."""
        check = evaluate_profitability(100_000_000, 320, 370, 0, EngineSettings())

        assert not check.profitable
        assert "does not exceed" in check.reason
        assert evaluate_profitability(100_000_000, 320, 371, 0, EngineSettings()).profitable

    def test_margin_boundary_is_inclusive(self) -> None:
        """Annual profit exactly equal to cost * 1.15 passes."""
        # 1_000_000 * 460 / 10000 = 46_000 == 40_000 * 115 / 100
        assert evaluate_profitability(1_000_000, 320, 780, 40_000, EngineSettings()).profitable
        assert not evaluate_profitability(1_000_000, 320, 780, 40_001, EngineSettings()).profitable

    def test_lower_yield_never_profitable(self) -> None:
        """Test a lower target yield is never profitable."""
        check = evaluate_profitability(1_000_000, 780, 320, 0, EngineSettings())

        assert not check.profitable
        assert check.yield_improvement == -460

    def test_required_profit_rounds_up(self) -> None:
        """Test the required profit is rounded up."""
        check = evaluate_profitability(1_000_000, 320, 780, 1, EngineSettings())
        assert check.required_profit == 2


class TestCreatePortfolio:
    """Test cases for portfolio creation."""

    def test_defaults(self, ledger: PortfolioLedger, system: AutopilotSystem) -> None:
        """Test a new portfolio starts on the default venue."""
        portfolio = ledger.create_portfolio(USER, 1_000_000)

        assert portfolio.total_value == 1_000_000
        assert portfolio.current_yield == 320
        assert portfolio.protocol_name == "Aave"
        assert portfolio.current_protocol == system.venues.lookup("Aave")
        assert portfolio.risk_profile == RiskProfile.BALANCED
        assert portfolio.auto_rebalance is True
        assert portfolio.created_at == system.clock.now()

    def test_below_minimum(self, ledger: PortfolioLedger) -> None:
        """Test deposits below the minimum are rejected."""
        with pytest.raises(ValidationError, match="below minimum"):
            ledger.create_portfolio(USER, 9_999)

    def test_minimum_accepted(self, ledger: PortfolioLedger) -> None:
        """Test the minimum deposit is accepted."""
        assert ledger.create_portfolio(USER, 10_000).total_value == 10_000

    def test_duplicate(self, ledger: PortfolioLedger) -> None:
        """Test an owner holds one portfolio."""
        ledger.create_portfolio(USER, 1_000_000)

        with pytest.raises(ValidationError, match="already exists"):
            ledger.create_portfolio(USER, 1_000_000)

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("aggressive", RiskProfile.AGGRESSIVE),
            (1, RiskProfile.CONSERVATIVE),
            (RiskProfile.BALANCED, RiskProfile.BALANCED),
        ],
    )
    def test_risk_profile_parsing(self, ledger: PortfolioLedger, value, expected) -> None:
        """Test names and codes parse to risk profiles."""
        assert ledger.create_portfolio(USER, 1_000_000, value).risk_profile == expected

    def test_unknown_risk_profile(self, ledger: PortfolioLedger) -> None:
        """Test an unknown profile is malformed."""
        with pytest.raises(ValidationError, match="Unknown risk profile"):
            ledger.create_portfolio(USER, 1_000_000, "YOLO")

    def test_returned_copy_is_detached(self, ledger: PortfolioLedger) -> None:
        """Test callers cannot mutate stored portfolios."""
        portfolio = ledger.create_portfolio(USER, 1_000_000)
        portfolio.total_value = 0

        assert ledger.get_portfolio(USER).total_value == 1_000_000

    def test_paused(self, ledger: PortfolioLedger, system: AutopilotSystem) -> None:
        """Test creation is blocked while paused."""
        system.gate.pause(ADMIN)

        with pytest.raises(PausedError):
            ledger.create_portfolio(USER, 1_000_000)
        assert not ledger.has_portfolio(USER)


class TestFunds:
    """Test cases for deposits and withdrawals."""

    @pytest.fixture(autouse=True)
    def _portfolio(self, ledger: PortfolioLedger) -> None:
        ledger.create_portfolio(USER, 1_000_000)

    def test_deposit(self, ledger: PortfolioLedger, system: AutopilotSystem) -> None:
        """Test a deposit raises the value and is audited."""
        assert ledger.deposit(USER, 500_000) == 1_500_000
        assert system.audit.count(AuditEventType.PORTFOLIO_FUNDED) == 1

    def test_deposit_non_positive(self, ledger: PortfolioLedger) -> None:
        """Test non-positive deposits are malformed."""
        with pytest.raises(ValidationError):
            ledger.deposit(USER, 0)

    def test_deposit_unknown_owner(self, ledger: PortfolioLedger) -> None:
        """Test depositing to an unknown owner is NotFound."""
        with pytest.raises(NotFoundError):
            ledger.deposit("0xnobody", 100)

    def test_withdraw(self, ledger: PortfolioLedger) -> None:
        """Test a withdrawal returns the new value."""
        assert ledger.withdraw(USER, 400_000) == 600_000

    def test_withdraw_everything(self, ledger: PortfolioLedger) -> None:
        """Test the full balance can be withdrawn."""
        assert ledger.withdraw(USER, 1_000_000) == 0

    def test_overdraw(self, ledger: PortfolioLedger) -> None:
        """Test overdrawing raises InsufficientFundsError."""
        with pytest.raises(InsufficientFundsError):
            ledger.withdraw(USER, 1_000_001)
        assert ledger.get_portfolio(USER).total_value == 1_000_000

    def test_value_conservation(self, ledger: PortfolioLedger) -> None:
        """Total value equals deposits minus withdrawals."""
        ledger.deposit(USER, 250_000)
        ledger.withdraw(USER, 100_000)
        ledger.deposit(USER, 1)

        assert ledger.get_portfolio(USER).total_value == 1_000_000 + 250_000 - 100_000 + 1


class TestSettings:
    """Test cases for user-controlled flags."""

    @pytest.fixture(autouse=True)
    def _portfolio(self, ledger: PortfolioLedger) -> None:
        ledger.create_portfolio(USER, 1_000_000)

    def test_toggle(self, ledger: PortfolioLedger) -> None:
        """Test the auto-rebalance flag flips."""
        assert ledger.toggle_auto_rebalance(USER) is False
        assert ledger.toggle_auto_rebalance(USER) is True

    def test_update_risk_profile(self, ledger: PortfolioLedger, system: AutopilotSystem) -> None:
        """Test the risk profile changes and is audited."""
        assert ledger.update_risk_profile(USER, "CONSERVATIVE") == RiskProfile.CONSERVATIVE
        assert ledger.get_portfolio(USER).risk_profile == RiskProfile.CONSERVATIVE
        assert system.audit.count(AuditEventType.RISK_PROFILE_UPDATED) == 1


class TestCheckProfitability:
    """Test cases for the portfolio-level dry run."""

    def test_portfolio_scenarios(self, ledger: PortfolioLedger) -> None:
        """Test the dry run against a stored portfolio."""
        ledger.create_portfolio(USER, 1_000_000)

        assert ledger.check_rebalance_profitability(USER, 780, 300)
        assert not ledger.check_rebalance_profitability(USER, 780, 50_000)

    def test_missing_portfolio(self, ledger: PortfolioLedger) -> None:
        """Test a dry run for an unknown owner is NotFound."""
        check = ledger.evaluate_rebalance("0xnobody", 780, 300)

        assert not check.profitable
        assert check.reason == "portfolio not found"

    def test_no_side_effects(self, ledger: PortfolioLedger, system: AutopilotSystem) -> None:
        """Test a dry run changes no state."""
        ledger.create_portfolio(USER, 1_000_000)
        events = len(system.audit)

        ledger.check_rebalance_profitability(USER, 780, 300)

        assert len(system.audit) == events
        assert ledger.get_portfolio(USER).current_yield == 320


class TestApplyRebalance:
    """Test cases for the privileged venue switch."""

    @pytest.fixture(autouse=True)
    def _portfolio(self, ledger: PortfolioLedger) -> None:
        ledger.create_portfolio(USER, 1_000_000)

    def test_success(self, ledger: PortfolioLedger, compound: int, system: AutopilotSystem) -> None:
        """Test a valid switch moves the portfolio."""
        system.clock.advance(100)

        result = ledger.apply_rebalance(AGENT, USER, compound, 780, 300)

        assert result.success
        assert result.realized_profit == 46_000 - 300
        assert result.previous_yield == 320
        assert result.previous_protocol == system.venues.lookup("Aave")

        portfolio = ledger.get_portfolio(USER)
        assert portfolio.protocol_name == "Compound"
        assert portfolio.current_protocol == compound
        assert portfolio.current_yield == 780
        assert portfolio.last_rebalance == system.clock.now()
        assert portfolio.cumulative_profit == 45_700
        # Switching venues does not move value
        assert portfolio.total_value == 1_000_000

    def test_requires_agent(self, ledger: PortfolioLedger, compound: int) -> None:
        """Test the switch needs the agent capability."""
        with pytest.raises(AuthorizationError):
            ledger.apply_rebalance("0xstranger", USER, compound, 780, 300)

    def test_unprofitable_is_failure_value(self, ledger: PortfolioLedger, compound: int) -> None:
        """Test an unprofitable switch returns a failure result."""
        result = ledger.apply_rebalance(AGENT, USER, compound, 780, 50_000)

        assert isinstance(result, LedgerResult)
        assert not result.success
        assert result.reason.startswith("not profitable")
        assert ledger.get_portfolio(USER).protocol_name == "Aave"

    def test_auto_rebalance_disabled(self, ledger: PortfolioLedger, compound: int) -> None:
        """Test opted-out portfolios are not switched."""
        ledger.toggle_auto_rebalance(USER)

        result = ledger.apply_rebalance(AGENT, USER, compound, 780, 300)

        assert result == LedgerResult.failure("auto-rebalance disabled")

    def test_missing_portfolio(self, ledger: PortfolioLedger, compound: int) -> None:
        """Test switching an unknown owner fails."""
        assert not ledger.apply_rebalance(AGENT, "0xnobody", compound, 780, 300).success

    def test_unknown_venue(self, ledger: PortfolioLedger) -> None:
        """Test switching to an unknown venue fails."""
        result = ledger.apply_rebalance(AGENT, USER, 999, 780, 300)

        assert not result.success
        assert "unknown venue" in result.reason

    def test_event(self, ledger: PortfolioLedger, compound: int, system: AutopilotSystem) -> None:
        """Test the switch is audited."""
        ledger.apply_rebalance(AGENT, USER, compound, 780, 300)

        event = system.audit.events(AuditEventType.PORTFOLIO_REBALANCED)[0]
        assert event.data["from_protocol"] == "Aave"
        assert event.data["to_protocol"] == "Compound"
        assert event.data["profit"] == 45_700


class TestEmergencyRecover:
    """Test cases for admin recovery."""

    @pytest.fixture(autouse=True)
    def _portfolio(self, ledger: PortfolioLedger) -> None:
        ledger.create_portfolio(USER, 1_000_000)

    def test_requires_pause(self, ledger: PortfolioLedger) -> None:
        """Test recovery only runs while paused."""
        with pytest.raises(InvalidStateError, match="paused"):
            ledger.emergency_recover(ADMIN, USER)

    def test_requires_admin(self, ledger: PortfolioLedger, system: AutopilotSystem) -> None:
        """Test recovery is admin only."""
        system.gate.pause(ADMIN)

        with pytest.raises(AuthorizationError):
            ledger.emergency_recover(AGENT, USER)

    def test_recover(self, ledger: PortfolioLedger, system: AutopilotSystem) -> None:
        """Test recovery drains the portfolio and is audited."""
        system.gate.pause(ADMIN)

        assert ledger.emergency_recover(ADMIN, USER) == 1_000_000
        assert ledger.get_portfolio(USER).total_value == 0
        assert system.audit.count(AuditEventType.EMERGENCY_RECOVERY) == 1


class TestPortfolioValidation:
    """Test cases for the Portfolio dataclass."""

    def test_negative_value_rejected(self) -> None:
        """Test a negative value is rejected."""
        with pytest.raises(ValueError):
            Portfolio(
                owner=USER,
                total_value=-1,
                current_yield=320,
                current_protocol=1,
                protocol_name="Aave",
                risk_profile=RiskProfile.BALANCED,
            )

    def test_to_dict(self, ledger: PortfolioLedger) -> None:
        """Test serialization shows venue and profile names."""
        payload = ledger.create_portfolio(USER, 1_000_000).to_dict()

        assert payload["current_protocol"] == "Aave"
        assert payload["risk_profile"] == "BALANCED"
