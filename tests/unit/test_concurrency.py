"""Concurrency tests for per-user serialization."""

import threading
from concurrent.futures import ThreadPoolExecutor

from defi_autopilot.rebalancing import RequestStatus
from defi_autopilot.system import AutopilotSystem
from defi_autopilot.utils.exceptions import CooldownError, InvalidStateError

AGENT = "0xagent"


def _run_together(count: int, fn):
    """Start ``count`` calls of fn(i) at the same moment and collect outcomes."""
    barrier = threading.Barrier(count)

    def call(i):
        barrier.wait()
        try:
            return fn(i)
        except Exception as e:  # collected for assertions
            return e

    with ThreadPoolExecutor(max_workers=count) as pool:
        return list(pool.map(call, range(count)))


class TestConcurrentAdmission:
    """Test cases for simultaneous requests."""

    def test_distinct_users_get_unique_ids(self, engine: AutopilotSystem) -> None:
        """Test concurrent users receive distinct request ids."""
        users = [f"0xuser{i}" for i in range(16)]
        for user in users:
            engine.ledger.create_portfolio(user, 1_000_000)

        outcomes = _run_together(
            len(users),
            lambda i: engine.coordinator.request_rebalance(
                AGENT, users[i], "Aave", "Compound", 780, 300
            ),
        )

        assert sorted(outcomes) == list(range(1, len(users) + 1))

    def test_same_user_admitted_once(self, engine: AutopilotSystem) -> None:
        """Test one user racing itself is admitted once."""
        engine.ledger.create_portfolio("0xalice", 1_000_000)

        outcomes = _run_together(
            8,
            lambda i: engine.coordinator.request_rebalance(
                AGENT, "0xalice", "Aave", "Compound", 780, 300
            ),
        )

        admitted = [o for o in outcomes if isinstance(o, int)]
        assert len(admitted) == 1
        assert all(isinstance(o, CooldownError) for o in outcomes if not isinstance(o, int))


class TestConcurrentExecution:
    """Test cases for simultaneous execution of one request."""

    def test_executed_exactly_once(self, engine: AutopilotSystem) -> None:
        """Test racing executions run the switch once."""
        engine.ledger.create_portfolio("0xalice", 1_000_000)
        request_id = engine.coordinator.request_rebalance(
            AGENT, "0xalice", "Aave", "Compound", 780, 300
        )

        outcomes = _run_together(
            8, lambda i: engine.coordinator.execute_rebalance(AGENT, request_id)
        )

        executed = [o for o in outcomes if not isinstance(o, Exception)]
        assert len(executed) == 1
        assert executed[0].status == RequestStatus.EXECUTED
        assert all(isinstance(o, InvalidStateError) for o in outcomes if isinstance(o, Exception))
        assert engine.coordinator.get_metrics().total_rebalances == 1
        assert engine.ledger.get_portfolio("0xalice").cumulative_profit == 45_700

    def test_deposits_are_not_lost(self, engine: AutopilotSystem) -> None:
        """Test concurrent deposits all land."""
        engine.ledger.create_portfolio("0xalice", 1_000_000)

        _run_together(20, lambda i: engine.ledger.deposit("0xalice", 100))

        assert engine.ledger.get_portfolio("0xalice").total_value == 1_002_000
