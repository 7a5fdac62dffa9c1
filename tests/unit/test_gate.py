"""Unit tests for AuthorizationGate."""

import pytest

from defi_autopilot.auth.gate import AuthorizationGate, Capability
from defi_autopilot.utils.audit import AuditEventType, AuditLogger
from defi_autopilot.utils.exceptions import AuthorizationError, PausedError, ValidationError

ADMIN = "0xadmin"


@pytest.fixture
def audit() -> AuditLogger:
    return AuditLogger()


@pytest.fixture
def gate(audit: AuditLogger) -> AuthorizationGate:
    return AuthorizationGate(admin=ADMIN, audit=audit, clock=lambda: 1_700_000_000)


class TestAuthorize:
    """Test cases for granting and revoking capabilities."""

    def test_admin_holds_every_capability(self, gate: AuthorizationGate) -> None:
        """Admin passes every capability check without being granted."""
        assert gate.is_authorized(ADMIN, Capability.AGENT)
        assert gate.is_authorized(ADMIN, Capability.UPDATER)

    def test_grant_and_revoke(self, gate: AuthorizationGate) -> None:
        """Test a capability can be granted and revoked."""
        gate.authorize(ADMIN, Capability.AGENT, "0xbot", True)
        assert gate.is_authorized("0xbot", Capability.AGENT)

        gate.authorize(ADMIN, Capability.AGENT, "0xbot", False)
        assert not gate.is_authorized("0xbot", Capability.AGENT)

    def test_capabilities_are_independent(self, gate: AuthorizationGate) -> None:
        """An updater is not an agent and vice versa."""
        gate.authorize(ADMIN, Capability.UPDATER, "0xoracle", True)

        assert gate.is_authorized("0xoracle", Capability.UPDATER)
        assert not gate.is_authorized("0xoracle", Capability.AGENT)
        assert gate.members(Capability.UPDATER) == {"0xoracle"}
        assert gate.members(Capability.AGENT) == set()

    def test_non_admin_cannot_authorize(self, gate: AuthorizationGate) -> None:
        """Test only the admin may change capabilities."""
        gate.authorize(ADMIN, Capability.AGENT, "0xbot", True)

        with pytest.raises(AuthorizationError, match="is not the admin"):
            gate.authorize("0xbot", Capability.AGENT, "0xother", True)

    def test_empty_address_rejected(self, gate: AuthorizationGate) -> None:
        """Test an empty address is malformed."""
        with pytest.raises(ValidationError):
            gate.authorize(ADMIN, Capability.AGENT, "", True)

    def test_empty_admin_rejected(self) -> None:
        """Test the gate needs an admin address."""
        with pytest.raises(ValidationError):
            AuthorizationGate(admin="")

    def test_require_raises_authorization_error(self, gate: AuthorizationGate) -> None:
        """Test require raises for a missing capability."""
        with pytest.raises(AuthorizationError, match="lacks agent capability"):
            gate.require("0xstranger", Capability.AGENT)

    def test_authorization_event_emitted(
        self, gate: AuthorizationGate, audit: AuditLogger
    ) -> None:
        """Test capability changes are audited."""
        gate.authorize(ADMIN, Capability.UPDATER, "0xoracle", True)

        events = audit.events(AuditEventType.AUTHORIZATION_CHANGED)
        assert len(events) == 1
        assert events[0].data == {"capability": "updater", "address": "0xoracle", "allowed": True}
        assert events[0].timestamp == 1_700_000_000


class TestTransferAdmin:
    """Test cases for admin handover."""

    def test_transfer(self, gate: AuthorizationGate, audit: AuditLogger) -> None:
        """Test the admin role moves to the new address."""
        gate.transfer_admin(ADMIN, "0xnewadmin")

        assert gate.admin == "0xnewadmin"
        assert not gate.is_admin(ADMIN)
        assert not gate.is_authorized(ADMIN, Capability.AGENT)
        assert audit.count(AuditEventType.ADMIN_TRANSFERRED) == 1

    def test_only_admin_can_transfer(self, gate: AuthorizationGate) -> None:
        """Test non-admins cannot transfer the admin role."""
        with pytest.raises(AuthorizationError):
            gate.transfer_admin("0xstranger", "0xstranger")
        assert gate.admin == ADMIN


class TestPause:
    """Test cases for the pause switch."""

    def test_pause_and_unpause(self, gate: AuthorizationGate, audit: AuditLogger) -> None:
        """Test the pause switch and its audit events."""
        gate.pause(ADMIN)
        assert gate.paused
        with pytest.raises(PausedError):
            gate.require_not_paused()

        gate.unpause(ADMIN)
        assert not gate.paused
        gate.require_not_paused()

        assert audit.count(AuditEventType.SYSTEM_PAUSED) == 1
        assert audit.count(AuditEventType.SYSTEM_UNPAUSED) == 1

    def test_agent_cannot_pause(self, gate: AuthorizationGate) -> None:
        """Test agents cannot pause the system."""
        gate.authorize(ADMIN, Capability.AGENT, "0xbot", True)

        with pytest.raises(AuthorizationError):
            gate.pause("0xbot")
        assert not gate.paused

    def test_admin_operations_allowed_while_paused(self, gate: AuthorizationGate) -> None:
        """Authorization changes still work while paused."""
        gate.pause(ADMIN)
        gate.authorize(ADMIN, Capability.AGENT, "0xbot", True)

        assert gate.is_authorized("0xbot", Capability.AGENT)


def test_gate_without_audit() -> None:
    """Gate works standalone with no audit trail."""
    gate = AuthorizationGate(admin=ADMIN)
    gate.authorize(ADMIN, Capability.AGENT, "0xbot", True)
    gate.pause(ADMIN)

    assert gate.paused
