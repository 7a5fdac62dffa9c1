"""Capability-based authorization and the global pause switch.

The gate holds two independent capability sets (yield updaters and decision
agents) plus a single admin principal that satisfies every check. All
privileged operations in the engine consult the gate before touching state.
"""

import threading
from enum import Enum
from typing import Callable, Dict, Optional, Set

from defi_autopilot.utils.audit import AuditEventType, AuditLogger
from defi_autopilot.utils.exceptions import AuthorizationError, PausedError, ValidationError
from defi_autopilot.utils.logging import get_logger

logger = get_logger(__name__)


class Capability(Enum):
    """Capability sets managed by the gate."""

    UPDATER = "updater"  # May push yield observations
    AGENT = "agent"  # May request/execute/cancel rebalances


class AuthorizationGate:
    """Answers yes/no authorization queries.

    Example:
        >>> gate = AuthorizationGate(admin="0xadmin")
        >>> gate.authorize("0xadmin", Capability.AGENT, "0xbot", True)
        >>> gate.is_authorized("0xbot", Capability.AGENT)
        True
        >>> gate.is_authorized("0xbot", Capability.UPDATER)
        False
    """

    def __init__(
        self,
        admin: str,
        audit: Optional[AuditLogger] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        """Initialize the gate.

        Args:
            admin: Admin principal address
            audit: Audit trail for administrative events
            clock: Callable returning the current timestamp for audit events
        """
        if not admin:
            raise ValidationError("admin address must be non-empty")

        self._admin = admin
        self._members: Dict[Capability, Set[str]] = {c: set() for c in Capability}
        self._paused = False
        self._lock = threading.RLock()
        self._audit = audit
        self._now = clock or (lambda: 0)

    @property
    def admin(self) -> str:
        return self._admin

    @property
    def paused(self) -> bool:
        return self._paused

    def is_admin(self, address: str) -> bool:
        return address == self._admin

    def is_authorized(self, address: str, capability: Capability) -> bool:
        """Return True if address is admin or holds the capability."""
        with self._lock:
            return address == self._admin or address in self._members[capability]

    def require(self, address: str, capability: Capability) -> None:
        """Raise AuthorizationError unless address holds the capability."""
        if not self.is_authorized(address, capability):
            raise AuthorizationError(f"{address} lacks {capability.value} capability")

    def require_admin(self, address: str) -> None:
        if not self.is_admin(address):
            raise AuthorizationError(f"{address} is not the admin")

    def require_not_paused(self) -> None:
        if self._paused:
            raise PausedError("System is paused")

    def members(self, capability: Capability) -> Set[str]:
        with self._lock:
            return set(self._members[capability])

    def authorize(
        self,
        caller: str,
        capability: Capability,
        address: str,
        allowed: bool,
    ) -> None:
        """Grant or revoke a capability. Admin only.

        Raises:
            AuthorizationError: If caller is not the admin
            ValidationError: If address is empty
        """
        self.require_admin(caller)
        if not address:
            raise ValidationError("address must be non-empty")

        with self._lock:
            if allowed:
                self._members[capability].add(address)
            else:
                self._members[capability].discard(address)

        logger.info(
            "%s %s capability for %s",
            "Granted" if allowed else "Revoked",
            capability.value,
            address,
        )
        self._emit(
            AuditEventType.AUTHORIZATION_CHANGED,
            capability=capability.value,
            address=address,
            allowed=allowed,
        )

    def transfer_admin(self, caller: str, new_admin: str) -> None:
        """Hand the admin role to another address. Admin only."""
        self.require_admin(caller)
        if not new_admin:
            raise ValidationError("new admin address must be non-empty")

        with self._lock:
            previous, self._admin = self._admin, new_admin

        logger.warning("Admin transferred from %s to %s", previous, new_admin)
        self._emit(AuditEventType.ADMIN_TRANSFERRED, previous=previous, new_admin=new_admin)

    def pause(self, caller: str) -> None:
        """Block every non-admin mutating entry point. Admin only."""
        self.require_admin(caller)
        with self._lock:
            self._paused = True
        logger.warning("System paused by %s", caller)
        self._emit(AuditEventType.SYSTEM_PAUSED, by=caller)

    def unpause(self, caller: str) -> None:
        self.require_admin(caller)
        with self._lock:
            self._paused = False
        logger.info("System unpaused by %s", caller)
        self._emit(AuditEventType.SYSTEM_UNPAUSED, by=caller)

    def _emit(self, event_type: AuditEventType, **data) -> None:
        if self._audit is not None:
            self._audit.emit(event_type, self._now(), **data)
