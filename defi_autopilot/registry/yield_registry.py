"""Yield registry: per-venue yield, risk and liquidity records.

Writes come from the external analyzer through ``update_yield`` and from the
admin through registration and deactivation. Reads answer "best eligible
opportunity" queries for the coordinator and the decision agent.
"""

import threading
from collections import deque
from typing import Deque, Dict, List, Optional

from defi_autopilot.auth.gate import AuthorizationGate, Capability
from defi_autopilot.registry.base import (
    MAX_RISK_SCORE,
    MIN_RISK_SCORE,
    VenueTable,
    YieldRecord,
)
from defi_autopilot.utils.audit import AuditEventType, AuditLogger
from defi_autopilot.utils.clock import Clock
from defi_autopilot.utils.config import EngineSettings
from defi_autopilot.utils.exceptions import NotFoundError, ValidationError
from defi_autopilot.utils.locks import KeyedLocks
from defi_autopilot.utils.logging import get_logger

logger = get_logger(__name__)


def _check_risk_score(risk_score: int) -> None:
    if not MIN_RISK_SCORE <= risk_score <= MAX_RISK_SCORE:
        raise ValidationError(
            f"risk_score must be in [{MIN_RISK_SCORE}, {MAX_RISK_SCORE}], got {risk_score}"
        )


class YieldRegistry:
    """Stores yield records and bounded history per venue.

    Example:
        >>> registry.register_protocol(admin, "Compound", risk_score=2)
        >>> registry.update_yield(analyzer, "Compound", apy=780,
        ...                       tvl=180_000_000_000, risk_score=2)
        >>> registry.get_best_yield_for_risk(max_risk=5, min_tvl=10_000_000_000).name
        'Compound'
    """

    def __init__(
        self,
        gate: AuthorizationGate,
        venues: VenueTable,
        settings: EngineSettings,
        clock: Clock,
        audit: AuditLogger,
    ):
        """Initialize the registry.

        Args:
            gate: Authorization gate consulted on every write
            venues: Shared venue id table
            settings: Engine settings (staleness, caps, history size)
            clock: Engine clock; the only source of timestamps
            audit: Audit trail
        """
        self.gate = gate
        self.venues = venues
        self.settings = settings
        self.clock = clock
        self.audit = audit

        self._records: Dict[int, YieldRecord] = {}
        self._history: Dict[int, Deque[YieldRecord]] = {}
        self._order: List[int] = []
        self._registration_lock = threading.Lock()
        self._venue_locks = KeyedLocks()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def register_protocol(self, caller: str, name: str, risk_score: int) -> int:
        """Register a new venue. Admin only.

        The venue starts with no observation (timestamp 0), so it is stale
        and not selectable until its first ``update_yield``.

        Returns:
            The venue id

        Raises:
            AuthorizationError: If caller is not the admin
            ValidationError: On empty name, duplicate name or bad risk score
        """
        self.gate.require_admin(caller)
        if not name:
            raise ValidationError("protocol name must be non-empty")
        _check_risk_score(risk_score)

        with self._registration_lock:
            venue_id = self.venues.intern(name)
            if venue_id in self._records:
                raise ValidationError(f"Protocol already registered: {name}")

            self._records[venue_id] = YieldRecord(
                protocol=venue_id,
                name=name,
                apy=0,
                tvl=0,
                risk_score=risk_score,
                timestamp=0,
                active=True,
                registration_order=len(self._order),
            )
            self._history[venue_id] = deque(maxlen=self.settings.history_size)
            self._order.append(venue_id)

        logger.info("Registered protocol %s (id=%d, risk=%d)", name, venue_id, risk_score)
        self.audit.emit(
            AuditEventType.PROTOCOL_REGISTERED,
            self.clock.now(),
            protocol=name,
            risk_score=risk_score,
        )
        return venue_id

    def update_yield(
        self,
        caller: str,
        name: str,
        apy: int,
        tvl: int,
        risk_score: int,
    ) -> YieldRecord:
        """Record a new yield observation for a venue.

        The previous record is archived at the front of the history ring.
        The registry stamps the record with its own clock.

        Raises:
            AuthorizationError: If caller lacks the updater capability
            PausedError: If the system is paused
            NotFoundError: If the venue is not registered
            ValidationError: On out-of-range risk, apy or tvl
        """
        self.gate.require(caller, Capability.UPDATER)
        self.gate.require_not_paused()
        venue_id = self._require_venue(name)

        _check_risk_score(risk_score)
        if apy < 0 or apy > self.settings.max_apy_bps:
            raise ValidationError(
                f"apy must be in [0, {self.settings.max_apy_bps}] bps, got {apy}"
            )
        if tvl < self.settings.min_tvl:
            raise ValidationError(f"tvl {tvl} below minimum {self.settings.min_tvl}")

        with self._venue_locks.hold(venue_id):
            previous = self._records[venue_id]
            record = YieldRecord(
                protocol=venue_id,
                name=name,
                apy=apy,
                tvl=tvl,
                risk_score=risk_score,
                timestamp=self.clock.now(),
                active=previous.active,
                registration_order=previous.registration_order,
            )
            if previous.timestamp > 0:
                self._history[venue_id].appendleft(previous)
            self._records[venue_id] = record

        logger.debug("Yield updated for %s: apy=%d tvl=%d risk=%d", name, apy, tvl, risk_score)
        self.audit.emit(
            AuditEventType.YIELD_UPDATED,
            record.timestamp,
            protocol=name,
            apy=apy,
            tvl=tvl,
            risk_score=risk_score,
        )
        return record

    def deactivate_protocol(self, caller: str, name: str, reason: str = "") -> None:
        """Exclude a venue from selection. Admin only; history is kept."""
        self.gate.require_admin(caller)
        venue_id = self._require_venue(name)

        with self._venue_locks.hold(venue_id):
            self._records[venue_id] = self._records[venue_id].deactivated()

        logger.warning("Deactivated protocol %s: %s", name, reason or "no reason given")
        self.audit.emit(
            AuditEventType.PROTOCOL_DEACTIVATED,
            self.clock.now(),
            protocol=name,
            reason=reason,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def is_stale(self, record: YieldRecord) -> bool:
        return self.clock.now() - record.timestamp > self.settings.max_staleness

    def is_selectable(self, record: YieldRecord) -> bool:
        """Active and fresh."""
        return record.active and not self.is_stale(record)

    def is_registered(self, name: str) -> bool:
        venue_id = self.venues.lookup(name)
        return venue_id is not None and venue_id in self._records

    def get_yield(self, name: str) -> YieldRecord:
        return self._records[self._require_venue(name)]

    def get_record(self, venue_id: int) -> Optional[YieldRecord]:
        return self._records.get(venue_id)

    def get_history(self, name: str) -> List[YieldRecord]:
        """Archived records for a venue, most recent first."""
        venue_id = self._require_venue(name)
        with self._venue_locks.hold(venue_id):
            return list(self._history[venue_id])

    def get_all_yields(self) -> List[YieldRecord]:
        """Current records of every venue in registration order."""
        return [self._records[v] for v in list(self._order)]

    def get_opportunities(self, max_risk: int, min_tvl: int) -> List[YieldRecord]:
        """All selectable records within the limits, best first.

        Sorted by apy descending; equal apy keeps registration order.
        """
        eligible = [
            record
            for record in self.get_all_yields()
            if self.is_selectable(record)
            and record.risk_score <= max_risk
            and record.tvl >= min_tvl
        ]
        # sorted() is stable, so registration order breaks ties
        return sorted(eligible, key=lambda r: -r.apy)

    def get_best_yield_for_risk(self, max_risk: int, min_tvl: int) -> Optional[YieldRecord]:
        """Highest-apy selectable record within the limits, or None.

        Ties are broken by registration order (first registered wins).
        """
        best: Optional[YieldRecord] = None
        for record in self.get_all_yields():
            if not self.is_selectable(record):
                continue
            if record.risk_score > max_risk or record.tvl < min_tvl:
                continue
            if best is None or record.apy > best.apy:
                best = record
        return best

    def _require_venue(self, name: str) -> int:
        venue_id = self.venues.lookup(name)
        if venue_id is None or venue_id not in self._records:
            raise NotFoundError(f"Protocol not registered: {name}")
        return venue_id
