"""Append-only audit trail for engine events.

Every state change in the engine emits an ``AuditEvent``. Events are kept in
memory for inspection and written as JSON lines to the ``autopilot.audit``
logger, optionally to a rotating file as well. The audit trail is egress only:
nothing in the engine reads it back to make a decision.
"""

import json
import logging
import logging.handlers
import threading
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


class AuditEventType(Enum):
    """Types of engine events."""

    # Portfolio events
    PORTFOLIO_CREATED = "portfolio_created"
    PORTFOLIO_FUNDED = "portfolio_funded"
    PORTFOLIO_WITHDRAWN = "portfolio_withdrawn"
    AUTO_REBALANCE_TOGGLED = "auto_rebalance_toggled"
    RISK_PROFILE_UPDATED = "risk_profile_updated"
    PORTFOLIO_REBALANCED = "portfolio_rebalanced"
    EMERGENCY_RECOVERY = "emergency_recovery"

    # Registry events
    PROTOCOL_REGISTERED = "protocol_registered"
    YIELD_UPDATED = "yield_updated"
    PROTOCOL_DEACTIVATED = "protocol_deactivated"

    # Rebalance events
    REBALANCE_REQUESTED = "rebalance_requested"
    REBALANCE_EXECUTED = "rebalance_executed"
    REBALANCE_CANCELLED = "rebalance_cancelled"
    BATCH_OPTIMIZED = "batch_optimized"

    # Administrative events
    AUTHORIZATION_CHANGED = "authorization_changed"
    ADMIN_TRANSFERRED = "admin_transferred"
    SYSTEM_PAUSED = "system_paused"
    SYSTEM_UNPAUSED = "system_unpaused"


@dataclass(frozen=True)
class AuditEvent:
    """A single audit record.

    Attributes:
        sequence: Position in the trail, starting at 1
        event_type: What happened
        timestamp: Engine clock time (unix seconds)
        data: Event payload
    """

    sequence: int
    event_type: AuditEventType
    timestamp: int
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["event_type"] = self.event_type.value
        return payload


class AuditLogger:
    """Collects audit events and mirrors them to structured logs.

    Example:
        >>> audit = AuditLogger()
        >>> audit.emit(AuditEventType.YIELD_UPDATED, 1700000000,
        ...            protocol="Compound", apy=780)
        >>> audit.events(AuditEventType.YIELD_UPDATED)[0].data["apy"]
        780
    """

    def __init__(
        self,
        log_dir: Optional[str | Path] = None,
        max_bytes: int = 10 * 1024 * 1024,  # 10 MB
        backup_count: int = 30,
    ):
        """Initialize the audit logger.

        Args:
            log_dir: Directory for ``audit.log``. No file output when None.
            max_bytes: Maximum size per log file (default 10 MB)
            backup_count: Number of rotated files to keep (default 30)
        """
        self._events: List[AuditEvent] = []
        self._lock = threading.Lock()
        self.logger = logging.getLogger("autopilot.audit")
        self.log_dir: Optional[Path] = None

        if log_dir is not None:
            self.log_dir = Path(log_dir)
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self._attach_file_handler(max_bytes, backup_count)

    def _attach_file_handler(self, max_bytes: int, backup_count: int) -> None:
        log_file = self.log_dir / "audit.log"
        for handler in self.logger.handlers:
            if getattr(handler, "baseFilename", None) == str(log_file.resolve()):
                return

        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(
            logging.Formatter(
                '{"logged_at": "%(asctime)s", "level": "%(levelname)s", "event": %(message)s}'
            )
        )
        self.logger.addHandler(file_handler)
        self.logger.setLevel(logging.INFO)

    def emit(
        self,
        event_type: AuditEventType,
        timestamp: int,
        **data: Any,
    ) -> AuditEvent:
        """Append an event to the trail.

        Args:
            event_type: Type of engine event
            timestamp: Engine clock time of the event
            **data: Event payload; values must be JSON serializable

        Returns:
            The recorded event
        """
        with self._lock:
            event = AuditEvent(
                sequence=len(self._events) + 1,
                event_type=event_type,
                timestamp=timestamp,
                data=data,
            )
            self._events.append(event)

        self.logger.info(json.dumps(event.to_dict(), default=str))
        return event

    def events(self, event_type: Optional[AuditEventType] = None) -> List[AuditEvent]:
        """Return recorded events, optionally filtered by type."""
        with self._lock:
            snapshot = list(self._events)
        if event_type is None:
            return snapshot
        return [e for e in snapshot if e.event_type == event_type]

    def count(self, event_type: Optional[AuditEventType] = None) -> int:
        return len(self.events(event_type))

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
