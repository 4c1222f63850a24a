"""Statement audit trail for DBPulse connectors.

Every native statement a connector is asked to run is recorded here before
it reaches the driver, including statements the read-only guard refuses.
The trail is how operators (and the test suite) verify that monitoring never
sent anything but catalog reads to an engine.

Classes:
    AuditOutcome: What happened to an audited statement
    StatementAuditEvent: One audited statement
    StatementAuditor: Bounded in-memory audit trail with optional handlers

Example:
    >>> auditor = StatementAuditor("prod_db")
    >>> connector = PostgreSQLConnector(config, auditor=auditor)
    >>> await monitor.get_health()
    >>> {event.keyword for event in auditor.events}
    {'SELECT'}
"""

import uuid
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from .structured import StructuredLogger


class AuditOutcome(Enum):
    """What happened to an audited statement."""

    ISSUED = "issued"
    REJECTED = "rejected"
    FAILED = "failed"


@dataclass
class StatementAuditEvent:
    """One audited statement.

    Attributes:
        platform: Engine platform name
        database_id: Configured database identifier
        operation: Operation tag from the statement marker, if any
        keyword: Leading SQL keyword
        statement: Full statement text
        outcome: Issued, rejected by the guard, or failed at the engine
        error_code: DBPulse error code when rejected or failed
    """

    platform: str
    database_id: str
    operation: Optional[str]
    keyword: str
    statement: str
    outcome: AuditOutcome = AuditOutcome.ISSUED
    error_code: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['outcome'] = self.outcome.value
        return data


class StatementAuditor:
    """Bounded in-memory statement audit trail.

    Appending to the trail is the only shared state; it never influences
    what a monitoring call returns.
    """

    def __init__(
        self,
        name: str,
        *,
        max_events: int = 10000,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        """Initialize statement auditor.

        Args:
            name: Auditor name, usually the database id
            max_events: Oldest events are discarded beyond this count
            logger: Custom structured logger instance
        """
        self.name = name
        self.logger = logger or StructuredLogger(f"audit.{name}")
        self._events: Deque[StatementAuditEvent] = deque(maxlen=max_events)
        self._handlers: List[Callable[[StatementAuditEvent], None]] = []

    def add_handler(self, handler: Callable[[StatementAuditEvent], None]) -> None:
        """Call ``handler`` for every recorded event."""
        self._handlers.append(handler)

    def record(self, event: StatementAuditEvent) -> StatementAuditEvent:
        """Append an event, log it and notify handlers."""
        self._events.append(event)

        log = self.logger.warning if event.outcome is AuditOutcome.REJECTED else self.logger.debug
        log(
            "Statement audited",
            platform=event.platform,
            database_id=event.database_id,
            operation=event.operation,
            keyword=event.keyword,
            outcome=event.outcome.value,
            error_code=event.error_code,
        )

        for handler in self._handlers:
            try:
                handler(event)
            except Exception as e:
                self.logger.error(
                    "Audit handler failed",
                    handler=getattr(handler, "__name__", repr(handler)),
                    error=str(e),
                )

        return event

    @property
    def events(self) -> List[StatementAuditEvent]:
        return list(self._events)

    def statements(self) -> List[str]:
        """Statement texts in the order they were recorded."""
        return [event.statement for event in self._events]

    def rejected(self) -> List[StatementAuditEvent]:
        return [e for e in self._events if e.outcome is AuditOutcome.REJECTED]

    def clear(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)
