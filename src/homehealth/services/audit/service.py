from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

logger = logging.getLogger("audit")


@dataclass
class AuditEvent:
    """Structured representation of a workflow audit event.

    Keeps the payload free of PHI: ids, statuses and actions only, never the
    clinical narrative or assessment answers.
    """

    timestamp: str
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    subject: Optional[str] = None
    extra: Optional[Dict[str, Any]] = None


class AuditService:
    def __init__(self, *, keep_recent: int = 0) -> None:
        # Optional ring of recent events for diagnostics and tests.
        self._keep_recent = keep_recent
        self.recent: List[AuditEvent] = []

    def log_event(
        self,
        *,
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        subject: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
        at: Optional[datetime] = None,
    ) -> AuditEvent:
        """Log a structured audit event.

        - `action`: workflow verb, e.g. "complete", "approve_qa", "lock".
        - `resource_type`: entity kind, e.g. "TASK", "ASSESSMENT".
        - `resource_id`: stable identifier (UUID string).
        - `subject`: id of the acting user.
        - `extra`: small dict of non-PHI metadata (statuses, counts).
        - `at`: when the change happened; defaults to the current UTC time.
        """

        event = AuditEvent(
            timestamp=(at or datetime.now(timezone.utc)).isoformat(),
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            subject=subject,
            extra=extra,
        )

        try:
            logger.info(json.dumps(asdict(event)))
        except TypeError:
            # Something in extra is not JSON serializable; log without it.
            safe_event = asdict(event)
            safe_event["extra"] = None
            logger.info(json.dumps(safe_event))

        if self._keep_recent:
            self.recent.append(event)
            del self.recent[: -self._keep_recent]
        return event


audit_service = AuditService(keep_recent=200)
