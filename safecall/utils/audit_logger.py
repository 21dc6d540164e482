"""
Audit Logger - Append-Only Session Lifecycle Trail

Every session transition that matters for later review (join, escalation,
end, disconnect, idle eviction, incident resolution) is written as one JSON
line. Entries are never rewritten.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from safecall.models.incident import Incident
from safecall.models.session import SessionSnapshot

logger = logging.getLogger(__name__)


class AuditEventType:
    JOINED = "session_joined"
    REJOINED = "session_rejoined"
    ESCALATED = "session_escalated"
    ENDED = "session_ended"
    DISCONNECTED = "session_disconnected"
    EVICTED = "session_evicted"
    INCIDENT_CREATED = "incident_created"
    INCIDENT_RESOLVED = "incident_resolved"


class AuditLoggerError(Exception):
    """Raised when audit logging fails."""
    pass


class AuditLogger:
    """
    Append-only audit logger for session lifecycle events.

    Writes JSON Lines (JSONL) format for easy parsing and replay.
    """

    DEFAULT_LOG_FILE = "session_audit.jsonl"

    def __init__(
        self,
        log_dir: Optional[Path] = None,
        log_filename: str = DEFAULT_LOG_FILE,
    ):
        """
        Initialize audit logger.

        Args:
            log_dir: Directory for audit logs. Defaults to ./audit_logs.
            log_filename: Name of the log file.
        """
        self._log_dir = Path(log_dir) if log_dir else Path("./audit_logs")
        self._log_dir.mkdir(parents=True, exist_ok=True)
        self._log_path = self._log_dir / log_filename

        logger.info(f"[AuditLogger] Initialized at {self._log_path}")

    @property
    def log_path(self) -> Path:
        return self._log_path

    def log_session_event(
        self,
        event_type: str,
        snapshot: SessionSnapshot,
        now: Optional[datetime] = None,
        **extra: Any,
    ) -> dict:
        """
        Log a lifecycle event for a session.

        Args:
            event_type: One of AuditEventType.
            snapshot: Session state at the time of the event.
            now: Event time; defaults to the current UTC time.
            **extra: Additional JSON-serialisable fields.

        Returns:
            The entry that was written.
        """
        now = now or datetime.now(timezone.utc)
        entry = {
            "event_type": event_type,
            "timestamp": now.isoformat(),
            "session_id": snapshot.id,
            "user_id": snapshot.owner_user_id,
            "session_kind": snapshot.kind.value,
            "state": snapshot.state.value,
            "threat_level": snapshot.current_threat_level.value,
            "message_count": snapshot.message_count,
            "duration_seconds": max(0, int((now - snapshot.started_at).total_seconds())),
        }
        entry.update(extra)
        self._append_raw(entry)

        logger.info(f"[AuditLogger] {event_type} logged for session {snapshot.id}")
        return entry

    def log_incident(self, event_type: str, incident: Incident) -> dict:
        """Log an incident event (creation or resolution)."""
        entry = {
            "event_type": event_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "incident_id": incident.id,
            "session_id": incident.session_id,
            "user_id": incident.owner_user_id,
            "threat_level": incident.threat_level.value,
            "contacts_attempted": len(incident.contacted_authorities),
            "notifications_delivered": incident.delivered_count,
            "resolved": incident.resolved,
            "notes": incident.notes,
        }
        self._append_raw(entry)

        logger.info(f"[AuditLogger] {event_type} logged for incident {incident.id}")
        return entry

    def _append_raw(self, event: dict) -> None:
        """
        Append a raw event dict to the log file.

        Args:
            event: Event dict to append.
        """
        try:
            with open(self._log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(event, default=str) + "\n")
        except Exception as e:
            raise AuditLoggerError(f"Failed to append raw event: {e}") from e

    def read_all_logs(self) -> list[dict]:
        """
        Read all log entries from the audit file.

        Returns:
            List of log entries as dicts.
        """
        if not self._log_path.exists():
            return []

        logs = []
        with open(self._log_path, "r", encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    logs.append(json.loads(line))
        return logs

    def find_session_logs(self, session_id: str) -> list[dict]:
        """All entries for one session, in write order."""
        return [
            log for log in self.read_all_logs()
            if log.get("session_id") == session_id
        ]
