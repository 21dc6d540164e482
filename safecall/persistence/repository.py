"""
In-memory Session Repository

Stand-in for the durable session/incident store. Records are kept as plain
JSON-compatible dicts, the same shape a real table row would have.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from safecall.core.exceptions import PersistenceFailure
from safecall.models.incident import Incident
from safecall.models.session import SessionSnapshot
from safecall.services.interfaces import SessionRepository

logger = logging.getLogger(__name__)


class InMemorySessionRepository(SessionRepository):
    """Dict-backed repository. Unknown ids raise PersistenceFailure."""

    def __init__(self):
        self.sessions: dict[str, dict[str, Any]] = {}
        self.incidents: dict[str, dict[str, Any]] = {}

    async def create_session(self, snapshot: SessionSnapshot) -> None:
        row = snapshot.model_dump(mode="json", exclude={"history"})
        row["status"] = "active"
        row["message_count"] = snapshot.message_count
        row["created_at"] = datetime.now(timezone.utc).isoformat()
        self.sessions[snapshot.id] = row
        logger.debug(f"[InMemorySessionRepository] Stored session {snapshot.id}")

    async def update_session(self, session_id: str, updates: dict[str, Any]) -> None:
        row = self.sessions.get(session_id)
        if row is None:
            raise PersistenceFailure(f"Session {session_id} not persisted")
        row.update(updates)
        row["updated_at"] = datetime.now(timezone.utc).isoformat()

    async def create_incident(self, incident: Incident) -> None:
        self.incidents[incident.id] = incident.model_dump(mode="json")
        logger.debug(f"[InMemorySessionRepository] Stored incident {incident.id}")

    async def update_incident(self, incident_id: str, updates: dict[str, Any]) -> None:
        row = self.incidents.get(incident_id)
        if row is None:
            raise PersistenceFailure(f"Incident {incident_id} not persisted")
        row.update(updates)

    async def list_incidents(self, session_id: Optional[str] = None) -> list[dict[str, Any]]:
        rows = list(self.incidents.values())
        if session_id is not None:
            rows = [row for row in rows if row.get("session_id") == session_id]
        return rows
