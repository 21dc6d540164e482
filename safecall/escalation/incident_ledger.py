"""
Incident Ledger - Append-only escalation history

Every escalation appends a new Incident; nothing is merged or removed.
Resolution is the only mutation and it is one-way.
"""

import logging
from datetime import datetime
from typing import Optional

from safecall.models.incident import Incident

logger = logging.getLogger(__name__)


class IncidentLedger:
    """In-memory incident history keyed by id, indexed by session."""

    def __init__(self):
        self._incidents: dict[str, Incident] = {}
        self._by_session: dict[str, list[str]] = {}

    def __len__(self) -> int:
        return len(self._incidents)

    def record(self, incident: Incident) -> Incident:
        if incident.id in self._incidents:
            raise ValueError(f"Incident {incident.id} already recorded")
        self._incidents[incident.id] = incident
        self._by_session.setdefault(incident.session_id, []).append(incident.id)
        logger.info(
            f"[IncidentLedger] Recorded {incident.id} for session {incident.session_id} "
            f"({incident.threat_level.value})"
        )
        return incident

    def get(self, incident_id: str) -> Optional[Incident]:
        return self._incidents.get(incident_id)

    def for_session(self, session_id: str) -> list[Incident]:
        """Incidents of one session in creation order."""
        return [self._incidents[incident_id] for incident_id in self._by_session.get(session_id, [])]

    def unresolved(self) -> list[Incident]:
        return [incident for incident in self._incidents.values() if not incident.resolved]

    def resolve(self, incident_id: str, notes: str = "", now: Optional[datetime] = None) -> Incident:
        """
        Resolve an incident. Resolving twice keeps the first resolution.

        Raises:
            KeyError: If the incident is unknown.
        """
        incident = self._incidents.get(incident_id)
        if incident is None:
            raise KeyError(incident_id)
        was_resolved = incident.resolved
        incident.resolve(notes, now=now)
        if not was_resolved:
            logger.info(f"[IncidentLedger] Resolved {incident_id}")
        return incident
