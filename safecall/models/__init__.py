# Models Package
"""
Pydantic models for the session core.

Assessments, messages and contacts are immutable after creation.
"""

from safecall.models.threat import ThreatLevel, ThreatAssessment, VisualAssessment
from safecall.models.session import (
    Message,
    MessageRole,
    Session,
    SessionKind,
    SessionSnapshot,
    SessionState,
)
from safecall.models.incident import (
    ContactKind,
    EmergencyContact,
    Incident,
    NotificationAttempt,
    NotificationChannel,
)

__all__ = [
    "ThreatLevel",
    "ThreatAssessment",
    "VisualAssessment",
    "Message",
    "MessageRole",
    "Session",
    "SessionKind",
    "SessionSnapshot",
    "SessionState",
    "ContactKind",
    "EmergencyContact",
    "Incident",
    "NotificationAttempt",
    "NotificationChannel",
]
