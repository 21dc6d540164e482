"""
Incident Models - Emergency Contacts and Escalation Records

An Incident is created exactly once per escalation trigger.
Resolution is a one-way transition and idempotent once resolved.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from safecall.models.threat import ThreatLevel


class ContactKind(str, Enum):
    POLICE = "police"
    MEDICAL = "medical"
    CRISIS = "crisis"
    FIRE = "fire"
    FAMILY = "family"


class NotificationChannel(str, Enum):
    CALL = "call"
    SMS = "sms"


class EmergencyContact(BaseModel):
    """A party to notify. Lower priority number means more urgent."""

    kind: ContactKind
    name: str
    phone_number: str
    reason: str
    priority: int = Field(..., ge=0)

    class Config:
        frozen = True


class NotificationAttempt(BaseModel):
    """Outcome of notifying one contact on one channel."""

    contact_name: str
    phone_number: str
    channel: NotificationChannel
    delivered: bool
    attempts: int = 1
    error: Optional[str] = None
    attempted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        frozen = True


def new_incident_id() -> str:
    return f"INC-{uuid4().hex[:12].upper()}"


class Incident(BaseModel):
    """
    Escalation record.

    contacted_authorities lists every contact that was attempted, in the
    order they were attempted, regardless of delivery outcome.
    """

    id: str = Field(default_factory=new_incident_id)
    session_id: str
    owner_user_id: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    threat_level: ThreatLevel
    description: str
    location: Optional[str] = None
    contacted_authorities: list[EmergencyContact] = Field(default_factory=list)
    notifications: list[NotificationAttempt] = Field(default_factory=list)
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    notes: str = ""

    def resolve(self, notes: str = "", now: Optional[datetime] = None) -> "Incident":
        """Mark resolved. Calling again after resolution changes nothing."""
        if self.resolved:
            return self
        self.resolved = True
        self.resolved_at = now or datetime.now(timezone.utc)
        self.notes = notes or "Incident resolved"
        return self

    @property
    def delivered_count(self) -> int:
        return sum(1 for attempt in self.notifications if attempt.delivered)
