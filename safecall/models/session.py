"""
Session Models - Live Call / Walk State

Message is immutable and append-only. Session is the mutable record held by
the SessionStore; only the orchestrator writes to it. Everything outside the
orchestrator reads a frozen SessionSnapshot.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from safecall.models.threat import ThreatAssessment, ThreatLevel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_message_id() -> str:
    return f"msg_{uuid4().hex[:16]}"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class SessionKind(str, Enum):
    """Wellness video call or SafeWalk walking companion."""
    CALL = "call"
    WALK = "walk"


class SessionState(str, Enum):
    """Lifecycle: idle -> joined -> (active <-> escalated) -> ended."""
    IDLE = "idle"
    JOINED = "joined"
    ACTIVE = "active"
    ESCALATED = "escalated"
    ENDED = "ended"


class Message(BaseModel):
    """One conversational turn. Immutable once appended."""

    id: str = Field(default_factory=new_message_id)
    session_id: str
    role: MessageRole
    content: str
    created_at: datetime = Field(default_factory=utcnow)
    threat_assessment: Optional[ThreatAssessment] = None

    class Config:
        frozen = True


class SessionSnapshot(BaseModel):
    """Read-only copy of a session handed to the escalation layer."""

    id: str
    owner_user_id: str
    kind: SessionKind
    started_at: datetime
    last_activity_at: datetime
    current_threat_level: ThreatLevel
    state: SessionState
    location: Optional[str] = None
    history: tuple[Message, ...] = Field(default_factory=tuple)

    class Config:
        frozen = True

    @property
    def message_count(self) -> int:
        return len(self.history)


class Session(BaseModel):
    """Live session record. Mutated only by the SessionOrchestrator via the store."""

    id: str
    owner_user_id: str
    kind: SessionKind = SessionKind.CALL
    started_at: datetime = Field(default_factory=utcnow)
    last_activity_at: datetime = Field(default_factory=utcnow)
    current_threat_level: ThreatLevel = ThreatLevel.NONE
    history: list[Message] = Field(default_factory=list)
    channel_handle: Optional[str] = Field(None, description="Connection id owning this session")
    state: SessionState = SessionState.JOINED
    location: Optional[str] = None
    incident_ids: list[str] = Field(default_factory=list)

    def recent_history(self, limit: int) -> list[Message]:
        """The last `limit` messages in chronological order."""
        if limit <= 0:
            return []
        return list(self.history[-limit:])

    def duration_seconds(self, now: datetime) -> int:
        return max(0, int((now - self.started_at).total_seconds()))

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            id=self.id,
            owner_user_id=self.owner_user_id,
            kind=self.kind,
            started_at=self.started_at,
            last_activity_at=self.last_activity_at,
            current_threat_level=self.current_threat_level,
            state=self.state,
            location=self.location,
            history=tuple(self.history),
        )
