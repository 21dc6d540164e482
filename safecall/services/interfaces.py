"""
Collaborator Interfaces

The session core reaches every external capability through these
interfaces. Concrete providers live in safecall.tools; offline stand-ins in
safecall.services.heuristic_ai and safecall.services.dry_run.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from pydantic import BaseModel, Field

from safecall.models.incident import Incident
from safecall.models.session import Message, SessionSnapshot
from safecall.models.threat import ThreatAssessment, ThreatLevel, VisualAssessment


class ConversationContext(BaseModel):
    """What the AI sees when generating a reply."""
    session_id: str
    user_id: str
    history: list[Message] = Field(default_factory=list)
    current_threat_level: ThreatLevel = ThreatLevel.NONE
    duration_seconds: int = 0
    location: Optional[str] = None


class AIResponse(BaseModel):
    message: str
    confidence: float = Field(0.85, ge=0.0, le=1.0)
    should_continue: bool = True
    suggested_actions: list[str] = Field(default_factory=list)
    emotional_tone: str = "calm"


class AIService(ABC):
    """Conversational AI and text threat assessment."""

    @abstractmethod
    async def generate_response(self, message: str, context: ConversationContext) -> AIResponse:
        ...

    @abstractmethod
    async def assess_threat_from_text(self, message: str, history: Sequence[Message] = ()) -> ThreatAssessment:
        """Raise on provider failure; the classifier owns the fallback."""
        ...

    @abstractmethod
    async def summarize_conversation(self, messages: Sequence[Message]) -> str:
        ...


class VisionService(ABC):
    """Frame analysis."""

    @abstractmethod
    async def analyze_video_frame(self, frame: bytes) -> VisualAssessment:
        """Raise on provider failure; the classifier owns the fallback."""
        ...


class NotificationService(ABC):
    """Outbound SMS and voice. Both return True on accepted delivery."""

    @abstractmethod
    async def send_sms(self, phone_number: str, message: str) -> bool:
        ...

    @abstractmethod
    async def make_call(self, phone_number: str, message: str) -> bool:
        ...


class EventSink(ABC):
    """Outbound event channel (socket connections and broadcast rooms)."""

    @abstractmethod
    async def send(self, connection_id: str, event: str, payload: dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def broadcast(
        self,
        room: str,
        event: str,
        payload: dict[str, Any],
        exclude: Optional[str] = None,
    ) -> None:
        ...


class SessionRepository(ABC):
    """Durable store for sessions and incidents. Failures raise PersistenceFailure."""

    @abstractmethod
    async def create_session(self, snapshot: SessionSnapshot) -> None:
        ...

    @abstractmethod
    async def update_session(self, session_id: str, updates: dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def create_incident(self, incident: Incident) -> None:
        ...

    @abstractmethod
    async def update_incident(self, incident_id: str, updates: dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def list_incidents(self, session_id: Optional[str] = None) -> list[dict[str, Any]]:
        ...
