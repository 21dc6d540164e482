"""
Wire Event Models - Inbound Socket Payloads

Transport-agnostic shapes of the inbound events. Field names on the wire are
camelCase; Python attributes are snake_case. Base64 video frames are decoded
to bytes at this edge so the core never handles encoded strings.
"""

import base64
import binascii
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from safecall.core.exceptions import UnknownEvent
from safecall.models.session import SessionKind
from safecall.models.threat import ThreatLevel


JOIN_CALL = "join-call"
CHAT_MESSAGE = "chat-message"
VIDEO_FRAME = "video-frame"
END_CALL = "end-call"
LOCATION_UPDATE = "location-update"
SAFETY_ALERT = "safety-alert"
DISCONNECT = "disconnect"

CALL_JOINED = "call-joined"
AI_MESSAGE = "ai-message"
VIDEO_ANALYSIS = "video-analysis"
EMERGENCY_ALERT = "emergency-alert"
EMERGENCY_ESCALATED = "emergency-escalated"
CALL_ENDED = "call-ended"
ERROR = "error"

OBSERVERS_ROOM = "observers"


def decode_frame(value: Optional[str]) -> Optional[bytes]:
    """Decode a base64 frame, accepting data-URL prefixes. Empty means absent."""
    if value is None:
        return None
    if isinstance(value, bytes):
        return value or None
    text = value.strip()
    if not text:
        return None
    if text.startswith("data:") and "," in text:
        text = text.split(",", 1)[1]
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        raise ValueError("frame is not valid base64")


class InboundEvent(BaseModel):
    session_id: str = Field(..., alias="sessionId", min_length=1)

    class Config:
        populate_by_name = True
        frozen = True


class JoinCall(InboundEvent):
    user_id: str = Field(..., alias="userId", min_length=1)
    kind: SessionKind = SessionKind.CALL


class ChatMessage(InboundEvent):
    message: str
    video_frame: Optional[bytes] = Field(None, alias="videoFrame")

    @field_validator("video_frame", mode="before")
    @classmethod
    def _decode_video_frame(cls, value):
        return decode_frame(value)


class VideoFrame(InboundEvent):
    frame_data: bytes = Field(..., alias="frameData")

    @field_validator("frame_data", mode="before")
    @classmethod
    def _decode_frame_data(cls, value):
        decoded = decode_frame(value)
        if decoded is None:
            raise ValueError("frameData is empty")
        return decoded


class EndCall(InboundEvent):
    pass


class LocationUpdate(InboundEvent):
    location: str = Field(..., min_length=1)

    @field_validator("location", mode="before")
    @classmethod
    def _stringify_location(cls, value):
        if isinstance(value, dict):
            lat = value.get("latitude", value.get("lat"))
            lng = value.get("longitude", value.get("lng"))
            if lat is not None and lng is not None:
                return f"{lat},{lng}"
        return value


class SafetyAlert(InboundEvent):
    """SafeWalk sensor alert: fall_detected, panic_button, route_deviation, ..."""
    alert_type: str = Field(..., alias="alertType")
    severity: ThreatLevel
    description: str = ""

    @field_validator("severity", mode="before")
    @classmethod
    def _parse_severity(cls, value):
        return ThreatLevel.parse(value)


INBOUND_MODELS: dict[str, type[InboundEvent]] = {
    JOIN_CALL: JoinCall,
    CHAT_MESSAGE: ChatMessage,
    VIDEO_FRAME: VideoFrame,
    END_CALL: EndCall,
    LOCATION_UPDATE: LocationUpdate,
    SAFETY_ALERT: SafetyAlert,
}


def parse_inbound(event_name: str, data: dict) -> InboundEvent:
    """Validate a raw payload against the model registered for the event."""
    model = INBOUND_MODELS.get(event_name)
    if model is None:
        raise UnknownEvent(event_name)
    return model.model_validate(data or {})
