"""
Dry-run collaborators for running without provider credentials.

NullVisionService reports nothing in every frame. DryRunNotificationService
logs and records every outbound notification instead of sending it.
"""

import logging

from pydantic import BaseModel

from safecall.models.incident import NotificationChannel
from safecall.models.threat import VisualAssessment
from safecall.services.interfaces import NotificationService, VisionService

logger = logging.getLogger(__name__)


class NullVisionService(VisionService):
    async def analyze_video_frame(self, frame: bytes) -> VisualAssessment:
        return VisualAssessment(confidence=0.0)


class SentNotification(BaseModel):
    channel: NotificationChannel
    phone_number: str
    message: str


class DryRunNotificationService(NotificationService):
    """Accepts every notification and keeps it in `sent`."""

    def __init__(self):
        self.sent: list[SentNotification] = []

    async def send_sms(self, phone_number: str, message: str) -> bool:
        logger.warning(f"[DryRunNotificationService] SMS to {phone_number} not sent (dry run)")
        self.sent.append(SentNotification(channel=NotificationChannel.SMS, phone_number=phone_number, message=message))
        return True

    async def make_call(self, phone_number: str, message: str) -> bool:
        logger.warning(f"[DryRunNotificationService] Call to {phone_number} not placed (dry run)")
        self.sent.append(SentNotification(channel=NotificationChannel.CALL, phone_number=phone_number, message=message))
        return True
