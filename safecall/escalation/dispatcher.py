"""
Escalation Dispatcher - Ordered, paced, best-effort contact notification

Pipeline for one escalation:
1. Select contacts from the ContactPolicy table
2. Sort ascending by priority
3. Pick channels: high/critical -> voice call then SMS backup; otherwise SMS
4. Notify one contact per round, strictly in priority order, sleeping a
   fixed delay between rounds (provider rate limits)
5. Retry each channel send with tenacity; a contact that still fails is
   logged and skipped, never aborting the rest
6. Return an Incident listing every contact that was attempted

Time is injected (clock + sleep) so the pipeline is testable without real
timers.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, Optional, Sequence

from pydantic import BaseModel, Field
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from safecall.core.exceptions import NotificationFailure
from safecall.escalation.contact_policy import ContactPolicy
from safecall.models.incident import (
    ContactKind,
    EmergencyContact,
    Incident,
    NotificationAttempt,
    NotificationChannel,
)
from safecall.models.session import SessionSnapshot
from safecall.models.threat import ThreatAssessment, ThreatLevel
from safecall.observability.metrics import SessionMetrics
from safecall.services.interfaces import NotificationService

logger = logging.getLogger(__name__)


Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContactNotification(BaseModel):
    """Result of one contact's notification round."""
    contact: EmergencyContact
    attempts: list[NotificationAttempt] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return any(attempt.delivered for attempt in self.attempts)


_KIND_SUFFIX = {
    ContactKind.POLICE: "Requesting immediate police response for potential emergency situation.",
    ContactKind.MEDICAL: "Medical assistance may be required. Please assess and respond accordingly.",
    ContactKind.CRISIS: "Mental health crisis intervention needed. Please provide immediate support.",
    ContactKind.FIRE: "Fire department response requested for emergency situation.",
    ContactKind.FAMILY: "Please check on your family member immediately. Emergency services have been contacted.",
}


def channels_for(level: ThreatLevel) -> tuple[NotificationChannel, ...]:
    if level >= ThreatLevel.HIGH:
        return (NotificationChannel.CALL, NotificationChannel.SMS)
    return (NotificationChannel.SMS,)


def build_emergency_message(contact: EmergencyContact, incident: Incident) -> str:
    """Notification body, specialised by contact kind."""
    lines = [
        "EMERGENCY ALERT - SafeCall",
        "",
        f"Incident ID: {incident.id}",
        f"Threat Level: {incident.threat_level.value.upper()}",
        f"Time: {incident.created_at.strftime('%Y-%m-%d %H:%M:%S %Z')}",
    ]
    if incident.location:
        lines.append(f"Location: {incident.location}")
    lines += [
        "",
        f"Description: {incident.description}",
        "",
        f"Reason for contact: {contact.reason}",
        "",
        "This is an automated emergency notification. Please respond immediately.",
    ]
    suffix = _KIND_SUFFIX.get(contact.kind)
    if suffix:
        lines += ["", suffix]
    return "\n".join(lines)


class EscalationDispatcher:
    """Turns an escalation verdict into an Incident and paced notifications."""

    AGENT_NAME = "EscalationDispatcher"

    def __init__(
        self,
        notifier: NotificationService,
        policy: Optional[ContactPolicy] = None,
        inter_contact_delay_seconds: float = 1.0,
        max_attempts: int = 2,
        retry_wait_seconds: float = 0.5,
        sleep: Optional[Sleep] = None,
        clock: Optional[Clock] = None,
        metrics: Optional[SessionMetrics] = None,
    ):
        self._notifier = notifier
        self._policy = policy or ContactPolicy()
        self._delay = inter_contact_delay_seconds
        self._max_attempts = max(1, max_attempts)
        self._retry_wait = retry_wait_seconds
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or _utcnow
        self._metrics = metrics

    @property
    def policy(self) -> ContactPolicy:
        return self._policy

    async def escalate(
        self,
        snapshot: SessionSnapshot,
        assessment: ThreatAssessment,
        location: Optional[str] = None,
    ) -> Incident:
        """
        Notify the policy contacts for `assessment.level` and record the incident.

        Always creates a new Incident, even if the session already has an
        unresolved one.
        """
        level = assessment.level
        incident = Incident(
            session_id=snapshot.id,
            owner_user_id=snapshot.owner_user_id,
            created_at=self._clock(),
            threat_level=level,
            description=self._describe(snapshot, assessment),
            location=location or snapshot.location,
        )
        contacts = self._policy.contacts_for(level)

        logger.warning(
            f"[{self.AGENT_NAME}] Escalating session {snapshot.id} "
            f"(incident {incident.id}, level={level.value}, contacts={len(contacts)})"
        )
        await self.notify_contacts(contacts, incident)
        return incident

    async def notify_contacts(self, contacts: Sequence[EmergencyContact], incident: Incident) -> Incident:
        """Run the pipeline and record attempted contacts and outcomes on `incident`."""
        async for round_result in self.notification_rounds(contacts, incident):
            incident.notifications.extend(round_result.attempts)
            if round_result.delivered:
                logger.info(
                    f"[{self.AGENT_NAME}] Notified {round_result.contact.name} "
                    f"({round_result.contact.kind.value}) for incident {incident.id}"
                )
        logger.info(
            f"[{self.AGENT_NAME}] Incident {incident.id}: "
            f"{len(incident.contacted_authorities)} contacts attempted, "
            f"{incident.delivered_count} notifications delivered"
        )
        return incident

    async def notification_rounds(
        self,
        contacts: Sequence[EmergencyContact],
        incident: Incident,
    ) -> AsyncIterator[ContactNotification]:
        """One round per contact, in priority order, paced by the inter-contact delay."""
        ordered = sorted(contacts, key=lambda contact: contact.priority)
        channels = channels_for(incident.threat_level)

        for index, contact in enumerate(ordered):
            if index > 0 and self._delay > 0:
                await self._sleep(self._delay)

            incident.contacted_authorities.append(contact)
            try:
                yield await self._notify_contact(contact, incident, channels)
            except Exception as e:
                logger.error(f"[{self.AGENT_NAME}] Failed to notify {contact.name}: {e}")
                yield ContactNotification(contact=contact, error=str(e))

    async def _notify_contact(
        self,
        contact: EmergencyContact,
        incident: Incident,
        channels: Sequence[NotificationChannel],
    ) -> ContactNotification:
        message = build_emergency_message(contact, incident)
        result = ContactNotification(contact=contact)

        for channel in channels:
            attempts = 0
            try:
                async for attempt in AsyncRetrying(
                    stop=stop_after_attempt(self._max_attempts),
                    wait=wait_fixed(self._retry_wait),
                    retry=retry_if_exception_type(Exception),
                    sleep=self._sleep,
                    reraise=True,
                ):
                    with attempt:
                        attempts = attempt.retry_state.attempt_number
                        await self._send(channel, contact, message)
            except Exception as e:
                failure = e if isinstance(e, NotificationFailure) else NotificationFailure(
                    contact.phone_number, channel.value, str(e)
                )
                logger.error(f"[{self.AGENT_NAME}] {failure} (contact {contact.name}, {attempts} attempts)")
                if self._metrics is not None:
                    self._metrics.record_notification_failure(channel.value)
                result.attempts.append(NotificationAttempt(
                    contact_name=contact.name,
                    phone_number=contact.phone_number,
                    channel=channel,
                    delivered=False,
                    attempts=attempts,
                    error=str(failure),
                    attempted_at=self._clock(),
                ))
                continue

            result.attempts.append(NotificationAttempt(
                contact_name=contact.name,
                phone_number=contact.phone_number,
                channel=channel,
                delivered=True,
                attempts=attempts,
                attempted_at=self._clock(),
            ))
        return result

    async def _send(self, channel: NotificationChannel, contact: EmergencyContact, message: str) -> None:
        if channel == NotificationChannel.CALL:
            accepted = await self._notifier.make_call(contact.phone_number, message)
        else:
            accepted = await self._notifier.send_sms(contact.phone_number, message)
        if not accepted:
            raise NotificationFailure(contact.phone_number, channel.value, "provider rejected the request")

    @staticmethod
    def _describe(snapshot: SessionSnapshot, assessment: ThreatAssessment) -> str:
        description = (
            f"{assessment.level.value.upper()} threat during {snapshot.kind.value} "
            f"session {snapshot.id}: {assessment.reasoning or 'no reasoning provided'}"
        )
        if assessment.detected_threats:
            description += f" (signals: {', '.join(sorted(assessment.detected_threats))})"
        return description
