"""
SessionOrchestrator - Event-driven session state machine

Per session: idle -> joined -> (active <-> escalated) -> ended

Responsibilities:
1. Route inbound events (join, message, frame, location, safety alert, end,
   disconnect) to the session they target
2. Serialise work per session with the store's FIFO lock
3. Classify evidence, fuse it, and raise the threat level monotonically
4. Trigger escalation exactly once per escalating event
5. Sweep idle sessions in the background
6. Keep the audit trail, metrics and durable store in step (best effort)

Liveness rule: after every await the orchestrator re-reads the store and
only continues if the same Session object is still live. An `end` that
lands while a classification is outstanding therefore wins, and the late
result is dropped.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from safecall.config.settings import SessionConfig
from safecall.core.exceptions import (
    ClassificationUnavailable,
    DuplicateSession,
    PersistenceFailure,
    SessionNotFound,
    UnknownEvent,
)
from safecall.engines.threat_classifier import ThreatClassifier
from safecall.engines.threat_fusion import (
    NO_VISUAL_EVIDENCE,
    FusionVerdict,
    ThreatFusion,
    VisualEvidence,
    VisualSignal,
)
from safecall.escalation.dispatcher import EscalationDispatcher
from safecall.escalation.incident_ledger import IncidentLedger
from safecall.models.events import (
    AI_MESSAGE,
    CALL_ENDED,
    CALL_JOINED,
    ChatMessage,
    DISCONNECT,
    EMERGENCY_ALERT,
    EMERGENCY_ESCALATED,
    ERROR,
    EndCall,
    JoinCall,
    LocationUpdate,
    OBSERVERS_ROOM,
    SafetyAlert,
    VIDEO_ANALYSIS,
    VideoFrame,
    parse_inbound,
)
from safecall.models.incident import Incident
from safecall.models.session import Message, MessageRole, Session, SessionKind, SessionState
from safecall.models.threat import ThreatAssessment, ThreatLevel
from safecall.observability.metrics import SessionMetrics
from safecall.persistence.repository import InMemorySessionRepository
from safecall.persistence.session_store import SessionStore
from safecall.services.interfaces import (
    AIResponse,
    AIService,
    ConversationContext,
    EventSink,
    SessionRepository,
)
from safecall.utils.audit_logger import AuditEventType, AuditLogger, AuditLoggerError
from safecall.utils.error_handling import call_with_timeout
from safecall.utils.logging_context import LoggingContext

logger = logging.getLogger(__name__)


Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


FALLBACK_REPLIES = {
    ThreatLevel.NONE: "I'm here with you. Tell me a little more about how your day is going.",
    ThreatLevel.LOW: "Thank you for sharing that with me. How are you feeling right now?",
    ThreatLevel.MEDIUM: "I'm concerned about how you're feeling. Are you somewhere safe at the moment?",
    ThreatLevel.HIGH: "I'm here with you and your safety matters most. Can you tell me where you are?",
    ThreatLevel.CRITICAL: "Stay with me. Help is being contacted right now. Please tell me your location if you can.",
}

_SAFETY_ALERT_ESCALATES = {ThreatLevel.HIGH, ThreatLevel.CRITICAL}


class SessionOrchestrator:
    """Single writer of the SessionStore. Everything else sees snapshots."""

    AGENT_NAME = "SessionOrchestrator"

    def __init__(
        self,
        sink: EventSink,
        ai_service: AIService,
        classifier: ThreatClassifier,
        dispatcher: EscalationDispatcher,
        store: Optional[SessionStore] = None,
        repository: Optional[SessionRepository] = None,
        ledger: Optional[IncidentLedger] = None,
        audit_logger: Optional[AuditLogger] = None,
        metrics: Optional[SessionMetrics] = None,
        session_config: Optional[SessionConfig] = None,
        reply_timeout_seconds: Optional[float] = None,
        clock: Optional[Clock] = None,
        sleep: Optional[Sleep] = None,
    ):
        """
        Args:
            sink: Outbound event channel.
            ai_service: Conversational replies and greetings.
            classifier: Threat classifier (text and frames).
            dispatcher: Escalation notifier.
            store: Live session registry; a fresh one by default.
            repository: Durable store; in-memory by default.
            ledger: Incident history; a fresh one by default.
            audit_logger: Lifecycle trail; disabled when None.
            metrics: Prometheus metrics; a private registry by default.
            session_config: Timing and history window.
            reply_timeout_seconds: Limit on AI reply generation.
            clock: Time source.
            sleep: Awaitable delay, injected for tests.
        """
        self._sink = sink
        self._ai = ai_service
        self._classifier = classifier
        self._dispatcher = dispatcher
        self._store = store if store is not None else SessionStore()
        self._repository = repository if repository is not None else InMemorySessionRepository()
        self._ledger = ledger if ledger is not None else IncidentLedger()
        self._audit_logger = audit_logger
        self._metrics = metrics if metrics is not None else SessionMetrics()
        self._config = session_config if session_config is not None else SessionConfig()
        self._reply_timeout = reply_timeout_seconds
        self._clock = clock or _utcnow
        self._sleep = sleep or asyncio.sleep
        self._fusion = ThreatFusion()

        self._background: set[asyncio.Task] = set()
        self._escalations: set[asyncio.Task] = set()
        self._sweeper: Optional[asyncio.Task] = None

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def ledger(self) -> IncidentLedger:
        return self._ledger

    @property
    def metrics(self) -> SessionMetrics:
        return self._metrics

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def join(
        self,
        session_id: str,
        user_id: str,
        connection_id: str,
        kind: SessionKind = SessionKind.CALL,
    ) -> Session:
        """Create a session, or re-bind an existing one to `connection_id`."""
        now = self._clock()
        try:
            session = self._store.create(session_id, user_id, channel_handle=connection_id, kind=kind, now=now)
            rejoined = False
            logger.info(f"[{self.AGENT_NAME}] User {user_id} joined {kind.value} session {session_id}")
        except DuplicateSession:
            session = self._store.require(session_id)
            session.channel_handle = connection_id
            self._store.touch(session_id, now)
            rejoined = True
            logger.info(f"[{self.AGENT_NAME}] Session {session_id} re-joined on connection {connection_id}")

        self._metrics.set_active_sessions(len(self._store))
        await self._emit(connection_id, CALL_JOINED, {
            "sessionId": session_id,
            "userId": session.owner_user_id,
            "connectionId": connection_id,
            "kind": session.kind.value,
            "rejoined": rejoined,
            "ts": now.isoformat(),
        })

        snapshot = session.snapshot()
        if rejoined:
            self._audit_session(AuditEventType.REJOINED, session, now=now, connection_id=connection_id)
        else:
            self._audit_session(AuditEventType.JOINED, session, now=now, connection_id=connection_id)
            await self._persist(self._repository.create_session(snapshot), f"create_session {session_id}")
            self._spawn(self._send_greeting(session), name=f"greeting-{session_id}")
        return session

    async def _send_greeting(self, session: Session) -> None:
        await self._sleep(self._config.greeting_delay_seconds)
        if not self._is_live(session):
            return
        try:
            reply = await call_with_timeout(
                self._ai.generate_response(self._config.greeting_prompt, self._context_for(session)),
                self._reply_timeout,
                lambda: ClassificationUnavailable("reply", "greeting timed out"),
                label="greeting",
            )
        except Exception as e:
            logger.error(f"[{self.AGENT_NAME}] Failed to send greeting for {session.id}: {e}")
            return
        if not self._is_live(session):
            return
        await self._emit(session.channel_handle, AI_MESSAGE, {
            "message": reply.message,
            "ts": self._clock().isoformat(),
            "type": "greeting",
        })

    async def message(
        self,
        session_id: str,
        text: str,
        frame: Optional[bytes] = None,
        connection_id: Optional[str] = None,
    ) -> Optional[FusionVerdict]:
        """
        Handle one user chat turn.

        Returns:
            The fused verdict, or None when the session ended mid-flight.

        Raises:
            SessionNotFound: If the session is not live.
        """
        session = self._store.require(session_id)
        async with self._store.locked(session_id):
            if not self._is_live(session):
                return None
            now = self._clock()
            self._store.touch(session_id, now)
            history = session.recent_history(self._config.history_window)

            text_assessment = await self._classifier.classify_text_or_fallback(text, history)
            visual: VisualSignal = NO_VISUAL_EVIDENCE
            if frame:
                observation, frame_assessment = await self._classifier.classify_frame_or_fallback(frame)
                visual = VisualEvidence(assessment=frame_assessment, observation=observation)
            if not self._is_live(session):
                logger.info(f"[{self.AGENT_NAME}] Session {session_id} ended during classification; result dropped")
                return None

            verdict = self._fusion.fuse(text_assessment, visual)
            self._store.append_message(session_id, Message(
                session_id=session_id,
                role=MessageRole.USER,
                content=text,
                created_at=now,
                threat_assessment=text_assessment,
            ))
            level = self._store.set_threat_level(session_id, verdict.level)

            reply = await self._generate_reply(session, text, level)
            if not self._is_live(session):
                logger.info(f"[{self.AGENT_NAME}] Session {session_id} ended during reply; result dropped")
                return None

            replied_at = self._clock()
            self._store.append_message(session_id, Message(
                session_id=session_id,
                role=MessageRole.ASSISTANT,
                content=reply.message,
                created_at=replied_at,
            ))
            await self._emit(session.channel_handle or connection_id, AI_MESSAGE, {
                "message": reply.message,
                "ts": replied_at.isoformat(),
                "threatLevel": verdict.level.value,
                "confidence": text_assessment.confidence,
            })
            if not self._is_live(session):
                logger.info(f"[{self.AGENT_NAME}] Session {session_id} ended while replying; verdict dropped")
                return None
            await self._apply_verdict(session, verdict, trigger=text)
            return verdict

    async def frame(self, session_id: str, frame_bytes: bytes) -> Optional[FusionVerdict]:
        """Visual-only evidence. Raises SessionNotFound if the session is not live."""
        session = self._store.require(session_id)
        async with self._store.locked(session_id):
            if not self._is_live(session):
                return None
            self._store.touch(session_id, self._clock())

            observation, assessment = await self._classifier.classify_frame_or_fallback(frame_bytes)
            if not self._is_live(session):
                logger.info(f"[{self.AGENT_NAME}] Session {session_id} ended during frame analysis; result dropped")
                return None

            verdict = self._fusion.fuse_visual_only(VisualEvidence(assessment=assessment, observation=observation))
            self._store.set_threat_level(session_id, verdict.level)
            await self._emit(session.channel_handle, VIDEO_ANALYSIS, {
                "threatLevel": verdict.level.value,
                "hasWeapons": observation.has_weapons if observation else False,
                "hasViolence": observation.has_violence if observation else False,
                "hasDistress": observation.has_distress if observation else False,
                "confidence": verdict.confidence,
                "ts": self._clock().isoformat(),
            })
            if not self._is_live(session):
                return None
            await self._apply_verdict(session, verdict, trigger="Visual threat detected")
            return verdict

    async def update_location(self, session_id: str, location: str) -> None:
        session = self._store.require(session_id)
        async with self._store.locked(session_id):
            if not self._is_live(session):
                return
            session.location = location
            self._store.touch(session_id, self._clock())
        await self._persist(
            self._repository.update_session(session_id, {"location": location}),
            f"update_session {session_id}",
        )

    async def safety_alert(
        self,
        session_id: str,
        alert_type: str,
        severity: ThreatLevel,
        description: str = "",
    ) -> Optional[FusionVerdict]:
        """Sensor alert from a walk session, judged like any other evidence."""
        session = self._store.require(session_id)
        async with self._store.locked(session_id):
            if not self._is_live(session):
                return None
            self._store.touch(session_id, self._clock())

            reasoning = f"Safety alert: {alert_type}"
            if description:
                reasoning += f" ({description})"
            assessment = ThreatAssessment(
                level=severity,
                confidence=1.0,
                reasoning=reasoning,
                should_escalate=severity in _SAFETY_ALERT_ESCALATES,
                detected_threats=frozenset({alert_type}),
            )
            verdict = self._fusion.fuse(assessment)
            self._store.set_threat_level(session_id, verdict.level)
            await self._apply_verdict(session, verdict, trigger=reasoning)
            return verdict

    async def end(self, session_id: str) -> Optional[dict[str, Any]]:
        """
        End a session from any state.

        Does not wait for the session lock: in-flight work sees the session
        gone at its next liveness check. Unknown ids are a no-op.

        Returns:
            The call-ended summary, or None if there was no live session.
        """
        session = self._store.remove(session_id)
        if session is None:
            logger.debug(f"[{self.AGENT_NAME}] end for unknown session {session_id} ignored")
            return None

        now = self._clock()
        session.state = SessionState.ENDED
        self._metrics.set_active_sessions(len(self._store))
        summary = {
            "sessionId": session_id,
            "duration": session.duration_seconds(now),
            "messageCount": len(session.history),
            "finalThreatLevel": session.current_threat_level.value,
            "ts": now.isoformat(),
        }
        logger.info(
            f"[{self.AGENT_NAME}] Session {session_id} ended "
            f"({summary['duration']}s, {summary['messageCount']} messages, {summary['finalThreatLevel']})"
        )
        await self._emit(session.channel_handle, CALL_ENDED, summary)

        conversation_summary = await self._summarize(session)
        self._audit_session(AuditEventType.ENDED, session, now=now, summary=conversation_summary)
        await self._persist_final(session, "ended", now, summary=conversation_summary)
        return summary

    async def disconnect(self, connection_id: str) -> list[str]:
        """Implicit end for every session bound to the connection. No summary is sent."""
        removed = []
        now = self._clock()
        for session_id in self._store.sessions_for_connection(connection_id):
            session = self._store.remove(session_id)
            if session is None:
                continue
            session.state = SessionState.ENDED
            removed.append(session_id)
            logger.info(f"[{self.AGENT_NAME}] Cleaned up session {session_id} for closed connection {connection_id}")
            self._audit_session(AuditEventType.DISCONNECTED, session, now=now, connection_id=connection_id)
            await self._persist_final(session, "disconnected", now)
        if removed:
            self._metrics.set_active_sessions(len(self._store))
        return removed

    async def sweep_once(self, now: Optional[datetime] = None) -> list[str]:
        """Evict sessions idle strictly longer than the idle window."""
        now = now or self._clock()
        evicted: list[Session] = []
        expired = self._store.evict_idle(now, self._config.idle_window_seconds, on_evicted=evicted.append)

        for session in evicted:
            session.state = SessionState.ENDED
            self._audit_session(
                AuditEventType.EVICTED,
                session,
                now=now,
                idle_seconds=int((now - session.last_activity_at).total_seconds()),
            )
            await self._persist_final(session, "expired", now)

        self._metrics.record_evictions(len(expired))
        self._metrics.set_active_sessions(len(self._store))
        if expired:
            logger.info(f"[{self.AGENT_NAME}] Idle sweep evicted {len(expired)} session(s)")
        return expired

    async def start(self) -> None:
        """Start the periodic idle sweep."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._sweep_loop(), name="idle-sweep")
        logger.info(
            f"[{self.AGENT_NAME}] Idle sweep every {self._config.sweep_interval_seconds}s "
            f"(window {self._config.idle_window_seconds}s)"
        )

    async def _sweep_loop(self) -> None:
        while True:
            await self._sleep(self._config.sweep_interval_seconds)
            try:
                await self.sweep_once()
            except Exception as e:
                logger.error(f"[{self.AGENT_NAME}] Idle sweep failed: {e}", exc_info=True)

    async def stop(self) -> None:
        """
        Cancel the sweep and pending greetings, then let escalations finish.

        Escalations still notifying contacts get up to
        `shutdown_drain_seconds` to complete; only stragglers are cancelled.
        """
        escalations = set(self._escalations)
        tasks = [task for task in self._background if task not in escalations]
        if self._sweeper is not None:
            tasks.append(self._sweeper)
            self._sweeper = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        if escalations:
            logger.info(f"[{self.AGENT_NAME}] Waiting for {len(escalations)} escalation(s) before stopping")
            timeout = self._config.shutdown_drain_seconds
            _, pending = await asyncio.wait(escalations, timeout=timeout if timeout and timeout > 0 else None)
            for task in pending:
                logger.error(f"[{self.AGENT_NAME}] Escalation {task.get_name()} still running at shutdown; cancelled")
                task.cancel()
            await asyncio.gather(*escalations, return_exceptions=True)
        logger.info(f"[{self.AGENT_NAME}] Stopped")

    async def drain(self) -> None:
        """Wait until greetings and escalations in flight have finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # Transport entry point
    # ------------------------------------------------------------------

    async def handle_event(self, event_name: str, data: Optional[dict], connection_id: str) -> None:
        """
        Validate and dispatch one inbound event. Never raises.

        Unknown sessions and invalid payloads are answered with an `error`
        event on the originating connection.
        """
        session_id = data.get("sessionId") if isinstance(data, dict) else None
        with LoggingContext.bind(session_id=session_id, connection_id=connection_id):
            try:
                if event_name == DISCONNECT:
                    await self.disconnect(connection_id)
                else:
                    await self._dispatch(parse_inbound(event_name, data or {}), connection_id)
                self._metrics.record_event(event_name, "ok")
            except SessionNotFound as e:
                logger.warning(f"[{self.AGENT_NAME}] {event_name}: {e}")
                self._metrics.record_event(event_name, "not_found")
                await self._emit(connection_id, ERROR, {"message": "Call session not found", "sessionId": e.session_id})
            except (ValidationError, UnknownEvent) as e:
                logger.warning(f"[{self.AGENT_NAME}] Rejected {event_name} payload: {e}")
                self._metrics.record_event(event_name, "invalid")
                await self._emit(connection_id, ERROR, {"message": f"Invalid {event_name} payload"})
            except Exception as e:
                logger.error(f"[{self.AGENT_NAME}] Failed to process {event_name}: {e}", exc_info=True)
                self._metrics.record_event(event_name, "error")
                await self._emit(connection_id, ERROR, {"message": f"Failed to process {event_name}"})

    async def _dispatch(self, event, connection_id: str) -> None:
        if isinstance(event, JoinCall):
            await self.join(event.session_id, event.user_id, connection_id, event.kind)
        elif isinstance(event, ChatMessage):
            await self.message(event.session_id, event.message, event.video_frame, connection_id)
        elif isinstance(event, VideoFrame):
            await self.frame(event.session_id, event.frame_data)
        elif isinstance(event, LocationUpdate):
            await self.update_location(event.session_id, event.location)
        elif isinstance(event, SafetyAlert):
            await self.safety_alert(event.session_id, event.alert_type, event.severity, event.description)
        elif isinstance(event, EndCall):
            await self.end(event.session_id)
        else:
            raise UnknownEvent(type(event).__name__)

    # ------------------------------------------------------------------
    # Incidents
    # ------------------------------------------------------------------

    def incidents_for(self, session_id: str) -> list[Incident]:
        return self._ledger.for_session(session_id)

    async def resolve_incident(self, incident_id: str, notes: str = "") -> Incident:
        """One-way resolution. Raises KeyError for an unknown incident."""
        existing = self._ledger.get(incident_id)
        already_resolved = existing is not None and existing.resolved
        incident = self._ledger.resolve(incident_id, notes, now=self._clock())
        if already_resolved:
            return incident
        self._audit_incident(AuditEventType.INCIDENT_RESOLVED, incident)
        await self._persist(
            self._repository.update_incident(incident_id, {
                "resolved": True,
                "resolved_at": incident.resolved_at.isoformat(),
                "notes": incident.notes,
            }),
            f"update_incident {incident_id}",
        )
        return incident

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _is_live(self, session: Session) -> bool:
        return self._store.get(session.id) is session

    def _context_for(self, session: Session) -> ConversationContext:
        return ConversationContext(
            session_id=session.id,
            user_id=session.owner_user_id,
            history=session.recent_history(self._config.history_window),
            current_threat_level=session.current_threat_level,
            duration_seconds=session.duration_seconds(self._clock()),
            location=session.location,
        )

    async def _generate_reply(self, session: Session, text: str, level: ThreatLevel) -> AIResponse:
        try:
            return await call_with_timeout(
                self._ai.generate_response(text, self._context_for(session)),
                self._reply_timeout,
                lambda: ClassificationUnavailable("reply", "timed out"),
                label="generate_response",
            )
        except Exception as e:
            logger.warning(f"[{self.AGENT_NAME}] AI reply failed for {session.id}, using fallback: {e}")
            return AIResponse(message=FALLBACK_REPLIES[level], confidence=0.5, emotional_tone="supportive")

    async def _summarize(self, session: Session) -> Optional[str]:
        """AI summary of the whole conversation for the closing record. None on failure."""
        if not session.history:
            return None
        try:
            return await call_with_timeout(
                self._ai.summarize_conversation(list(session.history)),
                self._reply_timeout,
                lambda: ClassificationUnavailable("summary", "timed out"),
                label="summarize_conversation",
            )
        except Exception as e:
            logger.warning(f"[{self.AGENT_NAME}] Conversation summary failed for {session.id}: {e}")
            return None

    async def _apply_verdict(self, session: Session, verdict: FusionVerdict, trigger: str) -> None:
        if verdict.should_escalate:
            session.state = SessionState.ESCALATED
            await self._escalate(session, verdict, trigger)
        elif session.state != SessionState.ESCALATED:
            session.state = SessionState.ACTIVE

    async def _escalate(self, session: Session, verdict: FusionVerdict, trigger: str) -> None:
        ts = self._clock().isoformat()
        logger.warning(
            f"[{self.AGENT_NAME}] EMERGENCY: escalating session {session.id} "
            f"(level={verdict.level.value}, sources={','.join(verdict.sources)})"
        )
        self._metrics.record_escalation(verdict.level.value)

        await self._emit(session.channel_handle, EMERGENCY_ALERT, {
            "threatLevel": verdict.level.value,
            "reason": verdict.reasoning,
            "ts": ts,
        })
        try:
            await self._sink.broadcast(OBSERVERS_ROOM, EMERGENCY_ESCALATED, {
                "sessionId": session.id,
                "userId": session.owner_user_id,
                "threatLevel": verdict.level.value,
                "message": trigger,
                "ts": ts,
            }, exclude=session.channel_handle)
        except Exception as e:
            logger.error(f"[{self.AGENT_NAME}] Observer broadcast failed for {session.id}: {e}")

        snapshot = session.snapshot()
        self._audit_session(
            AuditEventType.ESCALATED,
            session,
            reason=verdict.reasoning,
            sources=list(verdict.sources),
        )
        if self._is_live(session):
            await self._persist(
                self._repository.update_session(session.id, {
                    "threat_level": session.current_threat_level.value,
                    "state": SessionState.ESCALATED.value,
                }),
                f"update_session {session.id}",
            )
        self._spawn(
            self._run_dispatch(session, snapshot, verdict.to_assessment()),
            name=f"escalation-{session.id}",
            escalation=True,
        )

    async def _run_dispatch(self, session: Session, snapshot, assessment: ThreatAssessment) -> None:
        try:
            incident = await self._dispatcher.escalate(snapshot, assessment, location=snapshot.location)
        except Exception as e:
            logger.error(f"[{self.AGENT_NAME}] Escalation dispatch failed for {snapshot.id}: {e}", exc_info=True)
            return
        self._ledger.record(incident)
        session.incident_ids.append(incident.id)
        self._audit_incident(AuditEventType.INCIDENT_CREATED, incident)
        await self._persist(self._repository.create_incident(incident), f"create_incident {incident.id}")

    def _spawn(self, coro, name: str, escalation: bool = False) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        if escalation:
            self._escalations.add(task)
            task.add_done_callback(self._escalations.discard)
        return task

    async def _emit(self, connection_id: Optional[str], event: str, payload: dict[str, Any]) -> None:
        if not connection_id:
            logger.debug(f"[{self.AGENT_NAME}] No connection for {event}; dropped")
            return
        try:
            await self._sink.send(connection_id, event, payload)
        except Exception as e:
            logger.error(f"[{self.AGENT_NAME}] Failed to emit {event} to {connection_id}: {e}")

    async def _persist(self, operation: Awaitable[None], label: str) -> None:
        try:
            await operation
        except PersistenceFailure as e:
            logger.error(f"[{self.AGENT_NAME}] Persistence failed ({label}): {e}")

    async def _persist_final(
        self,
        session: Session,
        status: str,
        now: datetime,
        summary: Optional[str] = None,
    ) -> None:
        updates = {
            "status": status,
            "state": SessionState.ENDED.value,
            "ended_at": now.isoformat(),
            "duration_seconds": session.duration_seconds(now),
            "message_count": len(session.history),
            "threat_level": session.current_threat_level.value,
        }
        if summary:
            updates["summary"] = summary
        await self._persist(self._repository.update_session(session.id, updates), f"update_session {session.id}")

    def _audit_session(self, event_type: str, session: Session, now: Optional[datetime] = None, **extra: Any) -> None:
        if self._audit_logger is None:
            return
        try:
            self._audit_logger.log_session_event(event_type, session.snapshot(), now=now or self._clock(), **extra)
        except AuditLoggerError as e:
            logger.error(f"[{self.AGENT_NAME}] Audit write failed: {e}")

    def _audit_incident(self, event_type: str, incident: Incident) -> None:
        if self._audit_logger is None:
            return
        try:
            self._audit_logger.log_incident(event_type, incident)
        except AuditLoggerError as e:
            logger.error(f"[{self.AGENT_NAME}] Audit write failed: {e}")
