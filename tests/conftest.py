"""
Shared fixtures for the session core tests.

Time is always fake: FakeClock for timestamps, RecordingSleep for delays.
RecordingSleep yields to the loop once so background tasks still interleave.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Sequence

import pytest

from safecall.config.settings import SessionConfig
from safecall.controllers.session_orchestrator import SessionOrchestrator
from safecall.engines.threat_classifier import ThreatClassifier
from safecall.escalation.dispatcher import EscalationDispatcher
from safecall.models.session import Message
from safecall.models.threat import ThreatAssessment, VisualAssessment
from safecall.observability.metrics import SessionMetrics
from safecall.persistence.repository import InMemorySessionRepository
from safecall.services.heuristic_ai import HeuristicAIService
from safecall.services.interfaces import (
    AIResponse,
    ConversationContext,
    EventSink,
    NotificationService,
    VisionService,
)
from safecall.utils.audit_logger import AuditLogger


START = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class RecordingSleep:
    def __init__(self, timeline: Optional[list] = None):
        self.delays: list[float] = []
        self.timeline = timeline

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.timeline is not None:
            self.timeline.append(("sleep", seconds))
        await asyncio.sleep(0)


class RecordingSink(EventSink):
    def __init__(self):
        self.sent: list[tuple[str, str, dict[str, Any]]] = []
        self.broadcasts: list[tuple[str, str, dict[str, Any], Optional[str]]] = []

    async def send(self, connection_id: str, event: str, payload: dict[str, Any]) -> None:
        self.sent.append((connection_id, event, payload))

    async def broadcast(self, room, event, payload, exclude=None) -> None:
        self.broadcasts.append((room, event, payload, exclude))

    def events(self, name: str, connection_id: Optional[str] = None) -> list[dict[str, Any]]:
        return [
            payload for conn, event, payload in self.sent
            if event == name and (connection_id is None or conn == connection_id)
        ]

    def names(self) -> list[str]:
        return [event for _, event, _ in self.sent]


class GatedSink(RecordingSink):
    """Once armed, blocks inside `send` for one event name until `release()`."""

    def __init__(self, gated_event: str):
        super().__init__()
        self.gated_event = gated_event
        self.armed = False
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()

    def arm(self) -> None:
        self.armed = True

    def release(self) -> None:
        self.gate.set()

    async def send(self, connection_id: str, event: str, payload: dict[str, Any]) -> None:
        await super().send(connection_id, event, payload)
        if self.armed and event == self.gated_event:
            self.entered.set()
            await self.gate.wait()


class RecordingNotifier(NotificationService):
    """Accepts everything unless a phone number is listed in `fail_numbers`."""

    def __init__(self, timeline: Optional[list] = None, fail_numbers: Sequence[str] = ()):
        self.calls: list[tuple[str, str]] = []
        self.timeline = timeline
        self.fail_numbers = set(fail_numbers)

    async def _record(self, channel: str, phone_number: str) -> bool:
        self.calls.append((channel, phone_number))
        if self.timeline is not None:
            self.timeline.append((channel, phone_number))
        return phone_number not in self.fail_numbers

    async def send_sms(self, phone_number: str, message: str) -> bool:
        return await self._record("sms", phone_number)

    async def make_call(self, phone_number: str, message: str) -> bool:
        return await self._record("call", phone_number)


class FailingAIService(HeuristicAIService):
    """Every provider call raises."""

    async def generate_response(self, message: str, context: ConversationContext) -> AIResponse:
        raise RuntimeError("provider down")

    async def assess_threat_from_text(self, message: str, history: Sequence[Message] = ()) -> ThreatAssessment:
        raise RuntimeError("provider down")


class GatedAIService(HeuristicAIService):
    """Text assessment blocks until `release()`; records the order of messages seen."""

    def __init__(self):
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()
        self.seen: list[str] = []

    def release(self) -> None:
        self.gate.set()

    async def assess_threat_from_text(self, message: str, history: Sequence[Message] = ()) -> ThreatAssessment:
        self.seen.append(message)
        self.entered.set()
        await self.gate.wait()
        return await super().assess_threat_from_text(message, history)


class StaticVisionService(VisionService):
    def __init__(self, visual: VisualAssessment):
        self.visual = visual
        self.frames: list[bytes] = []

    async def analyze_video_frame(self, frame: bytes) -> VisualAssessment:
        self.frames.append(frame)
        return self.visual


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def metrics():
    return SessionMetrics()


@pytest.fixture
def repository():
    return InMemorySessionRepository()


@pytest.fixture
def audit_logger(tmp_path):
    return AuditLogger(log_dir=tmp_path)


@pytest.fixture
def session_config():
    return SessionConfig(
        idle_window_seconds=1800,
        sweep_interval_seconds=300,
        greeting_delay_seconds=1.0,
        history_window=10,
    )


@pytest.fixture
def build_orchestrator(sink, notifier, clock, sleep, metrics, repository, audit_logger, session_config):
    """Factory: build_orchestrator(ai=None, vision=None, ...) -> SessionOrchestrator."""

    def _build(ai=None, vision=None, notifier_override=None, sink_override=None, store=None, ledger=None):
        ai = ai or HeuristicAIService()
        classifier = ThreatClassifier(ai, vision, timeout_seconds=5.0, metrics=metrics)
        dispatcher = EscalationDispatcher(
            notifier_override or notifier,
            inter_contact_delay_seconds=1.0,
            max_attempts=2,
            retry_wait_seconds=0.5,
            sleep=sleep,
            clock=clock,
            metrics=metrics,
        )
        return SessionOrchestrator(
            sink=sink_override or sink,
            store=store,
            ledger=ledger,
            ai_service=ai,
            classifier=classifier,
            dispatcher=dispatcher,
            repository=repository,
            audit_logger=audit_logger,
            metrics=metrics,
            session_config=session_config,
            clock=clock,
            sleep=sleep,
        )

    return _build


@pytest.fixture
def gated_ai():
    return GatedAIService()


@pytest.fixture
def failing_ai():
    return FailingAIService()


@pytest.fixture
def make_notifier():
    """Factory: make_notifier(timeline=None, fail_numbers=()) -> RecordingNotifier."""
    return RecordingNotifier


@pytest.fixture
def make_vision():
    """Factory: make_vision(VisualAssessment) -> StaticVisionService."""
    return StaticVisionService


@pytest.fixture
def make_sleep():
    """Factory: make_sleep(timeline=None) -> RecordingSleep."""
    return RecordingSleep


@pytest.fixture
def make_gated_sink():
    """Factory: make_gated_sink(event_name) -> GatedSink."""
    return GatedSink
