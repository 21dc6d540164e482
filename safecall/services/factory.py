"""
Service Factory - Wire providers and the orchestrator from configuration

Real providers are used when their credentials are configured; otherwise
the offline collaborators stand in so the platform still runs end to end.
"""

import logging
from pathlib import Path
from typing import Optional

from safecall.config.settings import Config
from safecall.controllers.session_orchestrator import SessionOrchestrator
from safecall.engines.threat_classifier import ThreatClassifier
from safecall.escalation.dispatcher import EscalationDispatcher
from safecall.observability.metrics import SessionMetrics
from safecall.persistence.repository import InMemorySessionRepository
from safecall.services.dry_run import DryRunNotificationService, NullVisionService
from safecall.services.heuristic_ai import HeuristicAIService
from safecall.services.interfaces import AIService, EventSink, NotificationService, SessionRepository, VisionService
from safecall.tools.cohere_client import CohereClient
from safecall.tools.twilio_client import TwilioClient
from safecall.tools.vision_client import GoogleVisionClient
from safecall.utils.audit_logger import AuditLogger

logger = logging.getLogger(__name__)


class ServiceBundle:
    """The three external collaborators of the session core."""

    def __init__(self, ai: AIService, vision: VisionService, notifier: NotificationService):
        self.ai = ai
        self.vision = vision
        self.notifier = notifier

    async def aclose(self) -> None:
        for service in (self.ai, self.vision, self.notifier):
            close = getattr(service, "aclose", None)
            if close is not None:
                await close()


def build_services(cfg: Config) -> ServiceBundle:
    """Pick hosted providers where credentials exist, offline ones elsewhere."""
    if cfg.cohere.api_key:
        ai: AIService = CohereClient(cfg.cohere)
    else:
        logger.warning("[ServiceFactory] COHERE_API_KEY not set; using heuristic AI")
        ai = HeuristicAIService()

    if cfg.vision.api_key:
        vision: VisionService = GoogleVisionClient(cfg.vision)
    else:
        logger.warning("[ServiceFactory] GOOGLE_CLOUD_VISION_KEY not set; frames are not analysed")
        vision = NullVisionService()

    if cfg.twilio.is_configured:
        notifier: NotificationService = TwilioClient(cfg.twilio)
    else:
        logger.warning("[ServiceFactory] Twilio credentials not set; notifications are dry-run only")
        notifier = DryRunNotificationService()

    return ServiceBundle(ai=ai, vision=vision, notifier=notifier)


def build_orchestrator(
    sink: EventSink,
    cfg: Config,
    services: Optional[ServiceBundle] = None,
    repository: Optional[SessionRepository] = None,
    metrics: Optional[SessionMetrics] = None,
    audit_logger: Optional[AuditLogger] = None,
) -> SessionOrchestrator:
    services = services or build_services(cfg)
    metrics = metrics or SessionMetrics()
    if audit_logger is None and cfg.audit_log_dir:
        audit_logger = AuditLogger(log_dir=Path(cfg.audit_log_dir))

    classifier = ThreatClassifier(
        services.ai,
        services.vision,
        timeout_seconds=cfg.classifier.timeout_seconds,
        metrics=metrics,
    )
    dispatcher = EscalationDispatcher(
        services.notifier,
        inter_contact_delay_seconds=cfg.escalation.inter_contact_delay_seconds,
        max_attempts=cfg.escalation.notification_max_attempts,
        retry_wait_seconds=cfg.escalation.retry_wait_seconds,
        metrics=metrics,
    )
    return SessionOrchestrator(
        sink=sink,
        ai_service=services.ai,
        classifier=classifier,
        dispatcher=dispatcher,
        repository=repository if repository is not None else InMemorySessionRepository(),
        audit_logger=audit_logger,
        metrics=metrics,
        session_config=cfg.session,
        reply_timeout_seconds=cfg.classifier.timeout_seconds,
    )
