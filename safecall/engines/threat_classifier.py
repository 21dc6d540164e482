"""
Threat Classifier - Adapter over AI and Vision collaborators

Turns raw evidence into assessments:
- text  -> ThreatAssessment      (via AIService.assess_threat_from_text)
- frame -> VisualAssessment      (via VisionService.analyze_video_frame)
- VisualAssessment -> ThreatAssessment (deterministic mapping)

Provider errors and timeouts surface as ClassificationUnavailable. The
*_or_fallback variants convert that into the fixed conservative assessment
so a live session never hangs on a provider.
"""

import logging
from typing import Optional, Sequence

from safecall.core.exceptions import ClassificationUnavailable
from safecall.models.session import Message
from safecall.models.threat import ThreatAssessment, ThreatLevel, VisualAssessment
from safecall.observability.metrics import SessionMetrics
from safecall.services.interfaces import AIService, VisionService
from safecall.utils.error_handling import call_with_timeout

logger = logging.getLogger(__name__)


TEXT_SOURCE = "text"
VISION_SOURCE = "vision"


class ThreatClassifier:
    """Side-effect-free (from the core's view) evidence classifier."""

    AGENT_NAME = "ThreatClassifier"

    def __init__(
        self,
        ai_service: AIService,
        vision_service: Optional[VisionService] = None,
        timeout_seconds: float = 10.0,
        metrics: Optional[SessionMetrics] = None,
    ):
        self._ai = ai_service
        self._vision = vision_service
        self._timeout = timeout_seconds
        self._metrics = metrics

    async def classify_text(self, message: str, recent_history: Sequence[Message] = ()) -> ThreatAssessment:
        try:
            assessment = await call_with_timeout(
                self._ai.assess_threat_from_text(message, list(recent_history)),
                self._timeout,
                lambda: ClassificationUnavailable(TEXT_SOURCE, f"timed out after {self._timeout}s"),
                label="assess_threat_from_text",
            )
        except ClassificationUnavailable:
            raise
        except Exception as e:
            raise ClassificationUnavailable(TEXT_SOURCE, str(e)) from e

        if not isinstance(assessment, ThreatAssessment):
            raise ClassificationUnavailable(TEXT_SOURCE, f"unexpected result type {type(assessment).__name__}")
        return assessment

    async def classify_frame(self, image: bytes) -> VisualAssessment:
        if self._vision is None:
            raise ClassificationUnavailable(VISION_SOURCE, "no vision service configured")
        try:
            visual = await call_with_timeout(
                self._vision.analyze_video_frame(image),
                self._timeout,
                lambda: ClassificationUnavailable(VISION_SOURCE, f"timed out after {self._timeout}s"),
                label="analyze_video_frame",
            )
        except ClassificationUnavailable:
            raise
        except Exception as e:
            raise ClassificationUnavailable(VISION_SOURCE, str(e)) from e

        if not isinstance(visual, VisualAssessment):
            raise ClassificationUnavailable(VISION_SOURCE, f"unexpected result type {type(visual).__name__}")
        return visual

    @staticmethod
    def assess_visual(visual: VisualAssessment) -> ThreatAssessment:
        """Map frame observations onto the threat scale."""
        if visual.has_weapons:
            return ThreatAssessment(
                level=ThreatLevel.CRITICAL,
                confidence=visual.confidence,
                reasoning="Weapons or dangerous objects detected in video feed",
                should_escalate=True,
                detected_threats=frozenset({"weapons_detected"}),
            )
        if visual.has_violence:
            return ThreatAssessment(
                level=ThreatLevel.HIGH,
                confidence=visual.confidence,
                reasoning="Violence or inappropriate content detected",
                should_escalate=True,
                detected_threats=frozenset({"violence_indicators"}),
            )
        if visual.has_distress:
            return ThreatAssessment(
                level=ThreatLevel.MEDIUM,
                confidence=visual.confidence,
                reasoning="Potential distress signals detected",
                should_escalate=False,
                detected_threats=frozenset({"distress_signals"}),
            )
        return ThreatAssessment(
            level=ThreatLevel.NONE,
            confidence=visual.confidence,
            reasoning="Visual analysis completed",
            should_escalate=False,
        )

    async def classify_text_or_fallback(
        self,
        message: str,
        recent_history: Sequence[Message] = (),
    ) -> ThreatAssessment:
        try:
            return await self.classify_text(message, recent_history)
        except ClassificationUnavailable as e:
            logger.warning(f"[{self.AGENT_NAME}] Text classification degraded to fallback: {e}")
            self._record_fallback(TEXT_SOURCE)
            return ThreatAssessment.fallback(TEXT_SOURCE)

    async def classify_frame_or_fallback(self, image: bytes) -> tuple[Optional[VisualAssessment], ThreatAssessment]:
        """
        Classify a frame and map it to the threat scale.

        Returns:
            (observation, assessment). observation is None when the provider
            failed and the assessment is the fallback.
        """
        try:
            visual = await self.classify_frame(image)
        except ClassificationUnavailable as e:
            logger.warning(f"[{self.AGENT_NAME}] Frame classification degraded to fallback: {e}")
            self._record_fallback(VISION_SOURCE)
            return None, ThreatAssessment.fallback(VISION_SOURCE)
        return visual, self.assess_visual(visual)

    def _record_fallback(self, source: str) -> None:
        if self._metrics is not None:
            self._metrics.record_classifier_fallback(source)
