"""
Cohere Client - Conversational replies, threat assessment and summaries

Talks to the Cohere v1 chat endpoint over httpx. Transport errors are
retried with exponential backoff (3 attempts); anything else propagates so
the ThreatClassifier can apply its fallback.
"""

import json
import logging
from typing import Any, Optional, Sequence

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from safecall.config.settings import CohereConfig
from safecall.models.session import Message, MessageRole
from safecall.models.threat import ThreatAssessment, ThreatLevel
from safecall.services.heuristic_ai import emotional_tone, extract_threats, suggested_actions
from safecall.services.interfaces import AIResponse, AIService, ConversationContext

logger = logging.getLogger(__name__)


class CohereError(Exception):
    """Raised when the Cohere API returns an unusable response."""
    pass


BASE_PREAMBLE = """You are a caring AI companion conducting a wellness check video call.
Your role is to:
- Provide emotional support and engage in meaningful conversation
- Gently assess the person's wellbeing and safety
- If you detect signs of distress, probe sensitively for more information
- Maintain a warm, professional, and supportive tone
- Keep responses conversational and under 2-3 sentences
- Ask follow-up questions to keep the person engaged"""

LEVEL_GUIDANCE = {
    ThreatLevel.NONE: "Continue with normal supportive conversation.",
    ThreatLevel.LOW: "Be extra attentive and supportive. Ask gentle follow-up questions.",
    ThreatLevel.MEDIUM: "Show increased concern. Ask direct but caring questions about their wellbeing.",
    ThreatLevel.HIGH: "Express serious concern. Try to understand the immediate situation and offer help.",
    ThreatLevel.CRITICAL: "This is an emergency situation. Stay on the call and gather location information.",
}

ASSESSMENT_PROMPT = """Analyze this message for potential threats or distress indicators: "{message}"
Consider: suicidal ideation, violence, immediate danger, emotional distress.
Examples:
- "I'm feeling sad today" -> low
- "I don't want to live anymore" -> critical
- "Someone is threatening me" -> high
- "I'm having a great day" -> none
- "I'm scared and hiding" -> high
- "Help me, someone broke in" -> critical
Respond only with JSON: {{"level": "none|low|medium|high|critical", "confidence": 0.0-1.0, "threats": ["list"], "reasoning": "explanation"}}"""

END_INDICATORS = ("goodbye", "bye", "end call", "hang up")


class CohereClient(AIService):
    """AIService backed by Cohere chat."""

    def __init__(
        self,
        settings: Optional[CohereConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            settings: API key, base URL, model and timeout.
            client: Pre-built client (tests pass one with a MockTransport).
        """
        self._settings = settings or CohereConfig()
        self._client = client or httpx.AsyncClient(
            base_url=self._settings.base_url,
            timeout=self._settings.timeout_seconds,
            transport=httpx.AsyncHTTPTransport(retries=0),
        )
        self._client.headers.update({
            "Authorization": f"Bearer {self._settings.api_key or ''}",
            "Content-Type": "application/json",
        })

    async def aclose(self) -> None:
        await self._client.aclose()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _chat(self, payload: dict[str, Any]) -> str:
        body = {"model": self._settings.model, **payload}
        response = await self._client.post("/v1/chat", json=body)
        response.raise_for_status()
        data = response.json()
        text = data.get("text")
        if not isinstance(text, str):
            raise CohereError("Chat response has no text")
        return text

    async def generate_response(self, message: str, context: ConversationContext) -> AIResponse:
        text = await self._chat({
            "message": message,
            "chat_history": self.format_chat_history(context.history),
            "preamble": self.build_preamble(context),
            "temperature": 0.7,
            "max_tokens": 300,
        })
        level = context.current_threat_level
        lowered = text.lower()
        return AIResponse(
            message=text,
            confidence=0.85,
            should_continue=not any(i in lowered for i in END_INDICATORS) and context.duration_seconds < 1800,
            suggested_actions=suggested_actions(text),
            emotional_tone=emotional_tone(text, level),
        )

    async def assess_threat_from_text(self, message: str, history: Sequence[Message] = ()) -> ThreatAssessment:
        text = await self._chat({
            "message": ASSESSMENT_PROMPT.format(message=message),
            "chat_history": self.format_chat_history(history),
            "temperature": 0.1,
            "max_tokens": 200,
            "response_format": {"type": "json_object"},
        })
        return self.parse_assessment(text, message)

    async def summarize_conversation(self, messages: Sequence[Message]) -> str:
        if not messages:
            return "No conversation to summarize"
        transcript = "\n".join(f"{m.role.value}: {m.content}" for m in messages)
        try:
            return await self._chat({
                "message": f"Summarize this wellness check conversation in one paragraph:\n{transcript}",
                "temperature": 0.3,
                "max_tokens": 250,
            })
        except (httpx.HTTPError, CohereError) as e:
            logger.error(f"[CohereClient] Summarization failed: {e}")
            return "Unable to generate conversation summary"

    @staticmethod
    def build_preamble(context: ConversationContext) -> str:
        guidance = LEVEL_GUIDANCE.get(context.current_threat_level, "Assess the situation carefully.")
        return (
            f"{BASE_PREAMBLE}\n\nCurrent threat assessment: {context.current_threat_level.value}\n"
            f"Guidance: {guidance}"
        )

    @staticmethod
    def format_chat_history(messages: Sequence[Message]) -> list[dict[str, str]]:
        return [
            {"role": "CHATBOT" if m.role == MessageRole.ASSISTANT else "USER", "message": m.content}
            for m in list(messages)[-10:]
        ]

    @staticmethod
    def parse_assessment(text: str, message: str) -> ThreatAssessment:
        """
        Parse the model's JSON verdict.

        Raises:
            CohereError: If the reply is not JSON or has no valid level.
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise CohereError(f"Assessment is not JSON: {e}") from e
        if not isinstance(data, dict):
            raise CohereError("Assessment is not a JSON object")

        try:
            level = ThreatLevel.parse(data.get("level", data.get("urgency", "")))
        except ValueError as e:
            raise CohereError(str(e)) from e

        try:
            confidence = min(max(float(data.get("confidence", 0.7)), 0.0), 1.0)
        except (TypeError, ValueError):
            confidence = 0.7
        threats = data.get("threats")
        if not isinstance(threats, list):
            threats = extract_threats(message)

        return ThreatAssessment(
            level=level,
            confidence=confidence,
            reasoning=str(data.get("reasoning") or f"Classified as {level.value} threat level"),
            should_escalate=level >= ThreatLevel.HIGH,
            detected_threats=frozenset(str(t) for t in threats),
        )
