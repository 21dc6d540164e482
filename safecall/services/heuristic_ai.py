"""
Heuristic AI Service - Offline keyword classifier and canned companion

Used when no Cohere key is configured. Classification follows the same
labelled examples the hosted classifier is primed with:

    "I'm feeling sad today"          -> low
    "I don't want to live anymore"   -> critical
    "Someone is threatening me"      -> high
    "I'm having a great day"         -> none
    "I'm scared and hiding"          -> high
    "Help me, someone broke in"      -> critical
"""

import logging
from typing import Sequence

from safecall.models.session import Message
from safecall.models.threat import ThreatAssessment, ThreatLevel
from safecall.services.interfaces import AIResponse, AIService, ConversationContext

logger = logging.getLogger(__name__)


THREAT_KEYWORDS = {
    "suicidal_ideation": ["kill myself", "end it all", "not worth living", "want to die", "don't want to live"],
    "violence": ["hurt", "attack", "weapon", "fight", "violence"],
    "immediate_danger": ["help", "emergency", "call police", "scared", "hiding", "broke in", "threatening"],
    "emotional_distress": ["depressed", "anxious", "hopeless", "alone", "worthless"],
}

# Checked in order; first match wins.
LEVEL_PHRASES = [
    (ThreatLevel.CRITICAL, [
        "don't want to live", "do not want to live", "kill myself", "want to die",
        "end it all", "not worth living", "broke in", "breaking in", "has a gun", "has a knife",
    ]),
    (ThreatLevel.HIGH, [
        "threatening me", "hiding", "following me", "hurt me", "attacked", "call police",
        "call the police", "help me", "not safe",
    ]),
    (ThreatLevel.MEDIUM, ["hopeless", "worthless", "depressed", "scared", "afraid", "panic"]),
    (ThreatLevel.LOW, ["sad", "anxious", "stressed", "lonely", "worried", "tired", "alone"]),
]

REPLIES = {
    ThreatLevel.NONE: "That's good to hear. What has been the best part of your day so far?",
    ThreatLevel.LOW: "I'm sorry you're feeling that way. Would you like to talk about what's on your mind?",
    ThreatLevel.MEDIUM: "I understand this feels heavy right now. Are you somewhere you feel safe?",
    ThreatLevel.HIGH: "I'm really concerned for your safety. Can you tell me where you are right now?",
    ThreatLevel.CRITICAL: "I'm here with you and help is on the way. Please stay on the call with me.",
}


def normalize(text: str) -> str:
    return text.lower().replace("’", "'")


def extract_threats(message: str) -> list[str]:
    """Threat categories whose keywords appear in the message."""
    lowered = normalize(message)
    return [
        threat for threat, keywords in THREAT_KEYWORDS.items()
        if any(keyword in lowered for keyword in keywords)
    ]


def classify_level(message: str) -> tuple[ThreatLevel, str]:
    lowered = normalize(message)
    for level, phrases in LEVEL_PHRASES:
        for phrase in phrases:
            if phrase in lowered:
                return level, phrase
    return ThreatLevel.NONE, ""


def emotional_tone(response: str, level: ThreatLevel) -> str:
    if level >= ThreatLevel.HIGH:
        return "urgent"
    if level == ThreatLevel.MEDIUM:
        return "concerned"
    lowered = response.lower()
    if "sorry" in lowered or "understand" in lowered:
        return "supportive"
    return "calm"


def suggested_actions(response: str) -> list[str]:
    lowered = response.lower()
    actions = []
    if "call" in lowered or "contact" in lowered:
        actions.append("Consider reaching out for support")
    if "help" in lowered or "assistance" in lowered:
        actions.append("Seek professional help")
    if "safe" in lowered or "safety" in lowered:
        actions.append("Ensure personal safety")
    return actions


class HeuristicAIService(AIService):
    """Deterministic AIService with no network dependency."""

    async def generate_response(self, message: str, context: ConversationContext) -> AIResponse:
        level, _ = classify_level(message)
        level = ThreatLevel.max(level, context.current_threat_level)
        reply = REPLIES[level]
        return AIResponse(
            message=reply,
            confidence=0.6,
            should_continue="goodbye" not in normalize(message),
            suggested_actions=suggested_actions(reply),
            emotional_tone=emotional_tone(reply, level),
        )

    async def assess_threat_from_text(self, message: str, history: Sequence[Message] = ()) -> ThreatAssessment:
        level, phrase = classify_level(message)
        reasoning = f"Classified as {level.value} threat level"
        if phrase:
            reasoning += f" (matched '{phrase}')"
        return ThreatAssessment(
            level=level,
            confidence=0.8 if phrase else 0.6,
            reasoning=reasoning,
            should_escalate=level >= ThreatLevel.HIGH,
            detected_threats=frozenset(extract_threats(message)),
        )

    async def summarize_conversation(self, messages: Sequence[Message]) -> str:
        if not messages:
            return "No conversation to summarize"
        user_turns = [m for m in messages if m.role.value == "user"]
        summary = f"{len(messages)} messages exchanged, {len(user_turns)} from the user."
        if user_turns:
            summary += f" Last user message: \"{user_turns[-1].content}\""
        return summary
