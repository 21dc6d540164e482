"""
Threat Fusion - Combine per-source assessments into one verdict

Pure functions, no I/O.

- Overall level is the maximum rank across sources.
- Escalation is disjunctive: any single source requesting escalation is
  enough, corroboration is never required.

Visual evidence is an explicit variant: NoVisualEvidence or VisualEvidence.
"""

from typing import Optional, Union

from pydantic import BaseModel, Field

from safecall.models.threat import ThreatAssessment, ThreatLevel, VisualAssessment


class NoVisualEvidence(BaseModel):
    """No frame accompanied the evidence."""

    class Config:
        frozen = True


class VisualEvidence(BaseModel):
    """A classified frame. observation is None when the provider fell back."""
    assessment: ThreatAssessment
    observation: Optional[VisualAssessment] = None

    class Config:
        frozen = True


VisualSignal = Union[VisualEvidence, NoVisualEvidence]

NO_VISUAL_EVIDENCE = NoVisualEvidence()


class FusionVerdict(BaseModel):
    """Fused outcome of one evidence event."""
    level: ThreatLevel
    should_escalate: bool
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str
    detected_threats: frozenset[str] = Field(default_factory=frozenset)
    sources: tuple[str, ...] = Field(default_factory=tuple)

    class Config:
        frozen = True

    def to_assessment(self) -> ThreatAssessment:
        """Assessment handed to the escalation dispatcher."""
        return ThreatAssessment(
            level=self.level,
            confidence=self.confidence,
            reasoning=self.reasoning,
            should_escalate=self.should_escalate,
            detected_threats=self.detected_threats,
        )


def _normalize(visual: Optional[VisualSignal]) -> VisualSignal:
    if visual is None:
        return NO_VISUAL_EVIDENCE
    if isinstance(visual, (VisualEvidence, NoVisualEvidence)):
        return visual
    raise TypeError(f"Expected VisualEvidence or NoVisualEvidence, got {type(visual).__name__}")


def combine(text: ThreatAssessment, visual: Optional[VisualSignal] = None) -> ThreatLevel:
    """Enum value at max(text rank, visual rank); text level alone if no visual evidence."""
    signal = _normalize(visual)
    if isinstance(signal, NoVisualEvidence):
        return text.level
    return ThreatLevel.from_rank(max(text.level.rank, signal.assessment.level.rank))


def should_escalate(text: ThreatAssessment, visual: Optional[VisualSignal] = None) -> bool:
    signal = _normalize(visual)
    if isinstance(signal, NoVisualEvidence):
        return text.should_escalate
    return text.should_escalate or signal.assessment.should_escalate


def fuse(text: ThreatAssessment, visual: Optional[VisualSignal] = None) -> FusionVerdict:
    """Level, trigger and an auditable explanation for a text (+ optional frame) event."""
    signal = _normalize(visual)
    level = combine(text, signal)
    escalate = should_escalate(text, signal)

    if isinstance(signal, NoVisualEvidence):
        return FusionVerdict(
            level=level,
            should_escalate=escalate,
            confidence=text.confidence,
            reasoning=text.reasoning,
            detected_threats=text.detected_threats,
            sources=("text",),
        )

    visual_assessment = signal.assessment
    reasons = [r for r in (text.reasoning, visual_assessment.reasoning) if r]
    # The escalating source leads the explanation.
    if visual_assessment.should_escalate and not text.should_escalate:
        reasons.reverse()
    return FusionVerdict(
        level=level,
        should_escalate=escalate,
        confidence=max(text.confidence, visual_assessment.confidence),
        reasoning="; ".join(reasons),
        detected_threats=text.detected_threats | visual_assessment.detected_threats,
        sources=("text", "vision"),
    )


def fuse_visual_only(visual: VisualEvidence) -> FusionVerdict:
    """Verdict for the frame-only channel."""
    assessment = visual.assessment
    return FusionVerdict(
        level=assessment.level,
        should_escalate=assessment.should_escalate,
        confidence=assessment.confidence,
        reasoning=assessment.reasoning,
        detected_threats=assessment.detected_threats,
        sources=("vision",),
    )


class ThreatFusion:
    """Object facade over the fusion functions, for injection into the orchestrator."""

    combine = staticmethod(combine)
    should_escalate = staticmethod(should_escalate)
    fuse = staticmethod(fuse)
    fuse_visual_only = staticmethod(fuse_visual_only)
