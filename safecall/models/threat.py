"""
Threat Models - Ordered Severity Scale and Immutable Assessments

ThreatLevel carries an explicit integer rank; every comparison and maximum
goes through that rank, never through string ordering.
Assessments are frozen after creation.
"""

from enum import Enum
from typing import Iterable

from pydantic import BaseModel, Field


FALLBACK_REASONING = "fallback: provider error"


class ThreatLevel(str, Enum):
    """Totally ordered severity: none < low < medium < high < critical."""
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    @classmethod
    def from_rank(cls, rank: int) -> "ThreatLevel":
        return _BY_RANK[rank]

    @classmethod
    def parse(cls, value: "str | ThreatLevel") -> "ThreatLevel":
        """Parse a level name case-insensitively. Raises ValueError if unknown."""
        if isinstance(value, ThreatLevel):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown threat level: {value!r}")

    @classmethod
    def max(cls, *levels: "ThreatLevel") -> "ThreatLevel":
        if not levels:
            return cls.NONE
        return cls.from_rank(max(level.rank for level in levels))

    def __lt__(self, other):
        if not isinstance(other, ThreatLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, ThreatLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, ThreatLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, ThreatLevel):
            return NotImplemented
        return self.rank >= other.rank

    def __hash__(self):
        return hash(self.value)


_RANKS = {level: index for index, level in enumerate(ThreatLevel)}
_BY_RANK = {index: level for level, index in _RANKS.items()}


class ThreatAssessment(BaseModel):
    """
    Verdict produced by one evidence source (text or vision).

    Never mutated after creation.
    """

    level: ThreatLevel = Field(..., description="Severity on the ordered scale")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Classifier confidence")
    reasoning: str = Field("", description="Human-auditable explanation")
    should_escalate: bool = Field(False, description="Whether this source alone requests escalation")
    detected_threats: frozenset[str] = Field(default_factory=frozenset, description="Threat categories found")

    class Config:
        frozen = True

    @classmethod
    def fallback(cls, source: str = "text") -> "ThreatAssessment":
        """Fixed conservative assessment used when a provider fails."""
        threats: Iterable[str] = ("analysis_error",) if source == "vision" else ()
        return cls(
            level=ThreatLevel.MEDIUM,
            confidence=0.5,
            reasoning=FALLBACK_REASONING,
            should_escalate=False,
            detected_threats=frozenset(threats),
        )

    @property
    def is_fallback(self) -> bool:
        return self.reasoning == FALLBACK_REASONING


class VisualAssessment(BaseModel):
    """Structured observations extracted from one video frame."""

    has_weapons: bool = False
    has_violence: bool = False
    has_distress: bool = False
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    detected_objects: tuple[str, ...] = Field(default_factory=tuple)

    class Config:
        frozen = True
