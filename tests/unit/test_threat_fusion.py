"""
Unit Tests for ThreatFusion

Tests:
- combine() is the ordinal maximum for every pair of levels
- escalation is disjunctive across sources
- explanation and threat set of fused verdicts
"""

import itertools

import pytest

from safecall.engines.threat_fusion import (
    NO_VISUAL_EVIDENCE,
    NoVisualEvidence,
    ThreatFusion,
    VisualEvidence,
    combine,
    fuse,
    fuse_visual_only,
    should_escalate,
)
from safecall.models.threat import ThreatAssessment, ThreatLevel, VisualAssessment


def assessment(level, escalate=False, reasoning="", confidence=0.8, threats=()):
    return ThreatAssessment(
        level=level,
        confidence=confidence,
        reasoning=reasoning,
        should_escalate=escalate,
        detected_threats=frozenset(threats),
    )


LEVELS = list(ThreatLevel)


class TestCombine:
    @pytest.mark.parametrize("text_level,visual_level", list(itertools.product(LEVELS, LEVELS)))
    def test_every_pair_is_the_maximum(self, text_level, visual_level):
        result = combine(assessment(text_level), VisualEvidence(assessment=assessment(visual_level)))
        assert result.rank == max(text_level.rank, visual_level.rank)

    def test_low_text_with_critical_visual(self):
        visual = VisualEvidence(assessment=assessment(ThreatLevel.CRITICAL))
        assert combine(assessment(ThreatLevel.LOW), visual) == ThreatLevel.CRITICAL

    @pytest.mark.parametrize("absent", [None, NO_VISUAL_EVIDENCE, NoVisualEvidence()])
    def test_absent_visual_uses_text_level(self, absent):
        assert combine(assessment(ThreatLevel.HIGH), absent) == ThreatLevel.HIGH

    def test_rejects_untyped_visual(self):
        with pytest.raises(TypeError):
            combine(assessment(ThreatLevel.LOW), assessment(ThreatLevel.HIGH))


class TestShouldEscalate:
    @pytest.mark.parametrize("text_escalates,visual_escalates", list(itertools.product([True, False], repeat=2)))
    def test_disjunction(self, text_escalates, visual_escalates):
        text = assessment(ThreatLevel.LOW, escalate=text_escalates)
        visual = VisualEvidence(assessment=assessment(ThreatLevel.LOW, escalate=visual_escalates))
        assert should_escalate(text, visual) == (text_escalates or visual_escalates)

    def test_text_alone(self):
        assert should_escalate(assessment(ThreatLevel.HIGH, escalate=True)) is True
        assert should_escalate(assessment(ThreatLevel.HIGH, escalate=False), None) is False


class TestFuse:
    def test_text_only_verdict(self):
        verdict = fuse(assessment(ThreatLevel.MEDIUM, reasoning="sounds down", threats=["emotional_distress"]))
        assert verdict.level == ThreatLevel.MEDIUM
        assert verdict.sources == ("text",)
        assert verdict.reasoning == "sounds down"
        assert verdict.detected_threats == frozenset({"emotional_distress"})

    def test_visual_escalation_leads_the_explanation(self):
        text = assessment(ThreatLevel.LOW, reasoning="calm words", confidence=0.6)
        visual = VisualEvidence(
            assessment=assessment(ThreatLevel.CRITICAL, escalate=True, reasoning="weapon in frame",
                                  confidence=0.9, threats=["weapons_detected"]),
            observation=VisualAssessment(has_weapons=True, confidence=0.9),
        )
        verdict = fuse(text, visual)
        assert verdict.level == ThreatLevel.CRITICAL
        assert verdict.should_escalate is True
        assert verdict.reasoning == "weapon in frame; calm words"
        assert verdict.confidence == 0.9
        assert verdict.detected_threats == frozenset({"weapons_detected"})
        assert verdict.sources == ("text", "vision")

    def test_to_assessment_carries_the_verdict(self):
        verdict = fuse(assessment(ThreatLevel.HIGH, escalate=True, reasoning="threatened"))
        converted = verdict.to_assessment()
        assert converted.level == ThreatLevel.HIGH
        assert converted.should_escalate is True
        assert converted.reasoning == "threatened"

    def test_visual_only(self):
        visual = VisualEvidence(assessment=assessment(ThreatLevel.HIGH, escalate=True, reasoning="violence"))
        verdict = fuse_visual_only(visual)
        assert verdict.level == ThreatLevel.HIGH
        assert verdict.should_escalate is True
        assert verdict.sources == ("vision",)

    def test_facade_exposes_the_same_functions(self):
        fusion = ThreatFusion()
        text = assessment(ThreatLevel.LOW)
        assert fusion.combine(text) == combine(text)
        assert fusion.fuse(text) == fuse(text)
