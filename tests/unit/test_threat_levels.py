"""
Unit Tests for ThreatLevel and assessments

Tests:
- Rank-based ordering (never string ordering)
- Parsing and maximum
- Fixed fallback assessment
"""

import pytest
from pydantic import ValidationError

from safecall.models.threat import FALLBACK_REASONING, ThreatAssessment, ThreatLevel


ORDER = [ThreatLevel.NONE, ThreatLevel.LOW, ThreatLevel.MEDIUM, ThreatLevel.HIGH, ThreatLevel.CRITICAL]


class TestThreatLevel:
    def test_total_order_follows_severity(self):
        assert sorted(reversed(ORDER)) == ORDER
        for lower, higher in zip(ORDER, ORDER[1:]):
            assert lower < higher
            assert higher > lower
            assert lower.rank + 1 == higher.rank

    def test_ordering_is_not_alphabetical(self):
        # "critical" < "high" as strings, but not as severities
        assert ThreatLevel.CRITICAL > ThreatLevel.HIGH
        assert ThreatLevel.MEDIUM > ThreatLevel.LOW
        assert ThreatLevel.NONE < ThreatLevel.LOW

    def test_from_rank_round_trips_rank(self):
        for level in ORDER:
            assert ThreatLevel.from_rank(level.rank) is level

    def test_max(self):
        assert ThreatLevel.max(ThreatLevel.LOW, ThreatLevel.CRITICAL, ThreatLevel.MEDIUM) == ThreatLevel.CRITICAL
        assert ThreatLevel.max() == ThreatLevel.NONE

    def test_parse_is_case_insensitive(self):
        assert ThreatLevel.parse(" High ") == ThreatLevel.HIGH
        assert ThreatLevel.parse(ThreatLevel.LOW) is ThreatLevel.LOW

    def test_parse_rejects_unknown(self):
        with pytest.raises(ValueError):
            ThreatLevel.parse("severe")

    def test_usable_as_dict_key(self):
        table = {ThreatLevel.HIGH: "x"}
        assert table[ThreatLevel("high")] == "x"


class TestThreatAssessment:
    def test_text_fallback(self):
        fallback = ThreatAssessment.fallback("text")
        assert fallback.level == ThreatLevel.MEDIUM
        assert fallback.confidence == 0.5
        assert fallback.should_escalate is False
        assert fallback.reasoning == FALLBACK_REASONING
        assert fallback.detected_threats == frozenset()
        assert fallback.is_fallback

    def test_vision_fallback_flags_analysis_error(self):
        fallback = ThreatAssessment.fallback("vision")
        assert fallback.detected_threats == frozenset({"analysis_error"})
        assert fallback.should_escalate is False

    def test_confidence_bounds(self):
        with pytest.raises(ValidationError):
            ThreatAssessment(level=ThreatLevel.LOW, confidence=1.5)

    def test_immutable(self):
        assessment = ThreatAssessment(level=ThreatLevel.LOW, confidence=0.9)
        with pytest.raises(ValidationError):
            assessment.level = ThreatLevel.HIGH
