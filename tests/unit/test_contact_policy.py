"""Unit Tests for the severity -> contact table."""

import pytest

from safecall.escalation.contact_policy import ContactPolicy
from safecall.models.incident import ContactKind, EmergencyContact
from safecall.models.threat import ThreatLevel


@pytest.fixture
def policy():
    return ContactPolicy()


class TestContactPolicy:
    def test_critical_tier(self, policy):
        contacts = policy.contacts_for(ThreatLevel.CRITICAL)
        assert [(c.name, c.phone_number, c.kind, c.priority) for c in contacts] == [
            ("General Emergency", "911", ContactKind.POLICE, 1),
            ("Emergency Medical", "911", ContactKind.MEDICAL, 1),
            ("Crisis Intervention", "988", ContactKind.CRISIS, 2),
        ]

    def test_high_tier(self, policy):
        contacts = policy.contacts_for(ThreatLevel.HIGH)
        assert [(c.name, c.phone_number, c.priority) for c in contacts] == [
            ("General Emergency", "911", 1),
            ("Crisis Lifeline", "988", 2),
        ]

    def test_medium_tier_is_crisis_line_only(self, policy):
        contacts = policy.contacts_for(ThreatLevel.MEDIUM)
        assert [(c.name, c.phone_number, c.priority) for c in contacts] == [("Crisis Lifeline", "988", 1)]

    @pytest.mark.parametrize("level", [ThreatLevel.LOW, ThreatLevel.NONE])
    def test_low_tiers_default_to_general_emergency(self, policy, level):
        assert [c.name for c in policy.contacts_for(level)] == ["General Emergency"]

    def test_custom_table_is_sorted_stably(self):
        first = EmergencyContact(kind=ContactKind.FAMILY, name="A", phone_number="1", reason="r", priority=2)
        second = EmergencyContact(kind=ContactKind.FAMILY, name="B", phone_number="2", reason="r", priority=1)
        third = EmergencyContact(kind=ContactKind.FAMILY, name="C", phone_number="3", reason="r", priority=2)
        policy = ContactPolicy({"high": [first, second, third]})
        assert [c.name for c in policy.contacts_for(ThreatLevel.HIGH)] == ["B", "A", "C"]
