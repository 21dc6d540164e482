"""
Contact Policy - Severity to emergency-contact table

This table is the single source of truth for who gets notified at each
threat level. Anything that needs the contact set asks ContactPolicy.
"""

from typing import Mapping, Optional, Sequence

from safecall.models.incident import ContactKind, EmergencyContact
from safecall.models.threat import ThreatLevel


GENERAL_EMERGENCY = EmergencyContact(
    kind=ContactKind.POLICE,
    name="General Emergency",
    phone_number="911",
    reason="General emergency response",
    priority=1,
)

EMERGENCY_MEDICAL = EmergencyContact(
    kind=ContactKind.MEDICAL,
    name="Emergency Medical",
    phone_number="911",
    reason="Critical situation requiring immediate medical response",
    priority=1,
)

CRISIS_INTERVENTION = EmergencyContact(
    kind=ContactKind.CRISIS,
    name="Crisis Intervention",
    phone_number="988",
    reason="Mental health crisis requiring specialized intervention",
    priority=2,
)

CRISIS_LIFELINE_HIGH = EmergencyContact(
    kind=ContactKind.CRISIS,
    name="Crisis Lifeline",
    phone_number="988",
    reason="High-risk situation requiring crisis support",
    priority=2,
)

CRISIS_LIFELINE_MEDIUM = EmergencyContact(
    kind=ContactKind.CRISIS,
    name="Crisis Lifeline",
    phone_number="988",
    reason="Wellness check with concerning indicators",
    priority=1,
)


DEFAULT_POLICY_TABLE: Mapping[ThreatLevel, tuple[EmergencyContact, ...]] = {
    ThreatLevel.CRITICAL: (GENERAL_EMERGENCY, EMERGENCY_MEDICAL, CRISIS_INTERVENTION),
    ThreatLevel.HIGH: (GENERAL_EMERGENCY, CRISIS_LIFELINE_HIGH),
    ThreatLevel.MEDIUM: (CRISIS_LIFELINE_MEDIUM,),
    ThreatLevel.LOW: (GENERAL_EMERGENCY,),
    ThreatLevel.NONE: (GENERAL_EMERGENCY,),
}


class ContactPolicy:
    """Looks up the contact set for a threat level."""

    def __init__(self, table: Optional[Mapping[ThreatLevel, Sequence[EmergencyContact]]] = None):
        source = table if table is not None else DEFAULT_POLICY_TABLE
        self._table = {ThreatLevel.parse(level): tuple(contacts) for level, contacts in source.items()}

    def contacts_for(self, level: ThreatLevel) -> list[EmergencyContact]:
        """Contacts for `level`, stable-sorted by ascending priority."""
        contacts = self._table.get(level)
        if contacts is None:
            contacts = self._table.get(ThreatLevel.NONE, ())
        return sorted(contacts, key=lambda contact: contact.priority)
