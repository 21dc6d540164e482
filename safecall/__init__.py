"""
SafeCall - real-time session and threat-escalation core.

Fuses chat and video evidence from live wellness calls and SafeWalk sessions
into a single threat level and escalates to emergency contacts when needed.
"""

__version__ = "1.0.0"
