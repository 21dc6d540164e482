"""
Error taxonomy for the session core.

None of these are fatal to the process. Each one maps to a fixed
degradation path in the orchestrator:

- ClassificationUnavailable -> fallback assessment, transition continues
- SessionNotFound           -> client-visible error event, no mutation
- DuplicateSession          -> treated as a re-join
- NotificationFailure       -> logged and skipped, escalation continues
- PersistenceFailure        -> logged, in-memory state stays authoritative
- UnknownEvent              -> client-visible error event, no mutation
"""


class SafeCallError(Exception):
    """Base class for all core errors."""
    pass


class ClassificationUnavailable(SafeCallError):
    """Raised when the AI or vision provider fails or times out."""

    def __init__(self, source: str, reason: str = ""):
        self.source = source
        self.reason = reason
        super().__init__(f"{source} classification unavailable: {reason}" if reason else f"{source} classification unavailable")


class SessionNotFound(SafeCallError):
    """Raised when an event targets an unknown or expired session."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class DuplicateSession(SafeCallError):
    """Raised when creating a session whose id is already live."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session {session_id} already exists")


class NotificationFailure(SafeCallError):
    """Raised when a single contact could not be notified on one channel."""

    def __init__(self, phone_number: str, channel: str, reason: str = ""):
        self.phone_number = phone_number
        self.channel = channel
        self.reason = reason
        super().__init__(f"{channel} to {phone_number} failed: {reason}" if reason else f"{channel} to {phone_number} failed")


class PersistenceFailure(SafeCallError):
    """Raised by repositories when the durable store rejects an operation."""
    pass


class UnknownEvent(SafeCallError, ValueError):
    """Raised when an inbound event name has no registered payload model."""

    def __init__(self, event_name: str):
        self.event_name = event_name
        super().__init__(f"Unknown event: {event_name}")
