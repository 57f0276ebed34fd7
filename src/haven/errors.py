"""Exception hierarchy for Haven."""


class HavenError(Exception):
    """Base class for all Haven errors."""


class MediumError(HavenError):
    """A storage medium failed to read or write a key."""


class StorageUnavailable(HavenError):
    """The storage medium cannot be probed or written."""


class NoData(HavenError):
    """Nothing is stored for the requested user."""


class InvalidFormat(HavenError):
    """An import envelope is malformed."""


class NoActiveSession(HavenError):
    """A session-scoped call was made while no session is live."""

    def __init__(self, operation: str = "") -> None:
        message = "No active session"
        if operation:
            message = f"No active session for {operation}()"
        super().__init__(message)
        self.operation = operation


class SessionConflict(HavenError):
    """Another manager already holds a live session over the same store."""
