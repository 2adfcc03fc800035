"""Exception taxonomy shared by the client core, storage adapters and CLI."""

from typing import Optional


class TaskboardError(Exception):
    """Base class for all taskboard errors."""


class ValidationFailure(TaskboardError, ValueError):
    """A required field was blank or a name collided with an existing one.

    Subclasses ValueError so pydantic validators can raise it directly.
    """


class TransportError(TaskboardError):
    """A remote request failed at the network level or returned an error status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(TransportError):
    """The server rejected the bearer credential (HTTP 401)."""


class PortConflictError(TaskboardError):
    """The requested server port is already bound."""
