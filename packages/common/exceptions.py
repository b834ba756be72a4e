"""Exception hierarchy for the tutoring core.

Every error raised by the scheduler and the quota manager derives from
``TutorCoreError`` so the API layer can map whole families at once:

- ``NotFoundError`` / ``AccessDeniedError`` surface as 404
- ``ValidationError`` surfaces as 422 and is always raised before any write
- ``InfrastructureError`` surfaces as 503 (or is absorbed on fail-open paths)
"""

from __future__ import annotations


class TutorCoreError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, *, context: dict[str, object] | None = None) -> None:
        """Initialize error with message and optional context.

        Args:
            message: Human-readable error description.
            context: Additional key-value pairs for structured logging.
        """
        super().__init__(message)
        self.context = context or {}


class NotFoundError(TutorCoreError):
    """Referenced card or deck does not exist."""


class AccessDeniedError(TutorCoreError):
    """Entity exists but belongs to another user."""


class ValidationError(TutorCoreError):
    """Malformed input or persisted state, rejected before any mutation."""


class InfrastructureError(TutorCoreError):
    """Base class for persistence and backing-service failures."""


class DatabaseError(InfrastructureError):
    """Database read or write failed."""


class DatabaseConnectionError(DatabaseError):
    """Database connection failed or was lost."""


class CorruptRecordError(DatabaseError):
    """Stored row holds values that no longer parse."""


class MigrationError(DatabaseError):
    """Database migration failed."""


class ConfigurationError(TutorCoreError):
    """Invalid or missing configuration."""
