# Common utilities

from packages.common.clock import Clock, SystemClock, ensure_utc
from packages.common.exceptions import (
    AccessDeniedError,
    ConfigurationError,
    CorruptRecordError,
    DatabaseConnectionError,
    DatabaseError,
    InfrastructureError,
    MigrationError,
    NotFoundError,
    TutorCoreError,
    ValidationError,
)
from packages.common.logging import (
    bind_request,
    clear_request,
    configure_logging,
    get_logger,
    get_request_id,
    log_failure,
)

__all__ = [
    "AccessDeniedError",
    "Clock",
    "ConfigurationError",
    "CorruptRecordError",
    "DatabaseConnectionError",
    "DatabaseError",
    "InfrastructureError",
    "MigrationError",
    "NotFoundError",
    "SystemClock",
    "TutorCoreError",
    "ValidationError",
    "bind_request",
    "clear_request",
    "configure_logging",
    "ensure_utc",
    "get_logger",
    "get_request_id",
    "log_failure",
]
