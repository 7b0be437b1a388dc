from audit_history.models.entities import (
    AuditMetadata,
    AuditReference,
    LedgerImmutableError,
    LoggedAction,
    TimestampMixin,
    utcnow,
)

__all__ = [
    "AuditMetadata",
    "AuditReference",
    "LedgerImmutableError",
    "LoggedAction",
    "TimestampMixin",
    "utcnow",
]
