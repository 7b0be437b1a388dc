from audit_history.schemas.entities import (
    AuditAction,
    AuditedTableRead,
    AuditedTableRegister,
    CaptureLevel,
    CapturedMutation,
    CaptureResult,
    LoggedActionQuery,
    LoggedActionRead,
    RelationDirection,
    TableRelationInput,
    TableRelationRead,
)

__all__ = [
    "AuditAction",
    "AuditedTableRead",
    "AuditedTableRegister",
    "CaptureLevel",
    "CapturedMutation",
    "CaptureResult",
    "LoggedActionQuery",
    "LoggedActionRead",
    "RelationDirection",
    "TableRelationInput",
    "TableRelationRead",
]
