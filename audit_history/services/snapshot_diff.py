from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional
from uuid import UUID

from audit_history.schemas import AuditAction, CaptureLevel

logger = logging.getLogger(__name__)

RowSnapshot = Mapping[str, Optional[str]]


class UnsupportedCaptureError(ValueError):
    """Raised when a captured mutation cannot be turned into an audit payload."""


@dataclass(frozen=True)
class DiffResult:
    action: AuditAction
    statement_only: bool
    row_data: RowSnapshot | None = None
    changed_fields: RowSnapshot | None = None
    suppressed: bool = False
    # Full row (before exclusions) that identifies the mutated record.
    anchor_row: RowSnapshot | None = None


def serialize_value(value: Any) -> str | None:
    """Render a column value as text, the way it is stored in row snapshots."""

    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            return raw.hex()
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), sort_keys=True, default=str)
    if isinstance(value, UUID):
        return str(value)
    return str(value)


def serialize_row(row: Mapping[str, Any] | None, excluded_columns: Iterable[str] = ()) -> RowSnapshot | None:
    if row is None:
        return None
    excluded = set(excluded_columns)
    return MappingProxyType(
        {str(column): serialize_value(value) for column, value in row.items() if column not in excluded}
    )


def compute_diff(
    action: AuditAction,
    level: CaptureLevel,
    *,
    old_row: Mapping[str, Any] | None = None,
    new_row: Mapping[str, Any] | None = None,
    excluded_columns: Iterable[str] = (),
) -> DiffResult:
    """Decide what an audit event records for one captured mutation.

    Excluding a column the table does not have is a no-op, so one exclusion
    list can be shared between tables.
    """

    action = AuditAction(action)
    level = CaptureLevel(level)
    if level is CaptureLevel.STATEMENT:
        return DiffResult(action=action, statement_only=True)

    excluded = set(excluded_columns)

    if action is AuditAction.INSERT:
        if new_row is None:
            raise UnsupportedCaptureError("Row-level INSERT requires the new row")
        return DiffResult(
            action=action,
            statement_only=False,
            row_data=serialize_row(new_row, excluded),
            anchor_row=serialize_row(new_row),
        )

    if action is AuditAction.DELETE:
        if old_row is None:
            raise UnsupportedCaptureError("Row-level DELETE requires the old row")
        return DiffResult(
            action=action,
            statement_only=False,
            row_data=serialize_row(old_row, excluded),
            anchor_row=serialize_row(old_row),
        )

    if action is AuditAction.UPDATE:
        if old_row is None or new_row is None:
            raise UnsupportedCaptureError("Row-level UPDATE requires both the old and the new row")
        row_data = serialize_row(old_row, excluded)
        new_snapshot = serialize_row(new_row, excluded)
        changed = {
            column: value
            for column, value in new_snapshot.items()
            if column not in row_data or row_data[column] != value
        }
        if not changed:
            logger.debug("Suppressing update whose changes only touch excluded columns")
            return DiffResult(action=action, statement_only=False, row_data=row_data, suppressed=True)
        return DiffResult(
            action=action,
            statement_only=False,
            row_data=row_data,
            changed_fields=MappingProxyType(changed),
            anchor_row=serialize_row(old_row),
        )

    raise UnsupportedCaptureError(f"Unhandled capture case: {action.value} at {level.value} level")


def read_code_value(snapshot: RowSnapshot | None, code_column: str | None) -> str | None:
    if snapshot is None or not code_column:
        return None
    return snapshot.get(code_column)
