from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable

from sqlalchemy import insert
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from audit_history.models import LoggedAction, utcnow
from audit_history.schemas import AuditAction, CapturedMutation
from audit_history.services.metadata_registry import TableDescriptor
from audit_history.services.snapshot_diff import DiffResult

logger = logging.getLogger(__name__)


class LedgerWriteError(RuntimeError):
    """Raised when an audit event cannot be appended; the enclosing transaction must fail."""


@dataclass(frozen=True)
class AuditEvent:
    schema_name: str
    table_name: str
    resolved_table_name: str | None
    code_value: str | None
    relid: int
    session_user_name: str | None
    action_tstamp_tx: datetime
    action_tstamp_stm: datetime
    action_tstamp_clk: datetime
    transaction_id: int | None
    application_name: str | None
    client_addr: str | None
    client_port: int | None
    client_query: str | None
    action: str
    row_data: dict[str, Any] | None
    changed_fields: dict[str, Any] | None
    statement_only: bool
    relationship_path: str | None = None

    def as_row(self) -> dict[str, Any]:
        return asdict(self)


class AuditEventBuilder:
    """Assemble the ledger row for one finalized capture result."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock

    def build(
        self,
        mutation: CapturedMutation,
        descriptor: TableDescriptor,
        diff: DiffResult,
        *,
        code_value: str | None = None,
        resolved_table_name: str | None = None,
        relationship_path: str | None = None,
    ) -> AuditEvent:
        return AuditEvent(
            schema_name=mutation.schema_name,
            table_name=mutation.table_name,
            resolved_table_name=resolved_table_name,
            code_value=code_value,
            relid=descriptor.id,
            session_user_name=mutation.session_user,
            action_tstamp_tx=mutation.transaction_start_time,
            action_tstamp_stm=mutation.statement_start_time,
            action_tstamp_clk=self._clock(),
            transaction_id=mutation.transaction_id,
            application_name=mutation.client_app_name,
            client_addr=mutation.client_addr,
            client_port=mutation.client_port,
            client_query=mutation.client_query_text if descriptor.audit_query_text else None,
            action=AuditAction(diff.action).code,
            row_data=dict(diff.row_data) if diff.row_data is not None else None,
            changed_fields=dict(diff.changed_fields) if diff.changed_fields is not None else None,
            statement_only=diff.statement_only,
            relationship_path=relationship_path,
        )


class LedgerWriter:
    """Append-only writer for ``logged_actions``."""

    def append(self, connection: Connection, event: AuditEvent) -> int:
        try:
            result = connection.execute(insert(LoggedAction.__table__).values(**event.as_row()))
        except SQLAlchemyError as exc:
            logger.error(
                "Failed to append audit event for %s.%s (%s)",
                event.schema_name,
                event.table_name,
                event.action,
            )
            raise LedgerWriteError(f"Unable to append audit event: {exc}") from exc

        event_id = result.inserted_primary_key[0]
        logger.debug(
            "Appended audit event %s for %s.%s code=%s",
            event_id,
            event.schema_name,
            event.table_name,
            event.code_value,
        )
        return event_id
