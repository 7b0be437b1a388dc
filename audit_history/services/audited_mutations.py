"""Execute mutations and capture their audit events in one transaction.

This is the application-side counterpart of per-row and per-statement audit
triggers: the mutation and every ledger insert it causes share the caller's
connection, so a rollback removes both and a failed ledger write fails the
mutation.

Usage::

    with engine.begin() as connection:
        context = TransactionContext.current(connection, session_user="alice")
        tx = audited_mutations.bind(connection, context)
        tx.update("factory", "signal", {"id": 7}, {"alias": "S7"})
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Sequence

from sqlalchemy import Column, Table, and_, delete, insert, select, text, update
from sqlalchemy.engine import Connection

from audit_history.models import utcnow
from audit_history.schemas import AuditAction, CaptureLevel, CapturedMutation
from audit_history.services.capture_engine import AuditCaptureEngine, capture_engine
from audit_history.services.snapshot_diff import UnsupportedCaptureError

logger = logging.getLogger(__name__)

_POSTGRES_CONTEXT_SQL = text(
    """
    SELECT
        txid_current() AS transaction_id,
        transaction_timestamp() AS transaction_start_time,
        session_user AS session_user_name,
        current_setting('application_name') AS application_name,
        host(inet_client_addr()) AS client_addr,
        inet_client_port() AS client_port
    """
)


@dataclass(frozen=True)
class TransactionContext:
    transaction_start_time: datetime
    transaction_id: int | None = None
    session_user: str | None = None
    application_name: str | None = None
    client_addr: str | None = None
    client_port: int | None = None
    client_query: str | None = None

    @classmethod
    def current(
        cls,
        connection: Connection,
        *,
        session_user: str | None = None,
        application_name: str | None = None,
        client_addr: str | None = None,
        client_port: int | None = None,
        client_query: str | None = None,
    ) -> "TransactionContext":
        """Describe the transaction ``connection`` is in; explicit arguments win over server values."""

        if connection.dialect.name == "postgresql":
            row = connection.execute(_POSTGRES_CONTEXT_SQL).mappings().one()
            return cls(
                transaction_start_time=row["transaction_start_time"],
                transaction_id=row["transaction_id"],
                session_user=session_user or row["session_user_name"],
                application_name=application_name or row["application_name"] or None,
                client_addr=client_addr or row["client_addr"],
                client_port=client_port or row["client_port"],
                client_query=client_query,
            )

        return cls(
            transaction_start_time=utcnow(),
            session_user=session_user,
            application_name=application_name,
            client_addr=client_addr,
            client_port=client_port,
            client_query=client_query,
        )


class AuditedTransaction:
    def __init__(
        self,
        engine: AuditCaptureEngine,
        connection: Connection,
        context: TransactionContext,
    ) -> None:
        self.engine = engine
        self.connection = connection
        self.context = context

    def insert(
        self,
        schema_name: str,
        table_name: str,
        rows: Mapping[str, Any] | Sequence[Mapping[str, Any]],
    ) -> list[int]:
        table = self._table(schema_name, table_name)
        values = [rows] if isinstance(rows, Mapping) else list(rows)
        statement_start = utcnow()

        if not self._audits_rows(schema_name, table_name):
            if values:
                self.connection.execute(insert(table), values)
            return self._capture(schema_name, table_name, AuditAction.INSERT, statement_start)

        key = self._require_key(table)
        event_ids: list[int] = []
        for row in values:
            result = self.connection.execute(insert(table).values(**row))
            key_value = result.inserted_primary_key[0]
            new_row = self._fetch_one(table, key, key_value)
            event_ids.extend(
                self._capture(schema_name, table_name, AuditAction.INSERT, statement_start, new_row=new_row)
            )
        return event_ids

    def update(
        self,
        schema_name: str,
        table_name: str,
        where: Mapping[str, Any],
        values: Mapping[str, Any],
    ) -> list[int]:
        table = self._table(schema_name, table_name)
        criteria = self._criteria(table, where)
        statement_start = utcnow()

        if not self._audits_rows(schema_name, table_name):
            self.connection.execute(update(table).where(criteria).values(**values))
            return self._capture(schema_name, table_name, AuditAction.UPDATE, statement_start)

        key = self._require_key(table)
        old_rows = self._fetch_all(table, key, criteria)
        self.connection.execute(update(table).where(criteria).values(**values))

        event_ids: list[int] = []
        for old_row in old_rows:
            key_value = values.get(key.name, old_row[key.name])
            new_row = self._fetch_one(table, key, key_value)
            event_ids.extend(
                self._capture(
                    schema_name,
                    table_name,
                    AuditAction.UPDATE,
                    statement_start,
                    old_row=old_row,
                    new_row=new_row,
                )
            )
        return event_ids

    def delete(self, schema_name: str, table_name: str, where: Mapping[str, Any]) -> list[int]:
        table = self._table(schema_name, table_name)
        criteria = self._criteria(table, where)
        statement_start = utcnow()

        if not self._audits_rows(schema_name, table_name):
            self.connection.execute(delete(table).where(criteria))
            return self._capture(schema_name, table_name, AuditAction.DELETE, statement_start)

        key = self._require_key(table)
        old_rows = self._fetch_all(table, key, criteria)
        self.connection.execute(delete(table).where(criteria))

        event_ids: list[int] = []
        for old_row in old_rows:
            event_ids.extend(
                self._capture(schema_name, table_name, AuditAction.DELETE, statement_start, old_row=old_row)
            )
        return event_ids

    def truncate(self, schema_name: str, table_name: str) -> list[int]:
        table = self._table(schema_name, table_name)
        statement_start = utcnow()
        logger.info("Truncating audited table %s", table.fullname)
        if self.connection.dialect.name == "postgresql":
            qualified = self.connection.dialect.identifier_preparer.format_table(table)
            self.connection.execute(text(f"TRUNCATE TABLE {qualified}"))
        else:
            self.connection.execute(delete(table))
        return self._capture(schema_name, table_name, AuditAction.TRUNCATE, statement_start)

    def _capture(
        self,
        schema_name: str,
        table_name: str,
        action: AuditAction,
        statement_start: datetime,
        *,
        old_row: Mapping[str, Any] | None = None,
        new_row: Mapping[str, Any] | None = None,
    ) -> list[int]:
        level = CaptureLevel.STATEMENT if old_row is None and new_row is None else CaptureLevel.ROW
        mutation = CapturedMutation(
            schema_name=schema_name,
            table_name=table_name,
            action=action,
            level=level,
            old_row=dict(old_row) if old_row is not None else None,
            new_row=dict(new_row) if new_row is not None else None,
            session_user=self.context.session_user,
            transaction_id=self.context.transaction_id,
            transaction_start_time=self.context.transaction_start_time,
            statement_start_time=statement_start,
            client_app_name=self.context.application_name,
            client_addr=self.context.client_addr,
            client_port=self.context.client_port,
            client_query_text=self.context.client_query,
        )
        return self.engine.capture(self.connection, mutation)

    def _audits_rows(self, schema_name: str, table_name: str) -> bool:
        descriptor = self.engine.registry.snapshot(self.connection).describe(schema_name, table_name)
        return descriptor is not None and descriptor.audit_rows

    def _table(self, schema_name: str, table_name: str) -> Table:
        return self.engine.lookup.table(self.connection, schema_name, table_name)

    def _require_key(self, table: Table) -> Column:
        columns = list(table.primary_key.columns)
        if len(columns) != 1:
            raise UnsupportedCaptureError(
                f"Row-level auditing of {table.fullname} requires a single-column primary key"
            )
        return columns[0]

    def _criteria(self, table: Table, where: Mapping[str, Any]):
        clauses = []
        for column_name, value in where.items():
            if column_name not in table.c:
                raise UnsupportedCaptureError(f"Unknown column {column_name} on {table.fullname}")
            clauses.append(table.c[column_name] == value)
        if not clauses:
            raise UnsupportedCaptureError("Audited updates and deletes require at least one filter")
        return and_(*clauses)

    def _fetch_all(self, table: Table, key: Column, criteria) -> list[dict[str, Any]]:
        stmt = select(table).where(criteria).order_by(key)
        return [dict(row) for row in self.connection.execute(stmt).mappings()]

    def _fetch_one(self, table: Table, key: Column, key_value: Any) -> dict[str, Any]:
        row = self.connection.execute(select(table).where(key == key_value)).mappings().one()
        return dict(row)


class AuditedMutations:
    def __init__(self, engine: AuditCaptureEngine = capture_engine) -> None:
        self.engine = engine

    def bind(self, connection: Connection, context: TransactionContext) -> AuditedTransaction:
        return AuditedTransaction(self.engine, connection, context)


audited_mutations = AuditedMutations()
