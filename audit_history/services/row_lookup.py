from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from threading import Lock
from typing import Any

from sqlalchemy import Column, MetaData, Table, select
from sqlalchemy.engine import Connection
from sqlalchemy.exc import NoSuchTableError

from audit_history.services.metadata_registry import TableDescriptor

logger = logging.getLogger(__name__)

_NO_MATCH = object()


class RowLookup:
    """Reflect audited tables and read their rows on the capturing connection.

    Every statement is a parameterized ``select()``; linking values arrive as the
    serialized text stored in row snapshots and are coerced to the column type
    before binding.
    """

    def __init__(self) -> None:
        self._tables: dict[tuple[str, str], Table] = {}
        self._lock = Lock()

    def table(self, connection: Connection, schema_name: str, table_name: str) -> Table:
        key = (schema_name, table_name)
        cached = self._tables.get(key)
        if cached is not None:
            return cached
        reflected = Table(table_name, MetaData(), schema=schema_name or None, autoload_with=connection)
        with self._lock:
            return self._tables.setdefault(key, reflected)

    def clear(self) -> None:
        with self._lock:
            self._tables.clear()

    def primary_key_column(self, connection: Connection, descriptor: TableDescriptor) -> Column | None:
        table = self._reflect(connection, descriptor)
        if table is None:
            return None
        columns = list(table.primary_key.columns)
        if len(columns) != 1:
            logger.warning(
                "Table %s has %s primary key columns; it cannot anchor a relationship lookup",
                descriptor.qualified_name,
                len(columns),
            )
            return None
        return columns[0]

    def fetch_candidates(
        self,
        connection: Connection,
        descriptor: TableDescriptor,
        column_name: str,
        value: Any,
        *,
        limit: int = 2,
    ) -> list[dict[str, Any]]:
        """Return up to ``limit`` rows of ``descriptor`` whose ``column_name`` equals ``value``."""

        table = self._reflect(connection, descriptor)
        if table is None:
            return []
        if column_name not in table.c:
            logger.warning("Column %s not found on %s", column_name, descriptor.qualified_name)
            return []

        column = table.c[column_name]
        bound = _coerce(column, value)
        if bound is _NO_MATCH:
            return []

        stmt = select(table).where(column == bound).limit(limit)
        return [dict(row) for row in connection.execute(stmt).mappings()]

    def _reflect(self, connection: Connection, descriptor: TableDescriptor) -> Table | None:
        try:
            return self.table(connection, descriptor.schema_name, descriptor.table_name)
        except NoSuchTableError:
            logger.warning("Registered table %s no longer exists", descriptor.qualified_name)
            return None


def _coerce(column: Column, value: Any) -> Any:
    if value is None or not isinstance(value, str):
        return value
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value

    if python_type is bool:
        return value.strip().lower() in {"true", "t", "1", "yes"}
    if python_type in (int, float, Decimal):
        try:
            number = Decimal(value)
        except InvalidOperation:
            # A non-numeric link value can never equal a numeric key.
            return _NO_MATCH
        if python_type is int:
            if number != number.to_integral_value():
                return _NO_MATCH
            return int(number)
        return python_type(number) if python_type is float else number
    if python_type in (datetime, date):
        try:
            return python_type.fromisoformat(value)
        except ValueError:
            return _NO_MATCH
    return value


row_lookup = RowLookup()
