from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from audit_history.models import LoggedAction
from audit_history.schemas import LoggedActionQuery


def get_event(db: Session, event_id: int) -> LoggedAction | None:
    return db.get(LoggedAction, event_id)


def events_for_entity(
    db: Session, code_value: str, resolved_table_name: str | None = None
) -> list[LoggedAction]:
    """Full history of one strong entity, including changes on its weak dependents."""

    stmt = select(LoggedAction).where(LoggedAction.code_value == code_value)
    if resolved_table_name is not None:
        stmt = stmt.where(LoggedAction.resolved_table_name == resolved_table_name)
    return list(db.execute(stmt.order_by(LoggedAction.event_id)).scalars())


def search_events(db: Session, filters: LoggedActionQuery) -> list[LoggedAction]:
    stmt = select(LoggedAction)
    if filters.code_value is not None:
        stmt = stmt.where(LoggedAction.code_value == filters.code_value)
    if filters.schema_name is not None:
        stmt = stmt.where(LoggedAction.schema_name == filters.schema_name)
    if filters.table_name is not None:
        stmt = stmt.where(LoggedAction.table_name == filters.table_name)
    if filters.resolved_table_name is not None:
        stmt = stmt.where(LoggedAction.resolved_table_name == filters.resolved_table_name)
    if filters.action is not None:
        stmt = stmt.where(LoggedAction.action == filters.action.code)
    if filters.transaction_id is not None:
        stmt = stmt.where(LoggedAction.transaction_id == filters.transaction_id)
    if filters.statement_only is not None:
        stmt = stmt.where(LoggedAction.statement_only.is_(filters.statement_only))
    if filters.since is not None:
        stmt = stmt.where(LoggedAction.action_tstamp_stm >= filters.since)
    if filters.until is not None:
        stmt = stmt.where(LoggedAction.action_tstamp_stm < filters.until)

    stmt = stmt.order_by(LoggedAction.event_id).offset(filters.offset).limit(filters.limit)
    return list(db.execute(stmt).scalars())
