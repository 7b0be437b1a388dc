from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from audit_history.database import get_db
from audit_history.schemas import AuditAction, LoggedActionQuery, LoggedActionRead
from audit_history.services.ledger_queries import events_for_entity, get_event, search_events

router = APIRouter(prefix="/logged-actions", tags=["Logged Actions"])
entity_router = APIRouter(prefix="/entities", tags=["Logged Actions"])


@router.get("", response_model=list[LoggedActionRead])
def list_logged_actions(
    code_value: Optional[str] = None,
    schema_name: Optional[str] = None,
    table_name: Optional[str] = None,
    resolved_table_name: Optional[str] = None,
    action: Optional[AuditAction] = None,
    transaction_id: Optional[int] = None,
    statement_only: Optional[bool] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> list[LoggedActionRead]:
    filters = LoggedActionQuery(
        code_value=code_value,
        schema_name=schema_name,
        table_name=table_name,
        resolved_table_name=resolved_table_name,
        action=action,
        transaction_id=transaction_id,
        statement_only=statement_only,
        since=since,
        until=until,
        limit=limit,
        offset=offset,
    )
    return search_events(db, filters)


@router.get("/{event_id}", response_model=LoggedActionRead)
def get_logged_action(event_id: int, db: Session = Depends(get_db)) -> LoggedActionRead:
    logged_action = get_event(db, event_id)
    if not logged_action:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Logged action not found")
    return logged_action


@entity_router.get("/{code_value}/history", response_model=list[LoggedActionRead])
def get_entity_history(
    code_value: str,
    resolved_table_name: Optional[str] = None,
    db: Session = Depends(get_db),
) -> list[LoggedActionRead]:
    return events_for_entity(db, code_value, resolved_table_name)
