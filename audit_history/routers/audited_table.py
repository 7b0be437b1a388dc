from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from audit_history.database import get_db
from audit_history.models import AuditMetadata
from audit_history.schemas import AuditedTableRead, AuditedTableRegister, TableRelationRead
from audit_history.services.table_registration import (
    TableRegistrationError,
    list_audited_tables,
    register_table,
    unregister_table,
)

router = APIRouter(prefix="/audited-tables", tags=["Audited Tables"])


def _get_audited_table_or_404(table_id: int, db: Session) -> AuditMetadata:
    metadata = db.get(AuditMetadata, table_id)
    if not metadata:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Audited table not found")
    return metadata


@router.post("", response_model=AuditedTableRead, status_code=status.HTTP_201_CREATED)
def register_audited_table(
    payload: AuditedTableRegister, db: Session = Depends(get_db)
) -> AuditedTableRead:
    try:
        metadata = register_table(db, payload)
    except TableRegistrationError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    db.commit()
    db.refresh(metadata)
    return metadata


@router.get("", response_model=list[AuditedTableRead])
def list_tables(db: Session = Depends(get_db)) -> list[AuditedTableRead]:
    return list_audited_tables(db)


@router.get("/{table_id}", response_model=AuditedTableRead)
def get_audited_table(table_id: int, db: Session = Depends(get_db)) -> AuditedTableRead:
    return _get_audited_table_or_404(table_id, db)


@router.get("/{table_id}/relations", response_model=list[TableRelationRead])
def list_relations(table_id: int, db: Session = Depends(get_db)) -> list[TableRelationRead]:
    return _get_audited_table_or_404(table_id, db).relations


@router.delete("/{table_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_audited_table(table_id: int, db: Session = Depends(get_db)) -> None:
    if not unregister_table(db, table_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Audited table not found")
    db.commit()
