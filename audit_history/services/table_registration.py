from __future__ import annotations

import logging

from sqlalchemy import event, inspect, select
from sqlalchemy.orm import Session, selectinload

from audit_history.models import AuditMetadata, AuditReference
from audit_history.schemas import AuditedTableRegister, RelationDirection
from audit_history.services.metadata_registry import PENDING_CHANGES_KEY, metadata_registry
from audit_history.services.row_lookup import row_lookup

logger = logging.getLogger(__name__)


class TableRegistrationError(ValueError):
    """Raised when a table or one of its relations cannot be registered for auditing."""


def list_audited_tables(db: Session) -> list[AuditMetadata]:
    stmt = (
        select(AuditMetadata)
        .options(selectinload(AuditMetadata.relations))
        .order_by(AuditMetadata.schema_name, AuditMetadata.table_name)
    )
    return list(db.execute(stmt).scalars())


def find_audited_table(db: Session, schema_name: str, table_name: str) -> AuditMetadata | None:
    stmt = select(AuditMetadata).where(
        AuditMetadata.schema_name == schema_name,
        AuditMetadata.table_name == table_name,
    )
    return db.execute(stmt).scalar_one_or_none()


def register_table(db: Session, request: AuditedTableRegister) -> AuditMetadata:
    """Register ``request``'s table, or re-register it replacing profile and relations.

    Nothing is written when validation fails. The registry snapshot is dropped
    once the caller commits or rolls back.
    """

    inspector = inspect(db.connection())
    own_columns = _column_names(inspector, request.schema_name, request.table_name)
    if own_columns is None:
        raise TableRegistrationError(f"Table {request.schema_name}.{request.table_name} does not exist")

    if request.code_column is not None and request.code_column not in own_columns:
        raise TableRegistrationError(
            f"Code column {request.code_column} not found on {request.schema_name}.{request.table_name}"
        )

    referenced_tables: list[tuple[AuditMetadata, str, RelationDirection]] = []
    seen: set[tuple[str, str]] = set()
    for relation in request.relations:
        key = (relation.schema_name, relation.table_name)
        if key == (request.schema_name, request.table_name):
            raise TableRegistrationError(
                f"Table {request.schema_name}.{request.table_name} cannot reference itself"
            )
        if key in seen:
            raise TableRegistrationError(
                f"Relation to {relation.schema_name}.{relation.table_name} is listed more than once"
            )
        seen.add(key)

        referenced = find_audited_table(db, relation.schema_name, relation.table_name)
        if referenced is None:
            raise TableRegistrationError(
                f"Referenced table {relation.schema_name}.{relation.table_name} must be registered first"
            )

        if relation.direction is RelationDirection.DIRECT:
            if relation.relation_column not in own_columns:
                raise TableRegistrationError(
                    f"Relation column {relation.relation_column} not found on "
                    f"{request.schema_name}.{request.table_name}"
                )
        else:
            referenced_columns = _column_names(inspector, relation.schema_name, relation.table_name) or set()
            if relation.relation_column not in referenced_columns:
                raise TableRegistrationError(
                    f"Relation column {relation.relation_column} not found on "
                    f"{relation.schema_name}.{relation.table_name}"
                )
        referenced_tables.append((referenced, relation.relation_column, relation.direction))

    metadata = find_audited_table(db, request.schema_name, request.table_name)
    if metadata is None:
        metadata = AuditMetadata(schema_name=request.schema_name, table_name=request.table_name)
        db.add(metadata)
        logger.info("Registering %s.%s for auditing", request.schema_name, request.table_name)
    else:
        logger.info("Re-registering %s.%s; replacing its relations", request.schema_name, request.table_name)
        metadata.relations.clear()
        db.flush()

    metadata.code_column = request.code_column
    metadata.audit_rows = request.audit_rows
    metadata.audit_query_text = request.audit_query_text
    metadata.ignored_columns = list(request.ignored_columns)
    for referenced, relation_column, direction in referenced_tables:
        metadata.relations.append(
            AuditReference(
                referenced_table=referenced,
                relation_column=relation_column,
                relation_direction=direction.value,
            )
        )

    db.flush()
    _invalidate_when_transaction_ends(db)
    return metadata


def unregister_table(db: Session, table_id: int) -> bool:
    metadata = db.get(AuditMetadata, table_id)
    if metadata is None:
        return False
    logger.info("Unregistering %s.%s", metadata.schema_name, metadata.table_name)
    db.delete(metadata)
    db.flush()
    _invalidate_when_transaction_ends(db)
    return True


def _column_names(inspector, schema_name: str, table_name: str) -> set[str] | None:
    if not inspector.has_table(table_name, schema=schema_name or None):
        return None
    return {column["name"] for column in inspector.get_columns(table_name, schema=schema_name or None)}


def _invalidate_when_transaction_ends(db: Session) -> None:
    """Drop the shared snapshot once the registering transaction commits or rolls back."""

    connection_info = db.connection().info
    connection_info[PENDING_CHANGES_KEY] = True

    def _drop_cached_registry(session: Session) -> None:
        connection_info.pop(PENDING_CHANGES_KEY, None)
        metadata_registry.invalidate()
        row_lookup.clear()

    event.listen(db, "after_commit", _drop_cached_registry, once=True)
    event.listen(db, "after_rollback", _drop_cached_registry, once=True)
