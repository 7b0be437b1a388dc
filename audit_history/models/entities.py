from datetime import datetime, timezone
from typing import Any

import sqlalchemy as sa
from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, Integer, JSON, String, Text, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from audit_history.database import Base


# JSONB on PostgreSQL to match the migrated ledger columns.
LedgerJSON = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerImmutableError(RuntimeError):
    """Raised when code attempts to modify or remove a persisted audit event."""


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class AuditMetadata(Base, TimestampMixin):
    """Registered table; a non-null code column marks a strong entity."""

    __tablename__ = "audit_metadata"
    __table_args__ = (
        sa.UniqueConstraint("schema_name", "table_name", name="uq_audit_metadata_table"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    schema_name: Mapped[str] = mapped_column(String(120), nullable=False)
    table_name: Mapped[str] = mapped_column(String(200), nullable=False)
    code_column: Mapped[str | None] = mapped_column(String(200), nullable=True)
    audit_rows: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    audit_query_text: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    ignored_columns: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    relations: Mapped[list["AuditReference"]] = relationship(
        "AuditReference",
        back_populates="table",
        cascade="all, delete-orphan",
        foreign_keys="[AuditReference.table_id]",
        order_by="AuditReference.referenced_table_id",
    )
    referencing_relations: Mapped[list["AuditReference"]] = relationship(
        "AuditReference",
        back_populates="referenced_table",
        cascade="all, delete",
        foreign_keys="[AuditReference.referenced_table_id]",
    )


class AuditReference(Base):
    """Edge from a weak table to a stronger (or still weak) table."""

    __tablename__ = "audit_reference"
    __table_args__ = (
        sa.CheckConstraint(
            "relation_direction IN ('DIRECT', 'INVERSE')",
            name="ck_audit_reference_direction",
        ),
        sa.CheckConstraint(
            "table_id <> referenced_table_id",
            name="ck_audit_reference_distinct_tables",
        ),
    )

    table_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("audit_metadata.id", onupdate="CASCADE", ondelete="CASCADE"),
        primary_key=True,
    )
    referenced_table_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("audit_metadata.id", onupdate="CASCADE", ondelete="CASCADE"),
        primary_key=True,
    )
    relation_column: Mapped[str] = mapped_column(String(200), nullable=False)
    relation_direction: Mapped[str] = mapped_column(String(10), nullable=False)

    table: Mapped[AuditMetadata] = relationship(
        "AuditMetadata", back_populates="relations", foreign_keys=[table_id]
    )
    referenced_table: Mapped[AuditMetadata] = relationship(
        "AuditMetadata", back_populates="referencing_relations", foreign_keys=[referenced_table_id]
    )


class LoggedAction(Base):
    """Append-only history of auditable actions on registered tables."""

    __tablename__ = "logged_actions"
    __table_args__ = (
        sa.CheckConstraint("action IN ('I', 'D', 'U', 'T')", name="ck_logged_actions_action"),
        sa.Index("logged_actions_relid_idx", "relid"),
        sa.Index("logged_actions_action_tstamp_tx_stm_idx", "action_tstamp_stm"),
        sa.Index("logged_actions_action_idx", "action"),
        sa.Index("logged_actions_code_value_idx", "code_value"),
    )

    event_id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    schema_name: Mapped[str] = mapped_column(Text, nullable=False)
    table_name: Mapped[str] = mapped_column(Text, nullable=False)
    resolved_table_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    code_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    relid: Mapped[int] = mapped_column(Integer, nullable=False)
    session_user_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    action_tstamp_tx: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    action_tstamp_stm: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    action_tstamp_clk: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    transaction_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    application_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_addr: Mapped[str | None] = mapped_column(String(64), nullable=True)
    client_port: Mapped[int | None] = mapped_column(Integer, nullable=True)
    client_query: Mapped[str | None] = mapped_column(Text, nullable=True)
    action: Mapped[str] = mapped_column(String(1), nullable=False)
    row_data: Mapped[dict[str, Any] | None] = mapped_column(LedgerJSON, nullable=True)
    changed_fields: Mapped[dict[str, Any] | None] = mapped_column(LedgerJSON, nullable=True)
    statement_only: Mapped[bool] = mapped_column(Boolean, nullable=False)
    relationship_path: Mapped[str | None] = mapped_column(Text, nullable=True)


@event.listens_for(LoggedAction, "before_update")
def _reject_logged_action_update(mapper, connection, target) -> None:
    raise LedgerImmutableError(f"Audit event {target.event_id} cannot be modified")


@event.listens_for(LoggedAction, "before_delete")
def _reject_logged_action_delete(mapper, connection, target) -> None:
    raise LedgerImmutableError(f"Audit event {target.event_id} cannot be deleted")
