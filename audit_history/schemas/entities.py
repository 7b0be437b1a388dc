from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RelationDirection(str, Enum):
    DIRECT = "DIRECT"
    INVERSE = "INVERSE"


class AuditAction(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    TRUNCATE = "TRUNCATE"

    @property
    def code(self) -> str:
        return self.value[0]


class CaptureLevel(str, Enum):
    ROW = "row"
    STATEMENT = "statement"


class TimestampSchema(BaseModel):
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TableRelationInput(BaseModel):
    schema_name: str = Field(..., max_length=120)
    table_name: str = Field(..., max_length=200)
    relation_column: str = Field(..., max_length=200)
    direction: RelationDirection = RelationDirection.DIRECT


class TableRelationRead(BaseModel):
    table_id: int
    referenced_table_id: int
    relation_column: str
    relation_direction: RelationDirection

    model_config = ConfigDict(from_attributes=True)


class AuditedTableBase(BaseModel):
    schema_name: str = Field(..., max_length=120)
    table_name: str = Field(..., max_length=200)
    code_column: Optional[str] = Field(None, max_length=200)
    audit_rows: bool = True
    audit_query_text: bool = True
    ignored_columns: list[str] = Field(default_factory=list)

    @field_validator("schema_name", "table_name")
    @classmethod
    def _strip_identifier(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("Identifier must not be blank")
        return stripped

    @field_validator("code_column")
    @classmethod
    def _blank_code_column_is_weak(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class AuditedTableRegister(AuditedTableBase):
    relations: list[TableRelationInput] = Field(default_factory=list)


class AuditedTableRead(AuditedTableBase, TimestampSchema):
    id: int
    relations: list[TableRelationRead] = Field(default_factory=list)


class CapturedMutation(BaseModel):
    """One row or statement mutation handed over by the capture source (trigger, CDC stream or outbox)."""

    schema_name: str
    table_name: str
    action: AuditAction
    level: CaptureLevel = CaptureLevel.ROW
    old_row: Optional[dict[str, Any]] = None
    new_row: Optional[dict[str, Any]] = None
    excluded_columns: list[str] = Field(default_factory=list)
    session_user: Optional[str] = None
    transaction_id: Optional[int] = None
    transaction_start_time: datetime
    statement_start_time: datetime
    client_app_name: Optional[str] = None
    client_addr: Optional[str] = None
    client_port: Optional[int] = None
    client_query_text: Optional[str] = None


class CaptureResult(BaseModel):
    event_ids: list[int] = Field(default_factory=list)


class LoggedActionRead(BaseModel):
    event_id: int
    schema_name: str
    table_name: str
    resolved_table_name: Optional[str] = None
    code_value: Optional[str] = None
    relid: int
    session_user_name: Optional[str] = None
    action_tstamp_tx: datetime
    action_tstamp_stm: datetime
    action_tstamp_clk: datetime
    transaction_id: Optional[int] = None
    application_name: Optional[str] = None
    client_addr: Optional[str] = None
    client_port: Optional[int] = None
    client_query: Optional[str] = None
    action: str
    row_data: Optional[dict[str, Any]] = None
    changed_fields: Optional[dict[str, Any]] = None
    statement_only: bool
    relationship_path: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class LoggedActionQuery(BaseModel):
    code_value: Optional[str] = None
    schema_name: Optional[str] = None
    table_name: Optional[str] = None
    resolved_table_name: Optional[str] = None
    action: Optional[AuditAction] = None
    transaction_id: Optional[int] = None
    statement_only: Optional[bool] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    limit: int = Field(100, ge=1, le=1000)
    offset: int = Field(0, ge=0)
