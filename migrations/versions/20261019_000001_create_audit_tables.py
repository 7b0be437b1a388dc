"""create audit tables

Revision ID: 20261019_000001
Revises: 
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "20261019_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "audit_metadata",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("schema_name", sa.String(length=120), nullable=False),
        sa.Column("table_name", sa.String(length=200), nullable=False),
        sa.Column("code_column", sa.String(length=200), nullable=True),
        sa.Column("audit_rows", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("audit_query_text", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("ignored_columns", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("schema_name", "table_name", name="uq_audit_metadata_table"),
    )

    op.create_table(
        "audit_reference",
        sa.Column("table_id", sa.Integer(), nullable=False),
        sa.Column("referenced_table_id", sa.Integer(), nullable=False),
        sa.Column("relation_column", sa.String(length=200), nullable=False),
        sa.Column("relation_direction", sa.String(length=10), nullable=False),
        sa.PrimaryKeyConstraint("table_id", "referenced_table_id"),
        sa.ForeignKeyConstraint(
            ["table_id"], ["audit_metadata.id"], onupdate="CASCADE", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["referenced_table_id"], ["audit_metadata.id"], onupdate="CASCADE", ondelete="CASCADE"
        ),
        sa.CheckConstraint(
            "relation_direction IN ('DIRECT', 'INVERSE')", name="ck_audit_reference_direction"
        ),
        sa.CheckConstraint("table_id <> referenced_table_id", name="ck_audit_reference_distinct_tables"),
    )

    op.create_table(
        "logged_actions",
        sa.Column("event_id", sa.BigInteger(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("schema_name", sa.Text(), nullable=False),
        sa.Column("table_name", sa.Text(), nullable=False),
        sa.Column("resolved_table_name", sa.Text(), nullable=True),
        sa.Column("code_value", sa.Text(), nullable=True),
        sa.Column("relid", sa.Integer(), nullable=False),
        sa.Column("session_user_name", sa.Text(), nullable=True),
        sa.Column("action_tstamp_tx", sa.DateTime(timezone=True), nullable=False),
        sa.Column("action_tstamp_stm", sa.DateTime(timezone=True), nullable=False),
        sa.Column("action_tstamp_clk", sa.DateTime(timezone=True), nullable=False),
        sa.Column("transaction_id", sa.BigInteger(), nullable=True),
        sa.Column("application_name", sa.Text(), nullable=True),
        sa.Column("client_addr", sa.String(length=64), nullable=True),
        sa.Column("client_port", sa.Integer(), nullable=True),
        sa.Column("client_query", sa.Text(), nullable=True),
        sa.Column("action", sa.String(length=1), nullable=False),
        sa.Column("row_data", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("changed_fields", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("statement_only", sa.Boolean(), nullable=False),
        sa.Column("relationship_path", sa.Text(), nullable=True),
        sa.CheckConstraint("action IN ('I', 'D', 'U', 'T')", name="ck_logged_actions_action"),
    )
    op.create_index("logged_actions_relid_idx", "logged_actions", ["relid"])
    op.create_index("logged_actions_action_tstamp_tx_stm_idx", "logged_actions", ["action_tstamp_stm"])
    op.create_index("logged_actions_action_idx", "logged_actions", ["action"])
    op.create_index("logged_actions_code_value_idx", "logged_actions", ["code_value"])

    op.execute(sa.text("REVOKE UPDATE, DELETE, TRUNCATE ON logged_actions FROM PUBLIC"))


def downgrade() -> None:
    op.drop_index("logged_actions_code_value_idx", table_name="logged_actions")
    op.drop_index("logged_actions_action_idx", table_name="logged_actions")
    op.drop_index("logged_actions_action_tstamp_tx_stm_idx", table_name="logged_actions")
    op.drop_index("logged_actions_relid_idx", table_name="logged_actions")
    op.drop_table("logged_actions")
    op.drop_table("audit_reference")
    op.drop_table("audit_metadata")
