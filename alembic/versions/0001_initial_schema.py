"""initial ticket, offline queue, audit and draw schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18 09:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "0001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ID_TYPE = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def upgrade() -> None:
    op.create_table(
        "tickets",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("code", sa.String(length=255), nullable=False),
        sa.Column("state", sa.String(length=16), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("redeemed_by", sa.String(length=255), nullable=True),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_device_id", sa.String(length=255), nullable=True),
        sa.Column("last_sequence_no", sa.Integer(), nullable=True),
        sa.Column("redeemed_version", sa.Integer(), nullable=True),
        sa.Column("drawn", sa.Boolean(), nullable=False),
        sa.Column("drawn_in", sa.String(length=64), nullable=True),
        sa.Column("event_name", sa.String(length=255), nullable=True),
        sa.Column(
            "issued_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("(CURRENT_TIMESTAMP)"),
            nullable=False,
        ),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("void_reason", sa.Text(), nullable=True),
        sa.CheckConstraint(
            "version >= 0", name=op.f("ck_tickets_version_non_negative")
        ),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_tickets")),
        sa.UniqueConstraint("code", name=op.f("uq_tickets_code")),
    )
    op.create_index("ix_tickets_state_drawn", "tickets", ["state", "drawn"], unique=False)

    op.create_table(
        "offline_scan_entries",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("device_id", sa.String(length=255), nullable=False),
        sa.Column("sequence_no", sa.Integer(), nullable=False),
        sa.Column("ticket_code", sa.String(length=255), nullable=False),
        sa.Column("operator_id", sa.String(length=255), nullable=True),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("enqueued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_offline_scan_entries")),
        sa.UniqueConstraint(
            "device_id", "sequence_no", name="uq_offline_scan_device_seq"
        ),
    )
    op.create_index(
        "ix_offline_scan_entries_device_seq",
        "offline_scan_entries",
        ["device_id", "sequence_no"],
        unique=False,
    )

    op.create_table(
        "scan_audit_log",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("ticket_code", sa.String(length=255), nullable=False),
        sa.Column("device_id", sa.String(length=255), nullable=False),
        sa.Column("sequence_no", sa.Integer(), nullable=False),
        sa.Column("operator_id", sa.String(length=255), nullable=True),
        sa.Column("outcome", sa.String(length=32), nullable=False),
        sa.Column("ticket_version", sa.Integer(), nullable=True),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_scan_audit_log")),
    )
    op.create_index(
        op.f("ix_scan_audit_log_ticket_code"),
        "scan_audit_log",
        ["ticket_code"],
        unique=False,
    )

    op.create_table(
        "draw_records",
        sa.Column("id", ID_TYPE, autoincrement=True, nullable=False),
        sa.Column("draw_id", sa.String(length=64), nullable=False),
        sa.Column("seed", sa.String(length=255), nullable=False),
        sa.Column("algorithm_key", sa.String(length=100), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False),
        sa.Column("eligible_pool", sa.JSON(), nullable=False),
        sa.Column("winners", sa.JSON(), nullable=False),
        sa.Column("created_by", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_draw_records")),
        sa.UniqueConstraint("draw_id", name=op.f("uq_draw_records_draw_id")),
    )


def downgrade() -> None:
    op.drop_table("draw_records")
    op.drop_index(op.f("ix_scan_audit_log_ticket_code"), table_name="scan_audit_log")
    op.drop_table("scan_audit_log")
    op.drop_index("ix_offline_scan_entries_device_seq", table_name="offline_scan_entries")
    op.drop_table("offline_scan_entries")
    op.drop_index("ix_tickets_state_drawn", table_name="tickets")
    op.drop_table("tickets")
