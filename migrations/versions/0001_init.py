"""qr sessions, command queue and audit events

Revision ID: 0001_init
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "qr_sessions",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("code_hash", sa.String(length=128), nullable=False),
        sa.Column("device_id", sa.String(length=64), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=True),
        sa.Column("state", sa.String(length=16), nullable=False, server_default=sa.text("'NEW'")),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_qr_sessions_code_hash", "qr_sessions", ["code_hash"], unique=True)
    op.create_index("ix_qr_sessions_device_id", "qr_sessions", ["device_id"], unique=False)
    op.create_index("ix_qr_sessions_expires_at", "qr_sessions", ["expires_at"], unique=False)

    op.create_table(
        "commands",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("device_id", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=16), nullable=False),
        sa.Column(
            "status", sa.String(length=16), nullable=False, server_default=sa.text("'PENDING'")
        ),
        sa.Column("origin_token_id", sa.String(length=64), nullable=True),
        sa.Column("requested_by", sa.String(length=128), nullable=True),
        sa.Column("ack_success", sa.Boolean(), nullable=True),
        sa.Column("ack_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "ix_commands_device_status_created",
        "commands",
        ["device_id", "status", "created_at"],
        unique=False,
    )
    op.create_index("ix_commands_origin_token_id", "commands", ["origin_token_id"], unique=False)

    op.create_table(
        "events",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("level", sa.String(length=16), nullable=False),
        sa.Column("device_id", sa.String(length=64), nullable=True),
        sa.Column("fields", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        *_timestamps(),
    )
    op.create_index("ix_events_category", "events", ["category"], unique=False)
    op.create_index("ix_events_created_at", "events", ["created_at"], unique=False)
    op.create_index(
        "ix_events_device_created", "events", ["device_id", "created_at"], unique=False
    )


def downgrade() -> None:
    op.drop_index("ix_events_device_created", table_name="events")
    op.drop_index("ix_events_created_at", table_name="events")
    op.drop_index("ix_events_category", table_name="events")
    op.drop_table("events")
    op.drop_index("ix_commands_origin_token_id", table_name="commands")
    op.drop_index("ix_commands_device_status_created", table_name="commands")
    op.drop_table("commands")
    op.drop_index("ix_qr_sessions_expires_at", table_name="qr_sessions")
    op.drop_index("ix_qr_sessions_device_id", table_name="qr_sessions")
    op.drop_index("ix_qr_sessions_code_hash", table_name="qr_sessions")
    op.drop_table("qr_sessions")
