"""Add bot_decision_logs audit table

Revision ID: bot_decision_logs_001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "bot_decision_logs_001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "bot_decision_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ip_address", sa.String(64), nullable=False),
        sa.Column("user_agent_hash", sa.String(16), nullable=False),
        sa.Column("user_agent", sa.Text, nullable=True),
        sa.Column("path", sa.String(2048), nullable=False),
        sa.Column("is_bot", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("authorized", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("confidence", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("category", sa.String(32), nullable=False),
        sa.Column("reasons", postgresql.JSONB, nullable=True),
        sa.Column("action", sa.String(32), nullable=False),
        sa.Column("rule", sa.String(64), nullable=False),
        sa.Column("redirect_target", sa.Text, nullable=True),
        sa.Column("bypass", sa.Boolean, nullable=False, server_default=sa.text("false")),
    )
    op.create_index("ix_bot_decision_logs_decided_at", "bot_decision_logs", ["decided_at"])
    op.create_index("ix_bot_decision_logs_ip_address", "bot_decision_logs", ["ip_address"])
    op.create_index("ix_bot_decision_logs_category", "bot_decision_logs", ["category"])
    op.create_index("ix_bot_decision_logs_action", "bot_decision_logs", ["action"])
    op.create_index("ix_bot_decision_logs_action_decided", "bot_decision_logs", ["action", "decided_at"])


def downgrade() -> None:
    op.drop_table("bot_decision_logs")
