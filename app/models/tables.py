"""
Database models — the audit trail.

bot_decision_logs is append-only: one row per classified request,
written by SqlAuditSink off the request path.
"""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase

# JSONB on Postgres, plain JSON elsewhere (sqlite in tests)
JsonType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class BotDecisionLog(Base):
    __tablename__ = "bot_decision_logs"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    decided_at = Column(DateTime(timezone=True), nullable=False, index=True)

    # Identity
    ip_address = Column(String(64), nullable=False, index=True)
    user_agent_hash = Column(String(16), nullable=False)
    user_agent = Column(Text, nullable=True)

    # Request
    path = Column(String(2048), nullable=False)

    # Verdict
    is_bot = Column(Boolean, nullable=False, default=False)
    authorized = Column(Boolean, nullable=False, default=False)
    confidence = Column(Integer, nullable=False, default=0)
    category = Column(String(32), nullable=False, index=True)
    reasons = Column(JsonType, nullable=True)

    # Decision
    action = Column(String(32), nullable=False, index=True)
    rule = Column(String(64), nullable=False)
    redirect_target = Column(Text, nullable=True)
    bypass = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_bot_decision_logs_action_decided", "action", "decided_at"),
    )
