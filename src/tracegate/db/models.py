"""
tracegate.db.models

Persistence schema for the database record sink.

Responsibilities:
- Define ORM models for durable security records:
  - AuditEntryRecord: one row per terminal authorization decision
  - SecurityEventRecord: anomalous input / denied decision events
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, Index, String, Uuid as SAUuid
from sqlalchemy.orm import Mapped, mapped_column

from tracegate.db.base import Base


class AuditEntryRecord(Base):
    __tablename__ = "audit_entries"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    # Process-local arrival order; ties across instances are broken by created_at.
    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False)
    request_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    subject_id: Mapped[str] = mapped_column(String(256), nullable=False, index=True)

    action: Mapped[str] = mapped_column(String(128), nullable=False)
    resource: Mapped[str] = mapped_column(String(64), nullable=False)
    permission: Mapped[str | None] = mapped_column(String(64), nullable=True)
    decision: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    reason: Mapped[str] = mapped_column(String(64), nullable=False)
    source_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Stored as naive UTC, like every timestamp column in this schema.
    created_at: Mapped[datetime] = mapped_column(nullable=False, index=True)

    __table_args__ = (Index("ix_audit_subject_created", "subject_id", "created_at"),)


class SecurityEventRecord(Base):
    __tablename__ = "security_events"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    event_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    kind: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    subject_or_ip: Mapped[str] = mapped_column(String(256), nullable=False, index=True)
    request_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    detail: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(nullable=False, index=True)

    __table_args__ = (Index("ix_events_kind_created", "kind", "created_at"),)


# --- Module Notes -----------------------------------------------------------
# Both tables are append-only; retention is owned by the log/store operators, not the gateway.
