"""
Database models for inbound messages and the per-sender lead records.

Each sender has at most one Lead and at most one QualifiedLead, enforced by
a unique constraint on sender_key.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB, "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class RawMessage(Base):
    """One inbound chat message, written by an external producer."""

    __tablename__ = "raw_messages"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    sender_key: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    # Either a plaintext body or the hex-encoded AES-GCM triple
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    encrypted_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    iv: Mapped[str | None] = mapped_column(String(64), nullable=True)
    auth_tag: Mapped[str | None] = mapped_column(String(64), nullable=True)

    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    processing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)

    # Derived fields, written once at the end of an attempt
    auto_reply_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    reply_pending: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_lead: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    is_qualified: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    priority: Mapped[str | None] = mapped_column(
        String(20), nullable=True
    )  # Low | Medium | High
    message_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
    )


class Lead(Base):
    """Conversation-level facts for a sender that expressed interest."""

    __tablename__ = "leads"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    sender_key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    intent: Mapped[str | None] = mapped_column(String(100), nullable=True)
    message_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    first_message_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    last_active: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class QualifiedLead(Base):
    """A lead past the qualification threshold, with extracted contact data."""

    __tablename__ = "qualified_leads"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    sender_key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    intent: Mapped[str | None] = mapped_column(String(100), nullable=True)
    message_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    first_message_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default="Low")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    last_active: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
