# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""SQLAlchemy ORM records for the memory store.

Tables:
- memory_facts: one row per MemoryFact, nested value objects flattened
- user_profiles: one JSON profile document per user
- conversation_messages: transcript rows appended by the chat layer
- consolidated_conversations: markers written after a consolidation run
- consolidation_leases: per-user lease held while a consolidation run writes
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from tutor_memory.utils.datetime import utc_now

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Declarative base for all memory store tables."""


class MemoryFactRecord(Base):
    """Persisted MemoryFact."""

    __tablename__ = "memory_facts"
    __table_args__ = (
        Index("ix_memory_facts_user_status", "user_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    fact_type: Mapped[str] = mapped_column(String(20), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    topic: Mapped[str] = mapped_column(String(100), nullable=False)

    # Source
    conversation_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    message_ids: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    extraction_method: Mapped[str] = mapped_column(String(20), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)

    # Importance
    importance_score: Mapped[float] = mapped_column(Float, nullable=False)
    importance_base: Mapped[float | None] = mapped_column(Float, nullable=True)
    user_marked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    access_frequency: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    recency: Mapped[float] = mapped_column(Float, default=1.0, nullable=False)
    emotional_valence: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    # Temporal
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    last_accessed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    embedding_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Privacy
    privacy_level: Mapped[str] = mapped_column(String(20), nullable=False)
    data_category: Mapped[str] = mapped_column(String(50), nullable=False)
    consent_granted: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    consent_granted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    version_history: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, default=list, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )


class UserProfileRecord(Base):
    """Persisted UserProfile document plus queryable meta columns."""

    __tablename__ = "user_profiles"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    document: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    total_memories: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    profile_completeness: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    last_updated: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class ConversationMessageRecord(Base):
    """One transcript message."""

    __tablename__ = "conversation_messages"
    __table_args__ = (
        Index("ix_conversation_messages_conv_created", "conversation_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    conversation_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


class ConsolidatedConversationRecord(Base):
    """Marker for a conversation that has been consolidated."""

    __tablename__ = "consolidated_conversations"

    conversation_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    message_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    consolidated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )


class ConsolidationLeaseRecord(Base):
    """Lease serializing consolidation runs for one user across workers.

    A lease whose expires_at has passed belongs to a crashed holder and may
    be taken over.
    """

    __tablename__ = "consolidation_leases"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    holder: Mapped[str] = mapped_column(String(36), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
