"""
SQLAlchemy database models for BuildLens.

``chat_messages`` is the record store: every collected build-log fragment
(USER) and every AI analysis (ASSISTANT) for a Jenkins job, keyed by the
job name (conversation id) and build number. The remaining tables are
precomputed views rewritten by the view refresher and read by the
dashboard service.
"""

import enum
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    BigInteger,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func

from buildlens.db.codec import decode_object


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class MessageKind(str, enum.Enum):
    """Who produced a message."""

    USER = "USER"  # Collected build data (log chunks, scans, system info)
    ASSISTANT = "ASSISTANT"  # AI analysis result


class ChatMessage(Base):
    """A single JSON-bearing record for one Jenkins job build."""

    __tablename__ = "chat_messages"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    conversation_id: Mapped[str] = mapped_column(String(255), nullable=False)
    build_number: Mapped[int] = mapped_column(Integer, nullable=False)
    message_type: Mapped[MessageKind] = mapped_column(
        Enum(
            MessageKind,
            native_enum=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )

    # JSON text, see buildlens.db.codec
    content_json: Mapped[str] = mapped_column("content", Text, nullable=False)
    metadata_json: Mapped[Optional[str]] = mapped_column(
        "metadata", Text, nullable=True
    )

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_chat_messages_conversation_build", "conversation_id", "build_number"),
        Index("ix_chat_messages_conversation_timestamp", "conversation_id", "timestamp"),
    )

    @property
    def content(self) -> dict[str, Any]:
        """Decoded content document (empty when malformed)."""
        return decode_object(self.content_json)

    @property
    def extra_data(self) -> dict[str, Any]:
        """Decoded metadata document (empty when absent or malformed)."""
        return decode_object(self.metadata_json)

    def __repr__(self) -> str:
        return (
            f"<ChatMessage(id={self.id}, conversation_id={self.conversation_id!r}, "
            f"build_number={self.build_number}, type={self.message_type})>"
        )


class BuildAnomalySummary(Base):
    """Per-build anomaly totals taken from the latest analysis of each build."""

    __tablename__ = "build_anomaly_summary"

    conversation_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    build_number: Mapped[int] = mapped_column(Integer, primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total_anomalies: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    severity_counts: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<BuildAnomalySummary({self.conversation_id!r}#{self.build_number}, "
            f"total={self.total_anomalies})>"
        )


class RecentJobBuild(Base):
    """Recent builds per job with their derived health status."""

    __tablename__ = "recent_job_builds"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    job_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    build_id: Mapped[int] = mapped_column(Integer, nullable=False)
    health_status: Mapped[str] = mapped_column(String(20), nullable=False)
    anomaly_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    time_ago: Mapped[str] = mapped_column(String(50), nullable=False)
    raw_timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    original_job_name: Mapped[str] = mapped_column(String(255), nullable=False)


class SecurityAnomalyCount(Base):
    """Security-typed anomaly totals per job filter and time range."""

    __tablename__ = "security_anomaly_counts"

    job_filter: Mapped[str] = mapped_column(String(255), primary_key=True)
    time_range: Mapped[str] = mapped_column(String(50), primary_key=True)
    anomaly_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class ActiveBuildCount(Base):
    """Number of in-flight builds per job (and ``all``)."""

    __tablename__ = "active_build_counts"

    job_filter: Mapped[str] = mapped_column(String(255), primary_key=True)
    active_builds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class JobCount(Base):
    """Number of distinct jobs with activity inside a time boundary."""

    __tablename__ = "job_counts"

    time_boundary: Mapped[str] = mapped_column(String(50), primary_key=True)
    total_jobs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
