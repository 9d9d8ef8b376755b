"""
Database Models for Ticket Memory
=================================

SQLAlchemy models for sessions and per-ticket context.

Annotation lists are stored as JSON text rather than the ``JSON`` column type
so a malformed blob can be decoded tolerantly instead of failing the row.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite's CURRENT_TIMESTAMP stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class SessionRecord(Base):
    """One work session on a ticket, upserted by ``session_id``."""
    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket: Mapped[str] = mapped_column(String(255), index=True)
    branch_name: Mapped[str] = mapped_column(String(255), default="")
    session_id: Mapped[str] = mapped_column(String(255), unique=True)
    task_description: Mapped[str] = mapped_column(Text, default="")
    files_modified: Mapped[str] = mapped_column(Text, default="")  # JSON array of paths
    lines_added: Mapped[int] = mapped_column(Integer, default=0)
    lines_removed: Mapped[int] = mapped_column(Integer, default=0)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_seconds: Mapped[int] = mapped_column(Integer, default=0)
    commit_sha: Mapped[str] = mapped_column(String(64), default="")


class TicketContextRecord(Base):
    """Categorized context: one JSON array per category."""
    __tablename__ = "ticket_context_enhanced"

    ticket: Mapped[str] = mapped_column(String(255), primary_key=True)
    requirements: Mapped[str] = mapped_column(Text, default="")
    decisions: Mapped[str] = mapped_column(Text, default="[]")
    implementations: Mapped[str] = mapped_column(Text, default="[]")
    code_patterns: Mapped[str] = mapped_column(Text, default="[]")
    current_state: Mapped[str] = mapped_column(Text, default="[]")
    next_steps: Mapped[str] = mapped_column(Text, default="[]")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class LegacyTicketContextRecord(Base):
    """Flat pre-categorization context, kept for migration."""
    __tablename__ = "ticket_context"

    ticket: Mapped[str] = mapped_column(String(255), primary_key=True)
    requirements: Mapped[str] = mapped_column(Text, default="")
    context_points: Mapped[str] = mapped_column(Text, default="[]")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
