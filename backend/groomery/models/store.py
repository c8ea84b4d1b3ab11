from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict
from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy import String, Integer, JSON, DateTime, UniqueConstraint

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Document store tables ---
class Document(Base):
    """One JSON document per logical path (e.g. ``user-roles/u1``)."""
    __tablename__ = 'documents'
    path: Mapped[str] = mapped_column(String(255), primary_key=True)
    collection: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    value: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class LogEntry(Base):
    """Append-only child entries pushed under a path (e.g. ``role-history/u1``)."""
    __tablename__ = 'log_entries'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    path: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    entry_id: Mapped[str] = mapped_column(String(64), nullable=False)
    value: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (UniqueConstraint('path', 'entry_id', name='uq_log_entry_path_id'),)
