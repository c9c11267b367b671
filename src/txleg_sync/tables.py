"""Database tables: bills, sync jobs, sessions, admin settings."""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class SyncJobStatus(str, enum.Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    STOPPED = "STOPPED"


ACTIVE_JOB_STATUSES = (SyncJobStatus.PENDING, SyncJobStatus.RUNNING, SyncJobStatus.PAUSED)


class SettingType(str, enum.Enum):
    STRING = "STRING"
    NUMBER = "NUMBER"
    BOOLEAN = "BOOLEAN"
    JSON = "JSON"


class LegislatureSession(Base):
    __tablename__ = "legislature_sessions"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(10), unique=True, index=True)  # e.g. "89R"
    name: Mapped[str] = mapped_column(String(100))
    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    bills: Mapped[list["BillRecord"]] = relationship(back_populates="session")


class BillRecord(Base):
    """One bill, keyed by ``bill_id`` ("HB 1").  Never deleted by the sync."""

    __tablename__ = "bills"
    __table_args__ = (UniqueConstraint("bill_type", "bill_number", name="uq_bill_type_number"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    bill_id: Mapped[str] = mapped_column(String(20), unique=True, index=True)
    session_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("legislature_sessions.id"), nullable=True
    )
    bill_type: Mapped[str] = mapped_column(String(3), index=True)
    bill_number: Mapped[int] = mapped_column(Integer, index=True)
    filename: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)  # "hb1.txt"

    description: Mapped[str] = mapped_column(Text)
    content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    authors: Mapped[list[str]] = mapped_column(JSON, default=list)
    coauthors: Mapped[list[str]] = mapped_column(JSON, default=list)
    sponsors: Mapped[list[str]] = mapped_column(JSON, default=list)
    cosponsors: Mapped[list[str]] = mapped_column(JSON, default=list)
    subjects: Mapped[list[str]] = mapped_column(JSON, default=list)

    status: Mapped[str] = mapped_column(String(50), default="Filed")
    last_action: Mapped[str] = mapped_column(String(500), default="")
    last_action_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    last_update_ftp: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    committee_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    committee_status: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    session: Mapped[Optional[LegislatureSession]] = relationship(back_populates="bills")


class SyncJob(Base):
    __tablename__ = "sync_jobs"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    status: Mapped[SyncJobStatus] = mapped_column(
        Enum(SyncJobStatus, native_enum=False, length=16),
        default=SyncJobStatus.PENDING,
        index=True,
    )
    session_code: Mapped[str] = mapped_column(String(10))
    session_name: Mapped[str] = mapped_column(String(100))
    bill_types: Mapped[list[str]] = mapped_column(JSON, default=list)
    # Replace these dicts wholesale; in-place mutation is not tracked.
    progress_by_type: Mapped[dict[str, int]] = mapped_column(JSON, default=dict)
    completed_types: Mapped[dict[str, bool]] = mapped_column(JSON, default=dict)
    # Tuning resolved from settings when the job was created.
    sync_config: Mapped[dict[str, int]] = mapped_column(JSON, default=dict)

    total_processed: Mapped[int] = mapped_column(Integer, default=0)
    total_created: Mapped[int] = mapped_column(Integer, default=0)
    total_updated: Mapped[int] = mapped_column(Integer, default=0)
    total_errors: Mapped[int] = mapped_column(Integer, default=0)

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    paused_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_activity_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        def _iso(dt: datetime | None) -> str | None:
            return dt.isoformat() if dt else None

        return {
            "id": self.id,
            "status": self.status.value,
            "sessionCode": self.session_code,
            "sessionName": self.session_name,
            "billTypes": list(self.bill_types or []),
            "progressByType": dict(self.progress_by_type or {}),
            "completedTypes": dict(self.completed_types or {}),
            "config": dict(self.sync_config or {}),
            "totalProcessed": self.total_processed,
            "totalCreated": self.total_created,
            "totalUpdated": self.total_updated,
            "totalErrors": self.total_errors,
            "startedAt": _iso(self.started_at),
            "pausedAt": _iso(self.paused_at),
            "completedAt": _iso(self.completed_at),
            "lastActivityAt": _iso(self.last_activity_at),
            "lastError": self.last_error,
        }


class AdminSetting(Base):
    """Operator-editable setting stored as a string plus its declared type."""

    __tablename__ = "admin_settings"

    id: Mapped[int] = mapped_column(primary_key=True)
    key: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    value: Mapped[str] = mapped_column(Text)
    type: Mapped[SettingType] = mapped_column(
        Enum(SettingType, native_enum=False, length=16), default=SettingType.STRING
    )
    category: Mapped[str] = mapped_column(String(50), default="general")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
