"""Idempotent persistence of bill records."""

from __future__ import annotations

import logging
from typing import Literal

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import SESSION_START_DATE
from .models import BillData
from .tables import BillRecord, LegislatureSession

LOGGER = logging.getLogger(__name__)

UpsertOutcome = Literal["created", "updated", "error"]

# Columns refreshed on every successful fetch.
_MUTABLE_FIELDS = (
    "description",
    "content",
    "authors",
    "coauthors",
    "sponsors",
    "cosponsors",
    "subjects",
    "status",
    "last_action",
    "last_action_date",
    "last_update_ftp",
    "committee_name",
    "committee_status",
)


def ensure_session(db: Session, code: str, name: str) -> LegislatureSession:
    """Fetch the session row for *code*, creating it on first use."""
    row = db.scalar(select(LegislatureSession).where(LegislatureSession.code == code))
    if row is None:
        row = LegislatureSession(code=code, name=name, start_date=SESSION_START_DATE, is_active=True)
        db.add(row)
        db.flush()
        LOGGER.info("Created legislature session %s (%s)", code, name)
    return row


def upsert_bill(db: Session, bill: BillData, session_id: int | None = None) -> UpsertOutcome:
    """Create or update the record keyed by ``bill.bill_id``.

    Commits on success.  Database errors are rolled back, logged and
    reported as ``"error"``; nothing is raised.
    """
    try:
        existing = db.scalar(select(BillRecord).where(BillRecord.bill_id == bill.bill_id))
        if existing is not None:
            for name in _MUTABLE_FIELDS:
                value = getattr(bill, name)
                if isinstance(value, list):
                    value = list(value)
                setattr(existing, name, value)
            outcome: UpsertOutcome = "updated"
        else:
            record = BillRecord(
                bill_id=bill.bill_id,
                bill_type=bill.bill_type,
                bill_number=bill.bill_number,
                session_id=session_id,
                filename=f"{bill.bill_type.lower()}{bill.bill_number}.txt",
                **{name: getattr(bill, name) for name in _MUTABLE_FIELDS},
            )
            db.add(record)
            outcome = "created"
        db.commit()
        return outcome
    except SQLAlchemyError as exc:
        db.rollback()
        LOGGER.error("Error saving bill %s: %s", bill.bill_id, exc)
        return "error"


def get_last_persisted(db: Session, bill_type: str) -> int:
    """Highest stored bill number for *bill_type* (0 when none)."""
    highest = db.scalar(
        select(func.max(BillRecord.bill_number)).where(BillRecord.bill_type == bill_type.upper())
    )
    return int(highest or 0)


def bill_counts_by_type(db: Session) -> dict[str, int]:
    rows = db.execute(
        select(BillRecord.bill_type, func.count(BillRecord.id)).group_by(BillRecord.bill_type)
    )
    return {bill_type: count for bill_type, count in rows}


def delete_all_bills(db: Session) -> int:
    """Operator-initiated wipe of the bills table; returns rows deleted."""
    count = db.scalar(select(func.count(BillRecord.id))) or 0
    db.execute(delete(BillRecord))
    db.commit()
    LOGGER.warning("Deleted %d bill records", count)
    return int(count)
