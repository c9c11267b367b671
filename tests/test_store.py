"""Tests for bill persistence and the session row."""

from __future__ import annotations

from datetime import date

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from txleg_sync.models import BillData
from txleg_sync.store import (
    bill_counts_by_type,
    delete_all_bills,
    ensure_session,
    get_last_persisted,
    upsert_bill,
)
from txleg_sync.tables import BillRecord, LegislatureSession


def _bill(bill_type: str = "HB", number: int = 1, **overrides) -> BillData:
    fields = dict(
        bill_id=f"{bill_type} {number}",
        bill_type=bill_type,
        bill_number=number,
        description="General Appropriations Bill.",
        content="SECTION 1. ...",
        authors=["Bonnen"],
        coauthors=["Kitzman", "Lopez, Janie"],
        subjects=["State Finances--Appropriations"],
        status="In Committee",
        last_action="02/25/2025 H Referred to Appropriations",
        last_action_date=date(2025, 2, 25),
        last_update_ftp=date(2025, 3, 20),
        committee_name="Appropriations",
        committee_status="In committee",
    )
    fields.update(overrides)
    return BillData(**fields)


_COMPARED = (
    "bill_id",
    "bill_type",
    "bill_number",
    "description",
    "content",
    "authors",
    "coauthors",
    "subjects",
    "status",
    "last_action",
    "last_action_date",
    "last_update_ftp",
    "committee_name",
    "committee_status",
    "filename",
    "session_id",
)


def _snapshot(db: Session, bill_id: str) -> dict:
    record = db.scalar(select(BillRecord).where(BillRecord.bill_id == bill_id))
    return {name: getattr(record, name) for name in _COMPARED}


class TestEnsureSession:
    def test_created_once(self, db: Session) -> None:
        first = ensure_session(db, "89R", "89th Regular Session")
        second = ensure_session(db, "89R", "ignored")
        db.commit()
        assert first.id == second.id
        assert second.name == "89th Regular Session"
        assert second.start_date == date(2025, 1, 14)
        assert db.scalar(select(func.count(LegislatureSession.id))) == 1


class TestUpsertBill:
    def test_create_then_update(self, db: Session) -> None:
        assert upsert_bill(db, _bill()) == "created"
        assert upsert_bill(db, _bill(status="Passed")) == "updated"
        record = db.scalar(select(BillRecord).where(BillRecord.bill_id == "HB 1"))
        assert record.status == "Passed"
        assert db.scalar(select(func.count(BillRecord.id))) == 1

    def test_filename_and_session_link(self, db: Session) -> None:
        session_id = ensure_session(db, "89R", "89th Regular Session").id
        upsert_bill(db, _bill("SB", 42), session_id)
        record = db.scalar(select(BillRecord).where(BillRecord.bill_id == "SB 42"))
        assert record.filename == "sb42.txt"
        assert record.session.code == "89R"

    def test_idempotent(self, db: Session) -> None:
        upsert_bill(db, _bill())
        before = _snapshot(db, "HB 1")
        upsert_bill(db, _bill())
        db.expire_all()
        assert _snapshot(db, "HB 1") == before

    def test_update_replaces_list_fields(self, db: Session) -> None:
        upsert_bill(db, _bill())
        upsert_bill(db, _bill(coauthors=["Kitzman"]))
        db.expire_all()
        assert _snapshot(db, "HB 1")["coauthors"] == ["Kitzman"]

    def test_database_error_reported_not_raised(self, db: Session) -> None:
        assert upsert_bill(db, _bill(description=None)) == "error"
        # Session is still usable after the rollback.
        assert upsert_bill(db, _bill()) == "created"


class TestQueries:
    def test_last_persisted(self, db: Session) -> None:
        assert get_last_persisted(db, "HB") == 0
        for n in (3, 150, 7):
            upsert_bill(db, _bill("HB", n))
        upsert_bill(db, _bill("SB", 900))
        assert get_last_persisted(db, "HB") == 150
        assert get_last_persisted(db, "hb") == 150
        assert get_last_persisted(db, "SB") == 900

    def test_counts_by_type(self, db: Session) -> None:
        for n in (1, 2):
            upsert_bill(db, _bill("HB", n))
        upsert_bill(db, _bill("SB", 1))
        assert bill_counts_by_type(db) == {"HB": 2, "SB": 1}

    def test_delete_all(self, db: Session) -> None:
        for n in (1, 2, 3):
            upsert_bill(db, _bill("HB", n))
        assert delete_all_bills(db) == 3
        assert get_last_persisted(db, "HB") == 0
