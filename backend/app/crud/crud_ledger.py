"""Storage access for ledger entries."""

from datetime import date
from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.app.core.exceptions import DuplicateLedgerEntry, NotFoundError
from backend.app.domain.scheduling import LedgerFilter
from backend.app.models.ledger_entry import LedgerEntry

INACTIVE_STATUSES = ("void", "canceled")


class CRUDLedger:
    def get(self, db: Session, *, entry_id: int) -> Optional[LedgerEntry]:
        return db.query(LedgerEntry).filter(LedgerEntry.id == entry_id).first()

    def load(self, db: Session, *, entry_id: int) -> LedgerEntry:
        entry = self.get(db, entry_id=entry_id)
        if entry is None:
            raise NotFoundError("Ledger entry not found", details={"entry_id": entry_id})
        return entry

    def for_class(
        self,
        db: Session,
        *,
        class_id: int,
        statuses: Optional[Iterable[str]] = None,
        occurrence_date: Optional[date] = None,
        student_ids: Optional[Iterable[int]] = None,
    ) -> List[LedgerEntry]:
        query = db.query(LedgerEntry).filter(LedgerEntry.class_id == class_id)
        if statuses is not None:
            query = query.filter(LedgerEntry.status.in_(list(statuses)))
        if occurrence_date is not None:
            query = query.filter(LedgerEntry.occurrence_date == occurrence_date)
        if student_ids is not None:
            query = query.filter(LedgerEntry.student_id.in_(list(student_ids)))
        return query.order_by(LedgerEntry.occurrence_date.asc(), LedgerEntry.student_id.asc()).all()

    def active_student_ids(self, db: Session, *, class_id: int, occurrence_date: date) -> List[int]:
        rows = (
            db.query(LedgerEntry.student_id)
            .filter(
                LedgerEntry.class_id == class_id,
                LedgerEntry.occurrence_date == occurrence_date,
                LedgerEntry.status.notin_(INACTIVE_STATUSES),
            )
            .all()
        )
        return [row.student_id for row in rows]

    def insert_entries(self, db: Session, *, entries: List[LedgerEntry]) -> List[LedgerEntry]:
        """Flush ``entries`` under the (class, occurrence date, student) unique constraint.

        The batch is all-or-nothing: a constraint violation rolls the whole
        transaction back.
        """
        db.add_all(entries)
        try:
            db.flush()
        except IntegrityError as exc:
            db.rollback()
            raise DuplicateLedgerEntry(
                "A ledger entry already exists for this occurrence and student",
                details={
                    "keys": [
                        {
                            "class_id": e.class_id,
                            "occurrence_date": e.occurrence_date.isoformat(),
                            "student_id": e.student_id,
                        }
                        for e in entries
                    ]
                },
            ) from exc
        return entries

    def query(self, db: Session, *, ledger_filter: LedgerFilter) -> List[LedgerEntry]:
        query = db.query(LedgerEntry)
        if ledger_filter.statuses:
            query = query.filter(LedgerEntry.status.in_(list(ledger_filter.statuses)))
        if ledger_filter.subjects:
            query = query.filter(LedgerEntry.subject.in_(list(ledger_filter.subjects)))
        if ledger_filter.date_from is not None:
            query = query.filter(LedgerEntry.scheduled_start >= ledger_filter.date_from)
        if ledger_filter.date_to is not None:
            query = query.filter(LedgerEntry.scheduled_start <= ledger_filter.date_to)
        if ledger_filter.tutor_id is not None:
            query = query.filter(LedgerEntry.tutor_id == ledger_filter.tutor_id)
        if ledger_filter.student_id is not None:
            query = query.filter(LedgerEntry.student_id == ledger_filter.student_id)
        if ledger_filter.parent_id is not None:
            query = query.filter(LedgerEntry.parent_id == ledger_filter.parent_id)
        if ledger_filter.class_id is not None:
            query = query.filter(LedgerEntry.class_id == ledger_filter.class_id)
        if ledger_filter.currency is not None:
            query = query.filter(LedgerEntry.currency == ledger_filter.currency)
        return query.order_by(LedgerEntry.scheduled_start.desc(), LedgerEntry.id.desc()).all()


ledger_crud = CRUDLedger()
