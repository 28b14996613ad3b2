"""Ledger reporting: totals, status/subject breakdowns and aging."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, Optional

from sqlalchemy.orm import Session

from backend.app.core.exceptions import ValidationError
from backend.app.core.time import as_utc_naive, utc_now
from backend.app.crud.crud_ledger import ledger_crud
from backend.app.domain.scheduling import LedgerFilter
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.services.ledger_math import ZERO, to_money


def _init_buckets() -> Dict[str, Decimal]:
    return {
        "current": Decimal("0.00"),
        "days_0_30": Decimal("0.00"),
        "days_31_60": Decimal("0.00"),
        "days_61_90": Decimal("0.00"),
        "days_90_plus": Decimal("0.00"),
    }


def _bucket_for_days(days_past_due: int) -> str:
    if days_past_due < 0:
        return "current"
    if days_past_due <= 30:
        return "days_0_30"
    if days_past_due <= 60:
        return "days_31_60"
    if days_past_due <= 90:
        return "days_61_90"
    return "days_90_plus"


@dataclass
class ReportSummary:
    currency: Optional[str] = None
    total_count: int = 0
    total_amount: Decimal = ZERO
    paid_amount: Decimal = ZERO
    unpaid_amount: Decimal = ZERO
    outstanding_amount: Decimal = ZERO
    democlass_count: int = 0
    by_status: Dict[str, dict] = field(default_factory=dict)
    by_subject: Dict[str, dict] = field(default_factory=dict)
    aging: Dict[str, Decimal] = field(default_factory=_init_buckets)

    def as_dict(self) -> dict:
        def money(value: Decimal) -> str:
            return str(to_money(value))

        def group(rows: Dict[str, dict]) -> Dict[str, dict]:
            return {key: {"count": row["count"], "amount": money(row["amount"])} for key, row in rows.items()}

        return {
            "currency": self.currency,
            "total_count": self.total_count,
            "total_amount": money(self.total_amount),
            "paid_amount": money(self.paid_amount),
            "unpaid_amount": money(self.unpaid_amount),
            "outstanding_amount": money(self.outstanding_amount),
            "democlass_count": self.democlass_count,
            "by_status": group(self.by_status),
            "by_subject": group(self.by_subject),
            "aging": {k: money(v) for k, v in self.aging.items()},
        }


def _add(rows: Dict[str, dict], key: str, amount: Decimal) -> None:
    row = rows.setdefault(key, {"count": 0, "amount": ZERO})
    row["count"] += 1
    row["amount"] += amount


def summarize(entries: Iterable[LedgerEntry], now: Optional[datetime] = None) -> ReportSummary:
    """Fold ``entries`` into a summary. Amounts are entry totals; nothing is mutated.

    Money is never added across currencies: a mixed set raises
    ``ValidationError`` and must be narrowed with a currency filter.
    """
    as_of = as_utc_naive(now or utc_now()).date()
    entries = list(entries)
    currencies = sorted({entry.currency for entry in entries})
    if len(currencies) > 1:
        raise ValidationError(
            "Entries span several currencies; filter the report by currency",
            details={"currencies": currencies},
        )
    summary = ReportSummary(currency=currencies[0] if currencies else None)

    for entry in entries:
        amount = to_money(entry.total_amount)
        summary.total_count += 1
        summary.total_amount += amount
        _add(summary.by_status, entry.status, amount)
        _add(summary.by_subject, entry.subject or "General", amount)

        if entry.status == "paid":
            summary.paid_amount += amount
        elif entry.status == "democlass":
            summary.democlass_count += 1
        elif entry.status == "unpaid":
            summary.unpaid_amount += amount
            summary.outstanding_amount += amount
            if entry.due_date is None:
                bucket = "current"
            else:
                bucket = _bucket_for_days((as_of - as_utc_naive(entry.due_date).date()).days)
            summary.aging[bucket] += amount

    return summary


def generate_report(db: Session, ledger_filter: LedgerFilter, now: Optional[datetime] = None) -> ReportSummary:
    return summarize(ledger_crud.query(db, ledger_filter=ledger_filter), now)
