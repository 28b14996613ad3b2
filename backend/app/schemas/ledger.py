"""Ledger entry and report schemas."""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LedgerDiscountRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    position: int
    kind: str
    value: Decimal
    applied_amount: Decimal
    reason: Optional[str] = None


class LedgerAdjustmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    kind: str
    amount: Decimal
    reason: Optional[str] = None
    applied_by_id: Optional[int] = None
    applied_at: datetime


class LedgerEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    class_id: int
    occurrence_date: date
    tutor_id: int
    student_id: int
    parent_id: Optional[int] = None
    subject: str
    status: str
    amount: Decimal
    currency: str
    scheduled_start: datetime
    scheduled_end: datetime
    time_zone: str
    duration_minutes: int
    due_date: Optional[datetime] = None
    discount_total: Decimal
    adjustment_total: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    platform_fee: Decimal
    total_amount: Decimal
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    paid_at: Optional[datetime] = None
    notes: str = ""
    discounts: List[LedgerDiscountRead] = Field(default_factory=list)
    adjustments: List[LedgerAdjustmentRead] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @field_validator("scheduled_start", "scheduled_end", "due_date", "paid_at", "created_at", "updated_at", mode="before")
    @classmethod
    def ensure_timezone(cls, v):
        # Stored as naive UTC.
        if isinstance(v, datetime) and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v


class RealizeBillingRequest(BaseModel):
    payment_status: Optional[Literal["unpaid", "democlass"]] = None


class DiscountCreate(BaseModel):
    kind: Literal["percentage", "fixed"]
    value: Decimal = Field(ge=0)
    reason: Optional[str] = None


class DiscountApplied(BaseModel):
    applied_amount: Decimal
    entry: LedgerEntryRead


class AdjustmentCreate(BaseModel):
    amount: Decimal
    kind: Literal["late_penalty", "technical_issue", "quality_bonus", "manual"] = "manual"
    reason: Optional[str] = None


class MarkPaidRequest(BaseModel):
    method: Optional[Literal["cash", "card", "bank_transfer", "wallet", "external", "credit"]] = None
    reference: Optional[str] = None
    notes: Optional[str] = None


class VoidRequest(BaseModel):
    reason: Optional[str] = None


class ReportGroupRow(BaseModel):
    count: int
    amount: str


class LedgerReportRead(BaseModel):
    currency: Optional[str] = None
    total_count: int
    total_amount: str
    paid_amount: str
    unpaid_amount: str
    outstanding_amount: str
    democlass_count: int
    by_status: Dict[str, ReportGroupRow]
    by_subject: Dict[str, ReportGroupRow]
    aging: Dict[str, str]
