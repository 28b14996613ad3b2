"""Ledger entry: one billable obligation of one student for one occurrence."""

from decimal import Decimal

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from backend.app.db.base_class import Base
from backend.app.core.time import utc_now


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"
    __table_args__ = (
        UniqueConstraint("class_id", "occurrence_date", "student_id", name="uq_ledger_entry_occurrence_student"),
        Index("ix_ledger_entries_student_status", "student_id", "status"),
        Index("ix_ledger_entries_tutor_start", "tutor_id", "scheduled_start"),
    )

    id = Column(Integer, primary_key=True, index=True)
    class_id = Column(Integer, ForeignKey("classes.id"), nullable=False, index=True)
    occurrence_date = Column(Date, nullable=False)
    tutor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    parent_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    subject = Column(String(100), nullable=False, index=True)

    status = Column(String(20), nullable=False, default="unpaid", index=True)
    amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    currency = Column(String(3), nullable=False, default="USD")

    # Denormalized from the occurrence so later class edits don't rewrite history.
    scheduled_start = Column(DateTime, nullable=False)
    scheduled_end = Column(DateTime, nullable=False)
    time_zone = Column(String(64), nullable=False, default="UTC")
    duration_minutes = Column(Integer, nullable=False)
    due_date = Column(DateTime, nullable=True)

    discount_total = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    adjustment_total = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    tax_rate = Column(Numeric(5, 2), nullable=False, default=Decimal("0.00"))
    tax_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    platform_fee = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    total_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))

    payment_method = Column(String(20), nullable=True)
    payment_reference = Column(String(255), nullable=True)
    paid_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=False, default="")

    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    updated_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    class_definition = relationship("ClassDefinition", back_populates="ledger_entries")
    student = relationship("User", foreign_keys=[student_id])
    tutor = relationship("User", foreign_keys=[tutor_id])
    discounts = relationship(
        "LedgerDiscount",
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="LedgerDiscount.position",
    )
    adjustments = relationship(
        "LedgerAdjustment",
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="LedgerAdjustment.id",
    )
