"""Class definition: the schedule template of a tutoring class."""

from decimal import Decimal

from sqlalchemy import JSON, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Table, Text
from sqlalchemy.orm import relationship

from backend.app.db.base_class import Base
from backend.app.core.time import utc_now

class_students = Table(
    "class_students",
    Base.metadata,
    Column("class_id", Integer, ForeignKey("classes.id", ondelete="CASCADE"), primary_key=True),
    Column("student_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class ClassDefinition(Base):
    __tablename__ = "classes"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    subject = Column(String(100), nullable=False, index=True)
    tutor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    max_capacity = Column(Integer, nullable=False, default=10)

    start_time = Column(String(5), nullable=False)  # "HH:MM", 24-hour
    duration_minutes = Column(Integer, nullable=False, default=35)
    custom_duration_minutes = Column(Integer, nullable=True)
    schedule_type = Column(String(20), nullable=False, default="one-time")
    class_date = Column(Date, nullable=True, index=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    recurring_days = Column(JSON, nullable=False, default=list)
    time_zone = Column(String(64), nullable=False, default="UTC")
    join_window_minutes = Column(Integer, nullable=False, default=15)

    status = Column(String(20), nullable=False, default="scheduled", index=True)
    payment_status = Column(String(20), nullable=False, default="unpaid")
    amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    currency = Column(String(3), nullable=False, default="USD")

    notes = Column(Text, nullable=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    tutor = relationship("User", foreign_keys=[tutor_id])
    created_by = relationship("User", foreign_keys=[created_by_id])
    students = relationship("User", secondary=class_students, order_by="User.id")
    occurrences = relationship(
        "ClassOccurrence",
        back_populates="class_definition",
        cascade="all, delete-orphan",
        order_by="ClassOccurrence.occurrence_date",
    )
    ledger_entries = relationship("LedgerEntry", back_populates="class_definition")

    @property
    def effective_duration(self) -> int:
        return self.custom_duration_minutes or self.duration_minutes

    @property
    def student_ids(self) -> list:
        return [student.id for student in self.students]
