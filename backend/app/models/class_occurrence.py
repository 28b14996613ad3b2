"""Materialized per-date occurrence of a class."""

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from backend.app.db.base_class import Base
from backend.app.core.time import utc_now


class ClassOccurrence(Base):
    __tablename__ = "class_occurrences"
    __table_args__ = (UniqueConstraint("class_id", "occurrence_date", name="uq_class_occurrence_date"),)

    id = Column(Integer, primary_key=True, index=True)
    class_id = Column(Integer, ForeignKey("classes.id", ondelete="CASCADE"), nullable=False, index=True)
    occurrence_date = Column(Date, nullable=False, index=True)
    status = Column(String(20), nullable=False, default="scheduled")
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    class_definition = relationship("ClassDefinition", back_populates="occurrences")
    attendees = relationship("OccurrenceAttendee", back_populates="occurrence", cascade="all, delete-orphan")
