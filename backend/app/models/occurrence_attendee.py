"""Per-occurrence attendance record."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import relationship

from backend.app.db.base_class import Base


class OccurrenceAttendee(Base):
    __tablename__ = "occurrence_attendees"
    __table_args__ = (UniqueConstraint("occurrence_id", "student_id", name="uq_occurrence_attendee"),)

    id = Column(Integer, primary_key=True, index=True)
    occurrence_id = Column(Integer, ForeignKey("class_occurrences.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    attended = Column(Boolean, nullable=False, default=False)
    joined_at = Column(DateTime, nullable=True)

    occurrence = relationship("ClassOccurrence", back_populates="attendees")
    student = relationship("User", foreign_keys=[student_id])
