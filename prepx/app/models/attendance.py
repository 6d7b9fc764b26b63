from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from prepx.app.db.base_class import Base
from prepx.app.core.time import utc_now

ATTENDANCE_STATUSES = ("present", "absent", "late")


class Attendance(Base):
    __tablename__ = "attendance"
    __table_args__ = (UniqueConstraint("student_id", "batch_id", "date", name="uq_attendance_day"),)

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=False, index=True)
    batch_id = Column(Integer, ForeignKey("batches.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    status = Column(String, nullable=False, default="present")
    notes = Column(Text, nullable=True)
    marked_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    student = relationship("Student", back_populates="attendance")
    batch = relationship("Batch")
