from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from prepx.app.db.base_class import Base
from prepx.app.core.time import utc_now


class Batch(Base):
    __tablename__ = "batches"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    student_links = relationship("StudentBatch", back_populates="batch", cascade="all, delete-orphan")
    exams = relationship("Exam", back_populates="batch")


class StudentBatch(Base):
    __tablename__ = "student_batches"
    __table_args__ = (UniqueConstraint("student_id", "batch_id", name="uq_student_batch"),)

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=False, index=True)
    batch_id = Column(Integer, ForeignKey("batches.id"), nullable=False, index=True)

    student = relationship("Student", back_populates="batch_links")
    batch = relationship("Batch", back_populates="student_links")
