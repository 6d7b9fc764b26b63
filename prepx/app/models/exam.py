from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from prepx.app.db.base_class import Base
from prepx.app.core.time import utc_now


class Exam(Base):
    __tablename__ = "exams"

    id = Column(Integer, primary_key=True, index=True)
    batch_id = Column(Integer, ForeignKey("batches.id"), nullable=True, index=True)
    title = Column(String, nullable=False)
    exam_date = Column(Date, nullable=True)
    total_marks = Column(Integer, nullable=False, default=100)
    status = Column(String, nullable=True, default="scheduled")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    batch = relationship("Batch", back_populates="exams")
