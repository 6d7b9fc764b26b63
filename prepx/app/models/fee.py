from decimal import Decimal

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from prepx.app.db.base_class import Base
from prepx.app.core.time import utc_now

FEE_STATUSES = ("pending", "paid", "overdue")


class Fee(Base):
    __tablename__ = "fees"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    due_date = Column(Date, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="pending")
    paid_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    student = relationship("Student", back_populates="fees")
