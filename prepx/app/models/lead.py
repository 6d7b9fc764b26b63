"""Lead model for the PrepX IQ admissions pipeline."""

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from prepx.app.db.base_class import Base
from prepx.app.core.time import utc_now

LEAD_SOURCES = ("walk-in", "website", "referral", "social_media", "other")


class Lead(Base):
    __tablename__ = "leads"

    id = Column(Integer, primary_key=True, index=True)
    student_name = Column(String, nullable=False)
    parent_name = Column(String, nullable=True)
    phone_number = Column(String(50), nullable=False, index=True)
    email = Column(String, nullable=True)
    course_interested = Column(String, nullable=True)
    lead_source = Column(String(30), nullable=False, default="walk-in")
    assigned_counselor_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    stage = Column(String(20), nullable=False, default="inquiry", index=True)
    stage_changed_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    follow_up_date = Column(Date, nullable=True)
    remarks = Column(Text, nullable=True)
    lost_reason = Column(Text, nullable=True)
    converted_student_id = Column(Integer, ForeignKey("students.id"), nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    counselor = relationship("User", back_populates="assigned_leads", foreign_keys=[assigned_counselor_id])
    converted_student = relationship("Student", back_populates="lead", foreign_keys=[converted_student_id])

    @property
    def counselor_name(self) -> str | None:
        if self.counselor is None:
            return None
        return self.counselor.full_name or self.counselor.email
