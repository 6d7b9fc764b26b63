"""Append-then-update audit trail of notification attempts."""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from prepx.app.db.base_class import Base
from prepx.app.core.time import utc_now

MESSAGE_TYPES = ("fee", "overdue", "exam", "absent", "birthday")
DELIVERY_STATUSES = ("pending", "sent", "failed")
TRIGGER_SOURCES = ("automatic", "manual")


class CommunicationLog(Base):
    __tablename__ = "communication_logs"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=True, index=True)
    parent_id = Column(Integer, ForeignKey("parents.id"), nullable=True, index=True)
    message_type = Column(String(20), nullable=False, index=True)
    message_content = Column(Text, nullable=False)
    delivery_status = Column(String(20), nullable=False, default="pending")
    triggered_by = Column(String(20), nullable=False, default="automatic")
    error_message = Column(Text, nullable=True)
    provider_response = Column(JSON, nullable=True)
    related_entity_id = Column(Integer, nullable=True)
    related_entity_type = Column(String(30), nullable=True)
    # student:type:entity:day while the attempt is pending or sent; cleared on failure
    dedupe_key = Column(String(120), nullable=True, unique=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, index=True)

    student = relationship("Student")
    parent = relationship("Parent")
