from sqlalchemy import Boolean, Column, DateTime, Integer

from prepx.app.db.base_class import Base
from prepx.app.core.time import utc_now


class NotificationSettings(Base):
    __tablename__ = "notification_settings"

    id = Column(Integer, primary_key=True, index=True)
    enable_automatic_mode = Column(Boolean, nullable=False, default=False)
    enable_fee_reminder = Column(Boolean, nullable=False, default=True)
    enable_overdue_alert = Column(Boolean, nullable=False, default=True)
    enable_exam_reminder = Column(Boolean, nullable=False, default=True)
    enable_absent_alert = Column(Boolean, nullable=False, default=True)
    enable_birthday_wish = Column(Boolean, nullable=False, default=False)
    fee_reminder_days_before = Column(Integer, nullable=False, default=3)
    exam_reminder_days_before = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)
