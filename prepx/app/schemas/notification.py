"""Schemas for the automated notification engine and its audit log."""

from datetime import date, datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


MessageType = Literal["fee", "overdue", "exam", "absent", "birthday"]
DeliveryStatus = Literal["pending", "sent", "failed"]
TriggerSource = Literal["automatic", "manual"]


class NotificationSettingsRead(BaseModel):
    id: int
    enable_automatic_mode: bool
    enable_fee_reminder: bool
    enable_overdue_alert: bool
    enable_exam_reminder: bool
    enable_absent_alert: bool
    enable_birthday_wish: bool
    fee_reminder_days_before: int
    exam_reminder_days_before: int
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class NotificationSettingsUpdate(BaseModel):
    enable_automatic_mode: Optional[bool] = None
    enable_fee_reminder: Optional[bool] = None
    enable_overdue_alert: Optional[bool] = None
    enable_exam_reminder: Optional[bool] = None
    enable_absent_alert: Optional[bool] = None
    enable_birthday_wish: Optional[bool] = None
    fee_reminder_days_before: Optional[int] = Field(default=None, ge=0, le=60)
    exam_reminder_days_before: Optional[int] = Field(default=None, ge=0, le=60)


class CommunicationLogRead(BaseModel):
    id: int
    student_id: Optional[int] = None
    parent_id: Optional[int] = None
    message_type: MessageType
    message_content: str
    delivery_status: DeliveryStatus
    triggered_by: TriggerSource
    error_message: Optional[str] = None
    provider_response: Optional[Any] = None
    related_entity_id: Optional[int] = None
    related_entity_type: Optional[str] = None
    sent_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CommunicationLogFilters(BaseModel):
    student_id: Optional[int] = None
    parent_id: Optional[int] = None
    message_type: Optional[MessageType] = None
    delivery_status: Optional[DeliveryStatus] = None
    triggered_by: Optional[TriggerSource] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None


class CommunicationLogStats(BaseModel):
    total: int
    sent: int
    failed: int
    pending: int
    by_type: dict[str, int]


class LogCleanupResult(BaseModel):
    deleted: int


class NotificationResult(BaseModel):
    type: MessageType
    total: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[str] = Field(default_factory=list)


class BatchNotificationResult(BaseModel):
    fee_reminders: NotificationResult
    overdue_reminders: NotificationResult
    exam_reminders: NotificationResult
    absent_alerts: NotificationResult
    birthday_wishes: NotificationResult
    total_sent: int
    total_failed: int
    timestamp: str


class AbsentAlertRequest(BaseModel):
    student_id: int
    student_name: str
    parent_phone: Optional[str] = None
    batch_name: Optional[str] = None
    attendance_id: Optional[int] = None


class SendOutcome(BaseModel):
    success: bool
    log_id: Optional[int] = None
    error: Optional[str] = None


class SmsConfigRead(BaseModel):
    provider: str
    configured: bool
    sender_id: Optional[str] = None
    country_code: str


class SmsConfigUpdate(BaseModel):
    provider: Optional[Literal["msg91", "twilio", "textlocal", "fast2sms", "console"]] = None
    api_key: Optional[str] = None
    sender_id: Optional[str] = None
    country_code: Optional[str] = None


class SmsTestRequest(BaseModel):
    phone: str


class SmsTestResult(BaseModel):
    success: bool
    message: str
