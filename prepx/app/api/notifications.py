"""Automated SMS notifications: manual runs, settings, delivery log and provider setup."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from prepx.app.db.session import get_db
from prepx.app.dependencies.auth import get_current_admin, get_current_user
from prepx.app.models.user import User
from prepx.app.schemas.notification import (
    AbsentAlertRequest,
    BatchNotificationResult,
    CommunicationLogFilters,
    CommunicationLogRead,
    CommunicationLogStats,
    DeliveryStatus,
    LogCleanupResult,
    MessageType,
    NotificationResult,
    NotificationSettingsRead,
    NotificationSettingsUpdate,
    SendOutcome,
    SmsConfigRead,
    SmsConfigUpdate,
    SmsTestRequest,
    SmsTestResult,
    TriggerSource,
)
from prepx.app.services import communication_log, notification_engine, notification_settings, sms_providers

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.post("/run", response_model=BatchNotificationResult)
def run_now(current_admin: User = Depends(get_current_admin)):
    return notification_engine.run_all_notifications()


@router.post("/run/{category}", response_model=NotificationResult)
def run_single_category(
    category: MessageType,
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin),
):
    return notification_engine.run_category(db, category)


@router.post("/absent-alert", response_model=SendOutcome)
def absent_alert(
    payload: AbsentAlertRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return notification_engine.trigger_absent_alert(
        db,
        student_id=payload.student_id,
        student_name=payload.student_name,
        parent_phone=payload.parent_phone,
        batch_name=payload.batch_name,
        attendance_id=payload.attendance_id,
    )


@router.get("/settings", response_model=NotificationSettingsRead)
def read_settings(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return notification_settings.get_settings(db)


@router.put("/settings", response_model=NotificationSettingsRead)
def update_settings(
    payload: NotificationSettingsUpdate,
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin),
):
    return notification_settings.update_settings(db, payload)


@router.get("/logs", response_model=list[CommunicationLogRead])
def list_logs(
    student_id: Optional[int] = None,
    parent_id: Optional[int] = None,
    message_type: Optional[MessageType] = None,
    delivery_status: Optional[DeliveryStatus] = None,
    triggered_by: Optional[TriggerSource] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    filters = CommunicationLogFilters(
        student_id=student_id,
        parent_id=parent_id,
        message_type=message_type,
        delivery_status=delivery_status,
        triggered_by=triggered_by,
        date_from=date_from,
        date_to=date_to,
    )
    return communication_log.list_logs(db, filters, skip=skip, limit=limit)


@router.get("/logs/stats", response_model=CommunicationLogStats)
def log_stats(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return communication_log.get_stats(db, date_from=date_from, date_to=date_to)


@router.delete("/logs/cleanup", response_model=LogCleanupResult)
def cleanup_logs(
    days: int = Query(90, ge=0),
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin),
):
    return LogCleanupResult(deleted=communication_log.delete_older_than(db, days))


@router.get("/sms/config", response_model=SmsConfigRead)
def read_sms_config(db: Session = Depends(get_db), current_admin: User = Depends(get_current_admin)):
    return sms_providers.describe_sms_config(db)


@router.put("/sms/config", response_model=SmsConfigRead)
def update_sms_config(
    payload: SmsConfigUpdate,
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin),
):
    sms_providers.save_sms_config(db, **payload.model_dump())
    return sms_providers.describe_sms_config(db)


@router.post("/sms/test", response_model=SmsTestResult)
def send_test_sms(
    payload: SmsTestRequest,
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin),
):
    success, message = sms_providers.SMSService.from_db(db).test_config(payload.phone)
    return SmsTestResult(success=success, message=message)
