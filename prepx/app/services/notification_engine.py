"""Automated SMS reminders: per-category processors and the run-everything orchestrator.

Each processor pulls its recipients, sends at most one SMS per
(student, category, related entity, day), or per (student, day) for absences,
and records every attempt in the communication log. Processors never raise;
problems end up in the result's ``errors`` list so one category cannot stop
the others.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import Callable, Iterable, Optional

from sqlalchemy.orm import Session

from prepx.app.core.errors import DuplicateRecord, user_message_for
from prepx.app.core.settings import get_settings as get_app_settings
from prepx.app.core.time import utc_now, utc_today
from prepx.app.db.session import SessionLocal
from prepx.app.schemas.notification import (
    BatchNotificationResult,
    NotificationResult,
    NotificationSettingsRead,
    SendOutcome,
)
from prepx.app.services import communication_log, notification_templates
from prepx.app.services.notification_settings import get_settings as get_notification_settings
from prepx.app.services.recipient_queries import RecipientSource, SqlRecipientSource
from prepx.app.services.sms_providers import SMSResponse, SMSService

logger = logging.getLogger(__name__)

ALREADY_SENT = "Already sent today"
AUTOMATIC_MODE_DISABLED = "Automatic mode disabled"

# A parent hears about an absence at most once a day, whatever the attendance row
STUDENT_LEVEL_DEDUPE = frozenset({"absent"})

# Result field name for each category, in run order
CATEGORY_FIELDS = {
    "fee": "fee_reminders",
    "overdue": "overdue_reminders",
    "exam": "exam_reminders",
    "absent": "absent_alerts",
    "birthday": "birthday_wishes",
}


class NotificationEngine:
    def __init__(
        self,
        db: Session,
        sender,
        recipients: RecipientSource,
        today: Optional[date] = None,
        triggered_by: str = "automatic",
    ):
        self.db = db
        self.sender = sender
        self.recipients = recipients
        self.today = today or utc_today()
        self.triggered_by = triggered_by

    def send_and_log(
        self,
        *,
        message_type: str,
        message: str,
        phone: Optional[str],
        student_id: int,
        parent_id: Optional[int] = None,
        related_entity_id: Optional[int] = None,
        related_entity_type: Optional[str] = None,
    ) -> SendOutcome:
        if not phone:
            return SendOutcome(success=False, error="No phone number available")

        dedupe_entity_id = None if message_type in STUDENT_LEVEL_DEDUPE else related_entity_id
        if communication_log.was_sent_today(self.db, student_id, message_type, dedupe_entity_id, today=self.today):
            return SendOutcome(success=False, error=ALREADY_SENT)

        dedupe_key = communication_log.make_dedupe_key(student_id, message_type, dedupe_entity_id, self.today)
        try:
            log = communication_log.create_log(
                self.db,
                student_id=student_id,
                parent_id=parent_id,
                message_type=message_type,
                message_content=message,
                triggered_by=self.triggered_by,
                related_entity_id=related_entity_id,
                related_entity_type=related_entity_type,
                dedupe_key=dedupe_key,
            )
        except DuplicateRecord:
            # Another run claimed the same key between the check and the insert
            return SendOutcome(success=False, error=ALREADY_SENT)

        try:
            response = self.sender.send(phone, message)
        except Exception as exc:
            logger.exception("SMS sender raised for log %s", log.id)
            response = SMSResponse(success=False, error=str(exc) or exc.__class__.__name__)

        communication_log.update_status(
            self.db,
            log.id,
            "sent" if response.success else "failed",
            error_message=response.error,
            provider_response=response.data,
        )
        return SendOutcome(success=response.success, log_id=log.id, error=response.error)

    def _process(
        self,
        result: NotificationResult,
        load: Callable[[], Iterable],
        build: Callable,
    ) -> NotificationResult:
        """Run one category: ``build`` maps a recipient to send_and_log kwargs, or None to skip."""
        try:
            recipients = list(load())
        except Exception as exc:
            self.db.rollback()
            logger.exception("Loading %s recipients failed", result.type)
            result.errors.append(user_message_for(exc))
            return result

        result.total = len(recipients)
        for recipient in recipients:
            try:
                delivery = build(recipient)
                if delivery is None:
                    result.skipped += 1
                    continue
                outcome = self.send_and_log(message_type=result.type, **delivery)
            except Exception as exc:
                self.db.rollback()
                logger.exception("%s notification for student %s failed", result.type, recipient.student_id)
                result.failed += 1
                result.errors.append(f"{recipient.student_name}: {user_message_for(exc)}")
                continue

            if outcome.success:
                result.sent += 1
            elif outcome.error == ALREADY_SENT:
                result.skipped += 1
            else:
                result.failed += 1
                result.errors.append(f"{recipient.student_name}: {outcome.error}")
        logger.info(
            "%s notifications: total=%s sent=%s failed=%s skipped=%s",
            result.type,
            result.total,
            result.sent,
            result.failed,
            result.skipped,
        )
        return result

    def process_fee_reminders(self, settings) -> NotificationResult:
        result = NotificationResult(type="fee")
        if not settings.enable_fee_reminder:
            return result

        def build(recipient):
            phone = recipient.parent_phone or recipient.student_phone
            if not phone:
                return None
            message = notification_templates.fee_reminder(
                recipient.student_name,
                recipient.amount,
                recipient.due_date.isoformat(),
                recipient.description,
            )
            return dict(
                message=message,
                phone=phone,
                student_id=recipient.student_id,
                parent_id=recipient.parent_id if recipient.parent_phone else None,
                related_entity_id=recipient.fee_id,
                related_entity_type="fee",
            )

        return self._process(
            result,
            lambda: self.recipients.upcoming_fees(self.today, settings.fee_reminder_days_before),
            build,
        )

    def process_overdue_reminders(self, settings) -> NotificationResult:
        result = NotificationResult(type="overdue")
        if not settings.enable_overdue_alert:
            return result

        def build(recipient):
            phone = recipient.parent_phone or recipient.student_phone
            if not phone:
                return None
            message = notification_templates.overdue_reminder(
                recipient.student_name,
                recipient.amount,
                recipient.days_overdue,
            )
            return dict(
                message=message,
                phone=phone,
                student_id=recipient.student_id,
                parent_id=recipient.parent_id if recipient.parent_phone else None,
                related_entity_id=recipient.fee_id,
                related_entity_type="fee",
            )

        return self._process(result, lambda: self.recipients.overdue_fees(self.today), build)

    def process_exam_reminders(self, settings) -> NotificationResult:
        result = NotificationResult(type="exam")
        if not settings.enable_exam_reminder:
            return result

        def build(recipient):
            phone = recipient.parent_phone or recipient.student_phone
            if not phone:
                return None
            message = notification_templates.exam_reminder(
                recipient.student_name,
                recipient.exam_title,
                recipient.exam_date.isoformat() if recipient.exam_date else None,
                recipient.batch_name,
            )
            return dict(
                message=message,
                phone=phone,
                student_id=recipient.student_id,
                parent_id=recipient.parent_id if recipient.parent_phone else None,
                related_entity_id=recipient.exam_id,
                related_entity_type="exam",
            )

        return self._process(
            result,
            lambda: self.recipients.upcoming_exams(self.today, settings.exam_reminder_days_before),
            build,
        )

    def process_absent_alerts(self, settings) -> NotificationResult:
        result = NotificationResult(type="absent")
        if not settings.enable_absent_alert:
            return result

        def build(recipient):
            # Absence alerts only go to parents
            if not recipient.parent_phone:
                return None
            message = notification_templates.absent_alert(
                recipient.student_name,
                recipient.attendance_date.isoformat(),
                recipient.batch_name,
            )
            return dict(
                message=message,
                phone=recipient.parent_phone,
                student_id=recipient.student_id,
                parent_id=recipient.parent_id,
                related_entity_id=recipient.attendance_id,
                related_entity_type="attendance",
            )

        return self._process(result, lambda: self.recipients.absent_today(self.today), build)

    def process_birthday_wishes(self, settings) -> NotificationResult:
        result = NotificationResult(type="birthday")
        if not settings.enable_birthday_wish:
            return result

        def build(recipient):
            # The wish is addressed to the student, so their own number comes first
            phone = recipient.student_phone or recipient.parent_phone
            if not phone:
                return None
            return dict(
                message=notification_templates.birthday_wish(recipient.student_name),
                phone=phone,
                student_id=recipient.student_id,
                parent_id=None if recipient.student_phone else recipient.parent_id,
            )

        return self._process(result, lambda: self.recipients.birthdays_today(self.today), build)

    def process_category(self, category: str, settings) -> NotificationResult:
        processors = {
            "fee": self.process_fee_reminders,
            "overdue": self.process_overdue_reminders,
            "exam": self.process_exam_reminders,
            "absent": self.process_absent_alerts,
            "birthday": self.process_birthday_wishes,
        }
        try:
            processor = processors[category]
        except KeyError:
            raise ValueError(f"Unknown notification category: {category}") from None
        return processor(settings)


def _aggregate(results: dict[str, NotificationResult]) -> BatchNotificationResult:
    return BatchNotificationResult(
        **{CATEGORY_FIELDS[category]: result for category, result in results.items()},
        total_sent=sum(result.sent for result in results.values()),
        total_failed=sum(result.failed for result in results.values()),
        timestamp=utc_now().isoformat(),
    )


def _disabled_result() -> BatchNotificationResult:
    return _aggregate(
        {category: NotificationResult(type=category, errors=[AUTOMATIC_MODE_DISABLED]) for category in CATEGORY_FIELDS}
    )


def _run_category(
    category: str,
    settings: NotificationSettingsRead,
    session_factory,
    sender,
    recipient_source_factory,
    today: date,
    triggered_by: str = "automatic",
) -> NotificationResult:
    db = session_factory()
    try:
        engine = NotificationEngine(db, sender, recipient_source_factory(db), today=today, triggered_by=triggered_by)
        return engine.process_category(category, settings)
    finally:
        db.close()


def run_all_notifications(
    session_factory=SessionLocal,
    sender=None,
    recipient_source_factory=SqlRecipientSource,
    today: Optional[date] = None,
    max_workers: Optional[int] = None,
) -> BatchNotificationResult:
    """Entry point for the scheduler and the "run now" button.

    When automatic mode is off nothing is queried or sent. Otherwise the five
    categories run concurrently, each on its own database session, and every
    category's outcome is captured separately.
    """
    today = today or utc_today()
    db = session_factory()
    try:
        settings_row = get_notification_settings(db)
        if not settings_row.enable_automatic_mode:
            logger.info("Automatic notifications skipped: automatic mode disabled")
            return _disabled_result()
        settings = NotificationSettingsRead.model_validate(settings_row)
        if sender is None:
            sender = SMSService.from_db(db)
    finally:
        db.close()

    workers = max_workers or get_app_settings().notification_max_workers
    results: dict[str, NotificationResult] = {}
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="notify") as pool:
        futures = {
            category: pool.submit(
                _run_category, category, settings, session_factory, sender, recipient_source_factory, today
            )
            for category in CATEGORY_FIELDS
        }
        for category, future in futures.items():
            try:
                results[category] = future.result()
            except Exception as exc:
                logger.exception("%s processor crashed", category)
                results[category] = NotificationResult(type=category, errors=[user_message_for(exc)])

    batch = _aggregate(results)
    logger.info("Notification run finished: sent=%s failed=%s", batch.total_sent, batch.total_failed)
    return batch


def run_category(
    db: Session,
    category: str,
    sender=None,
    recipient_source: Optional[RecipientSource] = None,
    today: Optional[date] = None,
) -> NotificationResult:
    """Run a single category now, honouring its enable flag but not automatic mode."""
    if category not in CATEGORY_FIELDS:
        raise ValueError(f"Unknown notification category: {category}")
    settings = get_notification_settings(db)
    engine = NotificationEngine(
        db,
        sender or SMSService.from_db(db),
        recipient_source or SqlRecipientSource(db),
        today=today,
    )
    return engine.process_category(category, settings)


def trigger_absent_alert(
    db: Session,
    student_id: int,
    student_name: str,
    parent_phone: Optional[str],
    batch_name: Optional[str] = None,
    attendance_id: Optional[int] = None,
    sender=None,
    today: Optional[date] = None,
) -> SendOutcome:
    """Send one absence alert as attendance is marked."""
    settings = get_notification_settings(db)
    if not settings.enable_absent_alert or not settings.enable_automatic_mode:
        return SendOutcome(success=False, error="Absent alerts disabled")
    if not parent_phone:
        return SendOutcome(success=False, error="No parent phone available")

    today = today or utc_today()
    engine = NotificationEngine(
        db,
        sender or SMSService.from_db(db),
        SqlRecipientSource(db),
        today=today,
        triggered_by="manual",
    )
    return engine.send_and_log(
        message_type="absent",
        message=notification_templates.absent_alert(student_name, today.isoformat(), batch_name),
        phone=parent_phone,
        student_id=student_id,
        related_entity_id=attendance_id,
        related_entity_type="attendance",
    )
