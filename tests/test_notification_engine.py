import threading
from datetime import timedelta
from decimal import Decimal

import pytest

from prepx.app.core.time import utc_today
from prepx.app.db.base import Base
from prepx.app.db.session import SessionLocal, engine
from prepx.app.models.communication_log import CommunicationLog
from prepx.app.models.student import Student
from prepx.app.schemas.notification import NotificationSettingsUpdate
from prepx.app.services import notification_settings
from prepx.app.services.notification_engine import (
    NotificationEngine,
    run_all_notifications,
    run_category,
    trigger_absent_alert,
)
from prepx.app.services.recipient_queries import (
    AbsentAlertRecipient,
    BirthdayRecipient,
    ExamReminderRecipient,
    FeeReminderRecipient,
    OverdueReminderRecipient,
)
from prepx.app.services.sms_providers import SMSResponse

TODAY = utc_today()


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


class FakeSender:
    def __init__(self, fail_with=None, raise_with=None):
        self.fail_with = fail_with
        self.raise_with = raise_with
        self.sent = []
        self._lock = threading.Lock()

    def send(self, phone, message):
        with self._lock:
            self.sent.append((phone, message))
        if self.raise_with:
            raise self.raise_with
        if self.fail_with:
            return SMSResponse(success=False, error=self.fail_with, data={"status": "error"})
        return SMSResponse(success=True, message_id="m-1", data={"id": "m-1"})


class FakeSource:
    def __init__(self, fees=(), overdue=(), exams=(), absent=(), birthdays=(), broken=()):
        self.fees = list(fees)
        self.overdue = list(overdue)
        self.exams = list(exams)
        self.absent = list(absent)
        self.birthdays = list(birthdays)
        self.broken = set(broken)

    def _maybe_fail(self, name):
        if name in self.broken:
            raise RuntimeError(f"{name} query exploded")

    def upcoming_fees(self, today, days_before):
        self._maybe_fail("fees")
        return self.fees

    def overdue_fees(self, today):
        self._maybe_fail("overdue")
        return self.overdue

    def upcoming_exams(self, today, days_before):
        self._maybe_fail("exams")
        return self.exams

    def absent_today(self, today):
        self._maybe_fail("absent")
        return self.absent

    def birthdays_today(self, today):
        self._maybe_fail("birthdays")
        return self.birthdays


def make_student(name="Asha", phone="9000000001"):
    db = SessionLocal()
    student = Student(full_name=name, phone=phone)
    db.add(student)
    db.commit()
    db.refresh(student)
    db.close()
    return student


def enable(**flags):
    db = SessionLocal()
    notification_settings.update_settings(db, NotificationSettingsUpdate(enable_automatic_mode=True, **flags))
    db.close()


def fee_for(student, fee_id=1, parent_phone="9100000001"):
    return FeeReminderRecipient(
        fee_id=fee_id,
        student_id=student.id,
        student_name=student.full_name,
        student_phone=student.phone,
        parent_phone=parent_phone,
        parent_name="Parent",
        amount=Decimal("2500.00"),
        due_date=TODAY + timedelta(days=3),
        description="Term 2",
    )


def logs():
    db = SessionLocal()
    rows = db.query(CommunicationLog).order_by(CommunicationLog.id.asc()).all()
    db.close()
    return rows


def run(sender, source):
    return run_all_notifications(sender=sender, recipient_source_factory=lambda db: source, today=TODAY)


def test_automatic_mode_off_sends_nothing():
    student = make_student()
    sender = FakeSender()
    result = run(sender, FakeSource(fees=[fee_for(student)]))

    for category in (
        result.fee_reminders,
        result.overdue_reminders,
        result.exam_reminders,
        result.absent_alerts,
        result.birthday_wishes,
    ):
        assert category.errors == ["Automatic mode disabled"]
        assert category.sent == 0
    assert result.total_sent == 0
    assert result.total_failed == 0
    assert sender.sent == []
    assert logs() == []


def test_fee_reminder_sent_once_per_day():
    enable()
    student = make_student()
    sender = FakeSender()
    source = FakeSource(fees=[fee_for(student)])

    first = run(sender, source)
    assert first.fee_reminders.total == 1
    assert first.fee_reminders.sent == 1
    assert first.total_sent == 1
    assert sender.sent[0][0] == "9100000001"
    assert "Amount: ₹2500 due on" in sender.sent[0][1]

    rows = logs()
    assert len(rows) == 1
    assert rows[0].delivery_status == "sent"
    assert rows[0].related_entity_type == "fee"
    assert rows[0].related_entity_id == 1
    assert rows[0].triggered_by == "automatic"
    assert rows[0].sent_at is not None

    second = run(sender, source)
    assert second.fee_reminders.sent == 0
    assert second.fee_reminders.skipped == 1
    assert len(sender.sent) == 1
    assert len(logs()) == 1


def test_separate_fees_for_same_student_each_get_a_reminder():
    enable()
    student = make_student()
    sender = FakeSender()
    result = run(sender, FakeSource(fees=[fee_for(student, fee_id=1), fee_for(student, fee_id=2)]))
    assert result.fee_reminders.sent == 2


def test_provider_failure_is_logged_and_retried_next_run():
    enable()
    student = make_student()
    source = FakeSource(fees=[fee_for(student)])

    failed = run(FakeSender(fail_with="provider down"), source)
    assert failed.fee_reminders.failed == 1
    assert failed.total_failed == 1
    assert failed.fee_reminders.errors == ["Asha: provider down"]
    rows = logs()
    assert rows[0].delivery_status == "failed"
    assert rows[0].error_message == "provider down"
    assert rows[0].dedupe_key is None

    retry = run(FakeSender(), source)
    assert retry.fee_reminders.sent == 1
    assert [row.delivery_status for row in logs()] == ["failed", "sent"]


def test_sender_exception_counts_as_failure():
    enable()
    student = make_student()
    result = run(FakeSender(raise_with=RuntimeError("socket closed")), FakeSource(fees=[fee_for(student)]))
    assert result.fee_reminders.failed == 1
    assert result.fee_reminders.errors == ["Asha: socket closed"]
    assert logs()[0].delivery_status == "failed"


def test_missing_phone_is_skipped_without_log():
    enable()
    student = make_student(phone=None)
    sender = FakeSender()
    result = run(sender, FakeSource(fees=[fee_for(student, parent_phone=None)]))
    assert result.fee_reminders.total == 1
    assert result.fee_reminders.skipped == 1
    assert sender.sent == []
    assert logs() == []


def test_student_phone_used_when_parent_has_none():
    enable()
    student = make_student(phone="9000000007")
    sender = FakeSender()
    run(sender, FakeSource(fees=[fee_for(student, parent_phone=None)]))
    assert sender.sent[0][0] == "9000000007"
    assert logs()[0].parent_id is None


def test_disabled_category_is_untouched():
    enable(enable_fee_reminder=False)
    student = make_student()
    sender = FakeSender()
    result = run(sender, FakeSource(fees=[fee_for(student)]))
    assert result.fee_reminders.model_dump() == {
        "type": "fee",
        "total": 0,
        "sent": 0,
        "failed": 0,
        "skipped": 0,
        "errors": [],
    }
    assert sender.sent == []


def test_one_broken_category_does_not_stop_the_rest():
    enable(enable_birthday_wish=True)
    asha = make_student()
    kiran = make_student("Kiran", "9000000002")
    source = FakeSource(
        fees=[fee_for(asha)],
        overdue=[
            OverdueReminderRecipient(
                fee_id=5,
                student_id=kiran.id,
                student_name="Kiran",
                student_phone=None,
                parent_phone="9100000002",
                parent_name="Parent",
                amount=Decimal("900"),
                due_date=TODAY - timedelta(days=4),
                days_overdue=4,
            )
        ],
        exams=[
            ExamReminderRecipient(
                exam_id=3,
                student_id=kiran.id,
                student_name="Kiran",
                student_phone="9000000002",
                parent_phone=None,
                parent_name=None,
                exam_title="Chemistry",
                exam_date=TODAY + timedelta(days=1),
                batch_name="NEET A",
                total_marks=100,
            )
        ],
        birthdays=[
            BirthdayRecipient(
                student_id=asha.id,
                student_name="Asha",
                student_phone="9000000001",
                parent_phone="9100000001",
                parent_name="Parent",
            )
        ],
        broken={"absent"},
    )
    sender = FakeSender()
    result = run(sender, source)

    assert result.absent_alerts.errors == ["Something went wrong. Please try again."]
    assert result.absent_alerts.sent == 0
    assert result.fee_reminders.sent == 1
    assert result.overdue_reminders.sent == 1
    assert result.exam_reminders.sent == 1
    assert result.birthday_wishes.sent == 1
    assert result.total_sent == 4
    assert result.timestamp

    birthday_phone = [phone for phone, message in sender.sent if "Happy Birthday" in message]
    assert birthday_phone == ["9000000001"]
    assert {row.message_type for row in logs()} == {"fee", "overdue", "exam", "birthday"}


def test_absent_alerts_go_to_parents_only():
    enable()
    student = make_student()
    engine_db = SessionLocal()
    sender = FakeSender()
    source = FakeSource(
        absent=[
            AbsentAlertRecipient(
                attendance_id=11,
                student_id=student.id,
                student_name="Asha",
                parent_phone=None,
                parent_name=None,
                batch_name="NEET A",
                attendance_date=TODAY,
            )
        ]
    )
    settings = notification_settings.get_settings(engine_db)
    result = NotificationEngine(engine_db, sender, source, today=TODAY).process_absent_alerts(settings)
    engine_db.close()
    assert result.skipped == 1
    assert sender.sent == []


def test_run_category_ignores_automatic_switch():
    student = make_student()
    db = SessionLocal()
    sender = FakeSender()
    result = run_category(db, "fee", sender=sender, recipient_source=FakeSource(fees=[fee_for(student)]), today=TODAY)
    db.close()
    assert result.sent == 1
    with pytest.raises(ValueError):
        run_category(SessionLocal(), "newsletter", sender=sender, recipient_source=FakeSource())


def test_trigger_absent_alert_rules():
    student = make_student()
    sender = FakeSender()
    db = SessionLocal()
    outcome = trigger_absent_alert(db, student.id, "Asha", "9100000001", sender=sender, today=TODAY)
    db.close()
    assert outcome.success is False
    assert outcome.error == "Absent alerts disabled"

    enable()
    db = SessionLocal()
    outcome = trigger_absent_alert(db, student.id, "Asha", None, sender=sender, today=TODAY)
    assert outcome.error == "No parent phone available"

    outcome = trigger_absent_alert(
        db, student.id, "Asha", "9100000001", batch_name="NEET A", attendance_id=4, sender=sender, today=TODAY
    )
    assert outcome.success is True
    assert outcome.log_id is not None
    assert "marked absent on" in sender.sent[0][1]

    repeat = trigger_absent_alert(db, student.id, "Asha", "9100000001", attendance_id=4, sender=sender, today=TODAY)
    assert repeat.success is False
    assert repeat.error == "Already sent today"
    db.close()

    rows = logs()
    assert len(rows) == 1
    assert rows[0].triggered_by == "manual"
    assert rows[0].related_entity_type == "attendance"


def test_manual_absent_alert_blocks_automatic_run_for_same_student():
    enable()
    student = make_student()
    sender = FakeSender()
    db = SessionLocal()
    outcome = trigger_absent_alert(db, student.id, "Asha", "9100000001", sender=sender, today=TODAY)
    db.close()
    assert outcome.success is True

    source = FakeSource(
        absent=[
            AbsentAlertRecipient(
                attendance_id=7,
                student_id=student.id,
                student_name="Asha",
                parent_phone="9100000001",
                parent_name=None,
                batch_name=None,
                attendance_date=TODAY,
            )
        ]
    )
    db = SessionLocal()
    result = run_category(db, "absent", sender=sender, recipient_source=source, today=TODAY)
    db.close()

    assert len(sender.sent) == 1
    assert result.sent == 0
    assert result.skipped == 1
    assert len(logs()) == 1
