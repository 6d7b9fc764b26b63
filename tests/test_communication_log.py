from datetime import date, datetime, timedelta, timezone

import pytest

from prepx.app.core.errors import DuplicateRecord, NotFound, ValidationFailed
from prepx.app.core.time import utc_today
from prepx.app.db.base import Base
from prepx.app.db.session import SessionLocal, engine
from prepx.app.models.communication_log import CommunicationLog
from prepx.app.models.student import Student
from prepx.app.schemas.notification import CommunicationLogFilters
from prepx.app.services import communication_log


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def student(db):
    student = Student(full_name="Asha Nair", phone="9876500001")
    db.add(student)
    db.commit()
    db.refresh(student)
    return student


def test_dedupe_key_format():
    assert communication_log.make_dedupe_key(4, "fee", 9, date(2025, 1, 15)) == "4:fee:9:2025-01-15"
    assert communication_log.make_dedupe_key(4, "birthday", None, date(2025, 1, 15)) == "4:birthday:-:2025-01-15"


def test_new_log_is_pending(db, student):
    log = communication_log.create_log(
        db, message_type="fee", message_content="Pay up", student_id=student.id, related_entity_id=3
    )
    assert log.delivery_status == "pending"
    assert log.triggered_by == "automatic"
    assert log.sent_at is None


def test_unknown_message_type_rejected(db, student):
    with pytest.raises(ValidationFailed):
        communication_log.create_log(db, message_type="promo", message_content="x", student_id=student.id)


def test_sent_sets_timestamp_and_provider_response(db, student):
    log = communication_log.create_log(db, message_type="exam", message_content="Exam", student_id=student.id)
    updated = communication_log.update_status(db, log.id, "sent", provider_response={"id": "abc"})
    assert updated.delivery_status == "sent"
    assert updated.sent_at is not None
    assert updated.provider_response == {"id": "abc"}


def test_missing_log_raises_not_found(db):
    with pytest.raises(NotFound):
        communication_log.update_status(db, 404, "sent")


def test_dedupe_key_blocks_second_attempt_until_failure(db, student):
    key = communication_log.make_dedupe_key(student.id, "fee", 7, utc_today())
    first = communication_log.create_log(
        db, message_type="fee", message_content="a", student_id=student.id, related_entity_id=7, dedupe_key=key
    )
    with pytest.raises(DuplicateRecord):
        communication_log.create_log(
            db, message_type="fee", message_content="b", student_id=student.id, related_entity_id=7, dedupe_key=key
        )

    communication_log.update_status(db, first.id, "failed", error_message="provider down")
    retry = communication_log.create_log(
        db, message_type="fee", message_content="c", student_id=student.id, related_entity_id=7, dedupe_key=key
    )
    assert retry.dedupe_key == key
    assert db.query(CommunicationLog).count() == 2


def test_was_sent_today_ignores_failed_attempts(db, student):
    assert not communication_log.was_sent_today(db, student.id, "fee", 7)

    log = communication_log.create_log(
        db, message_type="fee", message_content="a", student_id=student.id, related_entity_id=7
    )
    assert communication_log.was_sent_today(db, student.id, "fee", 7)
    assert not communication_log.was_sent_today(db, student.id, "fee", 8)
    assert not communication_log.was_sent_today(db, student.id, "overdue", 7)

    communication_log.update_status(db, log.id, "failed", error_message="nope")
    assert not communication_log.was_sent_today(db, student.id, "fee", 7)


def test_was_sent_today_only_looks_at_today(db, student):
    db.add(
        CommunicationLog(
            student_id=student.id,
            message_type="birthday",
            message_content="old",
            delivery_status="sent",
            created_at=datetime.now(timezone.utc) - timedelta(days=1),
        )
    )
    db.commit()
    assert not communication_log.was_sent_today(db, student.id, "birthday")


def test_list_logs_filters_and_orders_newest_first(db, student):
    for message_type in ["fee", "exam", "fee"]:
        communication_log.create_log(db, message_type=message_type, message_content=message_type, student_id=student.id)
    logs = communication_log.list_logs(db, CommunicationLogFilters(message_type="fee"))
    assert len(logs) == 2
    assert logs[0].id > logs[1].id
    assert len(communication_log.list_logs(db, skip=1, limit=1)) == 1


def test_stats_count_by_status_and_type(db, student):
    sent = communication_log.create_log(db, message_type="fee", message_content="a", student_id=student.id)
    failed = communication_log.create_log(db, message_type="exam", message_content="b", student_id=student.id)
    communication_log.create_log(db, message_type="exam", message_content="c", student_id=student.id)
    communication_log.update_status(db, sent.id, "sent")
    communication_log.update_status(db, failed.id, "failed", error_message="x")

    stats = communication_log.get_stats(db)
    assert stats.total == 3
    assert (stats.sent, stats.failed, stats.pending) == (1, 1, 1)
    assert stats.by_type["exam"] == 2
    assert stats.by_type["birthday"] == 0


def test_cleanup_removes_only_old_rows(db, student):
    db.add(
        CommunicationLog(
            student_id=student.id,
            message_type="fee",
            message_content="ancient",
            created_at=datetime.now(timezone.utc) - timedelta(days=120),
        )
    )
    db.commit()
    communication_log.create_log(db, message_type="fee", message_content="fresh", student_id=student.id)

    assert communication_log.delete_older_than(db, 90) == 1
    assert [log.message_content for log in db.query(CommunicationLog).all()] == ["fresh"]
    with pytest.raises(ValidationFailed):
        communication_log.delete_older_than(db, -1)
