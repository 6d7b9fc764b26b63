"""Recipient lists for each reminder category.

The notification engine only sees the ``RecipientSource`` protocol, so tests
can hand it canned recipients; ``SqlRecipientSource`` answers from the
institute's own tables.
"""

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, Protocol

from sqlalchemy.orm import Session

from prepx.app.models.attendance import Attendance
from prepx.app.models.batch import Batch, StudentBatch
from prepx.app.models.exam import Exam
from prepx.app.models.fee import Fee
from prepx.app.models.parent import Parent, ParentStudentLink
from prepx.app.models.student import Student


@dataclass
class FeeReminderRecipient:
    fee_id: int
    student_id: int
    student_name: str
    student_phone: Optional[str]
    parent_phone: Optional[str]
    parent_name: Optional[str]
    amount: Decimal
    due_date: date
    description: Optional[str] = None
    parent_id: Optional[int] = None


@dataclass
class OverdueReminderRecipient:
    fee_id: int
    student_id: int
    student_name: str
    student_phone: Optional[str]
    parent_phone: Optional[str]
    parent_name: Optional[str]
    amount: Decimal
    due_date: date
    days_overdue: int
    parent_id: Optional[int] = None


@dataclass
class ExamReminderRecipient:
    exam_id: int
    student_id: int
    student_name: str
    student_phone: Optional[str]
    parent_phone: Optional[str]
    parent_name: Optional[str]
    exam_title: str
    exam_date: Optional[date]
    batch_name: Optional[str]
    total_marks: int
    parent_id: Optional[int] = None


@dataclass
class AbsentAlertRecipient:
    attendance_id: int
    student_id: int
    student_name: str
    parent_phone: Optional[str]
    parent_name: Optional[str]
    batch_name: Optional[str]
    attendance_date: date
    parent_id: Optional[int] = None


@dataclass
class BirthdayRecipient:
    student_id: int
    student_name: str
    student_phone: Optional[str]
    parent_phone: Optional[str]
    parent_name: Optional[str]
    parent_id: Optional[int] = None


class RecipientSource(Protocol):
    def upcoming_fees(self, today: date, days_before: int) -> list[FeeReminderRecipient]: ...

    def overdue_fees(self, today: date) -> list[OverdueReminderRecipient]: ...

    def upcoming_exams(self, today: date, days_before: int) -> list[ExamReminderRecipient]: ...

    def absent_today(self, today: date) -> list[AbsentAlertRecipient]: ...

    def birthdays_today(self, today: date) -> list[BirthdayRecipient]: ...


@dataclass
class _ParentContact:
    parent_id: Optional[int] = None
    name: Optional[str] = None
    phone: Optional[str] = None


def _birthday_matches(date_of_birth: date, today: date) -> bool:
    if (date_of_birth.month, date_of_birth.day) == (today.month, today.day):
        return True
    # Leap-day birthdays are celebrated on 28 February in common years
    return (
        (date_of_birth.month, date_of_birth.day) == (2, 29)
        and (today.month, today.day) == (2, 28)
        and not calendar.isleap(today.year)
    )


class SqlRecipientSource:
    def __init__(self, db: Session):
        self.db = db

    def _parent_contacts(self, student_ids) -> dict[int, _ParentContact]:
        """First linked parent per student, preferring one that has a phone."""
        ids = set(student_ids)
        if not ids:
            return {}
        rows = (
            self.db.query(ParentStudentLink.student_id, Parent)
            .join(Parent, Parent.id == ParentStudentLink.parent_id)
            .filter(ParentStudentLink.student_id.in_(ids))
            .order_by(ParentStudentLink.student_id.asc(), Parent.id.asc())
            .all()
        )
        contacts: dict[int, _ParentContact] = {}
        for student_id, parent in rows:
            current = contacts.get(student_id)
            if current is None or (not current.phone and parent.phone):
                contacts[student_id] = _ParentContact(parent.id, parent.full_name, parent.phone)
        return contacts

    def upcoming_fees(self, today: date, days_before: int) -> list[FeeReminderRecipient]:
        rows = (
            self.db.query(Fee, Student)
            .join(Student, Student.id == Fee.student_id)
            .filter(
                Fee.status == "pending",
                Fee.due_date >= today,
                Fee.due_date <= today + timedelta(days=days_before),
            )
            .order_by(Fee.due_date.asc(), Fee.id.asc())
            .all()
        )
        contacts = self._parent_contacts(student.id for _, student in rows)
        recipients = []
        for fee, student in rows:
            contact = contacts.get(student.id, _ParentContact())
            recipients.append(
                FeeReminderRecipient(
                    fee_id=fee.id,
                    student_id=student.id,
                    student_name=student.full_name,
                    student_phone=student.phone,
                    parent_phone=contact.phone,
                    parent_name=contact.name,
                    parent_id=contact.parent_id,
                    amount=fee.amount,
                    due_date=fee.due_date,
                    description=fee.description,
                )
            )
        return recipients

    def overdue_fees(self, today: date) -> list[OverdueReminderRecipient]:
        rows = (
            self.db.query(Fee, Student)
            .join(Student, Student.id == Fee.student_id)
            .filter(Fee.status.in_(("pending", "overdue")), Fee.due_date < today)
            .order_by(Fee.due_date.asc(), Fee.id.asc())
            .all()
        )
        contacts = self._parent_contacts(student.id for _, student in rows)
        recipients = []
        for fee, student in rows:
            contact = contacts.get(student.id, _ParentContact())
            recipients.append(
                OverdueReminderRecipient(
                    fee_id=fee.id,
                    student_id=student.id,
                    student_name=student.full_name,
                    student_phone=student.phone,
                    parent_phone=contact.phone,
                    parent_name=contact.name,
                    parent_id=contact.parent_id,
                    amount=fee.amount,
                    due_date=fee.due_date,
                    days_overdue=(today - fee.due_date).days,
                )
            )
        return recipients

    def upcoming_exams(self, today: date, days_before: int) -> list[ExamReminderRecipient]:
        rows = (
            self.db.query(Exam, Batch, Student)
            .join(Batch, Batch.id == Exam.batch_id)
            .join(StudentBatch, StudentBatch.batch_id == Batch.id)
            .join(Student, Student.id == StudentBatch.student_id)
            .filter(
                Student.status == "active",
                Exam.exam_date >= today,
                Exam.exam_date <= today + timedelta(days=days_before),
            )
            .order_by(Exam.exam_date.asc(), Exam.id.asc(), Student.id.asc())
            .all()
        )
        contacts = self._parent_contacts(student.id for _, _, student in rows)
        recipients = []
        for exam, batch, student in rows:
            contact = contacts.get(student.id, _ParentContact())
            recipients.append(
                ExamReminderRecipient(
                    exam_id=exam.id,
                    student_id=student.id,
                    student_name=student.full_name,
                    student_phone=student.phone,
                    parent_phone=contact.phone,
                    parent_name=contact.name,
                    parent_id=contact.parent_id,
                    exam_title=exam.title,
                    exam_date=exam.exam_date,
                    batch_name=batch.name,
                    total_marks=exam.total_marks,
                )
            )
        return recipients

    def absent_today(self, today: date) -> list[AbsentAlertRecipient]:
        rows = (
            self.db.query(Attendance, Student, Batch)
            .join(Student, Student.id == Attendance.student_id)
            .outerjoin(Batch, Batch.id == Attendance.batch_id)
            .filter(Attendance.status == "absent", Attendance.date == today)
            .order_by(Attendance.id.asc())
            .all()
        )
        contacts = self._parent_contacts(student.id for _, student, _ in rows)
        recipients = []
        for attendance, student, batch in rows:
            contact = contacts.get(student.id, _ParentContact())
            recipients.append(
                AbsentAlertRecipient(
                    attendance_id=attendance.id,
                    student_id=student.id,
                    student_name=student.full_name,
                    parent_phone=contact.phone,
                    parent_name=contact.name,
                    parent_id=contact.parent_id,
                    batch_name=batch.name if batch else None,
                    attendance_date=attendance.date,
                )
            )
        return recipients

    def birthdays_today(self, today: date) -> list[BirthdayRecipient]:
        students = (
            self.db.query(Student)
            .filter(Student.status == "active", Student.date_of_birth.isnot(None))
            .order_by(Student.id.asc())
            .all()
        )
        students = [student for student in students if _birthday_matches(student.date_of_birth, today)]
        contacts = self._parent_contacts(student.id for student in students)
        recipients = []
        for student in students:
            contact = contacts.get(student.id, _ParentContact())
            recipients.append(
                BirthdayRecipient(
                    student_id=student.id,
                    student_name=student.full_name,
                    student_phone=student.phone,
                    parent_phone=contact.phone,
                    parent_name=contact.name,
                    parent_id=contact.parent_id,
                )
            )
        return recipients
