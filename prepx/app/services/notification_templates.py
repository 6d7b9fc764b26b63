"""SMS message templates for each reminder category, plus phone cleanup."""

import re
from decimal import Decimal
from typing import Optional

SIGNATURE = "- PrepX IQ"
TEAM_SIGNATURE = "- PrepX IQ Team"

_PHONE_NOISE = re.compile(r"[\s\-()]")


def normalize_phone(phone: Optional[str]) -> str:
    """Strip spaces, dashes and parentheses before a number goes to a provider."""
    if not phone:
        return ""
    return _PHONE_NOISE.sub("", phone)


def format_amount(amount) -> str:
    """Render an amount the way it reads on a receipt: 2500, 2500.5, 2500.75."""
    value = Decimal(str(amount))
    if value == value.to_integral_value():
        return str(value.quantize(Decimal(1)))
    return format(value.normalize(), "f")


def fee_reminder(student_name: str, amount, due_date: str, description: Optional[str] = None) -> str:
    note = f" Note: {description}" if description else ""
    return (
        f"Dear Parent, fee reminder for {student_name}. "
        f"Amount: ₹{format_amount(amount)} due on {due_date}.{note} {SIGNATURE}"
    )


def overdue_reminder(student_name: str, amount, days_overdue: int) -> str:
    return (
        f"Dear Parent, fee overdue alert for {student_name}. "
        f"Amount: ₹{format_amount(amount)} is {days_overdue} days overdue. "
        f"Please clear the dues at the earliest. {SIGNATURE}"
    )


def exam_reminder(student_name: str, exam_title: str, exam_date: Optional[str], batch_name: Optional[str] = None) -> str:
    batch = f" Batch: {batch_name}" if batch_name else ""
    return (
        f'Dear Parent, {student_name} has an exam "{exam_title}" scheduled for {exam_date or "TBD"}.'
        f"{batch} Please ensure preparation. {SIGNATURE}"
    )


def absent_alert(student_name: str, date: str, batch_name: Optional[str] = None) -> str:
    batch = f" for batch {batch_name}" if batch_name else ""
    return (
        f"Dear Parent, your child {student_name} was marked absent on {date}{batch}. "
        f"Please contact the institute if this is unexpected. {SIGNATURE}"
    )


def birthday_wish(student_name: str) -> str:
    return (
        f"🎂 Happy Birthday {student_name}! Wishing you a wonderful year ahead "
        f"filled with success and happiness. {TEAM_SIGNATURE}"
    )


TEMPLATES = {
    "fee": fee_reminder,
    "overdue": overdue_reminder,
    "exam": exam_reminder,
    "absent": absent_alert,
    "birthday": birthday_wish,
}


def render_template(category: str, **fields) -> str:
    try:
        template = TEMPLATES[category]
    except KeyError:
        raise ValueError(f"Unknown notification category: {category}") from None
    return template(**fields)
