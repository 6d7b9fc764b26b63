"""Lead pipeline operations: intake, stage moves, conversion, listing and reporting."""

import csv
import io
import logging
import math
from collections import Counter
from datetime import date
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from prepx.app.core.errors import DuplicateRecord, InvalidStageTransition, NotFound, ValidationFailed
from prepx.app.core.settings import get_settings
from prepx.app.core.time import day_bounds, utc_now, utc_today
from prepx.app.models.lead import Lead
from prepx.app.models.student import Student
from prepx.app.models.user import User
from prepx.app.schemas.lead import (
    DuplicatePhoneResult,
    LeadConvertRequest,
    LeadCreate,
    LeadFilters,
    LeadFollowUp,
    LeadListResult,
    LeadPagination,
    LeadRead,
    LeadStats,
    LeadUpdate,
    MonthlyTrendRow,
    SourceCount,
    StageCount,
)
from prepx.app.services.lead_pipeline import (
    ALL_STAGES,
    OPEN_STAGES,
    LeadStage,
    ensure_can_close_lead,
    validate_transition,
)

logger = logging.getLogger(__name__)

CSV_HEADERS = [
    "Student Name",
    "Parent Name",
    "Phone",
    "Email",
    "Course Interested",
    "Source",
    "Stage",
    "Counselor",
    "Follow-up Date",
    "Remarks",
    "Created At",
]

OPEN_STAGE_VALUES = [stage.value for stage in OPEN_STAGES]


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _require(value: Optional[str], label: str) -> str:
    cleaned = _clean(value)
    if not cleaned:
        raise ValidationFailed(f"{label} is required")
    return cleaned


def get_lead(db: Session, lead_id: int) -> Lead:
    lead = db.query(Lead).options(joinedload(Lead.counselor)).filter(Lead.id == lead_id).first()
    if not lead:
        raise NotFound("Lead not found")
    return lead


def _ensure_counselor(db: Session, counselor_id: Optional[int]) -> None:
    if counselor_id is None:
        return
    if not db.query(User.id).filter(User.id == counselor_id).first():
        raise NotFound("Counselor not found")


def check_duplicate_phone(db: Session, phone: str, exclude_lead_id: Optional[int] = None) -> DuplicatePhoneResult:
    """Look for an existing lead or student already using ``phone``."""
    phone = _clean(phone)
    if not phone:
        return DuplicatePhoneResult(exists=False)

    lead_query = db.query(Lead).filter(Lead.phone_number == phone)
    if exclude_lead_id is not None:
        lead_query = lead_query.filter(Lead.id != exclude_lead_id)
    lead = lead_query.first()
    if lead:
        return DuplicatePhoneResult(exists=True, type="lead", name=lead.student_name)

    student = db.query(Student).filter(Student.phone == phone).first()
    if student:
        return DuplicatePhoneResult(exists=True, type="student", name=student.full_name)
    return DuplicatePhoneResult(exists=False)


def _raise_if_duplicate(db: Session, phone: str, exclude_lead_id: Optional[int] = None) -> None:
    duplicate = check_duplicate_phone(db, phone, exclude_lead_id=exclude_lead_id)
    if duplicate.exists:
        raise DuplicateRecord(f"Phone number already belongs to {duplicate.type} {duplicate.name}")


def create_lead(db: Session, lead_in: LeadCreate) -> Lead:
    student_name = _require(lead_in.student_name, "Student name")
    phone_number = _require(lead_in.phone_number, "Phone number")
    _raise_if_duplicate(db, phone_number)
    _ensure_counselor(db, lead_in.assigned_counselor_id)

    lead = Lead(
        student_name=student_name,
        parent_name=_clean(lead_in.parent_name),
        phone_number=phone_number,
        email=_clean(lead_in.email),
        course_interested=_clean(lead_in.course_interested),
        lead_source=lead_in.lead_source,
        assigned_counselor_id=lead_in.assigned_counselor_id,
        stage=LeadStage.INQUIRY.value,
        follow_up_date=lead_in.follow_up_date,
        remarks=_clean(lead_in.remarks),
    )
    db.add(lead)
    db.commit()
    db.refresh(lead)
    logger.info("Lead %s created from %s", lead.id, lead.lead_source)
    return lead


def update_lead(db: Session, lead_id: int, lead_in: LeadUpdate) -> Lead:
    lead = get_lead(db, lead_id)
    if lead_in.student_name is not None:
        lead.student_name = _require(lead_in.student_name, "Student name")
    if lead_in.phone_number is not None:
        phone_number = _require(lead_in.phone_number, "Phone number")
        if phone_number != lead.phone_number:
            _raise_if_duplicate(db, phone_number, exclude_lead_id=lead.id)
            lead.phone_number = phone_number
    update_fields = {
        "parent_name": lead_in.parent_name,
        "email": lead_in.email,
        "course_interested": lead_in.course_interested,
        "remarks": lead_in.remarks,
    }
    for field, value in update_fields.items():
        if value is not None:  # Only update provided fields
            setattr(lead, field, _clean(value))
    if lead_in.lead_source is not None:
        lead.lead_source = lead_in.lead_source
    db.commit()
    db.refresh(lead)
    return lead


def update_lead_stage(db: Session, lead_id: int, stage: str, actor: User) -> Lead:
    lead = get_lead(db, lead_id)
    new_stage = validate_transition(lead.stage, stage)
    if new_stage == LeadStage.CONVERTED:
        raise ValidationFailed("Leads are converted through the conversion flow")
    if new_stage == LeadStage.LOST:
        ensure_can_close_lead(actor)
    if new_stage.value != lead.stage:
        old_stage = lead.stage
        lead.stage = new_stage.value
        lead.stage_changed_at = utc_now()
        db.commit()
        db.refresh(lead)
        logger.info("Lead %s moved from %s to %s by user %s", lead.id, old_stage, lead.stage, actor.id)
    return lead


def assign_counselor(db: Session, lead_id: int, counselor_id: Optional[int]) -> Lead:
    lead = get_lead(db, lead_id)
    _ensure_counselor(db, counselor_id)
    lead.assigned_counselor_id = counselor_id
    db.commit()
    db.refresh(lead)
    return lead


def set_follow_up_date(db: Session, lead_id: int, follow_up_date: Optional[date]) -> Lead:
    lead = get_lead(db, lead_id)
    lead.follow_up_date = follow_up_date
    db.commit()
    db.refresh(lead)
    return lead


def delete_lead(db: Session, lead_id: int, actor: User) -> None:
    ensure_can_close_lead(actor)
    lead = get_lead(db, lead_id)
    db.delete(lead)
    db.commit()
    logger.info("Lead %s deleted by user %s", lead_id, actor.id)


def convert_lead_to_student(db: Session, lead_id: int, data: LeadConvertRequest, actor: User) -> tuple[int, Lead]:
    """Create a Student from a demo-stage lead and close the lead as converted.

    Both writes share one transaction: if either fails nothing is stored and the
    lead keeps its previous stage.
    """
    ensure_can_close_lead(actor)
    lead = get_lead(db, lead_id)
    if lead.stage != LeadStage.DEMO.value:
        raise InvalidStageTransition(lead.stage, LeadStage.CONVERTED.value)

    try:
        student = Student(
            full_name=lead.student_name,
            phone=lead.phone_number,
            email=_clean(data.email) or lead.email,
            date_of_birth=data.date_of_birth,
            gender=_clean(data.gender),
            address=_clean(data.address),
            status="active",
        )
        db.add(student)
        db.flush()

        # Guarded update so a concurrent conversion or loss cannot slip in between read and write
        updated = (
            db.query(Lead)
            .filter(Lead.id == lead.id, Lead.stage == LeadStage.DEMO.value)
            .update(
                {
                    Lead.stage: LeadStage.CONVERTED.value,
                    Lead.converted_student_id: student.id,
                    Lead.stage_changed_at: utc_now(),
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            # Lost a race with another writer; report the stage the lead really has now
            db.rollback()
            current_stage = db.query(Lead.stage).filter(Lead.id == lead.id).scalar()
            raise InvalidStageTransition(current_stage or lead.stage, LeadStage.CONVERTED.value)
        db.commit()
    except Exception:
        db.rollback()
        raise

    student_id = student.id
    db.refresh(lead)
    logger.info("Lead %s converted to student %s by user %s", lead.id, student_id, actor.id)
    return student_id, lead


def mark_lead_as_lost(db: Session, lead_id: int, reason: Optional[str], actor: User) -> Lead:
    ensure_can_close_lead(actor)
    lead = get_lead(db, lead_id)
    validate_transition(lead.stage, LeadStage.LOST)
    lead.stage = LeadStage.LOST.value
    lead.lost_reason = _clean(reason)
    lead.stage_changed_at = utc_now()
    db.commit()
    db.refresh(lead)
    logger.info("Lead %s marked lost by user %s", lead.id, actor.id)
    return lead


def bulk_update_stage(db: Session, ids: list[int], stage: str, actor: User) -> list[Lead]:
    """Move several leads at once; nothing changes unless every lead may move."""
    leads = db.query(Lead).filter(Lead.id.in_(ids)).all()
    if len(leads) != len(set(ids)):
        raise NotFound("Lead not found")
    new_stages = [validate_transition(lead.stage, stage) for lead in leads]
    if LeadStage.CONVERTED in new_stages:
        raise ValidationFailed("Leads are converted through the conversion flow")
    if LeadStage.LOST in new_stages:
        ensure_can_close_lead(actor)
    now = utc_now()
    for lead, new_stage in zip(leads, new_stages):
        if lead.stage != new_stage.value:
            lead.stage = new_stage.value
            lead.stage_changed_at = now
    db.commit()
    return leads


def bulk_assign_counselor(db: Session, ids: list[int], counselor_id: Optional[int]) -> int:
    _ensure_counselor(db, counselor_id)
    updated = (
        db.query(Lead)
        .filter(Lead.id.in_(ids))
        .update({Lead.assigned_counselor_id: counselor_id}, synchronize_session=False)
    )
    db.commit()
    return updated


# Listing


def _filtered_query(db: Session, filters: Optional[LeadFilters], today: date):
    query = db.query(Lead)
    if filters is None:
        return query
    if filters.stage:
        query = query.filter(Lead.stage == filters.stage)
    if filters.counselor_id is not None:
        query = query.filter(Lead.assigned_counselor_id == filters.counselor_id)
    if filters.lead_source:
        query = query.filter(Lead.lead_source == filters.lead_source)
    if filters.date_from:
        query = query.filter(Lead.created_at >= day_bounds(filters.date_from)[0])
    if filters.date_to:
        query = query.filter(Lead.created_at < day_bounds(filters.date_to)[1])
    search = _clean(filters.search)
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                Lead.student_name.ilike(pattern),
                Lead.phone_number.ilike(pattern),
                Lead.email.ilike(pattern),
            )
        )
    if filters.follow_up_today:
        query = query.filter(Lead.follow_up_date == today, Lead.stage.in_(OPEN_STAGE_VALUES))
    if filters.overdue_follow_up:
        query = query.filter(Lead.follow_up_date < today, Lead.stage.in_(OPEN_STAGE_VALUES))
    return query


def _sort_column(sort_by: str):
    if sort_by == "counselor_name":
        return func.coalesce(User.full_name, User.email)
    column = Lead.__table__.columns.get(sort_by)
    if column is None:
        raise ValidationFailed("Invalid sort_by value")
    return getattr(Lead, sort_by)


def list_leads(
    db: Session,
    filters: Optional[LeadFilters] = None,
    pagination: Optional[LeadPagination] = None,
    today: Optional[date] = None,
) -> LeadListResult:
    pagination = pagination or LeadPagination()
    today = today or utc_today()
    query = _filtered_query(db, filters, today)
    total = query.count()

    sort_column = _sort_column(pagination.sort_by)
    if pagination.sort_by == "counselor_name":
        query = query.outerjoin(User, Lead.assigned_counselor_id == User.id)
    if pagination.sort_order == "asc":
        order_by_clause = [sort_column.asc(), Lead.id.asc()]
    else:
        order_by_clause = [sort_column.desc(), Lead.id.desc()]

    offset = (pagination.page - 1) * pagination.page_size
    leads = (
        query.options(joinedload(Lead.counselor))
        .order_by(*order_by_clause)
        .offset(offset)
        .limit(pagination.page_size)
        .all()
    )
    return LeadListResult(
        rows=[LeadRead.model_validate(lead) for lead in leads],
        total=total,
        page=pagination.page,
        page_size=pagination.page_size,
        total_pages=math.ceil(total / pagination.page_size),
    )


def get_leads_by_stage(db: Session) -> dict[str, list[Lead]]:
    buckets: dict[str, list[Lead]] = {stage.value: [] for stage in ALL_STAGES}
    leads = db.query(Lead).options(joinedload(Lead.counselor)).order_by(Lead.created_at.desc(), Lead.id.desc()).all()
    for lead in leads:
        buckets.setdefault(lead.stage, []).append(lead)
    return buckets


def _follow_up_row(lead: Lead, today: date) -> LeadFollowUp:
    days_overdue = 0
    if lead.follow_up_date and lead.follow_up_date < today:
        days_overdue = (today - lead.follow_up_date).days
    return LeadFollowUp(
        id=lead.id,
        student_name=lead.student_name,
        parent_name=lead.parent_name,
        phone_number=lead.phone_number,
        course_interested=lead.course_interested,
        stage=lead.stage,
        follow_up_date=lead.follow_up_date,
        remarks=lead.remarks,
        counselor_name=lead.counselor_name,
        days_overdue=days_overdue,
    )


def get_todays_follow_ups(db: Session, today: Optional[date] = None) -> list[LeadFollowUp]:
    today = today or utc_today()
    leads = (
        _filtered_query(db, LeadFilters(follow_up_today=True), today)
        .options(joinedload(Lead.counselor))
        .order_by(Lead.created_at.asc())
        .all()
    )
    return [_follow_up_row(lead, today) for lead in leads]


def get_overdue_follow_ups(db: Session, today: Optional[date] = None) -> list[LeadFollowUp]:
    today = today or utc_today()
    leads = (
        _filtered_query(db, LeadFilters(overdue_follow_up=True), today)
        .options(joinedload(Lead.counselor))
        .order_by(Lead.follow_up_date.asc(), Lead.id.asc())
        .all()
    )
    return [_follow_up_row(lead, today) for lead in leads]


def get_leads_by_source(db: Session) -> list[SourceCount]:
    rows = db.query(Lead.lead_source, func.count(Lead.id)).group_by(Lead.lead_source).all()
    counts = [SourceCount(source=source, count=count) for source, count in rows]
    return sorted(counts, key=lambda row: row.count, reverse=True)


# Reporting


def _percentage(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return round(part / whole * 100, 2)


def get_lead_stats(
    db: Session,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    today: Optional[date] = None,
) -> LeadStats:
    """Funnel summary for leads created in the range; defaults to the current month.

    Follow-up counts always cover every open lead, whatever the range.
    """
    today = today or utc_today()
    if date_from is None and date_to is None:
        date_from = today.replace(day=1)

    in_range = _filtered_query(db, LeadFilters(date_from=date_from, date_to=date_to), today)
    stage_counts = Counter(
        dict(in_range.with_entities(Lead.stage, func.count(Lead.id)).group_by(Lead.stage).all())
    )
    source_counts = dict(in_range.with_entities(Lead.lead_source, func.count(Lead.id)).group_by(Lead.lead_source).all())

    total = sum(stage_counts.values())
    converted = stage_counts[LeadStage.CONVERTED.value]
    lost = stage_counts[LeadStage.LOST.value]
    in_pipeline = sum(stage_counts[stage] for stage in OPEN_STAGE_VALUES)

    by_stage = [
        StageCount(stage=stage.value, count=stage_counts[stage.value])
        for stage in ALL_STAGES
        if stage_counts[stage.value]
    ]
    by_source = sorted(
        (SourceCount(source=source, count=count) for source, count in source_counts.items()),
        key=lambda row: row.count,
        reverse=True,
    )

    follow_ups_today = _filtered_query(db, LeadFilters(follow_up_today=True), today).count()
    overdue_follow_ups = _filtered_query(db, LeadFilters(overdue_follow_up=True), today).count()

    return LeadStats(
        total_inquiries=total,
        converted=converted,
        lost=lost,
        in_pipeline=in_pipeline,
        conversion_rate=_percentage(converted, total),
        lost_rate=_percentage(lost, total),
        by_source=by_source,
        by_stage=by_stage,
        follow_ups_today=follow_ups_today,
        overdue_follow_ups=overdue_follow_ups,
    )


def _shift_month(month_start: date, months: int) -> date:
    index = month_start.year * 12 + (month_start.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def get_monthly_trend(db: Session, months: int = 6, today: Optional[date] = None) -> list[MonthlyTrendRow]:
    if months < 1:
        raise ValidationFailed("months must be at least 1")
    today = today or utc_today()
    first_month = _shift_month(today.replace(day=1), -(months - 1))
    month_keys = [_shift_month(first_month, offset) for offset in range(months)]
    buckets = {key.strftime("%Y-%m"): {"inquiries": 0, "converted": 0} for key in month_keys}

    rows = (
        db.query(Lead.created_at, Lead.stage)
        .filter(Lead.created_at >= day_bounds(first_month)[0])
        .all()
    )
    for created_at, stage in rows:
        key = f"{created_at.year:04d}-{created_at.month:02d}"
        if key not in buckets:
            continue
        buckets[key]["inquiries"] += 1
        if stage == LeadStage.CONVERTED.value:
            buckets[key]["converted"] += 1

    return [
        MonthlyTrendRow(
            month=month.strftime("%b %Y"),
            month_sort=month.strftime("%Y-%m"),
            inquiries=buckets[month.strftime("%Y-%m")]["inquiries"],
            converted=buckets[month.strftime("%Y-%m")]["converted"],
        )
        for month in month_keys
    ]


def export_leads_csv(db: Session, filters: Optional[LeadFilters] = None, today: Optional[date] = None) -> str:
    """Render the filtered leads (newest first, capped) as CSV with every field quoted."""
    limit = get_settings().lead_export_limit
    result = list_leads(
        db,
        filters,
        LeadPagination(page=1, page_size=limit, sort_by="created_at", sort_order="desc"),
        today=today,
    )
    output = io.StringIO()
    output.write(",".join(CSV_HEADERS) + "\n")
    writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for lead in result.rows:
        writer.writerow(
            [
                lead.student_name,
                lead.parent_name or "",
                lead.phone_number,
                lead.email or "",
                lead.course_interested or "",
                lead.lead_source,
                lead.stage,
                lead.counselor_name or "",
                lead.follow_up_date.isoformat() if lead.follow_up_date else "",
                lead.remarks or "",
                lead.created_at.date().isoformat(),
            ]
        )
    return output.getvalue().rstrip("\n")
