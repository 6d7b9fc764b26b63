"""Recording and querying notification attempts."""

from datetime import date, timedelta
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from prepx.app.core.errors import DuplicateRecord, NotFound, ValidationFailed
from prepx.app.core.time import day_bounds, utc_now, utc_today
from prepx.app.models.communication_log import DELIVERY_STATUSES, MESSAGE_TYPES, CommunicationLog
from prepx.app.schemas.notification import CommunicationLogFilters, CommunicationLogStats


def make_dedupe_key(student_id: int, message_type: str, related_entity_id: Optional[int], day: date) -> str:
    entity = related_entity_id if related_entity_id is not None else "-"
    return f"{student_id}:{message_type}:{entity}:{day.isoformat()}"


def create_log(
    db: Session,
    *,
    message_type: str,
    message_content: str,
    student_id: Optional[int] = None,
    parent_id: Optional[int] = None,
    triggered_by: str = "automatic",
    related_entity_id: Optional[int] = None,
    related_entity_type: Optional[str] = None,
    dedupe_key: Optional[str] = None,
) -> CommunicationLog:
    """Insert a pending log row before the provider is called.

    Raises DuplicateRecord when another attempt already holds ``dedupe_key``.
    """
    if message_type not in MESSAGE_TYPES:
        raise ValidationFailed(f"Unknown message type: {message_type}")
    log = CommunicationLog(
        student_id=student_id,
        parent_id=parent_id,
        message_type=message_type,
        message_content=message_content,
        delivery_status="pending",
        triggered_by=triggered_by,
        related_entity_id=related_entity_id,
        related_entity_type=related_entity_type,
        dedupe_key=dedupe_key,
    )
    db.add(log)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if dedupe_key is not None:
            raise DuplicateRecord("Already sent today") from exc
        raise
    db.refresh(log)
    return log


def update_status(
    db: Session,
    log_id: int,
    status: str,
    error_message: Optional[str] = None,
    provider_response: Optional[Any] = None,
) -> CommunicationLog:
    if status not in DELIVERY_STATUSES:
        raise ValidationFailed(f"Unknown delivery status: {status}")
    log = get_log(db, log_id)
    log.delivery_status = status
    if status == "sent":
        log.sent_at = utc_now()
    if status == "failed":
        # A failed attempt must not block the next scheduled run
        log.dedupe_key = None
    if error_message:
        log.error_message = error_message
    if provider_response:
        log.provider_response = provider_response
    db.commit()
    db.refresh(log)
    return log


def get_log(db: Session, log_id: int) -> CommunicationLog:
    log = db.query(CommunicationLog).filter(CommunicationLog.id == log_id).first()
    if not log:
        raise NotFound("Communication log not found")
    return log


def _filtered_query(db: Session, filters: Optional[CommunicationLogFilters]):
    query = db.query(CommunicationLog)
    if filters is None:
        return query
    if filters.student_id is not None:
        query = query.filter(CommunicationLog.student_id == filters.student_id)
    if filters.parent_id is not None:
        query = query.filter(CommunicationLog.parent_id == filters.parent_id)
    if filters.message_type:
        query = query.filter(CommunicationLog.message_type == filters.message_type)
    if filters.delivery_status:
        query = query.filter(CommunicationLog.delivery_status == filters.delivery_status)
    if filters.triggered_by:
        query = query.filter(CommunicationLog.triggered_by == filters.triggered_by)
    if filters.date_from:
        query = query.filter(CommunicationLog.created_at >= day_bounds(filters.date_from)[0])
    if filters.date_to:
        query = query.filter(CommunicationLog.created_at < day_bounds(filters.date_to)[1])
    return query


def list_logs(
    db: Session,
    filters: Optional[CommunicationLogFilters] = None,
    skip: int = 0,
    limit: int = 100,
) -> list[CommunicationLog]:
    return (
        _filtered_query(db, filters)
        .order_by(CommunicationLog.created_at.desc(), CommunicationLog.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def was_sent_today(
    db: Session,
    student_id: int,
    message_type: str,
    related_entity_id: Optional[int] = None,
    today: Optional[date] = None,
) -> bool:
    """True if a pending or sent attempt for this key exists today. Failed attempts do not count."""
    start, end = day_bounds(today or utc_today())
    query = db.query(func.count(CommunicationLog.id)).filter(
        CommunicationLog.student_id == student_id,
        CommunicationLog.message_type == message_type,
        CommunicationLog.delivery_status != "failed",
        CommunicationLog.created_at >= start,
        CommunicationLog.created_at < end,
    )
    if related_entity_id is not None:
        query = query.filter(CommunicationLog.related_entity_id == related_entity_id)
    return (query.scalar() or 0) > 0


def get_stats(db: Session, date_from: Optional[date] = None, date_to: Optional[date] = None) -> CommunicationLogStats:
    filters = CommunicationLogFilters(date_from=date_from, date_to=date_to)
    rows = (
        _filtered_query(db, filters)
        .with_entities(CommunicationLog.delivery_status, CommunicationLog.message_type, func.count(CommunicationLog.id))
        .group_by(CommunicationLog.delivery_status, CommunicationLog.message_type)
        .all()
    )
    by_status = {status: 0 for status in DELIVERY_STATUSES}
    by_type = {message_type: 0 for message_type in MESSAGE_TYPES}
    for status, message_type, count in rows:
        by_status[status] = by_status.get(status, 0) + count
        if message_type in by_type:
            by_type[message_type] += count
    return CommunicationLogStats(
        total=sum(by_status.values()),
        sent=by_status["sent"],
        failed=by_status["failed"],
        pending=by_status["pending"],
        by_type=by_type,
    )


def delete_older_than(db: Session, days: int) -> int:
    """Retention cleanup; returns how many rows were removed."""
    if days < 0:
        raise ValidationFailed("days must not be negative")
    cutoff = utc_now() - timedelta(days=days)
    deleted = (
        db.query(CommunicationLog)
        .filter(CommunicationLog.created_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted
