"""Lead pipeline endpoints."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from prepx.app.core.time import utc_today
from prepx.app.db.session import get_db
from prepx.app.dependencies.auth import get_current_user
from prepx.app.models.user import User
from prepx.app.schemas.lead import (
    DuplicatePhoneResult,
    LeadBulkCounselorUpdate,
    LeadBulkStageUpdate,
    LeadConvertRequest,
    LeadConvertResponse,
    LeadCounselorUpdate,
    LeadCreate,
    LeadFilters,
    LeadFollowUp,
    LeadFollowUpUpdate,
    LeadListResult,
    LeadLostRequest,
    LeadPagination,
    LeadRead,
    LeadSource,
    LeadStageName,
    LeadStageUpdate,
    LeadStats,
    LeadUpdate,
    MonthlyTrendRow,
    SortOrder,
    SourceCount,
)
from prepx.app.services import leads as lead_service

router = APIRouter(prefix="/leads", tags=["leads"])


def lead_filters(
    stage: Optional[LeadStageName] = None,
    counselor_id: Optional[int] = None,
    lead_source: Optional[LeadSource] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    search: Optional[str] = None,
    follow_up_today: bool = False,
    overdue_follow_up: bool = False,
) -> LeadFilters:
    return LeadFilters(
        stage=stage,
        counselor_id=counselor_id,
        lead_source=lead_source,
        date_from=date_from,
        date_to=date_to,
        search=search,
        follow_up_today=follow_up_today,
        overdue_follow_up=overdue_follow_up,
    )


@router.post("/", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(lead_in: LeadCreate, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return lead_service.create_lead(db, lead_in)


@router.get("/", response_model=LeadListResult)
def list_leads(
    filters: LeadFilters = Depends(lead_filters),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    sort_by: str = "created_at",
    sort_order: SortOrder = "desc",
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    pagination = LeadPagination(page=page, page_size=page_size, sort_by=sort_by, sort_order=sort_order)
    return lead_service.list_leads(db, filters, pagination)


@router.get("/duplicate-check", response_model=DuplicatePhoneResult)
def duplicate_check(
    phone: str,
    exclude_lead_id: Optional[int] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return lead_service.check_duplicate_phone(db, phone, exclude_lead_id=exclude_lead_id)


@router.get("/stats", response_model=LeadStats)
def lead_stats(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return lead_service.get_lead_stats(db, date_from=date_from, date_to=date_to)


@router.get("/trend", response_model=list[MonthlyTrendRow])
def monthly_trend(
    months: int = Query(6, ge=1, le=36),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return lead_service.get_monthly_trend(db, months=months)


@router.get("/export")
def export_leads(
    filters: LeadFilters = Depends(lead_filters),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    content = lead_service.export_leads_csv(db, filters)
    filename = f"leads_{utc_today().isoformat()}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/kanban", response_model=dict[str, list[LeadRead]])
def kanban_board(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return lead_service.get_leads_by_stage(db)


@router.get("/follow-ups/today", response_model=list[LeadFollowUp])
def todays_follow_ups(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return lead_service.get_todays_follow_ups(db)


@router.get("/follow-ups/overdue", response_model=list[LeadFollowUp])
def overdue_follow_ups(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return lead_service.get_overdue_follow_ups(db)


@router.get("/by-source", response_model=list[SourceCount])
def leads_by_source(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return lead_service.get_leads_by_source(db)


@router.post("/bulk/stage", response_model=list[LeadRead])
def bulk_stage(
    payload: LeadBulkStageUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return lead_service.bulk_update_stage(db, payload.ids, payload.stage, current_user)


@router.post("/bulk/counselor")
def bulk_counselor(
    payload: LeadBulkCounselorUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    updated = lead_service.bulk_assign_counselor(db, payload.ids, payload.counselor_id)
    return {"updated": updated}


@router.get("/{lead_id}", response_model=LeadRead)
def get_lead(lead_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return lead_service.get_lead(db, lead_id)


@router.put("/{lead_id}", response_model=LeadRead)
def update_lead(
    lead_id: int,
    lead_in: LeadUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return lead_service.update_lead(db, lead_id, lead_in)


@router.delete("/{lead_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_lead(lead_id: int, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    lead_service.delete_lead(db, lead_id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/{lead_id}/stage", response_model=LeadRead)
def update_stage(
    lead_id: int,
    payload: LeadStageUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return lead_service.update_lead_stage(db, lead_id, payload.stage, current_user)


@router.patch("/{lead_id}/counselor", response_model=LeadRead)
def assign_counselor(
    lead_id: int,
    payload: LeadCounselorUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return lead_service.assign_counselor(db, lead_id, payload.counselor_id)


@router.patch("/{lead_id}/follow-up", response_model=LeadRead)
def set_follow_up(
    lead_id: int,
    payload: LeadFollowUpUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return lead_service.set_follow_up_date(db, lead_id, payload.follow_up_date)


@router.post("/{lead_id}/convert", response_model=LeadConvertResponse)
def convert_lead(
    lead_id: int,
    payload: LeadConvertRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    student_id, lead = lead_service.convert_lead_to_student(db, lead_id, payload, current_user)
    return LeadConvertResponse(student_id=student_id, lead=LeadRead.model_validate(lead))


@router.post("/{lead_id}/lost", response_model=LeadRead)
def mark_lost(
    lead_id: int,
    payload: LeadLostRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return lead_service.mark_lead_as_lost(db, lead_id, payload.reason, current_user)
