"""Lead schemas for the admissions pipeline."""

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


LeadSource = Literal["walk-in", "website", "referral", "social_media", "other"]
LeadStageName = Literal["inquiry", "follow_up", "demo", "converted", "lost"]
SortOrder = Literal["asc", "desc"]


class LeadBase(BaseModel):
    student_name: str
    parent_name: Optional[str] = None
    phone_number: str
    email: Optional[str] = None
    course_interested: Optional[str] = None
    lead_source: LeadSource = "walk-in"
    assigned_counselor_id: Optional[int] = None
    follow_up_date: Optional[date] = None
    remarks: Optional[str] = None


class LeadCreate(LeadBase):
    """Schema for lead intake; stage always starts at inquiry."""


class LeadUpdate(BaseModel):
    """Partial update of the descriptive lead fields. Stage changes use their own endpoints."""

    student_name: Optional[str] = None
    parent_name: Optional[str] = None
    phone_number: Optional[str] = None
    email: Optional[str] = None
    course_interested: Optional[str] = None
    lead_source: Optional[LeadSource] = None
    remarks: Optional[str] = None


class LeadRead(LeadBase):
    id: int
    stage: LeadStageName
    counselor_name: Optional[str] = None
    converted_student_id: Optional[int] = None
    lost_reason: Optional[str] = None
    stage_changed_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LeadStageUpdate(BaseModel):
    stage: LeadStageName


class LeadCounselorUpdate(BaseModel):
    counselor_id: Optional[int] = None


class LeadFollowUpUpdate(BaseModel):
    follow_up_date: Optional[date] = None


class LeadConvertRequest(BaseModel):
    email: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    address: Optional[str] = None


class LeadConvertResponse(BaseModel):
    student_id: int
    lead: LeadRead


class LeadLostRequest(BaseModel):
    reason: Optional[str] = None


class LeadBulkStageUpdate(BaseModel):
    ids: list[int]
    stage: LeadStageName


class LeadBulkCounselorUpdate(BaseModel):
    ids: list[int]
    counselor_id: Optional[int] = None


class LeadFilters(BaseModel):
    stage: Optional[LeadStageName] = None
    counselor_id: Optional[int] = None
    lead_source: Optional[LeadSource] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    search: Optional[str] = None
    follow_up_today: bool = False
    overdue_follow_up: bool = False


class LeadPagination(BaseModel):
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=10, ge=1, le=1000)
    sort_by: str = "created_at"
    sort_order: SortOrder = "desc"


class LeadListResult(BaseModel):
    rows: list[LeadRead]
    total: int
    page: int
    page_size: int
    total_pages: int


class DuplicatePhoneResult(BaseModel):
    exists: bool
    type: Optional[Literal["lead", "student"]] = None
    name: Optional[str] = None


class SourceCount(BaseModel):
    source: LeadSource
    count: int


class StageCount(BaseModel):
    stage: LeadStageName
    count: int


class LeadStats(BaseModel):
    total_inquiries: int
    converted: int
    lost: int
    in_pipeline: int
    conversion_rate: float
    lost_rate: float
    by_source: list[SourceCount]
    by_stage: list[StageCount]
    follow_ups_today: int
    overdue_follow_ups: int


class MonthlyTrendRow(BaseModel):
    month: str
    month_sort: str
    inquiries: int
    converted: int


class LeadFollowUp(BaseModel):
    id: int
    student_name: str
    parent_name: Optional[str] = None
    phone_number: str
    course_interested: Optional[str] = None
    stage: LeadStageName
    follow_up_date: Optional[date] = None
    remarks: Optional[str] = None
    counselor_name: Optional[str] = None
    days_overdue: int = 0
