from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from enum import Enum
import uuid
from typing import Optional, List
from src.leads.models import LeadStatus, CallOutcome
from src.leads.history_models import LeadAction

class LeadBase(BaseModel):
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    source: Optional[str] = None
    notes: Optional[str] = None
    course_id: uuid.UUID
    assigned_to_id: Optional[uuid.UUID] = None
    is_target: bool = False
    target_note: Optional[str] = None

class LeadCreate(LeadBase):
    pass

class LeadUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    source: Optional[str] = None
    notes: Optional[str] = None
    course_id: Optional[uuid.UUID] = None
    assigned_to_id: Optional[uuid.UUID] = None
    is_target: Optional[bool] = None
    target_note: Optional[str] = None

    @field_validator("name", "course_id", "is_target")
    @classmethod
    def reject_null(cls, value):
        # Omit the field to keep it; these columns cannot be cleared
        if value is None:
            raise ValueError("may be omitted but not null")
        return value

class LeadRead(LeadBase):
    id: uuid.UUID
    organization_id: uuid.UUID
    created_by_id: Optional[uuid.UUID] = None
    status: LeadStatus
    contacted: bool
    contacted_at: Optional[datetime] = None
    call_outcome: Optional[CallOutcome] = None
    outcome_notes: Optional[str] = None
    call_attempts: int
    first_attempt_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    enrolled: bool
    enrolled_at: Optional[datetime] = None
    lost_reason: Optional[str] = None
    lost_at: Optional[datetime] = None
    version: int
    created_at: datetime
    updated_at: datetime

class CallOutcomeCreate(BaseModel):
    outcome: CallOutcome
    notes: Optional[str] = None

class CallOutcomeResult(BaseModel):
    lead: LeadRead
    attempt: int
    became_perso: bool
    attempts_left: int

class StatusChange(BaseModel):
    status: LeadStatus
    lost_reason: Optional[str] = None

class LeadHistoryRead(BaseModel):
    id: uuid.UUID
    lead_id: uuid.UUID
    action: LeadAction
    performed_by_id: Optional[uuid.UUID] = None
    description: str
    old_value: Optional[dict] = None
    new_value: Optional[dict] = None
    created_at: datetime

class Pagination(BaseModel):
    page: int
    page_size: int
    total_count: int
    total_pages: int
    has_more: bool

class CommercialPersoCount(BaseModel):
    id: uuid.UUID
    name: Optional[str] = None
    count: int

class PersoPool(BaseModel):
    leads: List[LeadRead]
    pagination: Pagination
    commercials: List[CommercialPersoCount] = Field(default_factory=list)

class ExpirySweepResult(BaseModel):
    expired: int
    lead_ids: List[uuid.UUID]

class BulkAction(str, Enum):
    ASSIGN = "assign"
    STATUS = "status"

class BulkRequest(BaseModel):
    action: BulkAction
    lead_ids: List[uuid.UUID] = Field(min_length=1)
    # assign: one target user, or distribute round-robin across commercials
    assigned_to_id: Optional[uuid.UUID] = None
    distribute: bool = False
    # status
    status: Optional[LeadStatus] = None
    lost_reason: Optional[str] = None

class BulkError(BaseModel):
    lead_id: uuid.UUID
    error: str

class BulkResult(BaseModel):
    action: BulkAction
    success_count: int
    total_requested: int
    errors: List[BulkError] = Field(default_factory=list)
