from pydantic import BaseModel
from datetime import datetime
import uuid
from typing import Optional, List
from src.leads.models import LeadStatus
from src.leads.schemas import LeadRead
from src.sanity.duplicates import DuplicateSeverity

class DuplicateMember(BaseModel):
    id: uuid.UUID
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    course_id: uuid.UUID
    status: LeadStatus
    contacted: bool
    enrolled: bool
    enrolled_at: Optional[datetime] = None
    call_attempts: int
    assigned_to_id: Optional[uuid.UUID] = None
    created_at: datetime

class DuplicateGroupRead(BaseModel):
    key: str
    normalized_name: str
    course_key: str
    course_id: uuid.UUID
    course_name: Optional[str] = None
    count: int
    enrolled_count: int
    severity: DuplicateSeverity
    recommended_primary_id: uuid.UUID
    recommendation: str
    leads: List[DuplicateMember]

class DuplicateStats(BaseModel):
    total_groups: int
    affected_leads: int
    groups_with_enrolled: int
    potential_double_payments: int

class DuplicateReport(BaseModel):
    stats: DuplicateStats
    duplicates: List[DuplicateGroupRead]

class MergeRequest(BaseModel):
    primary_id: uuid.UUID
    duplicate_ids: List[uuid.UUID]

class MergeResult(BaseModel):
    merged_lead: LeadRead
    deleted_ids: List[uuid.UUID]
