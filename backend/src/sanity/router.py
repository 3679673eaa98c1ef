from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session
from typing import Optional
import uuid

from src.database import get_session
from src.auth.router import get_current_user
from src.users.models import User
from src.leads.exceptions import InvalidMergeError, MergeConflictError
from src.leads.service import present_lead
from src.organizations.models import MANAGER_ROLES
from src.organizations.router import get_org_link, require_role
from src.sanity.duplicates import DuplicateGroup, DuplicateSeverity
from src.sanity.schemas import (
    DuplicateGroupRead,
    DuplicateMember,
    DuplicateReport,
    MergeRequest,
    MergeResult
)
from src.sanity import service

router = APIRouter(prefix="/organizations/{org_id}/sanity", tags=["sanity"])

def to_group_read(group: DuplicateGroup) -> DuplicateGroupRead:
    return DuplicateGroupRead(
        key=group.key,
        normalized_name=group.normalized_name,
        course_key=group.course_key,
        course_id=group.course_id,
        course_name=group.course_name,
        count=group.count,
        enrolled_count=group.enrolled_count,
        severity=group.severity,
        recommended_primary_id=group.recommended_primary_id,
        recommendation=group.recommendation,
        leads=[DuplicateMember.model_validate(member, from_attributes=True) for member in group.members]
    )

@router.get("/duplicates", response_model=DuplicateReport)
def find_duplicates(
    org_id: uuid.UUID,
    course_id: Optional[uuid.UUID] = Query(None),
    severity: Optional[DuplicateSeverity] = Query(None),
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """Leads that look like the same person asking for the same course."""
    link = get_org_link(session, org_id, current_user.id)
    require_role(link, MANAGER_ROLES, "Only Owners and Admins can run sanity checks")

    groups, stats = service.find_duplicates(session, org_id, course_id, severity)
    return DuplicateReport(stats=stats, duplicates=[to_group_read(group) for group in groups])

@router.post("/merge", response_model=MergeResult)
def merge_leads(
    org_id: uuid.UUID,
    merge: MergeRequest,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    link = get_org_link(session, org_id, current_user.id)
    require_role(link, MANAGER_ROLES, "Only Owners and Admins can merge leads")

    try:
        lead = service.merge_leads(session, org_id, merge.primary_id, merge.duplicate_ids, current_user.id)
    except InvalidMergeError as error:
        raise HTTPException(status_code=400, detail=str(error))
    except MergeConflictError as error:
        raise HTTPException(status_code=409, detail=str(error))

    return MergeResult(merged_lead=present_lead(lead), deleted_ids=merge.duplicate_ids)
