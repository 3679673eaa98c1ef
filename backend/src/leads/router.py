from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlmodel import Session
from typing import List, Optional
import uuid

from src.database import get_session
from src.auth.router import get_current_user
from src.users.models import User
from src.courses.models import Course
from src.leads.schemas import (
    LeadCreate,
    LeadRead,
    LeadUpdate,
    LeadHistoryRead,
    CallOutcomeCreate,
    CallOutcomeResult,
    StatusChange,
    PersoPool,
    ExpirySweepResult,
    BulkAction,
    BulkRequest,
    BulkError,
    BulkResult
)
from src.leads.models import Lead, LeadStatus
from src.leads.exceptions import (
    LeadError,
    InvalidStateError,
    ConcurrentUpdateError,
    ClaimConflictError
)
from src.leads import lifecycle
from src.leads import service
from src.organizations.models import UserOrganizationLink, OrgRole, MANAGER_ROLES, SALES_ROLES
from src.organizations.router import get_org_link, require_role
from src.organizations import service as org_service

router = APIRouter(prefix="/organizations/{org_id}/leads", tags=["leads"])

def raise_http(error: LeadError):
    if isinstance(error, InvalidStateError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, (ConcurrentUpdateError, ClaimConflictError)):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))
    raise error

def get_lead_or_404(session: Session, lead_id: uuid.UUID, org_id: uuid.UUID) -> Lead:
    lead = service.get_lead(session, lead_id, org_id)
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")
    return lead

def check_course(session: Session, course_id: uuid.UUID, org_id: uuid.UUID) -> Course:
    course = session.get(Course, course_id)
    if not course or course.organization_id != org_id:
        raise HTTPException(status_code=400, detail="Course not found in this organization")
    return course

def check_assignee(session: Session, user_id: uuid.UUID, org_id: uuid.UUID) -> None:
    if not org_service.get_member_link(session, org_id, user_id):
        raise HTTPException(
            status_code=400,
            detail="Assigned user is not a member of this organization"
        )

def require_pipeline_access(link: UserOrganizationLink, lead: Lead) -> None:
    """Admins work every lead; a commercial only the leads assigned to them."""
    if link.role in MANAGER_ROLES:
        return
    if link.role != OrgRole.COMMERCIAL or lead.assigned_to_id != link.user_id:
        raise HTTPException(
            status_code=403,
            detail="Only the assigned commercial or an admin can work this lead"
        )

@router.post("/", response_model=LeadRead)
def create_lead(
    org_id: uuid.UUID,
    lead_create: LeadCreate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    get_org_link(session, org_id, current_user.id)
    check_course(session, lead_create.course_id, org_id)
    if lead_create.assigned_to_id:
        check_assignee(session, lead_create.assigned_to_id, org_id)

    lead = service.create_lead(session, lead_create, org_id, current_user.id)
    return service.present_lead(lead)

@router.get("/", response_model=List[LeadRead])
def read_leads(
    org_id: uuid.UUID,
    skip: int = 0,
    limit: int = 100,
    status: Optional[LeadStatus] = Query(None),
    assigned_to_id: Optional[uuid.UUID] = Query(None),
    course_id: Optional[uuid.UUID] = Query(None),
    is_target: Optional[bool] = Query(None),
    search: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    get_org_link(session, org_id, current_user.id)
    leads = service.get_leads(session, org_id, skip, limit, status, assigned_to_id, course_id, is_target, search)
    return [service.present_lead(lead) for lead in leads]

@router.get("/perso", response_model=PersoPool)
def read_perso_pool(
    org_id: uuid.UUID,
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    search: Optional[str] = Query(None),
    course_id: Optional[uuid.UUID] = Query(None),
    assigned_to_id: Optional[uuid.UUID] = Query(None),
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """PERSO leads of every commercial, so that anyone in sales can claim them."""
    link = get_org_link(session, org_id, current_user.id)
    require_role(link, SALES_ROLES, "Only commercials and admins can browse PERSO leads")
    return service.get_perso_pool(session, org_id, page, page_size, search, course_id, assigned_to_id)

@router.post("/expire-stale", response_model=ExpirySweepResult)
def expire_stale_leads(
    org_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    link = get_org_link(session, org_id, current_user.id)
    require_role(link, MANAGER_ROLES, "Only Owners and Admins can run the expiry sweep")
    expired = service.expire_stale_leads(session, org_id, current_user.id)
    return ExpirySweepResult(expired=len(expired), lead_ids=expired)

@router.post("/bulk", response_model=BulkResult)
def bulk_update_leads(
    org_id: uuid.UUID,
    bulk: BulkRequest,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """Assign or move many leads at once. Leads that fail are reported, not fatal."""
    link = get_org_link(session, org_id, current_user.id)
    require_role(link, MANAGER_ROLES, "Only Owners and Admins can run bulk operations")

    if bulk.action == BulkAction.ASSIGN:
        if bulk.distribute:
            assignee_ids = org_service.get_member_ids_by_role(session, org_id, [OrgRole.COMMERCIAL])
            if not assignee_ids:
                raise HTTPException(status_code=400, detail="No commercials available for assignment")
        elif bulk.assigned_to_id:
            check_assignee(session, bulk.assigned_to_id, org_id)
            assignee_ids = [bulk.assigned_to_id]
        else:
            raise HTTPException(status_code=400, detail="Missing assignment data")
        errors = service.bulk_assign(session, org_id, bulk.lead_ids, assignee_ids, current_user.id)
    else:
        if bulk.status is None:
            raise HTTPException(status_code=400, detail="Missing status value")
        errors = service.bulk_change_status(
            session, org_id, bulk.lead_ids, bulk.status, bulk.lost_reason, current_user.id
        )

    return BulkResult(
        action=bulk.action,
        success_count=len(bulk.lead_ids) - len(errors),
        total_requested=len(bulk.lead_ids),
        errors=[BulkError(lead_id=lead_id, error=error) for lead_id, error in errors]
    )

@router.get("/{lead_id}", response_model=LeadRead)
def read_lead(
    org_id: uuid.UUID,
    lead_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    get_org_link(session, org_id, current_user.id)
    return service.present_lead(get_lead_or_404(session, lead_id, org_id))

@router.patch("/{lead_id}", response_model=LeadRead)
def update_lead(
    org_id: uuid.UUID,
    lead_id: uuid.UUID,
    lead_update: LeadUpdate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    link = get_org_link(session, org_id, current_user.id)
    require_role(link, SALES_ROLES, "Marketing members cannot edit leads")
    lead = get_lead_or_404(session, lead_id, org_id)

    # Permission Check for Assignment
    # An explicit null unassigns the lead, which is a reassignment too
    if "assigned_to_id" in lead_update.model_fields_set and lead_update.assigned_to_id != lead.assigned_to_id:
        require_role(link, MANAGER_ROLES, "Only Owners and Admins can assign leads")
        if lead_update.assigned_to_id is not None:
            check_assignee(session, lead_update.assigned_to_id, org_id)
    if lead_update.course_id is not None:
        check_course(session, lead_update.course_id, org_id)

    try:
        lead = service.update_lead(session, lead, lead_update, current_user.id)
    except LeadError as error:
        raise_http(error)
    return service.present_lead(lead)

@router.get("/{lead_id}/history", response_model=List[LeadHistoryRead])
def get_lead_history(
    org_id: uuid.UUID,
    lead_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    """Get history of all actions performed on this lead."""
    get_org_link(session, org_id, current_user.id)
    get_lead_or_404(session, lead_id, org_id)
    return service.get_lead_history(session, lead_id)

@router.post("/{lead_id}/calls", response_model=CallOutcomeResult)
def log_call_outcome(
    org_id: uuid.UUID,
    lead_id: uuid.UUID,
    call: CallOutcomeCreate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    link = get_org_link(session, org_id, current_user.id)
    lead = get_lead_or_404(session, lead_id, org_id)
    require_pipeline_access(link, lead)

    try:
        lead, transition = service.log_call_outcome(session, lead, call.outcome, call.notes, current_user.id)
    except LeadError as error:
        raise_http(error)

    return CallOutcomeResult(
        lead=service.present_lead(lead),
        attempt=transition.attempt,
        became_perso=transition.became_perso,
        attempts_left=max(lifecycle.MAX_CALL_ATTEMPTS - transition.attempt, 0)
    )

@router.post("/{lead_id}/status", response_model=LeadRead)
def change_status(
    org_id: uuid.UUID,
    lead_id: uuid.UUID,
    status_change: StatusChange,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    link = get_org_link(session, org_id, current_user.id)
    lead = get_lead_or_404(session, lead_id, org_id)
    require_pipeline_access(link, lead)

    try:
        lead = service.change_status(session, lead, status_change, current_user.id)
    except LeadError as error:
        raise_http(error)
    return service.present_lead(lead)

@router.post("/{lead_id}/enroll", response_model=LeadRead)
def enroll_lead(
    org_id: uuid.UUID,
    lead_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    link = get_org_link(session, org_id, current_user.id)
    lead = get_lead_or_404(session, lead_id, org_id)
    require_pipeline_access(link, lead)

    course = session.get(Course, lead.course_id)
    try:
        lead = service.enroll_lead(session, lead, current_user.id, course.name if course else None)
    except LeadError as error:
        raise_http(error)
    return service.present_lead(lead)

@router.post("/{lead_id}/claim", response_model=LeadRead)
def claim_lead(
    org_id: uuid.UUID,
    lead_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    link = get_org_link(session, org_id, current_user.id)
    require_role(link, SALES_ROLES, "Only commercials and admins can claim leads")
    lead = get_lead_or_404(session, lead_id, org_id)

    try:
        lead = service.claim_lead(session, lead, current_user.id)
    except LeadError as error:
        raise_http(error)
    return service.present_lead(lead)
