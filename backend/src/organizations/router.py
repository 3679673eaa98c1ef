from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session
from typing import List
import uuid

from src.database import get_session
from src.organizations.schemas import (
    OrganizationCreate,
    OrganizationRead,
    MemberCreate,
    MemberRoleUpdate,
    MemberRead
)
from src.organizations import service
from src.auth.router import get_current_user
from src.users.models import User
from src.users import service as users_service
from src.organizations.models import UserOrganizationLink, OrgRole, MANAGER_ROLES

router = APIRouter(prefix="/organizations", tags=["organizations"])

def get_org_link(session: Session, org_id: uuid.UUID, user_id: uuid.UUID) -> UserOrganizationLink:
    link = service.get_member_link(session, org_id, user_id)
    if not link:
        raise HTTPException(status_code=403, detail="Not a member of this organization")
    return link

def require_role(link: UserOrganizationLink, roles: List[OrgRole], detail: str) -> None:
    if link.role not in roles:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)

@router.post("/", response_model=OrganizationRead)
def create_organization(
    org_create: OrganizationCreate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    return service.create_organization(session, org_create, current_user.id)

@router.get("/", response_model=List[OrganizationRead])
def read_organizations(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    return service.get_user_organizations(session, current_user.id)

@router.get("/{org_id}", response_model=OrganizationRead)
def read_organization(
    org_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    org = service.get_organization(session, org_id)
    if not org:
        raise HTTPException(status_code=404, detail="Organization not found")
    get_org_link(session, org_id, current_user.id)
    return org

@router.post("/{org_id}/members", response_model=MemberRead)
def add_member(
    org_id: uuid.UUID,
    member: MemberCreate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    link = get_org_link(session, org_id, current_user.id)
    require_role(link, MANAGER_ROLES, "Not enough permissions to add members")

    if member.role == OrgRole.OWNER:
        raise HTTPException(status_code=400, detail="An organization has a single Owner")

    user = users_service.get_user(session, member.user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    if service.get_member_link(session, org_id, member.user_id):
        raise HTTPException(status_code=400, detail="User is already a member of this organization")

    new_link = service.add_member(session, org_id, member.user_id, member.role)
    return service.to_member_read(user, new_link)

@router.put("/{org_id}/members/{user_id}", response_model=MemberRead)
def update_member_role(
    org_id: uuid.UUID,
    user_id: uuid.UUID,
    role_update: MemberRoleUpdate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    # 1. Check requester permissions
    requester_link = get_org_link(session, org_id, current_user.id)
    require_role(requester_link, MANAGER_ROLES, "Not enough permissions")

    # 2. Check target member
    target_link = service.get_member_link(session, org_id, user_id)
    if not target_link:
        raise HTTPException(status_code=404, detail="Member not found")

    # 3. Hierarchy check
    if requester_link.role == OrgRole.ADMIN:
        if target_link.role in MANAGER_ROLES:
            raise HTTPException(status_code=403, detail="Admins cannot modify other Admins or Owners")
        if role_update.role in MANAGER_ROLES:
            raise HTTPException(status_code=403, detail="Admins cannot promote to Admin/Owner")

    if target_link.role == OrgRole.OWNER or role_update.role == OrgRole.OWNER:
        raise HTTPException(status_code=400, detail="Cannot change ownership")

    link = service.update_member_role(session, target_link, role_update.role)
    return service.to_member_read(users_service.get_user(session, user_id), link)

@router.get("/{org_id}/members", response_model=List[MemberRead])
def read_members(
    org_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    get_org_link(session, org_id, current_user.id)
    return service.get_members(session, org_id)
