import logging
from typing import Optional, List
from sqlmodel import Session, select
import uuid

from src.database import atomic
from src.organizations.models import Organization, UserOrganizationLink, OrgRole
from src.organizations.schemas import OrganizationCreate, MemberRead
from src.users.models import User

logger = logging.getLogger(__name__)

def create_organization(session: Session, org_create: OrganizationCreate, owner_id: uuid.UUID) -> Organization:
    """Create an academy; its creator becomes the single Owner."""
    db_org = Organization(**org_create.model_dump())
    with atomic(session):
        session.add(db_org)
        session.flush()
        session.add(UserOrganizationLink(user_id=owner_id, organization_id=db_org.id, role=OrgRole.OWNER))

    session.refresh(db_org)
    logger.info("Organization %s created by %s", db_org.id, owner_id)
    return db_org

def get_organization(session: Session, org_id: uuid.UUID) -> Optional[Organization]:
    return session.get(Organization, org_id)

def get_user_organizations(session: Session, user_id: uuid.UUID) -> List[Organization]:
    return session.exec(
        select(Organization)
        .join(UserOrganizationLink, UserOrganizationLink.organization_id == Organization.id)
        .where(UserOrganizationLink.user_id == user_id)
        .order_by(Organization.name)
    ).all()

def get_member_link(session: Session, org_id: uuid.UUID, user_id: uuid.UUID) -> Optional[UserOrganizationLink]:
    return session.get(UserOrganizationLink, (user_id, org_id))

def add_member(session: Session, org_id: uuid.UUID, user_id: uuid.UUID, role: OrgRole = OrgRole.COMMERCIAL) -> UserOrganizationLink:
    link = UserOrganizationLink(user_id=user_id, organization_id=org_id, role=role)
    with atomic(session):
        session.add(link)
    session.refresh(link)
    logger.info("User %s joined organization %s as %s", user_id, org_id, role.value)
    return link

def update_member_role(session: Session, link: UserOrganizationLink, role: OrgRole) -> UserOrganizationLink:
    previous = link.role
    link.role = role
    with atomic(session):
        session.add(link)
    session.refresh(link)
    logger.info("User %s role in organization %s: %s -> %s", link.user_id, link.organization_id, previous.value, role.value)
    return link

def get_member_ids_by_role(session: Session, org_id: uuid.UUID, roles: List[OrgRole]) -> List[uuid.UUID]:
    return session.exec(
        select(UserOrganizationLink.user_id)
        .where(UserOrganizationLink.organization_id == org_id)
        .where(UserOrganizationLink.role.in_(roles))
        .order_by(UserOrganizationLink.joined_at)
    ).all()

def to_member_read(user: User, link: UserOrganizationLink) -> MemberRead:
    return MemberRead(id=user.id, email=user.email, name=user.name, role=link.role, joined_at=link.joined_at)

def get_members(session: Session, org_id: uuid.UUID) -> List[MemberRead]:
    rows = session.exec(
        select(User, UserOrganizationLink)
        .join(UserOrganizationLink, UserOrganizationLink.user_id == User.id)
        .where(UserOrganizationLink.organization_id == org_id)
        .order_by(UserOrganizationLink.joined_at)
    ).all()
    return [to_member_read(user, link) for user, link in rows]
