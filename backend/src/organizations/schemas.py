from pydantic import BaseModel
from datetime import datetime
import uuid
from typing import Optional

from src.organizations.models import OrgRole

class OrganizationBase(BaseModel):
    name: str
    description: Optional[str] = None

class OrganizationCreate(OrganizationBase):
    pass

class OrganizationRead(OrganizationBase):
    id: uuid.UUID
    created_at: datetime

class MemberCreate(BaseModel):
    user_id: uuid.UUID
    role: OrgRole = OrgRole.COMMERCIAL

class MemberRoleUpdate(BaseModel):
    role: OrgRole

class MemberRead(BaseModel):
    id: uuid.UUID
    email: str
    name: Optional[str] = None
    role: OrgRole
    joined_at: datetime
