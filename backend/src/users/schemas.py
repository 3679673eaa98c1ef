from pydantic import BaseModel, EmailStr
from datetime import datetime
from typing import Optional, List
import uuid
from src.organizations.schemas import OrganizationRead

class UserBase(BaseModel):
    email: EmailStr
    name: Optional[str] = None
    is_active: bool = True

class UserCreate(UserBase):
    password: str

class UserRead(UserBase):
    id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    organizations: List[OrganizationRead] = []
