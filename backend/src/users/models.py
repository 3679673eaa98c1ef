from typing import Optional, List
from sqlmodel import SQLModel, Field, Relationship
import uuid
from datetime import datetime, timezone

# Importing 'src.organizations.models' here is safe because that file
# only imports 'src.users.models' inside TYPE_CHECKING blocks.
from src.organizations.models import UserOrganizationLink, Organization

class User(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    email: str = Field(unique=True, index=True)
    hashed_password: str

    name: Optional[str] = None
    is_active: bool = Field(default=True)

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Relationships
    organizations: List[Organization] = Relationship(back_populates="users", link_model=UserOrganizationLink)
