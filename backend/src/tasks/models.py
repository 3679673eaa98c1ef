from typing import Optional
from sqlmodel import SQLModel, Field
import uuid
from datetime import datetime, timezone

class Task(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    organization_id: uuid.UUID = Field(foreign_key="organization.id", index=True)
    lead_id: uuid.UUID = Field(foreign_key="lead.id", index=True)
    assigned_to_id: Optional[uuid.UUID] = Field(default=None, foreign_key="user.id")
    title: str
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    completed: bool = Field(default=False)
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
