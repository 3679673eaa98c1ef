from typing import Optional
from sqlmodel import SQLModel, Field
import uuid
from datetime import datetime, timezone
from enum import Enum

class NotificationType(str, Enum):
    LEAD_CREATED = "lead_created"
    LEAD_ASSIGNED = "lead_assigned"
    LEAD_ENROLLED = "lead_enrolled"
    LEAD_CLAIMED = "lead_claimed"

class Notification(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    organization_id: uuid.UUID = Field(foreign_key="organization.id", index=True)
    user_id: uuid.UUID = Field(foreign_key="user.id", index=True)
    lead_id: Optional[uuid.UUID] = Field(default=None, foreign_key="lead.id", index=True)
    type: NotificationType
    title: str
    message: str
    read: bool = Field(default=False)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
