from pydantic import BaseModel
from datetime import datetime
import uuid
from typing import Optional

class TaskCreate(BaseModel):
    title: str
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    assigned_to_id: Optional[uuid.UUID] = None

class TaskRead(TaskCreate):
    id: uuid.UUID
    organization_id: uuid.UUID
    lead_id: uuid.UUID
    completed: bool
    completed_at: Optional[datetime] = None
    created_at: datetime
