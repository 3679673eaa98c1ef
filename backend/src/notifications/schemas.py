from pydantic import BaseModel
from datetime import datetime
import uuid
from typing import Optional
from src.notifications.models import NotificationType

class NotificationRead(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    lead_id: Optional[uuid.UUID] = None
    type: NotificationType
    title: str
    message: str
    read: bool
    created_at: datetime
