from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session
from typing import List
import uuid

from src.database import get_session
from src.auth.router import get_current_user
from src.users.models import User
from src.notifications.schemas import NotificationRead
from src.notifications import service

router = APIRouter(prefix="/notifications", tags=["notifications"])

@router.get("/", response_model=List[NotificationRead])
def read_notifications(
    unread_only: bool = False,
    limit: int = 50,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    return service.get_notifications(session, current_user.id, unread_only, limit)

@router.post("/read-all")
def mark_all_notifications_read(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    updated = service.mark_all_as_read(session, current_user.id)
    return {"ok": True, "updated": updated}

@router.post("/{notification_id}/read", response_model=NotificationRead)
def mark_notification_read(
    notification_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    notification = service.get_notification(session, notification_id, current_user.id)
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    return service.mark_as_read(session, notification)
