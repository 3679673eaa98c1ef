"""
Notification dispatch.

notify() and notify_roles() only add rows to the caller's session: the
notification is committed together with the change that triggered it.
"""
import logging
from typing import List, Optional
from sqlalchemy import update
from sqlmodel import Session, select
import uuid

from src.notifications.models import Notification, NotificationType
from src.organizations.models import OrgRole
from src.organizations.service import get_member_ids_by_role

logger = logging.getLogger(__name__)

def notify(
    session: Session,
    org_id: uuid.UUID,
    user_id: uuid.UUID,
    type: NotificationType,
    title: str,
    message: str,
    lead_id: Optional[uuid.UUID] = None
) -> Notification:
    notification = Notification(
        organization_id=org_id,
        user_id=user_id,
        lead_id=lead_id,
        type=type,
        title=title,
        message=message
    )
    session.add(notification)
    logger.debug("Queued %s notification for user %s", type.value, user_id)
    return notification

def notify_roles(
    session: Session,
    org_id: uuid.UUID,
    roles: List[OrgRole],
    type: NotificationType,
    title: str,
    message: str,
    lead_id: Optional[uuid.UUID] = None,
    exclude_user_id: Optional[uuid.UUID] = None
) -> List[Notification]:
    """Notify every member of the organization holding one of the roles."""
    return [
        notify(session, org_id, user_id, type, title, message, lead_id)
        for user_id in get_member_ids_by_role(session, org_id, roles)
        if user_id != exclude_user_id
    ]

def get_notifications(session: Session, user_id: uuid.UUID, unread_only: bool = False, limit: int = 50) -> List[Notification]:
    query = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        query = query.where(Notification.read == False)  # noqa: E712
    return session.exec(query.order_by(Notification.created_at.desc()).limit(limit)).all()

def get_notification(session: Session, notification_id: uuid.UUID, user_id: uuid.UUID) -> Optional[Notification]:
    return session.exec(
        select(Notification)
        .where(Notification.id == notification_id)
        .where(Notification.user_id == user_id)
    ).first()

def mark_as_read(session: Session, notification: Notification) -> Notification:
    notification.read = True
    session.add(notification)
    session.commit()
    session.refresh(notification)
    return notification

def mark_all_as_read(session: Session, user_id: uuid.UUID) -> int:
    result = session.execute(
        update(Notification)
        .where(Notification.user_id == user_id)
        .where(Notification.read == False)  # noqa: E712
        .values(read=True)
    )
    session.commit()
    return result.rowcount
