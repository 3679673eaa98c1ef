from typing import List, Optional
from sqlmodel import Session, select
from datetime import datetime, timezone
import uuid

from src.tasks.models import Task
from src.tasks.schemas import TaskCreate

def create_task(session: Session, task_create: TaskCreate, org_id: uuid.UUID, lead_id: uuid.UUID) -> Task:
    db_task = Task(**task_create.model_dump(), organization_id=org_id, lead_id=lead_id)
    session.add(db_task)
    session.commit()
    session.refresh(db_task)
    return db_task

def get_lead_tasks(session: Session, lead_id: uuid.UUID, include_completed: bool = True) -> List[Task]:
    query = select(Task).where(Task.lead_id == lead_id)
    if not include_completed:
        query = query.where(Task.completed == False)  # noqa: E712
    return session.exec(query.order_by(Task.due_date)).all()

def get_task(session: Session, task_id: uuid.UUID, org_id: uuid.UUID) -> Optional[Task]:
    return session.exec(
        select(Task)
        .where(Task.id == task_id)
        .where(Task.organization_id == org_id)
    ).first()

def complete_task(session: Session, db_task: Task) -> Task:
    db_task.completed = True
    db_task.completed_at = datetime.now(timezone.utc)
    session.add(db_task)
    session.commit()
    session.refresh(db_task)
    return db_task
