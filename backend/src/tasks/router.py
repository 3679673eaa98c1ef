from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session
from typing import List
import uuid

from src.database import get_session
from src.auth.router import get_current_user
from src.users.models import User
from src.organizations.router import get_org_link
from src.organizations import service as org_service
from src.leads import service as lead_service
from src.tasks.schemas import TaskCreate, TaskRead
from src.tasks import service

router = APIRouter(prefix="/organizations/{org_id}", tags=["tasks"])

@router.post("/leads/{lead_id}/tasks", response_model=TaskRead)
def create_task(
    org_id: uuid.UUID,
    lead_id: uuid.UUID,
    task_create: TaskCreate,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    get_org_link(session, org_id, current_user.id)
    if not lead_service.get_lead(session, lead_id, org_id):
        raise HTTPException(status_code=404, detail="Lead not found")

    if task_create.assigned_to_id is None:
        task_create.assigned_to_id = current_user.id
    elif not org_service.get_member_link(session, org_id, task_create.assigned_to_id):
        raise HTTPException(status_code=400, detail="Assigned user is not a member of this organization")

    return service.create_task(session, task_create, org_id, lead_id)

@router.get("/leads/{lead_id}/tasks", response_model=List[TaskRead])
def read_tasks(
    org_id: uuid.UUID,
    lead_id: uuid.UUID,
    include_completed: bool = True,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    get_org_link(session, org_id, current_user.id)
    if not lead_service.get_lead(session, lead_id, org_id):
        raise HTTPException(status_code=404, detail="Lead not found")
    return service.get_lead_tasks(session, lead_id, include_completed)

@router.post("/tasks/{task_id}/complete", response_model=TaskRead)
def complete_task(
    org_id: uuid.UUID,
    task_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session)
):
    get_org_link(session, org_id, current_user.id)
    task = service.get_task(session, task_id, org_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return service.complete_task(session, task)
