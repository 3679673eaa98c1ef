from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session

from src.database import get_session
from src.auth.router import get_current_user
from src.users.schemas import UserCreate, UserRead
from src.users import service
from src.users.models import User

router = APIRouter(prefix="/users", tags=["users"])

@router.post("/", response_model=UserRead)
def register_user(user_create: UserCreate, session: Session = Depends(get_session)):
    if service.get_user_by_email(session, user_create.email):
        raise HTTPException(status_code=400, detail="Email already registered")
    return service.create_user(session, user_create)

@router.get("/me", response_model=UserRead)
def read_current_user(current_user: User = Depends(get_current_user)):
    return current_user
