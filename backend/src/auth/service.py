from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import jwt, JWTError
from sqlmodel import Session
from src.users.models import User
from src.users.service import get_user_by_email, verify_password
from src.auth.schemas import TokenData
from src.config import settings

def authenticate_user(session: Session, email: str, password: str) -> Optional[User]:
    user = get_user_by_email(session, email)
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user

def create_access_token(user: User, expires_minutes: int = settings.ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    # 'sub' carries the email; the id rides along for clients
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    claims = {"sub": user.email, "user_id": str(user.id), "exp": expire}
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

def decode_access_token(token: str) -> Optional[TokenData]:
    """Claims of a valid, unexpired token; None otherwise."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    email = payload.get("sub")
    if email is None:
        return None
    return TokenData(email=email)
