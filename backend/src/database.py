from contextlib import contextmanager
from sqlmodel import SQLModel, create_engine, Session
from src.config import settings

# The URL comes from settings, so switching to Postgres is only an env change.
connect_args = {"check_same_thread": False} if "sqlite" in settings.DATABASE_URL else {}
engine = create_engine(settings.DATABASE_URL, echo=settings.SQL_ECHO, connect_args=connect_args)

def create_db_and_tables():
    SQLModel.metadata.create_all(engine)

def get_session():
    with Session(engine) as session:
        yield session

@contextmanager
def atomic(session: Session):
    """Commit everything done in the block, or roll all of it back."""
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
