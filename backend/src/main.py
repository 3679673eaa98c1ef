import logging
from fastapi import FastAPI
from contextlib import asynccontextmanager

from src.database import create_db_and_tables
from src.config import settings, configure_logging
from src.users.router import router as users_router
from src.organizations.router import router as orgs_router
from src.auth.router import router as auth_router
from src.leads.router import router as leads_router
from src.tasks.router import router as tasks_router
from src.sanity.router import router as sanity_router
from src.notifications.router import router as notifications_router
# Table models without a router of their own, imported so create_all sees them
from src.courses.models import Course  # noqa: F401
from src.leads.history_models import LeadHistory  # noqa: F401

configure_logging()
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    logger.info("%s %s started", settings.APP_TITLE, settings.APP_VERSION)
    yield

app = FastAPI(
    title=settings.APP_TITLE,
    version=settings.APP_VERSION,
    lifespan=lifespan
)

app.include_router(auth_router)
app.include_router(users_router)
app.include_router(orgs_router)
app.include_router(leads_router)
app.include_router(tasks_router)
app.include_router(sanity_router)
app.include_router(notifications_router)

@app.get("/")
def read_root():
    return {"message": "Welcome to the Training Leads CRM API"}
