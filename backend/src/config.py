import logging
from typing import Dict, List

from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # Default to sqlite, but easy to override with env var DATABASE_URL
    DATABASE_URL: str = "sqlite:///./crm.db"
    SECRET_KEY: str = "dev-secret-change-me"
    SQL_ECHO: bool = False

    # JWT
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 12

    APP_TITLE: str = "Training Leads CRM"
    APP_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    # Canonical course name -> alias names of the same offering.
    # Override with a JSON object, e.g. COURSE_EQUIVALENCES='{"excel": ["excel base"]}'
    COURSE_EQUIVALENCES: Dict[str, List[str]] = {
        "blender / 3d": ["mastering blender", "3d modeling"],
    }

    class Config:
        env_file = ".env"

settings = Settings()

def configure_logging(level: str = settings.LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
