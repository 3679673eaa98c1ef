from typing import Optional, TYPE_CHECKING
from sqlmodel import SQLModel, Field, Relationship
import uuid
from datetime import datetime, timezone
from enum import Enum

if TYPE_CHECKING:
    from src.users.models import User
    from src.organizations.models import Organization
    from src.courses.models import Course

class LeadStatus(str, Enum):
    NUOVO = "NUOVO"
    CONTATTATO = "CONTATTATO"
    IN_TRATTATIVA = "IN_TRATTATIVA"
    ISCRITTO = "ISCRITTO"
    PERSO = "PERSO"

class CallOutcome(str, Enum):
    POSITIVO = "POSITIVO"
    RICHIAMARE = "RICHIAMARE"
    NEGATIVO = "NEGATIVO"
    NON_RISPONDE = "NON_RISPONDE"

class Lead(SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str = Field(index=True)
    email: Optional[str] = None
    phone: Optional[str] = None
    source: Optional[str] = None
    notes: Optional[str] = None
    status: LeadStatus = Field(default=LeadStatus.NUOVO, index=True)

    organization_id: uuid.UUID = Field(foreign_key="organization.id", index=True)
    course_id: uuid.UUID = Field(foreign_key="course.id", index=True)
    assigned_to_id: Optional[uuid.UUID] = Field(default=None, foreign_key="user.id")
    created_by_id: Optional[uuid.UUID] = Field(default=None, foreign_key="user.id")

    # Priority flag, independent of status
    is_target: bool = Field(default=False)
    target_note: Optional[str] = None

    # Call tracking
    contacted: bool = Field(default=False)
    contacted_at: Optional[datetime] = None
    call_outcome: Optional[CallOutcome] = None
    outcome_notes: Optional[str] = None
    call_attempts: int = Field(default=0)
    first_attempt_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None

    enrolled: bool = Field(default=False)
    enrolled_at: Optional[datetime] = None

    lost_reason: Optional[str] = None
    lost_at: Optional[datetime] = None

    # Bumped by every write; conditional updates match on it
    version: int = Field(default=1)

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Relationships
    organization: "Organization" = Relationship()
    course: Optional["Course"] = Relationship()
    assigned_to: Optional["User"] = Relationship(
        sa_relationship_kwargs={"foreign_keys": "Lead.assigned_to_id"}
    )
