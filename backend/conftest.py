from datetime import datetime, timezone
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool
import pytest

from src.main import app
from src.database import get_session
from src.courses.models import Course
from src.leads.models import Lead
from src.organizations.models import Organization, UserOrganizationLink, OrgRole
from src.users.models import User

@pytest.fixture(name="session")
def session_fixture():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session

@pytest.fixture(name="file_engine")
def file_engine_fixture(tmp_path):
    """A real database file, so that two sessions see each other's commits."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'crm.db'}", connect_args={"check_same_thread": False}
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()

@pytest.fixture(name="client")
def client_fixture(session: Session):
    def get_session_override():
        return session
    app.dependency_overrides[get_session] = get_session_override
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()

def add_user(session: Session, email: str, name: str = None) -> User:
    user = User(email=email, name=name, hashed_password="not-a-real-hash")
    session.add(user)
    session.commit()
    session.refresh(user)
    return user

def add_member(session: Session, org: Organization, user: User, role: OrgRole) -> None:
    session.add(UserOrganizationLink(user_id=user.id, organization_id=org.id, role=role))
    session.commit()

@pytest.fixture(name="owner")
def owner_fixture(session: Session):
    return add_user(session, "owner@example.com", "Olga Owner")

@pytest.fixture(name="org")
def org_fixture(session: Session, owner: User):
    org = Organization(name="Academy")
    session.add(org)
    session.commit()
    session.refresh(org)
    add_member(session, org, owner, OrgRole.OWNER)
    return org

@pytest.fixture(name="commercial")
def commercial_fixture(session: Session, org: Organization):
    user = add_user(session, "carla@example.com", "Carla")
    add_member(session, org, user, OrgRole.COMMERCIAL)
    return user

@pytest.fixture(name="other_commercial")
def other_commercial_fixture(session: Session, org: Organization):
    user = add_user(session, "marco@example.com", "Marco")
    add_member(session, org, user, OrgRole.COMMERCIAL)
    return user

@pytest.fixture(name="course")
def course_fixture(session: Session, org: Organization):
    course = Course(organization_id=org.id, name="Excel Avanzato", price=390.0)
    session.add(course)
    session.commit()
    session.refresh(course)
    return course

@pytest.fixture(name="make_lead")
def make_lead_fixture(session: Session, org: Organization, course: Course):
    """Insert a lead straight into the table, bypassing the lifecycle rules."""
    def make(name: str = "Mario Rossi", lead_course: Course = None, **fields) -> Lead:
        fields.setdefault("created_at", datetime.now(timezone.utc))
        lead = Lead(
            name=name,
            organization_id=org.id,
            course_id=(lead_course or course).id,
            **fields
        )
        session.add(lead)
        session.commit()
        session.refresh(lead)
        return lead
    return make

@pytest.fixture(name="marketing")
def marketing_fixture(session: Session, org: Organization):
    user = add_user(session, "mia@example.com", "Mia")
    add_member(session, org, user, OrgRole.MARKETING)
    return user
