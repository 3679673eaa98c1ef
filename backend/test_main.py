from datetime import datetime, timedelta, timezone
from fastapi.testclient import TestClient
from sqlmodel import Session
import pytest
import uuid

from src.courses.models import Course
from src.leads.models import Lead, LeadStatus

def signup(client: TestClient, email: str, password: str = "pass", name: str = None):
    response = client.post("/users/", json={"email": email, "password": password, "name": name})
    assert response.status_code == 200
    user_id = response.json()["id"]
    response = client.post("/auth/login", data={"username": email, "password": password})
    token = response.json()["access_token"]
    return user_id, {"Authorization": f"Bearer {token}"}

@pytest.fixture(name="crm")
def crm_fixture(client: TestClient, session: Session):
    """An academy with an owner, two commercials, a marketing member and one course."""
    owner_id, owner = signup(client, "owner@example.com", name="Olga")
    carla_id, carla = signup(client, "carla@example.com", name="Carla")
    marco_id, marco = signup(client, "marco@example.com", name="Marco")
    mia_id, mia = signup(client, "mia@example.com", name="Mia")

    response = client.post("/organizations/", json={"name": "Academy"}, headers=owner)
    org_id = response.json()["id"]
    for user_id, role in ((carla_id, "commercial"), (marco_id, "commercial"), (mia_id, "marketing")):
        response = client.post(
            f"/organizations/{org_id}/members",
            json={"user_id": user_id, "role": role},
            headers=owner
        )
        assert response.status_code == 200

    course = Course(organization_id=uuid.UUID(org_id), name="Excel Avanzato")
    session.add(course)
    session.commit()

    return {
        "org_id": org_id,
        "course_id": str(course.id),
        "owner": owner, "owner_id": owner_id,
        "carla": carla, "carla_id": carla_id,
        "marco": marco, "marco_id": marco_id,
        "mia": mia, "mia_id": mia_id,
    }

def create_lead(client: TestClient, crm: dict, name: str = "Mario Rossi", **fields) -> dict:
    payload = {"name": name, "course_id": crm["course_id"], "assigned_to_id": crm["carla_id"], **fields}
    response = client.post(f"/organizations/{crm['org_id']}/leads/", json=payload, headers=crm["owner"])
    assert response.status_code == 200
    return response.json()

def test_login_with_wrong_password(client: TestClient):
    signup(client, "owner@example.com")

    response = client.post("/auth/login", data={"username": "owner@example.com", "password": "nope"})
    assert response.status_code == 401

    response = client.get("/users/me", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401

def test_organization_membership(client: TestClient):
    owner_id, owner = signup(client, "owner@example.com")
    stranger_id, stranger = signup(client, "stranger@example.com")
    member_id, member = signup(client, "member@example.com")

    response = client.post("/organizations/", json={"name": "Academy", "description": "Corsi serali"}, headers=owner)
    assert response.status_code == 200
    org_id = response.json()["id"]

    response = client.get(f"/organizations/{org_id}", headers=owner)
    assert response.status_code == 200
    assert response.json()["name"] == "Academy"

    response = client.get(f"/organizations/{org_id}", headers=stranger)
    assert response.status_code == 403

    response = client.post(f"/organizations/{org_id}/members", json={"user_id": member_id}, headers=owner)
    assert response.status_code == 200
    assert response.json()["role"] == "commercial"

    # Commercials cannot add members
    response = client.post(f"/organizations/{org_id}/members", json={"user_id": stranger_id}, headers=member)
    assert response.status_code == 403

    response = client.put(f"/organizations/{org_id}/members/{member_id}", json={"role": "admin"}, headers=owner)
    assert response.status_code == 200

    response = client.get(f"/organizations/{org_id}/members", headers=member)
    roles = {m["id"]: m["role"] for m in response.json()}
    assert roles == {owner_id: "owner", member_id: "admin"}

    response = client.get("/organizations/", headers=member)
    assert [org["id"] for org in response.json()] == [org_id]
    response = client.get("/organizations/", headers=stranger)
    assert response.json() == []

    response = client.get("/users/me", headers=member)
    assert response.json()["email"] == "member@example.com"

def test_create_lead_requires_course_of_the_organization(client: TestClient, crm: dict):
    response = client.post(
        f"/organizations/{crm['org_id']}/leads/",
        json={"name": "Mario Rossi", "course_id": str(uuid.uuid4())},
        headers=crm["owner"]
    )
    assert response.status_code == 400

def test_call_pipeline_until_perso_and_claim(client: TestClient, crm: dict):
    lead = create_lead(client, crm)
    base = f"/organizations/{crm['org_id']}/leads/{lead['id']}"
    assert lead["status"] == "NUOVO"

    # Only the assigned commercial (or an admin) works the lead
    response = client.post(f"{base}/calls", json={"outcome": "RICHIAMARE"}, headers=crm["marco"])
    assert response.status_code == 403
    response = client.post(f"{base}/calls", json={"outcome": "RICHIAMARE"}, headers=crm["mia"])
    assert response.status_code == 403

    response = client.post(f"{base}/calls", json={"outcome": "RICHIAMARE", "notes": "Dopo le 18"}, headers=crm["carla"])
    assert response.status_code == 200
    body = response.json()
    assert body["attempt"] == 1
    assert body["attempts_left"] == 7
    assert body["became_perso"] is False
    assert body["lead"]["status"] == "CONTATTATO"
    assert body["lead"]["contacted"] is True

    response = client.post(f"{base}/calls", json={"outcome": "NEGATIVO"}, headers=crm["carla"])
    body = response.json()
    assert body["became_perso"] is True
    assert body["lead"]["status"] == "PERSO"
    assert body["lead"]["lost_reason"] == "Esito negativo"

    response = client.post(f"{base}/calls", json={"outcome": "POSITIVO"}, headers=crm["carla"])
    assert response.status_code == 400

    response = client.get(f"/organizations/{crm['org_id']}/leads/perso", headers=crm["mia"])
    assert response.status_code == 403

    response = client.get(f"/organizations/{crm['org_id']}/leads/perso", headers=crm["marco"])
    assert response.status_code == 200
    pool = response.json()
    assert [l["id"] for l in pool["leads"]] == [lead["id"]]
    assert pool["commercials"] == [{"id": crm["carla_id"], "name": "Carla", "count": 1}]

    response = client.post(f"{base}/claim", headers=crm["marco"])
    assert response.status_code == 200
    claimed = response.json()
    assert claimed["assigned_to_id"] == crm["marco_id"]
    assert claimed["status"] == "CONTATTATO"
    assert claimed["call_attempts"] == 0

    response = client.post(f"{base}/claim", headers=crm["carla"])
    assert response.status_code == 409

    response = client.get("/notifications/", headers=crm["carla"])
    assert [n["type"] for n in response.json()] == ["lead_claimed", "lead_assigned"]

    response = client.get(f"{base}/history", headers=crm["owner"])
    assert [h["action"] for h in response.json()] == ["claimed", "call_logged", "call_logged", "created"]

def test_status_change_and_enrollment(client: TestClient, crm: dict):
    lead = create_lead(client, crm)
    base = f"/organizations/{crm['org_id']}/leads/{lead['id']}"

    response = client.post(f"{base}/status", json={"status": "IN_TRATTATIVA"}, headers=crm["carla"])
    assert response.status_code == 200
    assert response.json()["status"] == "IN_TRATTATIVA"

    response = client.post(f"{base}/status", json={"status": "ISCRITTO"}, headers=crm["carla"])
    assert response.status_code == 400

    response = client.post(f"{base}/enroll", headers=crm["carla"])
    assert response.status_code == 200
    assert response.json()["status"] == "ISCRITTO"
    assert response.json()["enrolled"] is True

    response = client.post(f"{base}/enroll", headers=crm["carla"])
    assert response.status_code == 400
    response = client.post(f"{base}/calls", json={"outcome": "POSITIVO"}, headers=crm["carla"])
    assert response.status_code == 400

    for user in ("owner", "mia"):
        response = client.get("/notifications/?unread_only=true", headers=crm[user])
        assert [n["type"] for n in response.json()] == ["lead_enrolled"]

    response = client.post("/notifications/read-all", headers=crm["mia"])
    assert response.json() == {"ok": True, "updated": 1}
    response = client.get("/notifications/?unread_only=true", headers=crm["mia"])
    assert response.json() == []

def test_only_admins_reassign(client: TestClient, crm: dict):
    lead = create_lead(client, crm)
    url = f"/organizations/{crm['org_id']}/leads/{lead['id']}"

    response = client.patch(url, json={"assigned_to_id": crm["marco_id"]}, headers=crm["carla"])
    assert response.status_code == 403
    response = client.patch(url, json={"notes": "Interessata al weekend"}, headers=crm["mia"])
    assert response.status_code == 403

    response = client.patch(url, json={"assigned_to_id": crm["marco_id"], "phone": "333"}, headers=crm["owner"])
    assert response.status_code == 200
    assert response.json()["assigned_to_id"] == crm["marco_id"]
    assert response.json()["version"] == 2

def test_only_admins_unassign(client: TestClient, crm: dict):
    lead = create_lead(client, crm, assigned_to_id=crm["marco_id"])
    url = f"/organizations/{crm['org_id']}/leads/{lead['id']}"

    response = client.patch(url, json={"assigned_to_id": None}, headers=crm["carla"])
    assert response.status_code == 403
    response = client.get(url, headers=crm["owner"])
    assert response.json()["assigned_to_id"] == crm["marco_id"]

    response = client.patch(url, json={"assigned_to_id": None}, headers=crm["owner"])
    assert response.status_code == 200
    assert response.json()["assigned_to_id"] is None

@pytest.mark.parametrize("field", ["name", "course_id", "is_target"])
def test_required_fields_cannot_be_cleared(client: TestClient, crm: dict, field: str):
    lead = create_lead(client, crm)
    url = f"/organizations/{crm['org_id']}/leads/{lead['id']}"

    response = client.patch(url, json={field: None}, headers=crm["owner"])
    assert response.status_code == 422

    response = client.get(url, headers=crm["owner"])
    assert response.json()["version"] == 1

def test_bulk_assign_round_robin(client: TestClient, crm: dict):
    leads = [create_lead(client, crm, f"Lead {i}", assigned_to_id=None) for i in range(5)]
    missing = str(uuid.uuid4())
    url = f"/organizations/{crm['org_id']}/leads/bulk"
    payload = {"action": "assign", "distribute": True, "lead_ids": [l["id"] for l in leads] + [missing]}

    response = client.post(url, json=payload, headers=crm["carla"])
    assert response.status_code == 403

    response = client.post(url, json=payload, headers=crm["owner"])
    assert response.status_code == 200
    result = response.json()
    assert result["success_count"] == 5
    assert result["total_requested"] == 6
    assert [e["lead_id"] for e in result["errors"]] == [missing]

    assignees = [
        client.get(f"/organizations/{crm['org_id']}/leads/{l['id']}", headers=crm["owner"]).json()["assigned_to_id"]
        for l in leads
    ]
    assert assignees == [crm["carla_id"], crm["marco_id"], crm["carla_id"], crm["marco_id"], crm["carla_id"]]

    response = client.get("/notifications/", headers=crm["marco"])
    assert [n["type"] for n in response.json()] == ["lead_assigned", "lead_assigned"]

    response = client.get(f"/organizations/{crm['org_id']}/leads/{leads[1]['id']}/history", headers=crm["owner"])
    assert response.json()[0]["action"] == "assigned"

def test_bulk_assign_to_one_user(client: TestClient, crm: dict):
    leads = [create_lead(client, crm, f"Lead {i}") for i in range(3)]
    url = f"/organizations/{crm['org_id']}/leads/bulk"

    response = client.post(url, json={"action": "assign", "lead_ids": [l["id"] for l in leads]}, headers=crm["owner"])
    assert response.status_code == 400

    response = client.post(
        url,
        json={"action": "assign", "assigned_to_id": crm["marco_id"], "lead_ids": [l["id"] for l in leads]},
        headers=crm["owner"]
    )
    assert response.json()["success_count"] == 3

    response = client.get(f"/organizations/{crm['org_id']}/leads/?assigned_to_id={crm['marco_id']}", headers=crm["owner"])
    assert len(response.json()) == 3

def test_bulk_status_reports_refused_leads(client: TestClient, crm: dict):
    open_lead = create_lead(client, crm, "Aperto")
    enrolled = create_lead(client, crm, "Iscritto")
    client.post(f"/organizations/{crm['org_id']}/leads/{enrolled['id']}/enroll", headers=crm["carla"])

    response = client.post(
        f"/organizations/{crm['org_id']}/leads/bulk",
        json={"action": "status", "status": "PERSO", "lost_reason": "Fuori zona",
              "lead_ids": [open_lead["id"], enrolled["id"]]},
        headers=crm["owner"]
    )

    result = response.json()
    assert result["success_count"] == 1
    assert [e["lead_id"] for e in result["errors"]] == [enrolled["id"]]
    response = client.get(f"/organizations/{crm['org_id']}/leads/{open_lead['id']}", headers=crm["owner"])
    assert response.json()["status"] == "PERSO"
    assert response.json()["lost_reason"] == "Fuori zona"

def test_inactive_lead_is_listed_as_perso(client: TestClient, session: Session, crm: dict):
    lead = create_lead(client, crm)
    db_lead = session.get(Lead, uuid.UUID(lead["id"]))
    db_lead.status = LeadStatus.CONTATTATO
    db_lead.call_attempts = 2
    db_lead.last_attempt_at = datetime.now(timezone.utc) - timedelta(days=20)
    session.add(db_lead)
    session.commit()
    leads_url = f"/organizations/{crm['org_id']}/leads"

    response = client.get(f"{leads_url}/{lead['id']}", headers=crm["carla"])
    assert response.json()["status"] == "PERSO"
    assert response.json()["lost_reason"] == "Inattività 15 giorni"

    response = client.get(f"{leads_url}/?status=PERSO", headers=crm["carla"])
    assert [l["id"] for l in response.json()] == [lead["id"]]
    response = client.get(f"{leads_url}/?status=CONTATTATO", headers=crm["carla"])
    assert response.json() == []

    response = client.post(f"{leads_url}/expire-stale", headers=crm["carla"])
    assert response.status_code == 403

    response = client.post(f"{leads_url}/expire-stale", headers=crm["owner"])
    assert response.json() == {"expired": 1, "lead_ids": [lead["id"]]}
    response = client.post(f"{leads_url}/expire-stale", headers=crm["owner"])
    assert response.json()["expired"] == 0

def test_duplicates_report_and_merge(client: TestClient, crm: dict):
    first = create_lead(client, crm, "Mario Rossi", email="mario@example.com")
    second = create_lead(client, crm, "mario  ROSSI")
    response = client.post(f"/organizations/{crm['org_id']}/leads/{second['id']}/enroll", headers=crm["carla"])
    assert response.status_code == 200
    sanity = f"/organizations/{crm['org_id']}/sanity"

    response = client.get(f"{sanity}/duplicates", headers=crm["carla"])
    assert response.status_code == 403

    response = client.get(f"{sanity}/duplicates", headers=crm["owner"])
    assert response.status_code == 200
    report = response.json()
    assert report["stats"] == {
        "total_groups": 1,
        "affected_leads": 2,
        "groups_with_enrolled": 1,
        "potential_double_payments": 0,
    }
    group, = report["duplicates"]
    assert group["severity"] == "warning"
    assert group["recommended_primary_id"] == second["id"]

    response = client.post(
        f"{sanity}/merge",
        json={"primary_id": second["id"], "duplicate_ids": [second["id"]]},
        headers=crm["owner"]
    )
    assert response.status_code == 400

    response = client.post(
        f"{sanity}/merge",
        json={"primary_id": second["id"], "duplicate_ids": [first["id"]]},
        headers=crm["owner"]
    )
    assert response.status_code == 200
    merged = response.json()
    assert merged["deleted_ids"] == [first["id"]]
    assert merged["merged_lead"]["enrolled"] is True
    assert merged["merged_lead"]["email"] == "mario@example.com"

    response = client.post(
        f"{sanity}/merge",
        json={"primary_id": second["id"], "duplicate_ids": [first["id"]]},
        headers=crm["owner"]
    )
    assert response.status_code == 409

    response = client.get(f"/organizations/{crm['org_id']}/leads/{first['id']}", headers=crm["owner"])
    assert response.status_code == 404

def test_lead_tasks(client: TestClient, crm: dict):
    lead = create_lead(client, crm)
    url = f"/organizations/{crm['org_id']}/leads/{lead['id']}/tasks"

    response = client.post(url, json={"title": "Inviare programma"}, headers=crm["carla"])
    assert response.status_code == 200
    task = response.json()
    assert task["assigned_to_id"] == crm["carla_id"]
    assert task["completed"] is False

    response = client.post(f"/organizations/{crm['org_id']}/tasks/{task['id']}/complete", headers=crm["carla"])
    assert response.json()["completed"] is True

    response = client.get(f"{url}?include_completed=false", headers=crm["carla"])
    assert response.json() == []
