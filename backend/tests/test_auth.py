from conftest import auth_headers_for
from sqlalchemy import select

from eduvault.core.config import settings
from eduvault.models import AuditEvent, User, UserRole


def test_register_disabled_by_default(client):
    r = client.post("/auth/register", json={"email": "a@example.test", "password": "longenough1"})
    assert r.status_code == 403
    assert r.json()["error_code"] == "forbidden"


def test_register_creates_student(client, db, monkeypatch):
    monkeypatch.setattr(settings, "allow_public_register", True)

    r = client.post(
        "/auth/register",
        json={"email": "  Amina@Example.Test ", "password": "longenough1", "first_name": "Amina"},
    )
    assert r.status_code == 200, r.text
    token = r.json()["access_token"]

    user = db.scalar(select(User).where(User.email == "amina@example.test"))
    assert user is not None
    assert user.role == UserRole.student

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["email"] == "amina@example.test"
    assert me.json()["role"] == "student"

    r = client.post("/auth/register", json={"email": "amina@example.test", "password": "longenough1"})
    assert r.status_code == 409

    events = db.scalars(select(AuditEvent.event_type).order_by(AuditEvent.created_at)).all()
    assert "auth_register_success" in events
    assert "auth_register_failed" in events


def test_short_password_is_rejected(client, monkeypatch):
    monkeypatch.setattr(settings, "allow_public_register", True)
    r = client.post("/auth/register", json={"email": "b@example.test", "password": "short"})
    assert r.status_code == 400


def test_token_login(client, mini_admin):
    r = client.post("/auth/token", data={"username": mini_admin.email.upper(), "password": "testpass123"})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["token_type"] == "bearer"

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.json()["id"] == str(mini_admin.id)
    assert me.json()["role"] == "mini_admin"


def test_token_bad_password(client, student):
    r = client.post("/auth/token", data={"username": student.email, "password": "wrong-password"})
    assert r.status_code == 401
    assert r.json()["error_code"] == "unauthorized"


def test_me_requires_token(client, student):
    assert client.get("/auth/me").status_code == 401
    assert client.get("/auth/me", headers=auth_headers_for(student)).json()["name"] == "Wanjiru"
