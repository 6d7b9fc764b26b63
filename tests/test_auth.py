import pytest
from fastapi.testclient import TestClient

from prepx.app.db.base import Base
from prepx.app.db.session import SessionLocal, engine
from prepx.app.main import app
from prepx.app.models.user import User


@pytest.fixture(autouse=True)
def setup_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


def register_user(client: TestClient, email: str, password: str = "secret", **extra):
    return client.post("/auth/register", json={"email": email, "password": password, **extra})


def login(client: TestClient, email: str, password: str = "secret"):
    return client.post("/auth/login", json={"email": email, "password": password})


def test_first_user_becomes_super_admin():
    client = TestClient(app)
    first = register_user(client, "owner@example.com", full_name="Institute Owner")
    second = register_user(client, "desk@example.com")
    assert first.status_code == 200
    assert first.json()["role"] == "super_admin"
    assert first.json()["full_name"] == "Institute Owner"
    assert second.json()["role"] == "support_staff"


def test_duplicate_email_returns_400():
    client = TestClient(app)
    register_user(client, "dup@example.com")
    response = register_user(client, "dup@example.com")
    assert response.status_code == 400
    assert response.json()["detail"] == "Email already registered"


def test_successful_login_returns_token_and_records_last_login():
    client = TestClient(app)
    register_user(client, "login@example.com")
    response = login(client, "login@example.com")
    assert response.status_code == 200
    data = response.json()
    assert data["token_type"] == "bearer"
    assert isinstance(data["access_token"], str) and data["access_token"]

    db = SessionLocal()
    user = db.query(User).filter(User.email == "login@example.com").first()
    assert user.last_login is not None
    db.close()


def test_wrong_password_returns_400():
    client = TestClient(app)
    register_user(client, "wrongpw@example.com")
    assert login(client, "wrongpw@example.com", "bad").status_code == 400


def test_missing_hash_returns_400_not_500():
    client = TestClient(app)
    register_user(client, "badhash@example.com")
    db = SessionLocal()
    user = db.query(User).filter(User.email == "badhash@example.com").first()
    user.hashed_password = None
    db.commit()
    db.close()
    assert login(client, "badhash@example.com").status_code == 400


def test_inactive_user_cannot_log_in():
    client = TestClient(app)
    register_user(client, "gone@example.com")
    db = SessionLocal()
    db.query(User).filter(User.email == "gone@example.com").update({User.is_active: False})
    db.commit()
    db.close()
    response = login(client, "gone@example.com")
    assert response.status_code == 400
    assert response.json()["detail"] == "User is inactive"


def test_me_requires_valid_token():
    client = TestClient(app)
    register_user(client, "me@example.com")
    token = login(client, "me@example.com").json()["access_token"]

    response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    assert response.json()["email"] == "me@example.com"

    response = client.get("/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Your session has expired. Please log in again."
    assert response.headers["WWW-Authenticate"] == "Bearer"

    response = client.get("/auth/me")
    assert response.status_code == 401
    assert response.json()["detail"] == "Your session has expired. Please log in again."
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_only_admins_change_roles():
    client = TestClient(app)
    register_user(client, "owner@example.com")
    register_user(client, "desk@example.com")
    owner_token = login(client, "owner@example.com").json()["access_token"]
    desk_token = login(client, "desk@example.com").json()["access_token"]
    desk_id = client.get("/auth/me", headers={"Authorization": f"Bearer {desk_token}"}).json()["id"]

    response = client.patch(
        f"/auth/users/{desk_id}/role",
        json={"role": "management_admin"},
        headers={"Authorization": f"Bearer {desk_token}"},
    )
    assert response.status_code == 403

    response = client.patch(
        f"/auth/users/{desk_id}/role",
        json={"role": "management_admin"},
        headers={"Authorization": f"Bearer {owner_token}"},
    )
    assert response.status_code == 200
    assert response.json()["role"] == "management_admin"

    response = client.patch(
        "/auth/users/999/role",
        json={"role": "teacher"},
        headers={"Authorization": f"Bearer {owner_token}"},
    )
    assert response.status_code == 404
