import pytest
from pymongo.errors import PyMongoError

from portal_api.src.auth.controller import AuthController
from portal_api.src.auth.schema import UserRole


@pytest.fixture
def operator_login(fake_db):
    user = AuthController().create_user(
        email="Ops@Example.com", password="s3cret-pass", name="Casey Ops", role=UserRole.OPERATOR
    )
    return user


def test_login_sets_cookies_and_returns_user(client, operator_login):
    resp = client.post("/auth/login", json={"email": "ops@example.com", "password": "s3cret-pass"})

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["user"]["role"] == "operator"
    assert body["user"]["role_entity_id"] == operator_login.id
    assert body["csrf_token"]
    assert "access_token" in resp.headers.get("set-cookie", "")


def test_bad_password_and_deactivated_accounts(client, fake_db, operator_login):
    wrong = client.post("/auth/login", json={"email": "ops@example.com", "password": "nope"})
    assert wrong.status_code == 401

    fake_db.users.update_one({"id": operator_login.id}, {"$set": {"is_active": False}})
    inactive = client.post("/auth/login", json={"email": "ops@example.com", "password": "s3cret-pass"})
    assert inactive.json()["detail"] == "Account is deactivated"


def test_me_reports_anonymous_and_bearer_users(client, customer, as_user):
    assert client.get("/auth/me").json() == {"authenticated": False}

    me = client.get("/auth/me", headers=as_user(customer)).json()
    assert me["authenticated"] is True
    assert me["role"] == "customer"
    assert me["role_entity_id"] == "cust_acme"


def test_protected_route_without_credentials(client):
    assert client.get("/orders/").status_code == 401


@pytest.mark.asyncio
async def test_password_update_clears_forced_change(fake_db):
    from portal_api.src.auth.schema import PasswordUpdateRequest

    controller = AuthController()
    user = controller.create_user(
        email="new@example.com", password="Temp-Pass-123", name="New", role=UserRole.CUSTOMER,
        requires_password_change=True,
    )
    await controller.update_password(
        user.id, PasswordUpdateRequest(current_password="Temp-Pass-123", new_password="Better-Pass-456")
    )

    stored = fake_db.users.find_one({"id": user.id})
    assert stored["requires_password_change"] is False
    assert controller.verify_password("Better-Pass-456", stored["password_hash"])


def test_only_admins_manage_staff(client, admin, operator, as_user):
    body = {"email": "second@example.com", "password": "Another-Pass-1", "name": "Second", "role": "operator"}
    assert client.post("/auth/users", json=body, headers=as_user(operator)).status_code == 403

    created = client.post("/auth/users", json=body, headers=as_user(admin))
    assert created.status_code == 200, created.text
    staff = client.get("/auth/users", headers=as_user(admin)).json()
    assert [u["email"] for u in staff] == ["second@example.com"]


def test_health_reports_database_state(client, fake_db, monkeypatch):
    healthy = client.get("/health").json()
    assert healthy["status"] == "healthy" and healthy["database"] == "ok"

    def unreachable(*args, **kwargs):
        raise PyMongoError("no primary")

    monkeypatch.setattr(fake_db, "command", unreachable)
    degraded = client.get("/health").json()
    assert degraded == {
        "status": "degraded",
        "service": "order-portal-api",
        "version": "1.0.0",
        "database": "unreachable",
    }
