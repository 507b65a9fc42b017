"""
Formosa CRM - Autenticación y permisos
Run: cd backend && pytest tests/test_auth.py -v
"""

import asyncio
import uuid
from datetime import datetime, timezone, timedelta

import pytest
from fastapi.testclient import TestClient

from config import db, hash_password, now_iso
from server import app
from services.permissions import get_preset_permissions, user_has_permission


def _db_op(coro):
    """Run async DB operation in a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _make_user(email="vendedor@formosa.local", role="VENDEDOR", password="Formosa2025!", **extra):
    user = {
        "id": str(uuid.uuid4()),
        "email": email,
        "password": hash_password(password),
        "nombre": "Vendedor",
        "role": role,
        "permissions": get_preset_permissions(role),
        "is_active": True,
        "created_at": now_iso(),
        **extra,
    }
    _db_op(db.users.insert_one(dict(user)))
    return user


@pytest.fixture
def client():
    """Cliente sin override: pasa por la sesión real."""
    app.dependency_overrides.clear()
    return TestClient(app)


def _login(client, email="vendedor@formosa.local", password="Formosa2025!"):
    return client.post("/api/auth/login", json={"email": email, "password": password})


class TestPresets:

    def test_admin_bypass(self):
        assert user_has_permission({"role": "ADMIN", "permissions": {}}, "users.manage")

    def test_viewer_preset(self):
        perms = get_preset_permissions("viewer")
        assert perms["leads.view"] is True
        assert perms["leads.create"] is False

    def test_unknown_role_falls_back_to_viewer(self):
        assert get_preset_permissions("CEO") == get_preset_permissions("VIEWER")


class TestLogin:

    def test_login_and_me(self, client):
        _make_user()
        r = _login(client, email="  VENDEDOR@formosa.local ")
        assert r.status_code == 200
        body = r.json()
        assert body["user"]["role"] == "VENDEDOR"
        assert body["user"]["permissions"]["messaging.send"] is True

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
        assert me.status_code == 200
        assert "password" not in me.json()

    def test_wrong_password(self, client):
        _make_user()
        r = _login(client, password="otra")
        assert r.status_code == 401
        assert r.json()["detail"] == "Email o contraseña incorrectos"

    def test_inactive(self, client):
        _make_user(is_active=False)
        assert _login(client).status_code == 403

    def test_no_token(self, client):
        r = client.get("/api/auth/me")
        assert r.status_code == 401
        assert r.json()["detail"] == "No autenticado"

    def test_expired_session(self, client):
        user = _make_user()
        past = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
        _db_op(db.sessions.insert_one({"token": "old", "user_id": user["id"], "expires_at": past}))
        r = client.get("/api/auth/me", headers={"Authorization": "Bearer old"})
        assert r.status_code == 401
        assert r.json()["detail"] == "Sesión expirada"

    def test_logout_invalidates_token(self, client):
        _make_user()
        token = _login(client).json()["token"]
        headers = {"Authorization": f"Bearer {token}"}
        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401


class TestPermissions:

    def test_viewer_cannot_create_lead(self, api_as):
        viewer = {"id": "u-viewer", "email": "viewer@formosa.local", "role": "VIEWER",
                  "permissions": get_preset_permissions("VIEWER")}
        api = api_as(viewer)
        r = api.post("/api/leads", json={"nombre": "Ana", "telefono": "3704555555"})
        assert r.status_code == 403
        assert r.json()["detail"] == "Permiso requerido: leads.create"
        assert api.get("/api/leads").status_code == 200

    def test_vendedor_cannot_touch_settings(self, api_as):
        vendedor = {"id": "u-v", "email": "v@formosa.local", "role": "VENDEDOR",
                    "permissions": get_preset_permissions("VENDEDOR")}
        assert api_as(vendedor).get("/api/settings").status_code == 403


class TestUsersAdmin:

    def test_create_and_duplicate(self, api):
        body = {"email": "Analista@Formosa.local", "password": "x", "nombre": "Analista", "role": "analista"}
        r = api.post("/api/auth/users", json=body)
        assert r.status_code == 200
        created = r.json()["user"]
        assert created["email"] == "analista@formosa.local"
        assert created["role"] == "ANALISTA"
        assert created["permissions"]["documents.review"] is True
        assert "password" not in created

        assert api.post("/api/auth/users", json=body).status_code == 409

    def test_invalid_role(self, api):
        body = {"email": "x@formosa.local", "password": "x", "nombre": "X", "role": "CEO"}
        assert api.post("/api/auth/users", json=body).status_code == 422

    def test_role_change_resets_permissions(self, api):
        user = _make_user()
        r = api.patch(f"/api/auth/users/{user['id']}", json={"role": "VIEWER"})
        assert r.json()["user"]["permissions"]["messaging.send"] is False

    def test_deactivate_kills_sessions(self, api):
        user = _make_user()
        _db_op(db.sessions.insert_one({"token": "t", "user_id": user["id"], "expires_at": "2999-01-01"}))
        r = api.delete(f"/api/auth/users/{user['id']}")
        assert r.status_code == 200
        assert _db_op(db.sessions.count_documents({"user_id": user["id"]})) == 0

    def test_cannot_deactivate_self(self, api):
        _make_user(email="admin@formosa.local", role="ADMIN", id="user-admin")
        r = api.delete("/api/auth/users/user-admin")
        assert r.status_code == 400
