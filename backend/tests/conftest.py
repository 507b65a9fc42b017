"""
Formosa CRM - fixtures de tests

- La base es mongomock-motor (MongoDB en memoria con la interfaz de motor);
  se instala en config antes de que cualquier servicio haga
  `from config import db`.
- ManyChat se simula con httpx.MockTransport (FakeManychat).
"""

import os
import sys
import json
import asyncio
from pathlib import Path

import httpx
import pytest
from mongomock_motor import AsyncMongoMockClient

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

os.environ.setdefault("MANYCHAT_API_KEY", "")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import config  # noqa: E402


# ==================== DB EN MEMORIA ====================

config.client = AsyncMongoMockClient()
config.db = config.client[config.DB_NAME]


def _db_op(coro):
    """Corre una operación async en un event loop nuevo."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _drop_collections():
    for name in await config.db.list_collection_names():
        await config.db.drop_collection(name)


@pytest.fixture(autouse=True)
def clean_db(tmp_path, monkeypatch):
    _db_op(_drop_collections())
    monkeypatch.setattr(config, "UPLOAD_DIR", tmp_path / "uploads")
    monkeypatch.setattr(config, "MANYCHAT_WEBHOOK_SECRET", "")
    yield
    _db_op(_drop_collections())


# ==================== MANYCHAT SIMULADO ====================

class FakeManychat:
    """
    API de ManyChat en memoria.
    subscribers: {id: subscriber}; cada llamada queda en `calls`.
    """

    def __init__(self):
        self.subscribers = {}
        self.page_tags = []
        self.page_custom_fields = []
        self.calls = []
        self.fail_paths = {}
        self.send_response = {"status": "success", "data": {}}

    def add_subscriber(self, **fields):
        sub = {"tags": [], "custom_fields": {}, **fields}
        sub["id"] = str(sub["id"])
        self.subscribers[sub["id"]] = sub
        return sub

    def tag_names(self, subscriber_id):
        return [t["name"] for t in self.subscribers[str(subscriber_id)]["tags"]]

    def calls_to(self, path):
        return [c for c in self.calls if c["path"] == path]

    def _find(self, field, value):
        for sub in self.subscribers.values():
            if field == "phone" and value in (sub.get("phone"), sub.get("whatsapp_phone")):
                return sub
            if field == "email" and value == (sub.get("email") or "").lower():
                return sub
        return None

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        body = json.loads(request.content) if request.content else {}
        self.calls.append({"method": request.method, "path": path,
                           "params": dict(request.url.params), "body": body})

        if path in self.fail_paths:
            status = self.fail_paths[path]
            return httpx.Response(status, json={"status": "error", "message": f"HTTP {status}"},
                                  headers={"Retry-After": "0"})

        if path == "/fb/subscriber/getInfo":
            sub = self.subscribers.get(request.url.params.get("subscriber_id"))
            if not sub:
                return httpx.Response(404, json={"status": "error", "message": "Subscriber not found"})
            return httpx.Response(200, json={"status": "success", "data": sub})

        if path == "/fb/subscriber/findBySystemField":
            sub = self._find(request.url.params.get("field_name"), request.url.params.get("field_value"))
            return httpx.Response(200, json={"status": "success", "data": [sub] if sub else []})

        if path == "/fb/subscriber/addTag":
            sub = self.subscribers[str(body["subscriber_id"])]
            if body["tag_name"] not in self.tag_names(sub["id"]):
                sub["tags"].append({"id": len(sub["tags"]) + 1, "name": body["tag_name"]})
            return httpx.Response(200, json={"status": "success"})

        if path == "/fb/subscriber/removeTag":
            sub = self.subscribers[str(body["subscriber_id"])]
            sub["tags"] = [t for t in sub["tags"] if t["name"] != body["tag_name"]]
            return httpx.Response(200, json={"status": "success"})

        if path == "/fb/subscriber/setCustomField":
            sub = self.subscribers[str(body["subscriber_id"])]
            sub["custom_fields"][body["field_name"]] = body["field_value"]
            return httpx.Response(200, json={"status": "success"})

        if path == "/fb/subscriber/createSubscriber":
            sub = self.add_subscriber(
                id=str(9000000000 + len(self.subscribers)),
                first_name=body.get("first_name"),
                last_name=body.get("last_name"),
                phone=body.get("phone"),
                whatsapp_phone=body.get("whatsapp_phone"),
                email=body.get("email"),
            )
            return httpx.Response(200, json={"status": "success", "data": sub})

        if path == "/fb/page/getTags":
            return httpx.Response(200, json={"status": "success", "data": self.page_tags})

        if path == "/fb/page/getCustomFields":
            return httpx.Response(200, json={"status": "success", "data": self.page_custom_fields})

        if path == "/fb/page/getInfo":
            return httpx.Response(200, json={"status": "success", "data": {"name": "Formosa Moto Créditos"}})

        if path == "/fb/sending/sendContent":
            return httpx.Response(200, json=self.send_response)

        return httpx.Response(404, json={"status": "error", "message": "unknown endpoint"})


@pytest.fixture
def manychat():
    from services.manychat_client import ManychatClient, set_manychat_client

    fake = FakeManychat()
    set_manychat_client(ManychatClient(
        api_key="test-key",
        transport=httpx.MockTransport(fake.handler),
        min_interval=0,
        backoff_base=0,
    ))
    yield fake
    set_manychat_client(None)


@pytest.fixture
def no_manychat():
    """Cliente sin API key (ManyChat no configurado)."""
    from services.manychat_client import ManychatClient, set_manychat_client

    set_manychat_client(ManychatClient(api_key=""))
    yield
    set_manychat_client(None)


# ==================== API ====================

ADMIN_USER = {
    "id": "user-admin",
    "email": "admin@formosa.local",
    "nombre": "Administrador",
    "role": "ADMIN",
    "permissions": {},
    "is_active": True,
}


@pytest.fixture
def api():
    """TestClient autenticado como ADMIN."""
    from fastapi.testclient import TestClient
    from server import app
    from routes.auth import get_current_user

    app.dependency_overrides[get_current_user] = lambda: dict(ADMIN_USER)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def api_as():
    """api_as(user) -> TestClient autenticado con ese usuario."""
    from fastapi.testclient import TestClient
    from server import app
    from routes.auth import get_current_user

    def _make(user: dict):
        app.dependency_overrides[get_current_user] = lambda: dict(user)
        return TestClient(app)

    yield _make
    app.dependency_overrides.clear()
