"""
Formosa CRM - Webhook ManyChat
Run: cd backend && pytest tests/test_webhooks.py -v

Cubre:
- Procesamiento por tipo de evento (servicio)
- Endpoint /api/webhooks/manychat: secreto, lotes, JSON inválido
"""

import asyncio

import config
from config import db
from services.pipeline import get_lead_pipeline
from services.webhook_processor import process_webhook_event


def _db_op(coro):
    """Run async DB operation in a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


SUBSCRIBER = {
    "id": "1234567890",
    "first_name": "Juan",
    "last_name": "Pérez",
    "whatsapp_phone": "+5493704123456",
    "tags": [{"id": 1, "name": "lead-nuevo"}],
    "custom_fields": {},
}

FORM_TEXT = (
    "📋 *Solicitud de Crédito*\n"
    "👤 Nombre: Juan Pérez\n"
    "🪪 DNI/CUIT: 20-12345678-9\n"
    "💰 Ingresos: $900.000\n"
    "🏍️ Marca: Honda\n"
    "🏍️ Modelo: Wave 110\n"
)


# ==================== SERVICIO ====================

class TestProcessWebhookEvent:

    def test_new_subscriber_creates_lead(self):
        result = _db_op(process_webhook_event({"event_type": "new_subscriber", "subscriber": SUBSCRIBER}))
        assert result["success"] is True
        assert result["created"] is True
        lead = _db_op(db.leads.find_one({"id": result["leadId"]}, {"_id": 0}))
        assert lead["nombre"] == "Juan Pérez"
        assert lead["origen"] == "whatsapp"
        assert lead["tags"] == ["lead-nuevo"]

    def test_new_subscriber_with_message(self):
        result = _db_op(process_webhook_event({
            "event_type": "new_subscriber",
            "subscriber": SUBSCRIBER,
            "message": {"id": "m1", "type": "text", "text": "Hola!"},
        }))
        assert result["success"] is True
        assert result["created"] is True
        assert result["conversationId"]
        assert result["messageId"]

    def test_missing_subscriber(self):
        result = _db_op(process_webhook_event({"event_type": "message_received"}))
        assert result["success"] is False
        assert result["error"] == "No subscriber found in webhook event"

    def test_subscriber_fetched_by_id(self, manychat):
        manychat.add_subscriber(**SUBSCRIBER)
        result = _db_op(process_webhook_event({"event_type": "subscriber_updated",
                                               "subscriber_id": "1234567890"}))
        assert result["success"] is True
        assert manychat.calls_to("/fb/subscriber/getInfo")

    def test_message_received_stored_inbound(self):
        event = {"event_type": "message_received", "subscriber": SUBSCRIBER,
                 "message": {"id": "m2", "type": "text", "text": "Quiero info", "timestamp": 1736500000}}
        result = _db_op(process_webhook_event(event))
        msg = _db_op(db.messages.find_one({"id": result["messageId"]}, {"_id": 0}))
        assert msg["direction"] == "inbound"
        assert msg["content"] == "Quiero info"
        assert msg["sent_at"].startswith("2025-01-10")

    def test_duplicate_message_not_stored_twice(self):
        event = {"event_type": "message_received", "subscriber": SUBSCRIBER,
                 "message": {"id": "m3", "type": "text", "text": "Hola"}}
        first = _db_op(process_webhook_event(event))
        second = _db_op(process_webhook_event(event))
        assert first["messageId"] == second["messageId"]
        assert _db_op(db.messages.count_documents({})) == 1

    def test_message_sent_is_outbound(self):
        event = {"event_type": "message_sent", "subscriber": SUBSCRIBER,
                 "message": {"type": "image", "url": "https://x/a.jpg"}}
        result = _db_op(process_webhook_event(event))
        msg = _db_op(db.messages.find_one({"id": result["messageId"]}, {"_id": 0}))
        assert msg["direction"] == "outbound"
        assert msg["content"] == "[image]"
        assert msg["media_url"] == "https://x/a.jpg"

    def test_message_event_without_message(self):
        result = _db_op(process_webhook_event({"event_type": "message_received", "subscriber": SUBSCRIBER}))
        assert result["success"] is False

    def test_form_message_fills_lead_and_moves(self):
        """Formulario con CUIL: completa el lead y pasa a LISTO_ANALISIS."""
        event = {"event_type": "message_received", "subscriber": SUBSCRIBER,
                 "message": {"type": "text", "text": FORM_TEXT}}
        result = _db_op(process_webhook_event(event))

        lead = _db_op(db.leads.find_one({"id": result["leadId"]}, {"_id": 0}))
        assert lead["cuil"] == "20-12345678-9"
        assert lead["ingresos"] == 900000
        assert lead["producto"] == "Honda Wave 110"
        assert _db_op(get_lead_pipeline(result["leadId"]))["current_stage"] == "LISTO_ANALISIS"

    def test_tag_added_refreshes_tags(self):
        _db_op(process_webhook_event({"event_type": "new_subscriber", "subscriber": SUBSCRIBER}))
        updated = {**SUBSCRIBER, "tags": [{"id": 1, "name": "lead-nuevo"}, {"id": 9, "name": "vip"}]}
        result = _db_op(process_webhook_event({"event_type": "tag_added", "subscriber": updated,
                                               "tag": {"id": 9, "name": "vip"}}))
        lead = _db_op(db.leads.find_one({"id": result["leadId"]}, {"_id": 0}))
        assert lead["tags"] == ["lead-nuevo", "vip"]

    def test_unknown_event_accepted(self):
        result = _db_op(process_webhook_event({"event_type": "opt_out", "subscriber": SUBSCRIBER}))
        assert result["success"] is True
        assert result["leadId"] is None


# ==================== ENDPOINT ====================

class TestWebhookEndpoint:

    def test_health(self, api):
        r = api.get("/api/webhooks/manychat")
        assert r.status_code == 200
        assert r.json()["status"] == "ok"

    def test_single_event(self, api):
        r = api.post("/api/webhooks/manychat", json={"event_type": "new_subscriber", "subscriber": SUBSCRIBER})
        assert r.status_code == 200
        assert r.json()["success"] is True
        assert r.json()["leadId"]

    def test_batch(self, api):
        other = {**SUBSCRIBER, "id": "1234567891", "whatsapp_phone": "+5493704999999"}
        r = api.post("/api/webhooks/manychat", json={"events": [
            {"event_type": "new_subscriber", "subscriber": SUBSCRIBER},
            {"event_type": "new_subscriber", "subscriber": other},
            {"subscriber": other},
        ]})
        body = r.json()
        assert r.status_code == 200
        assert body["processed"] == 2
        assert body["success"] is False
        assert body["results"][2] == {"success": False, "error": "Evento sin event_type"}

    def test_batch_of_one_keeps_counters(self, api):
        r = api.post("/api/webhooks/manychat", json={"events": [
            {"event_type": "new_subscriber", "subscriber": SUBSCRIBER},
        ]})
        body = r.json()
        assert r.status_code == 200
        assert body["processed"] == 1
        assert body["success"] is True
        assert len(body["results"]) == 1

    def test_empty_batch(self, api):
        body = api.post("/api/webhooks/manychat", json={"events": []}).json()
        assert body == {"success": True, "processed": 0, "results": []}

    def test_invalid_json(self, api):
        r = api.post("/api/webhooks/manychat", content=b"{no json",
                     headers={"Content-Type": "application/json"})
        assert r.status_code == 400

    def test_secret_required(self, api, monkeypatch):
        monkeypatch.setattr(config, "MANYCHAT_WEBHOOK_SECRET", "s3cret")
        event = {"event_type": "new_subscriber", "subscriber": SUBSCRIBER}

        assert api.post("/api/webhooks/manychat", json=event).status_code == 401
        assert api.post("/api/webhooks/manychat", json=event,
                        headers={"X-Webhook-Secret": "otro"}).status_code == 401
        ok = api.post("/api/webhooks/manychat", json=event, headers={"X-Webhook-Secret": "s3cret"})
        assert ok.status_code == 200
