"""
Formosa CRM - Envío de mensajes vía ManyChat
Run: cd backend && pytest tests/test_messaging.py -v
"""

import asyncio

from config import db
from services.pipeline import create_lead_pipeline
from services.messaging import (
    send_message,
    validate_send_params,
    build_messages,
    map_manychat_error,
)


def _db_op(coro):
    """Run async DB operation in a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class TestValidateSendParams:

    def test_requires_identifier(self):
        assert validate_send_params({"message": "hola"})["code"] == "SUBSCRIBER_NOT_FOUND"

    def test_phone_must_be_e164(self):
        err = validate_send_params({"phone": "3704123456", "message": "hola"})
        assert err["code"] == "INVALID_PHONE"

    def test_invalid_email(self):
        err = validate_send_params({"email": "ana@", "message": "hola"})
        assert err["code"] == "INVALID_EMAIL"

    def test_empty_message(self):
        err = validate_send_params({"subscriber_id": "1", "message": "   "})
        assert err["code"] == "MESSAGE_TOO_LONG"

    def test_too_long(self):
        err = validate_send_params({"subscriber_id": "1", "message": "x" * 4097})
        assert err["code"] == "MESSAGE_TOO_LONG"

    def test_exactly_max_length_ok(self):
        assert validate_send_params({"subscriber_id": "1", "message": "x" * 4096}) is None

    def test_media_url_needs_media_type(self):
        err = validate_send_params({
            "subscriber_id": "1", "message": "hola",
            "media_url": "https://x/img.png", "message_type": "text",
        })
        assert err["code"] == "UNSUPPORTED_MESSAGE_TYPE"


class TestBuildMessages:

    def test_text(self):
        assert build_messages({"message": "hola"}) == [{"type": "text", "text": "hola"}]

    def test_image_with_caption(self):
        msgs = build_messages({"message": "mirá", "message_type": "image", "media_url": "https://x/a.jpg"})
        assert msgs == [{"type": "image", "url": "https://x/a.jpg", "caption": "mirá"}]

    def test_file_followed_by_text(self):
        msgs = build_messages({"message": "adjunto", "message_type": "file",
                               "media_url": "https://x/a.pdf", "filename": "recibo.pdf"})
        assert msgs[0] == {"type": "file", "url": "https://x/a.pdf", "filename": "recibo.pdf"}
        assert msgs[1] == {"type": "text", "text": "adjunto"}

    def test_media_without_url_falls_back_to_text(self):
        assert build_messages({"message": "hola", "message_type": "image"})[0]["type"] == "text"


class TestMapError:

    def test_known_and_unknown(self):
        assert map_manychat_error("OUTSIDE_WINDOW") == "OUTSIDE_WINDOW"
        assert map_manychat_error("WHATEVER") == "INTERNAL_ERROR"
        assert map_manychat_error(None) == "INTERNAL_ERROR"


class TestSendMessage:

    def test_send_whatsapp_and_store_outbound(self, manychat):
        manychat.add_subscriber(id="500", whatsapp_phone="+5493704123456")
        _db_op(db.leads.insert_one({"id": "lead-1", "nombre": "Ana", "manychatId": "500"}))

        result = _db_op(send_message({"phone": "+5493704123456", "message": "Hola Ana"}))

        assert result["success"] is True
        assert result["channel"] == "whatsapp"
        assert result["subscriber_id"] == "500"
        sent = manychat.calls_to("/fb/sending/sendContent")[0]["body"]
        assert sent["subscriber_id"] == "500"
        assert sent["data"]["messages"] == [{"type": "text", "text": "Hola Ana"}]

        msg = _db_op(db.messages.find_one({"id": result["message_id"]}, {"_id": 0}))
        assert msg["direction"] == "outbound"
        assert msg["content"] == "Hola Ana"

    def test_detected_channel_wins(self, manychat):
        manychat.add_subscriber(id="501", instagram_id="ig-501")
        result = _db_op(send_message({"subscriber_id": "501", "message": "hola", "channel": "whatsapp"}))
        assert result["channel"] == "instagram"

    def test_subscriber_not_found(self, manychat):
        result = _db_op(send_message({"subscriber_id": "404", "message": "hola"}))
        assert result == {"success": False, "error": {
            "code": "SUBSCRIBER_NOT_FOUND", "message": "No se encontró el contacto en ManyChat"}}

    def test_unknown_channel(self, manychat):
        manychat.add_subscriber(id="502", page_id="55")
        result = _db_op(send_message({"subscriber_id": "502", "message": "hola"}))
        assert result["error"]["code"] == "CHANNEL_UNAVAILABLE"

    def test_manychat_rejection_mapped(self, manychat):
        manychat.add_subscriber(id="503", whatsapp_phone="+5493704123456")
        manychat.send_response = {"status": "error", "error": "24h window", "error_code": "OUTSIDE_WINDOW"}
        result = _db_op(send_message({"subscriber_id": "503", "message": "hola"}))
        assert result["error"]["code"] == "OUTSIDE_WINDOW"
        assert result["error"]["channel"] == "whatsapp"

    def test_rate_limit(self, manychat):
        manychat.add_subscriber(id="504", whatsapp_phone="+5493704123456")
        manychat.fail_paths["/fb/sending/sendContent"] = 429
        result = _db_op(send_message({"subscriber_id": "504", "message": "hola"}))
        assert result["error"]["code"] == "RATE_LIMIT"

    def test_without_lead_nothing_stored(self, manychat):
        manychat.add_subscriber(id="505", whatsapp_phone="+5493704123456")
        result = _db_op(send_message({"subscriber_id": "505", "message": "hola"}))
        assert result["success"] is True
        assert result["message_id"] is None
        assert _db_op(db.messages.count_documents({})) == 0

    def test_not_configured(self, no_manychat):
        result = _db_op(send_message({"subscriber_id": "1", "message": "hola"}))
        assert result["error"]["code"] == "INTERNAL_ERROR"


class TestMessagingApi:

    def _lead(self, **fields):
        doc = {"id": "lead-1", "nombre": "Ana", "telefono": "+5493704123456", "tags": [], **fields}
        _db_op(db.leads.insert_one(doc))
        return doc

    def test_send_by_lead_uses_manychat_id(self, api, manychat):
        manychat.add_subscriber(id="600", whatsapp_phone="+5493704123456")
        self._lead(manychatId="600")
        r = api.post("/api/messaging/send", json={"lead_id": "lead-1", "message": "Hola"})
        assert r.status_code == 200
        assert r.json()["subscriber_id"] == "600"
        assert api.get("/api/leads/lead-1/messages").json()["count"] == 1

    def test_send_by_lead_falls_back_to_phone(self, api, manychat):
        manychat.add_subscriber(id="601", whatsapp_phone="+5493704123456")
        self._lead()
        r = api.post("/api/messaging/send", json={"lead_id": "lead-1", "message": "Hola"})
        assert r.status_code == 200
        assert manychat.calls_to("/fb/subscriber/findBySystemField")

    def test_error_codes_mapped_to_status(self, api, manychat):
        assert api.post("/api/messaging/send", json={"phone": "370", "message": "x"}).status_code == 400
        r = api.post("/api/messaging/send", json={"subscriber_id": "404", "message": "x"})
        assert r.status_code == 404
        assert r.json()["detail"]["code"] == "SUBSCRIBER_NOT_FOUND"

    def test_unknown_lead(self, api, manychat):
        assert api.post("/api/messaging/send", json={"lead_id": "nope", "message": "x"}).status_code == 404

    def test_rejection_messages(self, api):
        messages = api.get("/api/messaging/rejection-messages").json()["messages"]
        assert [m["id"] for m in messages] == ["income_mismatch", "bank_requirement", "credit_history"]

    def test_send_rejection_moves_to_rechazado(self, api, manychat):
        manychat.add_subscriber(id="602", whatsapp_phone="+5493704123456")
        self._lead(manychatId="602")
        _db_op(create_lead_pipeline("lead-1"))

        r = api.post("/api/messaging/send-rejection",
                     json={"lead_id": "lead-1", "message_id": "credit_history"})

        assert r.status_code == 200
        body = r.json()
        assert body["pipeline"]["to_stage"] == "RECHAZADO"
        sent = manychat.calls_to("/fb/sending/sendContent")[0]["body"]
        assert "historial crediticio" in sent["data"]["messages"][0]["text"]
        assert manychat.tag_names("602") == ["credito-rechazado"]

    def test_send_rejection_unknown_template(self, api):
        r = api.post("/api/messaging/send-rejection", json={"lead_id": "lead-1", "message_id": "nope"})
        assert r.status_code == 400
