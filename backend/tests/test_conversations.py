"""
Formosa CRM - Conversaciones y mensajes
Run: cd backend && pytest tests/test_conversations.py -v
"""

import asyncio

from config import db, now_iso
from services.conversations import (
    find_or_create_conversation,
    save_message,
    message_content,
    list_conversations,
    get_lead_messages,
    sync_last_message,
)


def _db_op(coro):
    """Run async DB operation in a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class TestMessageContent:

    def test_text(self):
        assert message_content({"type": "text", "text": "hola"}) == ("hola", None)

    def test_media_with_caption(self):
        assert message_content({"type": "video", "caption": "mirá", "url": "u"}) == ("mirá", "u")

    def test_location(self):
        content, _ = message_content({"type": "location", "latitude": -26.18, "longitude": -58.17})
        assert content == "Ubicación: -26.18, -58.17"

    def test_template(self):
        content, _ = message_content({"type": "template", "template_name": "bienvenida", "text": "Hola"})
        assert content == "bienvenida: Hola"

    def test_unknown_type(self):
        assert message_content({"type": "sticker"}) == ("[sticker]", None)


class TestConversations:

    def test_one_conversation_per_platform_id(self):
        a = _db_op(find_or_create_conversation("lead-1", "whatsapp", "+5493704123456"))
        b = _db_op(find_or_create_conversation("lead-1", "whatsapp", "+5493704123456"))
        c = _db_op(find_or_create_conversation("lead-1", "instagram", "ig-1"))
        assert a["id"] == b["id"]
        assert c["id"] != a["id"]

    def test_orphan_conversation_gets_lead(self):
        conv = _db_op(find_or_create_conversation(None, "whatsapp", "+5493704123456"))
        again = _db_op(find_or_create_conversation("lead-1", "whatsapp", "+5493704123456"))
        assert again["id"] == conv["id"]
        assert again["lead_id"] == "lead-1"

    def test_last_activity_propagates_to_lead(self):
        _db_op(db.leads.insert_one({"id": "lead-1", "nombre": "Ana"}))
        conv = _db_op(find_or_create_conversation("lead-1", "whatsapp", "+5493704123456"))
        _db_op(save_message(conv["id"], {"type": "text", "text": "uno", "timestamp": 1736500000}, "inbound"))
        _db_op(save_message(conv["id"], {"type": "text", "text": "dos", "timestamp": 1736600000}, "outbound"))

        stored = _db_op(db.conversations.find_one({"id": conv["id"]}, {"_id": 0}))
        lead = _db_op(db.leads.find_one({"id": "lead-1"}, {"_id": 0}))
        assert stored["last_message_at"].startswith("2025-01-11")
        assert lead["lastMessageAt"] == stored["last_message_at"]

    def test_lead_messages_across_channels(self):
        wa = _db_op(find_or_create_conversation("lead-1", "whatsapp", "+5493704123456"))
        ig = _db_op(find_or_create_conversation("lead-1", "instagram", "ig-1"))
        _db_op(save_message(wa["id"], {"type": "text", "text": "wa", "timestamp": 1736500000}, "inbound"))
        _db_op(save_message(ig["id"], {"type": "text", "text": "ig", "timestamp": 1736400000}, "inbound"))

        messages = _db_op(get_lead_messages("lead-1"))
        assert [m["content"] for m in messages] == ["ig", "wa"]
        assert [m["platform"] for m in messages] == ["instagram", "whatsapp"]

    def test_list_with_lead_summary(self):
        _db_op(db.leads.insert_one({"id": "lead-1", "nombre": "Ana", "telefono": "+5493704123456"}))
        _db_op(find_or_create_conversation("lead-1", "whatsapp", "+5493704123456"))
        _db_op(find_or_create_conversation(None, "instagram", "ig-9"))

        result = _db_op(list_conversations(platform="whatsapp"))
        assert result["total"] == 1
        assert result["conversations"][0]["lead"]["nombre"] == "Ana"


LAST_INPUT_SUBSCRIBER = {
    "id": "800",
    "whatsapp_phone": "+5493704123456",
    "last_input_text": "Quiero sacar la moto en cuotas",
    "last_interaction": "2025-03-01T12:00:00+00:00",
}


class TestSyncLastMessage:

    def test_saves_last_input_as_inbound(self):
        result = _db_op(sync_last_message(LAST_INPUT_SUBSCRIBER, "lead-1"))
        assert result["success"] is True
        assert result["message_id"]

        conv = _db_op(db.conversations.find_one({"id": result["conversation_id"]}, {"_id": 0}))
        assert conv["platform"] == "whatsapp"
        assert conv["platform_id"] == "+5493704123456"
        assert conv["lead_id"] == "lead-1"
        assert conv["last_message_at"] == "2025-03-01T12:00:00+00:00"

        msg = _db_op(db.messages.find_one({"id": result["message_id"]}, {"_id": 0}))
        assert msg["direction"] == "inbound"
        assert msg["content"] == "Quiero sacar la moto en cuotas"

    def test_same_text_not_saved_twice(self):
        _db_op(sync_last_message(LAST_INPUT_SUBSCRIBER, "lead-1"))
        again = _db_op(sync_last_message({**LAST_INPUT_SUBSCRIBER, "last_interaction": None}, "lead-1"))
        assert again["message_id"] is None
        assert again["reason"] == "mensaje ya existe"
        assert _db_op(db.messages.count_documents({})) == 1

    def test_without_last_input(self):
        result = _db_op(sync_last_message({"id": "801", "phone": "+5493704000000"}, "lead-1"))
        assert result == {"success": True, "message_id": None, "conversation_id": None,
                          "reason": "sin last_input_text"}
        assert _db_op(db.conversations.count_documents({})) == 0

    def test_into_given_conversation(self):
        conv = _db_op(find_or_create_conversation("lead-1", "instagram", "ig-1"))
        result = _db_op(sync_last_message(LAST_INPUT_SUBSCRIBER, "lead-1", conversation_id=conv["id"]))
        assert result["conversation_id"] == conv["id"]
        assert _db_op(db.conversations.count_documents({})) == 1


class TestConversationsApi:

    def test_messages_endpoint(self, api):
        conv = _db_op(find_or_create_conversation("lead-1", "whatsapp", "+5493704123456"))
        _db_op(save_message(conv["id"], {"type": "text", "text": "hola"}, "inbound"))

        r = api.get(f"/api/conversations/{conv['id']}/messages")
        assert r.status_code == 200
        assert r.json()["count"] == 1

    def test_unknown_conversation(self, api):
        assert api.get("/api/conversations/nope/messages").status_code == 404

    def test_sync_manychat(self, api, manychat):
        manychat.add_subscriber(id="801", whatsapp_phone="+5493704111111",
                                last_input_text="Hola, quiero info", last_interaction="2025-03-01T12:00:00+00:00")
        manychat.add_subscriber(id="803", whatsapp_phone="+5493704333333")
        for lead_id, manychat_id, phone in (("lead-1", "801", "+5493704111111"),
                                            ("lead-2", "802", "+5493704222222"),
                                            ("lead-3", None, "+5493704333333")):
            _db_op(db.leads.insert_one({"id": lead_id, "nombre": lead_id, "telefono": phone,
                                        "manychatId": manychat_id, "updatedAt": now_iso()}))

        r = api.post("/api/conversations/sync-manychat")

        assert r.status_code == 200
        body = r.json()
        assert body["total"] == 3
        assert body["synced"] == 2
        assert body["messages_synced"] == 1
        assert body["cleared"] == 1
        assert body["found_subscribers"] == 1
        assert body["conversations_without_messages"] == 1
        assert _db_op(db.leads.find_one({"id": "lead-2"}))["manychatId"] is None
        assert _db_op(db.leads.find_one({"id": "lead-3"}))["manychatId"] == "803"
        assert len(_db_op(get_lead_messages("lead-1"))) == 1

    def test_sync_manychat_not_configured(self, api, no_manychat):
        assert api.post("/api/conversations/sync-manychat").status_code == 503
