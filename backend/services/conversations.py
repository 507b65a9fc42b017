"""
Conversaciones y mensajes (historial de chat por canal)

Una conversación por (platform, platform_id). Los mensajes se deduplican
por platform_msg_id porque ManyChat puede reenviar el mismo webhook.
"""

import uuid
import logging
from datetime import datetime, timezone, timedelta
from typing import Optional, List

from config import db, now_iso, parse_iso
from services.channel_detection import detect_channel, platform_id_for_subscriber
from services.manychat_client import get_manychat_client, ManychatError

logger = logging.getLogger("conversations")

MEDIA_MESSAGE_TYPES = ("image", "video", "audio", "file")


async def find_or_create_conversation(lead_id: Optional[str], platform: str, platform_id: str) -> dict:
    conv = await db.conversations.find_one(
        {"platform": platform, "platform_id": str(platform_id)}, {"_id": 0}
    )
    if conv:
        if lead_id and not conv.get("lead_id"):
            await db.conversations.update_one(
                {"id": conv["id"]}, {"$set": {"lead_id": lead_id, "updated_at": now_iso()}}
            )
            conv["lead_id"] = lead_id
        return conv

    now = now_iso()
    conv = {
        "id": str(uuid.uuid4()),
        "platform": platform,
        "platform_id": str(platform_id),
        "lead_id": lead_id,
        "status": "open",
        "last_message_at": None,
        "created_at": now,
        "updated_at": now,
    }
    await db.conversations.insert_one(conv)
    conv.pop("_id", None)
    logger.info(f"Conversación {conv['id']} creada ({platform})")
    return conv


def message_content(message: dict) -> tuple:
    """Returns: (content, media_url) según el tipo de mensaje"""
    msg_type = message.get("type") or "text"

    if msg_type == "text":
        return message.get("text") or "", None
    if msg_type in MEDIA_MESSAGE_TYPES:
        return message.get("caption") or f"[{msg_type}]", message.get("url")
    if msg_type == "location":
        return f"Ubicación: {message.get('latitude')}, {message.get('longitude')}", None
    if msg_type == "template":
        content = message.get("template_name") or "[Template]"
        if message.get("text"):
            content += f": {message['text']}"
        return content, None
    return f"[{msg_type}]", None


def _sent_at(message: dict) -> str:
    ts = message.get("timestamp")
    if ts:
        try:
            return datetime.fromtimestamp(int(ts), tz=timezone.utc).isoformat()
        except (TypeError, ValueError, OverflowError):
            pass
    return now_iso()


async def save_message(conversation_id: str, message: dict, direction: str) -> str:
    """
    Guarda un mensaje (inbound | outbound). Si ya existe uno con el mismo
    platform_msg_id devuelve su id sin duplicar.
    """
    platform_msg_id = message.get("platform_msg_id") or message.get("id")
    if platform_msg_id:
        existing = await db.messages.find_one(
            {"platform_msg_id": str(platform_msg_id)}, {"_id": 0, "id": 1}
        )
        if existing:
            logger.debug(f"Mensaje duplicado ignorado: {platform_msg_id}")
            return existing["id"]

    content, media_url = message_content(message)
    doc = {
        "id": str(uuid.uuid4()),
        "conversation_id": conversation_id,
        "direction": direction,
        "content": content,
        "media_url": media_url,
        "message_type": message.get("type") or "text",
        "platform_msg_id": str(platform_msg_id) if platform_msg_id else None,
        "sent_at": _sent_at(message),
        "created_at": now_iso(),
    }
    await db.messages.insert_one(doc)
    await update_last_activity(conversation_id)
    return doc["id"]


async def update_last_activity(conversation_id: str):
    """last_message_at = sent_at del último mensaje; se replica en el lead."""
    last = await db.messages.find(
        {"conversation_id": conversation_id}, {"_id": 0, "sent_at": 1}
    ).sort("sent_at", -1).to_list(1)
    if not last:
        return

    last_at = last[0]["sent_at"]
    await db.conversations.update_one(
        {"id": conversation_id}, {"$set": {"last_message_at": last_at, "updated_at": now_iso()}}
    )
    conv = await db.conversations.find_one({"id": conversation_id}, {"_id": 0, "lead_id": 1})
    if conv and conv.get("lead_id"):
        await db.leads.update_one(
            {"id": conv["lead_id"]}, {"$set": {"lastMessageAt": last_at}}
        )


async def list_conversations(
    platform: str = None,
    status: str = None,
    lead_id: str = None,
    page: int = 1,
    limit: int = 50,
) -> dict:
    query = {}
    if platform:
        query["platform"] = platform
    if status:
        query["status"] = status
    if lead_id:
        query["lead_id"] = lead_id

    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    total = await db.conversations.count_documents(query)
    items = await db.conversations.find(query, {"_id": 0}) \
        .sort([("last_message_at", -1), ("created_at", -1)]) \
        .skip((page - 1) * limit) \
        .limit(limit) \
        .to_list(limit)

    lead_ids = [c["lead_id"] for c in items if c.get("lead_id")]
    leads = await db.leads.find(
        {"id": {"$in": lead_ids}}, {"_id": 0, "id": 1, "nombre": 1, "telefono": 1, "origen": 1}
    ).to_list(len(lead_ids) or 1)
    by_id = {l["id"]: l for l in leads}
    for c in items:
        c["lead"] = by_id.get(c.get("lead_id"))

    return {
        "conversations": items,
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": (total + limit - 1) // limit,
    }


async def get_conversation_messages(conversation_id: str, limit: int = 500) -> List[dict]:
    return await db.messages.find({"conversation_id": conversation_id}, {"_id": 0}) \
        .sort("sent_at", 1).to_list(limit)


async def get_lead_messages(lead_id: str, limit: int = 500) -> List[dict]:
    convs = await db.conversations.find({"lead_id": lead_id}, {"_id": 0, "id": 1, "platform": 1}).to_list(20)
    if not convs:
        return []
    platform_of = {c["id"]: c["platform"] for c in convs}
    messages = await db.messages.find(
        {"conversation_id": {"$in": list(platform_of.keys())}}, {"_id": 0}
    ).sort("sent_at", 1).to_list(limit)
    for m in messages:
        m["platform"] = platform_of.get(m["conversation_id"])
    return messages


# ==================== HISTORIAL DESDE MANYCHAT ====================

async def _subscriber_conversation(subscriber: dict, lead_id: Optional[str]) -> dict:
    platform = detect_channel(subscriber)
    if platform == "unknown":
        platform = "whatsapp"
    return await find_or_create_conversation(lead_id, platform, platform_id_for_subscriber(subscriber))


async def sync_last_message(subscriber: dict, lead_id: Optional[str], conversation_id: str = None) -> dict:
    """
    ManyChat no expone el historial de mensajes: solo last_input_text y
    last_interaction del subscriber. Se guardan como mensaje inbound con
    platform_msg_id manychat_last_<id>_<ts>, sin repetir un texto que la
    conversación ya tenga. Sin conversation_id se busca o crea la
    conversación del canal detectado.

    Returns: {"success", "message_id", "conversation_id", "reason"}
    """
    text = (subscriber.get("last_input_text") or "").strip()
    if not text:
        return {"success": True, "message_id": None, "conversation_id": None, "reason": "sin last_input_text"}

    if conversation_id:
        conv = {"id": conversation_id}
    else:
        conv = await _subscriber_conversation(subscriber, lead_id)

    if await db.messages.find_one({"conversation_id": conv["id"], "content": text}, {"_id": 0, "id": 1}):
        return {"success": True, "message_id": None, "conversation_id": conv["id"], "reason": "mensaje ya existe"}

    interaction = parse_iso(subscriber.get("last_interaction"))
    ts = int(interaction.timestamp()) if interaction else int(datetime.now(timezone.utc).timestamp())
    message_id = await save_message(conv["id"], {
        "type": "text",
        "text": text,
        "timestamp": ts,
        "platform_msg_id": f"manychat_last_{subscriber.get('id')}_{ts}",
    }, "inbound")

    logger.info(f"Último mensaje de subscriber {subscriber.get('id')} sincronizado en {conv['id']}")
    return {"success": True, "message_id": message_id, "conversation_id": conv["id"], "reason": None}


async def sync_conversations_from_manychat(days: int = 30, limit: int = 100, phone_limit: int = 50) -> dict:
    """
    Refresca conversaciones con los datos actuales de ManyChat:
    1. leads con manychatId actualizados en los últimos `days` días
    2. leads sin manychatId con teléfono: se buscan en ManyChat y se vinculan
    Un manychatId cuyo subscriber ya no existe se limpia del lead.
    """
    client = get_manychat_client()
    since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
    fields = {"_id": 0, "id": 1, "nombre": 1, "telefono": 1, "manychatId": 1}

    with_id = await db.leads.find(
        {"manychatId": {"$nin": [None, ""]}, "updatedAt": {"$gte": since}}, fields
    ).sort("updatedAt", -1).to_list(limit)
    without_id = await db.leads.find(
        {"manychatId": {"$in": [None, ""]}, "telefono": {"$regex": r"^\+"}}, fields
    ).sort("updatedAt", -1).to_list(phone_limit)

    found_subscribers = 0
    for lead in without_id:
        try:
            sub = await client.find_by_phone(lead["telefono"])
        except ManychatError as e:
            logger.warning(f"Búsqueda por teléfono falló para lead {lead['id']}: {e}")
            continue
        if not sub or not sub.get("id"):
            continue
        lead["manychatId"] = str(sub["id"])
        await db.leads.update_one(
            {"id": lead["id"]}, {"$set": {"manychatId": lead["manychatId"], "updatedAt": now_iso()}}
        )
        found_subscribers += 1
        with_id.append(lead)

    results = {
        "total": len(with_id),
        "synced": 0,
        "messages_synced": 0,
        "cleared": 0,
        "found_subscribers": found_subscribers,
        "conversations_without_messages": 0,
        "errors": [],
    }

    for lead in with_id:
        try:
            sub = await client.get_subscriber_info(lead["manychatId"])
            if not sub:
                await db.leads.update_one(
                    {"id": lead["id"]}, {"$set": {"manychatId": None, "updatedAt": now_iso()}}
                )
                results["cleared"] += 1
                logger.info(f"manychatId limpiado en lead {lead['id']}: subscriber {lead['manychatId']} no existe")
                continue

            synced = await sync_last_message(sub, lead["id"])
            conv_id = synced["conversation_id"]
            if conv_id is None:
                conv_id = (await _subscriber_conversation(sub, lead["id"]))["id"]
            if synced["message_id"]:
                results["messages_synced"] += 1
            if not await db.messages.count_documents({"conversation_id": conv_id}):
                results["conversations_without_messages"] += 1
            results["synced"] += 1
        except ManychatError as e:
            results["errors"].append({"lead_id": lead["id"], "error": str(e)})

    logger.info(
        f"Sync de conversaciones: {results['synced']}/{results['total']}, "
        f"{results['messages_synced']} mensajes, {found_subscribers} subscribers nuevos"
    )
    return results
