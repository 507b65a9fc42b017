"""
Procesamiento de webhooks de ManyChat

Tipos de evento:
- new_subscriber        crea el lead (sin buscar por teléfono) y guarda el mensaje si viene
- subscriber_updated    actualiza el lead
- message_received      mensaje entrante (inbound); si es un formulario se parsea
- message_sent          mensaje saliente (outbound)
- tag_added/tag_removed re-sincroniza tags desde ManyChat
- custom_field_changed  re-sincroniza el subscriber completo
Cualquier otro tipo se acepta sin procesar.
"""

import logging
from typing import Optional

from config import db, now_iso
from services.channel_detection import detect_channel, platform_id_for_subscriber
from services.manychat_client import get_manychat_client, ManychatError
from services.manychat_sync import (
    find_or_create_lead_from_subscriber,
    sync_subscriber_to_lead,
    sync_tags_from_manychat,
)
from services.conversations import find_or_create_conversation, save_message
from services.form_parser import parse_form_message, update_lead_from_parsed_form
from services.pipeline import check_and_move_lead_with_cuil
from services.event_logger import safe_log_event

logger = logging.getLogger("webhooks")


def _result(success: bool, lead_id=None, conversation_id=None, message_id=None, error=None, created=None) -> dict:
    out = {
        "success": success,
        "leadId": lead_id,
        "conversationId": conversation_id,
        "messageId": message_id,
        "error": error,
    }
    if created is not None:
        out["created"] = created
    return out


async def _resolve_subscriber(event: dict) -> Optional[dict]:
    if event.get("subscriber"):
        return event["subscriber"]
    sid = event.get("subscriber_id")
    if not sid:
        return None
    try:
        return await get_manychat_client().get_subscriber_info(sid)
    except ManychatError as e:
        logger.warning(f"No se pudo obtener subscriber {sid}: {e}")
        return None


async def process_webhook_event(event: dict) -> dict:
    """Nunca lanza: los errores se devuelven en el resultado."""
    event_type = event.get("event_type")
    try:
        subscriber = await _resolve_subscriber(event)
        if not subscriber:
            logger.warning(f"Webhook sin subscriber ({event_type})")
            return _result(False, error="No subscriber found in webhook event")

        logger.info(f"Webhook {event_type} subscriber={subscriber.get('id')}")

        if event_type == "new_subscriber":
            lead_id, created = await sync_subscriber_to_lead(subscriber, force_create=True)
            if event.get("message"):
                msg = await handle_message_event(subscriber, event["message"], "message_received")
                msg["leadId"] = lead_id
                msg["created"] = created
                return msg
            return _result(True, lead_id=lead_id, created=created)

        if event_type == "subscriber_updated":
            lead_id, created = await sync_subscriber_to_lead(subscriber)
            return _result(True, lead_id=lead_id, created=created)

        if event_type in ("message_received", "message_sent"):
            if not event.get("message"):
                return _result(False, error="Evento de mensaje sin message")
            return await handle_message_event(subscriber, event["message"], event_type)

        if event_type in ("tag_added", "tag_removed"):
            lead_id, _ = await find_or_create_lead_from_subscriber(subscriber)
            await sync_tags_from_manychat(lead_id, subscriber if subscriber.get("tags") is not None else None)
            await safe_log_event(
                action=event_type, entity_type="manychat", entity_id=str(subscriber.get("id")),
                lead_id=lead_id, details={"tag": (event.get("tag") or {}).get("name")},
            )
            return _result(True, lead_id=lead_id)

        if event_type == "custom_field_changed":
            fresh = None
            try:
                fresh = await get_manychat_client().get_subscriber_info(subscriber.get("id"))
            except ManychatError as e:
                logger.warning(f"No se pudo refrescar subscriber {subscriber.get('id')}: {e}")
            lead_id, _ = await sync_subscriber_to_lead(fresh or subscriber)
            return _result(True, lead_id=lead_id)

        logger.info(f"Evento de webhook no procesado: {event_type}")
        return _result(True)

    except Exception as e:
        logger.error(f"Error procesando webhook {event_type}: {e}")
        return _result(False, error=str(e))


async def handle_message_event(subscriber: dict, message: dict, event_type: str) -> dict:
    lead_id, _ = await find_or_create_lead_from_subscriber(subscriber)

    platform = detect_channel(subscriber)
    conv = await find_or_create_conversation(lead_id, platform, platform_id_for_subscriber(subscriber))

    direction = "inbound" if event_type == "message_received" else "outbound"
    message_id = await save_message(conv["id"], message, direction)

    if direction == "inbound" and (message.get("type") or "text") == "text":
        parsed = parse_form_message(message.get("text") or "")
        if parsed:
            await update_lead_from_parsed_form(lead_id, parsed)
            await safe_log_event(
                action="form_parsed", entity_type="lead", entity_id=lead_id,
                details={"fields": sorted(parsed.keys())},
            )
            await check_and_move_lead_with_cuil(lead_id)

    await db.leads.update_one({"id": lead_id}, {"$set": {"updatedAt": now_iso()}})
    return _result(True, lead_id=lead_id, conversation_id=conv["id"], message_id=message_id)
