"""
Formosa CRM - Event Logger

Historial de eventos de negocio (alta de lead, cambio de estado,
movimiento de pipeline, documento subido, mensaje enviado...).
Una sola función para llamar desde cualquier ruta o servicio.
"""

import uuid
import logging
from typing import Optional
from config import db, now_iso

logger = logging.getLogger("event_logger")


async def log_event(
    action: str,
    entity_type: str,
    entity_id: str,
    user: str = "system",
    lead_id: Optional[str] = None,
    details: dict = None,
):
    """
    Escribe un evento en la colección events.

    Args:
        action: lead_created, estado_changed, pipeline_moved, document_uploaded...
        entity_type: lead | pipeline | document | message | manychat | settings
        entity_id: ID de la entidad principal
        user: email del usuario o "system"
        lead_id: lead relacionado (para la línea de tiempo del lead)
        details: dict libre (old_value, new_value, reason...)
    """
    await db.events.insert_one({
        "id": str(uuid.uuid4()),
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "lead_id": lead_id or (entity_id if entity_type == "lead" else None),
        "user": user,
        "details": details or {},
        "created_at": now_iso()
    })


async def safe_log_event(*args, **kwargs):
    """Variante para webhooks y jobs: un fallo de logging no corta el flujo."""
    try:
        await log_event(*args, **kwargs)
    except Exception as e:
        logger.error(f"No se pudo registrar evento {kwargs.get('action') or args[:1]}: {e}")


async def get_events(
    lead_id: str = None,
    action: str = None,
    entity_type: str = None,
    limit: int = 100,
    skip: int = 0
):
    query = {}
    if lead_id:
        query["lead_id"] = lead_id
    if action:
        query["action"] = action
    if entity_type:
        query["entity_type"] = entity_type

    events = await db.events.find(query, {"_id": 0}) \
        .sort("created_at", -1) \
        .skip(skip) \
        .limit(limit) \
        .to_list(limit)
    total = await db.events.count_documents(query)

    return {"events": events, "total": total, "limit": limit, "skip": skip}
