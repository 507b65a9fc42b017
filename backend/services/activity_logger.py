"""
Formosa CRM - Actividad de usuarios (colección activity_logs)

Qué hizo cada usuario del CRM: sesiones, ABM de usuarios, settings,
tags de etapa y sync masivo con ManyChat. Los cambios sobre leads van
a events (ver event_logger).
"""

import uuid
import logging
from typing import Optional

from config import db, now_iso

logger = logging.getLogger("activity")

SYSTEM_USER = {"id": "system", "email": "system", "nombre": "Sistema"}


async def log_activity(
    user: Optional[dict],
    action: str,
    entity_type: str,
    entity_id: str = None,
    entity_name: str = None,
    details: dict = None,
    ip_address: str = None
) -> Optional[dict]:
    """
    Acciones usadas: login, logout, create_user, update_user, deactivate_user,
    update_setting, reset_setting, update_stage_tag, bulk_sync,
    sync_conversations.
    No lanza: si Mongo falla se loguea y devuelve None.
    """
    actor = {**SYSTEM_USER, **(user or {})}
    entry = {
        "id": str(uuid.uuid4()),
        "user_id": actor["id"],
        "user_email": actor["email"],
        "user_nombre": actor.get("nombre") or SYSTEM_USER["nombre"],
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "entity_name": entity_name,
        "details": details or {},
        "ip_address": ip_address,
        "created_at": now_iso(),
    }
    try:
        await db.activity_logs.insert_one(entry)
    except Exception as e:
        logger.error(f"No se pudo registrar actividad {action} de {actor['email']}: {e}")
        return None
    entry.pop("_id", None)
    return entry


async def get_activity_logs(
    user_id: str = None,
    entity_type: str = None,
    action: str = None,
    limit: int = 100,
    skip: int = 0
) -> dict:
    """Más recientes primero, con total para paginar."""
    filters = {"user_id": user_id, "entity_type": entity_type, "action": action}
    query = {k: v for k, v in filters.items() if v}

    cursor = db.activity_logs.find(query, {"_id": 0}).sort("created_at", -1).skip(skip).limit(limit)
    logs = await cursor.to_list(limit)
    total = await db.activity_logs.count_documents(query)
    return {"logs": logs, "total": total, "limit": limit, "skip": skip}
