"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Formosa CRM - Servicio Leads                                                ║
║                                                                              ║
║  REGLAS:                                                                     ║
║  1. El teléfono se guarda normalizado (E.164 argentino)                      ║
║  2. Duplicado = mismo teléfono o mismo DNI -> DuplicateLeadError             ║
║  3. Todo lead nace con pipeline en CLIENTE_NUEVO                             ║
║  4. Borrar un lead borra pipeline, historial, documentos y conversaciones    ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import re
import uuid
import logging
from typing import Optional

from config import db, now_iso, normalize_phone_ar
from services.pipeline import create_lead_pipeline, check_and_move_lead_with_cuil
from services.event_logger import log_event
from services.documents import delete_lead_documents
from services.tags import end_of_day
from services.identifiers import mask

logger = logging.getLogger("leads")

MAX_PAGE_SIZE = 100


class DuplicateLeadError(ValueError):
    def __init__(self, existing_id: str, field: str):
        super().__init__(f"Ya existe un lead con el mismo {field}")
        self.existing_id = existing_id
        self.field = field


async def find_duplicate(telefono: str = None, dni: str = None, exclude_id: str = None) -> Optional[dict]:
    """Devuelve {"id", "field"} del lead duplicado o None."""
    for field, value in (("telefono", telefono), ("dni", dni)):
        if not value:
            continue
        query = {field: value}
        if exclude_id:
            query["id"] = {"$ne": exclude_id}
        existing = await db.leads.find_one(query, {"_id": 0, "id": 1})
        if existing:
            return {"id": existing["id"], "field": field}
    return None


async def create_lead(data: dict, user: str = "system", source: str = "manual") -> dict:
    """
    Alta de lead.

    Raises:
        DuplicateLeadError si ya existe un lead con el mismo teléfono o DNI
    """
    data = {k: v for k, v in data.items() if v is not None}
    data["telefono"] = normalize_phone_ar(data.get("telefono", "")) or data.get("telefono")

    duplicate = await find_duplicate(data.get("telefono"), data.get("dni"))
    if duplicate:
        logger.info(f"Lead duplicado por {duplicate['field']}: {mask(data.get('telefono'))}")
        raise DuplicateLeadError(duplicate["id"], duplicate["field"])

    now = now_iso()
    lead = {
        "id": str(uuid.uuid4()),
        "estado": "NUEVO",
        "origen": "web",
        "tags": [],
        "customFields": {},
        "manychatId": None,
        **data,
        "createdAt": now,
        "updatedAt": now,
    }
    await db.leads.insert_one(lead)
    lead.pop("_id", None)

    await create_lead_pipeline(lead["id"], user)
    await log_event(
        action="lead_created",
        entity_type="lead",
        entity_id=lead["id"],
        user=user,
        details={"source": source, "origen": lead["origen"]},
    )

    if lead.get("cuil"):
        await check_and_move_lead_with_cuil(lead["id"])

    logger.info(f"Lead {lead['id']} creado ({source}, {lead['origen']})")
    return lead


def build_list_query(
    estado: str = None,
    origen: str = None,
    q: str = None,
    date_from: str = None,
    date_to: str = None,
    tag: str = None,
) -> dict:
    query = {}
    if estado:
        query["estado"] = estado
    if origen:
        query["origen"] = origen
    if tag:
        query["tags"] = tag
    if q:
        rx = {"$regex": re.escape(q.strip()), "$options": "i"}
        query["$or"] = [{"nombre": rx}, {"telefono": rx}, {"email": rx}, {"dni": rx}]
    if date_from or date_to:
        query["createdAt"] = {}
        if date_from:
            query["createdAt"]["$gte"] = date_from
        if date_to:
            query["createdAt"]["$lte"] = end_of_day(date_to)
    return query


async def list_leads(
    estado: str = None,
    origen: str = None,
    q: str = None,
    date_from: str = None,
    date_to: str = None,
    tag: str = None,
    page: int = 1,
    limit: int = 20,
    include_pipeline: bool = False,
) -> dict:
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    query = build_list_query(estado, origen, q, date_from, date_to, tag)

    total = await db.leads.count_documents(query)
    leads = await db.leads.find(query, {"_id": 0}) \
        .sort("createdAt", -1) \
        .skip((page - 1) * limit) \
        .limit(limit) \
        .to_list(limit)

    if include_pipeline and leads:
        pipelines = await db.lead_pipeline.find(
            {"lead_id": {"$in": [l["id"] for l in leads]}},
            {"_id": 0, "lead_id": 1, "current_stage": 1, "stage_entered_at": 1}
        ).to_list(limit)
        stage_of = {p["lead_id"]: p for p in pipelines}
        for lead in leads:
            p = stage_of.get(lead["id"])
            lead["pipeline_stage"] = p["current_stage"] if p else None
            lead["stage_entered_at"] = p.get("stage_entered_at") if p else None

    return {
        "leads": leads,
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": (total + limit - 1) // limit,
    }


async def update_lead(lead_id: str, data: dict, user: str = "system") -> Optional[dict]:
    """Devuelve el lead actualizado o None si no existe."""
    current = await db.leads.find_one({"id": lead_id}, {"_id": 0})
    if not current:
        return None

    update = {k: v for k, v in data.items() if v is not None}
    if "telefono" in update:
        update["telefono"] = normalize_phone_ar(update["telefono"]) or update["telefono"]
    if "telefono" in update or "dni" in update:
        duplicate = await find_duplicate(update.get("telefono"), update.get("dni"), exclude_id=lead_id)
        if duplicate:
            raise DuplicateLeadError(duplicate["id"], duplicate["field"])
    if "customFields" in update:
        update["customFields"] = {**(current.get("customFields") or {}), **update["customFields"]}

    if not update:
        return current

    update["updatedAt"] = now_iso()
    await db.leads.update_one({"id": lead_id}, {"$set": update})

    if update.get("estado") and update["estado"] != current.get("estado"):
        await log_event(
            action="estado_changed",
            entity_type="lead",
            entity_id=lead_id,
            user=user,
            details={"old_value": current.get("estado"), "new_value": update["estado"]},
        )

    if update.get("cuil"):
        await check_and_move_lead_with_cuil(lead_id)

    return await db.leads.find_one({"id": lead_id}, {"_id": 0})


async def delete_lead(lead_id: str, user: str = "system") -> bool:
    lead = await db.leads.find_one({"id": lead_id}, {"_id": 0, "id": 1, "nombre": 1})
    if not lead:
        return False

    await db.lead_pipeline.delete_many({"lead_id": lead_id})
    await db.pipeline_history.delete_many({"lead_id": lead_id})
    docs = await delete_lead_documents(lead_id)

    conv_ids = [c["id"] for c in await db.conversations.find(
        {"lead_id": lead_id}, {"_id": 0, "id": 1}
    ).to_list(100)]
    if conv_ids:
        await db.messages.delete_many({"conversation_id": {"$in": conv_ids}})
        await db.conversations.delete_many({"id": {"$in": conv_ids}})

    await db.leads.delete_one({"id": lead_id})
    await log_event(
        action="lead_deleted",
        entity_type="lead",
        entity_id=lead_id,
        user=user,
        details={"nombre": lead.get("nombre"), "documents": docs, "conversations": len(conv_ids)},
    )
    logger.info(f"Lead {lead_id} eliminado por {user}")
    return True
