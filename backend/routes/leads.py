"""
Rutas de Leads
"""

import logging
from fastapi import APIRouter, HTTPException, Depends, Query
from typing import Optional

from models.lead import LeadCreate, LeadUpdate, LeadSyncRequest
from config import db
from services.permissions import require_permission
from services.leads import (
    create_lead,
    list_leads,
    update_lead,
    delete_lead,
    DuplicateLeadError,
)
from services.pipeline import get_lead_pipeline, get_lead_history
from services.event_logger import get_events
from services.conversations import get_lead_messages
from services.manychat_client import get_manychat_client, ManychatError, ManychatNotConfigured
from services.manychat_sync import sync_lead_to_manychat, sync_subscriber_to_lead

logger = logging.getLogger("leads")

router = APIRouter(prefix="/leads", tags=["Leads"])


def _duplicate(e: DuplicateLeadError) -> HTTPException:
    return HTTPException(
        status_code=409,
        detail={"message": str(e), "existing_id": e.existing_id, "field": e.field}
    )


# ==================== INTAKE PÚBLICO ====================

@router.post("/webhook")
async def lead_webhook(data: LeadCreate):
    """
    Alta desde landing / formulario externo.
    Mismo criterio de duplicados que el alta manual.
    """
    try:
        lead = await create_lead(data.model_dump(), user="webhook", source="webhook")
    except DuplicateLeadError as e:
        raise _duplicate(e)
    return {"success": True, "lead_id": lead["id"]}


# ==================== CRUD ====================

@router.get("")
async def get_leads(
    estado: Optional[str] = None,
    origen: Optional[str] = None,
    q: Optional[str] = None,
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    tag: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    include_pipeline: bool = False,
    user: dict = Depends(require_permission("leads.view"))
):
    return await list_leads(
        estado=estado, origen=origen, q=q, date_from=date_from, date_to=date_to,
        tag=tag, page=page, limit=limit, include_pipeline=include_pipeline,
    )


@router.post("")
async def post_lead(data: LeadCreate, user: dict = Depends(require_permission("leads.create"))):
    try:
        lead = await create_lead(data.model_dump(), user=user.get("email", "system"))
    except DuplicateLeadError as e:
        raise _duplicate(e)
    return {"success": True, "lead": lead}


@router.get("/{lead_id}")
async def get_lead(lead_id: str, user: dict = Depends(require_permission("leads.view"))):
    lead = await db.leads.find_one({"id": lead_id}, {"_id": 0})
    if not lead:
        raise HTTPException(status_code=404, detail="Lead no encontrado")

    events = await get_events(lead_id=lead_id, limit=50)
    return {
        "lead": lead,
        "pipeline": await get_lead_pipeline(lead_id),
        "history": await get_lead_history(lead_id),
        "events": events["events"],
    }


@router.patch("/{lead_id}")
async def patch_lead(lead_id: str, data: LeadUpdate, user: dict = Depends(require_permission("leads.edit"))):
    try:
        lead = await update_lead(lead_id, data.model_dump(exclude_unset=True), user=user.get("email", "system"))
    except DuplicateLeadError as e:
        raise _duplicate(e)
    if not lead:
        raise HTTPException(status_code=404, detail="Lead no encontrado")
    return {"success": True, "lead": lead}


@router.delete("/{lead_id}")
async def remove_lead(lead_id: str, user: dict = Depends(require_permission("leads.delete"))):
    if not await delete_lead(lead_id, user=user.get("email", "system")):
        raise HTTPException(status_code=404, detail="Lead no encontrado")
    return {"success": True, "deleted_id": lead_id}


# ==================== MENSAJES / MANYCHAT ====================

@router.get("/{lead_id}/messages")
async def lead_messages(lead_id: str, user: dict = Depends(require_permission("messaging.view"))):
    if not await db.leads.find_one({"id": lead_id}, {"_id": 0, "id": 1}):
        raise HTTPException(status_code=404, detail="Lead no encontrado")
    messages = await get_lead_messages(lead_id)
    return {"messages": messages, "count": len(messages)}


@router.post("/{lead_id}/sync-manychat")
async def sync_lead(
    lead_id: str,
    data: LeadSyncRequest = None,
    user: dict = Depends(require_permission("manychat.sync"))
):
    """
    to_manychat: crea (o vincula) el subscriber del lead.
    from_manychat: refresca el lead con los datos del subscriber.
    """
    direction = data.direction if data else "to_manychat"
    lead = await db.leads.find_one({"id": lead_id}, {"_id": 0})
    if not lead:
        raise HTTPException(status_code=404, detail="Lead no encontrado")

    try:
        if direction == "to_manychat":
            result = await sync_lead_to_manychat(lead_id)
            if not result.get("success"):
                raise HTTPException(status_code=502, detail=result.get("error"))
            return result

        if not lead.get("manychatId"):
            raise HTTPException(status_code=400, detail="El lead no tiene manychatId")
        subscriber = await get_manychat_client().get_subscriber_info(lead["manychatId"])
        if not subscriber:
            raise HTTPException(status_code=404, detail="Subscriber no encontrado en ManyChat")
        await sync_subscriber_to_lead(subscriber)
        return {"success": True, "lead": await db.leads.find_one({"id": lead_id}, {"_id": 0})}

    except ManychatNotConfigured as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ManychatError as e:
        logger.error(f"Sync ManyChat lead {lead_id} ({direction}): {e}")
        raise HTTPException(status_code=502, detail=str(e))
