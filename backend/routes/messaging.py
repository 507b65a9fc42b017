"""
Rutas de Mensajería (envío vía ManyChat y mensajes de rechazo)
"""

import logging
from fastapi import APIRouter, HTTPException, Depends

from config import db
from models.messaging import SendMessageRequest, RejectionMessageRequest
from services.permissions import require_permission
from services.messaging import send_message, REJECTION_MESSAGES
from services.pipeline import move_lead_to_stage, TransitionError

logger = logging.getLogger("messaging")

router = APIRouter(prefix="/messaging", tags=["Messaging"])

ERROR_STATUS = {
    "INVALID_PHONE": 400,
    "INVALID_EMAIL": 400,
    "MESSAGE_TOO_LONG": 400,
    "UNSUPPORTED_MESSAGE_TYPE": 400,
    "SUBSCRIBER_NOT_FOUND": 404,
    "CHANNEL_UNAVAILABLE": 422,
    "OUTSIDE_WINDOW": 422,
    "RATE_LIMIT": 429,
    "INTERNAL_ERROR": 502,
}


async def _params_for_lead(lead_id: str, params: dict) -> dict:
    """Completa los identificadores a partir del lead si no vinieron."""
    lead = await db.leads.find_one({"id": lead_id}, {"_id": 0})
    if not lead:
        raise HTTPException(status_code=404, detail="Lead no encontrado")
    if not (params.get("subscriber_id") or params.get("phone") or params.get("email")):
        if lead.get("manychatId"):
            params["subscriber_id"] = lead["manychatId"]
        elif str(lead.get("telefono", "")).startswith("+"):
            params["phone"] = lead["telefono"]
        elif lead.get("email"):
            params["email"] = lead["email"]
    return params


def _raise_send_error(result: dict):
    error = result["error"]
    raise HTTPException(status_code=ERROR_STATUS.get(error["code"], 502), detail=error)


@router.post("/send")
async def send(data: SendMessageRequest, user: dict = Depends(require_permission("messaging.send"))):
    params = data.model_dump()
    if data.lead_id:
        params = await _params_for_lead(data.lead_id, params)

    result = await send_message(params)
    if not result.get("success"):
        _raise_send_error(result)
    return result


@router.get("/rejection-messages")
async def rejection_messages(user: dict = Depends(require_permission("messaging.view"))):
    return {"messages": [{"id": key, **value} for key, value in REJECTION_MESSAGES.items()]}


@router.post("/send-rejection")
async def send_rejection(data: RejectionMessageRequest, user: dict = Depends(require_permission("messaging.send"))):
    """Envía un mensaje de rechazo predefinido y, opcionalmente, pasa el lead a RECHAZADO."""
    template = REJECTION_MESSAGES.get(data.message_id)
    if not template:
        raise HTTPException(status_code=400, detail=f"Mensaje de rechazo desconocido: {data.message_id}")

    params = await _params_for_lead(data.lead_id, {"lead_id": data.lead_id, "message": template["message"]})
    result = await send_message(params)
    if not result.get("success"):
        _raise_send_error(result)

    moved = None
    if data.move_to_rechazado:
        try:
            moved = await move_lead_to_stage(
                data.lead_id, "RECHAZADO",
                user_id=user.get("email", "system"),
                reason=data.message_id,
                notes=template["label"],
            )
        except TransitionError as e:
            logger.info(f"Lead {data.lead_id} no movido a RECHAZADO: {e}")

    return {**result, "pipeline": moved}
