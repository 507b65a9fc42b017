"""
Rutas de Conversaciones (historial de chat por canal)
"""

from fastapi import APIRouter, HTTPException, Depends
from typing import Optional

from config import db
from services.permissions import require_permission
from services.conversations import list_conversations, get_conversation_messages, sync_conversations_from_manychat
from services.manychat_client import get_manychat_client
from services.activity_logger import log_activity

router = APIRouter(prefix="/conversations", tags=["Conversations"])


@router.get("")
async def get_conversations(
    platform: Optional[str] = None,
    status: Optional[str] = None,
    lead_id: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
    user: dict = Depends(require_permission("messaging.view"))
):
    return await list_conversations(platform, status, lead_id, page, limit)


@router.post("/sync-manychat")
async def sync_from_manychat(days: int = 30, user: dict = Depends(require_permission("manychat.sync"))):
    """Trae el último mensaje conocido de cada subscriber activo en los últimos `days` días."""
    if not get_manychat_client().is_configured():
        raise HTTPException(status_code=503, detail="MANYCHAT_API_KEY no configurado")

    results = await sync_conversations_from_manychat(days=days)
    await log_activity(user=user, action="sync_conversations", entity_type="conversation",
                       details={k: v for k, v in results.items() if k != "errors"})
    return {"success": True, **results}


@router.get("/{conversation_id}/messages")
async def conversation_messages(conversation_id: str, user: dict = Depends(require_permission("messaging.view"))):
    conv = await db.conversations.find_one({"id": conversation_id}, {"_id": 0})
    if not conv:
        raise HTTPException(status_code=404, detail="Conversación no encontrada")
    messages = await get_conversation_messages(conversation_id)
    return {"conversation": conv, "messages": messages, "count": len(messages)}
