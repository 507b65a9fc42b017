"""
Rutas de administración ManyChat
- Health, tags de la página
- Sync masivo por IDs / búsqueda por teléfono o email
- Historial y cola de sincronización
"""

from fastapi import APIRouter, HTTPException, Depends
from typing import Optional

from config import db, now_iso
from models.manychat import BulkSyncRequest, FindSubscribersRequest
from services.permissions import require_permission
from services.activity_logger import log_activity
from services.manychat_client import get_manychat_client, ManychatError, ManychatNotConfigured
from services.manychat_sync import (
    bulk_sync_by_ids,
    find_and_sync_subscribers,
    get_sync_history,
    get_sync_stats,
    process_pending_syncs,
)

router = APIRouter(prefix="/manychat", tags=["ManyChat"])


@router.get("/health")
async def health(user: dict = Depends(require_permission("manychat.sync"))):
    return await get_manychat_client().health_check()


@router.get("/tags")
async def page_tags(user: dict = Depends(require_permission("tags.view"))):
    try:
        tags = await get_manychat_client().get_tags()
    except ManychatNotConfigured as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ManychatError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"tags": tags, "count": len(tags)}


@router.get("/custom-fields")
async def page_custom_fields(user: dict = Depends(require_permission("manychat.sync"))):
    """Campos personalizados de la página (dni, cuit, ingresos, origen...)."""
    try:
        fields = await get_manychat_client().get_custom_fields()
    except ManychatNotConfigured as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ManychatError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"custom_fields": fields, "count": len(fields)}


@router.post("/bulk-sync")
async def bulk_sync(data: BulkSyncRequest, user: dict = Depends(require_permission("manychat.sync"))):
    if not data.subscriber_ids:
        raise HTTPException(status_code=400, detail="subscriber_ids vacío")
    if not get_manychat_client().is_configured():
        raise HTTPException(status_code=503, detail="MANYCHAT_API_KEY no configurado")

    results = await bulk_sync_by_ids(data.subscriber_ids)
    await log_activity(
        user=user,
        action="bulk_sync",
        entity_type="manychat",
        details={k: v for k, v in results.items() if k != "errors"}
    )
    return results


@router.post("/find-subscribers")
async def find_subscribers(data: FindSubscribersRequest, user: dict = Depends(require_permission("manychat.sync"))):
    if not data.phones and not data.emails:
        raise HTTPException(status_code=400, detail="Se requiere al menos un teléfono o email")
    if not get_manychat_client().is_configured():
        raise HTTPException(status_code=503, detail="MANYCHAT_API_KEY no configurado")
    return await find_and_sync_subscribers(data.phones, data.emails)


@router.get("/sync-history")
async def sync_history(
    lead_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 100,
    user: dict = Depends(require_permission("manychat.sync"))
):
    items = await get_sync_history(lead_id, status, min(limit, 500))
    return {"history": items, "count": len(items)}


# ==================== COLA ====================

@router.get("/queue/stats")
async def queue_stats(user: dict = Depends(require_permission("manychat.sync"))):
    return await get_sync_stats()


@router.post("/queue/process")
async def queue_process(limit: int = 50, user: dict = Depends(require_permission("manychat.sync"))):
    return await process_pending_syncs(limit)


@router.post("/queue/retry-exhausted")
async def queue_retry_exhausted(user: dict = Depends(require_permission("manychat.sync"))):
    """Devuelve a pending los syncs agotados (contador a cero)."""
    result = await db.manychat_sync.update_many(
        {"status": "exhausted"},
        {"$set": {"status": "pending", "retry_count": 0, "next_retry_at": now_iso(), "completed_at": None}}
    )
    return {"success": True, "requeued": result.modified_count}
