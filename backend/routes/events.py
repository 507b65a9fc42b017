"""
Formosa CRM - Rutas de auditoría (eventos de negocio y actividad de usuarios)
"""

from fastapi import APIRouter, Depends
from typing import Optional

from services.permissions import require_permission
from services.event_logger import get_events
from services.activity_logger import get_activity_logs

router = APIRouter(tags=["Events"])


@router.get("/events")
async def list_events(
    lead_id: Optional[str] = None,
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    limit: int = 100,
    skip: int = 0,
    user: dict = Depends(require_permission("activity.view"))
):
    return await get_events(lead_id, action, entity_type, min(limit, 500), skip)


@router.get("/activity-logs")
async def list_activity(
    user_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    action: Optional[str] = None,
    limit: int = 100,
    skip: int = 0,
    user: dict = Depends(require_permission("activity.view"))
):
    return await get_activity_logs(user_id, entity_type, action, min(limit, 500), skip)
