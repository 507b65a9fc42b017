"""
Rutas de Tags (leads agrupados por tag de ManyChat)
"""

from fastapi import APIRouter, Depends, Query
from typing import Optional

from services.permissions import require_permission
from services.tags import get_leads_by_tags, get_tag_stats, DEFAULT_PAGE_SIZE

router = APIRouter(prefix="/tags", tags=["Tags"])


@router.get("")
async def leads_by_tags(
    tag: Optional[str] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    fecha_desde: Optional[str] = Query(None, alias="from"),
    fecha_hasta: Optional[str] = Query(None, alias="to"),
    user: dict = Depends(require_permission("tags.view"))
):
    return await get_leads_by_tags(tag, page, limit, fecha_desde, fecha_hasta)


@router.get("/stats")
async def tag_stats(
    fecha_desde: Optional[str] = Query(None, alias="from"),
    fecha_hasta: Optional[str] = Query(None, alias="to"),
    user: dict = Depends(require_permission("tags.view"))
):
    return await get_tag_stats(fecha_desde, fecha_hasta)
