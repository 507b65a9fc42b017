"""
Formosa CRM - Rutas Settings (Admin)

Parámetros de negocio:
- auto_move: mover a LISTO_ANALISIS los leads con CUIL
- manychat_sync: sincronización de tags de pipeline y campo origen
"""

from fastapi import APIRouter, Depends, HTTPException
from typing import Dict, Any

from models.pipeline import STAGE_ORDER
from services.permissions import require_permission
from services.activity_logger import log_activity
from services.settings import (
    get_setting,
    upsert_setting,
    list_settings,
    delete_setting,
    DEFAULTS,
)

router = APIRouter(prefix="/settings", tags=["Settings"])


def _validate(key: str, data: Dict[str, Any]):
    if key == "auto_move":
        stages = list(data.get("from_stages") or []) + [data.get("to_stage")]
        invalid = [s for s in stages if s and s not in STAGE_ORDER]
        if invalid:
            raise HTTPException(status_code=400, detail=f"Etapas inválidas: {invalid}")


@router.get("")
async def get_all(user: dict = Depends(require_permission("settings.access"))):
    docs = await list_settings()
    return {"settings": docs, "count": len(docs)}


@router.get("/{key}")
async def get_one(key: str, user: dict = Depends(require_permission("settings.access"))):
    doc = await get_setting(key)
    if doc:
        return doc
    if key in DEFAULTS:
        return {**DEFAULTS[key], "key": key, "source": "default"}
    raise HTTPException(status_code=404, detail="Setting no encontrado")


@router.put("/{key}")
async def put_one(key: str, data: Dict[str, Any], user: dict = Depends(require_permission("settings.access"))):
    _validate(key, data)
    doc = await upsert_setting(key, data, updated_by=user.get("email", "system"))

    await log_activity(
        user=user,
        action="update_setting",
        entity_type="settings",
        entity_id=key,
        details=data
    )
    return {"success": True, "setting": doc}


@router.delete("/{key}")
async def remove(key: str, user: dict = Depends(require_permission("settings.access"))):
    """Vuelve al valor por defecto."""
    if not await delete_setting(key):
        raise HTTPException(status_code=404, detail="Setting no encontrado")
    await log_activity(user=user, action="reset_setting", entity_type="settings", entity_id=key)
    return {"success": True, "setting": DEFAULTS.get(key)}
