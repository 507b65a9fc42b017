"""
Rutas del Pipeline (tablero por etapas, movimientos, mapeo etapa -> tag)
"""

from fastapi import APIRouter, HTTPException, Depends, Query
from typing import Optional

from config import db, now_iso
from models.pipeline import PipelineMove, StageTagUpdate, STAGE_ORDER, STAGE_INFO
from services.permissions import require_permission
from services.activity_logger import log_activity
from services.pipeline import (
    get_board,
    get_pipeline_metrics,
    get_lead_pipeline,
    get_lead_history,
    move_lead_to_stage,
    seed_stage_tags,
    get_stage_tags,
    TransitionError,
)

router = APIRouter(prefix="/pipeline", tags=["Pipeline"])


@router.get("")
async def board(
    search: Optional[str] = None,
    origen: Optional[str] = None,
    tag: Optional[str] = None,
    fecha_desde: Optional[str] = Query(None, alias="from"),
    fecha_hasta: Optional[str] = Query(None, alias="to"),
    user: dict = Depends(require_permission("pipeline.view"))
):
    return await get_board(search, origen, tag, fecha_desde, fecha_hasta)


@router.get("/stages")
async def stages(user: dict = Depends(require_permission("pipeline.view"))):
    return {"stages": [{"id": s, **STAGE_INFO[s]} for s in STAGE_ORDER]}


@router.get("/metrics")
async def metrics(user: dict = Depends(require_permission("pipeline.view"))):
    return await get_pipeline_metrics()


@router.get("/leads/{lead_id}")
async def lead_pipeline(lead_id: str, user: dict = Depends(require_permission("pipeline.view"))):
    pipeline = await get_lead_pipeline(lead_id)
    if not pipeline:
        raise HTTPException(status_code=404, detail="El lead no tiene pipeline")
    return {"pipeline": pipeline, "history": await get_lead_history(lead_id)}


@router.get("/leads/{lead_id}/history")
async def lead_history(lead_id: str, user: dict = Depends(require_permission("pipeline.view"))):
    return {"history": await get_lead_history(lead_id)}


@router.post("/leads/{lead_id}/move")
async def move_lead(lead_id: str, data: PipelineMove, user: dict = Depends(require_permission("pipeline.write"))):
    """
    Mueve el lead de etapa. El movimiento queda registrado aunque
    la sincronización del tag con ManyChat falle (queda en cola).
    """
    try:
        return await move_lead_to_stage(
            lead_id,
            data.to_stage,
            user_id=user.get("email", user.get("id", "system")),
            notes=data.notes,
            reason=data.reason,
        )
    except LookupError:
        raise HTTPException(status_code=404, detail="Lead no encontrado")
    except TransitionError as e:
        status = 400 if any("misma" in err for err in e.errors) else 422
        raise HTTPException(status_code=status, detail={"message": "Transición no válida", "errors": e.errors})


# ==================== MAPEO ETAPA -> TAG ====================

@router.get("/stage-tags")
async def list_stage_tags(user: dict = Depends(require_permission("pipeline.view"))):
    return {"stage_tags": await get_stage_tags()}


@router.put("/stage-tags/{stage}")
async def update_stage_tag(
    stage: str,
    data: StageTagUpdate,
    user: dict = Depends(require_permission("settings.access"))
):
    stage = stage.upper()
    if stage not in STAGE_ORDER:
        raise HTTPException(status_code=400, detail=f"Etapa inválida: {stage}")

    row = {
        "stage": stage,
        "manychat_tag": data.manychat_tag.strip(),
        "tag_type": data.tag_type,
        "description": data.description,
        "is_active": data.is_active,
        "updated_at": now_iso(),
    }
    await db.pipeline_stage_tags.update_one({"stage": stage}, {"$set": row}, upsert=True)

    await log_activity(
        user=user,
        action="update_stage_tag",
        entity_type="pipeline_stage_tag",
        entity_id=stage,
        details={"manychat_tag": row["manychat_tag"]}
    )
    return {"success": True, "stage_tag": await db.pipeline_stage_tags.find_one({"stage": stage}, {"_id": 0})}


@router.post("/stage-tags/seed")
async def seed(force: bool = False, user: dict = Depends(require_permission("settings.access"))):
    """Completa las etapas faltantes; force=true resetea los overrides al tag por defecto."""
    return {"success": True, **await seed_stage_tags(force=force)}
