"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Formosa CRM - Servicio Pipeline                                             ║
║                                                                              ║
║  Colecciones:                                                                ║
║    lead_pipeline        1 doc por lead (etapa actual)                        ║
║    pipeline_history     1 doc por movimiento                                 ║
║    pipeline_stage_tags  etapa -> tag de ManyChat                             ║
║                                                                              ║
║  REGLAS:                                                                     ║
║  1. Mover a la misma etapa es un error                                       ║
║  2. Saltar etapas o retroceder es válido pero genera warnings                ║
║  3. CERRADO_GANADO / RECHAZADO cierran el pipeline (closed_at, won)          ║
║  4. El tag en ManyChat se sincroniza DESPUÉS de persistir el movimiento;     ║
║     si ManyChat falla el movimiento se mantiene y el sync queda en cola      ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import re
import uuid
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, List

from config import db, now_iso, parse_iso
from models.pipeline import STAGE_ORDER, STAGE_INFO, BUSINESS_TAGS, CLOSED_STAGES
from services.event_logger import log_event, safe_log_event
from services.identifiers import extract_cuil_from_lead, is_valid_cuil, mask
from services.settings import get_auto_move_settings

logger = logging.getLogger("pipeline")

DEFAULT_STAGE = "CLIENTE_NUEVO"

# Siempre resueltas a estos tags aunque la tabla diga otra cosa
FIXED_STAGE_TAGS = {
    "PREAPROBADO": "credito-preaprobado",
    "APROBADO": "credito-aprobado",
}


# ==================== TAGS POR ETAPA ====================

async def seed_stage_tags(force: bool = False) -> Dict[str, int]:
    """
    Inserta el mapeo etapa -> tag por defecto (idempotente).
    Las filas existentes se respetan (overrides hechos desde la API);
    con force=True vuelven al tag por defecto.
    """
    inserted = 0
    updated = 0
    kept = 0

    rows = [
        {"stage": stage, "manychat_tag": info["tag"], "tag_type": "pipeline",
         "description": info["name"]}
        for stage, info in STAGE_INFO.items()
    ] + [
        {"stage": None, "manychat_tag": tag, "tag_type": "business", "description": desc}
        for tag, desc in BUSINESS_TAGS.items()
    ]

    for row in rows:
        key = {"stage": row["stage"]} if row["tag_type"] == "pipeline" else {"manychat_tag": row["manychat_tag"]}
        existing = await db.pipeline_stage_tags.find_one(key)
        if existing and not force:
            kept += 1
        elif existing:
            await db.pipeline_stage_tags.update_one(
                key, {"$set": {**row, "is_active": True, "updated_at": now_iso()}}
            )
            updated += 1
        else:
            await db.pipeline_stage_tags.insert_one({
                "id": str(uuid.uuid4()),
                **row,
                "is_active": True,
                "created_at": now_iso(),
                "updated_at": now_iso(),
            })
            inserted += 1

    logger.info(f"Stage tags: {inserted} insertados, {updated} reseteados, {kept} sin cambios")
    return {"inserted": inserted, "updated": updated, "kept": kept}


async def get_stage_tags() -> List[dict]:
    return await db.pipeline_stage_tags.find({}, {"_id": 0}).to_list(100)


async def get_tag_for_stage(stage: str) -> Optional[str]:
    if stage in FIXED_STAGE_TAGS:
        return FIXED_STAGE_TAGS[stage]

    row = await db.pipeline_stage_tags.find_one(
        {"stage": stage, "tag_type": "pipeline", "is_active": True}, {"_id": 0}
    )
    if row and row.get("manychat_tag"):
        return row["manychat_tag"]

    info = STAGE_INFO.get(stage)
    return info["tag"] if info else None


async def get_pipeline_tag_names() -> set:
    """Todos los tags de pipeline conocidos (tabla + defaults), en minúsculas."""
    names = {info["tag"].lower() for info in STAGE_INFO.values()}
    names.update(t.lower() for t in FIXED_STAGE_TAGS.values())
    rows = await db.pipeline_stage_tags.find(
        {"tag_type": "pipeline", "is_active": True}, {"_id": 0, "manychat_tag": 1}
    ).to_list(100)
    names.update(r["manychat_tag"].lower() for r in rows if r.get("manychat_tag"))
    return names


async def get_business_tag_names() -> set:
    names = {t.lower() for t in BUSINESS_TAGS}
    rows = await db.pipeline_stage_tags.find(
        {"tag_type": "business", "is_active": True}, {"_id": 0, "manychat_tag": 1}
    ).to_list(100)
    names.update(r["manychat_tag"].lower() for r in rows if r.get("manychat_tag"))
    return names


# ==================== PIPELINE DEL LEAD ====================

async def create_lead_pipeline(lead_id: str, user_id: str = "system", stage: str = DEFAULT_STAGE) -> dict:
    existing = await db.lead_pipeline.find_one({"lead_id": lead_id}, {"_id": 0})
    if existing:
        return existing

    now = now_iso()
    doc = {
        "id": str(uuid.uuid4()),
        "lead_id": lead_id,
        "current_stage": stage,
        "stage_entered_at": now,
        "closed_at": None,
        "won": None,
        "created_by": user_id,
        "created_at": now,
        "updated_at": now,
    }
    await db.lead_pipeline.insert_one(doc)
    doc.pop("_id", None)
    return doc


async def get_lead_pipeline(lead_id: str) -> Optional[dict]:
    return await db.lead_pipeline.find_one({"lead_id": lead_id}, {"_id": 0})


async def get_lead_history(lead_id: str) -> List[dict]:
    return await db.pipeline_history.find({"lead_id": lead_id}, {"_id": 0}) \
        .sort("created_at", -1).to_list(200)


def days_in_stage(entered_at: str, now: datetime = None) -> int:
    """Días completos transcurridos desde entered_at."""
    start = parse_iso(entered_at)
    if not start:
        return 0
    now = now or datetime.now(timezone.utc)
    return max(0, (now - start).days)


def validate_transition(from_stage: Optional[str], to_stage: str) -> dict:
    """
    Returns: {"valid": bool, "errors": [...], "warnings": [...]}
    """
    errors = []
    warnings = []

    if to_stage not in STAGE_ORDER or (from_stage and from_stage not in STAGE_ORDER):
        errors.append("Etapa no válida")
        return {"valid": False, "errors": errors, "warnings": warnings}

    if not from_stage:
        return {"valid": True, "errors": errors, "warnings": warnings}

    if from_stage == to_stage:
        errors.append("La etapa origen y destino no pueden ser la misma")
        return {"valid": False, "errors": errors, "warnings": warnings}

    from_order = STAGE_ORDER.index(from_stage)
    to_order = STAGE_ORDER.index(to_stage)
    diff = abs(to_order - from_order)

    if diff > 1 and to_order > from_order and to_stage not in CLOSED_STAGES:
        warnings.append(f"Se está saltando {diff - 1} etapa(s) del pipeline")

    if to_order < from_order and to_stage != "RECHAZADO":
        warnings.append("Se está retrocediendo en el pipeline")

    if to_stage == "CERRADO_GANADO" and from_stage not in ("PREAPROBADO", "APROBADO", "EN_SEGUIMIENTO"):
        warnings.append("Se recomienda pasar por preaprobación antes de cerrar")

    return {"valid": True, "errors": errors, "warnings": warnings}


class TransitionError(ValueError):
    """Movimiento rechazado (misma etapa o etapa desconocida)"""

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


async def move_lead_to_stage(
    lead_id: str,
    to_stage: str,
    user_id: str = "system",
    notes: str = None,
    reason: str = None,
    sync_manychat: bool = True,
) -> dict:
    """
    Mueve un lead de etapa.

    Flow:
    1. Crear pipeline si no existe
    2. Validar transición (TransitionError si no es válida)
    3. Registrar historial con días en la etapa anterior
    4. Actualizar etapa actual (y cierre si corresponde)
    5. Reemplazar tag de pipeline en el lead local
    6. Sincronizar tag en ManyChat si el lead tiene manychatId

    Raises:
        LookupError si el lead no existe
        TransitionError si la transición no es válida
    """
    lead = await db.leads.find_one({"id": lead_id}, {"_id": 0})
    if not lead:
        raise LookupError(f"Lead {lead_id} no encontrado")

    pipeline = await get_lead_pipeline(lead_id)
    if not pipeline:
        pipeline = await create_lead_pipeline(lead_id, user_id)

    from_stage = pipeline.get("current_stage")
    validation = validate_transition(from_stage, to_stage)
    if not validation["valid"]:
        raise TransitionError(validation["errors"])

    now = now_iso()
    history = {
        "id": str(uuid.uuid4()),
        "lead_pipeline_id": pipeline["id"],
        "lead_id": lead_id,
        "from_stage": from_stage,
        "to_stage": to_stage,
        "duration_in_stage_days": days_in_stage(pipeline.get("stage_entered_at")),
        "notes": notes,
        "reason": reason,
        "changed_by": user_id,
        "created_at": now,
    }
    await db.pipeline_history.insert_one(history)
    history.pop("_id", None)

    update = {"current_stage": to_stage, "stage_entered_at": now, "updated_at": now}
    if to_stage in CLOSED_STAGES:
        update["closed_at"] = now
        update["won"] = to_stage == "CERRADO_GANADO"
    else:
        update["closed_at"] = None
        update["won"] = None
    await db.lead_pipeline.update_one({"lead_id": lead_id}, {"$set": update})

    new_tag = await get_tag_for_stage(to_stage)
    pipeline_tags = await get_pipeline_tag_names()
    tags = [t for t in (lead.get("tags") or []) if t.lower() not in pipeline_tags]
    if new_tag:
        tags.append(new_tag)
    await db.leads.update_one({"id": lead_id}, {"$set": {"tags": tags, "updatedAt": now}})

    await log_event(
        action="pipeline_moved",
        entity_type="pipeline",
        entity_id=pipeline["id"],
        user=user_id,
        lead_id=lead_id,
        details={"from": from_stage, "to": to_stage, "notes": notes, "reason": reason},
    )
    logger.info(f"Lead {lead_id} movido {from_stage} -> {to_stage} por {user_id}")

    sync_result = None
    if sync_manychat and lead.get("manychatId"):
        from services.manychat_sync import sync_pipeline_to_manychat
        sync_result = await sync_pipeline_to_manychat(
            lead_id, lead["manychatId"], to_stage, from_stage
        )

    return {
        "success": True,
        "lead_id": lead_id,
        "from_stage": from_stage,
        "to_stage": to_stage,
        "tag": new_tag,
        "warnings": validation["warnings"],
        "history": history,
        "manychat": sync_result,
    }


# ==================== AUTO-MOVE POR CUIL ====================

async def check_and_move_lead_with_cuil(lead_id: str) -> bool:
    """
    Si el lead informó un CUIL válido y sigue en una etapa inicial,
    pasa a LISTO_ANALISIS. Nunca lanza: devuelve True si lo movió.
    """
    try:
        rules = await get_auto_move_settings()
        if not rules.get("enabled", True):
            return False

        lead = await db.leads.find_one({"id": lead_id}, {"_id": 0})
        if not lead:
            return False

        cuil = extract_cuil_from_lead(lead)
        if not cuil or not is_valid_cuil(cuil):
            return False

        pipeline = await get_lead_pipeline(lead_id)
        if not pipeline:
            pipeline = await create_lead_pipeline(lead_id, "system")

        if pipeline.get("current_stage") not in rules["from_stages"]:
            return False

        await move_lead_to_stage(
            lead_id,
            rules["to_stage"],
            user_id="system",
            notes=f"Movido automáticamente: CUIL detectado ({mask(cuil)})",
            reason="auto_cuil",
        )
        logger.info(f"Lead {lead_id} auto-movido a {rules['to_stage']} (CUIL {mask(cuil)})")
        return True

    except Exception as e:
        logger.error(f"Auto-move falló para lead {lead_id}: {e}")
        await safe_log_event(
            action="auto_move_failed", entity_type="lead", entity_id=lead_id,
            details={"error": str(e)},
        )
        return False


# ==================== TABLERO ====================

async def get_board(
    search: str = None,
    origen: str = None,
    tag: str = None,
    fecha_desde: str = None,
    fecha_hasta: str = None,
    limit_per_stage: int = 200,
) -> dict:
    """Leads agrupados por etapa, más recientes en la etapa primero."""
    lead_query = {}
    if origen:
        lead_query["origen"] = origen
    if tag:
        lead_query["tags"] = tag
    if search:
        rx = {"$regex": re.escape(search), "$options": "i"}
        lead_query["$or"] = [{"nombre": rx}, {"telefono": rx}, {"email": rx}, {"dni": rx}]
    if fecha_desde or fecha_hasta:
        lead_query["createdAt"] = {}
        if fecha_desde:
            lead_query["createdAt"]["$gte"] = fecha_desde
        if fecha_hasta:
            lead_query["createdAt"]["$lte"] = fecha_hasta

    leads = await db.leads.find(
        lead_query,
        {"_id": 0, "id": 1, "nombre": 1, "telefono": 1, "email": 1, "origen": 1,
         "estado": 1, "tags": 1, "monto": 1, "producto": 1, "createdAt": 1}
    ).to_list(5000)
    leads_by_id = {l["id"]: l for l in leads}

    pipelines = await db.lead_pipeline.find(
        {"lead_id": {"$in": list(leads_by_id.keys())}}, {"_id": 0}
    ).to_list(5000)
    stage_of = {p["lead_id"]: p for p in pipelines}

    now = datetime.now(timezone.utc)
    columns = {stage: [] for stage in STAGE_ORDER}
    for lead_id, lead in leads_by_id.items():
        p = stage_of.get(lead_id)
        stage = p["current_stage"] if p else DEFAULT_STAGE
        entered = p.get("stage_entered_at") if p else lead.get("createdAt")
        columns.setdefault(stage, []).append({
            **lead,
            "stage": stage,
            "stage_entered_at": entered,
            "days_in_stage": days_in_stage(entered, now),
        })

    stages = []
    for stage in STAGE_ORDER:
        items = sorted(columns[stage], key=lambda x: x.get("stage_entered_at") or "", reverse=True)
        stages.append({
            "id": stage,
            "name": STAGE_INFO[stage]["name"],
            "color": STAGE_INFO[stage]["color"],
            "tag": STAGE_INFO[stage]["tag"],
            "count": len(items),
            "leads": items[:limit_per_stage],
        })

    return {"stages": stages, "total": len(leads_by_id)}


async def get_pipeline_metrics() -> dict:
    pipelines = await db.lead_pipeline.find({}, {"_id": 0}).to_list(10000)
    now = datetime.now(timezone.utc)

    by_stage = {stage: {"count": 0, "days_total": 0} for stage in STAGE_ORDER}
    won = 0
    lost = 0
    for p in pipelines:
        stage = p.get("current_stage")
        if stage in by_stage:
            by_stage[stage]["count"] += 1
            by_stage[stage]["days_total"] += days_in_stage(p.get("stage_entered_at"), now)
        if p.get("won") is True:
            won += 1
        elif p.get("won") is False:
            lost += 1

    stages = []
    for stage in STAGE_ORDER:
        count = by_stage[stage]["count"]
        stages.append({
            "stage": stage,
            "name": STAGE_INFO[stage]["name"],
            "count": count,
            "avg_days_in_stage": round(by_stage[stage]["days_total"] / count, 1) if count else 0,
        })

    closed = won + lost
    return {
        "stages": stages,
        "total": len(pipelines),
        "won": won,
        "lost": lost,
        "win_rate": round(won / closed * 100, 2) if closed else 0,
    }
