"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Formosa CRM - Sincronización ManyChat <-> CRM                               ║
║                                                                              ║
║  from_manychat: subscriber -> lead (webhooks, sync masivo, importaciones)    ║
║  to_manychat:   etapa del pipeline -> tag del subscriber                     ║
║                                                                              ║
║  Cada intento queda en manychat_sync. Los fallos to_manychat se reintentan   ║
║  desde la cola (1min, 5min, 15min, 1h, 2h) hasta agotar 5 intentos.         ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import uuid
import logging
from datetime import datetime, timezone, timedelta
from typing import Optional, Tuple, List

from config import db, now_iso, normalize_phone_ar
from services.channel_detection import detect_channel, origen_for_subscriber
from services.manychat_client import (
    get_manychat_client,
    tag_names,
    custom_fields_dict,
    ManychatError,
)
from services.pipeline import (
    create_lead_pipeline,
    check_and_move_lead_with_cuil,
    get_tag_for_stage,
    get_pipeline_tag_names,
    get_business_tag_names,
)
from services.settings import get_manychat_sync_settings
from services.event_logger import safe_log_event
from services.identifiers import mask

logger = logging.getLogger("manychat_sync")

# Configuración retry
MAX_RETRY_ATTEMPTS = 5
RETRY_DELAYS = [60, 300, 900, 3600, 7200]  # 1min, 5min, 15min, 1h, 2h

REEVALUATED_TAG = "credito-preaprobado"

CUSTOM_FIELD_COLUMNS = {
    "dni": "dni",
    "ingresos": "ingresos",
    "zona": "zona",
    "producto": "producto",
    "monto": "monto",
    "agencia": "agencia",
    "banco": "banco",
    "trabajo_actual": "trabajo_actual",
}
INT_COLUMNS = ("ingresos", "monto")


def _to_int(value) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(str(value).replace(".", "").replace(",", ".")))
    except ValueError:
        return None


# ==================== SUBSCRIBER -> LEAD ====================

def lead_data_from_subscriber(subscriber: dict) -> dict:
    """Mapea un subscriber de ManyChat a los campos del lead."""
    custom = custom_fields_dict(subscriber)

    first = (subscriber.get("first_name") or "").strip()
    last = (subscriber.get("last_name") or "").strip()
    nombre = f"{first} {last}".strip() or (subscriber.get("name") or "").strip() or "Contacto Manychat"

    raw_phone = subscriber.get("whatsapp_phone") or subscriber.get("phone")
    telefono = normalize_phone_ar(raw_phone) if raw_phone else f"manychat_{subscriber.get('id')}"

    data = {
        "nombre": nombre,
        "telefono": telefono,
        "email": subscriber.get("email") or None,
        "manychatId": str(subscriber.get("id")),
        "origen": origen_for_subscriber(subscriber),
        "tags": tag_names(subscriber),
        "customFields": custom,
    }

    for field, column in CUSTOM_FIELD_COLUMNS.items():
        value = custom.get(field)
        if value in (None, ""):
            continue
        data[column] = _to_int(value) if column in INT_COLUMNS else value

    cuil = custom.get("cuit") or custom.get("cuil")
    if cuil:
        data["cuil"] = str(cuil)

    estado = custom.get("estado")
    if estado:
        data["estado"] = str(estado).upper()

    return data


async def find_or_create_lead_from_subscriber(
    subscriber: dict, force_create: bool = False
) -> Tuple[str, bool]:
    """
    Busca el lead por manychatId, luego por teléfono (salvo force_create).
    Si lo encuentra por teléfono completa el manychatId.

    Returns: (lead_id, created)
    """
    manychat_id = str(subscriber.get("id"))

    lead = await db.leads.find_one({"manychatId": manychat_id}, {"_id": 0, "id": 1})
    if lead:
        return lead["id"], False

    data = lead_data_from_subscriber(subscriber)

    if not force_create and not data["telefono"].startswith("manychat_"):
        lead = await db.leads.find_one({"telefono": data["telefono"]}, {"_id": 0, "id": 1})
        if lead:
            await db.leads.update_one(
                {"id": lead["id"]},
                {"$set": {"manychatId": manychat_id, "updatedAt": now_iso()}}
            )
            logger.info(f"Lead {lead['id']} vinculado a subscriber {manychat_id} por teléfono")
            return lead["id"], False

    now = now_iso()
    doc = {
        "id": str(uuid.uuid4()),
        "estado": "NUEVO",
        "createdAt": now,
        "updatedAt": now,
        **data,
    }
    await db.leads.insert_one(doc)
    await create_lead_pipeline(doc["id"], "system")
    await safe_log_event(
        action="lead_created", entity_type="lead", entity_id=doc["id"],
        details={"source": "manychat", "manychatId": manychat_id, "origen": doc["origen"]},
    )
    logger.info(f"Lead {doc['id']} creado desde subscriber {manychat_id} ({doc['origen']})")
    return doc["id"], True


async def sync_subscriber_to_lead(subscriber: dict, force_create: bool = False) -> Tuple[str, bool]:
    """Upsert completo: crea o actualiza con todos los campos mapeados."""
    lead_id, created = await find_or_create_lead_from_subscriber(subscriber, force_create)

    if not created:
        data = lead_data_from_subscriber(subscriber)
        current = await db.leads.find_one({"id": lead_id}, {"_id": 0}) or {}

        update = {k: v for k, v in data.items() if k not in ("customFields", "telefono", "nombre")}
        # el nombre genérico no pisa uno real
        if data["nombre"] != "Contacto Manychat" or not current.get("nombre"):
            update["nombre"] = data["nombre"]
        if not data["telefono"].startswith("manychat_"):
            update["telefono"] = data["telefono"]
        if update.get("origen") == "unknown" and current.get("origen"):
            update.pop("origen")
        update["customFields"] = {**(current.get("customFields") or {}), **data["customFields"]}
        update["updatedAt"] = now_iso()
        await db.leads.update_one({"id": lead_id}, {"$set": update})

    await check_and_move_lead_with_cuil(lead_id)
    return lead_id, created


async def sync_tags_from_manychat(lead_id: str, subscriber: dict = None) -> List[str]:
    lead = await db.leads.find_one({"id": lead_id}, {"_id": 0, "manychatId": 1})
    if not lead or not lead.get("manychatId"):
        return []

    if subscriber is None:
        subscriber = await get_manychat_client().get_subscriber_info(lead["manychatId"])
    if not subscriber:
        return []

    tags = tag_names(subscriber)
    await db.leads.update_one({"id": lead_id}, {"$set": {"tags": tags, "updatedAt": now_iso()}})
    return tags


async def sync_lead_to_manychat(lead_id: str) -> dict:
    """Crea el subscriber en ManyChat para un lead que todavía no lo tiene."""
    lead = await db.leads.find_one({"id": lead_id}, {"_id": 0})
    if not lead:
        raise LookupError(f"Lead {lead_id} no encontrado")
    if lead.get("manychatId"):
        return {"success": True, "manychatId": lead["manychatId"], "created": False}

    client = get_manychat_client()
    phone = lead.get("telefono") if str(lead.get("telefono", "")).startswith("+") else None

    existing = await client.get_subscriber_by_identifier(phone=phone, email=lead.get("email"))
    if existing:
        subscriber = existing
        created = False
    else:
        parts = (lead.get("nombre") or "").split(" ", 1)
        subscriber = await client.create_subscriber(
            first_name=parts[0],
            last_name=parts[1] if len(parts) > 1 else "",
            phone=phone,
            email=lead.get("email"),
            tags=lead.get("tags") or [],
        )
        created = True
    if not subscriber:
        await log_manychat_sync(lead_id, "lead_create", "failed", "to_manychat",
                                error="No se pudo crear el subscriber")
        return {"success": False, "error": "No se pudo crear el subscriber"}

    manychat_id = str(subscriber.get("id"))
    await db.leads.update_one(
        {"id": lead_id}, {"$set": {"manychatId": manychat_id, "updatedAt": now_iso()}}
    )
    await log_manychat_sync(lead_id, "lead_create", "success", "to_manychat",
                            data={"manychatId": manychat_id, "created": created})
    return {"success": True, "manychatId": manychat_id, "created": created}


# ==================== PIPELINE -> TAGS ====================

async def log_manychat_sync(
    lead_id: str,
    sync_type: str,
    status: str,
    direction: str,
    data: dict = None,
    error: str = None,
    retry_count: int = 0,
) -> dict:
    now = now_iso()
    doc = {
        "id": str(uuid.uuid4()),
        "lead_id": lead_id,
        "sync_type": sync_type,
        "status": status,
        "direction": direction,
        "data": data or {},
        "error": error,
        "retry_count": retry_count,
        "next_retry_at": None,
        "created_at": now,
        "completed_at": now if status in ("success", "failed") else None,
    }
    await db.manychat_sync.insert_one(doc)
    doc.pop("_id", None)
    return doc


async def sync_pipeline_to_manychat(
    lead_id: str,
    manychat_id,
    new_stage: str,
    previous_stage: str = None,
    enqueue_on_failure: bool = True,
) -> dict:
    """
    Reemplaza el tag de pipeline del subscriber.

    Flow:
    1. Tag de la nueva etapa
    2. Tags actuales del subscriber
    3. Quitar TODOS los tags de pipeline (incluido el nuevo si ya estaba),
       conservar tags de negocio y ajenos al pipeline
    4. Agregar el nuevo tag: ManyChat dispara la automatización en tag_added
    5. Custom field "origen" = canal detectado

    Returns: {"success", "tag", "added", "removed", "skipped", "error"}
    """
    settings = await get_manychat_sync_settings()
    if not settings.get("pipeline_tags_enabled", True):
        return {"success": True, "skipped": True, "reason": "disabled"}

    sync_data = {"previous_stage": previous_stage, "new_stage": new_stage, "manychat_id": str(manychat_id)}
    new_tag = await get_tag_for_stage(new_stage)
    if not new_tag:
        await log_manychat_sync(lead_id, "pipeline_stage_change", "failed", "to_manychat",
                                data=sync_data, error=f"Sin tag para la etapa {new_stage}")
        return {"success": False, "error": f"Sin tag para la etapa {new_stage}"}
    sync_data["new_tag"] = new_tag

    client = get_manychat_client()
    try:
        subscriber = await client.get_subscriber_info(manychat_id)
        if not subscriber:
            raise ManychatError(f"Subscriber {manychat_id} no existe en ManyChat", 404)

        current_tags = tag_names(subscriber)
        pipeline_tags = await get_pipeline_tag_names()
        business_tags = await get_business_tag_names()
        normalized_new = new_tag.strip().lower()

        to_remove = [
            t for t in current_tags
            if t.strip().lower() in pipeline_tags and t.strip().lower() not in business_tags
        ]
        already_present = any(t.strip().lower() == normalized_new for t in current_tags)

        if not to_remove and already_present and new_tag != REEVALUATED_TAG:
            await log_manychat_sync(lead_id, "pipeline_stage_change", "success", "to_manychat",
                                    data={**sync_data, "message": "Sin cambios: el tag ya existe"})
            return {"success": True, "tag": new_tag, "added": [], "removed": [], "skipped": True}

        removed = []
        for tag in to_remove:
            if await client.remove_tag(manychat_id, tag):
                removed.append(tag)
            else:
                logger.warning(f"ManyChat no quitó el tag '{tag}' del subscriber {manychat_id}")

        if not await client.add_tag(manychat_id, new_tag):
            raise ManychatError(f"No se pudo agregar el tag '{new_tag}' al subscriber {manychat_id}")

        origen = detect_channel(subscriber)
        if settings.get("sync_origen_field", True) and origen != "unknown":
            try:
                await client.set_custom_field(manychat_id, "origen", origen)
            except ManychatError as e:
                logger.warning(f"No se pudo setear origen en subscriber {manychat_id}: {e}")

        await log_manychat_sync(lead_id, "pipeline_stage_change", "success", "to_manychat",
                                data={**sync_data, "added": [new_tag], "removed": removed,
                                      "not_removed": [t for t in to_remove if t not in removed]})
        logger.info(f"Pipeline sincronizado lead={lead_id} tag={new_tag} removidos={removed}")
        return {"success": True, "tag": new_tag, "added": [new_tag], "removed": removed, "skipped": False}

    except ManychatError as e:
        logger.error(f"Sync pipeline falló lead={lead_id} subscriber={manychat_id}: {e}")
        if enqueue_on_failure:
            await enqueue_sync(lead_id, "pipeline_stage_change", sync_data, error=str(e))
        else:
            await log_manychat_sync(lead_id, "pipeline_stage_change", "failed", "to_manychat",
                                    data=sync_data, error=str(e))
        return {"success": False, "tag": new_tag, "error": str(e), "queued": enqueue_on_failure}


# ==================== COLA DE REINTENTOS ====================

async def enqueue_sync(lead_id: str, sync_type: str, data: dict, error: str = None) -> dict:
    """
    Agrega un sync to_manychat a la cola para reintentar.
    Los pendientes anteriores del mismo lead y tipo quedan superseded:
    solo se reintenta la última etapa.
    """
    next_retry = datetime.now(timezone.utc) + timedelta(seconds=RETRY_DELAYS[0])
    now = now_iso()
    await db.manychat_sync.update_many(
        {"lead_id": lead_id, "sync_type": sync_type, "status": "pending", "direction": "to_manychat"},
        {"$set": {"status": "superseded", "completed_at": now}}
    )
    doc = {
        "id": str(uuid.uuid4()),
        "lead_id": lead_id,
        "sync_type": sync_type,
        "status": "pending",
        "direction": "to_manychat",
        "data": data,
        "error": error,
        "retry_count": 0,
        "next_retry_at": next_retry.isoformat(),
        "created_at": now,
        "completed_at": None,
    }
    await db.manychat_sync.insert_one(doc)
    doc.pop("_id", None)
    logger.info(f"Sync {sync_type} de lead {lead_id} en cola, reintento {doc['next_retry_at']}")
    return doc


async def process_pending_syncs(limit: int = 50) -> dict:
    """
    Reintenta los syncs pendientes cuyo next_retry_at ya pasó.
    Llamado por el scheduler (cada 5 min) o a mano desde la API.
    """
    results = {"processed": 0, "success": 0, "failed": 0, "exhausted": 0, "superseded": 0}

    items = await db.manychat_sync.find({
        "status": "pending",
        "direction": "to_manychat",
        "next_retry_at": {"$lte": now_iso()},
    }, {"_id": 0}).sort("created_at", 1).to_list(limit)

    for item in items:
        results["processed"] += 1
        data = item.get("data") or {}
        retry_count = item.get("retry_count", 0) + 1

        lead = await db.leads.find_one({"id": item["lead_id"]}, {"_id": 0, "manychatId": 1})
        if not lead or not lead.get("manychatId"):
            await _finish(item, "failed", retry_count, "Lead sin manychatId")
            results["failed"] += 1
            continue

        # el lead cambió de etapa desde que se encoló: no se reaplica un tag viejo
        pipeline = await db.lead_pipeline.find_one({"lead_id": item["lead_id"]}, {"_id": 0, "current_stage": 1})
        current_stage = (pipeline or {}).get("current_stage")
        if current_stage and data.get("new_stage") and current_stage != data["new_stage"]:
            await _finish(item, "superseded", item.get("retry_count", 0), f"Etapa actual {current_stage}")
            results["superseded"] += 1
            continue

        result = await sync_pipeline_to_manychat(
            item["lead_id"], lead["manychatId"], data.get("new_stage"),
            data.get("previous_stage"), enqueue_on_failure=False,
        )

        if result.get("success"):
            await _finish(item, "success", retry_count)
            results["success"] += 1
        elif retry_count >= MAX_RETRY_ATTEMPTS:
            await _finish(item, "exhausted", retry_count, result.get("error"))
            results["exhausted"] += 1
            logger.error(f"Sync {item['id']} agotado tras {retry_count} intentos")
        else:
            delay = RETRY_DELAYS[min(retry_count, len(RETRY_DELAYS) - 1)]
            next_retry = datetime.now(timezone.utc) + timedelta(seconds=delay)
            await db.manychat_sync.update_one({"id": item["id"]}, {"$set": {
                "retry_count": retry_count,
                "next_retry_at": next_retry.isoformat(),
                "error": result.get("error"),
            }})
            results["failed"] += 1

    if results["processed"]:
        logger.info(f"Cola ManyChat procesada: {results}")
    return results


async def _finish(item: dict, status: str, retry_count: int, error: str = None):
    await db.manychat_sync.update_one({"id": item["id"]}, {"$set": {
        "status": status,
        "retry_count": retry_count,
        "error": error,
        "completed_at": now_iso(),
    }})


async def get_sync_stats() -> dict:
    stats = {}
    for status in ("pending", "success", "failed", "exhausted", "superseded"):
        stats[status] = await db.manychat_sync.count_documents({"status": status})
    stats["total"] = sum(stats.values())
    return stats


async def get_sync_history(lead_id: str = None, status: str = None, limit: int = 100) -> List[dict]:
    query = {}
    if lead_id:
        query["lead_id"] = lead_id
    if status:
        query["status"] = status
    return await db.manychat_sync.find(query, {"_id": 0}).sort("created_at", -1).to_list(limit)


# ==================== SYNC MASIVO ====================

async def bulk_sync_by_ids(subscriber_ids: List[str]) -> dict:
    """Trae cada subscriber por ID y lo vuelca como lead."""
    client = get_manychat_client()
    results = {"total": len(subscriber_ids), "synced": 0, "created": 0, "updated": 0,
               "not_found": 0, "errors": []}

    for sid in subscriber_ids:
        sid = str(sid).strip()
        if not sid:
            continue
        try:
            subscriber = await client.get_subscriber_info(sid)
            if not subscriber:
                results["not_found"] += 1
                continue
            _, created = await sync_subscriber_to_lead(subscriber)
            results["synced"] += 1
            results["created" if created else "updated"] += 1
        except ManychatError as e:
            logger.error(f"Bulk sync {sid}: {e}")
            results["errors"].append({"subscriber_id": sid, "error": str(e)})

    logger.info(
        f"Bulk sync: {results['synced']}/{results['total']} "
        f"(nuevos={results['created']}, no encontrados={results['not_found']})"
    )
    return results


async def find_and_sync_subscribers(phones: List[str] = None, emails: List[str] = None) -> dict:
    """Busca subscribers por teléfono/email y los sincroniza como leads."""
    client = get_manychat_client()
    results = {"found": 0, "not_found": [], "leads": [], "errors": []}

    lookups = [("phone", p) for p in phones or []] + [("email", e) for e in emails or []]
    for kind, value in lookups:
        try:
            if kind == "phone":
                subscriber = await client.find_by_phone(normalize_phone_ar(value))
            else:
                subscriber = await client.find_by_email(value)
            if not subscriber:
                results["not_found"].append(value)
                continue
            lead_id, created = await sync_subscriber_to_lead(subscriber)
            results["found"] += 1
            results["leads"].append({"lead_id": lead_id, "created": created, "identifier": value})
        except ManychatError as e:
            shown = mask(value) if kind == "phone" else mask(value, 3)
            logger.error(f"find_and_sync {kind}={shown}: {e}")
            results["errors"].append({"identifier": value, "error": str(e)})

    return results
