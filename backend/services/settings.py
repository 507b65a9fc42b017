"""
Formosa CRM - Servicio Settings

Parámetros de negocio dinámicos.
Colección: settings (cada doc identificado por key)

Settings disponibles:
- auto_move: mover a LISTO_ANALISIS los leads que informan CUIL
- manychat_sync: empujar tags de pipeline y campo origen a ManyChat
"""

import logging
from typing import Optional, Dict, Any, List
from config import db, now_iso

logger = logging.getLogger("settings")


async def get_setting(key: str) -> Optional[Dict]:
    """Devuelve un setting por su key"""
    return await db.settings.find_one({"key": key}, {"_id": 0})


async def upsert_setting(key: str, data: Dict[str, Any], updated_by: str = "system") -> Dict:
    """Crea o actualiza un setting"""
    data = dict(data)
    data.pop("_id", None)
    data["key"] = key
    data["updated_at"] = now_iso()
    data["updated_by"] = updated_by

    existing = await db.settings.find_one({"key": key})
    if existing:
        await db.settings.update_one({"key": key}, {"$set": data})
    else:
        data["created_at"] = now_iso()
        await db.settings.insert_one(data)

    return await db.settings.find_one({"key": key}, {"_id": 0})


async def list_settings() -> List[Dict]:
    docs = await db.settings.find({}, {"_id": 0}).to_list(100)
    keys = [d.get("key") for d in docs]
    for key, default in DEFAULTS.items():
        if key not in keys:
            docs.append({**default, "key": key, "source": "default"})
    return docs


async def delete_setting(key: str) -> bool:
    result = await db.settings.delete_one({"key": key})
    return result.deleted_count > 0


# ---- Auto-move ----

DEFAULT_AUTO_MOVE = {
    "enabled": True,
    "from_stages": ["CLIENTE_NUEVO", "CONSULTANDO_CREDITO"],
    "to_stage": "LISTO_ANALISIS",
}


async def get_auto_move_settings() -> Dict:
    doc = await get_setting("auto_move")
    if not doc:
        return DEFAULT_AUTO_MOVE
    return {**DEFAULT_AUTO_MOVE, **doc}


# ---- ManyChat sync ----

DEFAULT_MANYCHAT_SYNC = {
    "pipeline_tags_enabled": True,
    "sync_origen_field": True,
}


async def get_manychat_sync_settings() -> Dict:
    doc = await get_setting("manychat_sync")
    if not doc:
        return DEFAULT_MANYCHAT_SYNC
    return {**DEFAULT_MANYCHAT_SYNC, **doc}


DEFAULTS = {
    "auto_move": DEFAULT_AUTO_MOVE,
    "manychat_sync": DEFAULT_MANYCHAT_SYNC,
}
