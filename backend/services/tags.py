"""
Leads agrupados por tag

Los tags vienen de ManyChat (tags de la página) y de los propios leads.
Si ManyChat no responde se usan solo los tags presentes en los leads.
"""

import json
import logging
from typing import Optional, List

from config import db
from services.manychat_client import get_manychat_client, ManychatError

logger = logging.getLogger("tags")

DEFAULT_PAGE_SIZE = 50

LEAD_FIELDS = {
    "_id": 0, "id": 1, "nombre": 1, "telefono": 1, "email": 1, "origen": 1,
    "estado": 1, "tags": 1, "createdAt": 1, "manychatId": 1,
}


def parse_tags(value) -> List[str]:
    """Lista, string JSON ('["a","b"]') o vacío."""
    if not value:
        return []
    if isinstance(value, list):
        return [str(t) for t in value if t]
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return [t.strip() for t in value.split(",") if t.strip()]
        if isinstance(parsed, list):
            return [str(t) for t in parsed if t]
    return []


def end_of_day(date_str: str) -> str:
    """'2025-03-10' -> '2025-03-10T23:59:59.999999+00:00'"""
    if len(date_str) == 10:
        return f"{date_str}T23:59:59.999999+00:00"
    return date_str


def _date_query(fecha_desde: str = None, fecha_hasta: str = None) -> dict:
    query = {}
    if fecha_desde or fecha_hasta:
        query["createdAt"] = {}
        if fecha_desde:
            query["createdAt"]["$gte"] = fecha_desde
        if fecha_hasta:
            query["createdAt"]["$lte"] = end_of_day(fecha_hasta)
    return query


async def _manychat_tag_names() -> List[str]:
    client = get_manychat_client()
    if not client.is_configured():
        return []
    try:
        return [t["name"] for t in await client.get_tags() if t.get("name")]
    except ManychatError as e:
        logger.warning(f"No se pudieron obtener tags de ManyChat, uso tags locales: {e}")
        return []


async def get_leads_by_tags(
    tag: Optional[str] = None,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    fecha_desde: str = None,
    fecha_hasta: str = None,
) -> dict:
    """
    Returns:
    {
        "tags": [{"name", "count", "leads": [...]}],   ordenados por count desc
        "withoutTags": {"count", "leads"},
        "total": leads en el rango,
        "pagination": {...} si se filtró por tag
    }
    """
    page = max(page, 1)
    limit = min(max(limit, 1), 200)
    query = _date_query(fecha_desde, fecha_hasta)
    leads = await db.leads.find(query, LEAD_FIELDS).sort("createdAt", -1).to_list(10000)

    groups = {name: [] for name in await _manychat_tag_names()}
    without = []
    for lead in leads:
        tags = parse_tags(lead.get("tags"))
        if not tags:
            without.append(lead)
            continue
        for name in tags:
            groups.setdefault(name, []).append(lead)

    if tag:
        items = groups.get(tag, [])
        start = (page - 1) * limit
        return {
            "tags": [{"name": tag, "count": len(items), "leads": items[start:start + limit]}],
            "withoutTags": {"count": len(without), "leads": []},
            "total": len(leads),
            "pagination": {
                "page": page,
                "limit": limit,
                "total": len(items),
                "totalPages": (len(items) + limit - 1) // limit,
            },
        }

    result = [
        {"name": name, "count": len(items), "leads": items[:limit]}
        for name, items in groups.items()
    ]
    result.sort(key=lambda g: (-g["count"], g["name"].lower()))

    return {
        "tags": result,
        "withoutTags": {"count": len(without), "leads": without[:limit]},
        "total": len(leads),
    }


async def get_tag_stats(fecha_desde: str = None, fecha_hasta: str = None) -> dict:
    pipeline = [
        {"$match": {**_date_query(fecha_desde, fecha_hasta), "tags.0": {"$exists": True}}},
        {"$unwind": "$tags"},
        {"$group": {"_id": "$tags", "count": {"$sum": 1}}},
        {"$sort": {"count": -1}},
    ]
    stats = []
    async for doc in db.leads.aggregate(pipeline):
        stats.append({"tag": doc["_id"], "count": doc["count"]})

    total = await db.leads.count_documents(_date_query(fecha_desde, fecha_hasta))
    tagged = await db.leads.count_documents(
        {**_date_query(fecha_desde, fecha_hasta), "tags.0": {"$exists": True}}
    )
    return {"tags": stats, "total_leads": total, "tagged": tagged, "untagged": total - tagged}
