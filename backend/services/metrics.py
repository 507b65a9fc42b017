"""
Métricas del dashboard y reportes

Todas las fechas se guardan en ISO UTC; los días se agrupan por los
primeros 10 caracteres (YYYY-MM-DD).
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from config import db
from models.lead import VALID_ESTADOS, VALID_ORIGENES
from services.tags import end_of_day

logger = logging.getLogger("metrics")

RECENT_LEADS = 10


def date_range_query(date_from: Optional[str], date_to: Optional[str], field: str = "createdAt") -> dict:
    if not date_from and not date_to:
        return {}
    rng = {}
    if date_from:
        rng["$gte"] = date_from
    if date_to:
        rng["$lte"] = end_of_day(date_to)
    return {field: rng}


def preapproval_rate(preapproved: int, total: int) -> float:
    """PREAPROBADO / total * 100, 2 decimales"""
    if not total:
        return 0.0
    return round(preapproved / total * 100, 2)


async def _count_by(field: str, query: dict) -> dict:
    pipeline = [
        {"$match": query},
        {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
    ]
    counts = {}
    async for doc in db.leads.aggregate(pipeline):
        counts[doc["_id"] or "unknown"] = doc["count"]
    return counts


async def leads_by_day(date_from: str = None, date_to: str = None) -> list:
    """[{date, total, preaprobados}] ordenado por fecha"""
    leads = await db.leads.find(
        date_range_query(date_from, date_to), {"_id": 0, "createdAt": 1, "estado": 1}
    ).to_list(50000)

    days = {}
    for lead in leads:
        day = (lead.get("createdAt") or "")[:10]
        if not day:
            continue
        bucket = days.setdefault(day, {"date": day, "total": 0, "preaprobados": 0})
        bucket["total"] += 1
        if lead.get("estado") == "PREAPROBADO":
            bucket["preaprobados"] += 1

    return [days[d] for d in sorted(days)]


async def leads_by_origin(date_from: str = None, date_to: str = None) -> list:
    counts = await _count_by("origen", date_range_query(date_from, date_to))
    total = sum(counts.values())
    rows = [
        {"origen": origen, "count": count,
         "percentage": round(count / total * 100, 2) if total else 0}
        for origen, count in counts.items()
    ]
    rows.sort(key=lambda r: -r["count"])
    return rows


async def leads_by_status(date_from: str = None, date_to: str = None) -> list:
    counts = await _count_by("estado", date_range_query(date_from, date_to))
    return [{"estado": e, "count": counts.get(e, 0)} for e in VALID_ESTADOS] + [
        {"estado": e, "count": c} for e, c in counts.items() if e not in VALID_ESTADOS
    ]


async def preapproval_report(date_from: str = None, date_to: str = None) -> dict:
    query = date_range_query(date_from, date_to)
    total = await db.leads.count_documents(query)
    preapproved = await db.leads.count_documents({**query, "estado": "PREAPROBADO"})
    rejected = await db.leads.count_documents({**query, "estado": "RECHAZADO"})
    return {
        "total": total,
        "preaprobados": preapproved,
        "rechazados": rejected,
        "rate": preapproval_rate(preapproved, total),
        "daily": await leads_by_day(date_from, date_to),
    }


async def conversations_by_channel() -> dict:
    pipeline = [{"$group": {"_id": "$platform", "count": {"$sum": 1}}}]
    counts = {}
    async for doc in db.conversations.aggregate(pipeline):
        counts[doc["_id"] or "unknown"] = doc["count"]
    return counts


async def get_dashboard_metrics(date_from: str = None, date_to: str = None) -> dict:
    query = date_range_query(date_from, date_to)
    today = datetime.now(timezone.utc).strftime("%Y-%m-%d")

    total = await db.leads.count_documents(query)
    new_today = await db.leads.count_documents({"createdAt": {"$gte": today}})

    by_estado = {e: 0 for e in VALID_ESTADOS}
    by_estado.update(await _count_by("estado", query))
    by_origen = {o: 0 for o in VALID_ORIGENES}
    by_origen.update(await _count_by("origen", query))

    recent = await db.leads.find(
        query,
        {"_id": 0, "id": 1, "nombre": 1, "telefono": 1, "origen": 1, "estado": 1, "createdAt": 1}
    ).sort("createdAt", -1).to_list(RECENT_LEADS)

    return {
        "totalLeads": total,
        "newToday": new_today,
        "byEstado": by_estado,
        "byOrigen": by_origen,
        "preapprovalRate": preapproval_rate(by_estado.get("PREAPROBADO", 0), total),
        "trend": await leads_by_day(date_from, date_to),
        "recentLeads": recent,
        "conversationsByChannel": await conversations_by_channel(),
    }
