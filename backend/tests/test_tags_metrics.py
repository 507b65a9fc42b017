"""
Formosa CRM - Leads por tag, dashboard y reportes
Run: cd backend && pytest tests/test_tags_metrics.py -v
"""

import asyncio
from datetime import datetime, timezone

from config import db
from services.tags import parse_tags, end_of_day, get_leads_by_tags
from services.metrics import (
    preapproval_rate,
    date_range_query,
    leads_by_day,
    leads_by_origin,
    leads_by_status,
    preapproval_report,
    get_dashboard_metrics,
)


def _db_op(coro):
    """Run async DB operation in a fresh event loop."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _seed_leads():
    leads = [
        {"id": "a", "nombre": "A", "estado": "PREAPROBADO", "origen": "whatsapp",
         "tags": ["credito-preaprobado", "vip"], "createdAt": "2025-03-01T10:00:00+00:00"},
        {"id": "b", "nombre": "B", "estado": "NUEVO", "origen": "whatsapp",
         "tags": ["vip"], "createdAt": "2025-03-01T15:00:00+00:00"},
        {"id": "c", "nombre": "C", "estado": "RECHAZADO", "origen": "instagram",
         "tags": '["lead-nuevo"]', "createdAt": "2025-03-02T09:00:00+00:00"},
        {"id": "d", "nombre": "D", "estado": "NUEVO", "origen": "web",
         "tags": [], "createdAt": "2025-03-03T23:30:00+00:00"},
    ]
    for lead in leads:
        _db_op(db.leads.insert_one(lead))


class TestTagHelpers:

    def test_parse_tags(self):
        assert parse_tags(["a", "", "b"]) == ["a", "b"]
        assert parse_tags('["a", "b"]') == ["a", "b"]
        assert parse_tags("a, b") == ["a", "b"]
        assert parse_tags(None) == []

    def test_end_of_day(self):
        assert end_of_day("2025-03-10") == "2025-03-10T23:59:59.999999+00:00"
        assert end_of_day("2025-03-10T12:00:00+00:00") == "2025-03-10T12:00:00+00:00"


class TestLeadsByTags:

    def test_grouping(self):
        _seed_leads()
        result = _db_op(get_leads_by_tags())
        names = [t["name"] for t in result["tags"]]
        assert names == ["vip", "credito-preaprobado", "lead-nuevo"]
        assert result["tags"][0]["count"] == 2
        assert result["withoutTags"]["count"] == 1
        assert result["total"] == 4

    def test_manychat_tags_listed_even_without_leads(self, manychat):
        manychat.page_tags = [{"id": 1, "name": "sin-leads"}, {"id": 2, "name": "vip"}]
        _seed_leads()
        result = _db_op(get_leads_by_tags())
        by_name = {t["name"]: t["count"] for t in result["tags"]}
        assert by_name["sin-leads"] == 0
        assert by_name["vip"] == 2

    def test_manychat_down_falls_back(self, manychat):
        manychat.fail_paths["/fb/page/getTags"] = 500
        _seed_leads()
        assert _db_op(get_leads_by_tags())["total"] == 4

    def test_single_tag_paginated(self):
        _seed_leads()
        result = _db_op(get_leads_by_tags(tag="vip", page=2, limit=1))
        assert result["pagination"] == {"page": 2, "limit": 1, "total": 2, "totalPages": 2}
        assert [l["id"] for l in result["tags"][0]["leads"]] == ["a"]

    def test_date_range_inclusive(self):
        _seed_leads()
        result = _db_op(get_leads_by_tags(fecha_desde="2025-03-02", fecha_hasta="2025-03-03"))
        assert result["total"] == 2


class TestMetrics:

    def test_preapproval_rate(self):
        assert preapproval_rate(1, 3) == 33.33
        assert preapproval_rate(0, 0) == 0.0

    def test_date_range_query(self):
        assert date_range_query(None, None) == {}
        assert date_range_query("2025-03-01", "2025-03-02") == {
            "createdAt": {"$gte": "2025-03-01", "$lte": "2025-03-02T23:59:59.999999+00:00"}
        }

    def test_leads_by_day(self):
        _seed_leads()
        days = _db_op(leads_by_day())
        assert days == [
            {"date": "2025-03-01", "total": 2, "preaprobados": 1},
            {"date": "2025-03-02", "total": 1, "preaprobados": 0},
            {"date": "2025-03-03", "total": 1, "preaprobados": 0},
        ]

    def test_leads_by_origin(self):
        _seed_leads()
        rows = _db_op(leads_by_origin())
        assert rows[0] == {"origen": "whatsapp", "count": 2, "percentage": 50.0}

    def test_leads_by_status_lists_every_estado(self):
        _seed_leads()
        rows = {r["estado"]: r["count"] for r in _db_op(leads_by_status())}
        assert rows["NUEVO"] == 2
        assert rows["DERIVADO"] == 0

    def test_preapproval_report(self):
        _seed_leads()
        report = _db_op(preapproval_report("2025-03-01", "2025-03-01"))
        assert report["total"] == 2
        assert report["preaprobados"] == 1
        assert report["rate"] == 50.0

    def test_dashboard(self):
        _seed_leads()
        today = datetime.now(timezone.utc).isoformat()
        _db_op(db.leads.insert_one({"id": "e", "nombre": "E", "estado": "NUEVO",
                                    "origen": "facebook", "createdAt": today}))
        _db_op(db.conversations.insert_one({"id": "c1", "platform": "whatsapp"}))

        metrics = _db_op(get_dashboard_metrics())
        assert metrics["totalLeads"] == 5
        assert metrics["newToday"] == 1
        assert metrics["byEstado"]["PREAPROBADO"] == 1
        assert metrics["byOrigen"]["comentario"] == 0
        assert metrics["preapprovalRate"] == 20.0
        assert metrics["recentLeads"][0]["id"] == "e"
        assert metrics["conversationsByChannel"] == {"whatsapp": 1}


class TestDashboardApi:

    def test_metrics_endpoint(self, api):
        _seed_leads()
        r = api.get("/api/dashboard/metrics")
        assert r.status_code == 200
        assert r.json()["totalLeads"] == 4

    def test_reports(self, api):
        _seed_leads()
        assert len(api.get("/api/reports/leads-by-day").json()["data"]) == 3
        assert api.get("/api/reports/preapproval-rate").json()["rate"] == 25.0

    def test_tags_endpoint(self, api):
        _seed_leads()
        r = api.get("/api/tags", params={"tag": "vip"})
        assert r.status_code == 200
        assert r.json()["tags"][0]["count"] == 2
