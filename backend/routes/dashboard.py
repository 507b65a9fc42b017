"""
Rutas de Dashboard y Reportes
"""

from fastapi import APIRouter, Depends, Query
from typing import Optional

from services.permissions import require_permission
from services.metrics import (
    get_dashboard_metrics,
    leads_by_day,
    leads_by_origin,
    leads_by_status,
    preapproval_report,
)

router = APIRouter(tags=["Dashboard"])


@router.get("/dashboard/metrics")
async def dashboard_metrics(
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    user: dict = Depends(require_permission("dashboard.view"))
):
    return await get_dashboard_metrics(date_from, date_to)


# ==================== REPORTES ====================

@router.get("/reports/leads-by-day")
async def report_by_day(
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    user: dict = Depends(require_permission("reports.view"))
):
    return {"data": await leads_by_day(date_from, date_to)}


@router.get("/reports/leads-by-origin")
async def report_by_origin(
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    user: dict = Depends(require_permission("reports.view"))
):
    return {"data": await leads_by_origin(date_from, date_to)}


@router.get("/reports/leads-by-status")
async def report_by_status(
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    user: dict = Depends(require_permission("reports.view"))
):
    return {"data": await leads_by_status(date_from, date_to)}


@router.get("/reports/preapproval-rate")
async def report_preapproval(
    date_from: Optional[str] = Query(None, alias="from"),
    date_to: Optional[str] = Query(None, alias="to"),
    user: dict = Depends(require_permission("reports.view"))
):
    return await preapproval_report(date_from, date_to)
