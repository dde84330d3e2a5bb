"""
Reporting API Routes

Spending by category, trend comparison against the previous period and
CSV export. Every report requires an explicit date range.
"""
from fastapi import APIRouter, Depends, HTTPException, Response, status
from typing import Optional
from datetime import date
from sqlalchemy.orm import Session
import time

from budget_app.models.schemas import User, SpendingByCategoryResponse, TrendResponse
from budget_app.api.auth import get_current_user
from budget_app.database.postgres_db import get_db
from budget_app.services.report_cache import ReportCache, get_report_cache
from budget_app.services.reporting import ReportingService

router = APIRouter(prefix="/reports", tags=["reports"])


def _require_range(start_date: Optional[date], end_date: Optional[date]):
    if start_date is None or end_date is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start_date and end_date are required"
        )
    if start_date > end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start_date must be on or before end_date"
        )


def _meta(started: float, cached: bool) -> dict:
    return {
        "generated_in_ms": round((time.perf_counter() - started) * 1000, 2),
        "cached": cached,
    }


@router.get("/spending", response_model=SpendingByCategoryResponse)
async def spending_by_category(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    account_id: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ReportCache = Depends(get_report_cache),
):
    _require_range(start_date, end_date)
    started = time.perf_counter()
    data, cached = ReportingService(db, cache).get_spending_by_category(
        current_user.id, start_date, end_date, account_id
    )
    return {"data": data, "meta": _meta(started, cached)}


@router.get("/trends", response_model=TrendResponse)
async def spending_trends(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    account_id: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: ReportCache = Depends(get_report_cache),
):
    _require_range(start_date, end_date)
    started = time.perf_counter()
    data, cached = ReportingService(db, cache).get_trends(
        current_user.id, start_date, end_date, account_id
    )
    return {"data": data, "meta": _meta(started, cached)}


@router.get("/export")
async def export_transactions(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    account_id: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _require_range(start_date, end_date)
    content = ReportingService(db).export_transactions_csv(
        current_user.id, start_date, end_date, account_id
    )
    filename = f"transactions_{start_date.isoformat()}_to_{end_date.isoformat()}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
