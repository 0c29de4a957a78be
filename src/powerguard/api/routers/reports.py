"""
Reports API router.

Provides the monthly usage report per outlet and per department.
"""
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from powerguard.logging.usage import summarize_usage
from powerguard.runtime import Runtime

from ..dependencies import get_runtime
from ..schemas import UsageReportOut


router = APIRouter(tags=["reports"])


@router.get("/usage", response_model=UsageReportOut)
def usage_report(
    month: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}$", description="YYYY-MM, default current month"),
    runtime: Runtime = Depends(get_runtime),
):
    """Monthly energy per outlet and per department group, with percent of limit used."""
    today = runtime.clock.now().date()
    year, month_number = today.year, today.month
    if month:
        year, month_number = (int(part) for part in month.split("-"))
        if not 1 <= month_number <= 12:
            raise HTTPException(status_code=422, detail="month must be between 01 and 12")
    summary = summarize_usage(
        runtime.repository.list_devices(),
        runtime.repository.list_combined_limits(),
        year,
        month_number,
    )
    return UsageReportOut(**asdict(summary))
