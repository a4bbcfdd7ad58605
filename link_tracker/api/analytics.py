"""
Analytics API: operational roll-ups for the dashboard.

Figures only; charting is left to the client.
"""

from dataclasses import asdict
from datetime import date
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from ..core import Action, CurrentUser, SessionDep, require_capability
from ..models import Provider
from ..services.analytics import AnalyticsFilter, AnalyticsService

router = APIRouter(prefix="/analytics", tags=["analytics"])


class AnalyticsSummaryResponse(BaseModel):
    """Counts, repair times, SLA, OFC/JC, leaderboard and alerts."""
    counts: dict[str, int]
    incidents_by_day: dict[str, int]
    avg_repair_hours: float | None
    avg_repair_hours_by_provider: dict[str, float]
    sla: dict[str, Any] | None
    ofc: dict[str, Any] | None
    leaderboard: list[dict[str, Any]]
    alerts: list[str]


@router.get(
    "/summary",
    response_model=AnalyticsSummaryResponse,
    summary="Get the analytics summary",
    description="""
    Roll-ups over reports (by created date) and RCAs (by start time) in the
    date range, optionally for one provider. Repair hours come from RCA
    start/end times; SLA counts RCAs within their escalation's MTTR budget.
    """,
)
async def get_analytics_summary(
    current_user: Annotated[CurrentUser, Depends(require_capability(Action.VIEW_ANALYTICS))],
    session: SessionDep,
    from_date: date | None = Query(default=None),
    to_date: date | None = Query(default=None),
    provider: Provider | None = Query(default=None),
):
    if from_date and to_date and from_date > to_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="from_date must not be after to_date",
        )

    summary = await AnalyticsService(session).summary(
        AnalyticsFilter(from_date=from_date, to_date=to_date, provider=provider)
    )
    return AnalyticsSummaryResponse(
        counts=asdict(summary.counts),
        incidents_by_day=summary.incidents_by_day,
        avg_repair_hours=summary.avg_repair_hours,
        avg_repair_hours_by_provider=summary.avg_repair_hours_by_provider,
        sla=asdict(summary.sla) if summary.sla else None,
        ofc=asdict(summary.ofc) if summary.ofc else None,
        leaderboard=[asdict(entry) for entry in summary.leaderboard],
        alerts=summary.alerts,
    )
