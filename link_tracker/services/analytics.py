"""
Analytics: operational roll-ups over reports, escalations and RCAs.

All figures are computed from the rows matching a date range (on created_at
for reports, on start_time for RCAs) and an optional provider. Repair hours
come from the RCA's user-entered start and end times; an RCA counts as
within SLA when those hours do not exceed its escalation's MTTR budget.
"""

import logging
import re
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..models import Escalation, LinkStatus, Provider, RcaForm, Report
from .lifecycle_engine import DEFAULT_MTTR_HOURS, as_utc

logger = logging.getLogger(__name__)

LEADERBOARD_SIZE = 10
MAX_ALERTS = 50
JC_BUCKETS = ("0-2", "3-5", "6+")


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class AnalyticsFilter:
    """Date range (inclusive, by day) and provider filter."""
    from_date: date | None = None
    to_date: date | None = None
    provider: Provider | None = None

    def bounds(self) -> tuple[datetime | None, datetime | None]:
        start = (
            datetime.combine(self.from_date, time.min, tzinfo=timezone.utc)
            if self.from_date else None
        )
        end = (
            datetime.combine(self.to_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
            if self.to_date else None
        )
        return start, end


@dataclass
class ReportCounts:
    total: int = 0
    critical: int = 0
    pending: int = 0
    in_progress: int = 0
    resolved: int = 0
    closed: int = 0


@dataclass
class SlaCompliance:
    within: int
    total: int
    percent: float


@dataclass
class OfcMetrics:
    percent_with_ofc: float | None
    avg_jc: float | None
    jc_buckets: dict[str, int]


@dataclass
class LeaderboardEntry:
    lead: str
    resolved_count: int
    avg_repair_hours: float | None
    sla_percent: float | None


@dataclass
class AnalyticsSummary:
    counts: ReportCounts
    incidents_by_day: dict[str, int] = field(default_factory=dict)
    avg_repair_hours: float | None = None
    avg_repair_hours_by_provider: dict[str, float] = field(default_factory=dict)
    sla: SlaCompliance | None = None
    ofc: OfcMetrics | None = None
    leaderboard: list[LeaderboardEntry] = field(default_factory=list)
    alerts: list[str] = field(default_factory=list)


# =============================================================================
# PURE HELPERS
# =============================================================================


def repair_hours(rca: RcaForm) -> float | None:
    """Fractional hours between the RCA's start and end times."""
    if rca.start_time is None or rca.end_time is None:
        return None
    seconds = (as_utc(rca.end_time) - as_utc(rca.start_time)).total_seconds()
    return max(0.0, seconds / 3600)


def parse_jc(value: str | None) -> int:
    """Joint closure counts are free text; anything unparseable counts as 0."""
    if value is None:
        return 0
    digits = re.sub(r"[^0-9-]", "", str(value))
    try:
        return int(digits)
    except ValueError:
        return 0


def jc_bucket(count: int) -> str:
    if count <= 2:
        return "0-2"
    if count <= 5:
        return "3-5"
    return "6+"


def format_hms(hours: float) -> str:
    total_seconds = round(max(0.0, hours) * 3600)
    hh, rest = divmod(total_seconds, 3600)
    mm, ss = divmod(rest, 60)
    return f"{hh:02d}:{mm:02d}:{ss:02d}"


def _budget(escalation: Escalation | None) -> float:
    if escalation is None or escalation.mttr_hours is None:
        return DEFAULT_MTTR_HOURS
    return escalation.mttr_hours


# =============================================================================
# ANALYTICS SERVICE
# =============================================================================


class AnalyticsService:
    """Computes the analytics summary for a filter."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def summary(self, filters: AnalyticsFilter | None = None) -> AnalyticsSummary:
        filters = filters or AnalyticsFilter()
        reports = await self._reports(filters)
        rcas = await self._rcas(filters)

        summary = AnalyticsSummary(
            counts=self.report_counts(reports),
            incidents_by_day=self.incidents_by_day(reports),
        )
        summary.avg_repair_hours, summary.avg_repair_hours_by_provider = self.repair_averages(rcas)
        summary.sla = self.sla_compliance(rcas)
        summary.ofc = self.ofc_metrics(rcas)
        summary.leaderboard = self.leaderboard(reports)
        summary.alerts = self.alerts(reports, rcas)

        logger.debug(
            f"Analytics summary: {summary.counts.total} reports, {len(rcas)} RCAs"
        )
        return summary

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    async def _reports(self, filters: AnalyticsFilter) -> Sequence[Report]:
        start, end = filters.bounds()
        query = (
            select(Report)
            .join(Report.escalation)
            .options(
                selectinload(Report.creator),
                selectinload(Report.escalation).selectinload(Escalation.team_lead),
                selectinload(Report.escalation).selectinload(Escalation.rca),
            )
        )
        if start is not None:
            query = query.where(Report.created_at >= start)
        if end is not None:
            query = query.where(Report.created_at < end)
        if filters.provider is not None:
            query = query.where(Escalation.provider == filters.provider)

        result = await self._session.execute(query.order_by(Report.created_at))
        return result.scalars().all()

    async def _rcas(self, filters: AnalyticsFilter) -> Sequence[RcaForm]:
        start, end = filters.bounds()
        query = (
            select(RcaForm)
            .join(RcaForm.escalation)
            .options(selectinload(RcaForm.escalation))
        )
        if start is not None:
            query = query.where(RcaForm.start_time >= start)
        if end is not None:
            query = query.where(RcaForm.start_time < end)
        if filters.provider is not None:
            query = query.where(Escalation.provider == filters.provider)

        result = await self._session.execute(query.order_by(RcaForm.start_time))
        return result.scalars().all()

    # -------------------------------------------------------------------------
    # Roll-ups
    # -------------------------------------------------------------------------

    @staticmethod
    def report_counts(reports: Sequence[Report]) -> ReportCounts:
        by_status = Counter(r.status for r in reports)
        return ReportCounts(
            total=len(reports),
            critical=sum(1 for r in reports if r.is_critical),
            pending=by_status[LinkStatus.PENDING],
            in_progress=by_status[LinkStatus.IN_PROGRESS],
            resolved=by_status[LinkStatus.RESOLVED],
            closed=by_status[LinkStatus.CLOSED],
        )

    @staticmethod
    def incidents_by_day(reports: Sequence[Report]) -> dict[str, int]:
        days = Counter(as_utc(r.created_at).date().isoformat() for r in reports)
        return dict(sorted(days.items()))

    @staticmethod
    def repair_averages(rcas: Sequence[RcaForm]) -> tuple[float | None, dict[str, float]]:
        all_hours: list[float] = []
        by_provider: dict[str, list[float]] = defaultdict(list)
        for rca in rcas:
            hours = repair_hours(rca)
            if hours is None:
                continue
            all_hours.append(hours)
            by_provider[rca.escalation.provider.value].append(hours)

        overall = round(sum(all_hours) / len(all_hours), 2) if all_hours else None
        return overall, {
            provider: round(sum(values) / len(values), 2)
            for provider, values in sorted(by_provider.items())
        }

    @staticmethod
    def sla_compliance(rcas: Sequence[RcaForm]) -> SlaCompliance | None:
        within = total = 0
        for rca in rcas:
            hours = repair_hours(rca)
            if hours is None:
                continue
            total += 1
            if hours <= _budget(rca.escalation):
                within += 1
        if total == 0:
            return None
        return SlaCompliance(within=within, total=total, percent=round(within / total * 100, 2))

    @staticmethod
    def ofc_metrics(rcas: Sequence[RcaForm]) -> OfcMetrics:
        buckets = {name: 0 for name in JC_BUCKETS}
        if not rcas:
            return OfcMetrics(percent_with_ofc=None, avg_jc=None, jc_buckets=buckets)

        with_ofc = 0
        jc_total = 0
        for rca in rcas:
            if rca.ofc and rca.ofc.strip():
                with_ofc += 1
            jc = parse_jc(rca.jc)
            jc_total += jc
            buckets[jc_bucket(jc)] += 1

        return OfcMetrics(
            percent_with_ofc=round(with_ofc / len(rcas) * 100, 2),
            avg_jc=round(jc_total / len(rcas), 2),
            jc_buckets=buckets,
        )

    @staticmethod
    def leaderboard(reports: Sequence[Report]) -> list[LeaderboardEntry]:
        """
        Rank team leads by resolved reports, then by SLA percentage.

        A report is credited to its escalation's team lead, or to the report
        creator when no team lead was assigned.
        """
        acc: dict[str, dict[str, float]] = defaultdict(
            lambda: {"count": 0, "hours": 0.0, "timed": 0, "within": 0}
        )
        for report in reports:
            if report.status != LinkStatus.RESOLVED:
                continue
            escalation = report.escalation
            if escalation.team_lead is not None:
                lead = escalation.team_lead.full_name or escalation.team_lead.email
            elif report.creator is not None:
                lead = report.creator.full_name or report.creator.email
            else:
                lead = "Unassigned"

            entry = acc[lead]
            entry["count"] += 1
            hours = repair_hours(escalation.rca) if escalation.rca else None
            if hours is not None:
                entry["hours"] += hours
                entry["timed"] += 1
                if hours <= _budget(escalation):
                    entry["within"] += 1

        board = [
            LeaderboardEntry(
                lead=lead,
                resolved_count=int(v["count"]),
                avg_repair_hours=round(v["hours"] / v["timed"], 2) if v["timed"] else None,
                sla_percent=round(v["within"] / v["timed"] * 100, 2) if v["timed"] else None,
            )
            for lead, v in acc.items()
        ]
        board.sort(
            key=lambda e: (
                -e.resolved_count,
                -(e.sla_percent if e.sla_percent is not None else -1),
            )
        )
        return board[:LEADERBOARD_SIZE]

    @staticmethod
    def alerts(reports: Sequence[Report], rcas: Sequence[RcaForm]) -> list[str]:
        out: list[str] = []
        for report in reports:
            if report.is_critical and report.status not in (LinkStatus.RESOLVED, LinkStatus.CLOSED):
                out.append(f"Critical: {report.issue_description[:80]}")
        for rca in rcas:
            hours = repair_hours(rca)
            if hours is not None and hours > _budget(rca.escalation):
                out.append(f"MTTR Breach: {rca.escalation.link_id} - {format_hms(hours)}")
        return out[:MAX_ALERTS]
