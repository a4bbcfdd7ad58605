"""
MTTR Alerts: breach detection for open escalations.

An open escalation becomes urgent once the time since it was raised reaches
a fraction (70% by default) of its MTTR budget. Each urgent escalation gets
exactly one breach notification for its creator, however often the scan runs.

The scan is driven by list refreshes, not a scheduler. Writing the alert is
best-effort: failures are logged and never block the listing that
triggered the scan.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Sequence
from uuid import UUID

import httpx
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings
from ..models import Escalation, LinkStatus, NotificationKind, NotificationLog
from .lifecycle_engine import as_utc

logger = logging.getLogger(__name__)

CLOSED_STATUSES = (LinkStatus.RESOLVED, LinkStatus.CLOSED)
BREACH_DEDUPE_KEY = NotificationKind.MTTR_BREACH.value


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class AlertConfig:
    """Configuration for breach detection."""

    # Fraction of the MTTR budget after which a link is urgent
    threshold_ratio: float = 0.7

    # Optional external receiver for newly raised alerts
    webhook_url: str | None = None
    webhook_timeout_seconds: float = 10.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "AlertConfig":
        return cls(
            threshold_ratio=settings.mttr_alert_ratio,
            webhook_url=settings.alert_webhook_url,
        )


DEFAULT_CONFIG = AlertConfig()


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class Breach:
    """An open escalation past its alert threshold."""
    escalation_id: UUID
    ticket_id: str
    provider: str
    link_id: str
    mttr_hours: float
    elapsed_hours: float
    threshold_hours: float
    created_by: UUID


@dataclass
class BreachScan:
    """Result of one breach detection pass."""
    urgent_ids: set[UUID] = field(default_factory=set)
    breaches: list[Breach] = field(default_factory=list)
    notifications: list[NotificationLog] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


# =============================================================================
# PURE CHECKS
# =============================================================================


def elapsed_hours(created_at: datetime, now: datetime) -> float:
    return (as_utc(now) - as_utc(created_at)).total_seconds() / 3600


def is_breached(escalation: Escalation, now: datetime, ratio: float = 0.7) -> bool:
    """True when an open escalation has used `ratio` of its MTTR budget."""
    if escalation.status in CLOSED_STATUSES:
        return False
    return elapsed_hours(escalation.created_at, now) >= escalation.mttr_hours * ratio


def breach_message(ticket_id: str, ratio: float = 0.7) -> str:
    return f"MTTR {round(ratio * 100)}% threshold breach - Ticket {ticket_id}"


# =============================================================================
# ALERT ENGINE
# =============================================================================


class MttrAlertEngine:
    """Flags urgent escalations and records one breach alert per escalation."""

    def __init__(
        self,
        session: AsyncSession,
        config: AlertConfig = DEFAULT_CONFIG,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._session = session
        self._config = config
        self._http_client = http_client

    def find_breaches(
        self,
        escalations: Sequence[Escalation],
        now: datetime | None = None,
    ) -> list[Breach]:
        now = now or datetime.now(timezone.utc)
        ratio = self._config.threshold_ratio
        return [
            Breach(
                escalation_id=e.id,
                ticket_id=e.ticket_id,
                provider=e.provider.value,
                link_id=e.link_id,
                mttr_hours=e.mttr_hours,
                elapsed_hours=round(elapsed_hours(e.created_at, now), 2),
                threshold_hours=round(e.mttr_hours * ratio, 2),
                created_by=e.created_by,
            )
            for e in escalations
            if is_breached(e, now, ratio)
        ]

    async def open_escalations(self) -> Sequence[Escalation]:
        result = await self._session.execute(
            select(Escalation).where(Escalation.status.notin_(CLOSED_STATUSES))
        )
        return result.scalars().all()

    async def check_breaches(
        self,
        escalations: Sequence[Escalation] | None = None,
        now: datetime | None = None,
    ) -> BreachScan:
        """
        Run one detection pass.

        Flow:
        1. Find open escalations past the threshold
        2. Skip those that already have a breach alert
        3. Insert one alert per remaining escalation under a savepoint; the
           (escalation_id, dedupe_key) unique constraint rejects duplicates
           written by a concurrent pass
        4. Forward new alerts to the webhook, if configured
        """
        if escalations is None:
            escalations = await self.open_escalations()

        breaches = self.find_breaches(escalations, now)
        scan = BreachScan(
            urgent_ids={b.escalation_id for b in breaches},
            breaches=breaches,
        )
        if not breaches:
            return scan

        try:
            alerted = await self._already_alerted([b.escalation_id for b in breaches])
        except SQLAlchemyError as e:
            logger.error(f"Breach dedupe lookup failed: {e}")
            scan.errors.append(f"dedupe lookup failed: {e}")
            return scan

        for breach in breaches:
            if breach.escalation_id in alerted:
                continue
            notification = await self._record_alert(breach, scan)
            if notification is not None:
                scan.notifications.append(notification)

        if scan.notifications:
            logger.info(f"Raised {len(scan.notifications)} MTTR breach alert(s)")
            if self._config.webhook_url:
                await self._forward(scan)

        return scan

    async def _already_alerted(self, escalation_ids: list[UUID]) -> set[UUID]:
        result = await self._session.execute(
            select(NotificationLog.escalation_id).where(
                NotificationLog.escalation_id.in_(escalation_ids),
                NotificationLog.dedupe_key == BREACH_DEDUPE_KEY,
            )
        )
        return set(result.scalars().all())

    async def _record_alert(self, breach: Breach, scan: BreachScan) -> NotificationLog | None:
        notification = NotificationLog(
            recipient_id=breach.created_by,
            escalation_id=breach.escalation_id,
            kind=NotificationKind.MTTR_BREACH,
            dedupe_key=BREACH_DEDUPE_KEY,
            message=breach_message(breach.ticket_id, self._config.threshold_ratio),
            payload={
                "ticket_id": breach.ticket_id,
                "provider": breach.provider,
                "link_id": breach.link_id,
                "mttr_hours": breach.mttr_hours,
                "elapsed_hours": breach.elapsed_hours,
                "threshold_hours": breach.threshold_hours,
            },
        )
        try:
            async with self._session.begin_nested():
                self._session.add(notification)
                await self._session.flush()
        except IntegrityError:
            logger.info(f"Breach alert for {breach.ticket_id} already written concurrently")
            return None
        except SQLAlchemyError as e:
            logger.error(f"Failed to record breach alert for {breach.ticket_id}: {e}")
            scan.errors.append(f"{breach.ticket_id}: {e}")
            return None
        return notification

    async def _forward(self, scan: BreachScan) -> None:
        """Post new alerts to the configured webhook. Failures are logged only."""
        body = {
            "text": "\n".join(n.message for n in scan.notifications),
            "alerts": [n.payload for n in scan.notifications],
        }
        try:
            if self._http_client is not None:
                response = await self._http_client.post(self._config.webhook_url, json=body)
            else:
                async with httpx.AsyncClient(
                    timeout=self._config.webhook_timeout_seconds
                ) as client:
                    response = await client.post(self._config.webhook_url, json=body)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Breach alert webhook failed: {e}")
            scan.errors.append(f"webhook: {e}")
