"""
Notification feed: read side of the notification log.

Entries are written by the lifecycle engine (resolutions) and the MTTR alert
engine (breaches). Recipients can only read and acknowledge their own.
"""

import logging
from typing import Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import NotificationKind, NotificationLog, utcnow

logger = logging.getLogger(__name__)


class NotificationNotFoundError(Exception):
    """Notification does not exist or belongs to someone else."""
    pass


class NotificationService:
    """Recipient-scoped access to the notification log."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_for_recipient(
        self,
        recipient_id: UUID,
        unread_only: bool = False,
        kind: NotificationKind | None = None,
        limit: int = 50,
    ) -> Sequence[NotificationLog]:
        query = (
            select(NotificationLog)
            .where(NotificationLog.recipient_id == recipient_id)
            .order_by(NotificationLog.created_at.desc())
            .limit(limit)
        )
        if unread_only:
            query = query.where(NotificationLog.is_read.is_(False))
        if kind is not None:
            query = query.where(NotificationLog.kind == kind)

        result = await self._session.execute(query)
        return result.scalars().all()

    async def unread_count(self, recipient_id: UUID) -> int:
        result = await self._session.execute(
            select(func.count())
            .select_from(NotificationLog)
            .where(
                NotificationLog.recipient_id == recipient_id,
                NotificationLog.is_read.is_(False),
            )
        )
        return result.scalar_one()

    async def mark_read(self, notification_id: UUID, recipient_id: UUID) -> NotificationLog:
        """Acknowledge one notification. Only its recipient may do so."""
        result = await self._session.execute(
            select(NotificationLog).where(
                NotificationLog.id == notification_id,
                NotificationLog.recipient_id == recipient_id,
            )
        )
        notification = result.scalar_one_or_none()
        if notification is None:
            raise NotificationNotFoundError(f"Notification {notification_id} not found")

        if not notification.is_read:
            notification.is_read = True
            notification.read_at = utcnow()
            await self._session.flush()
        return notification

    async def mark_all_read(self, recipient_id: UUID) -> int:
        """Acknowledge every unread notification of a recipient. Returns the count."""
        result = await self._session.execute(
            update(NotificationLog)
            .where(
                NotificationLog.recipient_id == recipient_id,
                NotificationLog.is_read.is_(False),
            )
            .values(is_read=True, read_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        logger.info(f"Marked {result.rowcount} notification(s) read for {recipient_id}")
        return result.rowcount
