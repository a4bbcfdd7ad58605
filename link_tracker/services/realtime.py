"""
Realtime change feed over Server-Sent Events.

Row changes on the lifecycle tables are collected while a session flushes and
published only once the transaction commits; a rollback discards them.
Subscribers receive `{table, op, id}` events and re-fetch their views, so the
feed is eventually consistent rather than transactional.

Usage:
- Subscribe: GET /api/v1/events/stream
- Publish: change_hub.publish(ChangeEvent(...)) or just commit a session
"""

import asyncio
import json
import logging
from collections.abc import AsyncGenerator
from dataclasses import asdict, dataclass
from typing import Any

from sqlalchemy import event
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

WATCHED_TABLES = frozenset({"escalations", "reports", "rca_forms", "notification_log"})
_PENDING_KEY = "realtime_pending_changes"


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    op: str  # insert, update or delete
    id: str | None = None  # None for bulk statements

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ChangeHub:
    """
    In-process pub/sub for change events.

    Each subscriber owns a queue; publish puts the event into every queue.
    Subscribe yields SSE-formatted strings and sends a keepalive comment
    when idle.
    """

    def __init__(self, keepalive_seconds: float = 30, max_queue_size: int = 1000):
        self._subscribers: set[asyncio.Queue] = set()
        self._keepalive_seconds = keepalive_seconds
        self._max_queue_size = max_queue_size

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def open_queue(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        self._subscribers.add(queue)
        logger.info(f"Realtime subscriber added ({len(self._subscribers)} total)")
        return queue

    def close_queue(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)
        logger.info(f"Realtime subscriber removed ({len(self._subscribers)} remaining)")

    async def subscribe(self) -> AsyncGenerator[str, None]:
        queue = self.open_queue()
        try:
            while True:
                try:
                    change = await asyncio.wait_for(
                        queue.get(), timeout=self._keepalive_seconds
                    )
                    yield f"data: {json.dumps(change.to_dict())}\n\n"
                except asyncio.TimeoutError:
                    # SSE comment, ignored by EventSource.onmessage
                    yield ": keepalive\n\n"
        finally:
            self.close_queue(queue)

    def publish(self, change: ChangeEvent) -> None:
        for queue in self._subscribers:
            try:
                queue.put_nowait(change)
            except asyncio.QueueFull:
                logger.warning(f"Realtime queue full, dropped {change.table} {change.op}")


# Shared across the API process
change_hub = ChangeHub()


# =============================================================================
# SESSION HOOKS
# =============================================================================


def _pending(session: Session) -> list[ChangeEvent]:
    return session.info.setdefault(_PENDING_KEY, [])


def _track(session: Session, change: ChangeEvent) -> None:
    pending = _pending(session)
    if change not in pending:
        pending.append(change)


@event.listens_for(Session, "after_flush")
def _collect_flushed_changes(session: Session, flush_context: Any) -> None:
    # new/dirty/deleted still describe the flush that just ran
    for op, objects in (
        ("insert", session.new),
        ("update", session.dirty),
        ("delete", session.deleted),
    ):
        for obj in objects:
            table = getattr(obj, "__tablename__", None)
            if table not in WATCHED_TABLES:
                continue
            if op == "update" and not session.is_modified(obj):
                continue
            _track(session, ChangeEvent(table=table, op=op, id=str(obj.id)))


@event.listens_for(Session, "do_orm_execute")
def _collect_bulk_changes(orm_execute_state: Any) -> None:
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    table = getattr(orm_execute_state.statement, "table", None)
    name = getattr(table, "name", None)
    if name in WATCHED_TABLES:
        op = "update" if orm_execute_state.is_update else "delete"
        _track(orm_execute_state.session, ChangeEvent(table=name, op=op))


@event.listens_for(Session, "after_commit")
def _publish_committed_changes(session: Session) -> None:
    for change in session.info.pop(_PENDING_KEY, []):
        change_hub.publish(change)


@event.listens_for(Session, "after_transaction_end")
def _discard_uncommitted_changes(session: Session, transaction: Any) -> None:
    # Savepoint rollbacks keep the outer transaction's changes
    if transaction.parent is None:
        session.info.pop(_PENDING_KEY, None)
