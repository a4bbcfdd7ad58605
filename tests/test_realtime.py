"""
Tests for the realtime change feed.

These tests verify:
1. HUB: subscribers receive published events and idle keepalives
2. COMMIT: row changes are published only once the transaction commits
3. ROLLBACK: a rolled-back transaction publishes nothing
4. STREAM: the SSE endpoint releases its database connection before streaming
"""

import asyncio

import pytest
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import make_image
from link_tracker.api.events import stream_events
from link_tracker.core import Actor, CurrentUser
from link_tracker.models import (
    ActualCof,
    LinkType,
    NotificationKind,
    NotificationLog,
    Profile,
    Provider,
)
from link_tracker.services.lifecycle_engine import (
    CreateEscalationInput,
    CreateReportInput,
    LifecycleEngine,
    RcaInput,
    ResolveReportInput,
)
from link_tracker.services.notifications import NotificationService
from link_tracker.services.realtime import ChangeEvent, ChangeHub, change_hub


@pytest.fixture
def feed():
    """A queue on the shared hub, drained into a list on demand."""
    queue = change_hub.open_queue()

    def drain() -> list[ChangeEvent]:
        events = []
        while not queue.empty():
            events.append(queue.get_nowait())
        return events

    yield drain
    change_hub.close_queue(queue)


def _notification(profile: Profile, message: str = "Ticket TCK-AAAAAA resolved") -> NotificationLog:
    return NotificationLog(
        recipient_id=profile.id,
        kind=NotificationKind.RESOLUTION,
        message=message,
    )


# =============================================================================
# TEST: HUB
# =============================================================================


class TestChangeHub:
    async def test_subscriber_receives_published_event(self):
        hub = ChangeHub(keepalive_seconds=0.01)
        stream = hub.subscribe()

        # Nothing published yet: the subscriber idles on a keepalive comment
        assert await stream.__anext__() == ": keepalive\n\n"
        assert hub.subscriber_count == 1

        hub.publish(ChangeEvent(table="escalations", op="insert", id="abc"))
        message = await asyncio.wait_for(stream.__anext__(), timeout=1)

        assert message == 'data: {"table": "escalations", "op": "insert", "id": "abc"}\n\n'

        await stream.aclose()
        assert hub.subscriber_count == 0

    async def test_full_queue_drops_event(self):
        hub = ChangeHub(max_queue_size=1)
        queue = hub.open_queue()

        hub.publish(ChangeEvent(table="reports", op="update", id="1"))
        hub.publish(ChangeEvent(table="reports", op="update", id="2"))

        assert queue.qsize() == 1
        assert queue.get_nowait().id == "1"


# =============================================================================
# TEST: SESSION HOOKS
# =============================================================================


class TestSessionHooks:
    async def test_commit_publishes_insert(
        self, session: AsyncSession, fibre_user: Profile, feed
    ):
        notification = _notification(fibre_user)
        session.add(notification)
        await session.flush()

        assert feed() == []

        await session.commit()

        assert feed() == [
            ChangeEvent(table="notification_log", op="insert", id=str(notification.id))
        ]

    async def test_rollback_publishes_nothing(
        self, session: AsyncSession, fibre_user: Profile, feed
    ):
        session.add(_notification(fibre_user))
        await session.flush()

        await session.rollback()

        assert feed() == []
        assert "realtime_pending_changes" not in session.info

    async def test_savepoint_rollback_keeps_outer_changes(
        self, session: AsyncSession, fibre_user: Profile, feed
    ):
        kept = _notification(fibre_user)
        session.add(kept)
        await session.flush()

        savepoint = await session.begin_nested()
        session.add(_notification(fibre_user, "Ticket TCK-BBBBBB resolved"))
        await session.flush()
        await savepoint.rollback()

        await session.commit()

        assert ChangeEvent(table="notification_log", op="insert", id=str(kept.id)) in feed()

    async def test_bulk_update_published_without_id(
        self, session: AsyncSession, fibre_user: Profile, feed
    ):
        session.add(_notification(fibre_user))
        await session.commit()
        feed()

        await NotificationService(session).mark_all_read(fibre_user.id)
        await session.commit()

        assert feed() == [ChangeEvent(table="notification_log", op="update", id=None)]

    async def test_rca_closure_publishes_report_update(
        self,
        session: AsyncSession,
        media_store,
        fibre_actor: Actor,
        staff_actor: Actor,
        regional_manager: Profile,
        team_lead: Profile,
        feed,
    ):
        engine = LifecycleEngine(session, media_store=media_store)
        escalation = await engine.create_escalation(
            CreateEscalationInput(
                provider=Provider.MTN,
                mttr_hours=3,
                description="Link down",
                segment="SEG-RT",
                regional_manager_id=regional_manager.id,
                team_lead_id=team_lead.id,
            ),
            fibre_actor,
        )
        report = await engine.create_report(
            escalation.id,
            CreateReportInput(
                issue_description="fiber cut",
                reported_by="Sam Field",
                contact_info="0803 000 0000",
            ),
            staff_actor,
        )
        await engine.resolve_report(
            report.id,
            ResolveReportInput(resolution_notes="spliced", cof="Core Break", pof="KM12"),
            staff_actor,
            [make_image()],
        )
        await session.commit()
        feed()

        result = await engine.finalize_rca(
            escalation.id,
            RcaInput(
                link_type=LinkType.BB,
                start_time=escalation.created_at,
                end_time=escalation.created_at,
                actual_cof=ActualCof.FIBRE,
                detailed_cof="Excavation",
                resolution="Replaced cable",
            ),
            staff_actor,
        )
        await session.commit()

        events = feed()
        assert ChangeEvent(table="reports", op="update", id=str(report.id)) in events
        assert ChangeEvent(table="rca_forms", op="insert", id=str(result.rca.id)) in events


# =============================================================================
# TEST: STREAM ENDPOINT
# =============================================================================


class TestStreamEndpoint:
    async def test_stream_releases_connection(self, session: AsyncSession, fibre_user: Profile):
        """The request session must not sit in a transaction for the life of the stream."""
        assert session.in_transaction()

        response = await stream_events(CurrentUser(fibre_user), session)

        assert isinstance(response, StreamingResponse)
        assert response.media_type == "text/event-stream"
        assert not session.in_transaction()
