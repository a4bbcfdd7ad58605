"""
Tests for the Lifecycle Engine - escalation -> report -> RCA.

These tests verify:
1. CREATE: Escalations get a unique ticket id and start pending
2. REPORT: Exactly one report per escalation, which moves it in progress
3. RESOLVE: Photos are required and the escalation's creator is notified
4. RCA: MTTR is computed from the outage window and the reports are closed
"""

import re
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import make_image
from link_tracker.core import Actor, PermissionDeniedError
from link_tracker.models import (
    ActualCof,
    Escalation,
    LinkStatus,
    LinkType,
    MttrStatus,
    NotificationKind,
    NotificationLog,
    Profile,
    Provider,
    RcaForm,
    Report,
)
from link_tracker.services import lifecycle_engine
from link_tracker.services.lifecycle_engine import (
    ConcurrencyError,
    CreateEscalationInput,
    CreateReportInput,
    EscalationNotFoundError,
    InvalidInputError,
    InvalidTransitionError,
    LifecycleConfig,
    LifecycleEngine,
    RcaInput,
    RcaNotFoundError,
    ResolveReportInput,
    compute_rca_mttr,
    derive_link_status,
    human_duration,
    parse_mttr_hours,
    report_repair_window,
)
from link_tracker.services.media_store import list_stage_images


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def engine(session: AsyncSession, media_store) -> LifecycleEngine:
    return LifecycleEngine(session, media_store=media_store)


@pytest.fixture
def mtn_input(regional_manager: Profile, team_lead: Profile) -> CreateEscalationInput:
    return CreateEscalationInput(
        provider=Provider.MTN,
        mttr_hours=3,
        description="Link down between aggregation sites",
        segment="SEG-1",
        regional_manager_id=regional_manager.id,
        team_lead_id=team_lead.id,
    )


@pytest.fixture
def report_input() -> CreateReportInput:
    return CreateReportInput(
        issue_description="fiber cut",
        reported_by="Sam Field",
        contact_info="0803 000 0000",
    )


@pytest.fixture
def resolve_input() -> ResolveReportInput:
    return ResolveReportInput(
        resolution_notes="spliced fiber",
        cof="Core Break",
        pof="KM12",
    )


@pytest.fixture
def rca_input() -> RcaInput:
    return RcaInput(
        link_type=LinkType.BB,
        start_time=datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc),
        end_time=datetime(2024, 1, 1, 5, 30, tzinfo=timezone.utc),
        actual_cof=ActualCof.FIBRE,
        detailed_cof="Excavation by road contractor",
        resolution="Replaced 200m of cable and spliced both ends",
        cof="Others",
        cof_custom="Road works",
        ofc="200m",
        jc="2",
        cod="Access Delay",
    )


async def _resolved_escalation(
    engine, mtn_input, report_input, resolve_input, fibre_actor, staff_actor
):
    escalation = await engine.create_escalation(mtn_input, fibre_actor)
    report = await engine.create_report(escalation.id, report_input, staff_actor)
    await engine.resolve_report(report.id, resolve_input, staff_actor, [make_image()])
    return escalation, report


# =============================================================================
# TEST: CREATE ESCALATION
# =============================================================================


class TestCreateEscalation:
    """Tests for raising escalations."""

    async def test_create_mtn_escalation_starts_pending(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        fibre_actor: Actor,
    ):
        """An MTN escalation is named by its segment and starts pending."""
        escalation = await engine.create_escalation(mtn_input, fibre_actor)

        assert escalation.link_id == "SEG-1"
        assert escalation.list_of_segment == "SEG-1"
        assert escalation.status == LinkStatus.PENDING
        assert escalation.has_report is False
        assert escalation.mttr_hours == 3.0
        assert escalation.created_by == fibre_actor.id

    async def test_ticket_id_format(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        fibre_actor: Actor,
    ):
        """Ticket ids are TCK- followed by six uppercase alphanumerics."""
        escalation = await engine.create_escalation(mtn_input, fibre_actor)

        assert re.fullmatch(r"TCK-[A-Z0-9]{6}", escalation.ticket_id)

    async def test_airtel_link_id_uses_site_names(
        self,
        engine: LifecycleEngine,
        fibre_actor: Actor,
        regional_manager: Profile,
        team_lead: Profile,
        sites,
    ):
        """Non-MTN links are named "siteA-siteB" from the site directory."""
        escalation = await engine.create_escalation(
            CreateEscalationInput(
                provider=Provider.AIRTEL,
                mttr_hours="4.5",
                description="Flapping link",
                site_a_id="ATL-100",
                site_b_id="ATL-200",
                regional_manager_id=regional_manager.id,
                team_lead_id=team_lead.id,
            ),
            fibre_actor,
        )

        assert escalation.link_id == "Yaba-Surulere"
        assert escalation.site_a_id == "ATL-100"
        assert escalation.mttr_hours == 4.5

    async def test_same_sites_rejected(
        self,
        engine: LifecycleEngine,
        fibre_actor: Actor,
        regional_manager: Profile,
        team_lead: Profile,
    ):
        with pytest.raises(InvalidInputError) as exc_info:
            await engine.create_escalation(
                CreateEscalationInput(
                    provider=Provider.GLO,
                    mttr_hours=3,
                    description="Down",
                    site_a_id="GLO-1",
                    site_b_id="GLO-1",
                    regional_manager_id=regional_manager.id,
                    team_lead_id=team_lead.id,
                ),
                fibre_actor,
            )

        assert "must be different" in str(exc_info.value)

    async def test_mttr_below_minimum_rejected(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        fibre_actor: Actor,
    ):
        mtn_input.mttr_hours = "0.05"

        with pytest.raises(InvalidInputError) as exc_info:
            await engine.create_escalation(mtn_input, fibre_actor)

        assert exc_info.value.field == "mttr_hours"
        assert "at least 0.1 hours" in str(exc_info.value)

    async def test_mttr_above_column_range_rejected(
        self,
        session: AsyncSession,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        fibre_actor: Actor,
    ):
        """Budgets that would overflow the stored precision fail before any write."""
        mtn_input.mttr_hours = 1000

        with pytest.raises(InvalidInputError) as exc_info:
            await engine.create_escalation(mtn_input, fibre_actor)

        assert exc_info.value.field == "mttr_hours"
        assert await session.scalar(select(func.count()).select_from(Escalation)) == 0

    async def test_missing_segment_rejected(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        fibre_actor: Actor,
    ):
        mtn_input.segment = "   "

        with pytest.raises(InvalidInputError) as exc_info:
            await engine.create_escalation(mtn_input, fibre_actor)

        assert exc_info.value.field == "segment"

    async def test_fibre_network_must_assign_manager_and_lead(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        fibre_actor: Actor,
    ):
        mtn_input.team_lead_id = None

        with pytest.raises(InvalidInputError) as exc_info:
            await engine.create_escalation(mtn_input, fibre_actor)

        assert "Regional Manager and a Team Lead" in str(exc_info.value)

    async def test_staff_cannot_create_escalation(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        staff_actor: Actor,
    ):
        with pytest.raises(PermissionDeniedError):
            await engine.create_escalation(mtn_input, staff_actor)

    async def test_ticket_collision_draws_fresh_id(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        fibre_actor: Actor,
        monkeypatch,
    ):
        """A drawn ticket id that is already taken is skipped, not reused."""
        drawn = iter(["TCK-AAAAAA", "TCK-AAAAAA", "TCK-BBBBBB"])
        monkeypatch.setattr(
            lifecycle_engine, "generate_ticket_id", lambda prefix, length: next(drawn)
        )

        first = await engine.create_escalation(mtn_input, fibre_actor)
        second = await engine.create_escalation(mtn_input, fibre_actor)

        assert first.ticket_id == "TCK-AAAAAA"
        assert second.ticket_id == "TCK-BBBBBB"

    async def test_ticket_collision_streak_gives_up(
        self,
        session: AsyncSession,
        media_store,
        mtn_input: CreateEscalationInput,
        fibre_actor: Actor,
        monkeypatch,
    ):
        monkeypatch.setattr(
            lifecycle_engine, "generate_ticket_id", lambda prefix, length: "TCK-AAAAAA"
        )
        engine = LifecycleEngine(
            session, media_store=media_store, config=LifecycleConfig(ticket_max_attempts=2)
        )

        await engine.create_escalation(mtn_input, fibre_actor)
        with pytest.raises(ConcurrencyError):
            await engine.create_escalation(mtn_input, fibre_actor)


# =============================================================================
# TEST: MAINTAIN ESCALATION
# =============================================================================


class TestMaintainEscalation:
    """Tests for editing, listing and deleting escalations."""

    async def test_update_mttr(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        fibre_actor: Actor,
    ):
        escalation = await engine.create_escalation(mtn_input, fibre_actor)

        updated = await engine.update_escalation_mttr(escalation.id, "6", fibre_actor)

        assert updated.mttr_hours == 6.0

    async def test_staff_cannot_edit_mttr(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        fibre_actor: Actor,
        staff_actor: Actor,
    ):
        escalation = await engine.create_escalation(mtn_input, fibre_actor)

        with pytest.raises(PermissionDeniedError):
            await engine.update_escalation_mttr(escalation.id, 6, staff_actor)

    async def test_delete_removes_children(
        self,
        session: AsyncSession,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        report_input: CreateReportInput,
        resolve_input: ResolveReportInput,
        fibre_actor: Actor,
        staff_actor: Actor,
        admin_actor: Actor,
    ):
        """Deleting an escalation removes its report and notifications too."""
        escalation, _ = await _resolved_escalation(
            engine, mtn_input, report_input, resolve_input, fibre_actor, staff_actor
        )

        ticket_id = await engine.delete_escalation(escalation.id, admin_actor)

        assert ticket_id == escalation.ticket_id
        reports = await session.scalar(select(func.count()).select_from(Report))
        notifications = await session.scalar(select(func.count()).select_from(NotificationLog))
        assert reports == 0
        assert notifications == 0
        with pytest.raises(EscalationNotFoundError):
            await engine.get_escalation(escalation.id)

    async def test_list_filters_by_report_flag(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        report_input: CreateReportInput,
        fibre_actor: Actor,
        staff_actor: Actor,
    ):
        with_report = await engine.create_escalation(mtn_input, fibre_actor)
        await engine.create_escalation(mtn_input, fibre_actor)
        await engine.create_report(with_report.id, report_input, staff_actor)

        awaiting = await engine.list_escalations(has_report=False)
        in_progress = await engine.list_escalations(status=LinkStatus.IN_PROGRESS)

        assert len(awaiting) == 1
        assert [e.id for e in in_progress] == [with_report.id]


# =============================================================================
# TEST: REPORT STAGES
# =============================================================================


class TestReportStages:
    """Tests for report creation, progress updates and resolution."""

    async def test_create_report_moves_escalation_in_progress(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        report_input: CreateReportInput,
        fibre_actor: Actor,
        staff_actor: Actor,
    ):
        escalation = await engine.create_escalation(mtn_input, fibre_actor)

        report = await engine.create_report(
            escalation.id, report_input, staff_actor, [make_image("cut.jpg")]
        )

        assert report.status == LinkStatus.IN_PROGRESS
        assert report.issue_description == "fiber cut"
        assert escalation.has_report is True
        assert escalation.status == LinkStatus.IN_PROGRESS
        assert len(report.resolution_photos) == 1
        assert report.image_url == report.resolution_photos[0]
        assert "/report_upload/reports/SEG-1/" in report.image_url

    async def test_second_report_rejected(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        report_input: CreateReportInput,
        fibre_actor: Actor,
        staff_actor: Actor,
    ):
        """Only one report may be attached to an escalation."""
        escalation = await engine.create_escalation(mtn_input, fibre_actor)
        await engine.create_report(escalation.id, report_input, staff_actor)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await engine.create_report(escalation.id, report_input, staff_actor)

        assert "already has a report" in str(exc_info.value)

    async def test_report_requires_contact(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        fibre_actor: Actor,
        staff_actor: Actor,
    ):
        escalation = await engine.create_escalation(mtn_input, fibre_actor)

        with pytest.raises(InvalidInputError) as exc_info:
            await engine.create_report(
                escalation.id,
                CreateReportInput(issue_description="cut", reported_by="Sam", contact_info=""),
                staff_actor,
            )

        assert exc_info.value.field == "contact_info"

    async def test_fibre_network_cannot_file_report(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        report_input: CreateReportInput,
        fibre_actor: Actor,
    ):
        escalation = await engine.create_escalation(mtn_input, fibre_actor)

        with pytest.raises(PermissionDeniedError):
            await engine.create_report(escalation.id, report_input, fibre_actor)

    async def test_progress_replaces_photos(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        report_input: CreateReportInput,
        fibre_actor: Actor,
        staff_actor: Actor,
    ):
        escalation = await engine.create_escalation(mtn_input, fibre_actor)
        report = await engine.create_report(
            escalation.id, report_input, staff_actor, [make_image("cut.jpg")]
        )

        updated = await engine.record_progress(
            report.id, "ETR 2 hours", staff_actor, [make_image("a.jpg"), make_image("b.png", content_type="image/png")]
        )

        assert updated.status == LinkStatus.IN_PROGRESS
        assert updated.status_notes == "ETR 2 hours"
        assert len(updated.resolution_photos) == 2
        assert all("/in_progress/SEG-1/" in url for url in updated.resolution_photos)

    async def test_progress_requires_images(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        report_input: CreateReportInput,
        fibre_actor: Actor,
        staff_actor: Actor,
    ):
        escalation = await engine.create_escalation(mtn_input, fibre_actor)
        report = await engine.create_report(escalation.id, report_input, staff_actor)

        with pytest.raises(InvalidInputError) as exc_info:
            await engine.record_progress(report.id, "ETR 2 hours", staff_actor, [])

        assert "at least one image" in str(exc_info.value)

    async def test_too_many_images_rejected(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        report_input: CreateReportInput,
        fibre_actor: Actor,
        staff_actor: Actor,
    ):
        escalation = await engine.create_escalation(mtn_input, fibre_actor)

        with pytest.raises(InvalidInputError) as exc_info:
            await engine.create_report(
                escalation.id,
                report_input,
                staff_actor,
                [make_image(f"{i}.jpg") for i in range(4)],
            )

        assert "up to 3 images" in str(exc_info.value)

    async def test_non_image_rejected(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        report_input: CreateReportInput,
        fibre_actor: Actor,
        staff_actor: Actor,
    ):
        escalation = await engine.create_escalation(mtn_input, fibre_actor)

        with pytest.raises(InvalidInputError) as exc_info:
            await engine.create_report(
                escalation.id,
                report_input,
                staff_actor,
                [make_image("notes.pdf", content_type="application/pdf")],
            )

        assert "is not an image" in str(exc_info.value)

    async def test_resolve_notifies_creator(
        self,
        session: AsyncSession,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        report_input: CreateReportInput,
        resolve_input: ResolveReportInput,
        fibre_actor: Actor,
        staff_actor: Actor,
    ):
        """Resolving mirrors COF/POF onto the escalation and notifies its creator."""
        escalation = await engine.create_escalation(mtn_input, fibre_actor)
        report = await engine.create_report(escalation.id, report_input, staff_actor)

        result = await engine.resolve_report(
            report.id, resolve_input, staff_actor, [make_image("fixed.jpg")]
        )

        assert result.report.status == LinkStatus.RESOLVED
        assert result.report.resolution_notes == "spliced fiber"
        assert result.escalation.status == LinkStatus.RESOLVED
        assert result.escalation.cof == "Core Break"
        assert result.escalation.pof == "KM12"

        notifications = (
            await session.execute(
                select(NotificationLog).where(NotificationLog.escalation_id == escalation.id)
            )
        ).scalars().all()
        assert len(notifications) == 1
        notification = notifications[0]
        assert notification.recipient_id == fibre_actor.id
        assert notification.kind == NotificationKind.RESOLUTION
        assert "COF: Core Break" in notification.message
        assert notification.payload["pof"] == "KM12"
        assert notification.payload["photos"] == result.report.resolution_photos

    async def test_resolve_requires_cause(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        report_input: CreateReportInput,
        fibre_actor: Actor,
        staff_actor: Actor,
    ):
        escalation = await engine.create_escalation(mtn_input, fibre_actor)
        report = await engine.create_report(escalation.id, report_input, staff_actor)

        with pytest.raises(InvalidInputError) as exc_info:
            await engine.resolve_report(
                report.id,
                ResolveReportInput(resolution_notes="done", cof="", pof="KM12"),
                staff_actor,
                [make_image()],
            )

        assert exc_info.value.field == "cof"

    async def test_cannot_resolve_twice(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        report_input: CreateReportInput,
        resolve_input: ResolveReportInput,
        fibre_actor: Actor,
        staff_actor: Actor,
    ):
        _, report = await _resolved_escalation(
            engine, mtn_input, report_input, resolve_input, fibre_actor, staff_actor
        )

        with pytest.raises(InvalidTransitionError):
            await engine.resolve_report(report.id, resolve_input, staff_actor, [make_image()])

    async def test_stage_gallery_groups_by_stage(
        self,
        engine: LifecycleEngine,
        media_store,
        mtn_input: CreateEscalationInput,
        report_input: CreateReportInput,
        resolve_input: ResolveReportInput,
        fibre_actor: Actor,
        staff_actor: Actor,
    ):
        escalation = await engine.create_escalation(mtn_input, fibre_actor)
        report = await engine.create_report(
            escalation.id, report_input, staff_actor, [make_image("cut.jpg")]
        )
        await engine.record_progress(report.id, "ETR 1h", staff_actor, [make_image("work.jpg")])
        await engine.resolve_report(report.id, resolve_input, staff_actor, [make_image("done.jpg")])

        gallery = await list_stage_images(media_store, "SEG-1")

        assert list(gallery) == ["In Progress", "Reports", "Resolved"]
        assert all(len(urls) == 1 for urls in gallery.values())
        assert gallery["Resolved"][0].endswith("_done.jpg")


# =============================================================================
# TEST: RCA FINALIZATION
# =============================================================================


class TestFinalizeRca:
    """Tests for recording the RCA and closing reports."""

    async def test_rca_computes_mttr_and_closes_reports(
        self,
        session: AsyncSession,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        report_input: CreateReportInput,
        resolve_input: ResolveReportInput,
        rca_input: RcaInput,
        fibre_actor: Actor,
        staff_actor: Actor,
    ):
        """A 5h30m outage on a 3h budget uses 5 hours and exceeds MTTR."""
        escalation, report = await _resolved_escalation(
            engine, mtn_input, report_input, resolve_input, fibre_actor, staff_actor
        )

        result = await engine.finalize_rca(escalation.id, rca_input, staff_actor)

        assert result.created is True
        assert result.closed_reports == 1
        assert result.rca.mttr_used == 5
        assert result.rca.mttr_status == MttrStatus.EXCEEDED
        assert result.rca.cof == "Road works"
        assert result.rca.cod == "Access Delay"
        assert report.status == LinkStatus.CLOSED
        # The escalation keeps the status set at resolution
        assert escalation.status == LinkStatus.RESOLVED

    async def test_rca_within_budget(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        rca_input: RcaInput,
        fibre_actor: Actor,
        staff_actor: Actor,
    ):
        escalation = await engine.create_escalation(mtn_input, fibre_actor)
        rca_input.end_time = datetime(2024, 1, 1, 3, 0, tzinfo=timezone.utc)

        result = await engine.finalize_rca(escalation.id, rca_input, staff_actor)

        assert result.rca.mttr_used == 3
        assert result.rca.mttr_status == MttrStatus.WITHIN

    async def test_rca_upsert_is_idempotent(
        self,
        session: AsyncSession,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        report_input: CreateReportInput,
        resolve_input: ResolveReportInput,
        rca_input: RcaInput,
        fibre_actor: Actor,
        staff_actor: Actor,
    ):
        """Saving the RCA twice updates the one row instead of adding another."""
        escalation, _ = await _resolved_escalation(
            engine, mtn_input, report_input, resolve_input, fibre_actor, staff_actor
        )

        first = await engine.finalize_rca(escalation.id, rca_input, staff_actor)
        rca_input.resolution = "Rerouted through spare core"
        second = await engine.finalize_rca(escalation.id, rca_input, staff_actor)

        assert second.created is False
        assert second.closed_reports == 0
        assert second.rca.id == first.rca.id
        assert second.rca.resolution == "Rerouted through spare core"
        count = await session.scalar(select(func.count()).select_from(RcaForm))
        assert count == 1

    async def test_rca_end_before_start_clamps_to_zero(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        rca_input: RcaInput,
        fibre_actor: Actor,
        staff_actor: Actor,
    ):
        escalation = await engine.create_escalation(mtn_input, fibre_actor)
        rca_input.start_time, rca_input.end_time = rca_input.end_time, rca_input.start_time

        result = await engine.finalize_rca(escalation.id, rca_input, staff_actor)

        assert result.rca.mttr_used == 0
        assert result.rca.mttr_status == MttrStatus.WITHIN

    async def test_rca_requires_detail(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        rca_input: RcaInput,
        fibre_actor: Actor,
        staff_actor: Actor,
    ):
        escalation = await engine.create_escalation(mtn_input, fibre_actor)
        rca_input.detailed_cof = ""

        with pytest.raises(InvalidInputError) as exc_info:
            await engine.finalize_rca(escalation.id, rca_input, staff_actor)

        assert "Actual COF, Detailed COF, and Resolution" in str(exc_info.value)

    async def test_fibre_network_cannot_finalize(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        rca_input: RcaInput,
        fibre_actor: Actor,
    ):
        escalation = await engine.create_escalation(mtn_input, fibre_actor)

        with pytest.raises(PermissionDeniedError):
            await engine.finalize_rca(escalation.id, rca_input, fibre_actor)

    async def test_open_form_create_then_view(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        report_input: CreateReportInput,
        resolve_input: ResolveReportInput,
        rca_input: RcaInput,
        fibre_actor: Actor,
        staff_actor: Actor,
    ):
        """The form opens prefilled before the RCA exists and read-only after."""
        escalation, _ = await _resolved_escalation(
            engine, mtn_input, report_input, resolve_input, fibre_actor, staff_actor
        )

        before = await engine.open_rca_form(escalation.id, staff_actor)
        assert before.mode == "create"
        assert before.defaults["segment"] == "SEG-1"
        assert before.defaults["cof"] == "Core Break"
        assert before.defaults["resolution"] == "spliced fiber"
        assert before.defaults["team_lead"] == "Sam Field"

        await engine.finalize_rca(escalation.id, rca_input, staff_actor)

        after = await engine.open_rca_form(escalation.id, staff_actor)
        assert after.mode == "view"
        assert after.rca is not None
        assert after.rca.mttr_used == 5

    async def test_viewer_without_rca_gets_not_found(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        fibre_actor: Actor,
    ):
        escalation = await engine.create_escalation(mtn_input, fibre_actor)

        with pytest.raises(RcaNotFoundError):
            await engine.open_rca_form(escalation.id, fibre_actor)

    async def test_list_rcas_by_provider(
        self,
        engine: LifecycleEngine,
        mtn_input: CreateEscalationInput,
        rca_input: RcaInput,
        fibre_actor: Actor,
        staff_actor: Actor,
    ):
        escalation = await engine.create_escalation(mtn_input, fibre_actor)
        await engine.finalize_rca(escalation.id, rca_input, staff_actor)

        mtn = await engine.list_rcas(provider=Provider.MTN)
        glo = await engine.list_rcas(provider=Provider.GLO)

        assert len(mtn) == 1
        assert mtn[0].escalation.ticket_id == escalation.ticket_id
        assert glo == []


# =============================================================================
# TEST: PURE HELPERS
# =============================================================================


class TestLinkStatus:
    """A link's status is projected from its reports."""

    def test_no_reports_is_pending(self):
        assert derive_link_status([]) == LinkStatus.PENDING

    def test_all_closed_is_closed(self):
        assert derive_link_status(["closed", LinkStatus.CLOSED]) == LinkStatus.CLOSED

    def test_in_progress_wins_over_resolved(self):
        assert derive_link_status(["resolved", "in_progress"]) == LinkStatus.IN_PROGRESS

    def test_resolved_with_closed(self):
        assert derive_link_status(["resolved", "closed"]) == LinkStatus.RESOLVED

    def test_pending_reports(self):
        assert derive_link_status(["pending", "closed"]) == LinkStatus.PENDING


class TestMttrHelpers:
    def test_budget_met_exactly_is_within(self):
        start = datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)

        mttr = compute_rca_mttr(start, start + timedelta(hours=3), 3)

        assert mttr.minutes == 180
        assert mttr.status == MttrStatus.WITHIN

    def test_one_minute_over_is_exceeded(self):
        start = datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)

        mttr = compute_rca_mttr(start, start + timedelta(hours=3, minutes=1), 3)

        assert mttr.hours == 3
        assert mttr.status == MttrStatus.EXCEEDED

    def test_missing_budget_defaults_to_three_hours(self):
        start = datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)

        mttr = compute_rca_mttr(start, start + timedelta(hours=4), None)

        assert mttr.status == MttrStatus.EXCEEDED

    @pytest.mark.parametrize(
        "minutes, expected",
        [(1, "1 min"), (45, "45 mins"), (60, "1 hr"), (120, "2 hrs"), (150, "2 hr 30 min")],
    )
    def test_human_duration(self, minutes, expected):
        assert human_duration(minutes) == expected

    def test_parse_mttr_hours(self):
        assert parse_mttr_hours(" 2.5 ") == 2.5
        assert parse_mttr_hours(0.1) == 0.1
        assert parse_mttr_hours("999.99") == 999.99
        for bad in ("abc", "inf", True, 0, 1000, "999.996"):
            with pytest.raises(InvalidInputError):
                parse_mttr_hours(bad)

    def test_report_repair_window(self):
        """A report's own window runs from filing to its last update."""
        filed = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)
        report = Report(created_at=filed, updated_at=filed + timedelta(minutes=95))

        window = report_repair_window(report, 1)

        assert window.human == "1 hr 35 min"
        assert window.status == MttrStatus.EXCEEDED
