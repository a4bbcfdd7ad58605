"""
Lifecycle Engine: escalation, report and RCA state transitions.

An escalation is raised by the fibre network team, picked up by staff who
file a report against it, moves through progress updates to resolution, and
is closed by a root cause analysis (RCA):

    escalation  pending -> in_progress -> resolved
    report               in_progress -> resolved -> closed

Rules enforced here:
- Every entry point consults the role capability table first
- All input validation happens before any upload or write
- has_report flips false -> true at most once per escalation
- Closed reports are terminal
- Exactly one RCA per escalation; re-submission updates it in place
- RCA finalization closes every report but leaves escalation.status as is
"""

import logging
import math
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.config import Settings
from ..core.policy import Action, Actor, can, ensure_allowed
from ..models import (
    SITE_MODELS,
    ActualCof,
    Escalation,
    LinkStatus,
    LinkType,
    MttrStatus,
    NotificationKind,
    NotificationLog,
    Provider,
    RcaForm,
    Report,
    UserRole,
    utcnow,
)
from .media_store import (
    ImageUpload,
    MediaStore,
    StageFolder,
    get_media_store,
    upload_stage_images,
)

logger = logging.getLogger(__name__)

DEFAULT_MTTR_HOURS = 3.0
MIN_MTTR_HOURS = 0.1
MAX_MTTR_HOURS = 999.99  # Numeric(5, 2) column


# =============================================================================
# EXCEPTIONS
# =============================================================================


class LifecycleError(Exception):
    """Base exception for lifecycle operations."""
    pass


class EscalationNotFoundError(LifecycleError):
    """Escalation does not exist."""
    pass


class ReportNotFoundError(LifecycleError):
    """Report does not exist."""
    pass


class RcaNotFoundError(LifecycleError):
    """No RCA has been recorded for the escalation."""
    pass


class InvalidInputError(LifecycleError):
    """Input failed validation. Nothing was written."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class InvalidTransitionError(LifecycleError):
    """Operation not allowed in the current state."""
    pass


class ConcurrencyError(LifecycleError):
    """A concurrent write won a uniqueness race."""
    pass


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class LifecycleConfig:
    """Configuration for lifecycle engine behavior."""

    ticket_prefix: str = "TCK-"
    ticket_length: int = 6

    # Fresh ticket ids drawn before giving up on a collision streak
    ticket_max_attempts: int = 5

    max_stage_images: int = 3
    max_image_bytes: int = 5 * 1024 * 1024

    @classmethod
    def from_settings(cls, settings: Settings) -> "LifecycleConfig":
        return cls(
            ticket_prefix=settings.ticket_prefix,
            ticket_max_attempts=settings.ticket_max_attempts,
            max_stage_images=settings.max_stage_images,
            max_image_bytes=settings.max_image_bytes,
        )


DEFAULT_CONFIG = LifecycleConfig()


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class CreateEscalationInput:
    """Input for raising a new escalation."""
    provider: Provider
    mttr_hours: float | str
    description: str
    segment: str | None = None  # MTN only
    site_a_id: str | None = None
    site_b_id: str | None = None
    regional_manager_id: UUID | None = None
    team_lead_id: UUID | None = None
    technician_lat: float | None = None
    technician_lng: float | None = None


@dataclass
class CreateReportInput:
    issue_description: str
    reported_by: str
    contact_info: str
    is_critical: bool = False


@dataclass
class ResolveReportInput:
    resolution_notes: str
    cof: str  # Cause of failure
    pof: str  # Point of failure


@dataclass
class RcaInput:
    """Input for finalizing an RCA. start/end are the user-entered outage window."""
    link_type: LinkType
    start_time: datetime | None
    end_time: datetime | None
    actual_cof: ActualCof | None
    detailed_cof: str
    resolution: str
    cof: str | None = None
    cof_custom: str | None = None  # Used when cof is "Others"
    pof: str | None = None
    ofc: str | None = None
    jc: str | None = None
    cod: str | None = None
    cod_custom: str | None = None  # Used when cod is "Others"
    team_lead: str | None = None
    team_manager: str | None = None
    bottle_cassette_tray: str | None = None
    segment: str | None = None
    time_to_pof: float | None = None
    time_to_test: float | None = None
    tt_number: str | None = None


@dataclass
class MttrComputation:
    minutes: int
    hours: int
    status: MttrStatus

    @property
    def human(self) -> str:
        return human_duration(self.minutes)


@dataclass
class ResolutionResult:
    report: Report
    escalation: Escalation
    notification: NotificationLog


@dataclass
class RcaResult:
    rca: RcaForm
    created: bool
    closed_reports: int


@dataclass
class RcaFormState:
    """What the RCA form should show for an escalation."""
    mode: str  # "create" or "view"
    escalation: Escalation
    rca: RcaForm | None = None
    defaults: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# PURE HELPERS
# =============================================================================


TICKET_ALPHABET = string.ascii_uppercase + string.digits


def generate_ticket_id(prefix: str = "TCK-", length: int = 6) -> str:
    """Prefix plus `length` uppercase alphanumerics from a CSPRNG."""
    return prefix + "".join(secrets.choice(TICKET_ALPHABET) for _ in range(length))


def parse_mttr_hours(value: Any) -> float:
    """Parse a repair budget: a finite number from 0.1 to 999.99 hours."""
    if isinstance(value, bool):
        raise InvalidInputError("MTTR must be at least 0.1 hours", field="mttr_hours")
    try:
        hours = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        raise InvalidInputError("MTTR must be a number", field="mttr_hours")
    if not math.isfinite(hours) or hours < MIN_MTTR_HOURS:
        raise InvalidInputError("MTTR must be at least 0.1 hours", field="mttr_hours")
    hours = round(hours, 2)
    if hours > MAX_MTTR_HOURS:
        raise InvalidInputError(
            f"MTTR must be at most {MAX_MTTR_HOURS} hours", field="mttr_hours"
        )
    return hours


def derive_link_id(
    provider: Provider,
    segment: str | None = None,
    site_a_label: str | None = None,
    site_b_label: str | None = None,
) -> str:
    """MTN links are named by segment, the others by their two site names."""
    if provider == Provider.MTN:
        return (segment or "").strip()
    return f"{site_a_label}-{site_b_label}"


def derive_link_status(reports: Iterable[Report | LinkStatus | str]) -> LinkStatus:
    """Project a link's status from its reports.

    No reports -> pending; all closed -> closed; any in progress ->
    in_progress; any resolved -> resolved; otherwise pending.
    """
    statuses = [
        LinkStatus(getattr(r, "status", r)) for r in reports
    ]
    if not statuses:
        return LinkStatus.PENDING
    if all(s == LinkStatus.CLOSED for s in statuses):
        return LinkStatus.CLOSED
    if any(s == LinkStatus.IN_PROGRESS for s in statuses):
        return LinkStatus.IN_PROGRESS
    if any(s == LinkStatus.RESOLVED for s in statuses):
        return LinkStatus.RESOLVED
    return LinkStatus.PENDING


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def elapsed_minutes(start: datetime | None, end: datetime | None) -> int:
    """Whole minutes from start to end, clamped at zero. Missing bounds give 0."""
    if start is None or end is None:
        return 0
    seconds = (as_utc(end) - as_utc(start)).total_seconds()
    return max(0, int(seconds // 60))


def compute_rca_mttr(
    start_time: datetime | None,
    end_time: datetime | None,
    mttr_hours: float | None,
) -> MttrComputation:
    """MTTR actually used against the escalation's budget.

    hours is floor(minutes / 60); the budget is exceeded only when the
    elapsed minutes are strictly greater than mttr_hours * 60.
    """
    minutes = elapsed_minutes(start_time, end_time)
    budget = mttr_hours if mttr_hours is not None else DEFAULT_MTTR_HOURS
    status = MttrStatus.EXCEEDED if minutes > budget * 60 else MttrStatus.WITHIN
    return MttrComputation(minutes=minutes, hours=minutes // 60, status=status)


def human_duration(minutes: int) -> str:
    """45 -> '45 mins', 120 -> '2 hrs', 150 -> '2 hr 30 min'."""
    if minutes < 60:
        return f"{minutes} min{'s' if minutes != 1 else ''}"
    hours, rest = divmod(minutes, 60)
    if rest == 0:
        return f"{hours} hr{'s' if hours != 1 else ''}"
    return f"{hours} hr {rest} min"


def report_repair_window(report: Report, mttr_hours: float | None) -> MttrComputation:
    """Informational MTTR of a report, measured created_at -> updated_at."""
    return compute_rca_mttr(report.created_at, report.updated_at, mttr_hours)


def resolve_option(value: str | None, custom: str | None) -> str | None:
    """Pick the free-text value when "Others" was chosen from an option list."""
    if value == "Others":
        return (custom or "").strip() or None
    return (value or "").strip() or None


def _require_text(value: str | None, message: str, field_name: str) -> str:
    text = (value or "").strip()
    if not text:
        raise InvalidInputError(message, field=field_name)
    return text


# =============================================================================
# LIFECYCLE ENGINE
# =============================================================================


class LifecycleEngine:
    """
    Engine for the escalation -> report -> RCA lifecycle.

    The engine only flushes; the caller owns the transaction (the request
    session commits on success and rolls back on any exception).
    """

    def __init__(
        self,
        session: AsyncSession,
        media_store: MediaStore | None = None,
        config: LifecycleConfig = DEFAULT_CONFIG,
    ):
        self._session = session
        self._media_store = media_store
        self._config = config

    @property
    def media_store(self) -> MediaStore:
        if self._media_store is None:
            self._media_store = get_media_store()
        return self._media_store

    # =========================================================================
    # ESCALATIONS
    # =========================================================================

    async def create_escalation(
        self,
        input: CreateEscalationInput,
        actor: Actor,
    ) -> Escalation:
        """
        Raise a new escalation.

        Flow:
        1. Check the actor may create escalations
        2. Validate provider-specific site selection, MTTR and description
        3. Derive link_id (segment for MTN, "siteA-siteB" otherwise)
        4. Draw a ticket id unused so far and insert the row under a savepoint;
           a unique violation on the ticket draws a fresh id

        The row starts pending with has_report false. No notification is sent.
        """
        ensure_allowed(actor.role, Action.CREATE_ESCALATION)
        provider = Provider(input.provider)

        # Step 2: Validate before touching the database
        segment = None
        site_a_id = site_b_id = None
        if provider == Provider.MTN:
            segment = _require_text(input.segment, "Please select an MTN segment", "segment")
        else:
            site_a_id = (input.site_a_id or "").strip()
            site_b_id = (input.site_b_id or "").strip()
            if not site_a_id or not site_b_id:
                raise InvalidInputError(
                    "Both Site A and Site B must be selected", field="site_b_id"
                )
            if site_a_id == site_b_id:
                raise InvalidInputError(
                    "Site A and Site B must be different", field="site_b_id"
                )

        mttr_hours = parse_mttr_hours(input.mttr_hours)
        description = _require_text(input.description, "Description is required", "description")

        if actor.role == UserRole.FIBRE_NETWORK and not (
            input.regional_manager_id and input.team_lead_id
        ):
            raise InvalidInputError(
                "Please assign both a Regional Manager and a Team Lead",
                field="team_lead_id",
            )

        # Step 3: Link id
        if provider == Provider.MTN:
            link_id = derive_link_id(provider, segment=segment)
        else:
            names = await self._site_names(provider, [site_a_id, site_b_id])
            link_id = derive_link_id(
                provider,
                site_a_label=names.get(site_a_id, site_a_id),
                site_b_label=names.get(site_b_id, site_b_id),
            )

        # Step 4: Insert with a collision-checked ticket id
        for attempt in range(1, self._config.ticket_max_attempts + 1):
            ticket_id = generate_ticket_id(
                self._config.ticket_prefix, self._config.ticket_length
            )
            if await self._ticket_exists(ticket_id):
                logger.warning(f"Ticket id collision on {ticket_id} (attempt {attempt})")
                continue

            escalation = Escalation(
                provider=provider,
                site_a_id=site_a_id,
                site_b_id=site_b_id,
                list_of_segment=segment,
                link_id=link_id,
                ticket_id=ticket_id,
                mttr_hours=mttr_hours,
                description=description,
                status=LinkStatus.PENDING,
                has_report=False,
                regional_manager_id=input.regional_manager_id,
                team_lead_id=input.team_lead_id,
                technician_lat=input.technician_lat,
                technician_lng=input.technician_lng,
                created_by=actor.id,
            )
            try:
                async with self._session.begin_nested():
                    self._session.add(escalation)
                    await self._session.flush()
            except IntegrityError as e:
                if await self._ticket_exists(ticket_id):
                    logger.warning(f"Ticket id {ticket_id} taken concurrently, retrying")
                    continue
                raise ConcurrencyError(f"Failed to create escalation: {e.orig}")

            logger.info(
                f"Escalation {ticket_id} raised for {provider.value} link {link_id} "
                f"by {actor.id} (MTTR {mttr_hours}h)"
            )
            return escalation

        raise ConcurrencyError(
            f"Could not allocate a unique ticket id after "
            f"{self._config.ticket_max_attempts} attempts"
        )

    async def update_escalation_mttr(
        self,
        escalation_id: UUID,
        mttr_hours: float | str,
        actor: Actor,
    ) -> Escalation:
        """Change the repair budget of an escalation."""
        ensure_allowed(actor.role, Action.EDIT_ESCALATION)
        hours = parse_mttr_hours(mttr_hours)

        escalation = await self._get_escalation_or_raise(escalation_id)
        previous = escalation.mttr_hours
        escalation.mttr_hours = hours
        await self._session.flush()

        logger.info(
            f"Escalation {escalation.ticket_id} MTTR changed {previous}h -> {hours}h by {actor.id}"
        )
        return escalation

    async def delete_escalation(self, escalation_id: UUID, actor: Actor) -> str:
        """Delete an escalation with its reports, RCA and notifications.

        Returns the ticket id of the deleted escalation.
        """
        ensure_allowed(actor.role, Action.DELETE_ESCALATION)
        escalation = await self._get_escalation_or_raise(
            escalation_id, with_children=True, refresh=True
        )
        ticket_id = escalation.ticket_id

        await self._session.delete(escalation)
        await self._session.flush()

        logger.info(f"Escalation {ticket_id} deleted by {actor.id}")
        return ticket_id

    async def get_escalation(self, escalation_id: UUID) -> Escalation:
        return await self._get_escalation_or_raise(
            escalation_id, with_children=True, refresh=True
        )

    async def list_escalations(
        self,
        provider: Provider | None = None,
        status: LinkStatus | None = None,
        has_report: bool | None = None,
        created_by: UUID | None = None,
    ) -> Sequence[Escalation]:
        """List escalations newest first with reports and RCA loaded."""
        query = (
            select(Escalation)
            .options(
                selectinload(Escalation.reports),
                selectinload(Escalation.rca),
            )
            .order_by(Escalation.created_at.desc())
            .execution_options(populate_existing=True)
        )
        if provider is not None:
            query = query.where(Escalation.provider == provider)
        if status is not None:
            query = query.where(Escalation.status == status)
        if has_report is not None:
            query = query.where(Escalation.has_report.is_(has_report))
        if created_by is not None:
            query = query.where(Escalation.created_by == created_by)

        result = await self._session.execute(query)
        return result.scalars().all()

    # =========================================================================
    # REPORT STAGES
    # =========================================================================

    async def create_report(
        self,
        escalation_id: UUID,
        input: CreateReportInput,
        actor: Actor,
        images: Sequence[ImageUpload] = (),
    ) -> Report:
        """
        Attach the report to an escalation and start work on it.

        Flow:
        1. Check the actor may file reports
        2. Validate required fields and 0..N images
        3. Claim the escalation: has_report false -> true, status in_progress
           (conditional update, so only one report can win)
        4. Upload images under report_upload/reports/{link_id}/
        5. Insert the report as in_progress with the photo URLs
        """
        ensure_allowed(actor.role, Action.CREATE_REPORT)

        issue = _require_text(
            input.issue_description, "Issue description is required", "issue_description"
        )
        reported_by = _require_text(input.reported_by, "Reporter name is required", "reported_by")
        contact = _require_text(input.contact_info, "Contact info is required", "contact_info")
        self._validate_images(images, required=False)

        escalation = await self._get_escalation_or_raise(escalation_id)
        if escalation.has_report:
            raise InvalidTransitionError(
                f"Ticket {escalation.ticket_id} already has a report"
            )

        # Step 3: Claim
        now = utcnow()
        result = await self._session.execute(
            update(Escalation)
            .where(Escalation.id == escalation.id, Escalation.has_report.is_(False))
            .values(has_report=True, status=LinkStatus.IN_PROGRESS, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise ConcurrencyError(
                f"Ticket {escalation.ticket_id} was claimed by another report"
            )
        escalation.has_report = True
        escalation.status = LinkStatus.IN_PROGRESS

        # Step 4: Upload
        urls = await upload_stage_images(
            self.media_store, StageFolder.REPORTS, escalation.link_id, images
        )

        # Step 5: Insert
        report = Report(
            escalation_id=escalation.id,
            issue_description=issue,
            reported_by=reported_by,
            contact_info=contact,
            is_critical=bool(input.is_critical),
            status=LinkStatus.IN_PROGRESS,
            resolution_photos=urls,
            image_url=urls[0] if urls else None,
            created_by=actor.id,
        )
        self._session.add(report)
        await self._session.flush()

        logger.info(f"Report {report.id} created for {escalation.ticket_id} by {actor.id}")
        return report

    async def record_progress(
        self,
        report_id: UUID,
        status_notes: str,
        actor: Actor,
        images: Sequence[ImageUpload],
    ) -> Report:
        """
        Record an estimated-time-to-repair update with fresh site photos.

        Repeatable; the report stays in_progress. Photos go under
        in_progress/{link_id}/ and replace the report's photo list.
        """
        ensure_allowed(actor.role, Action.UPDATE_PROGRESS)
        notes = _require_text(
            status_notes, "Please provide the estimated time to repair", "status_notes"
        )
        self._validate_images(images, required=True)

        report = await self._get_report_or_raise(report_id)
        self._ensure_in_progress(report, "update progress on")
        link_id = self._link_id_for(report)

        urls = await upload_stage_images(
            self.media_store, StageFolder.IN_PROGRESS, link_id, images
        )

        report.status_notes = notes
        report.resolution_photos = urls
        await self._session.flush()

        logger.info(f"Progress recorded on report {report.id} ({len(urls)} photo(s))")
        return report

    async def resolve_report(
        self,
        report_id: UUID,
        input: ResolveReportInput,
        actor: Actor,
        images: Sequence[ImageUpload],
    ) -> ResolutionResult:
        """
        Mark the fault as repaired.

        Flow:
        1. Validate notes, cause/point of failure and 1..N images
        2. Upload photos under report_upload/resolved/{link_id}/
        3. Report -> resolved with notes and photos
        4. Escalation -> resolved with cof/pof mirrored
        5. Notify the escalation's creator
        """
        ensure_allowed(actor.role, Action.RESOLVE_REPORT)
        notes = _require_text(
            input.resolution_notes, "Resolution notes are required", "resolution_notes"
        )
        cof = _require_text(input.cof, "Cause of failure is required", "cof")
        pof = _require_text(input.pof, "Point of failure is required", "pof")
        self._validate_images(images, required=True)

        report = await self._get_report_or_raise(report_id)
        self._ensure_in_progress(report, "resolve")
        link_id = self._link_id_for(report)
        escalation = report.escalation

        # Step 2: Upload
        urls = await upload_stage_images(
            self.media_store, StageFolder.RESOLVED, link_id, images
        )

        # Step 3: Report
        report.status = LinkStatus.RESOLVED
        report.resolution_notes = notes
        report.resolution_photos = urls

        # Step 4: Escalation
        escalation.status = LinkStatus.RESOLVED
        escalation.cof = cof
        escalation.pof = pof

        # Step 5: Notify
        resolved_at = utcnow()
        notification = NotificationLog(
            recipient_id=escalation.created_by,
            escalation_id=escalation.id,
            kind=NotificationKind.RESOLUTION,
            message=f"Ticket {escalation.ticket_id} resolved — COF: {cof}, POF: {pof}",
            payload={
                "ticket_id": escalation.ticket_id,
                "provider": escalation.provider.value,
                "link_id": escalation.link_id,
                "mttr_hours": escalation.mttr_hours,
                "cof": cof,
                "pof": pof,
                "resolution_notes": notes,
                "photos": urls,
                "resolved_at": resolved_at.isoformat(),
            },
            created_at=resolved_at,
        )
        self._session.add(notification)
        await self._session.flush()

        logger.info(
            f"Report {report.id} resolved for {escalation.ticket_id} "
            f"(COF: {cof}, POF: {pof}) by {actor.id}"
        )
        return ResolutionResult(report=report, escalation=escalation, notification=notification)

    async def get_report(self, report_id: UUID) -> Report:
        return await self._get_report_or_raise(report_id)

    async def list_reports(
        self,
        status: LinkStatus | None = None,
        escalation_id: UUID | None = None,
        provider: Provider | None = None,
    ) -> Sequence[Report]:
        """List reports newest first with their escalation loaded."""
        query = (
            select(Report)
            .options(selectinload(Report.escalation))
            .order_by(Report.created_at.desc())
        )
        if status is not None:
            query = query.where(Report.status == status)
        if escalation_id is not None:
            query = query.where(Report.escalation_id == escalation_id)
        if provider is not None:
            query = query.join(Escalation, Report.escalation_id == Escalation.id).where(
                Escalation.provider == provider
            )

        result = await self._session.execute(query)
        return result.scalars().all()

    # =========================================================================
    # RCA FINALIZATION
    # =========================================================================

    async def open_rca_form(self, escalation_id: UUID, actor: Actor) -> RcaFormState:
        """
        Decide whether the RCA form opens in create or view mode.

        An existing RCA is always shown in view mode so that a second
        create is never attempted. Defaults for a new form are prefilled
        from the escalation and its reports.
        """
        ensure_allowed(actor.role, Action.VIEW_RCA)
        escalation = await self._get_escalation_or_raise(
            escalation_id, with_children=True, refresh=True
        )

        if escalation.rca is not None:
            return RcaFormState(mode="view", escalation=escalation, rca=escalation.rca)

        if not can(actor.role, Action.FINALIZE_RCA):
            raise RcaNotFoundError(f"No RCA recorded for ticket {escalation.ticket_id}")

        first_report = escalation.reports[0] if escalation.reports else None
        resolved = [r for r in escalation.reports if r.resolution_notes]
        defaults = {
            "start_time": escalation.created_at,
            "end_time": None,
            "segment": escalation.link_id,
            "cof": escalation.cof,
            "pof": escalation.pof,
            "actual_cof": ActualCof.FIBRE.value,
            "resolution": resolved[-1].resolution_notes if resolved else None,
            "team_lead": first_report.reported_by if first_report else None,
        }
        return RcaFormState(mode="create", escalation=escalation, defaults=defaults)

    async def finalize_rca(
        self,
        escalation_id: UUID,
        input: RcaInput,
        actor: Actor,
    ) -> RcaResult:
        """
        Record (or update) the RCA for an escalation and close its reports.

        Flow:
        1. Validate actual COF, detailed COF and resolution
        2. Compute MTTR from the user-entered start/end times
        3. Update the existing RCA, or insert under a savepoint; losing an
           insert race falls back to updating the row that won
        4. Close every report of the escalation

        The escalation's own status is not changed.
        """
        ensure_allowed(actor.role, Action.FINALIZE_RCA)

        # Step 1: Validate
        if not input.actual_cof:
            raise InvalidInputError(
                "Please fill Actual COF, Detailed COF, and Resolution.", field="actual_cof"
            )
        try:
            actual_cof = ActualCof(input.actual_cof)
            link_type = LinkType(input.link_type)
        except ValueError as e:
            raise InvalidInputError(str(e))
        detailed_cof = _require_text(
            input.detailed_cof, "Please fill Actual COF, Detailed COF, and Resolution.",
            "detailed_cof",
        )
        resolution = _require_text(
            input.resolution, "Please fill Actual COF, Detailed COF, and Resolution.",
            "resolution",
        )
        if input.start_time is None or input.end_time is None:
            raise InvalidInputError("Start time and end time are required", field="end_time")

        escalation = await self._get_escalation_or_raise(escalation_id)

        # Step 2: MTTR
        mttr = compute_rca_mttr(input.start_time, input.end_time, escalation.mttr_hours)
        if as_utc(input.end_time) < as_utc(input.start_time):
            logger.warning(
                f"RCA for {escalation.ticket_id} ends before it starts; "
                f"repair time clamped to 0"
            )

        values = {
            "link_type": link_type,
            "start_time": as_utc(input.start_time),
            "end_time": as_utc(input.end_time),
            "mttr_used": mttr.hours,
            "mttr_status": mttr.status,
            "cof": resolve_option(input.cof, input.cof_custom),
            "pof": (input.pof or "").strip() or None,
            "actual_cof": actual_cof,
            "detailed_cof": detailed_cof,
            "resolution": resolution,
            "ofc": input.ofc or None,
            "jc": input.jc or None,
            "cod": resolve_option(input.cod, input.cod_custom),
            "team_lead": input.team_lead or None,
            "team_manager": input.team_manager or None,
            "bottle_cassette_tray": input.bottle_cassette_tray or None,
            "segment": input.segment or None,
            "time_to_pof": input.time_to_pof,
            "time_to_test": input.time_to_test,
            "tt_number": input.tt_number or None,
        }

        # Step 3: Upsert
        created = False
        rca = await self._find_rca(escalation.id)
        if rca is None:
            rca = RcaForm(escalation_id=escalation.id, **values)
            try:
                async with self._session.begin_nested():
                    self._session.add(rca)
                    await self._session.flush()
                created = True
            except IntegrityError:
                logger.info(
                    f"RCA for {escalation.ticket_id} was inserted concurrently; updating it"
                )
                rca = await self._find_rca(escalation.id)
                if rca is None:
                    raise ConcurrencyError(
                        f"Failed to record RCA for ticket {escalation.ticket_id}"
                    )
        if not created:
            for key, value in values.items():
                setattr(rca, key, value)

        # Step 4: Close reports
        reports = (
            await self._session.execute(
                select(Report).where(Report.escalation_id == escalation.id)
            )
        ).scalars().all()
        closed = 0
        for report in reports:
            if report.status != LinkStatus.CLOSED:
                report.status = LinkStatus.CLOSED
                closed += 1

        await self._session.flush()

        logger.info(
            f"RCA {'recorded' if created else 'updated'} for {escalation.ticket_id}: "
            f"{mttr.hours}h used ({mttr.status.value}), {closed} report(s) closed"
        )
        return RcaResult(rca=rca, created=created, closed_reports=closed)

    async def get_rca(self, escalation_id: UUID) -> RcaForm:
        rca = await self._find_rca(escalation_id)
        if rca is None:
            raise RcaNotFoundError(f"No RCA recorded for escalation {escalation_id}")
        return rca

    async def list_rcas(
        self,
        provider: Provider | None = None,
        escalation_id: UUID | None = None,
    ) -> Sequence[RcaForm]:
        query = (
            select(RcaForm)
            .join(Escalation, RcaForm.escalation_id == Escalation.id)
            .options(selectinload(RcaForm.escalation))
            .order_by(RcaForm.created_at.desc())
        )
        if provider is not None:
            query = query.where(Escalation.provider == provider)
        if escalation_id is not None:
            query = query.where(RcaForm.escalation_id == escalation_id)

        result = await self._session.execute(query)
        return result.scalars().all()

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _validate_images(self, images: Sequence[ImageUpload], required: bool) -> None:
        limit = self._config.max_stage_images
        if required and not images:
            raise InvalidInputError("Please upload at least one image", field="images")
        if len(images) > limit:
            raise InvalidInputError(f"You can upload up to {limit} images", field="images")
        for image in images:
            if not image.is_image:
                raise InvalidInputError(
                    f"{image.filename} is not an image", field="images"
                )
            if image.size > self._config.max_image_bytes:
                max_mb = self._config.max_image_bytes // (1024 * 1024)
                raise InvalidInputError(
                    f"{image.filename} is larger than {max_mb}MB", field="images"
                )

    @staticmethod
    def _ensure_in_progress(report: Report, verb: str) -> None:
        if report.status != LinkStatus.IN_PROGRESS:
            raise InvalidTransitionError(
                f"Cannot {verb} a report that is {report.status.value}"
            )

    @staticmethod
    def _link_id_for(report: Report) -> str:
        link_id = report.escalation.link_id if report.escalation else None
        if not link_id:
            raise InvalidInputError("Report is not linked to an escalation link", field="link_id")
        return link_id

    async def _site_names(self, provider: Provider, site_ids: list[str]) -> dict[str, str]:
        site_model = SITE_MODELS[provider]
        result = await self._session.execute(
            select(site_model.site_id, site_model.site_name).where(
                site_model.site_id.in_(site_ids)
            )
        )
        return {site_id: name for site_id, name in result.all()}

    async def _ticket_exists(self, ticket_id: str) -> bool:
        result = await self._session.execute(
            select(Escalation.id).where(Escalation.ticket_id == ticket_id)
        )
        return result.first() is not None

    async def _find_rca(self, escalation_id: UUID) -> RcaForm | None:
        result = await self._session.execute(
            select(RcaForm).where(RcaForm.escalation_id == escalation_id)
        )
        return result.scalar_one_or_none()

    async def _get_escalation_or_raise(
        self,
        escalation_id: UUID,
        with_children: bool = False,
        refresh: bool = False,
    ) -> Escalation:
        """Get an escalation or raise EscalationNotFoundError."""
        query = select(Escalation).where(Escalation.id == escalation_id)
        if with_children:
            query = query.options(
                selectinload(Escalation.reports),
                selectinload(Escalation.rca),
                selectinload(Escalation.notifications),
            )
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await self._session.execute(query)
        escalation = result.scalar_one_or_none()

        if not escalation:
            raise EscalationNotFoundError(f"Escalation {escalation_id} not found")

        return escalation

    async def _get_report_or_raise(self, report_id: UUID) -> Report:
        """Get a report with its escalation or raise ReportNotFoundError."""
        result = await self._session.execute(
            select(Report)
            .where(Report.id == report_id)
            .options(selectinload(Report.escalation))
        )
        report = result.scalar_one_or_none()

        if not report:
            raise ReportNotFoundError(f"Report {report_id} not found")

        return report
