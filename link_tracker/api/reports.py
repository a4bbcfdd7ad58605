"""
Report API Routes: the field stages of a link fault.

1. POST /escalations/{id}/reports - file the report (0-3 photos)
2. POST /reports/{id}/progress - estimated time to repair (1-3 photos)
3. POST /reports/{id}/resolve - repair done, cause and point of failure (1-3 photos)

Stage endpoints take multipart forms so photos travel with the fields.
"""

from uuid import UUID

from fastapi import APIRouter, File, Form, HTTPException, Query, UploadFile, status
from pydantic import BaseModel

from ..core import CurrentUserDep
from ..models import LinkStatus, Provider
from ..schemas import NotificationResponse, ReportResponse
from ..services.lifecycle_engine import (
    CreateReportInput,
    ReportNotFoundError,
    ResolveReportInput,
    report_repair_window,
)
from ..services.media_store import ImageUpload
from .common import HANDLED_ERRORS, LifecycleEngineDep, raise_http_error

router = APIRouter(tags=["reports"])


# =============================================================================
# REQUEST/RESPONSE SCHEMAS
# =============================================================================


class ResolutionResponse(BaseModel):
    """Report after resolution and the notification sent to the escalation creator."""
    report: ReportResponse
    escalation_status: str
    notification: NotificationResponse
    repair_time: str
    repair_mttr_status: str


class ReportListResponse(BaseModel):
    items: list[ReportResponse]
    total: int


# =============================================================================
# HELPERS
# =============================================================================


async def read_uploads(files: list[UploadFile] | None) -> list[ImageUpload]:
    """Read multipart files into memory. Empty file parts are skipped."""
    uploads = []
    for file in files or []:
        data = await file.read()
        if not file.filename and not data:
            continue
        uploads.append(
            ImageUpload(
                filename=file.filename or "upload",
                content_type=file.content_type or "application/octet-stream",
                data=data,
            )
        )
    return uploads


# =============================================================================
# ENDPOINTS
# =============================================================================


@router.post(
    "/escalations/{escalation_id}/reports",
    response_model=ReportResponse,
    status_code=status.HTTP_201_CREATED,
    summary="File the report for an escalation",
    description="""
    Create the single report of an escalation and move it to in_progress.

    Up to 3 photos may be attached. Fails if the escalation already has a report.
    """,
)
async def create_report(
    escalation_id: UUID,
    current_user: CurrentUserDep,
    engine: LifecycleEngineDep,
    issue_description: str = Form(default=""),
    reported_by: str = Form(default=""),
    contact_info: str = Form(default=""),
    is_critical: bool = Form(default=False),
    images: list[UploadFile] | None = File(default=None),
):
    try:
        report = await engine.create_report(
            escalation_id,
            CreateReportInput(
                issue_description=issue_description,
                reported_by=reported_by,
                contact_info=contact_info,
                is_critical=is_critical,
            ),
            actor=current_user.actor,
            images=await read_uploads(images),
        )
    except HANDLED_ERRORS as e:
        raise_http_error(e)

    return ReportResponse.model_validate(report)


@router.get(
    "/reports",
    response_model=ReportListResponse,
    summary="List reports",
)
async def list_reports(
    current_user: CurrentUserDep,
    engine: LifecycleEngineDep,
    status_filter: LinkStatus | None = Query(default=None, alias="status"),
    escalation_id: UUID | None = Query(default=None),
    provider: Provider | None = Query(default=None),
):
    reports = await engine.list_reports(
        status=status_filter, escalation_id=escalation_id, provider=provider
    )
    return ReportListResponse(
        items=[ReportResponse.model_validate(r) for r in reports],
        total=len(reports),
    )


@router.get(
    "/reports/{report_id}",
    response_model=ReportResponse,
    summary="Get a report",
)
async def get_report(
    report_id: UUID,
    current_user: CurrentUserDep,
    engine: LifecycleEngineDep,
):
    try:
        report = await engine.get_report(report_id)
    except ReportNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Report {report_id} not found",
        )

    return ReportResponse.model_validate(report)


@router.post(
    "/reports/{report_id}/progress",
    response_model=ReportResponse,
    summary="Record progress on a report",
    description="""
    Record the estimated time to repair with 1-3 fresh site photos.

    Can be repeated while the report is in progress; the status does not change.
    """,
)
async def record_progress(
    report_id: UUID,
    current_user: CurrentUserDep,
    engine: LifecycleEngineDep,
    status_notes: str = Form(default=""),
    images: list[UploadFile] | None = File(default=None),
):
    try:
        report = await engine.record_progress(
            report_id,
            status_notes,
            actor=current_user.actor,
            images=await read_uploads(images),
        )
    except HANDLED_ERRORS as e:
        raise_http_error(e)

    return ReportResponse.model_validate(report)


@router.post(
    "/reports/{report_id}/resolve",
    response_model=ResolutionResponse,
    summary="Resolve a report",
    description="""
    Mark the fault repaired with resolution notes, cause and point of failure
    and 1-3 photos. The escalation moves to resolved and its creator is notified.
    """,
)
async def resolve_report(
    report_id: UUID,
    current_user: CurrentUserDep,
    engine: LifecycleEngineDep,
    resolution_notes: str = Form(default=""),
    cof: str = Form(default=""),
    pof: str = Form(default=""),
    images: list[UploadFile] | None = File(default=None),
):
    try:
        result = await engine.resolve_report(
            report_id,
            ResolveReportInput(resolution_notes=resolution_notes, cof=cof, pof=pof),
            actor=current_user.actor,
            images=await read_uploads(images),
        )
    except HANDLED_ERRORS as e:
        raise_http_error(e)

    window = report_repair_window(result.report, result.escalation.mttr_hours)
    return ResolutionResponse(
        report=ReportResponse.model_validate(result.report),
        escalation_status=result.escalation.status.value,
        notification=NotificationResponse.model_validate(result.notification),
        repair_time=window.human,
        repair_mttr_status=window.status.value,
    )
