"""
RCA API Routes: closing links with a root cause analysis.

The form endpoint tells the client whether to show an existing RCA or a
prefilled create form; PUT records or updates the RCA and closes every
report of the escalation.
"""

import io
from datetime import datetime
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from ..core import Action, CurrentUser, CurrentUserDep, SessionDep, require_capability
from ..models import COD_OPTIONS, COF_OPTIONS, ActualCof, LinkType, Provider
from ..schemas import EscalationSummary, RcaListItem, RcaResponse
from ..services.lifecycle_engine import RcaInput, RcaNotFoundError, compute_rca_mttr
from ..services.rca_export import RcaExportService, export_filename
from .common import HANDLED_ERRORS, LifecycleEngineDep, raise_http_error

router = APIRouter(tags=["rca"])


# =============================================================================
# REQUEST/RESPONSE SCHEMAS
# =============================================================================


class RcaRequest(BaseModel):
    """RCA form submission. start/end are the outage window entered by the user."""
    link_type: LinkType
    start_time: datetime | None = None
    end_time: datetime | None = None
    actual_cof: ActualCof | None = None
    detailed_cof: str = ""
    resolution: str = ""
    cof: str | None = Field(default=None, description='Cause of failure, or "Others"')
    cof_custom: str | None = None
    pof: str | None = None
    ofc: str | None = None
    jc: str | None = None
    cod: str | None = Field(default=None, description='Cause of delay, or "Others"')
    cod_custom: str | None = None
    team_lead: str | None = None
    team_manager: str | None = None
    bottle_cassette_tray: str | None = None
    segment: str | None = None
    time_to_pof: float | None = None
    time_to_test: float | None = None
    tt_number: str | None = None


class RcaFormResponse(BaseModel):
    """What the RCA form should render."""
    mode: str
    escalation: EscalationSummary
    rca: RcaResponse | None = None
    defaults: dict[str, Any] = Field(default_factory=dict)
    cof_options: list[str] = Field(default_factory=lambda: list(COF_OPTIONS))
    cod_options: list[str] = Field(default_factory=lambda: list(COD_OPTIONS))


class RcaSaveResponse(BaseModel):
    rca: RcaResponse
    created: bool
    closed_reports: int
    mttr_used_human: str


class RcaListResponse(BaseModel):
    items: list[RcaListItem]
    total: int


ExportUserDep = Annotated[CurrentUser, Depends(require_capability(Action.EXPORT_RCA))]


# =============================================================================
# ENDPOINTS
# =============================================================================


@router.get(
    "/escalations/{escalation_id}/rca/form",
    response_model=RcaFormResponse,
    summary="Open the RCA form",
    description="""
    Returns view mode with the stored RCA when one exists, otherwise create
    mode with defaults prefilled from the escalation and its reports.
    """,
)
async def open_rca_form(
    escalation_id: UUID,
    current_user: CurrentUserDep,
    engine: LifecycleEngineDep,
):
    try:
        state = await engine.open_rca_form(escalation_id, actor=current_user.actor)
    except HANDLED_ERRORS as e:
        raise_http_error(e)

    return RcaFormResponse(
        mode=state.mode,
        escalation=EscalationSummary.model_validate(state.escalation),
        rca=RcaResponse.model_validate(state.rca) if state.rca else None,
        defaults=state.defaults,
    )


@router.put(
    "/escalations/{escalation_id}/rca",
    response_model=RcaSaveResponse,
    summary="Record the RCA",
    description="""
    Record the RCA for an escalation, or update it if one exists.

    MTTR used is computed from the submitted start and end times against the
    escalation's budget. All of the escalation's reports are closed.
    """,
)
async def save_rca(
    escalation_id: UUID,
    request: RcaRequest,
    current_user: CurrentUserDep,
    engine: LifecycleEngineDep,
):
    try:
        result = await engine.finalize_rca(
            escalation_id,
            RcaInput(**request.model_dump()),
            actor=current_user.actor,
        )
    except HANDLED_ERRORS as e:
        raise_http_error(e)

    mttr = compute_rca_mttr(request.start_time, request.end_time, None)
    return RcaSaveResponse(
        rca=RcaResponse.model_validate(result.rca),
        created=result.created,
        closed_reports=result.closed_reports,
        mttr_used_human=mttr.human,
    )


@router.get(
    "/escalations/{escalation_id}/rca",
    response_model=RcaResponse,
    summary="Get the RCA of an escalation",
)
async def get_rca(
    escalation_id: UUID,
    current_user: Annotated[CurrentUser, Depends(require_capability(Action.VIEW_RCA))],
    engine: LifecycleEngineDep,
):
    try:
        rca = await engine.get_rca(escalation_id)
    except RcaNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No RCA recorded for escalation {escalation_id}",
        )

    return RcaResponse.model_validate(rca)


@router.get(
    "/rca",
    response_model=RcaListResponse,
    summary="List RCAs",
)
async def list_rcas(
    current_user: Annotated[CurrentUser, Depends(require_capability(Action.VIEW_RCA))],
    engine: LifecycleEngineDep,
    provider: Provider | None = Query(default=None),
    escalation_id: UUID | None = Query(default=None),
):
    rcas = await engine.list_rcas(provider=provider, escalation_id=escalation_id)
    return RcaListResponse(
        items=[RcaListItem.from_rca(r) for r in rcas],
        total=len(rcas),
    )


@router.get(
    "/rca/export.csv",
    summary="Export RCAs as CSV",
    response_class=StreamingResponse,
)
async def export_rcas_csv(
    current_user: ExportUserDep,
    session: SessionDep,
    provider: Provider | None = Query(default=None),
    escalation_id: UUID | None = Query(default=None),
):
    service = RcaExportService(session)
    content = await service.export_csv(escalation_id=escalation_id, provider=provider)

    return StreamingResponse(
        io.BytesIO(content.encode("utf-8")),
        media_type="text/csv; charset=utf-8",
        headers={
            "Content-Disposition": f'attachment; filename="{export_filename("csv")}"',
        },
    )


@router.get(
    "/rca/export.pdf",
    summary="Export RCAs as a PDF closure report",
    response_class=StreamingResponse,
)
async def export_rcas_pdf(
    current_user: ExportUserDep,
    session: SessionDep,
    provider: Provider | None = Query(default=None),
    escalation_id: UUID | None = Query(default=None),
):
    service = RcaExportService(session)
    pdf_bytes = await service.export_pdf(
        escalation_id=escalation_id,
        provider=provider,
        generated_by=current_user.full_name,
    )

    return StreamingResponse(
        io.BytesIO(pdf_bytes),
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{export_filename("pdf")}"',
            "Content-Length": str(len(pdf_bytes)),
        },
    )
