"""
Escalation API Routes: raising and maintaining link faults.

Listing escalations also runs the MTTR breach scan, so every list refresh
flags urgent links and records at most one breach alert per escalation.
"""

from datetime import datetime, timezone
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..core import CurrentUserDep
from ..models import LinkStatus, Provider
from ..schemas import EscalationListResponse, EscalationResponse
from ..services.lifecycle_engine import CreateEscalationInput, EscalationNotFoundError
from ..services.media_store import list_stage_images
from .common import (
    HANDLED_ERRORS,
    AlertEngineDep,
    LifecycleEngineDep,
    MediaStoreDep,
    raise_http_error,
)

router = APIRouter(prefix="/escalations", tags=["escalations"])


# =============================================================================
# REQUEST/RESPONSE SCHEMAS
# =============================================================================


class CreateEscalationRequest(BaseModel):
    """Request to raise an escalation."""
    provider: Provider
    mttr_hours: float | str = Field(..., description="Repair budget in hours, at least 0.1")
    description: str
    segment: str | None = Field(default=None, description="MTN segment")
    site_a_id: str | None = None
    site_b_id: str | None = None
    regional_manager_id: UUID | None = None
    team_lead_id: UUID | None = None
    technician_lat: float | None = None
    technician_lng: float | None = None


class UpdateEscalationRequest(BaseModel):
    """Request to change an escalation's MTTR budget."""
    mttr_hours: float | str


class DeleteEscalationResponse(BaseModel):
    ticket_id: str
    message: str


class StageImagesResponse(BaseModel):
    """Public image URLs per stage folder."""
    link_id: str
    images: dict[str, list[str]]
    fetched_at: datetime


# =============================================================================
# ENDPOINTS
# =============================================================================


@router.post(
    "",
    response_model=EscalationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Raise an escalation",
    description="""
    Raise a link fault against an MTN segment or a pair of Airtel/Glo sites.

    The escalation starts pending with no report and a fresh ticket id.
    Only the fibre network role may raise escalations.
    """,
)
async def create_escalation(
    request: CreateEscalationRequest,
    current_user: CurrentUserDep,
    engine: LifecycleEngineDep,
):
    try:
        escalation = await engine.create_escalation(
            CreateEscalationInput(
                provider=request.provider,
                mttr_hours=request.mttr_hours,
                description=request.description,
                segment=request.segment,
                site_a_id=request.site_a_id,
                site_b_id=request.site_b_id,
                regional_manager_id=request.regional_manager_id,
                team_lead_id=request.team_lead_id,
                technician_lat=request.technician_lat,
                technician_lng=request.technician_lng,
            ),
            actor=current_user.actor,
        )
        escalation = await engine.get_escalation(escalation.id)
    except HANDLED_ERRORS as e:
        raise_http_error(e)

    return EscalationResponse.from_escalation(escalation)


@router.get(
    "",
    response_model=EscalationListResponse,
    summary="List escalations",
    description="""
    List escalations newest first with their reports and RCA.

    Runs the MTTR breach scan over the open escalations in the result.
    """,
)
async def list_escalations(
    current_user: CurrentUserDep,
    engine: LifecycleEngineDep,
    alerts: AlertEngineDep,
    provider: Provider | None = Query(default=None),
    status_filter: LinkStatus | None = Query(default=None, alias="status"),
    has_report: bool | None = Query(default=None),
    mine: bool = Query(default=False, description="Only escalations I raised"),
):
    escalations = await engine.list_escalations(
        provider=provider,
        status=status_filter,
        has_report=has_report,
        created_by=current_user.id if mine else None,
    )
    scan = await alerts.check_breaches(escalations)

    return EscalationListResponse(
        items=[
            EscalationResponse.from_escalation(e, is_urgent=e.id in scan.urgent_ids)
            for e in escalations
        ],
        total=len(escalations),
        urgent_count=len(scan.urgent_ids),
    )


@router.get(
    "/urgent",
    response_model=EscalationListResponse,
    summary="List urgent escalations",
    description="Open escalations that have used at least 70% of their MTTR budget.",
)
async def list_urgent_escalations(
    current_user: CurrentUserDep,
    engine: LifecycleEngineDep,
    alerts: AlertEngineDep,
):
    escalations = await engine.list_escalations()
    scan = await alerts.check_breaches(escalations)
    urgent = [e for e in escalations if e.id in scan.urgent_ids]

    return EscalationListResponse(
        items=[EscalationResponse.from_escalation(e, is_urgent=True) for e in urgent],
        total=len(urgent),
        urgent_count=len(urgent),
    )


@router.get(
    "/{escalation_id}",
    response_model=EscalationResponse,
    summary="Get an escalation",
)
async def get_escalation(
    escalation_id: UUID,
    current_user: CurrentUserDep,
    engine: LifecycleEngineDep,
):
    try:
        escalation = await engine.get_escalation(escalation_id)
    except EscalationNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Escalation {escalation_id} not found",
        )

    return EscalationResponse.from_escalation(escalation)


@router.patch(
    "/{escalation_id}",
    response_model=EscalationResponse,
    summary="Change the MTTR budget",
)
async def update_escalation(
    escalation_id: UUID,
    request: UpdateEscalationRequest,
    current_user: CurrentUserDep,
    engine: LifecycleEngineDep,
):
    try:
        await engine.update_escalation_mttr(
            escalation_id, request.mttr_hours, actor=current_user.actor
        )
        escalation = await engine.get_escalation(escalation_id)
    except HANDLED_ERRORS as e:
        raise_http_error(e)

    return EscalationResponse.from_escalation(escalation)


@router.delete(
    "/{escalation_id}",
    response_model=DeleteEscalationResponse,
    summary="Delete an escalation",
    description="Deletes the escalation together with its reports, RCA and notifications.",
)
async def delete_escalation(
    escalation_id: UUID,
    current_user: CurrentUserDep,
    engine: LifecycleEngineDep,
):
    try:
        ticket_id = await engine.delete_escalation(escalation_id, actor=current_user.actor)
    except HANDLED_ERRORS as e:
        raise_http_error(e)

    return DeleteEscalationResponse(
        ticket_id=ticket_id,
        message=f"Escalation {ticket_id} deleted",
    )


@router.get(
    "/{escalation_id}/images",
    response_model=StageImagesResponse,
    summary="List stage photos",
    description="Photos stored for the escalation's link, grouped by stage folder.",
)
async def get_escalation_images(
    escalation_id: UUID,
    current_user: CurrentUserDep,
    engine: LifecycleEngineDep,
    media_store: MediaStoreDep,
):
    try:
        escalation = await engine.get_escalation(escalation_id)
    except EscalationNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Escalation {escalation_id} not found",
        )

    images = await list_stage_images(media_store, escalation.link_id)
    return StageImagesResponse(
        link_id=escalation.link_id,
        images=images,
        fetched_at=datetime.now(timezone.utc),
    )
