"""Pydantic schemas for escalations, reports, RCAs and notifications."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from ..models import (
    ActualCof,
    Escalation,
    LinkStatus,
    LinkType,
    MttrStatus,
    NotificationKind,
    Provider,
    RcaForm,
)
from ..services.lifecycle_engine import derive_link_status
from .base import TimestampMixin, TrackerBaseModel


# =============================================================================
# REPORT SCHEMAS
# =============================================================================


class ReportResponse(TrackerBaseModel, TimestampMixin):
    """A field report at any stage."""

    id: UUID
    escalation_id: UUID
    issue_description: str
    reported_by: str
    contact_info: str
    is_critical: bool
    status: LinkStatus
    status_notes: str | None = None
    resolution_notes: str | None = None
    resolution_photos: list[str] = Field(default_factory=list)
    image_url: str | None = None
    created_by: UUID


# =============================================================================
# RCA SCHEMAS
# =============================================================================


class RcaResponse(TrackerBaseModel, TimestampMixin):
    """A recorded root cause analysis."""

    id: UUID
    escalation_id: UUID
    link_type: LinkType
    start_time: datetime
    end_time: datetime
    mttr_used: int
    mttr_status: MttrStatus
    pof: str | None = None
    cof: str | None = None
    actual_cof: ActualCof
    detailed_cof: str
    resolution: str
    ofc: str | None = None
    jc: str | None = None
    cod: str | None = None
    team_lead: str | None = None
    team_manager: str | None = None
    bottle_cassette_tray: str | None = None
    segment: str | None = None
    time_to_pof: float | None = None
    time_to_test: float | None = None
    tt_number: str | None = None


class RcaListItem(RcaResponse):
    """RCA with the identifying fields of its escalation."""

    ticket_id: str
    provider: str
    link_id: str

    @classmethod
    def from_rca(cls, rca: RcaForm) -> "RcaListItem":
        data = RcaResponse.model_validate(rca).model_dump()
        return cls(
            **data,
            ticket_id=rca.escalation.ticket_id,
            provider=rca.escalation.provider.value,
            link_id=rca.escalation.link_id,
        )


# =============================================================================
# ESCALATION SCHEMAS
# =============================================================================


class EscalationSummary(TrackerBaseModel, TimestampMixin):
    """Escalation row without its children."""

    id: UUID
    provider: Provider
    site_a_id: str | None = None
    site_b_id: str | None = None
    list_of_segment: str | None = None
    link_id: str
    ticket_id: str
    mttr_hours: float
    description: str
    status: LinkStatus
    has_report: bool
    cof: str | None = None
    pof: str | None = None
    technician_lat: float | None = None
    technician_lng: float | None = None
    regional_manager_id: UUID | None = None
    team_lead_id: UUID | None = None
    created_by: UUID


class EscalationResponse(EscalationSummary):
    """Escalation with reports, RCA and the status derived from them."""

    link_status: LinkStatus = Field(
        ..., description="Status projected from the reports' stages"
    )
    is_urgent: bool = Field(
        default=False, description="Open and past the MTTR alert threshold"
    )
    reports: list[ReportResponse] = Field(default_factory=list)
    rca: RcaResponse | None = None

    @classmethod
    def from_escalation(
        cls, escalation: Escalation, is_urgent: bool = False
    ) -> "EscalationResponse":
        """Build from an escalation whose reports and RCA are loaded."""
        summary = EscalationSummary.model_validate(escalation).model_dump()
        return cls(
            **summary,
            link_status=derive_link_status(escalation.reports).value,
            is_urgent=is_urgent,
            reports=[ReportResponse.model_validate(r) for r in escalation.reports],
            rca=RcaResponse.model_validate(escalation.rca) if escalation.rca else None,
        )


class EscalationListResponse(TrackerBaseModel):
    items: list[EscalationResponse]
    total: int
    urgent_count: int


# =============================================================================
# NOTIFICATION SCHEMAS
# =============================================================================


class NotificationResponse(TrackerBaseModel):
    id: UUID
    recipient_id: UUID
    escalation_id: UUID | None = None
    kind: NotificationKind
    message: str
    payload: dict[str, Any] = Field(default_factory=dict)
    is_read: bool
    read_at: datetime | None = None
    created_at: datetime


class NotificationListResponse(TrackerBaseModel):
    items: list[NotificationResponse]
    unread_count: int
