"""Link Tracker API Schemas.

Schemas are organized by domain:
- base: Common types, errors
- links: Escalations, reports, RCAs, notifications
"""

from .base import (
    # Base classes
    TrackerBaseModel,
    TimestampMixin,
    # Errors
    ErrorDetail,
    ErrorResponse,
)
from .links import (
    EscalationListResponse,
    EscalationResponse,
    EscalationSummary,
    NotificationListResponse,
    NotificationResponse,
    RcaListItem,
    RcaResponse,
    ReportResponse,
)

__all__ = [
    # Base
    "TrackerBaseModel",
    "TimestampMixin",
    "ErrorDetail",
    "ErrorResponse",
    # Links
    "EscalationSummary",
    "EscalationResponse",
    "EscalationListResponse",
    "ReportResponse",
    "RcaResponse",
    "RcaListItem",
    "NotificationResponse",
    "NotificationListResponse",
]
