"""Business logic services for the link tracker."""

from . import realtime  # registers the session change hooks
from .analytics import AnalyticsFilter, AnalyticsService, AnalyticsSummary
from .lifecycle_engine import (
    Actor,
    ConcurrencyError,
    CreateEscalationInput,
    CreateReportInput,
    EscalationNotFoundError,
    InvalidInputError,
    InvalidTransitionError,
    LifecycleConfig,
    LifecycleEngine,
    LifecycleError,
    RcaFormState,
    RcaInput,
    RcaNotFoundError,
    RcaResult,
    ReportNotFoundError,
    ResolutionResult,
    ResolveReportInput,
    compute_rca_mttr,
    derive_link_status,
)
from .media_store import (
    ImageUpload,
    LocalMediaStore,
    MediaStore,
    MediaStoreError,
    StageFolder,
    get_media_store,
)
from .mttr_alerts import AlertConfig, BreachScan, MttrAlertEngine
from .notifications import NotificationNotFoundError, NotificationService
from .rca_export import RcaExportService
from .realtime import ChangeEvent, change_hub
from .sites import SiteDirectory, SiteNotFoundError

__all__ = [
    # Lifecycle Engine
    "LifecycleEngine",
    "LifecycleConfig",
    "LifecycleError",
    "EscalationNotFoundError",
    "ReportNotFoundError",
    "RcaNotFoundError",
    "InvalidInputError",
    "InvalidTransitionError",
    "ConcurrencyError",
    "Actor",
    "CreateEscalationInput",
    "CreateReportInput",
    "ResolveReportInput",
    "RcaInput",
    "ResolutionResult",
    "RcaResult",
    "RcaFormState",
    "compute_rca_mttr",
    "derive_link_status",
    # MTTR alerts
    "MttrAlertEngine",
    "AlertConfig",
    "BreachScan",
    # Media
    "MediaStore",
    "LocalMediaStore",
    "MediaStoreError",
    "ImageUpload",
    "StageFolder",
    "get_media_store",
    # Notifications
    "NotificationService",
    "NotificationNotFoundError",
    # Realtime
    "realtime",
    "ChangeEvent",
    "change_hub",
    # Sites, analytics and export
    "SiteDirectory",
    "SiteNotFoundError",
    "AnalyticsService",
    "AnalyticsFilter",
    "AnalyticsSummary",
    "RcaExportService",
]
