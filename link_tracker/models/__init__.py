"""SQLAlchemy ORM Models for Link Tracker."""

from .base import Base, TimestampMixin, UUIDMixin, utcnow
from .models import (
    # Enums
    ActualCof,
    LinkStatus,
    LinkType,
    MttrStatus,
    NotificationKind,
    Provider,
    UserRole,
    # Option lists
    COD_OPTIONS,
    COF_OPTIONS,
    # Identity
    Profile,
    # Sites
    SITE_MODELS,
    AirtelSite,
    GloSite,
    MtnSite,
    SiteMixin,
    # Lifecycle
    Escalation,
    RcaForm,
    Report,
    # Notifications
    NotificationLog,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "utcnow",
    # Enums
    "UserRole",
    "Provider",
    "LinkStatus",
    "LinkType",
    "ActualCof",
    "MttrStatus",
    "NotificationKind",
    "COF_OPTIONS",
    "COD_OPTIONS",
    # Identity
    "Profile",
    # Sites
    "SiteMixin",
    "MtnSite",
    "AirtelSite",
    "GloSite",
    "SITE_MODELS",
    # Lifecycle
    "Escalation",
    "Report",
    "RcaForm",
    # Notifications
    "NotificationLog",
]
