"""SQLAlchemy ORM Models for the link fault tracker.

An escalation is the root aggregate: its reports, RCA record and
notification log rows are owned by it and removed with it. The per-provider
site tables are reference data and are never written by the lifecycle flow.
"""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Enum,
    Float,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, JSONType, TimestampMixin, UUIDMixin, utcnow


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda x: [e.value for e in x])


# =============================================================================
# ENUMS
# =============================================================================


class UserRole(str, PyEnum):
    ADMIN = "admin"
    STAFF = "staff"
    FIBRE_NETWORK = "fibre_network"


class Provider(str, PyEnum):
    MTN = "mtn"
    AIRTEL = "airtel"
    GLO = "glo"


class LinkStatus(str, PyEnum):
    """Status shared by escalations and their reports."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class LinkType(str, PyEnum):
    BB = "BB"
    EL = "EL"
    BB_EL = "BB/EL"
    METRO = "METRO"
    SDH = "SDH"
    IPRAN = "IPRAN"


class ActualCof(str, PyEnum):
    FIBRE = "Fibre"
    NON_FIBRE = "Non-Fibre"


class MttrStatus(str, PyEnum):
    EXCEEDED = "Exceeded MTTR"
    WITHIN = "Within MTTR"


class NotificationKind(str, PyEnum):
    MTTR_BREACH = "mttr_breach"
    RESOLUTION = "resolution"


# Escalations and reports share one database enum type
link_status_enum = _enum(LinkStatus, "link_status")


# Suggested values offered by the RCA form; free text is accepted for both
COF_OPTIONS = (
    "Vandalism",
    "Core Failure",
    "Sabotage",
    "Animal Infestation",
    "Core Break",
    "Force Majuere",
    "Construction",
    "Highloss",
    "PC Issue",
    "Power Issue",
    "Planned Work",
    "Others",
)

COD_OPTIONS = (
    "Night Failure",
    "Security Issue",
    "Vehicle Breakdown",
    "No Fuel",
    "Community Issue",
    "Rainfall",
    "Prolonged Civil Work",
    "Traffic",
    "Access Issue",
    "Bad Road",
    "Others",
)


# =============================================================================
# IDENTITY
# =============================================================================


class Profile(Base, UUIDMixin, TimestampMixin):
    """Dashboard user. The role here is authoritative for every permission check."""

    __tablename__ = "profiles"

    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), unique=True)
    role: Mapped[UserRole] = mapped_column(
        _enum(UserRole, "user_role"),
        default=UserRole.STAFF,
        nullable=False,
    )
    providers: Mapped[list] = mapped_column(
        JSONType,
        default=list,
        comment="Providers this user works with (mtn, airtel, glo)",
    )
    is_regional_manager: Mapped[bool] = mapped_column(Boolean, default=False)
    is_team_lead: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (
        Index("idx_profiles_role", "role"),
    )


# =============================================================================
# SITE DIRECTORY (reference data)
# =============================================================================


class SiteMixin(UUIDMixin, TimestampMixin):
    """Columns shared by the three provider site tables."""

    site_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    site_name: Mapped[str] = mapped_column(String(255), nullable=False)
    city: Mapped[str | None] = mapped_column(String(120))
    state: Mapped[str | None] = mapped_column(String(120))
    address: Mapped[str | None] = mapped_column(Text)
    area: Mapped[str | None] = mapped_column(String(120))
    latitude: Mapped[float | None] = mapped_column(Float)
    longitude: Mapped[float | None] = mapped_column(Float)


class MtnSite(Base, SiteMixin):
    __tablename__ = "mtn_sites"

    list_of_segment: Mapped[str | None] = mapped_column(
        Text,
        comment="MTN links are tracked by segment rather than by site pair",
    )


class AirtelSite(Base, SiteMixin):
    __tablename__ = "airtel_sites"

    zone: Mapped[str | None] = mapped_column(String(120))


class GloSite(Base, SiteMixin):
    __tablename__ = "glo_sites"


SITE_MODELS: dict[Provider, type[SiteMixin]] = {
    Provider.MTN: MtnSite,
    Provider.AIRTEL: AirtelSite,
    Provider.GLO: GloSite,
}


# =============================================================================
# LIFECYCLE AGGREGATE
# =============================================================================


class Escalation(Base, UUIDMixin, TimestampMixin):
    """A link fault raised against a provider's site pair or segment."""

    __tablename__ = "escalations"

    provider: Mapped[Provider] = mapped_column(
        _enum(Provider, "provider"), nullable=False
    )
    site_a_id: Mapped[str | None] = mapped_column(String(100))
    site_b_id: Mapped[str | None] = mapped_column(String(100))
    list_of_segment: Mapped[str | None] = mapped_column(Text)
    link_id: Mapped[str] = mapped_column(String(255), nullable=False)
    ticket_id: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    mttr_hours: Mapped[float] = mapped_column(
        Numeric(5, 2, asdecimal=False),
        nullable=False,
        comment="Repair budget in hours",
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[LinkStatus] = mapped_column(
        link_status_enum,
        default=LinkStatus.PENDING,
        nullable=False,
    )
    has_report: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cof: Mapped[str | None] = mapped_column(Text, comment="Cause of failure")
    pof: Mapped[str | None] = mapped_column(Text, comment="Point of failure")
    technician_lat: Mapped[float | None] = mapped_column(Float)
    technician_lng: Mapped[float | None] = mapped_column(Float)
    regional_manager_id: Mapped[UUID | None] = mapped_column(ForeignKey("profiles.id"))
    team_lead_id: Mapped[UUID | None] = mapped_column(ForeignKey("profiles.id"))
    created_by: Mapped[UUID] = mapped_column(ForeignKey("profiles.id"), nullable=False)

    # Relationships
    creator: Mapped["Profile"] = relationship(foreign_keys=[created_by])
    regional_manager: Mapped["Profile | None"] = relationship(
        foreign_keys=[regional_manager_id]
    )
    team_lead: Mapped["Profile | None"] = relationship(foreign_keys=[team_lead_id])
    reports: Mapped[list["Report"]] = relationship(
        back_populates="escalation",
        cascade="all, delete-orphan",
        order_by="Report.created_at",
    )
    rca: Mapped["RcaForm | None"] = relationship(
        back_populates="escalation",
        cascade="all, delete-orphan",
        uselist=False,
    )
    notifications: Mapped[list["NotificationLog"]] = relationship(
        back_populates="escalation",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("mttr_hours >= 0.1", name="mttr_minimum"),
        CheckConstraint(
            "provider = 'mtn' OR site_a_id IS NULL OR site_b_id IS NULL "
            "OR site_a_id <> site_b_id",
            name="distinct_sites",
        ),
        Index("idx_escalations_status", "status"),
        Index("idx_escalations_provider", "provider"),
        Index("idx_escalations_created_by", "created_by"),
    )


class Report(Base, UUIDMixin, TimestampMixin):
    """Field report moving through in_progress -> resolved -> closed."""

    __tablename__ = "reports"

    escalation_id: Mapped[UUID] = mapped_column(
        ForeignKey("escalations.id", ondelete="CASCADE"), nullable=False
    )
    issue_description: Mapped[str] = mapped_column(Text, nullable=False)
    reported_by: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_info: Mapped[str] = mapped_column(String(255), nullable=False)
    is_critical: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    status: Mapped[LinkStatus] = mapped_column(
        link_status_enum,
        default=LinkStatus.IN_PROGRESS,
        nullable=False,
    )
    status_notes: Mapped[str | None] = mapped_column(
        Text, comment="Estimated time to repair narrative"
    )
    resolution_notes: Mapped[str | None] = mapped_column(Text)
    resolution_photos: Mapped[list] = mapped_column(
        JSONType,
        default=list,
        comment="Public URLs of the latest stage photos, in upload order",
    )
    image_url: Mapped[str | None] = mapped_column(Text)
    pof_url: Mapped[str | None] = mapped_column(Text)
    cof_url: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[UUID] = mapped_column(ForeignKey("profiles.id"), nullable=False)

    # Relationships
    escalation: Mapped["Escalation"] = relationship(back_populates="reports")
    creator: Mapped["Profile"] = relationship(foreign_keys=[created_by])

    __table_args__ = (
        Index("idx_reports_escalation", "escalation_id"),
        Index("idx_reports_status", "status"),
    )


class RcaForm(Base, UUIDMixin, TimestampMixin):
    """Root cause analysis closing an escalation. One per escalation."""

    __tablename__ = "rca_forms"

    escalation_id: Mapped[UUID] = mapped_column(
        ForeignKey("escalations.id", ondelete="CASCADE"), nullable=False
    )
    link_type: Mapped[LinkType] = mapped_column(
        _enum(LinkType, "link_type"), nullable=False
    )
    start_time: Mapped[datetime] = mapped_column(nullable=False)
    end_time: Mapped[datetime] = mapped_column(nullable=False)
    mttr_used: Mapped[int] = mapped_column(
        default=0, nullable=False, comment="Whole hours between start and end"
    )
    mttr_status: Mapped[MttrStatus] = mapped_column(
        _enum(MttrStatus, "mttr_status"), nullable=False
    )
    pof: Mapped[str | None] = mapped_column(Text)
    cof: Mapped[str | None] = mapped_column(Text)
    actual_cof: Mapped[ActualCof] = mapped_column(
        _enum(ActualCof, "actual_cof"), nullable=False
    )
    detailed_cof: Mapped[str] = mapped_column(Text, nullable=False)
    resolution: Mapped[str] = mapped_column(Text, nullable=False)
    ofc: Mapped[str | None] = mapped_column(String(100), comment="Optical fibre cable used")
    jc: Mapped[str | None] = mapped_column(String(100), comment="Joint closures used")
    cod: Mapped[str | None] = mapped_column(Text, comment="Cause of delay")
    team_lead: Mapped[str | None] = mapped_column(String(255))
    team_manager: Mapped[str | None] = mapped_column(String(255))
    bottle_cassette_tray: Mapped[str | None] = mapped_column(String(100))
    segment: Mapped[str | None] = mapped_column(Text)
    time_to_pof: Mapped[float | None] = mapped_column(Float)
    time_to_test: Mapped[float | None] = mapped_column(Float)
    tt_number: Mapped[str | None] = mapped_column(String(100))

    # Relationships
    escalation: Mapped["Escalation"] = relationship(back_populates="rca")

    __table_args__ = (
        UniqueConstraint("escalation_id"),
    )


# =============================================================================
# NOTIFICATIONS
# =============================================================================


class NotificationLog(Base, UUIDMixin):
    """Append-only notification feed.

    dedupe_key is set for notifications that must exist at most once per
    escalation (MTTR breach). NULL keys never collide.
    """

    __tablename__ = "notification_log"

    recipient_id: Mapped[UUID] = mapped_column(ForeignKey("profiles.id"), nullable=False)
    escalation_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("escalations.id", ondelete="CASCADE")
    )
    kind: Mapped[NotificationKind] = mapped_column(
        _enum(NotificationKind, "notification_kind"), nullable=False
    )
    dedupe_key: Mapped[str | None] = mapped_column(String(100))
    message: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, default=dict)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column()
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    # Relationships
    escalation: Mapped["Escalation | None"] = relationship(back_populates="notifications")
    recipient: Mapped["Profile"] = relationship(foreign_keys=[recipient_id])

    __table_args__ = (
        UniqueConstraint("escalation_id", "dedupe_key", name="uq_notification_log_dedupe"),
        Index("idx_notification_log_recipient", "recipient_id", "is_read"),
    )
