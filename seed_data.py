#!/usr/bin/env python3
"""
Seed Data Script for Link Tracker

Creates a realistic field operations scenario with:
- 5 Profiles (fibre network desk, admin, field staff, a regional manager and a team lead)
- Sites for MTN, Airtel and Glo
- Escalations demonstrating each stage of the lifecycle:
  - MTN SEG-IKJ-01: pending, no report yet
  - Airtel Yaba-Surulere: report filed, work in progress
  - Glo Apapa-Ajah: resolved, waiting for the RCA
  - MTN SEG-LKK-07: closed by an RCA that exceeded its MTTR budget

Run with: python seed_data.py
"""

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from link_tracker.core import Actor, get_session_context, init_db
from link_tracker.models import (
    ActualCof,
    AirtelSite,
    GloSite,
    LinkType,
    MtnSite,
    Profile,
    Provider,
    UserRole,
)
from link_tracker.services.lifecycle_engine import (
    CreateEscalationInput,
    CreateReportInput,
    LifecycleEngine,
    RcaInput,
    ResolveReportInput,
)
from link_tracker.services.media_store import ImageUpload

# Smallest valid JPEG header; enough for the media store and the gallery
PLACEHOLDER_JPEG = b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00\xff\xd9"


def photo(name: str) -> ImageUpload:
    return ImageUpload(filename=name, content_type="image/jpeg", data=PLACEHOLDER_JPEG)


async def seed_database():
    """Main seeding function."""
    await init_db()

    async with get_session_context() as session:
        print("🌱 Starting database seed...")

        result = await session.execute(text("SELECT COUNT(*) FROM profiles"))
        count = result.scalar()
        if count and count > 0:
            print("⚠️  Database already has data. Clearing existing data...")
            await clear_database(session)

        # =================================================================
        # CREATE PROFILES
        # =================================================================
        print("\n👥 Creating profiles...")

        desk = Profile(
            full_name="Amaka Obi",
            email="amaka@fibre.example.com",
            role=UserRole.FIBRE_NETWORK,
            providers=["mtn", "airtel", "glo"],
        )
        admin = Profile(
            full_name="Kunle Adeyemi",
            email="kunle@ops.example.com",
            role=UserRole.ADMIN,
            providers=["mtn", "airtel", "glo"],
        )
        field = Profile(
            full_name="Bisi Lawal",
            email="bisi@field.example.com",
            role=UserRole.STAFF,
            providers=["mtn", "glo"],
        )
        manager = Profile(
            full_name="Emeka Nwosu",
            email="emeka@field.example.com",
            role=UserRole.STAFF,
            is_regional_manager=True,
        )
        lead = Profile(
            full_name="Tunde Bakare",
            email="tunde@field.example.com",
            role=UserRole.STAFF,
            is_team_lead=True,
        )
        session.add_all([desk, admin, field, manager, lead])
        await session.flush()

        for profile in (desk, admin, field, manager, lead):
            print(f"   ✓ {profile.full_name} ({profile.role.value})")

        # =================================================================
        # CREATE SITES
        # =================================================================
        print("\n📡 Creating sites...")

        session.add_all([
            MtnSite(site_id="MTN-IKJ-001", site_name="Ikeja Hub", state="Lagos",
                    list_of_segment="SEG-IKJ-01"),
            MtnSite(site_id="MTN-LKK-007", site_name="Lekki Phase 1", state="Lagos",
                    list_of_segment="SEG-LKK-07"),
            AirtelSite(site_id="ATL-YBA-100", site_name="Yaba", state="Lagos", zone="Lagos West"),
            AirtelSite(site_id="ATL-SRL-200", site_name="Surulere", state="Lagos", zone="Lagos West"),
            GloSite(site_id="GLO-APP-010", site_name="Apapa", state="Lagos"),
            GloSite(site_id="GLO-AJH-020", site_name="Ajah", state="Lagos"),
        ])
        await session.flush()
        print("   ✓ 2 MTN, 2 Airtel and 2 Glo sites")

        engine = LifecycleEngine(session)
        desk_actor = Actor(id=desk.id, role=desk.role)
        field_actor = Actor(id=field.id, role=field.role)

        def escalation_input(provider: Provider, mttr: float, description: str, **sites):
            return CreateEscalationInput(
                provider=provider,
                mttr_hours=mttr,
                description=description,
                regional_manager_id=manager.id,
                team_lead_id=lead.id,
                **sites,
            )

        # =================================================================
        # ESCALATION A: PENDING
        # =================================================================
        print("\n🚨 Creating escalations...")

        pending = await engine.create_escalation(
            escalation_input(Provider.MTN, 4, "Loss of light on aggregation ring",
                             segment="SEG-IKJ-01"),
            desk_actor,
        )
        print(f"   ✓ {pending.ticket_id}: {pending.link_id} [PENDING]")

        # =================================================================
        # ESCALATION B: IN PROGRESS
        # =================================================================
        in_progress = await engine.create_escalation(
            escalation_input(Provider.AIRTEL, 3, "High attenuation after road works",
                             site_a_id="ATL-YBA-100", site_b_id="ATL-SRL-200"),
            desk_actor,
        )
        report_b = await engine.create_report(
            in_progress.id,
            CreateReportInput(
                issue_description="Cable crushed under culvert",
                reported_by=field.full_name,
                contact_info="0803 555 0101",
                is_critical=True,
            ),
            field_actor,
            [photo("culvert.jpg")],
        )
        await engine.record_progress(
            report_b.id, "ETR 2 hours, splicing team on site", field_actor, [photo("splice.jpg")]
        )
        print(f"   ✓ {in_progress.ticket_id}: {in_progress.link_id} [IN PROGRESS, critical]")

        # =================================================================
        # ESCALATION C: RESOLVED, RCA OUTSTANDING
        # =================================================================
        resolved = await engine.create_escalation(
            escalation_input(Provider.GLO, 6, "Link flapping during peak hours",
                             site_a_id="GLO-APP-010", site_b_id="GLO-AJH-020"),
            desk_actor,
        )
        report_c = await engine.create_report(
            resolved.id,
            CreateReportInput(
                issue_description="Water in joint closure",
                reported_by=field.full_name,
                contact_info="0803 555 0101",
            ),
            field_actor,
        )
        await engine.resolve_report(
            report_c.id,
            ResolveReportInput(
                resolution_notes="Dried and resealed closure, re-spliced 4 cores",
                cof="Joint Closure Failure",
                pof="Manhole 14",
            ),
            field_actor,
            [photo("closure.jpg")],
        )
        print(f"   ✓ {resolved.ticket_id}: {resolved.link_id} [RESOLVED, awaiting RCA]")

        # =================================================================
        # ESCALATION D: CLOSED BY RCA
        # =================================================================
        closed = await engine.create_escalation(
            escalation_input(Provider.MTN, 3, "Total outage on coastal segment",
                             segment="SEG-LKK-07"),
            desk_actor,
        )
        report_d = await engine.create_report(
            closed.id,
            CreateReportInput(
                issue_description="Fibre cut by excavator",
                reported_by=field.full_name,
                contact_info="0803 555 0101",
            ),
            field_actor,
        )
        await engine.resolve_report(
            report_d.id,
            ResolveReportInput(
                resolution_notes="Replaced 120m of cable",
                cof="Core Break",
                pof="KM 7.4",
            ),
            field_actor,
            [photo("replaced.jpg")],
        )
        outage_start = datetime.now(timezone.utc).replace(microsecond=0) - timedelta(days=1)
        rca = await engine.finalize_rca(
            closed.id,
            RcaInput(
                link_type=LinkType.METRO,
                start_time=outage_start,
                end_time=outage_start + timedelta(hours=5, minutes=30),
                actual_cof=ActualCof.FIBRE,
                detailed_cof="Unannounced excavation by a road contractor",
                resolution="Replaced 120m of cable and spliced both ends",
                cof="Core Break",
                pof="KM 7.4",
                ofc="120m",
                jc="2",
                cod="Access Delay",
                team_lead=lead.full_name,
                team_manager=manager.full_name,
                segment=closed.link_id,
            ),
            field_actor,
        )
        print(
            f"   ✓ {closed.ticket_id}: {closed.link_id} [CLOSED, "
            f"{rca.rca.mttr_used}h used - {rca.rca.mttr_status.value}]"
        )

        # =================================================================
        # COMMIT ALL CHANGES
        # =================================================================
        await session.commit()

        print("\n" + "=" * 60)
        print("✅ DATABASE SEEDED SUCCESSFULLY!")
        print("=" * 60)
        print(f"""
📊 Summary:
   • 5 Profiles: {desk.full_name} (fibre network), {admin.full_name} (admin),
     {field.full_name} (staff), {manager.full_name} (RM), {lead.full_name} (TL)
   • 6 Sites across MTN, Airtel and Glo
   • 4 Escalations:
     - {pending.ticket_id}: {pending.link_id} [PENDING]
     - {in_progress.ticket_id}: {in_progress.link_id} [IN PROGRESS] 🔴 critical
     - {resolved.ticket_id}: {resolved.link_id} [RESOLVED]
     - {closed.ticket_id}: {closed.link_id} [CLOSED, MTTR exceeded]

🧪 What you can test:
   1. Dev login: POST /api/v1/auth/dev-login with any email above
   2. Urgent list: GET /api/v1/escalations/urgent once 70% of an MTTR has passed
   3. RCA form: GET /api/v1/escalations/{resolved.id}/rca/form
   4. Exports: GET /api/v1/rca/export.csv and /api/v1/rca/export.pdf
   5. Analytics: GET /api/v1/analytics/summary

🌐 API docs at: http://localhost:8000/api/v1/docs
""")


async def clear_database(session: AsyncSession):
    """Clear all data from the database (in correct order for FK constraints)."""
    tables = [
        "notification_log",
        "rca_forms",
        "reports",
        "escalations",
        "mtn_sites",
        "airtel_sites",
        "glo_sites",
        "profiles",
    ]

    for table in tables:
        await session.execute(text(f"DELETE FROM {table}"))

    await session.commit()
    print("   ✓ Cleared existing data")


if __name__ == "__main__":
    asyncio.run(seed_database())
