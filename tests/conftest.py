"""
Shared fixtures: an in-memory SQLite database, seeded profiles, a media
store under tmp_path and an authenticated API client.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-link-tracker-tests")

from collections.abc import AsyncGenerator

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from link_tracker.api.common import get_alert_http_client
from link_tracker.core import Actor, build_engine, create_access_token, get_session
from link_tracker.main import app
from link_tracker.models import AirtelSite, Base, MtnSite, Profile, Provider, UserRole
from link_tracker.services.media_store import ImageUpload, LocalMediaStore, get_media_store


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture
async def db_engine():
    engine = build_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with factory() as session:
        yield session


# =============================================================================
# PROFILES
# =============================================================================


async def _add_profile(session: AsyncSession, **values) -> Profile:
    profile = Profile(**values)
    session.add(profile)
    await session.flush()
    return profile


@pytest.fixture
async def fibre_user(session: AsyncSession) -> Profile:
    return await _add_profile(
        session,
        full_name="Ada Fibre",
        email="ada@fibre.example.com",
        role=UserRole.FIBRE_NETWORK,
        providers=["mtn", "airtel", "glo"],
    )


@pytest.fixture
async def staff_user(session: AsyncSession) -> Profile:
    return await _add_profile(
        session,
        full_name="Sam Field",
        email="sam@field.example.com",
        role=UserRole.STAFF,
        providers=["mtn"],
    )


@pytest.fixture
async def admin_user(session: AsyncSession) -> Profile:
    return await _add_profile(
        session,
        full_name="Ngozi Admin",
        email="ngozi@admin.example.com",
        role=UserRole.ADMIN,
    )


@pytest.fixture
async def regional_manager(session: AsyncSession) -> Profile:
    return await _add_profile(
        session,
        full_name="Rita Region",
        email="rita@field.example.com",
        role=UserRole.STAFF,
        is_regional_manager=True,
    )


@pytest.fixture
async def team_lead(session: AsyncSession) -> Profile:
    return await _add_profile(
        session,
        full_name="Tunde Lead",
        email="tunde@field.example.com",
        role=UserRole.STAFF,
        is_team_lead=True,
    )


@pytest.fixture
def fibre_actor(fibre_user: Profile) -> Actor:
    return Actor(id=fibre_user.id, role=fibre_user.role)


@pytest.fixture
def staff_actor(staff_user: Profile) -> Actor:
    return Actor(id=staff_user.id, role=staff_user.role)


@pytest.fixture
def admin_actor(admin_user: Profile) -> Actor:
    return Actor(id=admin_user.id, role=admin_user.role)


# =============================================================================
# SITES
# =============================================================================


@pytest.fixture
async def sites(session: AsyncSession) -> dict[str, list]:
    mtn = [
        MtnSite(site_id="MTN-001", site_name="Ikeja Hub", list_of_segment="IKJ-AGG-01"),
        MtnSite(site_id="MTN-002", site_name="Lekki Node", list_of_segment="LKK-AGG-07"),
    ]
    airtel = [
        AirtelSite(site_id="ATL-100", site_name="Yaba", zone="Lagos West"),
        AirtelSite(site_id="ATL-200", site_name="Surulere", zone="Lagos West"),
    ]
    session.add_all(mtn + airtel)
    await session.flush()
    return {Provider.MTN.value: mtn, Provider.AIRTEL.value: airtel}


# =============================================================================
# MEDIA
# =============================================================================


@pytest.fixture
def media_store(tmp_path) -> LocalMediaStore:
    return LocalMediaStore(tmp_path / "media", "http://test/media")


def make_image(name: str = "site.jpg", size: int = 64, content_type: str = "image/jpeg") -> ImageUpload:
    return ImageUpload(filename=name, content_type=content_type, data=b"\xff\xd8" + b"0" * size)


# =============================================================================
# API CLIENT
# =============================================================================


def auth_headers(profile: Profile) -> dict[str, str]:
    token = create_access_token(profile_id=profile.id, role=profile.role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def client(session: AsyncSession, media_store: LocalMediaStore):
    async def _session_override():
        yield session
        await session.flush()

    app.dependency_overrides[get_session] = _session_override
    app.dependency_overrides[get_media_store] = lambda: media_store
    app.dependency_overrides[get_alert_http_client] = lambda: None

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http

    app.dependency_overrides.clear()
