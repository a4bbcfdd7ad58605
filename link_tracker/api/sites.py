"""API routes for the provider site directory."""

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel

from ..core import CurrentUserDep, SessionDep, get_settings
from ..models import Provider
from ..services.sites import SiteDirectory, SiteNotFoundError

router = APIRouter(prefix="/sites", tags=["sites"])


class SiteResponse(BaseModel):
    site_id: str
    site_name: str
    city: str | None = None
    state: str | None = None
    area: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    list_of_segment: str | None = None
    zone: str | None = None

    @classmethod
    def from_site(cls, site) -> "SiteResponse":
        return cls(
            site_id=site.site_id,
            site_name=site.site_name,
            city=site.city,
            state=site.state,
            area=site.area,
            latitude=site.latitude,
            longitude=site.longitude,
            list_of_segment=getattr(site, "list_of_segment", None),
            zone=getattr(site, "zone", None),
        )


@router.get("/{provider}", response_model=list[SiteResponse])
async def search_sites(
    provider: Provider,
    current_user: CurrentUserDep,
    session: SessionDep,
    q: str = Query(default="", description="Segment (MTN) or site name fragment"),
):
    """Search a provider's sites. An empty query returns nothing."""
    directory = SiteDirectory(session, limit=get_settings().site_search_limit)
    sites = await directory.search(provider, q)
    return [SiteResponse.from_site(s) for s in sites]


@router.get("/{provider}/{site_id}", response_model=SiteResponse)
async def get_site(
    provider: Provider,
    site_id: str,
    current_user: CurrentUserDep,
    session: SessionDep,
):
    try:
        site = await SiteDirectory(session).get(provider, site_id)
    except SiteNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return SiteResponse.from_site(site)
