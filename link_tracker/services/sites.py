"""Site directory lookups used when raising escalations."""

import logging
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import SITE_MODELS, MtnSite, Provider, SiteMixin

logger = logging.getLogger(__name__)


class SiteNotFoundError(Exception):
    pass


class SiteDirectory:
    """Read-only search over the per-provider site tables."""

    def __init__(self, session: AsyncSession, limit: int = 200):
        self._session = session
        self._limit = limit

    async def search(self, provider: Provider, term: str) -> Sequence[SiteMixin]:
        """Case-insensitive substring search.

        MTN sites match on their segment list, the others on site name.
        A blank term returns nothing.
        """
        term = (term or "").strip()
        if not term:
            return []

        site_model = SITE_MODELS[Provider(provider)]
        column = MtnSite.list_of_segment if site_model is MtnSite else site_model.site_name
        result = await self._session.execute(
            select(site_model)
            .where(column.ilike(f"%{term}%"))
            .order_by(site_model.site_name)
            .limit(self._limit)
        )
        sites = result.scalars().all()
        logger.debug(f"Site search {Provider(provider).value} '{term}': {len(sites)} matches")
        return sites

    async def get(self, provider: Provider, site_id: str) -> SiteMixin:
        site_model = SITE_MODELS[Provider(provider)]
        result = await self._session.execute(
            select(site_model).where(site_model.site_id == site_id)
        )
        site = result.scalar_one_or_none()
        if site is None:
            raise SiteNotFoundError(f"{Provider(provider).value} site {site_id} not found")
        return site
