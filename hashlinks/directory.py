"""
HashLinks - Directory Registry

The global catalogue of published assemblies. Each entry points at one
assembly topic; a later registration for the same topic replaces the
earlier listing.
"""

from __future__ import annotations

import logging
from typing import Any

from hashlinks.messages import DirectoryRegistration, parse_directory_registration
from hashlinks.registry import Projection, Registry
from hashlinks.transport import Transport
from hashlinks.types import Entry, RegistryType

logger = logging.getLogger(__name__)


def fold_listing(
    listings: dict[str, DirectoryRegistration],
    entry: Entry,
) -> dict[str, DirectoryRegistration]:
    listing: DirectoryRegistration = entry.data
    return {**listings, listing.t_id: listing}


DIRECTORY_LISTINGS = Projection(initial=dict, fold=fold_listing)


class DirectoryRegistry:
    def __init__(
        self,
        topic_id: str | None = None,
        transport: Transport | None = None,
        *,
        page_size: int | None = None,
    ) -> None:
        self.registry = Registry(
            RegistryType.HASHLINKS,
            topic_id=topic_id,
            transport=transport,
            projection=DIRECTORY_LISTINGS,
            parser=parse_directory_registration,
            page_size=page_size,
        )

    @property
    def listings(self) -> list[DirectoryRegistration]:
        return list(self.registry.state.values())

    async def register(self, registration: DirectoryRegistration | dict[str, Any]) -> str:
        entry_id = await self.registry.register(registration)
        logger.info("Directory listing registered: entry=%s", entry_id)
        return entry_id

    async def sync(self) -> int:
        return await self.registry.sync()

    async def search_by_tags(self, tags: list[str]) -> list[DirectoryRegistration]:
        """Listings carrying at least one of the given tags (case-insensitive)."""
        await self._refresh()
        wanted = {t.lower() for t in tags}
        return [
            listing
            for listing in self.listings
            if listing.tags and wanted.intersection(t.lower() for t in listing.tags)
        ]

    async def search_by_name(self, query: str) -> list[DirectoryRegistration]:
        await self._refresh()
        needle = query.lower()
        return [listing for listing in self.listings if needle in listing.name.lower()]

    async def get_by_category(self, category: str) -> list[DirectoryRegistration]:
        await self._refresh()
        return [listing for listing in self.listings if listing.category == category]

    async def get_featured(self) -> list[DirectoryRegistration]:
        await self._refresh()
        return [listing for listing in self.listings if listing.featured]

    def clear_cache(self) -> None:
        self.registry.clear_cache()

    async def _refresh(self) -> None:
        if self.registry.attached:
            await self.registry.sync()
