"""
HashLinks Directory Registry Tests
"""

import pytest

from hashlinks.directory import DirectoryRegistry
from hashlinks.errors import ValidationError
from hashlinks.messages import DirectoryRegistration

DIRECTORY_TOPIC = "0.0.30000"


def listing(t_id, name, **fields):
    return DirectoryRegistration(t_id=t_id, name=name, **fields)


@pytest.fixture
async def directory(transport):
    registry = DirectoryRegistry(DIRECTORY_TOPIC, transport)
    await registry.register(listing("0.0.40001", "Token Swap", tags=["DeFi", "swap"], category="defi", featured=True))
    await registry.register(listing("0.0.40002", "NFT Gallery", tags=["nft"], category="art"))
    await registry.register(listing("0.0.40003", "Swap Widget", tags=["widgets"], category="defi"))
    return registry


class TestDirectorySearch:
    @pytest.mark.asyncio
    async def test_search_by_tags_case_insensitive(self, directory):
        found = await directory.search_by_tags(["defi", "NFT"])
        assert sorted(entry.t_id for entry in found) == ["0.0.40001", "0.0.40002"]

    @pytest.mark.asyncio
    async def test_search_by_name_substring(self, directory):
        found = await directory.search_by_name("swap")
        assert sorted(entry.name for entry in found) == ["Swap Widget", "Token Swap"]

    @pytest.mark.asyncio
    async def test_get_by_category(self, directory):
        found = await directory.get_by_category("defi")
        assert len(found) == 2

    @pytest.mark.asyncio
    async def test_get_featured(self, directory):
        found = await directory.get_featured()
        assert [entry.t_id for entry in found] == ["0.0.40001"]

    @pytest.mark.asyncio
    async def test_reregistration_replaces_listing(self, directory):
        await directory.register(listing("0.0.40002", "NFT Gallery", tags=["nft"], category="art", featured=True))

        featured = await directory.get_featured()

        assert sorted(entry.t_id for entry in featured) == ["0.0.40001", "0.0.40002"]
        assert len(directory.listings) == 3

    @pytest.mark.asyncio
    async def test_reader_sees_published_listings(self, directory, transport):
        reader = DirectoryRegistry(DIRECTORY_TOPIC, transport)
        found = await reader.search_by_name("gallery")
        assert [entry.t_id for entry in found] == ["0.0.40002"]


class TestDirectoryValidation:
    @pytest.mark.asyncio
    async def test_too_many_tags_rejected(self):
        registry = DirectoryRegistry()
        payload = {"p": "hcs-12", "op": "register", "t_id": "0.0.1", "name": "x", "tags": [str(i) for i in range(11)]}

        with pytest.raises(ValidationError) as exc:
            await registry.register(payload)

        assert exc.value.field == "tags"

    @pytest.mark.asyncio
    async def test_long_name_rejected(self):
        registry = DirectoryRegistry()

        with pytest.raises(ValidationError) as exc:
            await registry.register({"p": "hcs-12", "op": "register", "t_id": "0.0.1", "name": "n" * 101})

        assert exc.value.field == "name"
