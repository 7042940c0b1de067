"""
HashLinks - Content Loader

Block definitions, templates and WASM binaries live off-registry as
immutable payloads addressed by topic id. The loader memoizes what it
fetches and checks bytes against a digest whenever one is known.
"""

from __future__ import annotations

import json
import logging
from collections import Counter

import httpx

from hashlinks.config import settings
from hashlinks.errors import (
    IntegrityError,
    ReferenceResolutionError,
    TransportError,
    ValidationError,
)
from hashlinks.messages import BlockDefinition, parse_block_definition
from hashlinks.types import sha256_hex

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Content store protocol
# ---------------------------------------------------------------------------


class ContentStore:
    """
    Abstract content storage interface.
    Implement with the inscription CDN for production, or in-memory for tests.
    """

    async def fetch(self, location_id: str) -> bytes:
        """Fetch the payload stored at a location. Raises TransportError if absent."""
        raise NotImplementedError

    async def store(self, data: bytes, *, mime_type: str = "application/octet-stream", name: str = "") -> str:
        """Store a payload and return its location id."""
        raise NotImplementedError


class MemoryContentStore(ContentStore):
    """In-memory content storage for testing."""

    def __init__(self, first_topic_num: int = 7000) -> None:
        self.blobs: dict[str, bytes] = {}
        self.mime_types: dict[str, str] = {}
        self.fetch_counts: Counter[str] = Counter()
        self.failing: set[str] = set()
        self._by_digest: dict[str, str] = {}
        self._next_topic_num = first_topic_num

    async def fetch(self, location_id: str) -> bytes:
        self.fetch_counts[location_id] += 1
        if location_id in self.failing:
            raise TransportError(f"Fetch of {location_id} failed")
        if location_id not in self.blobs:
            raise TransportError(f"No content at {location_id}")
        return self.blobs[location_id]

    async def store(self, data: bytes, *, mime_type: str = "application/octet-stream", name: str = "") -> str:
        # Same bytes, same location
        digest = sha256_hex(data)
        existing = self._by_digest.get(digest)
        if existing is not None:
            return existing

        location_id = f"0.0.{self._next_topic_num}"
        self._next_topic_num += 1
        self.put(location_id, data, mime_type=mime_type)
        self._by_digest[digest] = location_id
        return location_id

    def put(self, location_id: str, data: bytes | str, *, mime_type: str = "application/octet-stream") -> None:
        """Place content at a fixed location (test setup)."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.blobs[location_id] = data
        self.mime_types[location_id] = mime_type


class HttpContentStore(ContentStore):
    """Read-only fetch from the inscription CDN."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        network: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (base_url or settings.CONTENT_CDN_URL).rstrip("/")
        self.network = network or settings.NETWORK
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout or settings.HTTP_TIMEOUT_SECONDS)

    async def fetch(self, location_id: str) -> bytes:
        url = f"{self.base_url}/{location_id}"
        try:
            res = await self.client.get(url, params={"network": self.network})
            res.raise_for_status()
        except httpx.HTTPError as e:
            raise TransportError(f"Fetch of {location_id} failed: {e}") from e
        return res.content

    async def store(self, data: bytes, *, mime_type: str = "application/octet-stream", name: str = "") -> str:
        raise TransportError("HTTP content store is read-only")

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()


async def fetch_verified(store: ContentStore, location_id: str, expected_hash: str | None = None) -> bytes:
    """Fetch raw bytes; when a digest is known the bytes must match it."""
    try:
        data = await store.fetch(location_id)
    except TransportError as e:
        raise ReferenceResolutionError(location_id, str(e)) from e

    if expected_hash is not None:
        computed = sha256_hex(data)
        if computed != expected_hash:
            logger.error("Hash mismatch for %s: expected %s, computed %s", location_id, expected_hash, computed)
            raise IntegrityError(location_id, expected_hash, computed)
    return data


# ---------------------------------------------------------------------------
# Block loader
# ---------------------------------------------------------------------------


class BlockLoader:
    """Loads block definitions and templates, memoized by topic id."""

    def __init__(self, store: ContentStore):
        self.store = store
        self._definitions: dict[str, BlockDefinition] = {}
        self._templates: dict[str, str] = {}

    async def fetch_verified(self, location_id: str, expected_hash: str | None = None) -> bytes:
        return await fetch_verified(self.store, location_id, expected_hash)

    async def load_block_definition(self, block_topic_id: str) -> BlockDefinition:
        cached = self._definitions.get(block_topic_id)
        if cached is not None:
            return cached

        raw = await self.fetch_verified(block_topic_id)
        try:
            definition = parse_block_definition(json.loads(raw.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as e:
            logger.error("Failed to load block definition %s: %s", block_topic_id, e)
            raise ReferenceResolutionError(block_topic_id, f"Invalid block definition at {block_topic_id}: {e}") from e

        self._definitions[block_topic_id] = definition
        return definition

    async def load_block_template(self, template_topic_id: str, expected_hash: str | None = None) -> str:
        cached = self._templates.get(template_topic_id)
        if cached is not None:
            return cached

        raw = await self.fetch_verified(template_topic_id, expected_hash)
        try:
            template = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ReferenceResolutionError(template_topic_id, f"Template at {template_topic_id} is not UTF-8") from e

        self._templates[template_topic_id] = template
        return template

    async def load_block(self, block_topic_id: str) -> tuple[BlockDefinition, str]:
        """Load a complete block: definition plus the template it points at."""
        definition = await self.load_block_definition(block_topic_id)
        if not definition.template_t_id:
            raise ReferenceResolutionError(block_topic_id, f"Block {block_topic_id} has no template")
        template = await self.load_block_template(definition.template_t_id, definition.template_hash)
        return definition, template

    async def store_block(self, template: str, definition: BlockDefinition) -> tuple[str, str]:
        """
        Store template then definition (which points at the template).
        Returns (definition_topic_id, template_topic_id).
        """
        template_bytes = template.encode("utf-8")
        template_topic_id = await self.store.store(
            template_bytes,
            mime_type="text/html",
            name=f"block-{definition.name}-template.html",
        )

        full = definition.model_copy(
            update={"template_t_id": template_topic_id, "template_hash": sha256_hex(template_bytes)}
        )
        definition_topic_id = await self.store.store(
            json.dumps(full.to_payload(), sort_keys=True).encode("utf-8"),
            mime_type="application/json",
            name=f"block-{definition.name}-definition.json",
        )

        self._definitions[definition_topic_id] = full
        self._templates[template_topic_id] = template
        logger.info("Stored block %s at %s (template %s)", definition.name, definition_topic_id, template_topic_id)
        return definition_topic_id, template_topic_id

    def clear_cache(self) -> None:
        self._definitions.clear()
        self._templates.clear()
