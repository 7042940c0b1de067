"""
HashLinks - Action Registry

Registration and lookup of WASM actions. Adds a secondary index
hash -> ActionRegistration, rebuilt from the full entry set after every
sync (entries are already in memory, so a full rebuild is cheap).
"""

from __future__ import annotations

import json
import logging
from typing import Any

from hashlinks.content import ContentStore, fetch_verified
from hashlinks.errors import ReferenceResolutionError, TransportError, ValidationError
from hashlinks.messages import (
    ActionRegistration,
    ModuleInfo,
    SourceVerification,
    parse_action_registration,
)
from hashlinks.registry import Projection, Registry
from hashlinks.transport import Transport
from hashlinks.types import Entry, RegistryType, sha256_hex

logger = logging.getLogger(__name__)


def fold_action_index(
    index: dict[str, ActionRegistration],
    entry: Entry,
) -> dict[str, ActionRegistration]:
    """Pure: returns a new index with this entry's registration under its hash."""
    registration: ActionRegistration = entry.data
    return {**index, registration.hash: registration}


ACTION_INDEX = Projection(initial=dict, fold=fold_action_index)


class ActionRegistry:
    """Registry for HashLink WASM actions."""

    def __init__(
        self,
        topic_id: str | None = None,
        transport: Transport | None = None,
        *,
        content_store: ContentStore | None = None,
        page_size: int | None = None,
    ) -> None:
        self.registry = Registry(
            RegistryType.ACTION,
            topic_id=topic_id,
            transport=transport,
            projection=ACTION_INDEX,
            parser=parse_action_registration,
            page_size=page_size,
        )
        self.content_store = content_store

    @property
    def topic_id(self) -> str | None:
        return self.registry.topic_id

    @property
    def index(self) -> dict[str, ActionRegistration]:
        return self.registry.state

    # -- register --

    async def register(self, registration: ActionRegistration | dict[str, Any]) -> str:
        """Validate and register an action. Returns the entry id."""
        if isinstance(registration, ActionRegistration):
            logger.info("Registering action %s (wasm %s)", registration.hash, registration.wasm_hash)
        return await self.registry.register(registration)

    async def register_with_wasm(
        self,
        wasm_binary: bytes,
        module_info: ModuleInfo,
        source_verification: SourceVerification | None = None,
    ) -> ActionRegistration:
        """
        Hash the binary and the module info, store both through the content
        store, then register the resulting record.
        """
        if self.content_store is None:
            raise TransportError("Content store required to store WASM binaries")

        wasm_hash = sha256_hex(wasm_binary)
        info_json = module_info.canonical_json()
        info_hash = sha256_hex(info_json)

        wasm_topic_id = await self.content_store.store(
            wasm_binary,
            mime_type="application/wasm",
            name=f"{module_info.name}.wasm",
        )
        info_topic_id = await self.content_store.store(
            info_json.encode("utf-8"),
            mime_type="application/json",
            name=f"{module_info.name}-info",
        )

        registration = ActionRegistration(
            t_id=wasm_topic_id,
            hash=info_hash,
            wasm_hash=wasm_hash,
            info_t_id=info_topic_id,
            source_verification=source_verification,
            m=f"{module_info.name} v{module_info.version}",
        )
        await self.register(registration)
        return registration

    # -- lookup --

    async def get_action(self, hash: str) -> ActionRegistration | None:
        """Index first; on a miss, one sync and recheck."""
        cached = self.index.get(hash)
        if cached is not None:
            return cached

        if self.registry.attached:
            await self.sync()
            return self.index.get(hash)

        return None

    async def get_action_by_topic_id(self, t_id: str) -> ActionRegistration | None:
        """Find a registration by the topic holding its WASM binary."""
        found = self._find_by_topic(t_id)
        if found is None and self.registry.attached:
            logger.debug("Action %s not in cache, syncing", t_id)
            await self.sync()
            found = self._find_by_topic(t_id)

        if found is None:
            logger.warning("Action not found for topic %s", t_id)
        return found

    async def get_latest_entry(self, topic_id: str) -> Entry | None:
        """
        Latest action registration published at `topic_id`.

        With a transport this is a direct read of that topic. Detached, the
        newest local registration for the topic (own topic or WASM topic).
        """
        if self.registry.transport is not None:
            return await self.registry.get_latest_entry(topic_id)

        if topic_id == self.topic_id:
            return await self.registry.get_latest_entry()

        matches = [e for e in self.registry.entries if e.data.t_id == topic_id]
        if not matches:
            return None
        return max(matches, key=lambda e: e.sequence_number)

    async def search_actions(
        self,
        *,
        creator: str | None = None,
        after: str | None = None,
        before: str | None = None,
        has_source_verification: bool | None = None,
    ) -> list[ActionRegistration]:
        entries = await self.registry.list_entries(submitter=creator, after=after, before=before)
        actions: list[ActionRegistration] = [e.data for e in entries]
        if has_source_verification is not None:
            actions = [a for a in actions if (a.source_verification is not None) == has_source_verification]
        return actions

    # -- content --

    async def get_action_wasm(self, hash: str) -> bytes | None:
        """WASM binary for an action, verified against wasm_hash. None on any failure."""
        action = await self.get_action(hash)
        if action is None or self.content_store is None:
            return None

        try:
            return await fetch_verified(self.content_store, action.t_id, action.wasm_hash)
        except ReferenceResolutionError as e:
            logger.error("Failed to fetch WASM for %s from %s: %s", hash, action.t_id, e)
            return None

    async def get_action_info(self, hash: str) -> ModuleInfo | None:
        """Module info for an action, verified against `hash`. None on any failure."""
        action = await self.get_action(hash)
        if action is None or self.content_store is None:
            return None
        if action.info_t_id is None:
            logger.warning("Action %s has no stored module info", hash)
            return None

        try:
            raw = await fetch_verified(self.content_store, action.info_t_id, action.hash)
            return ModuleInfo.model_validate(json.loads(raw.decode("utf-8")))
        except (ReferenceResolutionError, UnicodeDecodeError, json.JSONDecodeError, ValueError) as e:
            logger.error("Failed to fetch action info for %s: %s", hash, e)
            return None

    # -- sync --

    async def sync(self) -> int:
        added = await self.registry.sync()
        self.registry.rebuild()
        return added

    def clear_cache(self) -> None:
        self.registry.clear_cache()

    # -- internal --

    def _find_by_topic(self, t_id: str) -> ActionRegistration | None:
        for action in self.index.values():
            if action.t_id == t_id:
                return action
        return None


def validate_registration(data: Any) -> list[str]:
    """Structural check without registering. Returns error strings; empty = valid."""
    try:
        parse_action_registration(data)
    except ValidationError as e:
        return [str(e)]
    return []
