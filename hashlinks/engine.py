"""
HashLinks - Assembly Resolution Engine

Turns an assembly topic into a resolved object graph:

    load_assembly(topic)          folded AssemblyState, cached per topic
    resolve_references(state)     every action/block reference fetched
    validate_composition(asm)     pure check for dangling bindings

Resolution fans out over all references at once, bounded by a semaphore.
Each reference writes only its own slot; one failure never aborts the
others, it is recorded on that slot as `error`.
"""

from __future__ import annotations

import asyncio
import logging

from hashlinks.action_registry import ActionRegistry
from hashlinks.assembly_registry import AssemblyRegistry
from hashlinks.config import settings
from hashlinks.content import BlockLoader
from hashlinks.errors import HashLinksError, NotFoundError
from hashlinks.types import (
    Assembly,
    AssemblyActionRef,
    AssemblyBlockRef,
    AssemblyState,
    CompositionResult,
    ResolvedAction,
    ResolvedBlock,
    ResolvedReferences,
)

logger = logging.getLogger(__name__)


class AssemblyEngine:
    def __init__(
        self,
        assembly_registry: AssemblyRegistry,
        action_registry: ActionRegistry,
        block_loader: BlockLoader,
        *,
        concurrency: int | None = None,
    ) -> None:
        self.assembly_registry = assembly_registry
        self.action_registry = action_registry
        self.block_loader = block_loader
        self.concurrency = concurrency or settings.RESOLVE_CONCURRENCY
        self._cache: dict[str, Assembly] = {}

    # -- load --

    async def load_assembly(self, topic_id: str) -> Assembly:
        """Folded state for a topic, wrapped in an unresolved Assembly. Cached."""
        cached = self._cache.get(topic_id)
        if cached is not None:
            logger.debug("Assembly loaded from cache: %s", topic_id)
            return cached

        state = await self.assembly_registry.get_assembly_state(topic_id)
        if state is None:
            raise NotFoundError(f"Assembly not found: {topic_id}")

        assembly = Assembly(topic_id=topic_id, state=state)
        # Concurrent loads of one topic may both land here; last write wins
        self._cache[topic_id] = assembly

        logger.debug(
            "Assembly loaded: topic=%s name=%s version=%s actions=%d blocks=%d",
            topic_id,
            state.name,
            state.version,
            len(state.actions),
            len(state.blocks),
        )
        return assembly

    # -- resolve --

    async def resolve_references(self, state: AssemblyState) -> ResolvedReferences:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded_action(ref: AssemblyActionRef) -> ResolvedAction:
            async with semaphore:
                return await self._resolve_action(ref)

        async def bounded_block(ref: AssemblyBlockRef) -> ResolvedBlock:
            async with semaphore:
                return await self._resolve_block(ref)

        actions, blocks = await asyncio.gather(
            asyncio.gather(*(bounded_action(ref) for ref in state.actions)),
            asyncio.gather(*(bounded_block(ref) for ref in state.blocks)),
        )

        logger.debug(
            "Assembly references resolved: name=%s actions=%d/%d blocks=%d/%d",
            state.name,
            sum(1 for a in actions if a.definition is not None),
            len(actions),
            sum(1 for b in blocks if b.definition is not None),
            len(blocks),
        )
        return ResolvedReferences(actions=list(actions), blocks=list(blocks))

    async def _resolve_action(self, ref: AssemblyActionRef) -> ResolvedAction:
        resolved = ResolvedAction(alias=ref.alias, reference=ref.reference, config=ref.config)
        try:
            entry = await self.action_registry.get_latest_entry(ref.reference)
        except HashLinksError as e:
            logger.warning("Failed to resolve action %s (%s): %s", ref.alias, ref.reference, e)
            resolved.error = str(e)
            return resolved

        if entry is None:
            logger.warning("Failed to resolve action %s: nothing at %s", ref.alias, ref.reference)
            resolved.error = f"Action not found at topic: {ref.reference}"
            return resolved

        resolved.definition = entry.data
        return resolved

    async def _resolve_block(self, ref: AssemblyBlockRef) -> ResolvedBlock:
        resolved = ResolvedBlock(
            reference=ref.reference,
            actions=ref.actions,
            attributes=ref.attributes,
            children=ref.children,
        )
        try:
            definition, template = await self.block_loader.load_block(ref.reference)
        except HashLinksError as e:
            logger.warning("Failed to resolve block %s: %s", ref.reference, e)
            resolved.error = str(e)
            return resolved

        resolved.definition = definition
        resolved.template = template
        return resolved

    async def load_and_resolve_assembly(self, topic_id: str, *, timeout: float | None = None) -> Assembly:
        """
        Load and resolve in one step. References are resolved once per cached
        assembly. On timeout every outstanding fetch is cancelled and the
        cached object is left unresolved.
        """
        async with asyncio.timeout(timeout):
            assembly = await self.load_assembly(topic_id)
            if assembly.resolved:
                return assembly

            refs = await self.resolve_references(assembly.state)

        assembly.actions = refs.actions
        assembly.blocks = refs.blocks
        assembly.resolved = True
        return assembly

    # -- validate --

    def validate_composition(self, assembly: Assembly) -> CompositionResult:
        """Dangling-reference check over a resolved assembly. No IO."""
        errors: list[str] = []

        seen_aliases: set[str] = set()
        for action in assembly.state.actions:
            if action.alias in seen_aliases:
                errors.append(f"Duplicate action alias: {action.alias}")
            seen_aliases.add(action.alias)

        action_keys: set[str] = set()
        for action in assembly.actions:
            if action.definition is not None:
                action_keys.add(action.reference)
                action_keys.add(action.alias)

        block_keys: set[str] = set()
        for block in assembly.blocks:
            if block.definition is not None:
                block_keys.add(block.reference)
                name = getattr(block.definition, "name", None)
                if name:
                    block_keys.add(name)

        for block in assembly.state.blocks:
            for target in (block.actions or {}).values():
                if target not in action_keys:
                    errors.append(f"Block {block.reference} references non-existent action: {target}")
            for child in block.children or ():
                if child not in block_keys:
                    errors.append(f"Block {block.reference} references non-existent child block: {child}")

        return CompositionResult(valid=not errors, errors=errors)

    # -- cache --

    def clear_cache(self) -> None:
        self._cache.clear()
        logger.debug("Assembly cache cleared")

    def cached_topics(self) -> list[str]:
        return list(self._cache)
