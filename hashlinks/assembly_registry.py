"""
HashLinks - Assembly Registry

One topic is one assembly. Its log is a sequence of operations folded,
strictly in log order, into a single AssemblyState:

    uninitialized --register--> registered --(add-action | add-block | update)*--> registered'

Pure function: fold_assembly(state, entry) -> state
No side effects beyond logging. Never mutates its input.

Both sync paths (incremental catch-up and full replay) go through
fold_assembly, so they cannot drift apart.
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from typing import Any, Callable

from hashlinks.errors import ValidationError
from hashlinks.messages import (
    AssemblyAddAction,
    AssemblyAddBlock,
    AssemblyRegister,
    AssemblyUpdate,
    check_base_shape,
    parse_assembly_message,
)
from hashlinks.registry import Projection, Registry, replay
from hashlinks.transport import Transport
from hashlinks.types import (
    AssemblyActionRef,
    AssemblyBlockRef,
    AssemblyState,
    Entry,
    RegistryType,
    is_valid_topic_id,
)

logger = logging.getLogger(__name__)

LOCAL_TOPIC = "local"


# ---------------------------------------------------------------------------
# Fold
# ---------------------------------------------------------------------------


def empty_assembly() -> AssemblyState | None:
    """No state exists until a register operation has been folded."""
    return None


def fold_assembly(state: AssemblyState | None, entry: Entry) -> AssemblyState | None:
    """
    Apply one operation to the current state.
    Unknown operations leave the state untouched.
    """
    handler = _HANDLERS.get(entry.op)
    if handler is None:
        logger.warning("Unknown assembly operation %r in entry %s", entry.op, entry.id)
        return state
    return handler(state, entry)


def _handle_register(state: AssemblyState | None, entry: Entry) -> AssemblyState:
    reg: AssemblyRegister = entry.data
    topic_id = entry.topic_id or LOCAL_TOPIC
    if state is not None:
        # A second register starts the assembly over
        logger.warning(
            "Assembly %s registered again at entry %s; previous actions and blocks discarded",
            topic_id,
            entry.id,
        )
    return AssemblyState(
        topic_id=topic_id,
        name=reg.name,
        version=reg.version,
        description=reg.description,
        tags=tuple(reg.tags) if reg.tags is not None else None,
        author=reg.author,
        actions=(),
        blocks=(),
        created=entry.timestamp,
        updated=entry.timestamp,
    )


def _handle_add_action(state: AssemblyState | None, entry: Entry) -> AssemblyState | None:
    if state is None:
        logger.warning("Cannot add action without assembly registration (entry %s)", entry.id)
        return None
    op: AssemblyAddAction = entry.data
    action = AssemblyActionRef(reference=op.t_id, alias=op.alias, config=op.config, data=op.data)
    return replace(state, actions=state.actions + (action,), updated=entry.timestamp)


def _handle_add_block(state: AssemblyState | None, entry: Entry) -> AssemblyState | None:
    if state is None:
        logger.warning("Cannot add block without assembly registration (entry %s)", entry.id)
        return None
    op: AssemblyAddBlock = entry.data
    block = AssemblyBlockRef(
        reference=op.block_t_id,
        actions=dict(op.actions) if op.actions is not None else None,
        attributes=op.attributes,
        children=tuple(op.children) if op.children is not None else None,
        data=op.data,
    )
    return replace(state, blocks=state.blocks + (block,), updated=entry.timestamp)


def _handle_update(state: AssemblyState | None, entry: Entry) -> AssemblyState | None:
    if state is None:
        logger.warning("Cannot update without assembly registration (entry %s)", entry.id)
        return None
    op: AssemblyUpdate = entry.data
    changes: dict[str, Any] = {"updated": entry.timestamp}
    if op.description is not None:
        changes["description"] = op.description
    if op.tags is not None:
        changes["tags"] = tuple(op.tags)
    return replace(state, **changes)


_HANDLERS: dict[str, Callable[[AssemblyState | None, Entry], AssemblyState | None]] = {
    "register": _handle_register,
    "add-action": _handle_add_action,
    "add-block": _handle_add_block,
    "update": _handle_update,
}

ASSEMBLY_STATE = Projection(initial=empty_assembly, fold=fold_assembly)


def state_json(state: AssemblyState | None) -> str:
    """Canonical JSON of a state, for comparing two fold results."""
    return json.dumps(state.to_dict() if state is not None else None, sort_keys=True)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class AssemblyRegistry:
    """Registry bound to one assembly topic; can also read other assembly topics."""

    def __init__(
        self,
        topic_id: str | None = None,
        transport: Transport | None = None,
        *,
        page_size: int | None = None,
    ) -> None:
        self.transport = transport
        self.page_size = page_size
        self.registry = self._make_registry(topic_id)

    def _make_registry(self, topic_id: str | None) -> Registry:
        return Registry(
            RegistryType.ASSEMBLY,
            topic_id=topic_id,
            transport=self.transport,
            projection=ASSEMBLY_STATE,
            parser=parse_assembly_message,
            page_size=self.page_size,
            indexed=0,
        )

    @property
    def topic_id(self) -> str | None:
        return self.registry.topic_id

    @property
    def state(self) -> AssemblyState | None:
        return self.registry.state

    async def create_assembly_topic(self) -> str:
        return await self.registry.create_topic()

    # -- operations --

    async def register(self, message: AssemblyRegister | dict[str, Any]) -> str:
        return await self.submit_message(message)

    async def add_action(self, message: AssemblyAddAction | dict[str, Any]) -> str:
        return await self.submit_message(message)

    async def add_block(self, message: AssemblyAddBlock | dict[str, Any]) -> str:
        return await self.submit_message(message)

    async def update(self, message: AssemblyUpdate | dict[str, Any]) -> str:
        return await self.submit_message(message)

    async def submit_message(self, message: Any) -> str:
        """Validate -> append -> insert -> fold. Returns the entry id."""
        parsed = parse_assembly_message(check_base_shape(message))
        entry_id = await self.registry.register(parsed)
        logger.info("Assembly message processed: op=%s seq=%s topic=%s", parsed.op, entry_id, self.topic_id)
        return entry_id

    # -- state --

    async def sync(self, *, full: bool = False) -> int:
        """
        Catch up from the cursor, folding each new entry as it arrives.
        full=True re-derives the state from every cached entry afterwards.
        """
        added = await self.registry.sync()
        if full:
            self.registry.rebuild()
        return added

    def replay_state(self) -> AssemblyState | None:
        """Re-derive state from scratch over the cached entries."""
        return self.registry.rebuild()

    def verify_state(self) -> tuple[bool, list[str]]:
        """Verify the incrementally folded state matches a full replay."""
        ordered = sorted(self.registry.entries, key=lambda e: e.sequence_number)
        replayed = replay(ASSEMBLY_STATE, ordered)
        if state_json(self.registry.state) == state_json(replayed):
            return True, []
        return False, ["Assembly state does not match operation replay"]

    async def get_assembly_state(self, topic_id: str | None = None) -> AssemblyState | None:
        """
        State of this registry's own topic, or of any other assembly topic via
        a throwaway read-only replay. None if the topic has no register op.
        """
        target = topic_id or self.topic_id

        if target is None or target == self.topic_id:
            if self.registry.attached:
                await self.sync()
            return self.registry.state

        if not is_valid_topic_id(target):
            raise ValidationError(f"Invalid assembly topic id: {target}", field="topic_id")
        if self.transport is None:
            logger.warning("Cannot read assembly %s without a transport", target)
            return None

        logger.info("Syncing assembly state from topic %s", target)
        reader = self._make_registry(target)
        await reader.sync()

        state: AssemblyState | None = reader.state
        logger.info(
            "Assembly state after sync: topic=%s found=%s actions=%d blocks=%d",
            target,
            state is not None,
            len(state.actions) if state else 0,
            len(state.blocks) if state else 0,
        )
        return state

    def clear_cache(self) -> None:
        self.registry.clear_cache()
