"""
HashLinks - Registry (generic replay engine)

Owns one topic's replay state: a cache of materialized entries keyed by
log sequence id, a sync cursor, and a projection folded over the entries.

    projection.fold(state, entry) -> state    pure, deterministic

The same fold runs on both paths: incrementally as each new entry is
inserted (catch-up), and in a batch over every cached entry (rebuild).
Given the same entries in the same order, both produce the same state.

This is where the transport IO happens. The folds are pure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from hashlinks.config import settings
from hashlinks.errors import SyncError, TransportError, ValidationError
from hashlinks.ids import IdSource, TransportAssignedIds, id_source_for
from hashlinks.messages import DecodeError, check_base_shape, decode_body, is_protocol_message
from hashlinks.transport import Transport, TransportMessage
from hashlinks.types import (
    Entry,
    RegistryConfig,
    RegistryStats,
    RegistryType,
    now_iso,
    parse_timestamp,
    topic_memo,
)

logger = logging.getLogger(__name__)

Parser = Callable[[dict[str, Any]], Any]


# ---------------------------------------------------------------------------
# Projections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Projection:
    """An initial-state factory and the fold that advances it by one entry."""

    initial: Callable[[], Any]
    fold: Callable[[Any, Entry], Any]


def _no_state() -> None:
    return None


def _keep(state: Any, entry: Entry) -> Any:
    return state


NO_PROJECTION = Projection(initial=_no_state, fold=_keep)


def replay(projection: Projection, entries: list[Entry]) -> Any:
    """
    Rebuild state from scratch by folding over all entries.
    replay(p, [e1, e2, e3]) == p.fold(p.fold(p.fold(p.initial(), e1), e2), e3)
    """
    state = projection.initial()
    for entry in entries:
        state = projection.fold(state, entry)
    return state


def _passthrough(payload: dict[str, Any]) -> dict[str, Any]:
    return payload


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class Registry:
    """
    Replays one topic into local state.

    Detached (no transport or no topic): entries come only from register(),
    with locally generated ids. Attached: register() appends through the
    transport and sync() catches up from the cursor.
    """

    def __init__(
        self,
        registry_type: RegistryType,
        *,
        topic_id: str | None = None,
        transport: Transport | None = None,
        projection: Projection | None = None,
        parser: Parser | None = None,
        id_source: IdSource | None = None,
        page_size: int | None = None,
        max_pages: int | None = None,
        indexed: int = 1,
    ) -> None:
        self.registry_type = registry_type
        self.topic_id = topic_id
        self.transport = transport
        self.projection = projection or NO_PROJECTION
        self.parser = parser or _passthrough
        self.id_source = id_source or id_source_for(transport, topic_id)
        self.page_size = page_size or settings.SYNC_PAGE_SIZE
        self.max_pages = max_pages or settings.SYNC_MAX_PAGES
        self.indexed = indexed

        self._entries: dict[str, Entry] = {}
        self._cursor: str | None = None
        self._state: Any = self.projection.initial()
        self._last_folded: int | None = None
        self.sync_count = 0

    # -- properties --

    @property
    def attached(self) -> bool:
        return self.transport is not None and self.topic_id is not None

    @property
    def cursor(self) -> str | None:
        return self._cursor

    @property
    def state(self) -> Any:
        return self._state

    @property
    def entries(self) -> list[Entry]:
        return list(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    # -- register --

    async def register(self, data: Any) -> str:
        """
        Validate, append (when attached), then insert locally.
        Nothing is inserted if the append fails.
        """
        payload = check_base_shape(data)
        message = self.parser(payload)

        result = await self.id_source.assign(self.topic_id, message)
        entry = Entry(
            id=str(result.sequence_number),
            sequence_number=result.sequence_number,
            timestamp=result.timestamp,
            submitter=result.submitter,
            data=message,
            topic_id=self.topic_id,
        )
        self._insert(entry)

        logger.info(
            "Registered %s entry %s on %s",
            self.registry_type.name.lower(),
            entry.id,
            self.topic_id or "local",
        )
        return entry.id

    # -- read --

    async def get_entry(self, entry_id: str) -> Entry | None:
        """Cache first; one sync pass on a miss when attached. Never raises for not-found."""
        cached = self._entries.get(entry_id)
        if cached is not None:
            return cached

        if self.attached:
            await self.sync()
            return self._entries.get(entry_id)

        return None

    async def list_entries(
        self,
        *,
        submitter: str | None = None,
        after: str | None = None,
        before: str | None = None,
    ) -> list[Entry]:
        """
        Entries in insertion order. `after` is an inclusive lower bound,
        `before` an inclusive upper bound.
        """
        if self.attached:
            await self.sync()

        lower = parse_timestamp(after) if after else None
        upper = parse_timestamp(before) if before else None

        result: list[Entry] = []
        for entry in self._entries.values():
            if submitter and entry.submitter != submitter:
                continue
            ts = parse_timestamp(entry.timestamp)
            if lower is not None and ts < lower:
                continue
            if upper is not None and ts > upper:
                continue
            result.append(entry)
        return result

    async def get_latest_entry(self, topic_id: str | None = None) -> Entry | None:
        """
        Newest protocol entry on a topic, read straight from the transport.
        Detached registries can only answer for their own entries.
        """
        target = topic_id or self.topic_id

        if self.transport is None or target is None:
            if target != self.topic_id or not self._entries:
                return None
            return max(self._entries.values(), key=lambda e: e.sequence_number)

        messages = await self.transport.read_latest(target, limit=1)
        for message in messages:
            entry = self._materialize(message, target)
            if entry is not None:
                return entry
        return None

    # -- sync --

    async def sync(self) -> int:
        """
        Catch up from the cursor. Returns the number of new entries.

        Reads are inclusive of the cursor, so the boundary message comes back
        on the next pass; it is dropped because its id is already cached.
        """
        if not self.attached:
            logger.warning("Cannot sync without topic ID and transport")
            return 0

        logger.info(
            "Syncing registry entries: topic=%s type=%s cursor=%s",
            self.topic_id,
            self.registry_type.name,
            self._cursor,
        )

        added = 0
        consumed = 0
        for _ in range(self.max_pages):
            previous = self._cursor
            try:
                messages = await self.transport.read_since(self.topic_id, self._cursor, limit=self.page_size)
            except TransportError as e:
                logger.error("Failed to sync registry %s: %s", self.topic_id, e)
                raise SyncError(self.topic_id, str(e)) from e

            for message in messages:
                entry = self._materialize(message, self.topic_id)
                if entry is not None and self._insert(entry):
                    added += 1

            consumed += len(messages)
            if messages:
                self._cursor = messages[-1].consensus_timestamp
            elif self._cursor is None:
                self._cursor = now_iso()

            # Short page: caught up. Unmoved cursor: nothing left to page past.
            if len(messages) < self.page_size or self._cursor == previous:
                break
        else:
            logger.warning(
                "Registry sync stopped after %d pages: topic=%s cursor=%s; log may be truncated",
                self.max_pages,
                self.topic_id,
                self._cursor,
            )

        self.sync_count += 1
        logger.info(
            "Registry sync completed: topic=%s messages=%d new=%d cursor=%s",
            self.topic_id,
            consumed,
            added,
            self._cursor,
        )
        return added

    # -- state --

    def rebuild(self) -> Any:
        """Replay every cached entry, in log order, through the projection."""
        ordered = sorted(self._entries.values(), key=lambda e: e.sequence_number)
        self._state = replay(self.projection, ordered)
        self._last_folded = ordered[-1].sequence_number if ordered else None
        return self._state

    def clear_cache(self) -> None:
        """Drop all entries, reset the cursor and the projected state."""
        self._entries.clear()
        self._cursor = None
        self._state = self.projection.initial()
        self._last_folded = None
        logger.info("Registry cache cleared: type=%s topic=%s", self.registry_type.name, self.topic_id)

    # -- topic --

    def topic_memo(self) -> str:
        return topic_memo(self.registry_type, indexed=self.indexed, ttl=settings.REGISTRY_TTL)

    def get_config(self) -> RegistryConfig:
        return RegistryConfig(
            type=self.registry_type,
            indexed=bool(self.indexed),
            ttl=settings.REGISTRY_TTL,
            topic_id=self.topic_id,
            memo=self.topic_memo(),
        )

    def get_stats(self) -> RegistryStats:
        return RegistryStats(
            entry_count=len(self._entries),
            last_sync=self._cursor,
            topic_id=self.topic_id,
            registry_type=self.registry_type.name,
        )

    async def create_topic(self) -> str:
        """Create this registry's topic on the transport and attach to it."""
        if self.transport is None:
            raise TransportError("Transport required to create topic")
        self.topic_id = await self.transport.create_topic(self.topic_memo())
        self.id_source = TransportAssignedIds(self.transport)
        return self.topic_id

    # -- internal --

    def _materialize(self, message: TransportMessage, topic_id: str) -> Entry | None:
        """Decode one transport message. Anything unusable is logged and skipped."""
        try:
            data = decode_body(message.body)
        except DecodeError as e:
            logger.warning(
                "Failed to parse registry message %s on %s: %s",
                message.sequence_number,
                topic_id,
                e,
            )
            return None

        if not is_protocol_message(data):
            logger.debug("Skipping non-hcs-12 message %s on %s", message.sequence_number, topic_id)
            return None

        try:
            parsed = self.parser(check_base_shape(data))
        except ValidationError as e:
            logger.warning(
                "Skipping invalid %s message %s on %s: %s",
                self.registry_type.name.lower(),
                message.sequence_number,
                topic_id,
                e,
            )
            return None

        return Entry(
            id=str(message.sequence_number),
            sequence_number=message.sequence_number,
            timestamp=message.consensus_timestamp,
            submitter=message.payer,
            data=parsed,
            topic_id=topic_id,
        )

    def _insert(self, entry: Entry) -> bool:
        """Insert if absent and fold. Existing entries are never overwritten."""
        if entry.id in self._entries:
            return False
        self._entries[entry.id] = entry

        if self._last_folded is not None and entry.sequence_number < self._last_folded:
            # Arrived behind an entry we already folded: fold order must stay log order
            self.rebuild()
        else:
            self._state = self.projection.fold(self._state, entry)
            self._last_folded = entry.sequence_number
        return True
