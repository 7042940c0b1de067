"""
HashLinks - Log Transport

Append-only, totally ordered message log per topic. The registries only
need three calls: append, read ascending from a cursor, read the latest.

Implement with the mirror node or Postgres for production, or in-memory
for tests and local use.
"""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from hashlinks.errors import TransportError
from hashlinks.types import format_timestamp, now_iso, parse_timestamp


@dataclass(frozen=True)
class TransportMessage:
    """One raw message as delivered by a transport. `body` is opaque until decoded."""

    sequence_number: int
    consensus_timestamp: str
    payer: str
    body: bytes | str


@dataclass(frozen=True)
class AppendResult:
    sequence_number: int
    timestamp: str
    submitter: str


def encode_payload(payload: Any) -> str:
    if hasattr(payload, "to_json"):
        return payload.to_json()
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, separators=(",", ":"))


# ---------------------------------------------------------------------------
# Transport protocol
# ---------------------------------------------------------------------------


class Transport:
    """
    Abstract transport interface.

    read_since() is inclusive: messages with consensus_timestamp >= cursor,
    ascending. Callers deduplicate by sequence number at the boundary.
    """

    async def append(self, topic_id: str, payload: Any) -> AppendResult:
        """Append one message. Returns the log-assigned sequence number and time."""
        raise NotImplementedError

    async def read_since(
        self,
        topic_id: str,
        cursor: str | None,
        *,
        limit: int = 100,
    ) -> list[TransportMessage]:
        """Read up to `limit` messages at or after `cursor`, oldest first."""
        raise NotImplementedError

    async def read_latest(self, topic_id: str, *, limit: int = 1) -> list[TransportMessage]:
        """Read the newest `limit` messages, newest first."""
        raise NotImplementedError

    async def create_topic(self, memo: str = "") -> str:
        """Create a new topic and return its id."""
        raise NotImplementedError

    async def close(self) -> None:
        return None


class MemoryTransport(Transport):
    """In-memory transport for testing and detached local use."""

    def __init__(
        self,
        *,
        payer: str = "0.0.1001",
        clock: Callable[[], str] | None = None,
        first_topic_num: int = 5000,
    ) -> None:
        self.topics: dict[str, list[TransportMessage]] = {}
        self.memos: dict[str, str] = {}
        self.payer = payer
        self._clock = clock or now_iso
        self._next_topic_num = first_topic_num
        self._last_timestamp: dict[str, datetime] = {}

        # Counters and fault injection for tests
        self.read_counts: Counter[str] = Counter()
        self.latest_counts: Counter[str] = Counter()
        self.failing_reads: set[str] = set()
        self.failing_appends: set[str] = set()

    async def create_topic(self, memo: str = "") -> str:
        topic_id = f"0.0.{self._next_topic_num}"
        self._next_topic_num += 1
        self.topics[topic_id] = []
        self.memos[topic_id] = memo
        return topic_id

    async def append(self, topic_id: str, payload: Any) -> AppendResult:
        if topic_id in self.failing_appends:
            raise TransportError(f"Append to {topic_id} rejected")
        message = self.append_raw(topic_id, encode_payload(payload))
        return AppendResult(
            sequence_number=message.sequence_number,
            timestamp=message.consensus_timestamp,
            submitter=message.payer,
        )

    def append_raw(
        self,
        topic_id: str,
        body: bytes | str,
        *,
        timestamp: str | None = None,
        payer: str | None = None,
    ) -> TransportMessage:
        """
        Put a message on a topic without any encoding.
        Lets tests write corrupt bodies, foreign protocols and fixed timestamps.
        """
        messages = self.topics.setdefault(topic_id, [])
        if timestamp is None:
            # Consensus time never goes backwards within a topic
            ts = parse_timestamp(self._clock())
            last = self._last_timestamp.get(topic_id)
            if last is not None and ts < last:
                ts = last
            timestamp = format_timestamp(ts)
        self._last_timestamp[topic_id] = parse_timestamp(timestamp)

        message = TransportMessage(
            sequence_number=len(messages) + 1,
            consensus_timestamp=timestamp,
            payer=payer or self.payer,
            body=body,
        )
        messages.append(message)
        return message

    async def read_since(
        self,
        topic_id: str,
        cursor: str | None,
        *,
        limit: int = 100,
    ) -> list[TransportMessage]:
        self.read_counts[topic_id] += 1
        if topic_id in self.failing_reads:
            raise TransportError(f"Read from {topic_id} failed")

        messages = self.topics.get(topic_id, [])
        if cursor is not None:
            floor = parse_timestamp(cursor)
            messages = [m for m in messages if parse_timestamp(m.consensus_timestamp) >= floor]
        return list(messages[:limit])

    async def read_latest(self, topic_id: str, *, limit: int = 1) -> list[TransportMessage]:
        self.latest_counts[topic_id] += 1
        if topic_id in self.failing_reads:
            raise TransportError(f"Read from {topic_id} failed")
        messages = self.topics.get(topic_id, [])
        return list(reversed(messages))[:limit]
